# control-plane/main.py
"""
Zero Trust Access Control Plane - Main Application
FastAPI application entry point
"""

import uvicorn
import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.v1 import agent, admin, client
from database.session import init_db, db_manager
from core.errors import EngineError
from config import settings
from schemas.base import HealthResponse, ErrorResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Track startup time
startup_time = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events
    - Startup: Initialize database
    - Shutdown: Cleanup resources
    """
    global startup_time

    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENV}")

    init_db()
    startup_time = _now()

    logger.info("Application started successfully")

    yield

    logger.info("Shutting down application")


# Initialize FastAPI App
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Zero Trust Access Control Plane API

    Decides which destinations an authenticated principal may reach and which
    routes a VPN session receives:
    - Allow-list access rules assigned to users and groups
    - Mesh hubs, spokes and gateways with heartbeat-derived status
    - Route and firewall rule resolution per principal
    - One-time agent tokens, API keys and short-lived session configs

    ## Authentication

    - Admin endpoints: Require X-Admin-Token header
    - Client endpoints: Principal asserted by the identity proxy (X-User-Id, X-User-Email, X-User-Groups)
    - Agent endpoints: Require X-Agent-Token issued when the node was created
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Exception Handlers ===
# Every failure leaves the API in the ErrorResponse envelope

def error_response(status_code: int, error: str, error_code: str, details: Optional[dict] = None) -> JSONResponse:
    body = ErrorResponse(error=error, error_code=error_code, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.error_code, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", "VALIDATION_ERROR", {"errors": errors}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.url.path}: {exc}")
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "INTERNAL_ERROR",
        {"message": str(exc)} if settings.DEBUG else None
    )


# === Include Routers ===

app.include_router(
    agent.router,
    prefix=f"{settings.API_PREFIX}/agent",
    tags=["Agent"]
)

app.include_router(
    admin.router,
    prefix=f"{settings.API_PREFIX}/admin",
    tags=["Admin"]
)

app.include_router(
    client.router,
    prefix=f"{settings.API_PREFIX}/client",
    tags=["Client"]
)


# === Root Endpoints ===

@app.get(
    "/",
    summary="Root endpoint",
    description="Welcome message and API info"
)
async def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health"
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check application and database health"
)
async def health_check():
    """Health check endpoint for monitoring"""
    db_status = "connected" if db_manager.check_connection() else "disconnected"

    uptime = None
    if startup_time:
        uptime = (_now() - startup_time).total_seconds()

    return HealthResponse(
        status="healthy" if db_status == "connected" else "unhealthy",
        service="control-plane",
        version=settings.APP_VERSION,
        uptime_seconds=uptime,
        database=db_status
    )


@app.get(
    "/api/v1",
    summary="API v1 info",
    description="API version information"
)
async def api_v1_info():
    """API v1 information"""
    return {
        "version": "v1",
        "status": "stable",
        "endpoints": {
            "agent": "/api/v1/agent",
            "admin": "/api/v1/admin",
            "client": "/api/v1/client"
        }
    }


# === Run Application ===

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.is_development,
        # route cache invalidation is process-local
        workers=1,
        log_level=settings.LOG_LEVEL.lower()
    )
