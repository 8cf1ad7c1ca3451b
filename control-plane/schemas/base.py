# control-plane/schemas/base.py
"""
Base schemas for API responses
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime, timezone


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MessageResponse(BaseModel):
    """
    Standard acknowledgement for operations without a payload
    """
    success: bool = True
    message: str = "Operation successful"
    timestamp: datetime = Field(default_factory=_now)


class ErrorResponse(BaseModel):
    """
    Standard error response
    Used for 4xx and 5xx responses
    """
    success: bool = False
    error: str
    error_code: str
    details: Optional[dict] = None
    timestamp: datetime = Field(default_factory=_now)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": "Mesh hub with id 7 not found",
                "error_code": "NOT_FOUND",
                "details": None,
                "timestamp": "2025-12-26T10:00:00Z"
            }
        }
    )


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "healthy"
    service: str = "control-plane"
    version: str = "1.0.0"
    uptime_seconds: Optional[float] = None
    database: str = "connected"
    timestamp: datetime = Field(default_factory=_now)
