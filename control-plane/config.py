# control-plane/config.py
"""
Application Configuration
Uses pydantic-settings for environment variable management
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Access engine settings loaded from environment variables
    Create a .env file for local development
    """

    # === Application ===
    APP_NAME: str = "Zero Trust Access Control Plane"
    APP_VERSION: str = "1.0.0"
    ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # === API ===
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_PREFIX: str = "/api/v1"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # === Database ===
    DATABASE_URL: str = "sqlite:///./zerotrust.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    # Snapshot isolation for route resolution on server databases
    DB_ISOLATION_LEVEL: str = "REPEATABLE READ"

    # === Security ===
    ADMIN_SECRET: str = "change-me-admin-secret"
    CONTROL_PLANE_URL: str = "http://localhost:8000"

    # === Topology ===
    HEARTBEAT_TIMEOUT_SECONDS: int = 120

    # === Secrets / Credentials ===
    API_KEY_PREFIX: str = "gk_"
    SECRET_DISPLAY_PREFIX_LENGTH: int = 12
    DEFAULT_API_KEY_EXPIRY: str = "90d"
    SESSION_CONFIG_TTL_HOURS: int = 24

    # === Provisioning Agent ===
    PROVISIONING_AGENT_URL: Optional[str] = None
    PROVISIONING_TIMEOUT_SECONDS: float = 10.0
    CLI_CALLBACK_TIMEOUT_SECONDS: float = 5.0

    # === Route Cache ===
    # Process-local; disable when serving with more than one worker
    ROUTE_CACHE_ENABLED: bool = True

    # === Logging & Audit ===
    ENABLE_AUDIT_LOG: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENV.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.ENV.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance
    Use this to get settings throughout the application
    """
    return Settings()


settings = get_settings()
