# control-plane/schemas/credentials.py
"""
API key and session configuration schemas
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from enum import Enum


class ExpiryPreset(str, Enum):
    """Supported API key lifetimes"""
    DAYS_30 = "30d"
    DAYS_90 = "90d"
    DAYS_180 = "180d"
    YEAR = "1y"
    NEVER = "never"


# === API keys ===

class APIKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["ci-pipeline"])
    description: Optional[str] = Field(None, max_length=255)
    expires_in: ExpiryPreset = ExpiryPreset.DAYS_90


class APIKeyRevoke(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class APIKeyResponse(BaseModel):
    """Key metadata; never includes the key or its hash"""
    id: int
    user_id: str
    name: str
    description: Optional[str] = None
    key_prefix: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    is_revoked: bool
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revocation_reason: Optional[str] = None
    last_used_at: Optional[datetime] = None
    last_used_ip: Optional[str] = None


class APIKeyCreatedResponse(APIKeyResponse):
    api_key: str = Field(..., description="Raw key; store it now, it is not shown again")


class APIKeyListResponse(BaseModel):
    keys: List[APIKeyResponse]
    total: int


class APIKeyValidateRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


class APIKeyValidateResponse(BaseModel):
    valid: bool
    user_id: str
    key_id: int
    expires_at: Optional[datetime] = None


# === Session configs ===

class SessionConfigCreate(BaseModel):
    """Exactly one of gateway_id or hub_id"""
    gateway_id: Optional[int] = None
    hub_id: Optional[int] = None
    cli_callback_url: Optional[str] = Field(
        None,
        description="Loopback URL of a waiting CLI, e.g. http://127.0.0.1:8765/callback"
    )


class SessionConfigResponse(BaseModel):
    id: int
    user_id: str
    node_kind: str
    gateway_id: Optional[int] = None
    hub_id: Optional[int] = None
    node_name: str
    file_name: str
    created_at: datetime
    expires_at: datetime
    downloaded_at: Optional[datetime] = None
    is_revoked: bool

    model_config = ConfigDict(from_attributes=True)


class SessionConfigCreatedResponse(SessionConfigResponse):
    download_url: str = Field(..., description="One-time link; not shown again")
    cli_delivered: bool = False


class SessionConfigListResponse(BaseModel):
    configs: List[SessionConfigResponse]
    total: int


# === Node access ===

class AccessibleSpoke(BaseModel):
    id: int
    name: str
    status: str
    local_networks: List[str]


class AccessibleHub(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    public_endpoint: str
    status: str
    session_enabled: bool
    spokes: List[AccessibleSpoke] = []


class AccessibleHubListResponse(BaseModel):
    hubs: List[AccessibleHub]
    total: int


class AccessibleGateway(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    public_endpoint: str
    status: str


class AccessibleGatewayListResponse(BaseModel):
    gateways: List[AccessibleGateway]
    total: int
