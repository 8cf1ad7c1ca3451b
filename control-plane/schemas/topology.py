# control-plane/schemas/topology.py
"""
Topology Pydantic schemas: networks, mesh hubs, spokes and gateways

Response schemas carry the derived status and the token display prefix.
None of them has a field for the agent token itself; the raw token only
appears in the *CreatedResponse of the call that issued it.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class NodeStatus(str, Enum):
    """Derived connectivity status"""
    UNPROVISIONED = "unprovisioned"
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


class VpnProtocol(str, Enum):
    UDP = "udp"
    TCP = "tcp"


class CryptoProfile(str, Enum):
    FIPS = "fips"
    MODERN = "modern"
    COMPATIBLE = "compatible"


# === Networks ===

class NetworkCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["office-lan"])
    cidr: str = Field(..., description="Network in CIDR notation", examples=["192.168.1.0/24"])
    description: Optional[str] = Field(None, max_length=255)
    is_active: bool = True


class NetworkUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    cidr: Optional[str] = None
    description: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None
    version: Optional[int] = Field(None, ge=1)


class NetworkResponse(BaseModel):
    id: int
    name: str
    cidr: str
    description: Optional[str] = None
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NetworkListResponse(BaseModel):
    networks: List[NetworkResponse]
    total: int


class NetworkAssignmentRequest(BaseModel):
    network_id: int


# === Mesh Hubs ===

class HubCreate(BaseModel):
    """Schema for creating a mesh hub"""
    name: str = Field(..., min_length=1, max_length=100, examples=["hub-eu-1"])
    description: Optional[str] = Field(None, max_length=255)
    public_endpoint: str = Field(..., min_length=1, max_length=255, examples=["hub.example.com"])
    vpn_port: int = Field(default=1194, ge=1, le=65535)
    vpn_protocol: VpnProtocol = VpnProtocol.UDP
    vpn_subnet: str = Field(default="172.30.0.0/16")
    crypto_profile: CryptoProfile = CryptoProfile.FIPS
    tls_auth_enabled: bool = True
    full_tunnel_mode: bool = False
    push_dns: bool = False
    dns_servers: List[str] = Field(default_factory=list)
    session_enabled: bool = False
    local_networks: List[str] = Field(default_factory=list, examples=[["10.10.0.0/16"]])
    is_active: bool = True

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "hub-eu-1",
                "public_endpoint": "hub.example.com",
                "vpn_port": 1194,
                "vpn_protocol": "udp",
                "local_networks": ["10.10.0.0/16"]
            }
        }
    )


class HubUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    public_endpoint: Optional[str] = Field(None, min_length=1, max_length=255)
    vpn_port: Optional[int] = Field(None, ge=1, le=65535)
    vpn_protocol: Optional[VpnProtocol] = None
    vpn_subnet: Optional[str] = None
    crypto_profile: Optional[CryptoProfile] = None
    tls_auth_enabled: Optional[bool] = None
    full_tunnel_mode: Optional[bool] = None
    push_dns: Optional[bool] = None
    dns_servers: Optional[List[str]] = None
    session_enabled: Optional[bool] = None
    local_networks: Optional[List[str]] = None
    is_active: Optional[bool] = None
    version: Optional[int] = Field(None, ge=1)


class HubResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    public_endpoint: str
    vpn_port: int
    vpn_protocol: str
    vpn_subnet: str
    crypto_profile: str
    tls_auth_enabled: bool
    full_tunnel_mode: bool
    push_dns: bool
    dns_servers: List[str]
    session_enabled: bool
    local_networks: List[str]
    is_active: bool
    status: NodeStatus
    last_heartbeat: Optional[datetime] = None
    fault_message: Optional[str] = None
    token_prefix: str
    version: int
    created_at: datetime
    updated_at: datetime


class HubCreatedResponse(HubResponse):
    """Returned once, by the create call only"""
    token: str = Field(..., description="Agent token; store it now, it is not shown again")


class HubListResponse(BaseModel):
    hubs: List[HubResponse]
    total: int


# === Mesh Spokes ===

class SpokeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["branch-office"])
    description: Optional[str] = Field(None, max_length=255)
    local_networks: List[str] = Field(default_factory=list, examples=[["192.168.1.0/24"]])
    tunnel_ip: Optional[str] = None
    is_active: bool = True


class SpokeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    local_networks: Optional[List[str]] = None
    tunnel_ip: Optional[str] = None
    is_active: Optional[bool] = None
    version: Optional[int] = Field(None, ge=1)


class SpokeResponse(BaseModel):
    id: int
    hub_id: int
    name: str
    description: Optional[str] = None
    local_networks: List[str]
    tunnel_ip: Optional[str] = None
    remote_ip: Optional[str] = None
    is_active: bool
    status: NodeStatus
    last_seen: Optional[datetime] = None
    fault_message: Optional[str] = None
    token_prefix: str
    version: int
    created_at: datetime
    updated_at: datetime


class SpokeCreatedResponse(SpokeResponse):
    token: str = Field(..., description="Agent token; store it now, it is not shown again")


class SpokeListResponse(BaseModel):
    spokes: List[SpokeResponse]
    total: int


# === Gateways ===

class GatewayCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["gw-office"])
    description: Optional[str] = Field(None, max_length=255)
    public_endpoint: str = Field(..., min_length=1, max_length=255)
    vpn_port: int = Field(default=1194, ge=1, le=65535)
    vpn_protocol: VpnProtocol = VpnProtocol.UDP
    crypto_profile: CryptoProfile = CryptoProfile.FIPS
    full_tunnel_mode: bool = False
    push_dns: bool = False
    dns_servers: List[str] = Field(default_factory=list)
    is_active: bool = True


class GatewayUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    public_endpoint: Optional[str] = Field(None, min_length=1, max_length=255)
    vpn_port: Optional[int] = Field(None, ge=1, le=65535)
    vpn_protocol: Optional[VpnProtocol] = None
    crypto_profile: Optional[CryptoProfile] = None
    full_tunnel_mode: Optional[bool] = None
    push_dns: Optional[bool] = None
    dns_servers: Optional[List[str]] = None
    is_active: Optional[bool] = None
    version: Optional[int] = Field(None, ge=1)


class GatewayResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    public_endpoint: str
    vpn_port: int
    vpn_protocol: str
    crypto_profile: str
    full_tunnel_mode: bool
    push_dns: bool
    dns_servers: List[str]
    is_active: bool
    status: NodeStatus
    last_heartbeat: Optional[datetime] = None
    fault_message: Optional[str] = None
    public_ip: Optional[str] = None
    client_count: int
    token_prefix: str
    version: int
    created_at: datetime
    updated_at: datetime


class GatewayCreatedResponse(GatewayResponse):
    token: str = Field(..., description="Agent token; store it now, it is not shown again")


class GatewayListResponse(BaseModel):
    gateways: List[GatewayResponse]
    total: int


# === Agent heartbeats ===

class HeartbeatRequest(BaseModel):
    """
    Heartbeat sent by a hub, spoke or gateway agent
    `sent_at` lets the control plane discard reordered deliveries
    """
    sent_at: Optional[datetime] = None
    fault: Optional[str] = Field(None, max_length=1000, description="Set when the agent is unhealthy")
    remote_ip: Optional[str] = None
    tunnel_ip: Optional[str] = None
    client_count: Optional[int] = Field(None, ge=0)


class HeartbeatResponse(BaseModel):
    accepted: bool
    status: NodeStatus
    server_time: datetime


# === Admin topology view ===

class ReachableNetworksResponse(BaseModel):
    node_id: int
    status: NodeStatus
    networks: List[str]


class TopologyResponse(BaseModel):
    hubs: List[Dict[str, Any]]
    gateways: List[Dict[str, Any]]
    connections: List[Dict[str, Any]]


class NodeAccessResponse(BaseModel):
    """Users and groups allowed to use a hub, spoke or gateway"""
    node_kind: str
    node_id: int
    users: List[str]
    groups: List[str]
