# control-plane/schemas/__init__.py
"""
Pydantic Schemas for the Zero Trust Access Control Plane API
Organized by domain: access rules, topology, credentials, reachability
"""

from .base import MessageResponse, ErrorResponse, HealthResponse
from .access_rule import (
    RuleType,
    AccessRuleCreate,
    AccessRuleUpdate,
    AccessRuleResponse,
    AccessRuleListResponse,
)
from .topology import (
    NodeStatus,
    NetworkCreate,
    NetworkResponse,
    HubCreate,
    HubResponse,
    SpokeCreate,
    SpokeResponse,
    GatewayCreate,
    GatewayResponse,
    HeartbeatRequest,
    TopologyResponse,
    NodeAccessResponse,
)
from .credentials import (
    APIKeyCreate,
    APIKeyResponse,
    SessionConfigCreate,
    SessionConfigResponse,
    AccessibleHubListResponse,
    AccessibleGatewayListResponse,
)
from .reachability import RoutesResponse, FirewallRulesResponse

__all__ = [
    # Base
    "MessageResponse",
    "ErrorResponse",
    "HealthResponse",
    # Access rules
    "RuleType",
    "AccessRuleCreate",
    "AccessRuleUpdate",
    "AccessRuleResponse",
    "AccessRuleListResponse",
    # Topology
    "NodeStatus",
    "NetworkCreate",
    "NetworkResponse",
    "HubCreate",
    "HubResponse",
    "SpokeCreate",
    "SpokeResponse",
    "GatewayCreate",
    "GatewayResponse",
    "HeartbeatRequest",
    "TopologyResponse",
    "NodeAccessResponse",
    # Credentials
    "APIKeyCreate",
    "APIKeyResponse",
    "SessionConfigCreate",
    "SessionConfigResponse",
    "AccessibleHubListResponse",
    "AccessibleGatewayListResponse",
    # Reachability
    "RoutesResponse",
    "FirewallRulesResponse",
]
