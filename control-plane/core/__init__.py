# control-plane/core/__init__.py
"""
Core access engine modules
"""

from .errors import (
    EngineError,
    ValidationError,
    NotFoundError,
    ConfigExpired,
    ConflictError,
    AuthorizationDenied,
    ProvisioningFailure,
)
from .rule_matcher import Target, match, parse_rule_value
from .access_rule_manager import access_rule_manager, AccessRuleManager
from .authorization import Principal, authorization_resolver, AuthorizationResolver
from .topology import topology_graph, TopologyGraph, hub_status, spoke_status, gateway_status
from .reachability import reachability_resolver, ReachabilityResolver
from .route_cache import route_cache
from .provisioning import provisioning_service, ProvisioningService
from .credentials import credential_lifecycle, CredentialLifecycle
from .node_access import node_access_manager, NodeAccessManager

__all__ = [
    # Errors
    "EngineError",
    "ValidationError",
    "NotFoundError",
    "ConfigExpired",
    "ConflictError",
    "AuthorizationDenied",
    "ProvisioningFailure",
    # Rule matching
    "Target",
    "match",
    "parse_rule_value",
    # Rules
    "access_rule_manager",
    "AccessRuleManager",
    # Authorization
    "Principal",
    "authorization_resolver",
    "AuthorizationResolver",
    # Topology
    "topology_graph",
    "TopologyGraph",
    "hub_status",
    "spoke_status",
    "gateway_status",
    # Reachability
    "reachability_resolver",
    "ReachabilityResolver",
    "route_cache",
    # Provisioning
    "provisioning_service",
    "ProvisioningService",
    # Credentials
    "credential_lifecycle",
    "CredentialLifecycle",
    # Node access
    "node_access_manager",
    "NodeAccessManager",
]
