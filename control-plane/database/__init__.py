# control-plane/database/__init__.py
"""
Database modules
"""

from .session import get_db, init_db, db_manager, SessionLocal, engine
from .models import (
    Base,
    utcnow,
    RuleType,
    NodeStatus,
    AccessRule,
    UserAccessRule,
    GroupAccessRule,
    Network,
    Gateway,
    GatewayNetwork,
    MeshHub,
    MeshSpoke,
    HubNetwork,
    NodeUserAccess,
    NodeGroupAccess,
    APIKey,
    SessionConfig,
    AuditLog,
)

__all__ = [
    # Session
    "get_db",
    "init_db",
    "db_manager",
    "SessionLocal",
    "engine",
    # Models
    "Base",
    "utcnow",
    "RuleType",
    "NodeStatus",
    "AccessRule",
    "UserAccessRule",
    "GroupAccessRule",
    "Network",
    "Gateway",
    "GatewayNetwork",
    "MeshHub",
    "MeshSpoke",
    "HubNetwork",
    "NodeUserAccess",
    "NodeGroupAccess",
    "APIKey",
    "SessionConfig",
    "AuditLog",
]
