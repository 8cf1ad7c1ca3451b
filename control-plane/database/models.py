# control-plane/database/models.py
"""
SQLAlchemy Database Models for the Zero Trust Access Control Plane
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON,
    ForeignKey, Index
)
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import enum

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RuleType(str, enum.Enum):
    """Access rule value types"""
    IP = "ip"
    CIDR = "cidr"
    HOSTNAME = "hostname"
    HOSTNAME_WILDCARD = "hostname_wildcard"


class NodeStatus(str, enum.Enum):
    """
    Derived connectivity status of a hub, spoke or gateway
    Never stored: computed from heartbeat recency on every read
    """
    UNPROVISIONED = "unprovisioned"
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


# =============================================================================
# Access Rules
# =============================================================================

class AccessRule(Base):
    """
    Access Rule table - one allow-list entry describing a destination

    A rule grants nothing by itself; it applies to a principal only through
    UserAccessRule / GroupAccessRule assignments.
    """
    __tablename__ = "access_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(100), unique=True, nullable=False, index=True,
                  comment="Unique rule name")
    description = Column(Text, nullable=True)

    # Destination
    rule_type = Column(String(30), nullable=False, index=True,
                       comment="Rule type: ip, cidr, hostname, hostname_wildcard")
    value = Column(String(255), nullable=False,
                   comment="Rule value, parsed according to rule_type")
    port_range = Column(String(20), nullable=True,
                        comment="Port or inclusive range: 443, 8000-9000, * (NULL = any)")
    protocol = Column(String(10), nullable=True,
                      comment="Protocol: tcp, udp, icmp, * (NULL = any)")

    # Scope
    network_id = Column(Integer, ForeignKey("networks.id"), nullable=True, index=True,
                        comment="Optional network scope; target must lie inside it")

    is_active = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, nullable=False, default=1,
                     comment="Optimistic concurrency counter")

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index('ix_access_rules_active_type', 'is_active', 'rule_type'),
    )

    def __repr__(self):
        return f"<AccessRule(id={self.id}, name={self.name}, {self.rule_type}={self.value})>"


class UserAccessRule(Base):
    """Direct rule assignment to a user id"""
    __tablename__ = "user_access_rules"

    rule_id = Column(Integer, ForeignKey("access_rules.id", ondelete="CASCADE"),
                     primary_key=True)
    user_id = Column(String(255), primary_key=True,
                     comment="Identity-provider user identifier")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_user_access_rules_user', 'user_id'),
        Index('ix_user_access_rules_rule', 'rule_id'),
    )


class GroupAccessRule(Base):
    """Rule assignment to an identity-provider group name"""
    __tablename__ = "group_access_rules"

    rule_id = Column(Integer, ForeignKey("access_rules.id", ondelete="CASCADE"),
                     primary_key=True)
    group_name = Column(String(255), primary_key=True,
                        comment="Identity-provider group name")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_group_access_rules_group', 'group_name'),
        Index('ix_group_access_rules_rule', 'rule_id'),
    )


# =============================================================================
# Topology
# =============================================================================

class Network(Base):
    """
    Network table - a named address range reachable behind hubs or gateways
    """
    __tablename__ = "networks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    cidr = Column(String(50), nullable=False,
                  comment="Network range in CIDR notation")
    is_active = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Network(id={self.id}, name={self.name}, cidr={self.cidr})>"


class Gateway(Base):
    """
    Gateway table - standalone VPN endpoint without spokes
    """
    __tablename__ = "gateways"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    # VPN endpoint
    public_endpoint = Column(String(255), nullable=False,
                             comment="Public hostname or IP clients connect to")
    vpn_port = Column(Integer, default=1194, nullable=False)
    vpn_protocol = Column(String(10), default="udp", nullable=False)
    crypto_profile = Column(String(20), default="fips", nullable=False)
    full_tunnel_mode = Column(Boolean, default=False, nullable=False)
    push_dns = Column(Boolean, default=False, nullable=False)
    dns_servers = Column(JSON, default=list, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Agent reported state
    last_heartbeat = Column(DateTime, nullable=True,
                            comment="Latest agent heartbeat (NULL = never provisioned)")
    fault_message = Column(Text, nullable=True,
                           comment="Fault carried by the latest heartbeat")
    public_ip = Column(String(45), nullable=True)
    client_count = Column(Integer, default=0, nullable=False)

    # Provisioning token (hash only)
    token_hash = Column(String(64), unique=True, nullable=False)
    token_prefix = Column(String(16), nullable=False)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Gateway(id={self.id}, name={self.name})>"


class GatewayNetwork(Base):
    """Network assignment to a gateway"""
    __tablename__ = "gateway_networks"

    gateway_id = Column(Integer, ForeignKey("gateways.id", ondelete="CASCADE"),
                        primary_key=True)
    network_id = Column(Integer, ForeignKey("networks.id", ondelete="CASCADE"),
                        primary_key=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_gateway_networks_network', 'network_id'),
    )


class MeshHub(Base):
    """
    Mesh Hub table - central VPN concentrator that spokes connect to
    """
    __tablename__ = "mesh_hubs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    # VPN endpoint
    public_endpoint = Column(String(255), nullable=False)
    vpn_port = Column(Integer, default=1194, nullable=False)
    vpn_protocol = Column(String(10), default="udp", nullable=False)
    vpn_subnet = Column(String(50), default="172.30.0.0/16", nullable=False,
                        comment="Tunnel address pool for spokes and clients")
    crypto_profile = Column(String(20), default="fips", nullable=False)
    tls_auth_enabled = Column(Boolean, default=True, nullable=False)

    # Client session behaviour
    full_tunnel_mode = Column(Boolean, default=False, nullable=False)
    push_dns = Column(Boolean, default=False, nullable=False)
    dns_servers = Column(JSON, default=list, nullable=False)
    session_enabled = Column(Boolean, default=False, nullable=False,
                             comment="Whether users may open sessions directly on this hub")

    # Networks directly behind the hub
    local_networks = Column(JSON, default=list, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Agent reported state
    last_heartbeat = Column(DateTime, nullable=True)
    fault_message = Column(Text, nullable=True)

    token_hash = Column(String(64), unique=True, nullable=False)
    token_prefix = Column(String(16), nullable=False)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<MeshHub(id={self.id}, name={self.name})>"


class MeshSpoke(Base):
    """
    Mesh Spoke table - remote site connected to exactly one hub
    Removed together with its hub
    """
    __tablename__ = "mesh_spokes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    hub_id = Column(Integer, ForeignKey("mesh_hubs.id", ondelete="CASCADE"),
                    nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    local_networks = Column(JSON, default=list, nullable=False,
                            comment="Networks behind this spoke, advertised to the hub")
    tunnel_ip = Column(String(45), nullable=True)
    remote_ip = Column(String(45), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    last_seen = Column(DateTime, nullable=True)
    fault_message = Column(Text, nullable=True)

    token_hash = Column(String(64), unique=True, nullable=False)
    token_prefix = Column(String(16), nullable=False)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index('ix_mesh_spokes_hub_name', 'hub_id', 'name', unique=True),
    )

    def __repr__(self):
        return f"<MeshSpoke(id={self.id}, hub_id={self.hub_id}, name={self.name})>"


class HubNetwork(Base):
    """Network assignment to a mesh hub"""
    __tablename__ = "mesh_hub_networks"

    hub_id = Column(Integer, ForeignKey("mesh_hubs.id", ondelete="CASCADE"),
                    primary_key=True)
    network_id = Column(Integer, ForeignKey("networks.id", ondelete="CASCADE"),
                        primary_key=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_mesh_hub_networks_network', 'network_id'),
    )


# =============================================================================
# Node Access Lists
# =============================================================================

class NodeUserAccess(Base):
    """
    Direct user assignment to a hub, spoke or gateway

    Gates who may open a session on (or list) the node. Routes are still
    decided by access rules.
    """
    __tablename__ = "node_user_access"

    node_kind = Column(String(10), primary_key=True,
                       comment="Node kind: hub, spoke, gateway")
    node_id = Column(Integer, primary_key=True)
    user_id = Column(String(255), primary_key=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_node_user_access_user', 'user_id', 'node_kind'),
    )


class NodeGroupAccess(Base):
    """Group assignment to a hub, spoke or gateway"""
    __tablename__ = "node_group_access"

    node_kind = Column(String(10), primary_key=True)
    node_id = Column(Integer, primary_key=True)
    group_name = Column(String(255), primary_key=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_node_group_access_group', 'group_name', 'node_kind'),
    )


# =============================================================================
# Credentials
# =============================================================================

class APIKey(Base):
    """
    API Key table - long-lived user credentials
    Only the SHA-256 of the raw key is stored
    """
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    key_hash = Column(String(64), unique=True, nullable=False)
    key_prefix = Column(String(16), nullable=False,
                        comment="Display prefix for identifying the key")

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True,
                        comment="NULL = never expires")

    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(String(255), nullable=True)
    revocation_reason = Column(Text, nullable=True)

    last_used_at = Column(DateTime, nullable=True)
    last_used_ip = Column(String(45), nullable=True)

    __table_args__ = (
        Index('ix_api_keys_user_revoked', 'user_id', 'is_revoked'),
    )

    def __repr__(self):
        return f"<APIKey(id={self.id}, user={self.user_id}, prefix={self.key_prefix})>"


class SessionConfig(Base):
    """
    Generated session configuration - short-lived VPN client config for a
    gateway or a mesh hub. Downloadable through a one-time URL until expires_at
    """
    __tablename__ = "generated_configs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    user_email = Column(String(255), nullable=True)
    node_kind = Column(String(10), nullable=False, default="gateway",
                       comment="Session endpoint kind: gateway, hub")
    gateway_id = Column(Integer, ForeignKey("gateways.id", ondelete="CASCADE"),
                        nullable=True, index=True)
    hub_id = Column(Integer, ForeignKey("mesh_hubs.id", ondelete="CASCADE"),
                    nullable=True, index=True)
    node_name = Column(String(100), nullable=False)

    file_name = Column(String(255), nullable=False)
    config_data = Column(Text, nullable=False)

    download_token_hash = Column(String(64), unique=True, nullable=False)
    cli_callback_url = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    downloaded_at = Column(DateTime, nullable=True)

    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_generated_configs_user_expires', 'user_id', 'expires_at'),
    )

    def __repr__(self):
        return f"<SessionConfig(id={self.id}, user={self.user_id}, {self.node_kind}={self.node_name})>"


# =============================================================================
# Audit
# =============================================================================

class AuditLog(Base):
    """
    Audit Log table - records all security-relevant events
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    event_type = Column(String(50), nullable=False, index=True,
                        comment="Event type: access_rule, hub, spoke, gateway, api_key, ...")
    event_action = Column(String(20), nullable=False,
                          comment="Action: create, update, delete, revoke, provision")

    actor_type = Column(String(20), nullable=False,
                        comment="Who performed: admin, user, agent, system")
    actor_id = Column(String(255), nullable=True)
    actor_ip = Column(String(45), nullable=True)

    target_type = Column(String(50), nullable=True)
    target_id = Column(String(100), nullable=True)

    details = Column(Text, nullable=True,
                     comment="JSON-encoded additional details")
    status = Column(String(20), default="success", nullable=False,
                    comment="Outcome: success, failure, denied")

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('ix_audit_event_created', 'event_type', 'created_at'),
        Index('ix_audit_actor_created', 'actor_type', 'actor_id', 'created_at'),
    )
