# control-plane/core/provisioning.py
"""
Provisioning Service - hub, spoke and gateway lifecycle

Creation issues a one-time agent token. The raw token is returned by the
create call and never again; only its SHA-256 and a display prefix are
stored, and no read path exposes even the hash.
"""

import ipaddress
import logging
from typing import Optional, Tuple, Dict, Any

import httpx
from sqlalchemy.orm import Session

from database.models import MeshHub, MeshSpoke, HubNetwork, Gateway, GatewayNetwork
from config import settings
from .errors import ValidationError, NotFoundError, ProvisioningFailure
from .tokens import issue_secret, hash_secret
from .topology import topology_graph, parse_cidr, normalize_cidrs
from .route_cache import route_cache
from .transactions import commit, check_version, check_flags
from .agent_client import agent_client
from .audit import log_event
from .node_access import node_access_manager

logger = logging.getLogger(__name__)

VPN_PROTOCOLS = {"udp", "tcp"}
CRYPTO_PROFILES = {"fips", "modern", "compatible"}
FLAG_FIELDS = ("is_active", "tls_auth_enabled", "full_tunnel_mode", "push_dns", "session_enabled")

# Configurable fields and their defaults per node kind
HUB_FIELDS = {
    "name": None,
    "description": None,
    "public_endpoint": None,
    "vpn_port": 1194,
    "vpn_protocol": "udp",
    "vpn_subnet": "172.30.0.0/16",
    "crypto_profile": "fips",
    "tls_auth_enabled": True,
    "full_tunnel_mode": False,
    "push_dns": False,
    "dns_servers": [],
    "session_enabled": False,
    "local_networks": [],
    "is_active": True,
}

SPOKE_FIELDS = {
    "name": None,
    "description": None,
    "local_networks": [],
    "tunnel_ip": None,
    "is_active": True,
}

GATEWAY_FIELDS = {
    "name": None,
    "description": None,
    "public_endpoint": None,
    "vpn_port": 1194,
    "vpn_protocol": "udp",
    "crypto_profile": "fips",
    "full_tunnel_mode": False,
    "push_dns": False,
    "dns_servers": [],
    "is_active": True,
}


def _validate_config(config: Dict[str, Any], allowed: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize node configuration values

    Raises:
        ValidationError: Unknown field or malformed value
    """
    unknown = set(config) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

    values = dict(config)
    check_flags(values, FLAG_FIELDS)

    if "name" in values:
        name = (values["name"] or "").strip()
        if not name:
            raise ValidationError("Name must not be empty")
        values["name"] = name

    if "public_endpoint" in values:
        endpoint = (values["public_endpoint"] or "").strip()
        if not endpoint:
            raise ValidationError("Public endpoint must not be empty")
        values["public_endpoint"] = endpoint

    if "vpn_port" in values:
        port = values["vpn_port"]
        if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
            raise ValidationError(f"Invalid VPN port: {port!r}")

    if "vpn_protocol" in values:
        protocol = str(values["vpn_protocol"] or "").lower()
        if protocol not in VPN_PROTOCOLS:
            raise ValidationError(f"Invalid VPN protocol: {values['vpn_protocol']!r}")
        values["vpn_protocol"] = protocol

    if "crypto_profile" in values:
        if values["crypto_profile"] not in CRYPTO_PROFILES:
            raise ValidationError(f"Invalid crypto profile: {values['crypto_profile']!r}")

    if "vpn_subnet" in values:
        values["vpn_subnet"] = str(parse_cidr(values["vpn_subnet"]))

    if "local_networks" in values:
        values["local_networks"] = normalize_cidrs(values["local_networks"])

    if "dns_servers" in values:
        servers = []
        for server in values["dns_servers"] or []:
            try:
                servers.append(str(ipaddress.ip_address(str(server).strip())))
            except ValueError:
                raise ValidationError(f"Invalid DNS server: {server!r}")
        values["dns_servers"] = servers

    if values.get("tunnel_ip"):
        try:
            values["tunnel_ip"] = str(ipaddress.ip_address(str(values["tunnel_ip"]).strip()))
        except ValueError:
            raise ValidationError(f"Invalid tunnel IP: {values['tunnel_ip']!r}")

    return values


def _with_defaults(config: Dict[str, Any], allowed: Dict[str, Any]) -> Dict[str, Any]:
    merged = {k: (list(v) if isinstance(v, list) else v) for k, v in allowed.items()}
    merged.update({k: v for k, v in config.items() if v is not None})
    return _validate_config(merged, allowed)


class ProvisioningService:
    """
    Lifecycle of the VPN infrastructure nodes

    Responsibilities:
    1. Create hubs, spokes and gateways with a one-time agent token
    2. Update their configuration under optimistic versioning
    3. Signal the external install agent
    4. Delete nodes (a hub takes its spokes with it)
    5. Authenticate agent heartbeats by token
    """

    # ==========================================================================
    # Mesh Hubs
    # ==========================================================================

    def create_hub(
        self,
        db: Session,
        config: Dict[str, Any],
        actor_id: Optional[str] = None
    ) -> Tuple[MeshHub, str]:
        """
        Create a mesh hub

        Returns:
            Tuple of (hub, raw_token); the token is never retrievable again

        Raises:
            ValidationError: Invalid configuration or duplicate name
        """
        values = _with_defaults(config, HUB_FIELDS)
        if not values.get("name") or not values.get("public_endpoint"):
            raise ValidationError("Hub requires name and public_endpoint")
        if db.query(MeshHub.id).filter(MeshHub.name == values["name"]).first():
            raise ValidationError(f"Mesh hub '{values['name']}' already exists")

        token = issue_secret()
        hub = MeshHub(token_hash=token.hash, token_prefix=token.prefix, **values)
        db.add(hub)
        commit(db, f"mesh hub '{values['name']}'")
        db.refresh(hub)
        route_cache.invalidate("hub created")

        log_event(db, "hub", "create", "admin", actor_id,
                  target_type="mesh_hub", target_id=hub.id,
                  details={"name": hub.name, "token_prefix": hub.token_prefix})
        logger.info(f"Created mesh hub {hub.name} ({hub.public_endpoint}:{hub.vpn_port})")
        return hub, token.raw

    def update_hub(
        self,
        db: Session,
        hub_id: int,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
        actor_id: Optional[str] = None
    ) -> MeshHub:
        hub = topology_graph.get_hub(db, hub_id)
        check_version(hub, expected_version, f"Mesh hub {hub_id}")
        values = _validate_config(updates, HUB_FIELDS)
        if "name" in values and values["name"] != hub.name:
            if db.query(MeshHub.id).filter(MeshHub.name == values["name"], MeshHub.id != hub_id).first():
                raise ValidationError(f"Mesh hub '{values['name']}' already exists")

        for field, value in values.items():
            setattr(hub, field, value)
        commit(db, f"mesh hub {hub_id}")
        db.refresh(hub)
        route_cache.invalidate("hub updated")

        log_event(db, "hub", "update", "admin", actor_id,
                  target_type="mesh_hub", target_id=hub_id,
                  details={"fields": sorted(values)})
        logger.info(f"Updated mesh hub {hub.name} (version {hub.version})")
        return hub

    def delete_hub(self, db: Session, hub_id: int, actor_id: Optional[str] = None) -> int:
        """
        Delete a hub and, atomically, every spoke attached to it

        Returns:
            Number of spokes removed with the hub
        """
        hub = topology_graph.get_hub(db, hub_id)
        name = hub.name

        spoke_ids = [row[0] for row in db.query(MeshSpoke.id).filter(MeshSpoke.hub_id == hub_id).all()]
        node_access_manager.remove_node(db, "spoke", spoke_ids)
        node_access_manager.remove_node(db, "hub", [hub_id])
        spoke_count = db.query(MeshSpoke).filter(MeshSpoke.hub_id == hub_id).delete(
            synchronize_session=False
        )
        db.query(HubNetwork).filter(HubNetwork.hub_id == hub_id).delete(
            synchronize_session=False
        )
        db.delete(hub)
        commit(db, f"mesh hub {hub_id}")
        route_cache.invalidate("hub deleted")

        log_event(db, "hub", "delete", "admin", actor_id,
                  target_type="mesh_hub", target_id=hub_id,
                  details={"name": name, "spokes_removed": spoke_count})
        logger.info(f"Deleted mesh hub {name} and {spoke_count} spoke(s)")
        return spoke_count

    # ==========================================================================
    # Mesh Spokes
    # ==========================================================================

    def create_spoke(
        self,
        db: Session,
        hub_id: int,
        config: Dict[str, Any],
        actor_id: Optional[str] = None
    ) -> Tuple[MeshSpoke, str]:
        """
        Create a spoke under an existing hub

        Raises:
            NotFoundError: Unknown hub
            ValidationError: Invalid configuration or name already used on this hub
        """
        topology_graph.get_hub(db, hub_id)
        values = _with_defaults(config, SPOKE_FIELDS)
        if not values.get("name"):
            raise ValidationError("Spoke requires a name")
        if db.query(MeshSpoke.id).filter(
            MeshSpoke.hub_id == hub_id, MeshSpoke.name == values["name"]
        ).first():
            raise ValidationError(f"Spoke '{values['name']}' already exists on hub {hub_id}")

        token = issue_secret()
        spoke = MeshSpoke(hub_id=hub_id, token_hash=token.hash, token_prefix=token.prefix, **values)
        db.add(spoke)
        commit(db, f"mesh spoke '{values['name']}'")
        db.refresh(spoke)
        route_cache.invalidate("spoke created")

        log_event(db, "spoke", "create", "admin", actor_id,
                  target_type="mesh_spoke", target_id=spoke.id,
                  details={"hub_id": hub_id, "name": spoke.name})
        logger.info(f"Created mesh spoke {spoke.name} on hub {hub_id}")
        return spoke, token.raw

    def update_spoke(
        self,
        db: Session,
        spoke_id: int,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
        actor_id: Optional[str] = None
    ) -> MeshSpoke:
        spoke = topology_graph.get_spoke(db, spoke_id)
        check_version(spoke, expected_version, f"Mesh spoke {spoke_id}")
        values = _validate_config(updates, SPOKE_FIELDS)
        if "name" in values and values["name"] != spoke.name:
            if db.query(MeshSpoke.id).filter(
                MeshSpoke.hub_id == spoke.hub_id,
                MeshSpoke.name == values["name"],
                MeshSpoke.id != spoke_id
            ).first():
                raise ValidationError(f"Spoke '{values['name']}' already exists on hub {spoke.hub_id}")

        for field, value in values.items():
            setattr(spoke, field, value)
        commit(db, f"mesh spoke {spoke_id}")
        db.refresh(spoke)
        route_cache.invalidate("spoke updated")

        log_event(db, "spoke", "update", "admin", actor_id,
                  target_type="mesh_spoke", target_id=spoke_id,
                  details={"fields": sorted(values)})
        logger.info(f"Updated mesh spoke {spoke.name}")
        return spoke

    def delete_spoke(self, db: Session, spoke_id: int, actor_id: Optional[str] = None) -> None:
        spoke = topology_graph.get_spoke(db, spoke_id)
        name, hub_id = spoke.name, spoke.hub_id
        node_access_manager.remove_node(db, "spoke", [spoke_id])
        db.delete(spoke)
        commit(db, f"mesh spoke {spoke_id}")
        route_cache.invalidate("spoke deleted")

        log_event(db, "spoke", "delete", "admin", actor_id,
                  target_type="mesh_spoke", target_id=spoke_id,
                  details={"hub_id": hub_id, "name": name})
        logger.info(f"Deleted mesh spoke {name} from hub {hub_id}")

    # ==========================================================================
    # Gateways
    # ==========================================================================

    def create_gateway(
        self,
        db: Session,
        config: Dict[str, Any],
        actor_id: Optional[str] = None
    ) -> Tuple[Gateway, str]:
        values = _with_defaults(config, GATEWAY_FIELDS)
        if not values.get("name") or not values.get("public_endpoint"):
            raise ValidationError("Gateway requires name and public_endpoint")
        if db.query(Gateway.id).filter(Gateway.name == values["name"]).first():
            raise ValidationError(f"Gateway '{values['name']}' already exists")

        token = issue_secret()
        gateway = Gateway(token_hash=token.hash, token_prefix=token.prefix, **values)
        db.add(gateway)
        commit(db, f"gateway '{values['name']}'")
        db.refresh(gateway)
        route_cache.invalidate("gateway created")

        log_event(db, "gateway", "create", "admin", actor_id,
                  target_type="gateway", target_id=gateway.id,
                  details={"name": gateway.name, "token_prefix": gateway.token_prefix})
        logger.info(f"Created gateway {gateway.name} ({gateway.public_endpoint}:{gateway.vpn_port})")
        return gateway, token.raw

    def update_gateway(
        self,
        db: Session,
        gateway_id: int,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
        actor_id: Optional[str] = None
    ) -> Gateway:
        gateway = topology_graph.get_gateway(db, gateway_id)
        check_version(gateway, expected_version, f"Gateway {gateway_id}")
        values = _validate_config(updates, GATEWAY_FIELDS)
        if "name" in values and values["name"] != gateway.name:
            if db.query(Gateway.id).filter(Gateway.name == values["name"], Gateway.id != gateway_id).first():
                raise ValidationError(f"Gateway '{values['name']}' already exists")

        for field, value in values.items():
            setattr(gateway, field, value)
        commit(db, f"gateway {gateway_id}")
        db.refresh(gateway)
        route_cache.invalidate("gateway updated")

        log_event(db, "gateway", "update", "admin", actor_id,
                  target_type="gateway", target_id=gateway_id,
                  details={"fields": sorted(values)})
        logger.info(f"Updated gateway {gateway.name}")
        return gateway

    def delete_gateway(self, db: Session, gateway_id: int, actor_id: Optional[str] = None) -> None:
        gateway = topology_graph.get_gateway(db, gateway_id)
        name = gateway.name
        node_access_manager.remove_node(db, "gateway", [gateway_id])
        db.query(GatewayNetwork).filter(GatewayNetwork.gateway_id == gateway_id).delete(
            synchronize_session=False
        )
        db.delete(gateway)
        commit(db, f"gateway {gateway_id}")
        route_cache.invalidate("gateway deleted")

        log_event(db, "gateway", "delete", "admin", actor_id,
                  target_type="gateway", target_id=gateway_id, details={"name": name})
        logger.info(f"Deleted gateway {name}")

    # ==========================================================================
    # Provisioning signal
    # ==========================================================================

    def provision(self, db: Session, kind: str, node_id: int, actor_id: Optional[str] = None) -> None:
        """
        Ask the external install agent to (re)deploy a node

        Idempotent. The stored token is never rotated and no status is
        written; a node shows as online only once its agent heartbeats.

        Raises:
            NotFoundError: Unknown node
            ProvisioningFailure: The agent did not accept the request
        """
        node = topology_graph.get_node(db, kind, node_id)
        payload = {
            "kind": kind,
            "id": node.id,
            "name": node.name,
            "token_prefix": node.token_prefix,
            "control_plane_url": settings.CONTROL_PLANE_URL,
            "heartbeat_url": f"{settings.CONTROL_PLANE_URL.rstrip('/')}{settings.API_PREFIX}/agent/{kind}/heartbeat",
        }

        try:
            agent_client.signal_provision(payload)
        except (httpx.HTTPError, RuntimeError) as e:
            logger.error(f"Provisioning {kind} {node_id} failed: {e}")
            log_event(db, kind, "provision", "admin", actor_id,
                      target_type=kind, target_id=node_id, status="failure",
                      details={"error": str(e)})
            raise ProvisioningFailure(
                f"Provisioning agent rejected {kind} {node_id}",
                details={"reason": str(e)},
            )

        log_event(db, kind, "provision", "admin", actor_id,
                  target_type=kind, target_id=node_id)
        logger.info(f"Provisioning signalled for {kind} {node.name}")

    # ==========================================================================
    # Agent authentication
    # ==========================================================================

    def authenticate_agent(self, db: Session, kind: str, raw_token: str):
        """
        Resolve the node an agent token belongs to

        Raises:
            NotFoundError: No node of this kind holds the token
        """
        models = {"hub": MeshHub, "spoke": MeshSpoke, "gateway": Gateway}
        model = models.get(kind)
        if model is None:
            raise ValidationError(f"Unknown node kind: {kind!r}")
        if not raw_token:
            raise NotFoundError("Agent token not recognised")

        node = db.query(model).filter(model.token_hash == hash_secret(raw_token)).first()
        if not node:
            logger.warning(f"Rejected {kind} agent token with unknown hash")
            raise NotFoundError("Agent token not recognised")
        return node


# Singleton instance
provisioning_service = ProvisioningService()
