# control-plane/core/topology.py
"""
Topology Graph - networks, gateways, mesh hubs and spokes

Connectivity status is never stored. It is derived from heartbeat recency on
every read:

    unprovisioned  no heartbeat ever received
    error          the latest heartbeat carried a fault
    online         active and heard from within HEARTBEAT_TIMEOUT_SECONDS
    offline        anything else

Reachability through a hub or gateway is fail-closed: a node that is not
online reaches nothing.
"""

import ipaddress
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Iterable, NamedTuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from database.models import (
    utcnow, NodeStatus, Network, Gateway, GatewayNetwork,
    MeshHub, MeshSpoke, HubNetwork, AccessRule
)
from config import settings
from .errors import ValidationError, NotFoundError, ConflictError
from .rule_matcher import IPNetwork
from .route_cache import route_cache
from .transactions import commit, check_version, check_flags
from .audit import log_event

logger = logging.getLogger(__name__)


# === CIDR helpers ===

def parse_cidr(value: str) -> IPNetwork:
    """
    Raises:
        ValidationError: value is not a network in CIDR notation
    """
    text = str(value or "").strip()
    if "/" not in text:
        raise ValidationError(f"Invalid CIDR (missing prefix length): {value!r}")
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError:
        raise ValidationError(f"Invalid CIDR: {value!r}")


def normalize_cidrs(values: Optional[Iterable[str]]) -> List[str]:
    """Validate a list of CIDRs, returning canonical, de-duplicated strings"""
    seen = []
    for value in values or []:
        text = str(parse_cidr(value))
        if text not in seen:
            seen.append(text)
    return seen


def _safe_networks(values: Optional[Iterable[str]], owner: str) -> List[IPNetwork]:
    networks = []
    for value in values or []:
        try:
            networks.append(parse_cidr(value))
        except ValidationError:
            logger.warning(f"Skipping malformed network {value!r} on {owner}")
    return networks


# === Derived status ===

def _timeout() -> timedelta:
    return timedelta(seconds=settings.HEARTBEAT_TIMEOUT_SECONDS)


def derive_status(
    last_heartbeat: Optional[datetime],
    is_active: bool,
    fault_message: Optional[str],
    now: Optional[datetime] = None
) -> NodeStatus:
    if last_heartbeat is None:
        return NodeStatus.UNPROVISIONED
    if fault_message:
        return NodeStatus.ERROR
    now = now or utcnow()
    if is_active and now - last_heartbeat <= _timeout():
        return NodeStatus.ONLINE
    return NodeStatus.OFFLINE


def hub_status(hub: MeshHub, now: Optional[datetime] = None) -> NodeStatus:
    return derive_status(hub.last_heartbeat, hub.is_active, hub.fault_message, now)


def spoke_status(spoke: MeshSpoke, now: Optional[datetime] = None) -> NodeStatus:
    return derive_status(spoke.last_seen, spoke.is_active, spoke.fault_message, now)


def gateway_status(gateway: Gateway, now: Optional[datetime] = None) -> NodeStatus:
    return derive_status(gateway.last_heartbeat, gateway.is_active, gateway.fault_message, now)


def online_until(last_heartbeat: Optional[datetime]) -> Optional[datetime]:
    """Moment an online node lapses to offline without a new heartbeat"""
    if last_heartbeat is None:
        return None
    return last_heartbeat + _timeout()


class Reachability(NamedTuple):
    networks: List[IPNetwork]
    # earliest moment the result may change without any write
    valid_until: Optional[datetime]


def _collapse(networks: Iterable[IPNetwork]) -> List[IPNetwork]:
    """Unique networks in a stable order (IPv4 first)"""
    unique = set(networks)
    return sorted(unique, key=lambda n: (n.version, n.network_address, n.prefixlen))


def _earliest(*moments: Optional[datetime]) -> Optional[datetime]:
    present = [m for m in moments if m is not None]
    return min(present) if present else None


class TopologyGraph:
    """
    Read and write access to the topology

    Every topology write (and every heartbeat that changes a derived status)
    invalidates the route cache.
    """

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def get_network(self, db: Session, network_id: int) -> Network:
        network = db.query(Network).filter(Network.id == network_id).first()
        if not network:
            raise NotFoundError(f"Network with id {network_id} not found")
        return network

    def get_hub(self, db: Session, hub_id: int) -> MeshHub:
        hub = db.query(MeshHub).filter(MeshHub.id == hub_id).first()
        if not hub:
            raise NotFoundError(f"Mesh hub with id {hub_id} not found")
        return hub

    def get_spoke(self, db: Session, spoke_id: int) -> MeshSpoke:
        spoke = db.query(MeshSpoke).filter(MeshSpoke.id == spoke_id).first()
        if not spoke:
            raise NotFoundError(f"Mesh spoke with id {spoke_id} not found")
        return spoke

    def get_gateway(self, db: Session, gateway_id: int) -> Gateway:
        gateway = db.query(Gateway).filter(Gateway.id == gateway_id).first()
        if not gateway:
            raise NotFoundError(f"Gateway with id {gateway_id} not found")
        return gateway

    def get_node(self, db: Session, kind: str, node_id: int):
        """Hub, spoke or gateway by kind"""
        if kind == "hub":
            return self.get_hub(db, node_id)
        if kind == "spoke":
            return self.get_spoke(db, node_id)
        if kind == "gateway":
            return self.get_gateway(db, node_id)
        raise ValidationError(f"Unknown node kind: {kind!r}")

    def list_networks(self, db: Session) -> List[Network]:
        return db.query(Network).order_by(Network.name).all()

    def list_hubs(self, db: Session) -> List[MeshHub]:
        return db.query(MeshHub).order_by(MeshHub.name).all()

    def list_spokes(self, db: Session, hub_id: int) -> List[MeshSpoke]:
        self.get_hub(db, hub_id)
        return db.query(MeshSpoke).filter(MeshSpoke.hub_id == hub_id).order_by(MeshSpoke.name).all()

    def list_gateways(self, db: Session) -> List[Gateway]:
        return db.query(Gateway).order_by(Gateway.name).all()

    def hub_networks(self, db: Session, hub_id: int) -> List[Network]:
        return db.query(Network).join(
            HubNetwork, HubNetwork.network_id == Network.id
        ).filter(HubNetwork.hub_id == hub_id).order_by(Network.name).all()

    def gateway_networks(self, db: Session, gateway_id: int) -> List[Network]:
        return db.query(Network).join(
            GatewayNetwork, GatewayNetwork.network_id == Network.id
        ).filter(GatewayNetwork.gateway_id == gateway_id).order_by(Network.name).all()

    # ==========================================================================
    # Networks
    # ==========================================================================

    def create_network(
        self,
        db: Session,
        name: str,
        cidr: str,
        description: Optional[str] = None,
        is_active: bool = True,
        actor_id: Optional[str] = None
    ) -> Network:
        if not name or not name.strip():
            raise ValidationError("Network name must not be empty")
        name = name.strip()
        if db.query(Network.id).filter(Network.name == name).first():
            raise ValidationError(f"Network '{name}' already exists")

        network = Network(
            name=name,
            cidr=str(parse_cidr(cidr)),
            description=description,
            is_active=is_active
        )
        db.add(network)
        commit(db, f"network '{name}'")
        db.refresh(network)
        route_cache.invalidate("network created")

        log_event(db, "network", "create", "admin", actor_id,
                  target_type="network", target_id=network.id,
                  details={"cidr": network.cidr})
        logger.info(f"Created network {network.name} ({network.cidr})")
        return network

    def update_network(
        self,
        db: Session,
        network_id: int,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
        actor_id: Optional[str] = None
    ) -> Network:
        network = self.get_network(db, network_id)
        check_version(network, expected_version, f"Network {network_id}")
        check_flags(updates, ("is_active",))

        if "name" in updates and updates["name"] != network.name:
            name = (updates["name"] or "").strip()
            if not name:
                raise ValidationError("Network name must not be empty")
            if db.query(Network.id).filter(Network.name == name, Network.id != network_id).first():
                raise ValidationError(f"Network '{name}' already exists")
            updates = {**updates, "name": name}
        if "cidr" in updates:
            updates = {**updates, "cidr": str(parse_cidr(updates["cidr"]))}

        for field in ("name", "cidr", "description", "is_active"):
            if field in updates:
                setattr(network, field, updates[field])

        commit(db, f"network {network_id}")
        db.refresh(network)
        route_cache.invalidate("network updated")

        log_event(db, "network", "update", "admin", actor_id,
                  target_type="network", target_id=network_id,
                  details={"fields": sorted(updates)})
        logger.info(f"Updated network {network.name}")
        return network

    def delete_network(self, db: Session, network_id: int, actor_id: Optional[str] = None) -> None:
        """
        Delete a network and its hub/gateway assignments

        Raises:
            ConflictError: Access rules are still scoped to the network
        """
        network = self.get_network(db, network_id)
        scoped = db.query(AccessRule.id).filter(AccessRule.network_id == network_id).count()
        if scoped:
            raise ConflictError(
                f"Network {network.name} is the scope of {scoped} access rule(s)",
                details={"scoped_rules": scoped},
            )

        name = network.name
        db.query(HubNetwork).filter(HubNetwork.network_id == network_id).delete(
            synchronize_session=False
        )
        db.query(GatewayNetwork).filter(GatewayNetwork.network_id == network_id).delete(
            synchronize_session=False
        )
        db.delete(network)
        commit(db, f"network {network_id}")
        route_cache.invalidate("network deleted")

        log_event(db, "network", "delete", "admin", actor_id,
                  target_type="network", target_id=network_id)
        logger.info(f"Deleted network {name}")

    def assign_network_to_hub(self, db: Session, hub_id: int, network_id: int) -> HubNetwork:
        self.get_hub(db, hub_id)
        self.get_network(db, network_id)
        if db.query(HubNetwork).filter(
            HubNetwork.hub_id == hub_id, HubNetwork.network_id == network_id
        ).first():
            raise ConflictError(f"Network {network_id} is already assigned to hub {hub_id}")

        assignment = HubNetwork(hub_id=hub_id, network_id=network_id)
        db.add(assignment)
        commit(db, f"network {network_id} on hub {hub_id}")
        route_cache.invalidate("hub network assigned")
        logger.info(f"Assigned network {network_id} to hub {hub_id}")
        return assignment

    def unassign_network_from_hub(self, db: Session, hub_id: int, network_id: int) -> None:
        deleted = db.query(HubNetwork).filter(
            HubNetwork.hub_id == hub_id, HubNetwork.network_id == network_id
        ).delete(synchronize_session=False)
        if not deleted:
            db.rollback()
            raise NotFoundError(f"Network {network_id} is not assigned to hub {hub_id}")
        commit(db, f"network {network_id} on hub {hub_id}")
        route_cache.invalidate("hub network removed")
        logger.info(f"Removed network {network_id} from hub {hub_id}")

    def assign_network_to_gateway(self, db: Session, gateway_id: int, network_id: int) -> GatewayNetwork:
        self.get_gateway(db, gateway_id)
        self.get_network(db, network_id)
        if db.query(GatewayNetwork).filter(
            GatewayNetwork.gateway_id == gateway_id, GatewayNetwork.network_id == network_id
        ).first():
            raise ConflictError(f"Network {network_id} is already assigned to gateway {gateway_id}")

        assignment = GatewayNetwork(gateway_id=gateway_id, network_id=network_id)
        db.add(assignment)
        commit(db, f"network {network_id} on gateway {gateway_id}")
        route_cache.invalidate("gateway network assigned")
        logger.info(f"Assigned network {network_id} to gateway {gateway_id}")
        return assignment

    def unassign_network_from_gateway(self, db: Session, gateway_id: int, network_id: int) -> None:
        deleted = db.query(GatewayNetwork).filter(
            GatewayNetwork.gateway_id == gateway_id, GatewayNetwork.network_id == network_id
        ).delete(synchronize_session=False)
        if not deleted:
            db.rollback()
            raise NotFoundError(f"Network {network_id} is not assigned to gateway {gateway_id}")
        commit(db, f"network {network_id} on gateway {gateway_id}")
        route_cache.invalidate("gateway network removed")
        logger.info(f"Removed network {network_id} from gateway {gateway_id}")

    # ==========================================================================
    # Reachability
    # ==========================================================================

    def _assigned_networks(self, networks: Iterable[Network]) -> List[IPNetwork]:
        return _safe_networks(
            [n.cidr for n in networks if n.is_active], "network assignment"
        )

    def hub_reachability(self, db: Session, hub: MeshHub, now: Optional[datetime] = None) -> Reachability:
        """
        Networks reachable through a hub, with the moment the answer lapses

        Empty unless the hub is online. Otherwise the hub's local networks,
        its active assigned networks and the local networks of its online
        spokes.
        """
        now = now or utcnow()
        if hub_status(hub, now) != NodeStatus.ONLINE:
            return Reachability([], None)

        networks = _safe_networks(hub.local_networks, f"hub {hub.id}")
        networks += self._assigned_networks(self.hub_networks(db, hub.id))
        deadlines = [online_until(hub.last_heartbeat)]

        spokes = db.query(MeshSpoke).filter(MeshSpoke.hub_id == hub.id).all()
        for spoke in spokes:
            if spoke_status(spoke, now) == NodeStatus.ONLINE:
                networks += _safe_networks(spoke.local_networks, f"spoke {spoke.id}")
                deadlines.append(online_until(spoke.last_seen))

        return Reachability(_collapse(networks), _earliest(*deadlines))

    def gateway_reachability(self, db: Session, gateway: Gateway, now: Optional[datetime] = None) -> Reachability:
        now = now or utcnow()
        if gateway_status(gateway, now) != NodeStatus.ONLINE:
            return Reachability([], None)
        networks = self._assigned_networks(self.gateway_networks(db, gateway.id))
        return Reachability(_collapse(networks), online_until(gateway.last_heartbeat))

    def reachable_networks_via_hub(self, db: Session, hub: MeshHub, now: Optional[datetime] = None) -> List[IPNetwork]:
        return self.hub_reachability(db, hub, now).networks

    def reachable_networks_via_gateway(self, db: Session, gateway: Gateway, now: Optional[datetime] = None) -> List[IPNetwork]:
        return self.gateway_reachability(db, gateway, now).networks

    # ==========================================================================
    # Heartbeats
    # ==========================================================================

    def _record(
        self,
        db: Session,
        model,
        entity_id: int,
        timestamp_column,
        status_fn,
        values: Dict[str, Any],
        at: Optional[datetime],
        what: str
    ) -> bool:
        """
        Conditionally advance a heartbeat timestamp

        Only the timestamp and the fields reported with it are written, and only
        when the stored timestamp is older. Returns False for a heartbeat that
        was ignored as stale.
        """
        now = utcnow()
        at = min(at, now) if at else now

        entity = db.query(model).filter(model.id == entity_id).first()
        if not entity:
            raise NotFoundError(f"{what} with id {entity_id} not found")
        before = status_fn(entity, now)

        changes = {timestamp_column: at}
        changes.update(values)
        updated = db.query(model).filter(
            model.id == entity_id,
            or_(timestamp_column.is_(None), timestamp_column < at)
        ).update(changes, synchronize_session=False)
        db.commit()

        if not updated:
            logger.debug(f"Ignored out-of-order heartbeat for {what} {entity_id}")
            return False

        db.refresh(entity)
        after = status_fn(entity, now)
        if after != before:
            route_cache.invalidate(f"{what} {entity_id} {before.value} -> {after.value}")
            logger.info(f"{what} {entity_id} is now {after.value}")
        return True

    def record_hub_heartbeat(
        self,
        db: Session,
        hub_id: int,
        at: Optional[datetime] = None,
        fault: Optional[str] = None
    ) -> bool:
        return self._record(
            db, MeshHub, hub_id, MeshHub.last_heartbeat, hub_status,
            {MeshHub.fault_message: fault or None}, at, "Mesh hub"
        )

    def record_spoke_heartbeat(
        self,
        db: Session,
        spoke_id: int,
        at: Optional[datetime] = None,
        fault: Optional[str] = None,
        remote_ip: Optional[str] = None,
        tunnel_ip: Optional[str] = None
    ) -> bool:
        values = {MeshSpoke.fault_message: fault or None}
        if remote_ip:
            values[MeshSpoke.remote_ip] = remote_ip
        if tunnel_ip:
            values[MeshSpoke.tunnel_ip] = tunnel_ip
        return self._record(
            db, MeshSpoke, spoke_id, MeshSpoke.last_seen, spoke_status,
            values, at, "Mesh spoke"
        )

    def record_gateway_heartbeat(
        self,
        db: Session,
        gateway_id: int,
        at: Optional[datetime] = None,
        fault: Optional[str] = None,
        public_ip: Optional[str] = None,
        client_count: Optional[int] = None
    ) -> bool:
        values = {Gateway.fault_message: fault or None}
        if public_ip:
            values[Gateway.public_ip] = public_ip
        if client_count is not None:
            values[Gateway.client_count] = client_count
        return self._record(
            db, Gateway, gateway_id, Gateway.last_heartbeat, gateway_status,
            values, at, "Gateway"
        )

    # ==========================================================================
    # Admin view
    # ==========================================================================

    def topology_view(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Line-of-sight view of the whole topology for administrators
        Not filtered by any principal's authorization
        """
        now = now or utcnow()
        hubs = []
        connections = []

        for hub in self.list_hubs(db):
            status = hub_status(hub, now)
            spokes = []
            for spoke in db.query(MeshSpoke).filter(MeshSpoke.hub_id == hub.id).order_by(MeshSpoke.name):
                s_status = spoke_status(spoke, now)
                spokes.append({
                    "id": spoke.id,
                    "name": spoke.name,
                    "status": s_status.value,
                    "local_networks": list(spoke.local_networks or []),
                    "tunnel_ip": spoke.tunnel_ip,
                    "remote_ip": spoke.remote_ip,
                    "last_seen": spoke.last_seen,
                })
                connections.append({
                    "hub_id": hub.id,
                    "spoke_id": spoke.id,
                    "status": (
                        NodeStatus.ONLINE.value
                        if status == NodeStatus.ONLINE and s_status == NodeStatus.ONLINE
                        else NodeStatus.OFFLINE.value
                    ),
                })

            hubs.append({
                "id": hub.id,
                "name": hub.name,
                "status": status.value,
                "public_endpoint": hub.public_endpoint,
                "local_networks": list(hub.local_networks or []),
                "networks": [n.name for n in self.hub_networks(db, hub.id)],
                "reachable_networks": [str(n) for n in self.reachable_networks_via_hub(db, hub, now)],
                "last_heartbeat": hub.last_heartbeat,
                "spokes": spokes,
            })

        gateways = []
        for gateway in self.list_gateways(db):
            gateways.append({
                "id": gateway.id,
                "name": gateway.name,
                "status": gateway_status(gateway, now).value,
                "public_endpoint": gateway.public_endpoint,
                "networks": [n.name for n in self.gateway_networks(db, gateway.id)],
                "reachable_networks": [str(n) for n in self.reachable_networks_via_gateway(db, gateway, now)],
                "client_count": gateway.client_count,
                "last_heartbeat": gateway.last_heartbeat,
            })

        return {"hubs": hubs, "gateways": gateways, "connections": connections}


# Singleton instance
topology_graph = TopologyGraph()
