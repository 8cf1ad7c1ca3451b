# control-plane/core/reachability.py
"""
Reachability Resolver - routes a principal may be given through a hub or gateway

A route exists only where authorization and topology agree: the address
range a rule grants is intersected with each network the node can reach
(and with the rule's scope network when it has one). Since CIDR blocks either
nest or are disjoint, each intersection is simply the narrower block. A rule
granting one host inside a broad assigned network yields that single host.
Hostname rules never produce routes.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy.orm import Session

from database.models import utcnow
from .authorization import Principal, Grant, authorization_resolver
from .topology import topology_graph, Reachability
from .rule_matcher import IPNetwork, address_network
from .route_cache import route_cache, make_key

logger = logging.getLogger(__name__)


def overlap(a: IPNetwork, b: IPNetwork) -> Optional[IPNetwork]:
    """Intersection of two CIDR blocks (None when disjoint)"""
    if a.version != b.version:
        return None
    if a.subnet_of(b):
        return a
    if b.subnet_of(a):
        return b
    return None


def drop_subsumed(networks: Iterable[IPNetwork]) -> List[IPNetwork]:
    """Remove networks already covered by a wider network in the same set"""
    kept: List[IPNetwork] = []
    for net in sorted(set(networks), key=lambda n: (n.version, n.prefixlen, n.network_address)):
        if not any(net.version == k.version and net.subnet_of(k) for k in kept):
            kept.append(net)
    return sorted(kept, key=lambda n: (n.version, n.network_address, n.prefixlen))


def _granted_range(grant: Grant) -> Optional[IPNetwork]:
    granted = address_network(grant.compiled.value)
    if granted is None or grant.scope is None:
        return granted
    return overlap(granted, grant.scope)


def intersect(grants: Iterable[Grant], reachable: Iterable[IPNetwork]) -> List[IPNetwork]:
    reachable = list(reachable)
    routes = []
    for grant in grants:
        granted = _granted_range(grant)
        if granted is None:
            continue
        for network in reachable:
            route = overlap(granted, network)
            if route is not None:
                routes.append(route)
    return drop_subsumed(routes)


class ReachabilityResolver:
    """
    Computes per-principal routes for hubs and gateways

    Results are cached by (node, user, groups). The cache is dropped on any
    write, and each entry expires when the earliest node it depends on would
    lapse to offline.
    """

    def _resolve(
        self,
        kind: str,
        node_id: int,
        principal: Principal,
        now: Optional[datetime],
        load_reachability
    ) -> List[IPNetwork]:
        now = now or utcnow()
        key = make_key(kind, node_id, principal.user_id, principal.groups)
        cached = route_cache.get(key, now)
        if cached is not None:
            return list(cached)

        generation = route_cache.generation
        reach = load_reachability(now)
        routes = intersect(reach.grants, reach.networks) if reach.networks else []

        route_cache.put(key, tuple(routes), generation, reach.valid_until)
        logger.debug(f"Resolved {len(routes)} route(s) for {principal.user_id} via {kind} {node_id}")
        return routes

    def compute_routes(
        self,
        db: Session,
        principal: Principal,
        hub_id: int,
        now: Optional[datetime] = None
    ) -> List[IPNetwork]:
        """
        Routes a principal receives through a mesh hub

        Raises:
            NotFoundError: Unknown hub
        """
        def load(at: datetime):
            hub = topology_graph.get_hub(db, hub_id)
            reach = topology_graph.hub_reachability(db, hub, at)
            return _Resolution(authorization_resolver.grants(db, principal), reach)

        return self._resolve("hub", hub_id, principal, now, load)

    def compute_gateway_routes(
        self,
        db: Session,
        principal: Principal,
        gateway_id: int,
        now: Optional[datetime] = None
    ) -> List[IPNetwork]:
        """
        Routes a principal receives through a standalone gateway

        Raises:
            NotFoundError: Unknown gateway
        """
        def load(at: datetime):
            gateway = topology_graph.get_gateway(db, gateway_id)
            reach = topology_graph.gateway_reachability(db, gateway, at)
            return _Resolution(authorization_resolver.grants(db, principal), reach)

        return self._resolve("gateway", gateway_id, principal, now, load)

    def topology_routes(self, db: Session, hub_id: int, now: Optional[datetime] = None) -> List[IPNetwork]:
        """Everything the hub can reach, ignoring authorization (admin view)"""
        hub = topology_graph.get_hub(db, hub_id)
        return topology_graph.reachable_networks_via_hub(db, hub, now)

    # ==========================================================================
    # Firewall rules
    # ==========================================================================

    def _firewall(self, grants: List[Grant], reachable: List[IPNetwork]) -> List[Dict[str, Any]]:
        if not reachable:
            return []

        entries = []
        for grant in grants:
            rule = grant.rule
            base = {
                "rule_id": rule.id,
                "rule_name": rule.name,
                "type": rule.rule_type,
                "port_range": str(grant.compiled.ports) if grant.compiled.ports else "*",
                "protocol": grant.compiled.protocol or "*",
                "action": "allow",
            }

            granted = address_network(grant.compiled.value)
            if granted is not None:
                granted = _granted_range(grant)
                if granted is None:
                    continue
                destinations = drop_subsumed(
                    route for route in (overlap(granted, n) for n in reachable) if route is not None
                )
                for destination in destinations:
                    entries.append({**base, "destination": str(destination)})
                continue

            # hostname rules: unscoped, or scoped to something this node reaches
            if grant.scope is None or any(overlap(grant.scope, n) for n in reachable):
                entries.append({**base, "destination": rule.value.strip().lower()})

        return entries

    def firewall_rules(
        self,
        db: Session,
        principal: Principal,
        hub_id: int,
        now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Allowed destinations for the data-plane enforcer on a hub
        Anything not listed is denied
        """
        hub = topology_graph.get_hub(db, hub_id)
        reachable = topology_graph.reachable_networks_via_hub(db, hub, now)
        return self._firewall(authorization_resolver.grants(db, principal), reachable)

    def gateway_firewall_rules(
        self,
        db: Session,
        principal: Principal,
        gateway_id: int,
        now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        gateway = topology_graph.get_gateway(db, gateway_id)
        reachable = topology_graph.reachable_networks_via_gateway(db, gateway, now)
        return self._firewall(authorization_resolver.grants(db, principal), reachable)


class _Resolution:
    """Grants and reachability read together for one resolution"""

    def __init__(self, grants: List[Grant], reach: Reachability):
        self.grants = grants
        self.networks = reach.networks
        self.valid_until = reach.valid_until


# Singleton instance
reachability_resolver = ReachabilityResolver()
