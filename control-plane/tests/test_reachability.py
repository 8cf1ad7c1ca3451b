import ipaddress
from datetime import timedelta

import pytest

from database.models import utcnow
from core.access_rule_manager import access_rule_manager
from core.authorization import Principal, authorization_resolver
from core.errors import NotFoundError
from core.provisioning import provisioning_service
from core.reachability import drop_subsumed, overlap, reachability_resolver
from core.route_cache import RouteCache, make_key, route_cache
from core.rule_matcher import Target
from core.topology import topology_graph

ALICE = Principal(user_id="alice", email="alice@example.com", groups=frozenset({"eng"}))


def nets(*cidrs):
    return [ipaddress.ip_network(c) for c in cidrs]


@pytest.fixture()
def office_hub(db):
    """Online hub with the office LAN assigned"""
    hub, _ = provisioning_service.create_hub(db, {"name": "hub-1", "public_endpoint": "hub.example.com"})
    office = topology_graph.create_network(db, "office", "192.168.1.0/24")
    topology_graph.assign_network_to_hub(db, hub.id, office.id)
    topology_graph.record_hub_heartbeat(db, hub.id)
    return hub, office


def test_overlap_and_drop_subsumed():
    a, b, c = nets("10.0.0.0/8", "10.1.0.0/16", "192.168.0.0/16")
    assert overlap(a, b) == b
    assert overlap(b, a) == b
    assert overlap(a, c) is None
    assert overlap(a, ipaddress.ip_network("fd00::/8")) is None
    assert drop_subsumed([b, a, c, b]) == [a, c]


def test_single_host_rule_inside_assigned_network(db, office_hub):
    hub, _ = office_hub
    rule = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    access_rule_manager.assign_to_user(db, rule.id, "alice")

    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("192.168.1.100/32")


def test_broad_rule_is_narrowed_to_reachable_network(db, office_hub):
    hub, _ = office_hub
    rule = access_rule_manager.create_rule(db, "everything", "cidr", "192.168.0.0/16")
    access_rule_manager.assign_to_group(db, rule.id, "eng")

    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("192.168.1.0/24")


def test_subsumed_routes_are_dropped(db, office_hub):
    hub, _ = office_hub
    host = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    lan = access_rule_manager.create_rule(db, "lan", "cidr", "192.168.1.0/24")
    access_rule_manager.assign_to_user(db, host.id, "alice")
    access_rule_manager.assign_to_user(db, lan.id, "alice")

    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("192.168.1.0/24")


def test_hostname_rules_produce_no_routes(db, office_hub):
    hub, _ = office_hub
    rule = access_rule_manager.create_rule(db, "wiki", "hostname", "wiki.internal")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == []


def test_unreachable_rule_produces_no_route(db, office_hub):
    hub, _ = office_hub
    rule = access_rule_manager.create_rule(db, "elsewhere", "cidr", "10.99.0.0/16")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == []


def test_removing_assignment_removes_route(db, office_hub):
    hub, _ = office_hub
    rule = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("192.168.1.100/32")
    assert len(route_cache) == 1

    access_rule_manager.unassign_from_user(db, rule.id, "alice")
    assert len(route_cache) == 0
    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == []


def test_unassigning_network_from_hub_removes_route(db, office_hub):
    hub, office = office_hub
    rule = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    assert reachability_resolver.compute_routes(db, ALICE, hub.id)

    topology_graph.unassign_network_from_hub(db, hub.id, office.id)
    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == []


def test_routes_lapse_when_hub_goes_silent(db, office_hub):
    hub, _ = office_hub
    rule = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("192.168.1.100/32")

    # cached entry expires with the hub's heartbeat window
    later = utcnow() + timedelta(seconds=121)
    assert reachability_resolver.compute_routes(db, ALICE, hub.id, now=later) == []


def test_group_change_is_a_different_cache_entry(db, office_hub):
    hub, _ = office_hub
    rule = access_rule_manager.create_rule(db, "lan", "cidr", "192.168.1.0/24")
    access_rule_manager.assign_to_group(db, rule.id, "eng")

    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("192.168.1.0/24")
    left_eng = Principal(user_id="alice")
    assert reachability_resolver.compute_routes(db, left_eng, hub.id) == []


def test_spoke_networks_via_hub(db, office_hub):
    hub, _ = office_hub
    spoke, _ = provisioning_service.create_spoke(db, hub.id, {"name": "branch", "local_networks": ["10.20.0.0/16"]})
    rule = access_rule_manager.create_rule(db, "branch", "cidr", "10.20.5.0/24")
    access_rule_manager.assign_to_user(db, rule.id, "alice")

    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == []
    topology_graph.record_spoke_heartbeat(db, spoke.id)
    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("10.20.5.0/24")


def test_scoped_rule_is_limited_to_its_network(db, office_hub):
    hub, office = office_hub
    lab = topology_graph.create_network(db, "lab", "192.168.2.0/24")
    topology_graph.assign_network_to_hub(db, hub.id, lab.id)
    rule = access_rule_manager.create_rule(db, "wide", "cidr", "192.168.0.0/16", network_id=office.id)
    access_rule_manager.assign_to_user(db, rule.id, "alice")

    assert reachability_resolver.compute_routes(db, ALICE, hub.id) == nets("192.168.1.0/24")


def test_every_route_is_reachable_and_authorized(db, office_hub):
    hub, office = office_hub
    lab = topology_graph.create_network(db, "lab", "192.168.2.0/24")
    topology_graph.assign_network_to_hub(db, hub.id, lab.id)
    spoke, _ = provisioning_service.create_spoke(db, hub.id, {"name": "branch", "local_networks": ["10.20.0.0/16"]})
    topology_graph.record_spoke_heartbeat(db, spoke.id)

    rules = [
        access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100"),
        access_rule_manager.create_rule(db, "branch-lan", "cidr", "10.20.5.0/24"),
        access_rule_manager.create_rule(db, "lab-only", "cidr", "192.168.0.0/16", network_id=lab.id),
        access_rule_manager.create_rule(db, "everything", "cidr", "10.0.0.0/8"),
        access_rule_manager.create_rule(db, "elsewhere", "ip", "172.16.0.1"),
        access_rule_manager.create_rule(db, "wiki", "hostname", "wiki.example.com"),
    ]
    for rule in rules[:3]:
        access_rule_manager.assign_to_user(db, rule.id, "alice")
    for rule in rules[3:]:
        access_rule_manager.assign_to_group(db, rule.id, "eng")

    routes = reachability_resolver.compute_routes(db, ALICE, hub.id)
    reachable = topology_graph.reachable_networks_via_hub(db, topology_graph.get_hub(db, hub.id))

    assert routes == nets("10.20.0.0/16", "192.168.1.100/32", "192.168.2.0/24")
    for route in routes:
        assert any(route.subnet_of(network) for network in reachable)
        for address in (route.network_address, route.broadcast_address):
            assert authorization_resolver.is_authorized(db, ALICE, Target(address=str(address)))


def test_unknown_hub_raises(db):
    with pytest.raises(NotFoundError):
        reachability_resolver.compute_routes(db, ALICE, 999)


def test_gateway_routes(db):
    gw, _ = provisioning_service.create_gateway(db, {"name": "gw-1", "public_endpoint": "gw.example.com"})
    office = topology_graph.create_network(db, "office", "192.168.1.0/24")
    topology_graph.assign_network_to_gateway(db, gw.id, office.id)
    rule = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    access_rule_manager.assign_to_user(db, rule.id, "alice")

    assert reachability_resolver.compute_gateway_routes(db, ALICE, gw.id) == []
    topology_graph.record_gateway_heartbeat(db, gw.id)
    assert reachability_resolver.compute_gateway_routes(db, ALICE, gw.id) == nets("192.168.1.100/32")


def test_topology_routes_ignore_authorization(db, office_hub):
    hub, _ = office_hub
    assert reachability_resolver.topology_routes(db, hub.id) == nets("192.168.1.0/24")


def test_firewall_rules(db, office_hub):
    hub, _ = office_hub
    host = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100", port_range="5432", protocol="tcp")
    wiki = access_rule_manager.create_rule(db, "wiki", "hostname", "Wiki.Internal")
    access_rule_manager.create_rule(db, "other", "cidr", "10.0.0.0/8")
    access_rule_manager.assign_to_user(db, host.id, "alice")
    access_rule_manager.assign_to_user(db, wiki.id, "alice")

    entries = reachability_resolver.firewall_rules(db, ALICE, hub.id)
    assert entries == [
        {
            "rule_id": host.id, "rule_name": "db", "type": "ip",
            "port_range": "5432", "protocol": "tcp", "action": "allow",
            "destination": "192.168.1.100/32",
        },
        {
            "rule_id": wiki.id, "rule_name": "wiki", "type": "hostname",
            "port_range": "*", "protocol": "*", "action": "allow",
            "destination": "wiki.internal",
        },
    ]


def test_firewall_rules_empty_when_hub_offline(db):
    hub, _ = provisioning_service.create_hub(db, {"name": "hub-1", "public_endpoint": "hub.example.com"})
    rule = access_rule_manager.create_rule(db, "wiki", "hostname", "wiki.internal")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    assert reachability_resolver.firewall_rules(db, ALICE, hub.id) == []


# ---------------------------------------------------------------------------
# Route cache
# ---------------------------------------------------------------------------

def test_cache_ignores_results_computed_before_invalidation():
    cache = RouteCache()
    key = make_key("hub", 1, "alice", {"eng"})
    generation = cache.generation
    cache.invalidate("concurrent write")
    cache.put(key, ("stale",), generation)
    assert cache.get(key, utcnow()) is None


def test_cache_entry_expires_at_deadline():
    cache = RouteCache()
    key = make_key("hub", 1, "alice", ())
    now = utcnow()
    cache.put(key, ("route",), cache.generation, valid_until=now + timedelta(seconds=5))
    assert cache.get(key, now) == ("route",)
    assert cache.get(key, now + timedelta(seconds=5)) is None
    assert len(cache) == 0


def test_disabled_cache_stores_nothing():
    cache = RouteCache(enabled=False)
    key = make_key("gateway", 1, "alice", ())
    cache.put(key, ("route",), cache.generation)
    assert cache.get(key, utcnow()) is None
