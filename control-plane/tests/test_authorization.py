import pytest

from core.access_rule_manager import access_rule_manager
from core.authorization import Principal, authorization_resolver
from core.errors import ConflictError, NotFoundError, ValidationError
from core.rule_matcher import Target
from core.topology import topology_graph


def test_principal_normalizes_groups():
    p = Principal(user_id="alice", groups=frozenset({" eng ", "", "ops"}))
    assert p.groups == frozenset({"eng", "ops"})


def test_effective_rules_are_union_of_user_and_group_assignments(db):
    direct = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    shared = access_rule_manager.create_rule(db, "wiki", "hostname", "wiki.internal")
    access_rule_manager.create_rule(db, "unassigned", "cidr", "10.0.0.0/8")
    access_rule_manager.assign_to_user(db, direct.id, "alice")
    access_rule_manager.assign_to_group(db, shared.id, "eng")

    alice = Principal(user_id="alice", groups=frozenset({"eng"}))
    names = [r.name for r in authorization_resolver.effective_rules(db, alice)]
    assert names == ["db", "wiki"]

    bob = Principal(user_id="bob", groups=frozenset({"eng"}))
    assert [r.name for r in authorization_resolver.effective_rules(db, bob)] == ["wiki"]

    nobody = Principal(user_id="carol")
    assert authorization_resolver.effective_rules(db, nobody) == []


def test_inactive_rules_grant_nothing(db):
    r = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100", is_active=False)
    access_rule_manager.assign_to_user(db, r.id, "alice")
    alice = Principal(user_id="alice")
    assert not authorization_resolver.is_authorized(db, alice, Target(address="192.168.1.100"))


def test_is_authorized_and_explain(db):
    r1 = access_rule_manager.create_rule(db, "web", "hostname_wildcard", "*.example.com",
                                         port_range="443", protocol="tcp")
    r2 = access_rule_manager.create_rule(db, "api", "hostname", "api.example.com")
    access_rule_manager.assign_to_group(db, r1.id, "eng")
    access_rule_manager.assign_to_user(db, r2.id, "alice")

    alice = Principal(user_id="alice", groups=frozenset({"eng"}))
    target = Target(hostname="api.example.com", port=443, protocol="tcp")
    assert authorization_resolver.is_authorized(db, alice, target)
    assert authorization_resolver.explain(db, alice, target) == [r1.id, r2.id]

    # group membership comes from the principal, not from storage
    alice_without_group = Principal(user_id="alice")
    assert authorization_resolver.explain(db, alice_without_group, target) == [r2.id]
    assert not authorization_resolver.is_authorized(
        db, alice_without_group, Target(hostname="www.example.com", port=443, protocol="tcp")
    )


def test_network_scope_is_enforced(db):
    office = topology_graph.create_network(db, "office", "192.168.1.0/24")
    r = access_rule_manager.create_rule(db, "wide", "cidr", "192.168.0.0/16", network_id=office.id)
    access_rule_manager.assign_to_user(db, r.id, "alice")
    alice = Principal(user_id="alice")

    assert authorization_resolver.is_authorized(db, alice, Target(address="192.168.1.20"))
    assert not authorization_resolver.is_authorized(db, alice, Target(address="192.168.2.20"))

    # inactive scope grants nothing
    topology_graph.update_network(db, office.id, {"is_active": False})
    assert not authorization_resolver.is_authorized(db, alice, Target(address="192.168.1.20"))


def test_create_rule_validation(db):
    with pytest.raises(ValidationError):
        access_rule_manager.create_rule(db, "bad", "cidr", "10.0.0.1")
    with pytest.raises(NotFoundError):
        access_rule_manager.create_rule(db, "scoped", "ip", "10.0.0.1", network_id=999)
    access_rule_manager.create_rule(db, "dup", "ip", "10.0.0.1")
    with pytest.raises(ValidationError):
        access_rule_manager.create_rule(db, "dup", "ip", "10.0.0.2")
    assert [r.name for r in access_rule_manager.list_rules(db)] == ["dup"]


def test_update_rule_checks_version_and_validates_whole_rule(db):
    r = access_rule_manager.create_rule(db, "db", "ip", "10.0.0.1")
    assert r.version == 1

    updated = access_rule_manager.update_rule(db, r.id, {"value": "10.0.0.2"}, expected_version=1)
    assert updated.value == "10.0.0.2"
    assert updated.version == 2

    with pytest.raises(ConflictError):
        access_rule_manager.update_rule(db, r.id, {"value": "10.0.0.3"}, expected_version=1)

    # switching the type alone leaves an ip value that is not a CIDR
    with pytest.raises(ValidationError):
        access_rule_manager.update_rule(db, r.id, {"rule_type": "cidr"})
    assert access_rule_manager.get_rule(db, r.id).rule_type == "ip"


def test_assignment_lifecycle(db):
    r = access_rule_manager.create_rule(db, "db", "ip", "10.0.0.1")
    access_rule_manager.assign_to_user(db, r.id, "alice")
    access_rule_manager.assign_to_group(db, r.id, "eng")
    with pytest.raises(ConflictError):
        access_rule_manager.assign_to_user(db, r.id, "alice")

    assert access_rule_manager.get_assignments(db, r.id) == {"users": ["alice"], "groups": ["eng"]}

    access_rule_manager.unassign_from_user(db, r.id, "alice")
    with pytest.raises(NotFoundError):
        access_rule_manager.unassign_from_user(db, r.id, "alice")

    access_rule_manager.delete_rule(db, r.id)
    with pytest.raises(NotFoundError):
        access_rule_manager.get_rule(db, r.id)
    assert authorization_resolver.effective_rules(db, Principal(user_id="x", groups=frozenset({"eng"}))) == []


def test_update_rule_rejects_null_active_flag(db):
    rule = access_rule_manager.create_rule(db, "db", "ip", "10.0.0.1")
    with pytest.raises(ValidationError):
        access_rule_manager.update_rule(db, rule.id, {"is_active": None})
    assert access_rule_manager.get_rule(db, rule.id).is_active is True
