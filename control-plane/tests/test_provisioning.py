import json

import httpx
import pytest

from config import settings
from database.models import MeshSpoke, HubNetwork
from core.agent_client import agent_client
from core.audit import list_events
from core.errors import NotFoundError, ProvisioningFailure, ValidationError
from core.provisioning import provisioning_service
from core.tokens import hash_secret
from core.topology import topology_graph


HUB_CONFIG = {"name": "hub-1", "public_endpoint": "hub.example.com", "local_networks": ["10.10.0.0/16"]}


def test_create_hub_issues_one_time_token(db):
    hub, token = provisioning_service.create_hub(db, HUB_CONFIG)
    assert len(token) >= 43
    assert hub.token_hash == hash_secret(token)
    assert token.startswith(hub.token_prefix)
    assert len(hub.token_prefix) == settings.SECRET_DISPLAY_PREFIX_LENGTH
    # defaults applied
    assert hub.vpn_port == 1194
    assert hub.vpn_protocol == "udp"
    assert hub.crypto_profile == "fips"

    other, other_token = provisioning_service.create_hub(db, {**HUB_CONFIG, "name": "hub-2"})
    assert other_token != token


def test_audit_entry_never_carries_the_token(db):
    hub, token = provisioning_service.create_hub(db, HUB_CONFIG)
    events = list_events(db, target_type="mesh_hub", target_id=hub.id)
    assert [e.event_action for e in events] == ["create"]
    assert token not in events[0].details
    assert json.loads(events[0].details)["token_prefix"] == hub.token_prefix


@pytest.mark.parametrize("config", [
    {"name": "hub-1"},
    {"name": "hub-1", "public_endpoint": "hub.example.com", "vpn_port": 70000},
    {"name": "hub-1", "public_endpoint": "hub.example.com", "vpn_protocol": "sctp"},
    {"name": "hub-1", "public_endpoint": "hub.example.com", "crypto_profile": "rot13"},
    {"name": "hub-1", "public_endpoint": "hub.example.com", "local_networks": ["10.0.0.0"]},
    {"name": "hub-1", "public_endpoint": "hub.example.com", "dns_servers": ["dns.example"]},
    {"name": "hub-1", "public_endpoint": "hub.example.com", "colour": "blue"},
])
def test_create_hub_rejects_invalid_config(db, config):
    with pytest.raises(ValidationError):
        provisioning_service.create_hub(db, config)
    assert topology_graph.list_hubs(db) == []


def test_duplicate_hub_name_rejected(db):
    provisioning_service.create_hub(db, HUB_CONFIG)
    with pytest.raises(ValidationError):
        provisioning_service.create_hub(db, HUB_CONFIG)


def test_update_hub(db):
    hub, _ = provisioning_service.create_hub(db, HUB_CONFIG)
    hub = provisioning_service.update_hub(db, hub.id, {"vpn_port": 443, "vpn_protocol": "TCP"}, expected_version=1)
    assert (hub.vpn_port, hub.vpn_protocol, hub.version) == (443, "tcp", 2)


@pytest.mark.parametrize("field", ["is_active", "tls_auth_enabled", "full_tunnel_mode", "push_dns", "session_enabled"])
def test_update_hub_rejects_null_flags(db, field):
    hub, _ = provisioning_service.create_hub(db, HUB_CONFIG)
    with pytest.raises(ValidationError):
        provisioning_service.update_hub(db, hub.id, {field: None})
    assert topology_graph.get_hub(db, hub.id).version == 1


def test_update_gateway_and_spoke_reject_null_flags(db):
    gateway, _ = provisioning_service.create_gateway(db, {"name": "gw", "public_endpoint": "vpn.example.com"})
    with pytest.raises(ValidationError):
        provisioning_service.update_gateway(db, gateway.id, {"push_dns": None})

    hub, _ = provisioning_service.create_hub(db, HUB_CONFIG)
    spoke, _ = provisioning_service.create_spoke(db, hub.id, {"name": "branch"})
    with pytest.raises(ValidationError):
        provisioning_service.update_spoke(db, spoke.id, {"is_active": None})


def test_delete_hub_cascades_to_spokes(db):
    hub, _ = provisioning_service.create_hub(db, HUB_CONFIG)
    office = topology_graph.create_network(db, "office", "192.168.1.0/24")
    topology_graph.assign_network_to_hub(db, hub.id, office.id)
    s1, _ = provisioning_service.create_spoke(db, hub.id, {"name": "a"})
    s2, _ = provisioning_service.create_spoke(db, hub.id, {"name": "b"})
    spoke_ids = [s1.id, s2.id]

    assert provisioning_service.delete_hub(db, hub.id) == 2

    with pytest.raises(NotFoundError):
        topology_graph.get_hub(db, hub.id)
    for spoke_id in spoke_ids:
        with pytest.raises(NotFoundError):
            topology_graph.get_spoke(db, spoke_id)
    assert db.query(MeshSpoke).count() == 0
    assert db.query(HubNetwork).count() == 0
    # the network itself survives
    assert topology_graph.get_network(db, office.id).name == "office"


def test_spoke_names_unique_per_hub(db):
    h1, _ = provisioning_service.create_hub(db, HUB_CONFIG)
    h2, _ = provisioning_service.create_hub(db, {**HUB_CONFIG, "name": "hub-2"})
    provisioning_service.create_spoke(db, h1.id, {"name": "branch"})
    provisioning_service.create_spoke(db, h2.id, {"name": "branch"})
    with pytest.raises(ValidationError):
        provisioning_service.create_spoke(db, h1.id, {"name": "branch"})
    with pytest.raises(NotFoundError):
        provisioning_service.create_spoke(db, 999, {"name": "orphan"})


def test_authenticate_agent(db):
    hub, hub_token = provisioning_service.create_hub(db, HUB_CONFIG)
    gw, gw_token = provisioning_service.create_gateway(db, {"name": "gw-1", "public_endpoint": "gw.example.com"})

    assert provisioning_service.authenticate_agent(db, "hub", hub_token).id == hub.id
    assert provisioning_service.authenticate_agent(db, "gateway", gw_token).id == gw.id
    # a token only authenticates the kind it was issued for
    with pytest.raises(NotFoundError):
        provisioning_service.authenticate_agent(db, "gateway", hub_token)
    with pytest.raises(NotFoundError):
        provisioning_service.authenticate_agent(db, "hub", "")


def test_provision_signals_agent(db, monkeypatch):
    monkeypatch.setattr(settings, "PROVISIONING_AGENT_URL", "http://installer.test")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(202, json={"accepted": True})

    agent_client.transport = httpx.MockTransport(handler)
    hub, token = provisioning_service.create_hub(db, HUB_CONFIG)

    provisioning_service.provision(db, "hub", hub.id)

    url, payload = seen[0]
    assert url == "http://installer.test/provision"
    assert payload["kind"] == "hub"
    assert payload["id"] == hub.id
    assert payload["heartbeat_url"] == "https://cp.test/api/v1/agent/hub/heartbeat"
    assert token not in json.dumps(payload)


def test_failed_provision_leaves_state_unchanged(db, monkeypatch):
    monkeypatch.setattr(settings, "PROVISIONING_AGENT_URL", "http://installer.test")
    agent_client.transport = httpx.MockTransport(lambda request: httpx.Response(503))
    gw, _ = provisioning_service.create_gateway(db, {"name": "gw-1", "public_endpoint": "gw.example.com"})
    before = (gw.version, gw.token_hash, gw.last_heartbeat)

    with pytest.raises(ProvisioningFailure):
        provisioning_service.provision(db, "gateway", gw.id)

    gw = topology_graph.get_gateway(db, gw.id)
    assert (gw.version, gw.token_hash, gw.last_heartbeat) == before
    failures = [e for e in list_events(db, event_type="gateway") if e.status == "failure"]
    assert len(failures) == 1


def test_provision_without_agent_url_fails(db, monkeypatch):
    monkeypatch.setattr(settings, "PROVISIONING_AGENT_URL", None)
    hub, _ = provisioning_service.create_hub(db, HUB_CONFIG)
    with pytest.raises(ProvisioningFailure):
        provisioning_service.provision(db, "hub", hub.id)
