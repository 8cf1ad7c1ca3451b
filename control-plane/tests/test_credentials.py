import ipaddress
import json
from datetime import timedelta

import httpx
import pytest

from config import settings
from database.models import utcnow
from core.access_rule_manager import access_rule_manager
from core.agent_client import agent_client
from core.authorization import Principal
from core.credentials import credential_lifecycle, is_active, is_loopback_url, render_route
from core.errors import AuthorizationDenied, ConfigExpired, ConflictError, NotFoundError, ValidationError
from core.node_access import node_access_manager
from core.provisioning import provisioning_service
from core.reachability import reachability_resolver
from core.topology import topology_graph

ALICE = Principal(user_id="alice", email="alice@example.com")


@pytest.fixture()
def gateway(db):
    """Online gateway with the office LAN; alice may reach one host on it"""
    gw, _ = provisioning_service.create_gateway(db, {
        "name": "gw-office",
        "public_endpoint": "vpn.example.com",
        "push_dns": True,
        "dns_servers": ["10.0.0.53"],
    })
    office = topology_graph.create_network(db, "office", "192.168.1.0/24")
    topology_graph.assign_network_to_gateway(db, gw.id, office.id)
    topology_graph.record_gateway_heartbeat(db, gw.id)
    rule = access_rule_manager.create_rule(db, "db", "ip", "192.168.1.100")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    node_access_manager.assign_user(db, "gateway", gw.id, "alice")
    return gw


@pytest.fixture()
def hub(db):
    """Online session-enabled hub; alice may reach one /24 of its LAN"""
    hub, _ = provisioning_service.create_hub(db, {
        "name": "hub-1",
        "public_endpoint": "hub.example.com",
        "crypto_profile": "modern",
        "push_dns": True,
        "dns_servers": ["10.10.0.53"],
        "session_enabled": True,
        "local_networks": ["10.10.0.0/16"],
    })
    topology_graph.record_hub_heartbeat(db, hub.id)
    rule = access_rule_manager.create_rule(db, "lab", "cidr", "10.10.5.0/24")
    access_rule_manager.assign_to_user(db, rule.id, "alice")
    node_access_manager.assign_user(db, "hub", hub.id, "alice")
    return hub


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------

def test_create_api_key_with_presets(db):
    now = utcnow()
    key, raw = credential_lifecycle.create_api_key(db, "alice", "ci", expires_in="30d", now=now)
    assert raw.startswith("gk_")
    assert key.key_prefix == raw[:12]
    assert key.expires_at == now + timedelta(days=30)

    forever, _ = credential_lifecycle.create_api_key(db, "alice", "laptop", expires_in="never")
    assert forever.expires_at is None

    default, _ = credential_lifecycle.create_api_key(db, "alice", "default")
    assert default.expires_at - default.created_at == timedelta(days=90)

    with pytest.raises(ValidationError):
        credential_lifecycle.create_api_key(db, "alice", "bad", expires_in="2w")


def test_every_create_issues_a_distinct_key(db):
    _, first = credential_lifecycle.create_api_key(db, "alice", "ci")
    _, second = credential_lifecycle.create_api_key(db, "alice", "ci")
    assert first != second
    assert len(credential_lifecycle.list_api_keys(db, "alice")) == 2


def test_expiry_is_passive(db):
    now = utcnow()
    key, raw = credential_lifecycle.create_api_key(db, "alice", "ci", expires_in="30d", now=now)
    assert is_active(key, now + timedelta(days=29))
    assert not is_active(key, now + timedelta(days=30))
    assert credential_lifecycle.active_api_keys(db, "alice", now=now + timedelta(days=31)) == []
    with pytest.raises(AuthorizationDenied):
        credential_lifecycle.validate_api_key(db, raw, now=now + timedelta(days=31))


def test_revocation_is_terminal(db):
    key, raw = credential_lifecycle.create_api_key(db, "alice", "ci")
    revoked = credential_lifecycle.revoke_api_key(db, key.id, revoked_by="alice", reason="leaked")
    assert revoked.is_revoked
    assert revoked.revocation_reason == "leaked"
    assert not is_active(revoked)

    with pytest.raises(ConflictError):
        credential_lifecycle.revoke_api_key(db, key.id, revoked_by="alice")
    with pytest.raises(AuthorizationDenied):
        credential_lifecycle.validate_api_key(db, raw)
    assert credential_lifecycle.active_api_keys(db, "alice") == []


def test_revoke_is_scoped_to_owner(db):
    key, _ = credential_lifecycle.create_api_key(db, "alice", "ci")
    with pytest.raises(NotFoundError):
        credential_lifecycle.revoke_api_key(db, key.id, revoked_by="bob", user_id="bob")


def test_validate_records_last_use(db):
    key, raw = credential_lifecycle.create_api_key(db, "alice", "ci")
    validated = credential_lifecycle.validate_api_key(db, raw, client_ip="10.0.0.9")
    assert validated.id == key.id
    assert validated.last_used_ip == "10.0.0.9"
    assert validated.last_used_at is not None

    for bad in ("", "gk_unknown", raw[3:]):
        with pytest.raises(AuthorizationDenied):
            credential_lifecycle.validate_api_key(db, bad)


# ---------------------------------------------------------------------------
# Session configurations
# ---------------------------------------------------------------------------

def test_render_route():
    assert render_route(ipaddress.ip_network("192.168.1.100/32")) == "route 192.168.1.100 255.255.255.255"
    assert render_route(ipaddress.ip_network("fd00::/64")) == "route-ipv6 fd00::/64"


def test_loopback_urls():
    assert is_loopback_url("http://127.0.0.1:51820/callback")
    assert is_loopback_url("http://localhost:9999/")
    assert is_loopback_url("http://[::1]:8080/cb")
    assert not is_loopback_url("https://127.0.0.1/cb")
    assert not is_loopback_url("http://10.0.0.1/cb")
    assert not is_loopback_url("http://evil.example/cb")
    assert not is_loopback_url("not a url")


def test_generate_session_config_contains_granted_routes(db, gateway):
    artifact, token = credential_lifecycle.generate_session_config(db, ALICE, gateway.id)
    text = artifact.config_data
    assert "remote vpn.example.com 1194" in text
    assert "route-nopull" in text
    assert "route 192.168.1.100 255.255.255.255" in text
    assert "route 192.168.1.0 255.255.255.0" not in text
    assert "dhcp-option DNS 10.0.0.53" in text
    assert artifact.file_name.endswith(".ovpn")
    assert artifact.expires_at - artifact.created_at == timedelta(hours=settings.SESSION_CONFIG_TTL_HOURS)
    assert token not in text
    assert credential_lifecycle.download_url(token) == f"https://cp.test/api/v1/client/configs/download/{token}"


def test_full_tunnel_gateway_redirects_everything(db, gateway):
    provisioning_service.update_gateway(db, gateway.id, {"full_tunnel_mode": True})
    artifact, _ = credential_lifecycle.generate_session_config(db, ALICE, gateway.id)
    assert "redirect-gateway def1 bypass-dhcp" in artifact.config_data
    assert "route-nopull" not in artifact.config_data


def test_fetch_session_config_checks_expiry_at_use(db, gateway):
    now = utcnow()
    artifact, token = credential_lifecycle.generate_session_config(db, ALICE, gateway.id, now=now)

    fetched = credential_lifecycle.fetch_session_config(db, token, now=now + timedelta(hours=1))
    assert fetched.id == artifact.id
    assert fetched.downloaded_at is not None

    with pytest.raises(ConfigExpired):
        credential_lifecycle.fetch_session_config(db, token, now=artifact.expires_at)
    with pytest.raises(NotFoundError):
        credential_lifecycle.fetch_session_config(db, "unknown-token")


def test_revoked_session_config_cannot_be_fetched(db, gateway):
    artifact, token = credential_lifecycle.generate_session_config(db, ALICE, gateway.id)
    credential_lifecycle.revoke_session_config(db, artifact.id, user_id="alice")
    with pytest.raises(AuthorizationDenied):
        credential_lifecycle.fetch_session_config(db, token)
    with pytest.raises(ConflictError):
        credential_lifecycle.revoke_session_config(db, artifact.id, user_id="alice")


def test_generate_rejects_non_loopback_callback_and_inactive_gateway(db, gateway):
    with pytest.raises(ValidationError):
        credential_lifecycle.generate_session_config(db, ALICE, gateway.id, cli_callback_url="http://10.0.0.1/cb")

    provisioning_service.update_gateway(db, gateway.id, {"is_active": False})
    with pytest.raises(ValidationError):
        credential_lifecycle.generate_session_config(db, ALICE, gateway.id)
    with pytest.raises(NotFoundError):
        credential_lifecycle.generate_session_config(db, ALICE, 999)


def test_list_and_purge_session_configs(db, gateway):
    old, _ = credential_lifecycle.generate_session_config(db, ALICE, gateway.id, now=utcnow() - timedelta(days=3))
    current, _ = credential_lifecycle.generate_session_config(db, ALICE, gateway.id)

    assert [c.id for c in credential_lifecycle.list_session_configs(db, "alice")] == [current.id]
    assert len(credential_lifecycle.list_session_configs(db, "alice", include_expired=True)) == 2

    assert credential_lifecycle.purge_expired_session_configs(db) == 1
    assert len(credential_lifecycle.list_session_configs(db, "alice", include_expired=True)) == 1


def test_deliver_to_cli_callback(db, gateway):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(200)

    agent_client.transport = httpx.MockTransport(handler)
    artifact, token = credential_lifecycle.generate_session_config(
        db, ALICE, gateway.id, cli_callback_url="http://127.0.0.1:8765/callback"
    )
    url = credential_lifecycle.download_url(token)

    assert credential_lifecycle.deliver_to_cli_callback(artifact, url)
    assert received[0]["download_url"] == url
    assert received[0]["config_id"] == artifact.id


def test_unreachable_cli_callback_is_reported_not_raised(db, gateway):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    agent_client.transport = httpx.MockTransport(handler)
    artifact, token = credential_lifecycle.generate_session_config(
        db, ALICE, gateway.id, cli_callback_url="http://localhost:8765/callback"
    )
    assert not credential_lifecycle.deliver_to_cli_callback(artifact, credential_lifecycle.download_url(token))


# ---------------------------------------------------------------------------
# Mesh hub sessions and access lists
# ---------------------------------------------------------------------------

def test_hub_session_config_uses_hub_routes_and_settings(db, hub):
    artifact, _ = credential_lifecycle.generate_session_config(db, ALICE, hub_id=hub.id)
    text = artifact.config_data

    assert artifact.node_kind == "hub"
    assert artifact.hub_id == hub.id
    assert artifact.gateway_id is None
    assert artifact.node_name == "hub-1"
    assert "# Mesh hub: hub-1" in text
    assert "remote hub.example.com 1194" in text
    assert "data-ciphers AES-256-GCM:CHACHA20-POLY1305" in text
    assert "key-direction 1" in text
    assert "dhcp-option DNS 10.10.0.53" in text

    routes = reachability_resolver.compute_routes(db, ALICE, hub.id)
    assert [str(r) for r in routes] == ["10.10.5.0/24"]
    assert [line for line in text.splitlines() if line.startswith("route ")] == [
        render_route(r) for r in routes
    ]


def test_hub_session_config_full_tunnel_without_tls_auth(db, hub):
    provisioning_service.update_hub(db, hub.id, {"full_tunnel_mode": True, "tls_auth_enabled": False})
    artifact, _ = credential_lifecycle.generate_session_config(db, ALICE, hub_id=hub.id)
    assert "redirect-gateway def1 bypass-dhcp" in artifact.config_data
    assert "route 10.10.5.0 255.255.255.0" not in artifact.config_data
    assert "key-direction 1" not in artifact.config_data


def test_session_requires_node_access(db, hub, gateway):
    bob = Principal(user_id="bob", groups=frozenset({"ops"}))
    with pytest.raises(AuthorizationDenied):
        credential_lifecycle.generate_session_config(db, bob, hub_id=hub.id)
    with pytest.raises(AuthorizationDenied):
        credential_lifecycle.generate_session_config(db, bob, gateway.id)

    node_access_manager.assign_group(db, "hub", hub.id, "ops")
    artifact, _ = credential_lifecycle.generate_session_config(db, bob, hub_id=hub.id)
    assert artifact.user_id == "bob"

    node_access_manager.unassign_user(db, "gateway", gateway.id, "alice")
    with pytest.raises(AuthorizationDenied):
        credential_lifecycle.generate_session_config(db, ALICE, gateway.id)


def test_hub_session_needs_session_enabled_hub(db, hub):
    provisioning_service.update_hub(db, hub.id, {"session_enabled": False})
    with pytest.raises(AuthorizationDenied):
        credential_lifecycle.generate_session_config(db, ALICE, hub_id=hub.id)


def test_session_endpoint_must_be_exactly_one_node(db, hub, gateway):
    with pytest.raises(ValidationError):
        credential_lifecycle.generate_session_config(db, ALICE)
    with pytest.raises(ValidationError):
        credential_lifecycle.generate_session_config(db, ALICE, gateway.id, hub_id=hub.id)
    with pytest.raises(NotFoundError):
        credential_lifecycle.generate_session_config(db, ALICE, hub_id=999)
