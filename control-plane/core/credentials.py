# control-plane/core/credentials.py
"""
Credential Lifecycle - API keys and short-lived session configurations

API keys:
    created (raw key returned once) -> used -> revoked (terminal)
    Expiry is passive: a key past expires_at is simply inactive.

Session configurations:
    Generated for one principal on one gateway or mesh hub with a fixed TTL.
    Only principals on the node's access list may generate one. The
    download URL embeds a token shown once; expiry is checked when the
    artifact is fetched, nothing purges it in the background.
"""

import ipaddress
import logging
import re
from datetime import datetime, timedelta
from typing import Optional, Tuple, List

import httpx
from sqlalchemy.orm import Session

from database.models import utcnow, APIKey, SessionConfig
from config import settings
from .errors import ValidationError, NotFoundError, ConflictError, AuthorizationDenied, ConfigExpired
from .authorization import Principal
from .reachability import reachability_resolver
from .topology import topology_graph
from .rule_matcher import IPNetwork
from .tokens import issue_secret, hash_secret
from .transactions import commit
from .agent_client import agent_client
from .audit import log_event
from .node_access import node_access_manager

logger = logging.getLogger(__name__)

EXPIRY_PRESETS = {
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "180d": timedelta(days=180),
    "1y": timedelta(days=365),
    "never": None,
}

# OpenVPN data cipher negotiation per crypto profile
DATA_CIPHERS = {
    "fips": "AES-256-GCM",
    "modern": "AES-256-GCM:CHACHA20-POLY1305",
    "compatible": "AES-256-GCM:AES-128-GCM:CHACHA20-POLY1305:AES-256-CBC",
}


def is_active(key: APIKey, now: Optional[datetime] = None) -> bool:
    """Not revoked and not past its expiry"""
    if key.is_revoked:
        return False
    if key.expires_at is None:
        return True
    return key.expires_at > (now or utcnow())


def is_loopback_url(url: str) -> bool:
    """Only plain-http callbacks to the local machine are accepted"""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return False
    if parsed.scheme != "http" or not parsed.host:
        return False
    if parsed.host == "localhost":
        return True
    try:
        return ipaddress.ip_address(parsed.host).is_loopback
    except ValueError:
        return False


def render_route(network: IPNetwork) -> str:
    if network.version == 4:
        return f"route {network.network_address} {network.netmask}"
    return f"route-ipv6 {network}"


def _slug(text: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_.-]+", "-", text).strip("-") or "user"


class CredentialLifecycle:
    """
    Issues, validates and revokes user credentials
    """

    # ==========================================================================
    # API keys
    # ==========================================================================

    def create_api_key(
        self,
        db: Session,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        expires_in: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[APIKey, str]:
        """
        Issue a new API key

        Every call issues a distinct key; nothing is ever reissued.

        Returns:
            Tuple of (key, raw_key); the raw key is never retrievable again

        Raises:
            ValidationError: Unknown expiry preset or empty name
        """
        expires_in = expires_in or settings.DEFAULT_API_KEY_EXPIRY
        if expires_in not in EXPIRY_PRESETS:
            raise ValidationError(
                f"Invalid expiry {expires_in!r}; expected one of {', '.join(EXPIRY_PRESETS)}"
            )
        if not name or not name.strip():
            raise ValidationError("API key name must not be empty")

        now = now or utcnow()
        lifetime = EXPIRY_PRESETS[expires_in]
        secret = issue_secret(settings.API_KEY_PREFIX)

        key = APIKey(
            user_id=user_id,
            name=name.strip(),
            description=description,
            key_hash=secret.hash,
            key_prefix=secret.prefix,
            created_at=now,
            expires_at=now + lifetime if lifetime else None,
        )
        db.add(key)
        commit(db, f"API key for {user_id}")
        db.refresh(key)

        log_event(db, "api_key", "create", "user", user_id,
                  target_type="api_key", target_id=key.id,
                  details={"prefix": key.key_prefix, "expires_in": expires_in})
        logger.info(f"Created API key {key.key_prefix}... for {user_id} (expires: {key.expires_at or 'never'})")
        return key, secret.raw

    def list_api_keys(self, db: Session, user_id: str, include_revoked: bool = True) -> List[APIKey]:
        query = db.query(APIKey).filter(APIKey.user_id == user_id)
        if not include_revoked:
            query = query.filter(APIKey.is_revoked.is_(False))
        return query.order_by(APIKey.created_at.desc(), APIKey.id.desc()).all()

    def active_api_keys(self, db: Session, user_id: str, now: Optional[datetime] = None) -> List[APIKey]:
        now = now or utcnow()
        return [k for k in self.list_api_keys(db, user_id, include_revoked=False) if is_active(k, now)]

    def get_api_key(self, db: Session, key_id: int, user_id: Optional[str] = None) -> APIKey:
        query = db.query(APIKey).filter(APIKey.id == key_id)
        if user_id is not None:
            query = query.filter(APIKey.user_id == user_id)
        key = query.first()
        if not key:
            raise NotFoundError(f"API key with id {key_id} not found")
        return key

    def revoke_api_key(
        self,
        db: Session,
        key_id: int,
        revoked_by: str,
        reason: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> APIKey:
        """
        Revoke a key; there is no way back

        Raises:
            ConflictError: Key already revoked
        """
        key = self.get_api_key(db, key_id, user_id)
        if key.is_revoked:
            raise ConflictError(f"API key {key_id} is already revoked")

        key.is_revoked = True
        key.revoked_at = utcnow()
        key.revoked_by = revoked_by
        key.revocation_reason = reason
        commit(db, f"API key {key_id}")
        db.refresh(key)

        log_event(db, "api_key", "revoke", "user", revoked_by,
                  target_type="api_key", target_id=key_id,
                  details={"reason": reason} if reason else None)
        logger.info(f"Revoked API key {key.key_prefix}... of {key.user_id}")
        return key

    def validate_api_key(
        self,
        db: Session,
        raw_key: str,
        client_ip: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> APIKey:
        """
        Look up a raw key and record its use

        Raises:
            AuthorizationDenied: Unknown, revoked or expired key
        """
        if not raw_key or not raw_key.startswith(settings.API_KEY_PREFIX):
            raise AuthorizationDenied("Invalid API key")

        key = db.query(APIKey).filter(APIKey.key_hash == hash_secret(raw_key)).first()
        if not key:
            raise AuthorizationDenied("Invalid API key")
        if key.is_revoked:
            logger.warning(f"Use of revoked API key {key.key_prefix}...")
            raise AuthorizationDenied("API key has been revoked")

        now = now or utcnow()
        if not is_active(key, now):
            raise AuthorizationDenied("API key has expired")

        key.last_used_at = now
        key.last_used_ip = client_ip
        db.commit()
        return key

    # ==========================================================================
    # Session configurations
    # ==========================================================================

    def download_url(self, token: str) -> str:
        return f"{settings.CONTROL_PLANE_URL.rstrip('/')}{settings.API_PREFIX}/client/configs/download/{token}"

    def render_config(
        self,
        node,
        principal: Principal,
        routes: List[IPNetwork],
        expires_at: datetime,
        kind: str = "gateway"
    ) -> str:
        """Client configuration text for a gateway or mesh hub with the principal's routes"""
        lines = [
            f"# {settings.APP_NAME}",
            f"# User: {principal.email or principal.user_id}",
            f"# {'Mesh hub' if kind == 'hub' else 'Gateway'}: {node.name}",
            f"# Expires: {expires_at.isoformat()}Z",
            "client",
            "dev tun",
            f"proto {node.vpn_protocol}",
            f"remote {node.public_endpoint} {node.vpn_port}",
            "resolv-retry infinite",
            "nobind",
            "persist-key",
            "persist-tun",
            "remote-cert-tls server",
            f"data-ciphers {DATA_CIPHERS.get(node.crypto_profile, DATA_CIPHERS['fips'])}",
            "verb 3",
        ]

        if getattr(node, "tls_auth_enabled", False):
            lines.append("key-direction 1")

        if node.full_tunnel_mode:
            lines.append("redirect-gateway def1 bypass-dhcp")
        else:
            lines.append("route-nopull")
            lines.extend(render_route(route) for route in routes)

        if node.push_dns:
            lines.extend(f"dhcp-option DNS {server}" for server in node.dns_servers or [])

        return "\n".join(lines) + "\n"

    def _session_endpoint(
        self,
        db: Session,
        principal: Principal,
        gateway_id: Optional[int],
        hub_id: Optional[int],
        now: datetime
    ):
        """
        Resolve the node a session is opened on and the principal's routes

        Raises:
            ValidationError: Not exactly one of gateway_id / hub_id, or node inactive
            AuthorizationDenied: Principal not on the node's access list, or
                the hub does not accept client sessions
        """
        if (gateway_id is None) == (hub_id is None):
            raise ValidationError("Exactly one of gateway_id or hub_id is required")

        if hub_id is not None:
            kind, node = "hub", topology_graph.get_hub(db, hub_id)
        else:
            kind, node = "gateway", topology_graph.get_gateway(db, gateway_id)

        if not node.is_active:
            raise ValidationError(f"{kind.capitalize()} {node.name} is not active")
        if kind == "hub" and not node.session_enabled:
            raise AuthorizationDenied(f"Mesh hub {node.name} does not accept client sessions")
        if not node_access_manager.has_access(db, principal, kind, node.id):
            logger.warning(f"Session on {kind} {node.name} denied for {principal.user_id}")
            raise AuthorizationDenied(f"You do not have access to {kind} {node.name}")

        if kind == "hub":
            routes = reachability_resolver.compute_routes(db, principal, node.id, now)
        else:
            routes = reachability_resolver.compute_gateway_routes(db, principal, node.id, now)
        return kind, node, routes

    def generate_session_config(
        self,
        db: Session,
        principal: Principal,
        gateway_id: Optional[int] = None,
        cli_callback_url: Optional[str] = None,
        now: Optional[datetime] = None,
        hub_id: Optional[int] = None
    ) -> Tuple[SessionConfig, str]:
        """
        Generate a session configuration for a principal on a gateway or a mesh hub

        Routes are the principal's full authorized routes through the node.

        Returns:
            Tuple of (artifact, download_token); the token is shown once

        Raises:
            NotFoundError: Unknown gateway or hub
            ValidationError: Inactive node or non-loopback callback URL
            AuthorizationDenied: Principal may not open sessions on the node
        """
        if cli_callback_url and not is_loopback_url(cli_callback_url):
            raise ValidationError("CLI callback URL must be an http URL on the loopback interface")

        now = now or utcnow()
        kind, node, routes = self._session_endpoint(db, principal, gateway_id, hub_id, now)
        expires_at = now + timedelta(hours=settings.SESSION_CONFIG_TTL_HOURS)
        token = issue_secret()

        artifact = SessionConfig(
            user_id=principal.user_id,
            user_email=principal.email,
            node_kind=kind,
            gateway_id=node.id if kind == "gateway" else None,
            hub_id=node.id if kind == "hub" else None,
            node_name=node.name,
            file_name=f"{_slug(node.name)}-{_slug(principal.user_id)}-{now:%Y%m%d%H%M%S}.ovpn",
            config_data=self.render_config(node, principal, routes, expires_at, kind),
            download_token_hash=token.hash,
            cli_callback_url=cli_callback_url,
            created_at=now,
            expires_at=expires_at,
        )
        db.add(artifact)
        commit(db, f"session config for {principal.user_id}")
        db.refresh(artifact)

        log_event(db, "session_config", "create", "user", principal.user_id,
                  target_type=kind, target_id=node.id,
                  details={"config_id": artifact.id, "routes": len(routes)})
        logger.info(
            f"Generated session config {artifact.id} for {principal.user_id} "
            f"on {kind} {node.name} ({len(routes)} routes, expires {expires_at})"
        )
        return artifact, token.raw

    def fetch_session_config(self, db: Session, token: str, now: Optional[datetime] = None) -> SessionConfig:
        """
        Resolve a download token, checking expiry at use

        Raises:
            NotFoundError: Unknown token
            AuthorizationDenied: Artifact was revoked
            ConfigExpired: Artifact is past its expiry
        """
        artifact = db.query(SessionConfig).filter(
            SessionConfig.download_token_hash == hash_secret(token or "")
        ).first()
        if not artifact:
            raise NotFoundError("Session configuration not found")
        if artifact.is_revoked:
            raise AuthorizationDenied("Session configuration has been revoked")

        now = now or utcnow()
        if now >= artifact.expires_at:
            raise ConfigExpired("Session configuration has expired")

        artifact.downloaded_at = now
        db.commit()
        db.refresh(artifact)
        logger.info(f"Session config {artifact.id} downloaded by {artifact.user_id}")
        return artifact

    def list_session_configs(self, db: Session, user_id: str, include_expired: bool = False) -> List[SessionConfig]:
        query = db.query(SessionConfig).filter(SessionConfig.user_id == user_id)
        if not include_expired:
            query = query.filter(SessionConfig.expires_at > utcnow())
        return query.order_by(SessionConfig.created_at.desc(), SessionConfig.id.desc()).all()

    def revoke_session_config(self, db: Session, config_id: int, user_id: Optional[str] = None) -> SessionConfig:
        query = db.query(SessionConfig).filter(SessionConfig.id == config_id)
        if user_id is not None:
            query = query.filter(SessionConfig.user_id == user_id)
        artifact = query.first()
        if not artifact:
            raise NotFoundError(f"Session configuration with id {config_id} not found")
        if artifact.is_revoked:
            raise ConflictError(f"Session configuration {config_id} is already revoked")

        artifact.is_revoked = True
        artifact.revoked_at = utcnow()
        commit(db, f"session config {config_id}")
        db.refresh(artifact)

        log_event(db, "session_config", "revoke", "user", user_id,
                  target_type="session_config", target_id=config_id)
        logger.info(f"Revoked session config {config_id}")
        return artifact

    def purge_expired_session_configs(self, db: Session, older_than: Optional[timedelta] = None) -> int:
        """Operator maintenance: delete artifacts expired for longer than older_than"""
        cutoff = utcnow() - (older_than or timedelta(0))
        count = db.query(SessionConfig).filter(SessionConfig.expires_at < cutoff).delete(
            synchronize_session=False
        )
        db.commit()
        logger.info(f"Purged {count} expired session config(s)")
        return count

    def deliver_to_cli_callback(self, artifact: SessionConfig, download_url: str) -> bool:
        """
        Push the download URL to the CLI waiting on its loopback listener

        Returns False when there is no callback or it could not be reached.
        """
        if not artifact.cli_callback_url:
            return False
        delivered = agent_client.post_callback(
            artifact.cli_callback_url,
            {
                "config_id": artifact.id,
                "file_name": artifact.file_name,
                "download_url": download_url,
                "expires_at": artifact.expires_at.isoformat() + "Z",
            },
        )
        if delivered:
            logger.info(f"Delivered session config {artifact.id} to CLI callback")
        return delivered


# Singleton instance
credential_lifecycle = CredentialLifecycle()
