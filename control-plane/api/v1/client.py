# control-plane/api/v1/client.py
"""
Client API Endpoints
Routes, firewall rules, API keys and session configurations for an
authenticated principal. The principal is asserted by the identity proxy
via X-User-Id / X-User-Email / X-User-Groups.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
import logging

from database.session import get_db
from database.models import APIKey
from schemas.reachability import RoutesResponse, FirewallRulesResponse, FirewallRuleEntry
from schemas.credentials import (
    APIKeyCreate,
    APIKeyRevoke,
    APIKeyResponse,
    APIKeyCreatedResponse,
    APIKeyListResponse,
    APIKeyValidateRequest,
    APIKeyValidateResponse,
    SessionConfigCreate,
    SessionConfigResponse,
    SessionConfigCreatedResponse,
    SessionConfigListResponse,
    AccessibleHub,
    AccessibleHubListResponse,
    AccessibleGateway,
    AccessibleGatewayListResponse,
)
from schemas.base import ErrorResponse
from core.authorization import Principal
from core.reachability import reachability_resolver
from core.credentials import credential_lifecycle, is_active, render_route
from core.node_access import node_access_manager
from core.errors import NotFoundError, AuthorizationDenied
from .dependencies import get_principal
from .agent import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter()


def api_key_to_response(key: APIKey) -> dict:
    return dict(
        id=key.id,
        user_id=key.user_id,
        name=key.name,
        description=key.description,
        key_prefix=key.key_prefix,
        created_at=key.created_at,
        expires_at=key.expires_at,
        is_active=is_active(key),
        is_revoked=key.is_revoked,
        revoked_at=key.revoked_at,
        revoked_by=key.revoked_by,
        revocation_reason=key.revocation_reason,
        last_used_at=key.last_used_at,
        last_used_ip=key.last_used_ip,
    )


# === Nodes this principal may use ===

@router.get(
    "/hubs",
    response_model=AccessibleHubListResponse,
    summary="My mesh hubs",
    description="Hubs the principal is on the access list of, with the spokes it may use. Online hubs only by default."
)
async def my_hubs(
    online_only: bool = True,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    entries = node_access_manager.hubs_for_principal(db, principal, online_only=online_only)
    hubs = [
        AccessibleHub(
            id=e["hub"].id,
            name=e["hub"].name,
            description=e["hub"].description,
            public_endpoint=e["hub"].public_endpoint,
            status=e["status"].value,
            session_enabled=e["hub"].session_enabled,
            spokes=[
                dict(id=s.id, name=s.name, status=s_status.value, local_networks=list(s.local_networks or []))
                for s, s_status in e["spokes"]
            ],
        )
        for e in entries
    ]
    return AccessibleHubListResponse(hubs=hubs, total=len(hubs))


@router.get("/gateways", response_model=AccessibleGatewayListResponse, summary="My gateways")
async def my_gateways(
    online_only: bool = True,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    entries = node_access_manager.gateways_for_principal(db, principal, online_only=online_only)
    gateways = [
        AccessibleGateway(
            id=e["gateway"].id,
            name=e["gateway"].name,
            description=e["gateway"].description,
            public_endpoint=e["gateway"].public_endpoint,
            status=e["status"].value,
        )
        for e in entries
    ]
    return AccessibleGatewayListResponse(gateways=gateways, total=len(gateways))


# === Routes & Firewall Rules ===
# Unknown nodes and unauthorized principals both get an empty answer, so the
# response never reveals whether a node or a rule exists.

@router.get(
    "/hubs/{hub_id}/routes",
    response_model=RoutesResponse,
    summary="Routes through a hub",
    description="Networks this principal may reach through the hub. Empty when nothing is granted."
)
async def hub_routes(
    hub_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    try:
        routes = reachability_resolver.compute_routes(db, principal, hub_id)
    except (NotFoundError, AuthorizationDenied):
        routes = []
    return RoutesResponse(
        node_id=hub_id,
        routes=[str(r) for r in routes],
        route_lines=[render_route(r) for r in routes]
    )


@router.get("/gateways/{gateway_id}/routes", response_model=RoutesResponse, summary="Routes through a gateway")
async def gateway_routes(
    gateway_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    try:
        routes = reachability_resolver.compute_gateway_routes(db, principal, gateway_id)
    except (NotFoundError, AuthorizationDenied):
        routes = []
    return RoutesResponse(
        node_id=gateway_id,
        routes=[str(r) for r in routes],
        route_lines=[render_route(r) for r in routes]
    )


@router.get("/hubs/{hub_id}/firewall-rules", response_model=FirewallRulesResponse)
async def hub_firewall_rules(
    hub_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    try:
        entries = reachability_resolver.firewall_rules(db, principal, hub_id)
    except (NotFoundError, AuthorizationDenied):
        entries = []
    return FirewallRulesResponse(node_id=hub_id, rules=[FirewallRuleEntry(**e) for e in entries])


@router.get("/gateways/{gateway_id}/firewall-rules", response_model=FirewallRulesResponse)
async def gateway_firewall_rules(
    gateway_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    try:
        entries = reachability_resolver.gateway_firewall_rules(db, principal, gateway_id)
    except (NotFoundError, AuthorizationDenied):
        entries = []
    return FirewallRulesResponse(node_id=gateway_id, rules=[FirewallRuleEntry(**e) for e in entries])


# === API Keys ===

@router.get("/api-keys", response_model=APIKeyListResponse)
async def list_api_keys(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    keys = credential_lifecycle.list_api_keys(db, principal.user_id)
    return APIKeyListResponse(keys=[api_key_to_response(k) for k in keys], total=len(keys))


@router.post(
    "/api-keys",
    response_model=APIKeyCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    description="The raw key is included in this response only"
)
async def create_api_key(
    key_in: APIKeyCreate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    key, raw = credential_lifecycle.create_api_key(
        db,
        user_id=principal.user_id,
        name=key_in.name,
        description=key_in.description,
        expires_in=key_in.expires_in.value
    )
    return APIKeyCreatedResponse(**api_key_to_response(key), api_key=raw)


@router.post(
    "/api-keys/{key_id}/revoke",
    response_model=APIKeyResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}
)
async def revoke_api_key(
    key_id: int,
    body: APIKeyRevoke,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    key = credential_lifecycle.revoke_api_key(
        db, key_id,
        revoked_by=principal.user_id,
        reason=body.reason,
        user_id=principal.user_id
    )
    return api_key_to_response(key)


@router.post(
    "/api-keys/validate",
    response_model=APIKeyValidateResponse,
    responses={403: {"model": ErrorResponse}},
    summary="Validate an API key",
    description="Used by services that accept API keys; records last use"
)
async def validate_api_key(body: APIKeyValidateRequest, request: Request, db: Session = Depends(get_db)):
    key = credential_lifecycle.validate_api_key(db, body.api_key, client_ip=get_client_ip(request))
    return APIKeyValidateResponse(valid=True, user_id=key.user_id, key_id=key.id, expires_at=key.expires_at)


# === Session Configurations ===

@router.post(
    "/configs",
    response_model=SessionConfigCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate session configuration",
    description=(
        "Short-lived VPN client configuration for a gateway or mesh hub the principal is "
        "allowed to use; the download link is shown once"
    )
)
def generate_config(
    body: SessionConfigCreate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    artifact, token = credential_lifecycle.generate_session_config(
        db, principal,
        gateway_id=body.gateway_id,
        hub_id=body.hub_id,
        cli_callback_url=body.cli_callback_url
    )
    url = credential_lifecycle.download_url(token)
    delivered = credential_lifecycle.deliver_to_cli_callback(artifact, url)

    return SessionConfigCreatedResponse(
        **SessionConfigResponse.model_validate(artifact).model_dump(),
        download_url=url,
        cli_delivered=delivered
    )


@router.get("/configs", response_model=SessionConfigListResponse)
async def list_configs(
    include_expired: bool = False,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    configs = credential_lifecycle.list_session_configs(db, principal.user_id, include_expired=include_expired)
    return SessionConfigListResponse(
        configs=[SessionConfigResponse.model_validate(c) for c in configs],
        total=len(configs)
    )


@router.post("/configs/{config_id}/revoke", response_model=SessionConfigResponse)
async def revoke_config(
    config_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db)
):
    artifact = credential_lifecycle.revoke_session_config(db, config_id, user_id=principal.user_id)
    return SessionConfigResponse.model_validate(artifact)


@router.get(
    "/configs/download/{token}",
    response_class=PlainTextResponse,
    responses={
        404: {"model": ErrorResponse},
        410: {"description": "Configuration expired", "model": ErrorResponse},
    },
    summary="Download session configuration"
)
async def download_config(token: str, db: Session = Depends(get_db)):
    artifact = credential_lifecycle.fetch_session_config(db, token)
    return PlainTextResponse(
        content=artifact.config_data,
        headers={"Content-Disposition": f'attachment; filename="{artifact.file_name}"'}
    )
