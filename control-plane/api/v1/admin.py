# control-plane/api/v1/admin.py
"""
Admin API Endpoints
RESTful API for administrators to manage access rules and topology
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from enum import Enum
from datetime import timedelta
import logging

from database.session import get_db
from database.models import MeshHub, MeshSpoke, Gateway
from schemas.access_rule import (
    AccessRuleCreate,
    AccessRuleUpdate,
    AccessRuleResponse,
    AccessRuleListResponse,
    UserAssignmentRequest,
    GroupAssignmentRequest,
    AssignmentsResponse,
    AuthorizationCheckRequest,
    AuthorizationCheckResponse,
)
from schemas.topology import (
    NetworkCreate,
    NetworkUpdate,
    NetworkResponse,
    NetworkListResponse,
    NetworkAssignmentRequest,
    HubCreate,
    HubUpdate,
    HubResponse,
    HubCreatedResponse,
    HubListResponse,
    SpokeCreate,
    SpokeUpdate,
    SpokeResponse,
    SpokeCreatedResponse,
    SpokeListResponse,
    GatewayCreate,
    GatewayUpdate,
    GatewayResponse,
    GatewayCreatedResponse,
    GatewayListResponse,
    ReachableNetworksResponse,
    TopologyResponse,
    NodeAccessResponse,
)
from schemas.base import MessageResponse, ErrorResponse
from core.access_rule_manager import access_rule_manager
from core.authorization import Principal, authorization_resolver
from core.rule_matcher import Target
from core.topology import topology_graph, hub_status, spoke_status, gateway_status
from core.provisioning import provisioning_service
from core.credentials import credential_lifecycle
from core.node_access import node_access_manager
from core.audit import list_events
from .dependencies import verify_admin_token

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_admin_token)])

ADMIN_ACTOR = "admin"

NOT_FOUND = {404: {"description": "Not found", "model": ErrorResponse}}
CONFLICT = {409: {"description": "Stale version or duplicate", "model": ErrorResponse}}


# === Response builders ===

def hub_to_response(hub: MeshHub) -> dict:
    return dict(
        id=hub.id,
        name=hub.name,
        description=hub.description,
        public_endpoint=hub.public_endpoint,
        vpn_port=hub.vpn_port,
        vpn_protocol=hub.vpn_protocol,
        vpn_subnet=hub.vpn_subnet,
        crypto_profile=hub.crypto_profile,
        tls_auth_enabled=hub.tls_auth_enabled,
        full_tunnel_mode=hub.full_tunnel_mode,
        push_dns=hub.push_dns,
        dns_servers=list(hub.dns_servers or []),
        session_enabled=hub.session_enabled,
        local_networks=list(hub.local_networks or []),
        is_active=hub.is_active,
        status=hub_status(hub).value,
        last_heartbeat=hub.last_heartbeat,
        fault_message=hub.fault_message,
        token_prefix=hub.token_prefix,
        version=hub.version,
        created_at=hub.created_at,
        updated_at=hub.updated_at,
    )


def spoke_to_response(spoke: MeshSpoke) -> dict:
    return dict(
        id=spoke.id,
        hub_id=spoke.hub_id,
        name=spoke.name,
        description=spoke.description,
        local_networks=list(spoke.local_networks or []),
        tunnel_ip=spoke.tunnel_ip,
        remote_ip=spoke.remote_ip,
        is_active=spoke.is_active,
        status=spoke_status(spoke).value,
        last_seen=spoke.last_seen,
        fault_message=spoke.fault_message,
        token_prefix=spoke.token_prefix,
        version=spoke.version,
        created_at=spoke.created_at,
        updated_at=spoke.updated_at,
    )


def gateway_to_response(gateway: Gateway) -> dict:
    return dict(
        id=gateway.id,
        name=gateway.name,
        description=gateway.description,
        public_endpoint=gateway.public_endpoint,
        vpn_port=gateway.vpn_port,
        vpn_protocol=gateway.vpn_protocol,
        crypto_profile=gateway.crypto_profile,
        full_tunnel_mode=gateway.full_tunnel_mode,
        push_dns=gateway.push_dns,
        dns_servers=list(gateway.dns_servers or []),
        is_active=gateway.is_active,
        status=gateway_status(gateway).value,
        last_heartbeat=gateway.last_heartbeat,
        fault_message=gateway.fault_message,
        public_ip=gateway.public_ip,
        client_count=gateway.client_count,
        token_prefix=gateway.token_prefix,
        version=gateway.version,
        created_at=gateway.created_at,
        updated_at=gateway.updated_at,
    )


def _updates(payload) -> dict:
    """Fields explicitly set in a PATCH body, minus the version"""
    data = payload.model_dump(exclude_unset=True, mode="json")
    data.pop("version", None)
    return data


# === Access Rule Endpoints ===

@router.get(
    "/rules",
    response_model=AccessRuleListResponse,
    summary="List access rules"
)
async def list_rules(
    active_only: bool = Query(False, description="Only active rules"),
    rule_type: Optional[str] = Query(None, description="Filter by rule type"),
    network_id: Optional[int] = Query(None, description="Filter by scope network"),
    db: Session = Depends(get_db)
):
    rules = access_rule_manager.list_rules(db, active_only=active_only, rule_type=rule_type, network_id=network_id)
    return AccessRuleListResponse(
        rules=[AccessRuleResponse.model_validate(r) for r in rules],
        total=len(rules)
    )


@router.post(
    "/rules",
    response_model=AccessRuleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}, **NOT_FOUND},
    summary="Create access rule",
    description="Create an allow-list rule. The value is validated against its type."
)
async def create_rule(rule_in: AccessRuleCreate, db: Session = Depends(get_db)):
    rule = access_rule_manager.create_rule(
        db,
        name=rule_in.name,
        rule_type=rule_in.rule_type.value,
        value=rule_in.value,
        port_range=rule_in.port_range,
        protocol=rule_in.protocol,
        network_id=rule_in.network_id,
        description=rule_in.description,
        is_active=rule_in.is_active,
        created_by=ADMIN_ACTOR
    )
    return AccessRuleResponse.model_validate(rule)


@router.get("/rules/{rule_id}", response_model=AccessRuleResponse, responses=NOT_FOUND)
async def get_rule(rule_id: int, db: Session = Depends(get_db)):
    return AccessRuleResponse.model_validate(access_rule_manager.get_rule(db, rule_id))


@router.patch(
    "/rules/{rule_id}",
    response_model=AccessRuleResponse,
    responses={**NOT_FOUND, **CONFLICT},
    summary="Update access rule",
    description="Pass the version you read to guard against concurrent edits"
)
async def update_rule(rule_id: int, rule_in: AccessRuleUpdate, db: Session = Depends(get_db)):
    rule = access_rule_manager.update_rule(
        db, rule_id, _updates(rule_in),
        expected_version=rule_in.version,
        actor_id=ADMIN_ACTOR
    )
    return AccessRuleResponse.model_validate(rule)


@router.delete("/rules/{rule_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def delete_rule(rule_id: int, db: Session = Depends(get_db)):
    access_rule_manager.delete_rule(db, rule_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Access rule {rule_id} deleted")


@router.get("/rules/{rule_id}/assignments", response_model=AssignmentsResponse, responses=NOT_FOUND)
async def get_assignments(rule_id: int, db: Session = Depends(get_db)):
    assignments = access_rule_manager.get_assignments(db, rule_id)
    return AssignmentsResponse(rule_id=rule_id, **assignments)


@router.post(
    "/rules/{rule_id}/users",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**NOT_FOUND, **CONFLICT}
)
async def assign_rule_to_user(rule_id: int, body: UserAssignmentRequest, db: Session = Depends(get_db)):
    access_rule_manager.assign_to_user(db, rule_id, body.user_id)
    return MessageResponse(message=f"Rule {rule_id} assigned to user {body.user_id}")


@router.delete("/rules/{rule_id}/users/{user_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def unassign_rule_from_user(rule_id: int, user_id: str, db: Session = Depends(get_db)):
    access_rule_manager.unassign_from_user(db, rule_id, user_id)
    return MessageResponse(message=f"Rule {rule_id} removed from user {user_id}")


@router.post(
    "/rules/{rule_id}/groups",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**NOT_FOUND, **CONFLICT}
)
async def assign_rule_to_group(rule_id: int, body: GroupAssignmentRequest, db: Session = Depends(get_db)):
    access_rule_manager.assign_to_group(db, rule_id, body.group_name)
    return MessageResponse(message=f"Rule {rule_id} assigned to group {body.group_name}")


@router.delete("/rules/{rule_id}/groups/{group_name}", response_model=MessageResponse, responses=NOT_FOUND)
async def unassign_rule_from_group(rule_id: int, group_name: str, db: Session = Depends(get_db)):
    access_rule_manager.unassign_from_group(db, rule_id, group_name)
    return MessageResponse(message=f"Rule {rule_id} removed from group {group_name}")


@router.post(
    "/authorization/check",
    response_model=AuthorizationCheckResponse,
    summary="Explain an authorization decision",
    description="Diagnostic: lists the rules that would let a principal reach a target"
)
async def check_authorization(body: AuthorizationCheckRequest, db: Session = Depends(get_db)):
    principal = Principal(user_id=body.user_id, email=body.email, groups=frozenset(body.groups))
    target = Target(**body.target.model_dump())
    matching = authorization_resolver.explain(db, principal, target)
    return AuthorizationCheckResponse(allowed=bool(matching), matching_rule_ids=matching)


# === Network Endpoints ===

@router.get("/networks", response_model=NetworkListResponse)
async def list_networks(db: Session = Depends(get_db)):
    networks = topology_graph.list_networks(db)
    return NetworkListResponse(
        networks=[NetworkResponse.model_validate(n) for n in networks],
        total=len(networks)
    )


@router.post("/networks", response_model=NetworkResponse, status_code=status.HTTP_201_CREATED)
async def create_network(network_in: NetworkCreate, db: Session = Depends(get_db)):
    network = topology_graph.create_network(
        db,
        name=network_in.name,
        cidr=network_in.cidr,
        description=network_in.description,
        is_active=network_in.is_active,
        actor_id=ADMIN_ACTOR
    )
    return NetworkResponse.model_validate(network)


@router.get("/networks/{network_id}", response_model=NetworkResponse, responses=NOT_FOUND)
async def get_network(network_id: int, db: Session = Depends(get_db)):
    return NetworkResponse.model_validate(topology_graph.get_network(db, network_id))


@router.patch("/networks/{network_id}", response_model=NetworkResponse, responses={**NOT_FOUND, **CONFLICT})
async def update_network(network_id: int, network_in: NetworkUpdate, db: Session = Depends(get_db)):
    network = topology_graph.update_network(
        db, network_id, _updates(network_in),
        expected_version=network_in.version,
        actor_id=ADMIN_ACTOR
    )
    return NetworkResponse.model_validate(network)


@router.delete("/networks/{network_id}", response_model=MessageResponse, responses={**NOT_FOUND, **CONFLICT})
async def delete_network(network_id: int, db: Session = Depends(get_db)):
    topology_graph.delete_network(db, network_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Network {network_id} deleted")


# === Mesh Hub Endpoints ===

@router.get("/hubs", response_model=HubListResponse)
async def list_hubs(db: Session = Depends(get_db)):
    hubs = topology_graph.list_hubs(db)
    return HubListResponse(hubs=[hub_to_response(h) for h in hubs], total=len(hubs))


@router.post(
    "/hubs",
    response_model=HubCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create mesh hub",
    description="The agent token is included in this response only"
)
async def create_hub(hub_in: HubCreate, db: Session = Depends(get_db)):
    hub, token = provisioning_service.create_hub(db, hub_in.model_dump(mode="json"), actor_id=ADMIN_ACTOR)
    return HubCreatedResponse(**hub_to_response(hub), token=token)


@router.get("/hubs/{hub_id}", response_model=HubResponse, responses=NOT_FOUND)
async def get_hub(hub_id: int, db: Session = Depends(get_db)):
    return hub_to_response(topology_graph.get_hub(db, hub_id))


@router.patch("/hubs/{hub_id}", response_model=HubResponse, responses={**NOT_FOUND, **CONFLICT})
async def update_hub(hub_id: int, hub_in: HubUpdate, db: Session = Depends(get_db)):
    hub = provisioning_service.update_hub(
        db, hub_id, _updates(hub_in),
        expected_version=hub_in.version,
        actor_id=ADMIN_ACTOR
    )
    return hub_to_response(hub)


@router.delete(
    "/hubs/{hub_id}",
    response_model=MessageResponse,
    responses=NOT_FOUND,
    description="Deletes the hub and every spoke attached to it"
)
async def delete_hub(hub_id: int, db: Session = Depends(get_db)):
    removed = provisioning_service.delete_hub(db, hub_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Mesh hub {hub_id} deleted with {removed} spoke(s)")


@router.post(
    "/hubs/{hub_id}/provision",
    response_model=MessageResponse,
    responses={**NOT_FOUND, 502: {"model": ErrorResponse}},
    description="Signals the external install agent; the hub shows online once its agent heartbeats"
)
def provision_hub(hub_id: int, db: Session = Depends(get_db)):
    provisioning_service.provision(db, "hub", hub_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Provisioning requested for hub {hub_id}")


@router.get("/hubs/{hub_id}/reachable-networks", response_model=ReachableNetworksResponse, responses=NOT_FOUND)
async def hub_reachable_networks(hub_id: int, db: Session = Depends(get_db)):
    hub = topology_graph.get_hub(db, hub_id)
    networks = topology_graph.reachable_networks_via_hub(db, hub)
    return ReachableNetworksResponse(
        node_id=hub_id, status=hub_status(hub).value, networks=[str(n) for n in networks]
    )


@router.post(
    "/hubs/{hub_id}/networks",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**NOT_FOUND, **CONFLICT}
)
async def assign_hub_network(hub_id: int, body: NetworkAssignmentRequest, db: Session = Depends(get_db)):
    topology_graph.assign_network_to_hub(db, hub_id, body.network_id)
    return MessageResponse(message=f"Network {body.network_id} assigned to hub {hub_id}")


@router.delete("/hubs/{hub_id}/networks/{network_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def unassign_hub_network(hub_id: int, network_id: int, db: Session = Depends(get_db)):
    topology_graph.unassign_network_from_hub(db, hub_id, network_id)
    return MessageResponse(message=f"Network {network_id} removed from hub {hub_id}")


# === Mesh Spoke Endpoints ===

@router.get("/hubs/{hub_id}/spokes", response_model=SpokeListResponse, responses=NOT_FOUND)
async def list_spokes(hub_id: int, db: Session = Depends(get_db)):
    spokes = topology_graph.list_spokes(db, hub_id)
    return SpokeListResponse(spokes=[spoke_to_response(s) for s in spokes], total=len(spokes))


@router.post(
    "/hubs/{hub_id}/spokes",
    response_model=SpokeCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses=NOT_FOUND,
    description="The agent token is included in this response only"
)
async def create_spoke(hub_id: int, spoke_in: SpokeCreate, db: Session = Depends(get_db)):
    spoke, token = provisioning_service.create_spoke(
        db, hub_id, spoke_in.model_dump(mode="json"), actor_id=ADMIN_ACTOR
    )
    return SpokeCreatedResponse(**spoke_to_response(spoke), token=token)


@router.get("/spokes/{spoke_id}", response_model=SpokeResponse, responses=NOT_FOUND)
async def get_spoke(spoke_id: int, db: Session = Depends(get_db)):
    return spoke_to_response(topology_graph.get_spoke(db, spoke_id))


@router.patch("/spokes/{spoke_id}", response_model=SpokeResponse, responses={**NOT_FOUND, **CONFLICT})
async def update_spoke(spoke_id: int, spoke_in: SpokeUpdate, db: Session = Depends(get_db)):
    spoke = provisioning_service.update_spoke(
        db, spoke_id, _updates(spoke_in),
        expected_version=spoke_in.version,
        actor_id=ADMIN_ACTOR
    )
    return spoke_to_response(spoke)


@router.delete("/spokes/{spoke_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def delete_spoke(spoke_id: int, db: Session = Depends(get_db)):
    provisioning_service.delete_spoke(db, spoke_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Mesh spoke {spoke_id} deleted")


@router.post(
    "/spokes/{spoke_id}/provision",
    response_model=MessageResponse,
    responses={**NOT_FOUND, 502: {"model": ErrorResponse}}
)
def provision_spoke(spoke_id: int, db: Session = Depends(get_db)):
    provisioning_service.provision(db, "spoke", spoke_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Provisioning requested for spoke {spoke_id}")


# === Gateway Endpoints ===

@router.get("/gateways", response_model=GatewayListResponse)
async def list_gateways(db: Session = Depends(get_db)):
    gateways = topology_graph.list_gateways(db)
    return GatewayListResponse(gateways=[gateway_to_response(g) for g in gateways], total=len(gateways))


@router.post(
    "/gateways",
    response_model=GatewayCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    description="The agent token is included in this response only"
)
async def create_gateway(gateway_in: GatewayCreate, db: Session = Depends(get_db)):
    gateway, token = provisioning_service.create_gateway(
        db, gateway_in.model_dump(mode="json"), actor_id=ADMIN_ACTOR
    )
    return GatewayCreatedResponse(**gateway_to_response(gateway), token=token)


@router.get("/gateways/{gateway_id}", response_model=GatewayResponse, responses=NOT_FOUND)
async def get_gateway(gateway_id: int, db: Session = Depends(get_db)):
    return gateway_to_response(topology_graph.get_gateway(db, gateway_id))


@router.patch("/gateways/{gateway_id}", response_model=GatewayResponse, responses={**NOT_FOUND, **CONFLICT})
async def update_gateway(gateway_id: int, gateway_in: GatewayUpdate, db: Session = Depends(get_db)):
    gateway = provisioning_service.update_gateway(
        db, gateway_id, _updates(gateway_in),
        expected_version=gateway_in.version,
        actor_id=ADMIN_ACTOR
    )
    return gateway_to_response(gateway)


@router.delete("/gateways/{gateway_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def delete_gateway(gateway_id: int, db: Session = Depends(get_db)):
    provisioning_service.delete_gateway(db, gateway_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Gateway {gateway_id} deleted")


@router.post(
    "/gateways/{gateway_id}/provision",
    response_model=MessageResponse,
    responses={**NOT_FOUND, 502: {"model": ErrorResponse}}
)
def provision_gateway(gateway_id: int, db: Session = Depends(get_db)):
    provisioning_service.provision(db, "gateway", gateway_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Provisioning requested for gateway {gateway_id}")


@router.get(
    "/gateways/{gateway_id}/reachable-networks",
    response_model=ReachableNetworksResponse,
    responses=NOT_FOUND
)
async def gateway_reachable_networks(gateway_id: int, db: Session = Depends(get_db)):
    gateway = topology_graph.get_gateway(db, gateway_id)
    networks = topology_graph.reachable_networks_via_gateway(db, gateway)
    return ReachableNetworksResponse(
        node_id=gateway_id, status=gateway_status(gateway).value, networks=[str(n) for n in networks]
    )


@router.post(
    "/gateways/{gateway_id}/networks",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**NOT_FOUND, **CONFLICT}
)
async def assign_gateway_network(gateway_id: int, body: NetworkAssignmentRequest, db: Session = Depends(get_db)):
    topology_graph.assign_network_to_gateway(db, gateway_id, body.network_id)
    return MessageResponse(message=f"Network {body.network_id} assigned to gateway {gateway_id}")


@router.delete("/gateways/{gateway_id}/networks/{network_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def unassign_gateway_network(gateway_id: int, network_id: int, db: Session = Depends(get_db)):
    topology_graph.unassign_network_from_gateway(db, gateway_id, network_id)
    return MessageResponse(message=f"Network {network_id} removed from gateway {gateway_id}")


# === Topology & Audit ===

@router.get(
    "/topology",
    response_model=TopologyResponse,
    summary="Topology view",
    description="All hubs, spokes and gateways with derived status and reachable networks"
)
async def get_topology(db: Session = Depends(get_db)):
    return TopologyResponse(**topology_graph.topology_view(db))


@router.get("/audit-logs", summary="Recent audit events")
async def get_audit_logs(
    event_type: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    events = list_events(db, event_type=event_type, target_type=target_type, limit=limit)
    return {
        "events": [
            {
                "id": e.id,
                "event_type": e.event_type,
                "event_action": e.event_action,
                "actor_type": e.actor_type,
                "actor_id": e.actor_id,
                "target_type": e.target_type,
                "target_id": e.target_id,
                "status": e.status,
                "details": e.details,
                "created_at": e.created_at,
            }
            for e in events
        ],
        "total": len(events)
    }


@router.post(
    "/configs/purge",
    response_model=MessageResponse,
    summary="Purge expired session configurations",
    description="Deletes session configurations that expired more than `days` days ago"
)
async def purge_session_configs(
    days: int = Query(0, ge=0, le=3650),
    db: Session = Depends(get_db)
):
    removed = credential_lifecycle.purge_expired_session_configs(db, older_than=timedelta(days=days))
    return MessageResponse(message=f"Purged {removed} expired session configuration(s)")


# === Node Access Lists ===

class NodeCollection(str, Enum):
    HUBS = "hubs"
    SPOKES = "spokes"
    GATEWAYS = "gateways"

    @property
    def kind(self) -> str:
        return self.value[:-1]


@router.get(
    "/{collection}/{node_id}/access",
    response_model=NodeAccessResponse,
    responses=NOT_FOUND,
    summary="Node access list",
    description="Users and groups allowed to open sessions on (and see) a hub, spoke or gateway"
)
async def get_node_access(collection: NodeCollection, node_id: int, db: Session = Depends(get_db)):
    access = node_access_manager.get_access(db, collection.kind, node_id)
    return NodeAccessResponse(node_kind=collection.kind, node_id=node_id, **access)


@router.post(
    "/{collection}/{node_id}/access/users",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**NOT_FOUND, **CONFLICT}
)
async def grant_node_access_to_user(
    collection: NodeCollection,
    node_id: int,
    body: UserAssignmentRequest,
    db: Session = Depends(get_db)
):
    node_access_manager.assign_user(db, collection.kind, node_id, body.user_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"User {body.user_id} may use {collection.kind} {node_id}")


@router.delete("/{collection}/{node_id}/access/users/{user_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def revoke_node_access_from_user(
    collection: NodeCollection,
    node_id: int,
    user_id: str,
    db: Session = Depends(get_db)
):
    node_access_manager.unassign_user(db, collection.kind, node_id, user_id, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"User {user_id} removed from {collection.kind} {node_id}")


@router.post(
    "/{collection}/{node_id}/access/groups",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**NOT_FOUND, **CONFLICT}
)
async def grant_node_access_to_group(
    collection: NodeCollection,
    node_id: int,
    body: GroupAssignmentRequest,
    db: Session = Depends(get_db)
):
    node_access_manager.assign_group(db, collection.kind, node_id, body.group_name, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Group {body.group_name} may use {collection.kind} {node_id}")


@router.delete(
    "/{collection}/{node_id}/access/groups/{group_name}",
    response_model=MessageResponse,
    responses=NOT_FOUND
)
async def revoke_node_access_from_group(
    collection: NodeCollection,
    node_id: int,
    group_name: str,
    db: Session = Depends(get_db)
):
    node_access_manager.unassign_group(db, collection.kind, node_id, group_name, actor_id=ADMIN_ACTOR)
    return MessageResponse(message=f"Group {group_name} removed from {collection.kind} {node_id}")
