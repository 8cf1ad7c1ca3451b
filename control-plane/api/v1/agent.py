# control-plane/api/v1/agent.py
"""
Agent API Endpoints
Heartbeats from hub, spoke and gateway agents, authenticated by agent token
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from enum import Enum
import logging

from database.session import get_db
from database.models import utcnow
from schemas.topology import HeartbeatRequest, HeartbeatResponse
from schemas.base import ErrorResponse
from core.provisioning import provisioning_service
from core.topology import topology_graph, hub_status, spoke_status, gateway_status
from .dependencies import get_agent_token

logger = logging.getLogger(__name__)

router = APIRouter()


class NodeKind(str, Enum):
    HUB = "hub"
    SPOKE = "spoke"
    GATEWAY = "gateway"


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def get_client_ip(request: Request) -> str:
    """Extract real client IP from request headers"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


@router.post(
    "/{kind}/heartbeat",
    response_model=HeartbeatResponse,
    responses={404: {"description": "Unknown agent token", "model": ErrorResponse}},
    summary="Agent heartbeat",
    description="""
    Agents report liveness periodically.

    A node is online while heartbeats keep arriving within the timeout window.
    Heartbeats older than the latest one recorded are ignored.
    """
)
async def heartbeat(
    kind: NodeKind,
    body: HeartbeatRequest,
    request: Request,
    token: str = Depends(get_agent_token),
    db: Session = Depends(get_db)
):
    node = provisioning_service.authenticate_agent(db, kind.value, token)
    at = _as_naive_utc(body.sent_at) if body.sent_at else None

    if kind == NodeKind.HUB:
        accepted = topology_graph.record_hub_heartbeat(db, node.id, at=at, fault=body.fault)
        status = hub_status(topology_graph.get_hub(db, node.id))
    elif kind == NodeKind.SPOKE:
        accepted = topology_graph.record_spoke_heartbeat(
            db, node.id, at=at, fault=body.fault,
            remote_ip=body.remote_ip or get_client_ip(request),
            tunnel_ip=body.tunnel_ip
        )
        status = spoke_status(topology_graph.get_spoke(db, node.id))
    else:
        accepted = topology_graph.record_gateway_heartbeat(
            db, node.id, at=at, fault=body.fault,
            public_ip=body.remote_ip or get_client_ip(request),
            client_count=body.client_count
        )
        status = gateway_status(topology_graph.get_gateway(db, node.id))

    return HeartbeatResponse(accepted=accepted, status=status.value, server_time=utcnow())
