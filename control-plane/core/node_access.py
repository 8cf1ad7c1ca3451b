# control-plane/core/node_access.py
"""
Node Access Lists - which users and groups may use a hub, spoke or gateway

Access lists decide who may open a session on a node and which nodes a user
sees in their own listing. They never widen or narrow routes; routes remain
the intersection of access rules and reachability.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Iterable, Set

from sqlalchemy.orm import Session

from database.models import utcnow, NodeStatus, NodeUserAccess, NodeGroupAccess, MeshHub, MeshSpoke, Gateway
from .errors import ValidationError, NotFoundError, ConflictError
from .authorization import Principal
from .topology import topology_graph, hub_status, spoke_status, gateway_status
from .transactions import commit
from .audit import log_event

logger = logging.getLogger(__name__)

NODE_KINDS = ("hub", "spoke", "gateway")


def _check_kind(kind: str) -> str:
    if kind not in NODE_KINDS:
        raise ValidationError(f"Unknown node kind: {kind!r}")
    return kind


def _clean(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{what} must not be empty")
    return value.strip()


class NodeAccessManager:
    """
    Manages per-node user/group access lists
    """

    # ==========================================================================
    # Assignments
    # ==========================================================================

    def assign_user(
        self,
        db: Session,
        kind: str,
        node_id: int,
        user_id: str,
        actor_id: Optional[str] = None
    ) -> NodeUserAccess:
        """
        Raises:
            NotFoundError: Unknown node
            ConflictError: The user is already on the node's access list
        """
        topology_graph.get_node(db, _check_kind(kind), node_id)
        user_id = _clean(user_id, "User id")

        if db.query(NodeUserAccess).filter(
            NodeUserAccess.node_kind == kind,
            NodeUserAccess.node_id == node_id,
            NodeUserAccess.user_id == user_id
        ).first():
            raise ConflictError(f"User {user_id} already has access to {kind} {node_id}")

        entry = NodeUserAccess(node_kind=kind, node_id=node_id, user_id=user_id)
        db.add(entry)
        commit(db, f"{kind} {node_id} access for user {user_id}")

        log_event(db, "node_access", "create", "admin", actor_id,
                  target_type=kind, target_id=node_id, details={"user_id": user_id})
        logger.info(f"Granted user {user_id} access to {kind} {node_id}")
        return entry

    def assign_group(
        self,
        db: Session,
        kind: str,
        node_id: int,
        group_name: str,
        actor_id: Optional[str] = None
    ) -> NodeGroupAccess:
        topology_graph.get_node(db, _check_kind(kind), node_id)
        group_name = _clean(group_name, "Group name")

        if db.query(NodeGroupAccess).filter(
            NodeGroupAccess.node_kind == kind,
            NodeGroupAccess.node_id == node_id,
            NodeGroupAccess.group_name == group_name
        ).first():
            raise ConflictError(f"Group {group_name} already has access to {kind} {node_id}")

        entry = NodeGroupAccess(node_kind=kind, node_id=node_id, group_name=group_name)
        db.add(entry)
        commit(db, f"{kind} {node_id} access for group {group_name}")

        log_event(db, "node_access", "create", "admin", actor_id,
                  target_type=kind, target_id=node_id, details={"group_name": group_name})
        logger.info(f"Granted group {group_name} access to {kind} {node_id}")
        return entry

    def unassign_user(self, db: Session, kind: str, node_id: int, user_id: str,
                      actor_id: Optional[str] = None) -> None:
        deleted = db.query(NodeUserAccess).filter(
            NodeUserAccess.node_kind == _check_kind(kind),
            NodeUserAccess.node_id == node_id,
            NodeUserAccess.user_id == user_id
        ).delete(synchronize_session=False)
        if not deleted:
            db.rollback()
            raise NotFoundError(f"User {user_id} has no access entry on {kind} {node_id}")
        commit(db, f"{kind} {node_id} access for user {user_id}")

        log_event(db, "node_access", "delete", "admin", actor_id,
                  target_type=kind, target_id=node_id, details={"user_id": user_id})
        logger.info(f"Removed user {user_id} from {kind} {node_id}")

    def unassign_group(self, db: Session, kind: str, node_id: int, group_name: str,
                       actor_id: Optional[str] = None) -> None:
        deleted = db.query(NodeGroupAccess).filter(
            NodeGroupAccess.node_kind == _check_kind(kind),
            NodeGroupAccess.node_id == node_id,
            NodeGroupAccess.group_name == group_name
        ).delete(synchronize_session=False)
        if not deleted:
            db.rollback()
            raise NotFoundError(f"Group {group_name} has no access entry on {kind} {node_id}")
        commit(db, f"{kind} {node_id} access for group {group_name}")

        log_event(db, "node_access", "delete", "admin", actor_id,
                  target_type=kind, target_id=node_id, details={"group_name": group_name})
        logger.info(f"Removed group {group_name} from {kind} {node_id}")

    def get_access(self, db: Session, kind: str, node_id: int) -> Dict[str, List[str]]:
        topology_graph.get_node(db, _check_kind(kind), node_id)
        users = db.query(NodeUserAccess.user_id).filter(
            NodeUserAccess.node_kind == kind, NodeUserAccess.node_id == node_id
        ).order_by(NodeUserAccess.user_id).all()
        groups = db.query(NodeGroupAccess.group_name).filter(
            NodeGroupAccess.node_kind == kind, NodeGroupAccess.node_id == node_id
        ).order_by(NodeGroupAccess.group_name).all()
        return {
            "users": [row[0] for row in users],
            "groups": [row[0] for row in groups],
        }

    def remove_node(self, db: Session, kind: str, node_ids: Iterable[int]) -> None:
        """Drop access entries of deleted nodes; the caller commits"""
        node_ids = list(node_ids)
        if not node_ids:
            return
        for model in (NodeUserAccess, NodeGroupAccess):
            db.query(model).filter(
                model.node_kind == kind, model.node_id.in_(node_ids)
            ).delete(synchronize_session=False)

    # ==========================================================================
    # Queries
    # ==========================================================================

    def accessible_node_ids(self, db: Session, principal: Principal, kind: str) -> Set[int]:
        """Ids of the nodes of one kind the principal is listed on, directly or by group"""
        ids = {row[0] for row in db.query(NodeUserAccess.node_id).filter(
            NodeUserAccess.node_kind == kind,
            NodeUserAccess.user_id == principal.user_id
        ).all()}
        if principal.groups:
            ids |= {row[0] for row in db.query(NodeGroupAccess.node_id).filter(
                NodeGroupAccess.node_kind == kind,
                NodeGroupAccess.group_name.in_(sorted(principal.groups))
            ).all()}
        return ids

    def has_access(self, db: Session, principal: Principal, kind: str, node_id: int) -> bool:
        return node_id in self.accessible_node_ids(db, principal, _check_kind(kind))

    def hubs_for_principal(
        self,
        db: Session,
        principal: Principal,
        online_only: bool = True,
        now: Optional[datetime] = None
    ) -> List[Dict]:
        """
        Hubs the principal may use, each with the spokes the principal is
        listed on
        """
        now = now or utcnow()
        hub_ids = self.accessible_node_ids(db, principal, "hub")
        if not hub_ids:
            return []
        spoke_ids = self.accessible_node_ids(db, principal, "spoke")

        result = []
        hubs = db.query(MeshHub).filter(MeshHub.id.in_(hub_ids)).order_by(MeshHub.name).all()
        for hub in hubs:
            status = hub_status(hub, now)
            if online_only and status != NodeStatus.ONLINE:
                continue
            spokes = []
            if spoke_ids:
                spokes = db.query(MeshSpoke).filter(
                    MeshSpoke.hub_id == hub.id, MeshSpoke.id.in_(spoke_ids)
                ).order_by(MeshSpoke.name).all()
            result.append({
                "hub": hub,
                "status": status,
                "spokes": [(s, spoke_status(s, now)) for s in spokes],
            })
        return result

    def gateways_for_principal(
        self,
        db: Session,
        principal: Principal,
        online_only: bool = True,
        now: Optional[datetime] = None
    ) -> List[Dict]:
        now = now or utcnow()
        gateway_ids = self.accessible_node_ids(db, principal, "gateway")
        if not gateway_ids:
            return []
        gateways = db.query(Gateway).filter(Gateway.id.in_(gateway_ids)).order_by(Gateway.name).all()
        result = []
        for gateway in gateways:
            status = gateway_status(gateway, now)
            if online_only and status != NodeStatus.ONLINE:
                continue
            result.append({"gateway": gateway, "status": status})
        return result


# Singleton instance
node_access_manager = NodeAccessManager()
