# control-plane/core/access_rule_manager.py
"""
Access Rule Manager - administrative lifecycle of access rules

Rules are pure allow-list entries. They reach a principal only through
explicit assignments to a user id or a group name. Every write invalidates
the route cache.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from database.models import AccessRule, UserAccessRule, GroupAccessRule, Network
from .errors import ValidationError, NotFoundError, ConflictError
from .rule_matcher import parse_rule_value, parse_port_range, validate_protocol
from .route_cache import route_cache
from .transactions import commit, check_version, check_flags
from .audit import log_event

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "name", "description", "rule_type", "value",
    "port_range", "protocol", "network_id", "is_active",
)


class AccessRuleManager:
    """
    Manages access rules and their user/group assignments

    Validation happens before anything touches the session, so a rejected
    create or update leaves no partially valid row behind.
    """

    # ==========================================================================
    # Validation
    # ==========================================================================

    def _validate(
        self,
        db: Session,
        rule_type: str,
        value: str,
        port_range: Optional[str],
        protocol: Optional[str],
        network_id: Optional[int]
    ) -> Dict[str, Any]:
        parse_rule_value(rule_type, value)
        parse_port_range(port_range)
        normalized_protocol = validate_protocol(protocol)

        if network_id is not None:
            if not db.query(Network.id).filter(Network.id == network_id).first():
                raise NotFoundError(f"Network with id {network_id} not found")

        return {
            "rule_type": rule_type,
            "value": value.strip(),
            "port_range": port_range.strip() if port_range else None,
            "protocol": normalized_protocol,
            "network_id": network_id,
        }

    def _ensure_unique_name(self, db: Session, name: str, exclude_id: Optional[int] = None):
        query = db.query(AccessRule.id).filter(AccessRule.name == name)
        if exclude_id is not None:
            query = query.filter(AccessRule.id != exclude_id)
        if query.first():
            raise ValidationError(f"Access rule '{name}' already exists")

    # ==========================================================================
    # Rule CRUD
    # ==========================================================================

    def create_rule(
        self,
        db: Session,
        name: str,
        rule_type: str,
        value: str,
        port_range: Optional[str] = None,
        protocol: Optional[str] = None,
        network_id: Optional[int] = None,
        description: Optional[str] = None,
        is_active: bool = True,
        created_by: Optional[str] = None
    ) -> AccessRule:
        """
        Create a new access rule

        Raises:
            ValidationError: Malformed value/port/protocol or duplicate name
            NotFoundError: Scope network does not exist
        """
        if not name or not name.strip():
            raise ValidationError("Rule name must not be empty")
        name = name.strip()
        self._ensure_unique_name(db, name)
        fields = self._validate(db, rule_type, value, port_range, protocol, network_id)

        rule = AccessRule(
            name=name,
            description=description,
            is_active=is_active,
            created_by=created_by,
            **fields
        )
        db.add(rule)
        commit(db, f"access rule '{name}'")
        db.refresh(rule)
        route_cache.invalidate("rule created")

        log_event(
            db,
            event_type="access_rule",
            event_action="create",
            actor_type="admin",
            actor_id=created_by,
            target_type="access_rule",
            target_id=rule.id,
            details={"type": rule.rule_type, "value": rule.value}
        )

        logger.info(f"Created access rule {rule.name}: {rule.rule_type}={rule.value}")
        return rule

    def get_rule(self, db: Session, rule_id: int) -> AccessRule:
        rule = db.query(AccessRule).filter(AccessRule.id == rule_id).first()
        if not rule:
            raise NotFoundError(f"Access rule with id {rule_id} not found")
        return rule

    def list_rules(
        self,
        db: Session,
        active_only: bool = False,
        rule_type: Optional[str] = None,
        network_id: Optional[int] = None
    ) -> List[AccessRule]:
        query = db.query(AccessRule)
        if active_only:
            query = query.filter(AccessRule.is_active.is_(True))
        if rule_type:
            query = query.filter(AccessRule.rule_type == rule_type)
        if network_id is not None:
            query = query.filter(AccessRule.network_id == network_id)
        return query.order_by(AccessRule.name).all()

    def update_rule(
        self,
        db: Session,
        rule_id: int,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None,
        actor_id: Optional[str] = None
    ) -> AccessRule:
        """
        Update a rule; the resulting rule is validated as a whole

        Raises:
            ConflictError: expected_version is stale or a concurrent write won
        """
        rule = self.get_rule(db, rule_id)
        check_version(rule, expected_version, f"Access rule {rule_id}")

        unknown = set(updates) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown access rule fields: {', '.join(sorted(unknown))}")

        merged = {field: getattr(rule, field) for field in _UPDATABLE_FIELDS}
        merged.update(updates)
        check_flags(merged, ("is_active",))

        if not merged["name"] or not str(merged["name"]).strip():
            raise ValidationError("Rule name must not be empty")
        merged["name"] = str(merged["name"]).strip()
        if merged["name"] != rule.name:
            self._ensure_unique_name(db, merged["name"], exclude_id=rule.id)

        merged.update(self._validate(
            db,
            merged["rule_type"],
            merged["value"],
            merged["port_range"],
            merged["protocol"],
            merged["network_id"],
        ))

        for field in _UPDATABLE_FIELDS:
            setattr(rule, field, merged[field])

        commit(db, f"access rule {rule_id}")
        db.refresh(rule)
        route_cache.invalidate("rule updated")

        log_event(
            db,
            event_type="access_rule",
            event_action="update",
            actor_type="admin",
            actor_id=actor_id,
            target_type="access_rule",
            target_id=rule.id,
            details={"fields": sorted(updates)}
        )

        logger.info(f"Updated access rule {rule.name} (version {rule.version})")
        return rule

    def delete_rule(self, db: Session, rule_id: int, actor_id: Optional[str] = None) -> None:
        """Delete a rule together with all of its assignments"""
        rule = self.get_rule(db, rule_id)
        name = rule.name

        db.query(UserAccessRule).filter(UserAccessRule.rule_id == rule_id).delete(
            synchronize_session=False
        )
        db.query(GroupAccessRule).filter(GroupAccessRule.rule_id == rule_id).delete(
            synchronize_session=False
        )
        db.delete(rule)
        commit(db, f"access rule {rule_id}")
        route_cache.invalidate("rule deleted")

        log_event(
            db,
            event_type="access_rule",
            event_action="delete",
            actor_type="admin",
            actor_id=actor_id,
            target_type="access_rule",
            target_id=rule_id
        )

        logger.info(f"Deleted access rule {name}")

    # ==========================================================================
    # Assignments
    # ==========================================================================

    def assign_to_user(self, db: Session, rule_id: int, user_id: str) -> UserAccessRule:
        """
        Raises:
            ConflictError: The rule is already assigned to this user
        """
        self.get_rule(db, rule_id)
        if not user_id or not user_id.strip():
            raise ValidationError("User id must not be empty")
        user_id = user_id.strip()

        existing = db.query(UserAccessRule).filter(
            UserAccessRule.rule_id == rule_id,
            UserAccessRule.user_id == user_id
        ).first()
        if existing:
            raise ConflictError(f"Rule {rule_id} is already assigned to user {user_id}")

        assignment = UserAccessRule(rule_id=rule_id, user_id=user_id)
        db.add(assignment)
        commit(db, f"assignment of rule {rule_id} to user {user_id}")
        route_cache.invalidate("user assignment added")

        logger.info(f"Assigned rule {rule_id} to user {user_id}")
        return assignment

    def assign_to_group(self, db: Session, rule_id: int, group_name: str) -> GroupAccessRule:
        """
        Raises:
            ConflictError: The rule is already assigned to this group
        """
        self.get_rule(db, rule_id)
        if not group_name or not group_name.strip():
            raise ValidationError("Group name must not be empty")
        group_name = group_name.strip()

        existing = db.query(GroupAccessRule).filter(
            GroupAccessRule.rule_id == rule_id,
            GroupAccessRule.group_name == group_name
        ).first()
        if existing:
            raise ConflictError(f"Rule {rule_id} is already assigned to group {group_name}")

        assignment = GroupAccessRule(rule_id=rule_id, group_name=group_name)
        db.add(assignment)
        commit(db, f"assignment of rule {rule_id} to group {group_name}")
        route_cache.invalidate("group assignment added")

        logger.info(f"Assigned rule {rule_id} to group {group_name}")
        return assignment

    def unassign_from_user(self, db: Session, rule_id: int, user_id: str) -> None:
        deleted = db.query(UserAccessRule).filter(
            UserAccessRule.rule_id == rule_id,
            UserAccessRule.user_id == user_id
        ).delete(synchronize_session=False)
        if not deleted:
            db.rollback()
            raise NotFoundError(f"Rule {rule_id} is not assigned to user {user_id}")
        commit(db, f"assignment of rule {rule_id} to user {user_id}")
        route_cache.invalidate("user assignment removed")
        logger.info(f"Removed rule {rule_id} from user {user_id}")

    def unassign_from_group(self, db: Session, rule_id: int, group_name: str) -> None:
        deleted = db.query(GroupAccessRule).filter(
            GroupAccessRule.rule_id == rule_id,
            GroupAccessRule.group_name == group_name
        ).delete(synchronize_session=False)
        if not deleted:
            db.rollback()
            raise NotFoundError(f"Rule {rule_id} is not assigned to group {group_name}")
        commit(db, f"assignment of rule {rule_id} to group {group_name}")
        route_cache.invalidate("group assignment removed")
        logger.info(f"Removed rule {rule_id} from group {group_name}")

    def get_assignments(self, db: Session, rule_id: int) -> Dict[str, List[str]]:
        self.get_rule(db, rule_id)
        users = db.query(UserAccessRule.user_id).filter(
            UserAccessRule.rule_id == rule_id
        ).order_by(UserAccessRule.user_id).all()
        groups = db.query(GroupAccessRule.group_name).filter(
            GroupAccessRule.rule_id == rule_id
        ).order_by(GroupAccessRule.group_name).all()
        return {
            "users": [row[0] for row in users],
            "groups": [row[0] for row in groups],
        }


# Singleton instance
access_rule_manager = AccessRuleManager()
