# control-plane/core/authorization.py
"""
Authorization Resolver - which access rules apply to a principal

Rules are an allow-list. A principal's effective rules are the union of the
active rules assigned to its user id and the active rules assigned to any of
its groups. There are no deny rules and no precedence.

A rule carrying a network scope only grants targets inside that network; a
scope network that is missing or inactive grants nothing.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Optional, List, FrozenSet, Iterable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from database.models import AccessRule, UserAccessRule, GroupAccessRule, Network
from .rule_matcher import (
    CompiledRule, Target, IPNetwork, compile_rule, compiled_matches
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """
    Authenticated identity as supplied by the identity source
    Trusted as given; groups are taken fresh from every request
    """
    user_id: str
    email: Optional[str] = None
    groups: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(
            self, "groups",
            frozenset(g.strip() for g in (self.groups or ()) if g and g.strip())
        )


@dataclass(frozen=True)
class Grant:
    """An effective rule in usable form"""
    rule: AccessRule
    compiled: CompiledRule
    scope: Optional[IPNetwork] = None

    @property
    def rule_id(self) -> int:
        return self.rule.id

    def permits(self, target: Target) -> bool:
        if not compiled_matches(self.compiled, target):
            return False
        if self.scope is None:
            return True
        ip = target.ip
        return ip is not None and ip.version == self.scope.version and ip in self.scope


class AuthorizationResolver:
    """
    Resolves a principal's effective rules and answers point queries
    """

    def effective_rules(self, db: Session, principal: Principal) -> List[AccessRule]:
        """Active rules assigned to the user or to any of its groups"""
        assigned = [
            AccessRule.id.in_(
                select(UserAccessRule.rule_id).where(
                    UserAccessRule.user_id == principal.user_id
                )
            )
        ]
        if principal.groups:
            assigned.append(
                AccessRule.id.in_(
                    select(GroupAccessRule.rule_id).where(
                        GroupAccessRule.group_name.in_(sorted(principal.groups))
                    )
                )
            )

        return db.query(AccessRule).filter(
            AccessRule.is_active.is_(True),
            or_(*assigned)
        ).order_by(AccessRule.id).all()

    def grants(self, db: Session, principal: Principal) -> List[Grant]:
        """
        Effective rules compiled and paired with their scope network

        Malformed rules and rules whose scope network is missing or inactive
        are dropped.
        """
        rules = self.effective_rules(db, principal)
        return self._to_grants(db, rules)

    def _to_grants(self, db: Session, rules: Iterable[AccessRule]) -> List[Grant]:
        rules = list(rules)
        scope_ids = {r.network_id for r in rules if r.network_id is not None}
        scopes = {}
        if scope_ids:
            for network in db.query(Network).filter(Network.id.in_(scope_ids)).all():
                if not network.is_active:
                    continue
                try:
                    scopes[network.id] = ipaddress.ip_network(network.cidr, strict=False)
                except ValueError:
                    logger.warning(f"Network {network.id} has malformed CIDR {network.cidr!r}")

        grants = []
        for rule in rules:
            compiled = compile_rule(rule)
            if compiled is None:
                continue
            if rule.network_id is not None:
                scope = scopes.get(rule.network_id)
                if scope is None:
                    continue
                grants.append(Grant(rule=rule, compiled=compiled, scope=scope))
            else:
                grants.append(Grant(rule=rule, compiled=compiled))
        return grants

    def is_authorized(self, db: Session, principal: Principal, target: Target) -> bool:
        """True iff any effective rule permits the target"""
        allowed = any(g.permits(target) for g in self.grants(db, principal))
        if not allowed:
            logger.debug(f"No rule grants {principal.user_id} access to {target}")
        return allowed

    def explain(self, db: Session, principal: Principal, target: Target) -> List[int]:
        """Ids of the effective rules that permit the target (admin diagnostics)"""
        return [g.rule_id for g in self.grants(db, principal) if g.permits(target)]


# Singleton instance
authorization_resolver = AuthorizationResolver()
