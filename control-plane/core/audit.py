# control-plane/core/audit.py
"""
Audit trail for security-relevant control plane events
"""

import json
import logging
from typing import Optional, Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import AuditLog
from config import settings

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    event_type: str,
    event_action: str,
    actor_type: str,
    actor_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    actor_ip: Optional[str] = None,
    status: str = "success",
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Log an audit event; an audit write failure never fails the operation"""
    if not settings.ENABLE_AUDIT_LOG:
        return

    try:
        db.add(AuditLog(
            event_type=event_type,
            event_action=event_action,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_ip=actor_ip,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            status=status,
            details=json.dumps(details, default=str) if details else None
        ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create audit log: {e}")


def list_events(
    db: Session,
    event_type: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    limit: int = 100
) -> list:
    query = db.query(AuditLog)
    if event_type:
        query = query.filter(AuditLog.event_type == event_type)
    if target_type:
        query = query.filter(AuditLog.target_type == target_type)
    if target_id is not None:
        query = query.filter(AuditLog.target_id == str(target_id))
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
