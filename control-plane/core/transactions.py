# control-plane/core/transactions.py
"""
Write helpers shared by the managers

Every mutating operation ends in exactly one commit. Lost updates surface as
ConflictError: SQLAlchemy raises StaleDataError when the row version moved
under us, IntegrityError when a unique or foreign key constraint fired.
"""

import logging
from typing import Optional, Dict, Any, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


def commit(db: Session, what: str) -> None:
    """Commit the session, mapping concurrency failures to ConflictError"""
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning(f"Concurrent modification of {what}")
        raise ConflictError(f"{what} was modified concurrently; refetch and retry")
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Constraint violation writing {what}: {e.orig}")
        raise ConflictError(f"{what} conflicts with existing data")


def check_version(entity, expected_version: Optional[int], what: str) -> None:
    """Reject an update built from an outdated read"""
    if expected_version is not None and entity.version != expected_version:
        raise ConflictError(
            f"{what} is at version {entity.version}, update was based on {expected_version}",
            details={"current_version": entity.version},
        )


def check_flags(values: Dict[str, Any], fields: Iterable[str]) -> None:
    """
    Reject non-boolean values for NOT NULL flag columns

    An explicit null must fail as invalid input, not as a constraint conflict
    """
    for field in fields:
        if field in values and not isinstance(values[field], bool):
            raise ValidationError(f"{field} must be true or false, got {values[field]!r}")
