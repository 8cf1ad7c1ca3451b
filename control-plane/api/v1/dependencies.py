# control-plane/api/v1/dependencies.py
"""
Shared FastAPI dependencies: admin auth, principal extraction, agent tokens
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from core.authorization import Principal
from config import settings

logger = logging.getLogger(__name__)


async def verify_admin_token(x_admin_token: str = Header(..., alias="X-Admin-Token")):
    """
    Verify admin authentication token
    """
    if not hmac.compare_digest(x_admin_token.encode(), settings.ADMIN_SECRET.encode()):
        logger.warning("Invalid admin token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "Invalid or missing admin token",
                "error_code": "UNAUTHORIZED"
            },
            headers={"WWW-Authenticate": "Bearer"}
        )
    return True


async def get_principal(
    x_user_id: str = Header(..., alias="X-User-Id"),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_groups: Optional[str] = Header(None, alias="X-User-Groups"),
) -> Principal:
    """
    Principal asserted by the identity-aware proxy in front of the API

    Groups arrive comma-separated and are read fresh on every request.
    """
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Missing user identity", "error_code": "UNAUTHENTICATED"}
        )
    groups = [g for g in (x_user_groups or "").split(",") if g.strip()]
    return Principal(user_id=user_id, email=x_user_email, groups=frozenset(groups))


async def get_agent_token(x_agent_token: str = Header(..., alias="X-Agent-Token")) -> str:
    return x_agent_token
