# control-plane/core/tokens.py
"""
One-time secret helpers

Raw secrets are returned to the caller exactly once. Only the SHA-256 hex
digest and a short display prefix are ever persisted.
"""

import hashlib
import secrets
from typing import NamedTuple

from config import settings


class IssuedSecret(NamedTuple):
    raw: str
    hash: str
    prefix: str


def hash_secret(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def issue_secret(prefix: str = "") -> IssuedSecret:
    """Generate a 256-bit URL-safe secret"""
    raw = prefix + secrets.token_urlsafe(32)
    return IssuedSecret(
        raw=raw,
        hash=hash_secret(raw),
        prefix=raw[:settings.SECRET_DISPLAY_PREFIX_LENGTH],
    )
