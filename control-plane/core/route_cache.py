# control-plane/core/route_cache.py
"""
Route Cache - memoized reachability results

Entries are keyed by (node kind, node id, user id, groups). Any write to
rules, assignments, networks or topology bumps the generation and drops
everything. Each entry also carries a deadline: the earliest moment a node it
depends on would lapse to offline without any write happening.

The cache lives in process memory and invalidation does not cross process
boundaries. Run a single worker per database, or set ROUTE_CACHE_ENABLED=false
when serving with several uvicorn workers.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, FrozenSet, Hashable, Optional, Tuple

from config import settings

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, int, str, FrozenSet[str]]


def make_key(kind: str, node_id: int, user_id: str, groups) -> CacheKey:
    return (kind, node_id, user_id, frozenset(groups or ()))


class RouteCache:
    """Thread-safe generation-stamped cache"""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._generation = 0
        self._entries: Dict[Hashable, Tuple[Optional[datetime], Any]] = {}

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: Hashable, now: datetime) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            valid_until, value = entry
            if valid_until is not None and now >= valid_until:
                del self._entries[key]
                return None
            return value

    def put(self, key: Hashable, value: Any, generation: int,
            valid_until: Optional[datetime] = None) -> None:
        """Store a result computed while `generation` was current"""
        if not self.enabled:
            return
        with self._lock:
            if generation != self._generation:
                # invalidated while computing
                return
            self._entries[key] = (valid_until, value)

    def invalidate(self, reason: str = "") -> None:
        with self._lock:
            self._generation += 1
            dropped = len(self._entries)
            self._entries.clear()
        logger.debug(f"Route cache invalidated ({reason or 'write'}), dropped {dropped} entries")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


route_cache = RouteCache(enabled=settings.ROUTE_CACHE_ENABLED)
