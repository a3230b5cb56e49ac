"""In-memory identifier cache for duplicate detection.

Holds the deal identifiers known to be stored so a crawl batch can skip
already-seen deals without a database round trip. The cache is owned by the
ingestion pipeline and has no internal locking: every read and write must
happen from the pipeline's cache-filter and cache-update steps.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Set

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class CacheStats:
    """Counters describing cache usage.

    duplicates_blocked and new_deals_added accumulate over the whole process
    lifetime; bulk_load() does not reset them.
    """

    total_loaded: int = 0
    duplicates_blocked: int = 0
    new_deals_added: int = 0
    loaded_at: Optional[datetime] = None
    last_update: Optional[datetime] = None


@dataclass(frozen=True)
class CacheEfficiency:
    hit_rate: int
    miss_rate: int
    total_requests: int
    saved_queries: int


def _percent(part: int, total: int) -> int:
    """Percentage rounded half up, 0 when total is 0."""
    if total <= 0:
        return 0
    return math.floor(part / total * 100 + 0.5)


class IdentifierCache:
    """Set of known deal identifiers with usage statistics."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._ids: Set[str] = set()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stats = CacheStats()
        self.logger = logger.bind(service="identifier_cache")

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, deal_id: object) -> bool:
        # Plain membership without recording a block
        return deal_id in self._ids

    def bulk_load(self, deal_ids: Iterable[str]) -> int:
        """Replace the cached set wholesale.

        Args:
            deal_ids: Identifiers loaded from the store

        Returns:
            Number of identifiers now cached
        """
        self._ids = {deal_id for deal_id in deal_ids if deal_id}
        now = self._clock()
        self._stats.total_loaded = len(self._ids)
        self._stats.loaded_at = now
        self._stats.last_update = now

        self.logger.info("cache_loaded", count=len(self._ids))
        return len(self._ids)

    def contains(self, deal_id: Optional[str]) -> bool:
        """O(1) duplicate check. A hit is counted as a blocked duplicate."""
        if not deal_id:
            return False

        if deal_id in self._ids:
            self._stats.duplicates_blocked += 1
            self._stats.last_update = self._clock()
            return True
        return False

    def add(self, deal_id: Optional[str]) -> bool:
        """Insert an identifier.

        Returns:
            True if newly added, False if empty or already present
        """
        if not deal_id or deal_id in self._ids:
            return False

        self._ids.add(deal_id)
        self._stats.new_deals_added += 1
        self._stats.last_update = self._clock()
        return True

    def add_many(self, deal_ids: Iterable[str]) -> int:
        """Insert identifiers, returning how many were actually new."""
        return sum(1 for deal_id in deal_ids if self.add(deal_id))

    def clear(self) -> None:
        """Empty the cache and reset every counter except last_update."""
        old_size = len(self._ids)
        self._ids = set()
        self._stats = CacheStats(last_update=self._clock())
        self.logger.info("cache_cleared", old_size=old_size)

    def search(self, pattern: str) -> List[str]:
        """Cached identifiers matching a case-insensitive regex, sorted."""
        regex = re.compile(pattern, re.IGNORECASE)
        return sorted(deal_id for deal_id in self._ids if regex.search(deal_id))

    def stats(self) -> dict:
        """Snapshot of counters plus current size and uptime since load."""
        loaded_at = self._stats.loaded_at
        uptime = 0
        if loaded_at:
            uptime = round((self._clock() - loaded_at).total_seconds())

        return {
            "total_loaded": self._stats.total_loaded,
            "duplicates_blocked": self._stats.duplicates_blocked,
            "new_deals_added": self._stats.new_deals_added,
            "loaded_at": loaded_at,
            "last_update": self._stats.last_update,
            "current_size": len(self._ids),
            "uptime_seconds": uptime,
        }

    def efficiency(self) -> CacheEfficiency:
        """Hit/miss rates over the process lifetime."""
        blocked = self._stats.duplicates_blocked
        added = self._stats.new_deals_added
        total = blocked + added
        return CacheEfficiency(
            hit_rate=_percent(blocked, total),
            miss_rate=_percent(added, total),
            total_requests=total,
            saved_queries=blocked,
        )
