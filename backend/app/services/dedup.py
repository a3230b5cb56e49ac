"""Deduplication of crawl batches by deal identifier."""

from dataclasses import dataclass, field
from typing import Iterable, List

import structlog

from app.scrapers.base import Deal
from app.services.deal_cache import IdentifierCache

logger = structlog.get_logger(__name__)


@dataclass
class DedupPartition:
    """Cache-filter result. new + duplicate is exactly the input batch."""

    new: List[Deal] = field(default_factory=list)
    duplicate: List[Deal] = field(default_factory=list)


class DedupEngine:
    """Two dedup passes, applied in order.

    1. dedupe_batch(): one Deal per identifier within a crawl batch; the first
       occurrence wins and later ones are dropped without merging fields.
    2. partition(): split the deduplicated batch against the identifier cache.
       This only saves store writes; the store's conflict policy is the final
       authority on uniqueness.
    """

    def __init__(self, cache: IdentifierCache):
        self.cache = cache
        self.logger = logger.bind(service="dedup_engine")

    @staticmethod
    def dedupe_batch(deals: Iterable[Deal]) -> List[Deal]:
        """Collapse a batch to the first Deal seen per identifier."""
        seen = set()
        unique: List[Deal] = []
        for deal in deals:
            if deal.deal_id in seen:
                continue
            seen.add(deal.deal_id)
            unique.append(deal)
        return unique

    def partition(self, deals: Iterable[Deal]) -> DedupPartition:
        """Split deals into new and already-known by cache lookup."""
        result = DedupPartition()
        for deal in deals:
            if self.cache.contains(deal.deal_id):
                result.duplicate.append(deal)
            else:
                result.new.append(deal)

        self.logger.info(
            "cache_filter_complete",
            new=len(result.new),
            duplicate=len(result.duplicate),
        )
        return result

    def run(self, deals: Iterable[Deal]) -> DedupPartition:
        """Intra-batch dedup followed by the cache filter."""
        return self.partition(self.dedupe_batch(deals))
