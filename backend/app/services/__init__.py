"""Services module for deduplication, persistence and cycle orchestration.

This module contains the identifier cache, the dedup engine, the deal store
strategies and the ingestion pipeline that ties them together.
"""

from app.services.deal_cache import CacheEfficiency, IdentifierCache
from app.services.dedup import DedupEngine, DedupPartition
from app.services.deal_store import (
    DealStore,
    LegacyDealStore,
    StoreSummary,
    UpsertDealStore,
    select_deal_store,
)
from app.services.ingestion_pipeline import (
    CrawlStats,
    CycleResult,
    CycleStage,
    IngestionPipeline,
)

__all__ = [
    "CacheEfficiency",
    "IdentifierCache",
    "DedupEngine",
    "DedupPartition",
    "DealStore",
    "LegacyDealStore",
    "StoreSummary",
    "UpsertDealStore",
    "select_deal_store",
    "CrawlStats",
    "CycleResult",
    "CycleStage",
    "IngestionPipeline",
]
