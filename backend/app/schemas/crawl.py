"""Schemas for the crawler administration endpoints."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CacheStatsResponse(BaseModel):
    """Identifier cache counters."""

    total_loaded: int = 0
    duplicates_blocked: int = 0
    new_deals_added: int = 0
    loaded_at: Optional[datetime] = None
    last_update: Optional[datetime] = None
    current_size: int = 0
    uptime_seconds: int = 0


class CacheEfficiencyResponse(BaseModel):
    """Hit/miss rates of the identifier cache, in percent."""

    model_config = ConfigDict(from_attributes=True)

    hit_rate: int = 0
    miss_rate: int = 0
    total_requests: int = 0
    saved_queries: int = 0


# ---------------------------------------------------------------------------
# Cycle
# ---------------------------------------------------------------------------


class LastErrorResponse(BaseModel):
    message: str
    time: datetime
    duration_ms: int = 0


class CycleStatsResponse(BaseModel):
    """Cumulative cycle counters."""

    total_runs: int = 0
    success_runs: int = 0
    failed_runs: int = 0
    total_items: int = 0
    saved_items: int = 0
    skipped_items: int = 0
    last_success: Optional[datetime] = None
    last_crawl: Optional[datetime] = None
    last_error: Optional[LastErrorResponse] = None
    success_rate: int = 0
    avg_saved: int = 0


class CategoryResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    category_name: str
    success: bool
    listings: int = 0
    error: Optional[str] = None
    duration_ms: int = 0


class CycleResultResponse(BaseModel):
    """Summary of one completed crawl cycle."""

    model_config = ConfigDict(from_attributes=True)

    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: int = 0
    categories: List[CategoryResultResponse] = []
    total_listings: int = 0
    built: int = 0
    dropped: int = 0
    unique: int = 0
    duplicates_removed: int = 0
    cache_hits: int = 0
    saved: int = 0
    store_conflicts: int = 0
    price_history_saved: int = 0
    cleanup_ran: bool = False
    cleanup_deleted: int = 0
    saved_deal_ids: List[str] = []


# ---------------------------------------------------------------------------
# Status / stats
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    """Server state plus cycle and cache counters."""

    status: str = "running"
    environment: str
    store_strategy: str
    is_crawling: bool = False
    scheduler: Dict[str, Optional[str]] = {}
    crawl_stats: CycleStatsResponse
    cache: CacheStatsResponse
    cache_efficiency: CacheEfficiencyResponse


class StoreSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    today_count: int = 0
    total_count: int = 0
    with_deal_id_count: int = 0
    deal_id_completion_rate: int = 0


class StatsResponse(BaseModel):
    """Store summary combined with cache and cycle counters."""

    database: StoreSummaryResponse
    cache: CacheStatsResponse
    cache_efficiency: CacheEfficiencyResponse
    crawl_stats: CycleStatsResponse


class CleanupResponse(BaseModel):
    deleted: int
    days: int


class PriceHistoryPoint(BaseModel):
    """Single price history data point."""

    model_config = ConfigDict(from_attributes=True)

    price: int
    original_price: Optional[int] = None
    discount_rate: int = 0
    crawled_at: datetime


class PriceHistoryResponse(BaseModel):
    deal_id: str = Field(..., examples=["939539"])
    history: List[PriceHistoryPoint] = []
