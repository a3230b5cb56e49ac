"""Ingestion pipeline: one crawl cycle from category pages to stored deals.

A cycle moves through these stages:

    FETCHING -> BUILDING -> INTRA_DEDUP -> CACHE_FILTER -> PERSISTING
             -> CACHE_UPDATE -> CLEANUP -> DONE

and ends in FAILED from any stage when it cannot complete. A category that
fails to fetch only loses its own listings; a store write failure fails the
whole cycle and leaves the identifier cache untouched, so only identifiers
the store confirmed ever enter the cache.

The pipeline is not reentrant. The scheduler job runs with max_instances=1
and run_one_cycle() refuses to start while another cycle is running.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from app.config import settings
from app.core.exceptions import (
    AlgumonCrawlerError,
    CycleInProgressError,
    FetchFailure,
    StoreFailure,
)
from app.scrapers.base import CATEGORIES, BaseListingSource, Deal, RawListing
from app.scrapers.record_builder import RecordBuilder
from app.services.deal_cache import IdentifierCache
from app.services.deal_store import DealStore
from app.services.dedup import DedupEngine

logger = structlog.get_logger(__name__)


class CycleStage(str, Enum):
    FETCHING = "fetching"
    BUILDING = "building"
    INTRA_DEDUP = "intra_dedup"
    CACHE_FILTER = "cache_filter"
    PERSISTING = "persisting"
    CACHE_UPDATE = "cache_update"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


@dataclass
class CategoryResult:
    """Outcome of fetching one category page."""

    category: str
    category_name: str
    success: bool
    listings: int = 0
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class CycleResult:
    """Summary of a completed cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: int = 0
    stage: CycleStage = CycleStage.FETCHING
    categories: List[CategoryResult] = field(default_factory=list)
    total_listings: int = 0
    built: int = 0
    dropped: int = 0
    unique: int = 0
    duplicates_removed: int = 0
    cache_hits: int = 0
    submitted: int = 0
    saved: int = 0
    store_conflicts: int = 0
    price_history_saved: int = 0
    cleanup_ran: bool = False
    cleanup_deleted: int = 0
    saved_deal_ids: List[str] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for c in self.categories if c.success)

    @property
    def failure_count(self) -> int:
        return len(self.categories) - self.success_count


@dataclass
class CrawlStats:
    """Cumulative cycle counters shown on the status surface."""

    total_runs: int = 0
    success_runs: int = 0
    failed_runs: int = 0
    total_items: int = 0
    saved_items: int = 0
    skipped_items: int = 0
    last_success: Optional[datetime] = None
    last_crawl: Optional[datetime] = None
    last_error: Optional[Dict[str, Any]] = None

    def record_success(self, result: CycleResult) -> None:
        self.success_runs += 1
        self.total_items += result.unique
        self.saved_items += result.saved
        self.skipped_items += result.cache_hits
        self.last_success = result.finished_at
        self.last_crawl = result.finished_at

    def record_failure(self, message: str, at: datetime, duration_ms: int) -> None:
        self.failed_runs += 1
        self.last_error = {"message": message, "time": at, "duration_ms": duration_ms}

    @property
    def success_rate(self) -> int:
        if self.total_runs <= 0:
            return 0
        return round(self.success_runs / self.total_runs * 100)

    @property
    def avg_saved(self) -> int:
        if self.success_runs <= 0:
            return 0
        return round(self.saved_items / self.success_runs)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "success_runs": self.success_runs,
            "failed_runs": self.failed_runs,
            "total_items": self.total_items,
            "saved_items": self.saved_items,
            "skipped_items": self.skipped_items,
            "last_success": self.last_success,
            "last_crawl": self.last_crawl,
            "last_error": self.last_error,
            "success_rate": self.success_rate,
            "avg_saved": self.avg_saved,
        }


class IngestionPipeline:
    """Orchestrates fetch, build, dedup, persist and cache update.

    The identifier cache is injected and owned by the pipeline: it is read in
    the cache-filter step and written in the cache-update step, never from
    fetch tasks.
    """

    def __init__(
        self,
        source: BaseListingSource,
        store: DealStore,
        cache: IdentifierCache,
        builder: Optional[RecordBuilder] = None,
        categories: Optional[Sequence[str]] = None,
        category_pause_seconds: Optional[float] = None,
        parallel_fetch: Optional[bool] = None,
        retention_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.source = source
        self.store = store
        self.cache = cache
        self.builder = builder or RecordBuilder()
        self.dedup = DedupEngine(cache)
        self.categories = list(categories or CATEGORIES.keys())
        self.category_pause_seconds = (
            settings.CATEGORY_PAUSE_SECONDS if category_pause_seconds is None else category_pause_seconds
        )
        self.parallel_fetch = settings.PARALLEL_FETCH if parallel_fetch is None else parallel_fetch
        self.retention_days = retention_days or settings.RETENTION_DAYS
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

        self.stats = CrawlStats()
        self.stage: Optional[CycleStage] = None
        self._running = False
        self._last_cleanup_day: Optional[date] = None
        self.logger = logger.bind(service="ingestion_pipeline")

    @property
    def is_running(self) -> bool:
        return self._running

    async def warm_cache(self, limit: Optional[int] = None) -> int:
        """Bulk-load the most recent stored identifiers into the cache.

        Raises:
            StoreFailure: If the store cannot be queried
        """
        limit = limit or settings.CACHE_LOAD_LIMIT
        started = time.monotonic()
        deal_ids = await self.store.query_recent_identifiers(limit)
        loaded = self.cache.bulk_load(deal_ids)
        self.logger.info(
            "cache_warmed",
            loaded=loaded,
            limit=limit,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return loaded

    async def run_one_cycle(self) -> CycleResult:
        """Run one full ingestion cycle.

        Returns:
            CycleResult of the completed cycle

        Raises:
            CycleInProgressError: If another cycle is still running
            FetchFailure: If every category failed to fetch
            StoreFailure: If the batch write failed
        """
        if self._running:
            raise CycleInProgressError()

        self._running = True
        self.stats.total_runs += 1
        started = time.monotonic()
        result = CycleResult(started_at=self._clock())
        self.logger.info("cycle_started", started_at=result.started_at.isoformat())

        try:
            await self._run(result)
        except Exception as e:
            failed_stage = self.stage
            self._enter(CycleStage.FAILED, result)
            duration_ms = int((time.monotonic() - started) * 1000)
            if isinstance(e, AlgumonCrawlerError):
                message = e.message
            else:
                message = f"unexpected error during {failed_stage.value if failed_stage else 'startup'}"
            self.stats.record_failure(message, self._clock(), duration_ms)
            self.logger.error(
                "cycle_failed",
                stage=failed_stage.value if failed_stage else None,
                error=str(e),
                duration_ms=duration_ms,
                exc_info=not isinstance(e, AlgumonCrawlerError),
            )
            raise
        finally:
            self._running = False

        result.finished_at = self._clock()
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.stats.record_success(result)

        self.logger.info(
            "cycle_completed",
            categories=result.success_count,
            failed_categories=result.failure_count,
            total=result.unique,
            saved=result.saved,
            cache_hits=result.cache_hits,
            store_conflicts=result.store_conflicts,
            duplicates_removed=result.duplicates_removed,
            dropped=result.dropped,
            duration_ms=result.duration_ms,
        )
        return result

    async def _run(self, result: CycleResult) -> None:
        self._enter(CycleStage.FETCHING, result)
        fetched = await self._fetch_all()
        result.categories = [category_result for category_result, _ in fetched]
        result.total_listings = sum(len(listings) for _, listings in fetched)
        if not any(category_result.success for category_result in result.categories):
            raise FetchFailure("all", "every category failed to fetch")

        self._enter(CycleStage.BUILDING, result)
        deals: List[Deal] = []
        for category_result, listings in fetched:
            for raw in listings:
                deal = self.builder.build(raw, category_result.category)
                if deal is not None:
                    deals.append(deal)
        result.built = len(deals)
        result.dropped = result.total_listings - len(deals)

        self._enter(CycleStage.INTRA_DEDUP, result)
        unique = self.dedup.dedupe_batch(deals)
        result.unique = len(unique)
        result.duplicates_removed = len(deals) - len(unique)

        self._enter(CycleStage.CACHE_FILTER, result)
        partition = self.dedup.partition(unique)
        result.cache_hits = len(partition.duplicate)
        result.submitted = len(partition.new)

        self._enter(CycleStage.PERSISTING, result)
        confirmed: List[str] = []
        if partition.new:
            confirmed = await self.store.upsert_batch(partition.new)
        result.saved = len(confirmed)
        result.store_conflicts = result.submitted - result.saved
        result.saved_deal_ids = list(confirmed)

        self._enter(CycleStage.CACHE_UPDATE, result)
        self.cache.add_many(confirmed)
        result.price_history_saved = await self._save_price_history(partition.new, confirmed)

        now = self._clock()
        if self._should_cleanup(now):
            self._enter(CycleStage.CLEANUP, result)
            result.cleanup_ran = True
            result.cleanup_deleted = await self._cleanup_best_effort()

        self._enter(CycleStage.DONE, result)

    def _enter(self, stage: CycleStage, result: CycleResult) -> None:
        self.stage = stage
        result.stage = stage
        self.logger.debug("cycle_stage", stage=stage.value)

    async def _fetch_all(self) -> List[Tuple[CategoryResult, List[RawListing]]]:
        if self.parallel_fetch:
            return list(await asyncio.gather(
                *(self._fetch_category(category) for category in self.categories)
            ))

        fetched = []
        for index, category in enumerate(self.categories):
            if index > 0 and self.category_pause_seconds > 0:
                await self._sleep(self.category_pause_seconds)
            fetched.append(await self._fetch_category(category))
        return fetched

    async def _fetch_category(self, category: str) -> Tuple[CategoryResult, List[RawListing]]:
        """Fetch one category; failures are captured, never raised."""
        name = CATEGORIES.get(category, "Unknown")
        started = time.monotonic()
        try:
            listings = await self.source.fetch_listings(category)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            message = e.message if isinstance(e, AlgumonCrawlerError) else type(e).__name__
            self.logger.warning(
                "category_fetch_failed",
                category=category,
                category_name=name,
                error=message,
                detail=str(e),
                duration_ms=duration_ms,
            )
            return CategoryResult(
                category=category,
                category_name=name,
                success=False,
                error=message,
                duration_ms=duration_ms,
            ), []

        duration_ms = int((time.monotonic() - started) * 1000)
        return CategoryResult(
            category=category,
            category_name=name,
            success=True,
            listings=len(listings),
            duration_ms=duration_ms,
        ), listings

    async def _save_price_history(self, submitted: List[Deal], confirmed: List[str]) -> int:
        if not confirmed:
            return 0
        written = set(confirmed)
        try:
            return await self.store.save_price_history(d for d in submitted if d.deal_id in written)
        except StoreFailure as e:
            self.logger.warning("price_history_save_failed", error=e.message)
            return 0

    def _should_cleanup(self, now: datetime) -> bool:
        """True at most once per calendar day."""
        today = now.date()
        if self._last_cleanup_day != today:
            self._last_cleanup_day = today
            return True
        return False

    async def _cleanup_best_effort(self) -> int:
        try:
            return await self.cleanup()
        except StoreFailure as e:
            self.logger.warning("cleanup_failed", error=e.message)
            return 0

    async def cleanup(self, days: Optional[int] = None) -> int:
        """Delete old Algumon rows.

        Rows without an identifier go first, after ``days``; everything goes
        after twice that.

        Raises:
            CleanupFailure: If a delete fails
        """
        days = days or self.retention_days
        now = self._clock()

        without_id = await self.store.delete_older_than(
            now - timedelta(days=days), missing_identifier_only=True
        )
        very_old = await self.store.delete_older_than(now - timedelta(days=days * 2))
        deleted = without_id + very_old

        if deleted:
            self.logger.info(
                "old_deals_cleaned",
                deleted=deleted,
                without_identifier=without_id,
                very_old=very_old,
                days=days,
            )
        return deleted
