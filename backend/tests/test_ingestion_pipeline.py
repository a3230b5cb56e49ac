"""Tests for the ingestion pipeline with fake sources and stores."""

import asyncio
from datetime import timedelta
from typing import Dict, List, Optional

import pytest

from app.core.exceptions import CleanupFailure, CycleInProgressError, FetchFailure, StoreFailure
from app.scrapers.base import CATEGORIES, BaseListingSource, RawListing
from app.services.deal_cache import IdentifierCache
from app.services.deal_store import DealStore, StoreSummary
from app.services.ingestion_pipeline import CycleStage, IngestionPipeline


def raw(deal_id: str, price: str = "10,000원") -> RawListing:
    return RawListing(href=f"/l/d/{deal_id}?v=1", anchor_title=f"테스트 상품 {price}".strip())


class FakeSource(BaseListingSource):
    source_slug = "fake"

    def __init__(self, pages: Optional[Dict[str, object]] = None):
        super().__init__()
        self.pages = pages or {}
        self.fetched: List[str] = []

    async def fetch_listings(self, category: str) -> List[RawListing]:
        self.fetched.append(category)
        page = self.pages.get(category, [])
        if isinstance(page, Exception):
            raise page
        return list(page)


class FakeStore(DealStore):
    """In-memory store; rows holds identifiers already persisted."""

    strategy = "fake"

    def __init__(self, rows=(), fail_upsert=False, fail_cleanup=False, fail_history=False):
        super().__init__(session_factory=None)
        self.rows = list(rows)
        self.fail_upsert = fail_upsert
        self.fail_cleanup = fail_cleanup
        self.fail_history = fail_history
        self.submitted: List[List[str]] = []
        self.deletes = []
        self.history: List[str] = []

    async def query_recent_identifiers(self, limit):
        return list(reversed(self.rows))[:limit]

    async def upsert_batch(self, deals):
        self.submitted.append([d.deal_id for d in deals])
        if self.fail_upsert:
            raise StoreFailure("upsert_batch", "disk full")
        confirmed = [d.deal_id for d in deals if d.deal_id not in self.rows]
        self.rows.extend(confirmed)
        return confirmed

    async def delete_older_than(self, cutoff, missing_identifier_only=False):
        self.deletes.append((cutoff, missing_identifier_only))
        if self.fail_cleanup:
            raise CleanupFailure("locked")
        return 1

    async def save_price_history(self, deals):
        if self.fail_history:
            raise StoreFailure("price_history", "locked")
        ids = [d.deal_id for d in deals if d.price is not None]
        self.history.extend(ids)
        return len(ids)

    async def summary(self, now=None):
        return StoreSummary(today_count=0, total_count=len(self.rows), with_deal_id_count=len(self.rows))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_pipeline(clock, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    def _make(source, store, cache=None, **kwargs) -> IngestionPipeline:
        kwargs.setdefault("categories", ["1"])
        kwargs.setdefault("category_pause_seconds", 1.0)
        kwargs.setdefault("parallel_fetch", False)
        kwargs.setdefault("retention_days", 7)
        return IngestionPipeline(
            source=source,
            store=store,
            cache=cache if cache is not None else IdentifierCache(clock=clock),
            clock=clock,
            sleep=fake_sleep,
            **kwargs,
        )

    return _make


class TestRunOneCycle:
    async def test_dedup_scenario(self, make_pipeline):
        cache = IdentifierCache()
        cache.bulk_load(["100", "200"])
        store = FakeStore(rows=["100", "200"])
        source = FakeSource({"1": [raw("100"), raw("300"), raw("300"), raw("400")]})
        pipeline = make_pipeline(source, store, cache)

        result = await pipeline.run_one_cycle()

        assert store.submitted == [["300", "400"]]
        assert result.saved_deal_ids == ["300", "400"]
        assert result.cache_hits == 1
        assert result.duplicates_removed == 1
        assert result.stage == CycleStage.DONE
        assert {"100", "200", "300", "400"} == set(cache.search("."))

    async def test_only_confirmed_identifiers_enter_cache(self, make_pipeline):
        # Cold cache: the store already has 300, so only 2 of 3 are confirmed
        cache = IdentifierCache()
        store = FakeStore(rows=["300"])
        source = FakeSource({"1": [raw("100"), raw("200"), raw("300")]})
        pipeline = make_pipeline(source, store, cache)

        result = await pipeline.run_one_cycle()

        assert result.submitted == 3
        assert result.saved == 2
        assert result.store_conflicts == 1
        assert len(cache) == 2
        assert cache.stats()["new_deals_added"] == 2
        assert "300" not in cache

    async def test_store_failure_leaves_cache_untouched(self, make_pipeline):
        cache = IdentifierCache()
        cache.bulk_load(["100"])
        store = FakeStore(fail_upsert=True)
        pipeline = make_pipeline(FakeSource({"1": [raw("200"), raw("300")]}), store, cache)

        with pytest.raises(StoreFailure):
            await pipeline.run_one_cycle()

        assert len(cache) == 1
        assert "200" not in cache
        assert pipeline.stage == CycleStage.FAILED
        assert pipeline.stats.failed_runs == 1
        assert pipeline.stats.last_error["message"] == "Store upsert_batch failed: disk full"
        assert pipeline.is_running is False

    async def test_category_failure_is_isolated(self, make_pipeline):
        source = FakeSource(
            {
                "1": [raw("100")],
                "2": FetchFailure("2", "HTTP 503"),
                "3": RuntimeError("boom"),
                "4": [raw("400")],
            }
        )
        store = FakeStore()
        pipeline = make_pipeline(source, store, categories=["1", "2", "3", "4"])

        result = await pipeline.run_one_cycle()

        assert result.success_count == 2
        assert result.failure_count == 2
        failed = {c.category: c.error for c in result.categories if not c.success}
        assert failed["2"] == "Fetch failed for category 2: HTTP 503"
        assert failed["3"] == "RuntimeError"
        assert result.saved_deal_ids == ["100", "400"]

    async def test_all_categories_failing_fails_cycle(self, make_pipeline):
        source = FakeSource({"1": FetchFailure("1", "HTTP 500"), "2": FetchFailure("2", "HTTP 500")})
        store = FakeStore()
        pipeline = make_pipeline(source, store, categories=["1", "2"])

        with pytest.raises(FetchFailure):
            await pipeline.run_one_cycle()

        assert store.submitted == []
        assert pipeline.stats.failed_runs == 1

    async def test_empty_pages_are_a_successful_no_op(self, make_pipeline):
        store = FakeStore()
        pipeline = make_pipeline(FakeSource({"1": []}), store)

        result = await pipeline.run_one_cycle()

        assert result.saved == 0
        assert store.submitted == []
        assert pipeline.stats.success_runs == 1

    async def test_unusable_listings_are_dropped(self, make_pipeline):
        source = FakeSource({"1": [raw("100"), RawListing(href="/category/1", anchor_title="목록")]})
        pipeline = make_pipeline(source, FakeStore())

        result = await pipeline.run_one_cycle()

        assert result.total_listings == 2
        assert result.built == 1
        assert result.dropped == 1

    async def test_price_history_for_confirmed_deals_only(self, make_pipeline):
        store = FakeStore(rows=["200"])
        source = FakeSource({"1": [raw("100"), raw("200"), raw("300", price="")]})
        pipeline = make_pipeline(source, store)

        result = await pipeline.run_one_cycle()

        assert store.history == ["100"]
        assert result.price_history_saved == 1

    async def test_price_history_failure_does_not_fail_cycle(self, make_pipeline):
        store = FakeStore(fail_history=True)
        pipeline = make_pipeline(FakeSource({"1": [raw("100")]}), store)

        result = await pipeline.run_one_cycle()

        assert result.saved == 1
        assert result.price_history_saved == 0


class TestFetching:
    async def test_sequential_fetch_pauses_between_categories(self, make_pipeline, sleeps):
        source = FakeSource()
        pipeline = make_pipeline(source, FakeStore(), categories=list(CATEGORIES))

        await pipeline.run_one_cycle()

        assert source.fetched == ["1", "2", "3", "4", "5", "6"]
        assert sleeps == [1.0] * 5

    async def test_parallel_fetch(self, make_pipeline, sleeps):
        source = FakeSource({c: [raw(f"{c}00")] for c in CATEGORIES})
        pipeline = make_pipeline(source, FakeStore(), categories=list(CATEGORIES), parallel_fetch=True)

        result = await pipeline.run_one_cycle()

        assert sorted(source.fetched) == ["1", "2", "3", "4", "5", "6"]
        assert sleeps == []
        assert result.saved == 6


class TestReentrancy:
    async def test_second_cycle_is_rejected_while_running(self, make_pipeline):
        started = asyncio.Event()
        release = asyncio.Event()

        class BlockingSource(FakeSource):
            async def fetch_listings(self, category):
                started.set()
                await release.wait()
                return [raw("100")]

        pipeline = make_pipeline(BlockingSource(), FakeStore())
        task = asyncio.create_task(pipeline.run_one_cycle())
        await started.wait()

        assert pipeline.is_running is True
        with pytest.raises(CycleInProgressError):
            await pipeline.run_one_cycle()

        release.set()
        result = await task

        assert result.saved == 1
        assert pipeline.stats.total_runs == 1
        assert pipeline.is_running is False


class TestCleanup:
    async def test_runs_once_per_calendar_day(self, make_pipeline, clock):
        store = FakeStore()
        pipeline = make_pipeline(FakeSource(), store)

        first = await pipeline.run_one_cycle()
        second = await pipeline.run_one_cycle()

        assert first.cleanup_ran is True
        assert second.cleanup_ran is False
        assert len(store.deletes) == 2

        clock.advance(days=1)
        third = await pipeline.run_one_cycle()

        assert third.cleanup_ran is True
        assert len(store.deletes) == 4

    async def test_cutoffs(self, make_pipeline, clock):
        store = FakeStore()
        pipeline = make_pipeline(FakeSource(), store)

        deleted = await pipeline.cleanup(3)

        assert deleted == 2
        assert store.deletes == [
            (clock.now - timedelta(days=3), True),
            (clock.now - timedelta(days=6), False),
        ]

    async def test_cleanup_failure_does_not_fail_cycle(self, make_pipeline):
        store = FakeStore(fail_cleanup=True)
        pipeline = make_pipeline(FakeSource({"1": [raw("100")]}), store)

        result = await pipeline.run_one_cycle()

        assert result.cleanup_ran is True
        assert result.cleanup_deleted == 0
        assert result.saved == 1

    async def test_manual_cleanup_raises(self, make_pipeline):
        pipeline = make_pipeline(FakeSource(), FakeStore(fail_cleanup=True))

        with pytest.raises(CleanupFailure):
            await pipeline.cleanup()


class TestStats:
    async def test_warm_cache(self, make_pipeline):
        cache = IdentifierCache()
        pipeline = make_pipeline(FakeSource(), FakeStore(rows=["100", "200", "300"]), cache)

        loaded = await pipeline.warm_cache(limit=2)

        assert loaded == 2
        assert set(cache.search(".")) == {"300", "200"}

    async def test_counters(self, make_pipeline):
        cache = IdentifierCache()
        cache.bulk_load(["100"])
        store = FakeStore(rows=["100"])
        source = FakeSource({"1": [raw("100"), raw("200"), raw("300")]})
        pipeline = make_pipeline(source, store, cache)

        await pipeline.run_one_cycle()
        store.fail_upsert = True
        source.pages["1"] = [raw("400")]
        with pytest.raises(StoreFailure):
            await pipeline.run_one_cycle()

        stats = pipeline.stats.as_dict()
        assert stats["total_runs"] == 2
        assert stats["success_runs"] == 1
        assert stats["failed_runs"] == 1
        assert stats["total_items"] == 3
        assert stats["saved_items"] == 2
        assert stats["skipped_items"] == 1
        assert stats["success_rate"] == 50
        assert stats["avg_saved"] == 2
        assert stats["last_success"] is not None
