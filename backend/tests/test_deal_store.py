"""Tests for the deal store strategies against in-memory SQLite."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest
import pytest_asyncio
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.exceptions import StoreFailure
from app.models import Deal as DealRow
from app.scrapers.base import BaseListingSource, RawListing
from app.services.deal_cache import IdentifierCache
from app.services.deal_store import (
    MALL_NAME,
    LegacyDealStore,
    UpsertDealStore,
    deal_to_row,
    select_deal_store,
)
from app.services.ingestion_pipeline import IngestionPipeline


@pytest_asyncio.fixture
async def store(session_factory):
    return await select_deal_store(session_factory)


@pytest_asyncio.fixture
async def empty_engine():
    """Engine whose schema is created by each test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def legacy_factory(empty_engine):
    """Deals table from before the deal_id column existed."""
    metadata = MetaData()
    Table(
        "deals",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("title", String(500), nullable=False),
        Column("url", String(2000), nullable=False),
        Column("price", Integer),
        Column("mall_name", String(50)),
        Column("description", String(500)),
        Column("created_at", DateTime(timezone=True)),
    )
    async with empty_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    return async_sessionmaker(empty_engine, class_=AsyncSession, expire_on_commit=False)


async def _age_rows(session_factory, days: int, *deal_ids):
    async with session_factory() as session:
        await session.execute(
            update(DealRow)
            .where(DealRow.deal_id.in_(deal_ids))
            .values(created_at=datetime.now(timezone.utc) - timedelta(days=days))
        )
        await session.commit()


class TestDealToRow:
    def test_row_shape(self, make_deal):
        now = datetime(2025, 3, 14, tzinfo=timezone.utc)
        row = deal_to_row(make_deal("939539", description=""), now)

        assert row["id"] == "algumon-939539"
        assert row["deal_id"] == "939539"
        assert row["mall_name"] == MALL_NAME
        assert row["algumon_category"] == "2"
        assert row["description"] == "[카테고리 2] 뽐뿌"
        assert row["original_price"] == row["price"] == 12000
        assert row["created_at"] == row["crawled_at"] == now


class TestSelectDealStore:
    async def test_current_schema_selects_upsert(self, store):
        assert isinstance(store, UpsertDealStore)
        assert store.strategy == "upsert"

    async def test_missing_deal_id_column_selects_legacy(self, legacy_factory):
        store = await select_deal_store(legacy_factory)
        assert isinstance(store, LegacyDealStore)

    async def test_missing_table_raises(self, empty_engine):
        factory = async_sessionmaker(empty_engine, class_=AsyncSession)
        with pytest.raises(StoreFailure):
            await select_deal_store(factory)


class TestUpsertDealStore:
    async def test_upsert_new_deals(self, store, make_deal):
        confirmed = await store.upsert_batch([make_deal("100"), make_deal("200"), make_deal("300")])
        assert confirmed == ["100", "200", "300"]

    async def test_existing_deals_are_not_confirmed(self, store, make_deal):
        await store.upsert_batch([make_deal("100"), make_deal("200")])

        confirmed = await store.upsert_batch(
            [make_deal("100", title="바뀐 제목"), make_deal("300"), make_deal("200")]
        )

        assert confirmed == ["300"]

    async def test_existing_row_is_never_overwritten(self, store, session_factory, make_deal):
        await store.upsert_batch([make_deal("100", title="원래 제목")])
        await store.upsert_batch([make_deal("100", title="바뀐 제목")])

        async with session_factory() as session:
            title = (
                await session.execute(select(DealRow.title).where(DealRow.deal_id == "100"))
            ).scalar_one()
        assert title == "원래 제목"

    async def test_empty_batch(self, store):
        assert await store.upsert_batch([]) == []

    async def test_query_recent_identifiers(self, store, make_deal):
        await store.upsert_batch([make_deal("100"), make_deal("200"), make_deal("300")])
        await store.upsert_batch([make_deal("400")])

        assert set(await store.query_recent_identifiers(10)) == {"100", "200", "300", "400"}
        assert len(await store.query_recent_identifiers(2)) == 2

    async def test_write_failure_raises_store_failure(self, empty_engine, make_deal):
        store = UpsertDealStore(async_sessionmaker(empty_engine, class_=AsyncSession))
        with pytest.raises(StoreFailure) as exc_info:
            await store.upsert_batch([make_deal("100")])

        assert exc_info.value.message == "Store upsert_batch failed: OperationalError"
        assert "[SQL:" not in exc_info.value.message

    async def test_delete_older_than(self, store, session_factory, make_deal):
        await store.upsert_batch([make_deal("100"), make_deal("200"), make_deal("300")])
        async with session_factory() as session:
            session.add(
                DealRow(
                    id="algumon-legacy-1",
                    deal_id=None,
                    title="아이디 없는 옛 딜",
                    url="https://www.algumon.com/old",
                    mall_name=MALL_NAME,
                )
            )
            await session.commit()
        async with session_factory() as session:
            await session.execute(
                update(DealRow)
                .where(DealRow.deal_id.is_(None))
                .values(created_at=datetime.now(timezone.utc) - timedelta(days=10))
            )
            await session.commit()
        await _age_rows(session_factory, 10, "100")
        await _age_rows(session_factory, 20, "200")

        now = datetime.now(timezone.utc)
        without_id = await store.delete_older_than(now - timedelta(days=7), missing_identifier_only=True)
        very_old = await store.delete_older_than(now - timedelta(days=14))

        assert without_id == 1
        assert very_old == 1
        assert set(await store.query_recent_identifiers(10)) == {"100", "300"}

    async def test_summary(self, store, make_deal):
        await store.upsert_batch([make_deal("100"), make_deal("200")])

        summary = await store.summary()

        assert summary.total_count == 2
        assert summary.today_count == 2
        assert summary.with_deal_id_count == 2
        assert summary.deal_id_completion_rate == 100


class TestPriceHistory:
    async def test_save_and_read(self, store, make_deal):
        saved = await store.save_price_history(
            [make_deal("100", price=15000, price_text="15,000원"), make_deal("200", price=None, has_price=False)]
        )
        assert saved == 1

        history = await store.get_price_history("100")
        assert [point.price for point in history] == [15000]
        assert await store.get_price_history("200") == []


class TestLegacyDealStore:
    async def test_insert_skips_existing_urls(self, legacy_factory, make_deal):
        store = await select_deal_store(legacy_factory)

        assert await store.upsert_batch([make_deal("100"), make_deal("200")]) == ["100", "200"]
        assert await store.upsert_batch([make_deal("200"), make_deal("300")]) == ["300"]

    async def test_identifiers_recovered_from_urls(self, legacy_factory, make_deal):
        store = await select_deal_store(legacy_factory)
        await store.upsert_batch([make_deal("100"), make_deal("200")])

        assert set(await store.query_recent_identifiers(10)) == {"100", "200"}

    async def test_summary_has_no_identifier_counts(self, legacy_factory, make_deal):
        store = await select_deal_store(legacy_factory)
        await store.upsert_batch([make_deal("100")])

        summary = await store.summary()
        assert summary.total_count == 1
        assert summary.with_deal_id_count == 0
        assert summary.deal_id_completion_rate == 0

    async def test_cleanup_keeps_identified_rows_until_long_retention(self, legacy_factory):
        store = await select_deal_store(legacy_factory)
        now = datetime.now(timezone.utc)
        async with legacy_factory() as session:
            await session.execute(
                insert(store.table),
                [
                    {
                        "title": "식별자 있는 딜",
                        "url": "https://www.algumon.com/l/d/12345",
                        "mall_name": MALL_NAME,
                        "created_at": now - timedelta(days=10),
                    },
                    {
                        "title": "식별자 없는 딜",
                        "url": "https://www.algumon.com/old",
                        "mall_name": MALL_NAME,
                        "created_at": now - timedelta(days=10),
                    },
                ],
            )
            await session.commit()

        assert await store.delete_older_than(now - timedelta(days=7), missing_identifier_only=True) == 1
        assert await store.delete_older_than(now - timedelta(days=14)) == 0
        assert set(await store.query_recent_identifiers(10)) == {"12345"}


class StaticSource(BaseListingSource):
    source_slug = "static"

    async def fetch_listings(self, category: str) -> List[RawListing]:
        return [RawListing(href="/l/d/939539", anchor_title="Widget 12,000원")]


class TestStoreFailureInCycle:
    async def test_last_error_hides_statement(self, empty_engine):
        store = UpsertDealStore(async_sessionmaker(empty_engine, class_=AsyncSession))
        pipeline = IngestionPipeline(
            source=StaticSource(),
            store=store,
            cache=IdentifierCache(),
            categories=["1"],
            category_pause_seconds=0,
        )

        with pytest.raises(StoreFailure):
            await pipeline.run_one_cycle()

        message = pipeline.stats.last_error["message"]
        assert message == "Store upsert_batch failed: OperationalError"
        assert "[SQL:" not in message
        assert "939539" not in message
