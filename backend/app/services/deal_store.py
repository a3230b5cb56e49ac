"""Deal persistence strategies.

The ingestion pipeline needs three things from the database: the most
recent stored identifiers (to warm the cache), a batch write that never
overwrites an existing deal, and retention deletes. Two strategies provide
them behind DealStore; select_deal_store() picks one once at startup by
inspecting the deals table:

* UpsertDealStore: the table has a deal_id column. One
  INSERT ... ON CONFLICT DO NOTHING RETURNING deal_id per chunk.
* LegacyDealStore: no deal_id column. Per deal, SELECT by url and INSERT
  when absent, inside one transaction. Slower; identifiers for the cache
  are recovered from stored URLs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy import MetaData, String, Table, delete, func, inspect, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import CleanupFailure, StoreFailure
from app.models.deal import Deal as DealRow
from app.models.price_history import PriceHistory
from app.scrapers.base import Deal
from app.scrapers.utils.identifier import extract_deal_id, is_valid_deal_id

logger = structlog.get_logger(__name__)

MALL_NAME = "알구몬"
SOURCE = "crawler-algumon"
DELIVERY_INFO = "원문 확인"
UPSERT_CHUNK_SIZE = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe(e: SQLAlchemyError) -> str:
    """Driver error class name; never the statement or its parameters."""
    return type(getattr(e, "orig", None) or e).__name__


def _store_failure(operation: str, e: SQLAlchemyError) -> StoreFailure:
    logger.error("store_operation_failed", operation=operation, error=str(e))
    return StoreFailure(operation, _describe(e))


def _cleanup_failure(e: SQLAlchemyError) -> CleanupFailure:
    logger.error("store_operation_failed", operation="cleanup", error=str(e))
    return CleanupFailure(_describe(e))


def deal_to_row(deal: Deal, now: Optional[datetime] = None) -> Dict[str, object]:
    """Map a Deal to a deals-table row."""
    now = now or _utcnow()
    summary = deal.description or deal.site_name
    return {
        "id": deal.composite_key,
        "deal_id": deal.deal_id,
        "title": deal.title,
        "price": deal.price,
        "original_price": deal.price,
        "discount_rate": 0,
        "has_price": deal.has_price,
        "price_text": deal.price_text,
        "mall_name": MALL_NAME,
        "category": "general",
        "algumon_category": deal.category,
        "site_name": deal.site_name,
        "image_url": deal.image_url,
        "url": deal.url,
        "description": f"[카테고리 {deal.category}] {summary}".strip(),
        "source": SOURCE,
        "delivery_info": DELIVERY_INFO,
        "pub_date": deal.captured_at,
        "crawled_at": now,
        "created_at": now,
        "updated_at": now,
    }


@dataclass(frozen=True)
class StoreSummary:
    """Row counts for the status surface."""

    today_count: int
    total_count: int
    with_deal_id_count: int

    @property
    def deal_id_completion_rate(self) -> int:
        if self.total_count <= 0:
            return 0
        return round(self.with_deal_id_count / self.total_count * 100)


class DealStore(ABC):
    """Persistence contract used by the ingestion pipeline.

    Every database error surfaces as StoreFailure (CleanupFailure for
    retention deletes).
    """

    strategy: str = ""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = logger.bind(service="deal_store", strategy=self.strategy)

    @abstractmethod
    async def query_recent_identifiers(self, limit: int) -> List[str]:
        """Most recently stored identifiers, newest first."""

    @abstractmethod
    async def upsert_batch(self, deals: Sequence[Deal]) -> List[str]:
        """Write deals, skipping any that already exist.

        Returns:
            Identifiers the store confirms as written, in input order
        """

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime, missing_identifier_only: bool = False) -> int:
        """Delete Algumon rows created before cutoff. Returns rows deleted."""

    @abstractmethod
    async def summary(self, now: Optional[datetime] = None) -> StoreSummary:
        """Today / total / with-identifier row counts."""

    async def save_price_history(self, deals: Iterable[Deal]) -> int:
        """Append a price observation for every deal that has a price."""
        now = _utcnow()
        records = [
            PriceHistory(
                deal_id=deal.deal_id,
                price=deal.price,
                original_price=deal.price,
                discount_rate=0,
                crawled_at=now,
                created_at=now,
            )
            for deal in deals
            if deal.price is not None
        ]
        if not records:
            return 0

        async with self.session_factory() as session:
            try:
                session.add_all(records)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise _store_failure("price_history", e) from e

        self.logger.info("price_history_saved", count=len(records))
        return len(records)

    async def get_price_history(self, deal_id: str, limit: int = 30) -> List[PriceHistory]:
        """Stored price observations for a deal, newest first."""
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    select(PriceHistory)
                    .where(PriceHistory.deal_id == deal_id)
                    .order_by(PriceHistory.crawled_at.desc())
                    .limit(limit)
                )
            except SQLAlchemyError as e:
                raise _store_failure("price_history_query", e) from e
            return list(result.scalars().all())

    @staticmethod
    def _today_start(now: Optional[datetime]) -> datetime:
        now = now or _utcnow()
        return now.replace(hour=0, minute=0, second=0, microsecond=0)


class UpsertDealStore(DealStore):
    """Store for tables with a unique deal_id column."""

    strategy = "upsert"

    async def query_recent_identifiers(self, limit: int) -> List[str]:
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    select(DealRow.deal_id)
                    .where(DealRow.deal_id.isnot(None))
                    .order_by(DealRow.created_at.desc())
                    .limit(limit)
                )
            except SQLAlchemyError as e:
                raise _store_failure("query_recent_identifiers", e) from e
            return [deal_id for deal_id in result.scalars().all() if deal_id]

    async def upsert_batch(self, deals: Sequence[Deal]) -> List[str]:
        if not deals:
            return []

        now = _utcnow()
        rows = [deal_to_row(deal, now) for deal in deals]
        written = set()

        async with self.session_factory() as session:
            try:
                dialect_insert = self._insert_for(session)
                for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
                    chunk = rows[start:start + UPSERT_CHUNK_SIZE]
                    # Any conflict (deal_id or composite id) leaves the stored row untouched
                    stmt = (
                        dialect_insert(DealRow)
                        .values(chunk)
                        .on_conflict_do_nothing()
                        .returning(DealRow.deal_id)
                    )
                    result = await session.execute(stmt)
                    written.update(result.scalars().all())
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise _store_failure("upsert_batch", e) from e

        confirmed = [deal.deal_id for deal in deals if deal.deal_id in written]
        self.logger.info(
            "upsert_batch_complete",
            submitted=len(deals),
            written=len(confirmed),
            conflicts=len(deals) - len(confirmed),
        )
        return confirmed

    async def delete_older_than(self, cutoff: datetime, missing_identifier_only: bool = False) -> int:
        stmt = delete(DealRow).where(
            DealRow.mall_name == MALL_NAME,
            DealRow.created_at < cutoff,
        )
        if missing_identifier_only:
            stmt = stmt.where(DealRow.deal_id.is_(None))

        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise _cleanup_failure(e) from e
        return result.rowcount or 0

    async def summary(self, now: Optional[datetime] = None) -> StoreSummary:
        today = self._today_start(now)
        base = select(func.count(DealRow.id)).where(DealRow.mall_name == MALL_NAME)

        async with self.session_factory() as session:
            try:
                total = (await session.execute(base)).scalar() or 0
                today_count = (
                    await session.execute(base.where(DealRow.created_at >= today))
                ).scalar() or 0
                with_id = (
                    await session.execute(base.where(DealRow.deal_id.isnot(None)))
                ).scalar() or 0
            except SQLAlchemyError as e:
                raise _store_failure("summary", e) from e

        return StoreSummary(today_count=today_count, total_count=total, with_deal_id_count=with_id)

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise StoreFailure("upsert_batch", f"unsupported dialect for upsert: {dialect}")


class LegacyDealStore(DealStore):
    """Store for deals tables created before the deal_id column existed.

    Works against the reflected table and only writes columns it has.
    """

    strategy = "legacy"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], table: Table):
        super().__init__(session_factory)
        self.table = table

    def _has(self, column: str) -> bool:
        return column in self.table.c

    def _algumon_rows(self, stmt):
        if self._has("mall_name"):
            stmt = stmt.where(self.table.c.mall_name == MALL_NAME)
        return stmt

    def _writable(self, row: Dict[str, object]) -> Dict[str, object]:
        values = {}
        for name, value in row.items():
            if not self._has(name):
                continue
            column = self.table.c[name]
            # Legacy ids may be integer sequences; leave those to the database
            if column.primary_key and not isinstance(column.type, String):
                continue
            values[name] = value
        return values

    async def query_recent_identifiers(self, limit: int) -> List[str]:
        stmt = self._algumon_rows(
            select(self.table.c.url).where(self.table.c.url.isnot(None))
        )
        if self._has("created_at"):
            stmt = stmt.order_by(self.table.c.created_at.desc())
        stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as e:
                raise _store_failure("query_recent_identifiers", e) from e
            urls = result.scalars().all()

        identifiers = []
        for url in urls:
            deal_id = extract_deal_id(url)
            if is_valid_deal_id(deal_id):
                identifiers.append(deal_id)
        return identifiers

    async def upsert_batch(self, deals: Sequence[Deal]) -> List[str]:
        if not deals:
            return []

        now = _utcnow()
        confirmed: List[str] = []

        async with self.session_factory() as session:
            try:
                for deal in deals:
                    existing = await session.execute(
                        select(self.table.c.url).where(self.table.c.url == deal.url).limit(1)
                    )
                    if existing.first() is not None:
                        continue
                    await session.execute(
                        insert(self.table).values(self._writable(deal_to_row(deal, now)))
                    )
                    confirmed.append(deal.deal_id)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise _store_failure("upsert_batch", e) from e

        self.logger.info(
            "legacy_insert_complete",
            submitted=len(deals),
            written=len(confirmed),
        )
        return confirmed

    async def delete_older_than(self, cutoff: datetime, missing_identifier_only: bool = False) -> int:
        if not self._has("created_at"):
            return 0
        stmt = self._algumon_rows(delete(self.table).where(self.table.c.created_at < cutoff))

        async with self.session_factory() as session:
            try:
                if missing_identifier_only:
                    # No deal_id column: a row lacks an identifier when its url yields none
                    old_urls = await session.execute(
                        self._algumon_rows(
                            select(self.table.c.url).where(self.table.c.created_at < cutoff)
                        )
                    )
                    urls = [
                        url for url in old_urls.scalars().all()
                        if not is_valid_deal_id(extract_deal_id(url))
                    ]
                    if not urls:
                        return 0
                    stmt = stmt.where(self.table.c.url.in_(urls))
                result = await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise _cleanup_failure(e) from e
        return result.rowcount or 0

    async def summary(self, now: Optional[datetime] = None) -> StoreSummary:
        base = self._algumon_rows(select(func.count()).select_from(self.table))

        async with self.session_factory() as session:
            try:
                total = (await session.execute(base)).scalar() or 0
                today_count = total
                if self._has("created_at"):
                    today_count = (
                        await session.execute(
                            base.where(self.table.c.created_at >= self._today_start(now))
                        )
                    ).scalar() or 0
            except SQLAlchemyError as e:
                raise _store_failure("summary", e) from e

        return StoreSummary(today_count=today_count, total_count=total, with_deal_id_count=0)


async def select_deal_store(session_factory: async_sessionmaker[AsyncSession]) -> DealStore:
    """Inspect the deals table once and return the matching strategy.

    Raises:
        StoreFailure: If the deals table is missing or cannot be inspected
    """
    table_name = DealRow.__tablename__

    def _reflect(sync_conn):
        if "deal_id" in {col["name"] for col in inspect(sync_conn).get_columns(table_name)}:
            return None
        # Reflect into a private MetaData so the ORM table stays untouched
        return Table(table_name, MetaData(), autoload_with=sync_conn)

    async with session_factory() as session:
        try:
            conn = await session.connection()
            legacy_table = await conn.run_sync(_reflect)
        except NoSuchTableError as e:
            raise StoreFailure("capability_check", f"table '{table_name}' not found") from e
        except SQLAlchemyError as e:
            raise _store_failure("capability_check", e) from e

    if legacy_table is None:
        store: DealStore = UpsertDealStore(session_factory)
    else:
        store = LegacyDealStore(session_factory, legacy_table)
        store.logger.warning(
            "deal_id_column_missing",
            fallback="select_by_url_then_insert",
        )

    logger.info("deal_store_selected", strategy=store.strategy)
    return store
