"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models import Base
from app.scrapers.base import Deal

FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def make_deal():
    """Factory for valid Deal records."""

    def _make(deal_id: str = "939539", **overrides) -> Deal:
        fields = {
            "deal_id": deal_id,
            "title": f"테스트 상품 {deal_id}",
            "url": f"https://www.algumon.com/l/d/{deal_id}",
            "category": "2",
            "price": 12000,
            "has_price": True,
            "price_text": "12,000원",
            "site_name": "뽐뿌",
            "captured_at": FIXED_NOW,
        }
        fields.update(overrides)
        return Deal(**fields)

    return _make


class FakeClock:
    """Settable clock for components that take a clock callable."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock()
