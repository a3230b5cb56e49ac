"""Price history tracking for deals."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, UUIDPrimaryKeyMixin, utcnow


class PriceHistory(UUIDPrimaryKeyMixin, Base):
    """Price observed for a deal at crawl time.

    Keyed by deal_id rather than a foreign key so history survives retention
    cleanup of the deal row.
    """

    __tablename__ = "price_history"

    deal_id: Mapped[str] = mapped_column(String(10), nullable=False, index=True)

    price: Mapped[int] = mapped_column(Integer, nullable=False, comment="Price in KRW at crawl time")
    original_price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    crawled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="When this price was observed"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("idx_price_history_deal_crawled", "deal_id", "crawled_at"),
    )

    def __repr__(self) -> str:
        return f"<PriceHistory(id={self.id}, deal_id={self.deal_id}, price={self.price}, crawled_at={self.crawled_at})>"
