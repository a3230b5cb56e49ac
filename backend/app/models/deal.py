"""Deal model representing one stored Algumon deal."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class Deal(TimestampMixin, Base):
    """A deal collected from an Algumon category page.

    deal_id is the uniqueness boundary; id is the namespaced composite key
    ("algumon-{deal_id}") kept for joins with other systems.
    """

    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(String(40), primary_key=True, comment="algumon-{deal_id}")
    deal_id: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        unique=True,
        comment="Algumon deal identifier (digits)"
    )

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    url: Mapped[str] = mapped_column(String(2000), nullable=False, index=True)

    # Pricing
    price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="Price in KRW")
    original_price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_price: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_text: Mapped[str] = mapped_column(String(50), nullable=False, default="")

    # Source
    mall_name: Mapped[str] = mapped_column(String(50), nullable=False, default="알구몬", index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    algumon_category: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    site_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="crawler-algumon")
    delivery_info: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    pub_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    crawled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_deals_mall_created", "mall_name", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Deal(id={self.id}, title='{self.title[:50]}...', price={self.price})>"
