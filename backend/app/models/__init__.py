"""SQLAlchemy models for the Algumon crawler.

All models are imported here so metadata.create_all sees every table.
"""

from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from app.models.deal import Deal
from app.models.price_history import PriceHistory

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "Deal",
    "PriceHistory",
]
