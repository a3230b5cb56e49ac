"""Base listing source interface and the records flowing through ingestion.

Listing sources fetch a category page and hand back RawListing bags of
strings; RecordBuilder turns those into immutable Deal records.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog

from app.scrapers.utils.identifier import composite_key, is_valid_deal_id
from app.scrapers.utils.normalizer import MAX_PRICE, MIN_PRICE

MIN_TITLE_LENGTH = 3
MAX_DESCRIPTION_LENGTH = 200

# Algumon category codes -> display names
CATEGORIES: Dict[str, str] = {
    "1": "기타",
    "2": "디지털/가전",
    "3": "컴퓨터",
    "4": "패션/뷰티",
    "5": "식품/건강",
    "6": "생활/취미",
}


@dataclass(frozen=True)
class RawListing:
    """Located strings and attributes for one listing element.

    Every field is optional; RecordBuilder decides what is usable.
    """

    href: Optional[str] = None
    anchor_title: Optional[str] = None  # title attribute of the deal anchor
    anchor_text: Optional[str] = None
    title_text: Optional[str] = None  # .title / .deal-title element
    image_src: Optional[str] = None
    description_text: Optional[str] = None
    site_label: Optional[str] = None
    price_text: Optional[str] = None  # .price element, fallback for price parsing


@dataclass(frozen=True)
class Deal:
    """Canonical deal record produced by RecordBuilder."""

    deal_id: str
    title: str
    url: str
    category: str
    price: Optional[int] = None
    has_price: bool = False
    price_text: str = ""
    site_name: str = ""
    image_url: str = ""
    description: str = ""
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        """Validate data after initialization."""
        if not is_valid_deal_id(self.deal_id):
            raise ValueError(f"Invalid deal_id: {self.deal_id!r}")
        if not self.title or len(self.title.strip()) < MIN_TITLE_LENGTH:
            raise ValueError("title must be at least 3 characters")
        if self.category not in CATEGORIES:
            raise ValueError(f"Invalid category: {self.category}")
        if self.price is not None and not (MIN_PRICE <= self.price <= MAX_PRICE):
            raise ValueError(f"price out of range: {self.price}")
        if self.has_price != (self.price is not None):
            raise ValueError("has_price must reflect whether price is set")
        if len(self.description) > MAX_DESCRIPTION_LENGTH:
            raise ValueError("description exceeds 200 characters")

    @property
    def composite_key(self) -> str:
        return composite_key(self.deal_id)

    @property
    def category_name(self) -> str:
        return CATEGORIES[self.category]


class BaseListingSource(ABC):
    """Abstract base class for listing sources.

    A source fetches one category page and returns its listing elements as
    RawListing records. It never builds Deals and never touches the
    identifier cache.
    """

    source_slug: str = ""  # Must be overridden in subclass (e.g., "algumon")
    source_name: str = ""

    def __init__(self):
        """Initialize the source with dependency injection points."""
        self.rate_limiter = None  # Injected
        self.logger = structlog.get_logger(source=self.source_slug)

    @abstractmethod
    async def fetch_listings(self, category: str) -> List[RawListing]:
        """Fetch the raw listings of one category page.

        Args:
            category: Category code ("1".."6")

        Returns:
            List of RawListing records in page order

        Raises:
            FetchFailure: If the page cannot be fetched or parsed
        """
        pass

    async def close(self) -> None:
        """Release network resources held by the source."""
        return None
