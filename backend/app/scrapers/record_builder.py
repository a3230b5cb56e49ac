"""Build canonical Deal records from raw Algumon listings."""

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from app.config import settings
from app.scrapers.base import (
    CATEGORIES,
    MAX_DESCRIPTION_LENGTH,
    MIN_TITLE_LENGTH,
    Deal,
    RawListing,
)
from app.scrapers.utils.identifier import extract_deal_id, is_valid_deal_id
from app.scrapers.utils.normalizer import PriceNormalizer, to_absolute_url

logger = structlog.get_logger(__name__)


def _clean(value: Optional[str]) -> str:
    return value.strip() if value else ""


class RecordBuilder:
    """Combine a raw listing with identifier and price extraction.

    build() never raises: a listing missing its identifier or a usable title
    yields None, never a partial record.
    """

    def __init__(
        self,
        origin: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.origin = origin or settings.ALGUMON_BASE_URL
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build(self, raw: RawListing, category: str) -> Optional[Deal]:
        """Build a Deal from one listing.

        Args:
            raw: Located strings of one listing element
            category: Category code the listing was found under

        Returns:
            Deal, or None when the listing is unusable
        """
        try:
            return self._build(raw, category)
        except Exception as e:
            logger.debug("listing_build_failed", href=raw.href, error=str(e))
            return None

    def _build(self, raw: RawListing, category: str) -> Optional[Deal]:
        if category not in CATEGORIES or not raw.href:
            return None

        url = to_absolute_url(raw.href, self.origin)

        deal_id = extract_deal_id(url)
        if not is_valid_deal_id(deal_id):
            return None

        title = self.resolve_title(raw)
        if len(title) < MIN_TITLE_LENGTH:
            return None

        price_info = PriceNormalizer.extract(title, raw.price_text)

        return Deal(
            deal_id=deal_id,
            title=title,
            url=url,
            category=category,
            price=price_info.price,
            has_price=price_info.has_price,
            price_text=price_info.price_text,
            site_name=_clean(raw.site_label),
            image_url=_clean(raw.image_src),
            description=_clean(raw.description_text)[:MAX_DESCRIPTION_LENGTH],
            captured_at=self._clock(),
        )

    @staticmethod
    def resolve_title(raw: RawListing) -> str:
        """Title by preference: title attribute, anchor text, title element."""
        for candidate in (raw.anchor_title, raw.anchor_text, raw.title_text):
            title = _clean(candidate)
            if title:
                return title
        return ""
