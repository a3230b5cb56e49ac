"""Data normalization utilities for price parsing and URL resolution."""

import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urljoin


# Accepted price range in KRW. Values outside are "no price", never clamped.
MIN_PRICE = 100
MAX_PRICE = 10_000_000

NO_PRICE_TEXT = "가격 정보 없음"

# A whole number token: "12,000" or "12000", never starting mid-number
_NUMBER = r"(?<![\d,])(\d{1,3}(?:,\d{3})+|\d+)"

# Ordered title rules. Currency-suffixed and labelled prices beat bare digits;
# bare digits is the weakest signal and may pick up non-price numbers.
TITLE_PRICE_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(_NUMBER + r"\s*원", re.ASCII),            # 12,000원
    re.compile(r"\(" + _NUMBER + r"\s*원\)", re.ASCII),  # (12,000원)
    re.compile(r"가격[:\s]*" + _NUMBER, re.ASCII),       # 가격: 12000
    re.compile(_NUMBER, re.ASCII),                       # bare digits
)

# Single pass over a dedicated price element's text
FALLBACK_PRICE_PATTERN = re.compile(_NUMBER, re.ASCII)


@dataclass(frozen=True)
class PriceInfo:
    """Parsed price of a listing."""

    price: Optional[int]
    has_price: bool
    price_text: str


class PriceNormalizer:
    """Price parsing utilities for Algumon listing titles.

    Titles usually embed the price ("[쿠팡] 무선 이어폰 12,900원 무료배송").
    Rules are tried in order; within a rule only the leftmost match counts.
    Ties are never resolved by magnitude.
    """

    @staticmethod
    def clean_price_string(raw: str) -> Optional[int]:
        """Parse a matched number token, stripping thousand separators.

        Args:
            raw: Number text such as "12,000"

        Returns:
            Integer value, or None if nothing numeric remains
        """
        if not raw:
            return None

        cleaned = raw.replace(",", "").strip()
        if not cleaned.isdigit():
            return None
        return int(cleaned)

    @staticmethod
    def is_valid_price(value: Optional[int]) -> bool:
        """Check the accepted KRW range."""
        return value is not None and MIN_PRICE <= value <= MAX_PRICE

    @staticmethod
    def format_price(price: int) -> str:
        """Display text for a price, e.g. 12000 -> '12,000원'."""
        return f"{price:,}원"

    @classmethod
    def extract_from_title(cls, title: str) -> Optional[int]:
        """Run the ordered title rules and return the first price in range."""
        if not title:
            return None

        for pattern in TITLE_PRICE_PATTERNS:
            match = pattern.search(title)
            if not match:
                continue
            value = cls.clean_price_string(match.group(1))
            if cls.is_valid_price(value):
                return value

        return None

    @classmethod
    def extract_from_text(cls, text: Optional[str]) -> Optional[int]:
        """Single digit-extraction pass over fallback element text."""
        if not text:
            return None

        match = FALLBACK_PRICE_PATTERN.search(text)
        if not match:
            return None
        value = cls.clean_price_string(match.group(1))
        return value if cls.is_valid_price(value) else None

    @classmethod
    def extract(cls, title: str, fallback_text: Optional[str] = None) -> PriceInfo:
        """Extract the price of a listing.

        Args:
            title: Listing title text
            fallback_text: Optional text of a dedicated price element

        Returns:
            PriceInfo; has_price is False when nothing valid was found
        """
        price = cls.extract_from_title(title)
        if price is None:
            price = cls.extract_from_text(fallback_text)

        if price is None:
            return PriceInfo(price=None, has_price=False, price_text=NO_PRICE_TEXT)

        return PriceInfo(price=price, has_price=True, price_text=cls.format_price(price))


def to_absolute_url(href: str, origin: str) -> str:
    """Resolve a listing href against the site origin.

    Args:
        href: Raw href attribute ("/l/d/939539" or an absolute URL)
        origin: Site origin, e.g. "https://www.algumon.com"

    Returns:
        Absolute URL
    """
    if not href:
        return href

    href = href.strip()
    if href.startswith("//"):
        return f"https:{href}"
    if href.startswith("http://") or href.startswith("https://"):
        return href
    return urljoin(origin.rstrip("/") + "/", href)
