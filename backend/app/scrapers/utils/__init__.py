"""Scraper utilities for rate limiting, identifier extraction, and price normalization."""

from .rate_limiter import DomainRateLimiter, TokenBucket
from .identifier import (
    DEAL_ID_PATTERNS,
    composite_key,
    extract_deal_id,
    is_valid_deal_id,
)
from .normalizer import (
    MAX_PRICE,
    MIN_PRICE,
    NO_PRICE_TEXT,
    PriceInfo,
    PriceNormalizer,
    to_absolute_url,
)
from .retry import http_retry


__all__ = [
    # Rate limiting
    "DomainRateLimiter",
    "TokenBucket",
    # Identifiers
    "DEAL_ID_PATTERNS",
    "composite_key",
    "extract_deal_id",
    "is_valid_deal_id",
    # Normalization
    "MAX_PRICE",
    "MIN_PRICE",
    "NO_PRICE_TEXT",
    "PriceInfo",
    "PriceNormalizer",
    "to_absolute_url",
    # Retry decorators
    "http_retry",
]
