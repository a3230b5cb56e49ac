"""Crawler for Algumon category pages.

This package provides:
- Listing source base class and the Deal record
- The Algumon adapter (httpx + BeautifulSoup)
- Record building from raw listing strings
- Scheduler for periodic crawl cycles
"""

from .base import (
    CATEGORIES,
    BaseListingSource,
    Deal,
    RawListing,
)
from .record_builder import RecordBuilder

__all__ = [
    # Base classes
    "BaseListingSource",
    # Data structures
    "CATEGORIES",
    "Deal",
    "RawListing",
    # Building
    "RecordBuilder",
]
