"""Algumon (알구몬) category page adapter.

Algumon aggregates hot deals from Korean community boards. Each category
page is server-rendered HTML, so a plain httpx request is enough.

Structure: li elements holding a deal anchor
  - a[href*="/l/d/{deal_id}"] (title attribute and/or text)
  - .title / .deal-title (labelled title)
  - img (thumbnail)
  - .description / .deal-desc
  - .site-name / [data-site] (origin community or shop)
  - .price / .deal-price / .product-price
"""

from typing import List, Optional
from urllib.parse import urlparse

import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from app.config import settings
from app.core.exceptions import FetchFailure
from app.scrapers.base import CATEGORIES, BaseListingSource, RawListing
from app.scrapers.utils.rate_limiter import DomainRateLimiter
from app.scrapers.utils.retry import http_retry

logger = structlog.get_logger()

DEAL_ANCHOR_SELECTOR = 'a[href*="/l/d/"]'
TITLE_SELECTOR = ".title, .deal-title"
DESCRIPTION_SELECTOR = ".description, .deal-desc"
SITE_SELECTOR = ".site-name, [data-site]"
PRICE_SELECTOR = ".price, .deal-price, .product-price"

# Browser-like headers; Algumon serves a bot page to bare clients
COMMON_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "max-age=0",
}

MAX_REDIRECTS = 3


def _text(element: Optional[Tag]) -> Optional[str]:
    if element is None:
        return None
    text = element.get_text(strip=True)
    return text or None


def _attr(element: Optional[Tag], name: str) -> Optional[str]:
    if element is None:
        return None
    value = element.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return value.strip() if value and value.strip() else None


class AlgumonAdapter(BaseListingSource):
    """Fetches Algumon category pages and locates listing elements."""

    source_slug = "algumon"
    source_name = "알구몬"

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__()
        self.base_url = (base_url or settings.ALGUMON_BASE_URL).rstrip("/")
        self.domain = urlparse(self.base_url).netloc
        self.rate_limiter = DomainRateLimiter()
        self._timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self._client = client
        self._owns_client = client is None
        self.logger = logger.bind(adapter=self.source_slug)

    def category_url(self, category: str) -> str:
        return f"{self.base_url}/category/{category}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={**COMMON_HEADERS, "Referer": f"{self.base_url}/"},
                timeout=self._timeout,
                follow_redirects=True,
                max_redirects=MAX_REDIRECTS,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch_listings(self, category: str) -> List[RawListing]:
        """Fetch one category page and return its listings.

        Raises:
            FetchFailure: Unknown category, network error, non-2xx status
                after retries, or unparseable markup
        """
        if category not in CATEGORIES:
            raise FetchFailure(category, "unknown category")

        url = self.category_url(category)
        self.logger.info("fetching_category", category=category, url=url)

        try:
            html = await self._get_page(url)
        except httpx.HTTPStatusError as e:
            raise FetchFailure(category, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FetchFailure(category, type(e).__name__) from e

        try:
            listings = self.parse_listings(html)
        except Exception as e:
            raise FetchFailure(category, f"parse error: {type(e).__name__}") from e

        self.logger.info(
            "category_fetched",
            category=category,
            category_name=CATEGORIES[category],
            count=len(listings),
        )
        return listings

    @http_retry
    async def _get_page(self, url: str) -> str:
        if self.rate_limiter:
            await self.rate_limiter.acquire(self.domain)

        response = await self._get_client().get(url)
        response.raise_for_status()
        return response.text

    def parse_listings(self, html: str) -> List[RawListing]:
        """Locate listing elements and pull out their strings."""
        soup = BeautifulSoup(html, "html.parser")
        listings: List[RawListing] = []

        for item in soup.select("li"):
            # Outer list items wrapping inner ones would duplicate the same anchor
            if item.find("li") is not None:
                continue

            anchor = item.select_one(DEAL_ANCHOR_SELECTOR)
            if anchor is None:
                continue

            site_element = item.select_one(SITE_SELECTOR)
            site_label = (
                _text(site_element)
                or _attr(site_element, "data-site")
                or _attr(item, "data-site")
            )

            listings.append(
                RawListing(
                    href=_attr(anchor, "href"),
                    anchor_title=_attr(anchor, "title"),
                    anchor_text=_text(anchor),
                    title_text=_text(item.select_one(TITLE_SELECTOR)),
                    image_src=_attr(item.select_one("img"), "src"),
                    description_text=_text(item.select_one(DESCRIPTION_SELECTOR)),
                    site_label=site_label,
                    price_text=_text(item.select_one(PRICE_SELECTOR)),
                )
            )

        return listings
