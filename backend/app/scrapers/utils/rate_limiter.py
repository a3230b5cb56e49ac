"""Token bucket rate limiter for per-domain politeness."""

import asyncio
import time
from typing import Dict


class TokenBucket:
    """Token bucket: starts full, refills at a constant rate.

    Each request consumes one token and waits when the bucket is empty.
    """

    def __init__(self, rate: float, capacity: float):
        """Initialize token bucket.

        Args:
            rate: Tokens per second (e.g., 1.0 = 60 RPM)
            capacity: Maximum tokens in bucket (burst capacity)
        """
        self.rate = rate
        self.capacity = capacity
        self.tokens = capacity
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Take tokens from the bucket, sleeping until enough are available."""
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                await asyncio.sleep((tokens - self.tokens) / self.rate)


class DomainRateLimiter:
    """One token bucket per domain.

    Parallel category fetches share the bucket of the origin server, so
    enabling parallel fetch never exceeds the domain's request budget.
    """

    DOMAIN_LIMITS_RPM = {
        "www.algumon.com": 30,
        "algumon.com": 30,
    }

    DEFAULT_RPM = 10

    def __init__(self):
        self._buckets: Dict[str, TokenBucket] = {}

    def _get_bucket(self, domain: str) -> TokenBucket:
        if domain not in self._buckets:
            self.set_custom_limit(domain, self.DOMAIN_LIMITS_RPM.get(domain, self.DEFAULT_RPM))
        return self._buckets[domain]

    async def acquire(self, domain: str, tokens: float = 1.0) -> None:
        """Block until the domain's rate limit allows another request."""
        await self._get_bucket(domain).acquire(tokens)

    def set_custom_limit(self, domain: str, rpm: int) -> None:
        """Replace the bucket of a domain with a new requests-per-minute limit."""
        rate = rpm / 60.0
        # Capacity allows small bursts (10% of RPM, min 2)
        capacity = max(2.0, rpm / 10.0)
        self._buckets[domain] = TokenBucket(rate=rate, capacity=capacity)
