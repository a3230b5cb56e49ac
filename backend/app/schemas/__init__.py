"""Pydantic schemas for the Algumon crawler API.

All request/response models are defined here for easy import.
"""

from app.schemas.common import ApiResponse
from app.schemas.health import HealthCheckResponse
from app.schemas.crawl import (
    CacheEfficiencyResponse,
    CacheStatsResponse,
    CategoryResultResponse,
    CleanupResponse,
    CycleResultResponse,
    CycleStatsResponse,
    LastErrorResponse,
    PriceHistoryPoint,
    PriceHistoryResponse,
    StatsResponse,
    StatusResponse,
    StoreSummaryResponse,
)

__all__ = [
    # Common
    "ApiResponse",
    # Health
    "HealthCheckResponse",
    # Crawl
    "CacheEfficiencyResponse",
    "CacheStatsResponse",
    "CategoryResultResponse",
    "CleanupResponse",
    "CycleResultResponse",
    "CycleStatsResponse",
    "LastErrorResponse",
    "PriceHistoryPoint",
    "PriceHistoryResponse",
    "StatsResponse",
    "StatusResponse",
    "StoreSummaryResponse",
]
