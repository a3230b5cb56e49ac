"""Crawler administration endpoints.

Status and statistics of the ingestion pipeline, a manual crawl trigger,
manual retention cleanup and stored price history.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.config import settings
from app.core.exceptions import (
    CycleInProgressError,
    FetchFailure,
    StoreFailure,
)
from app.dependencies import get_pipeline, get_scheduler
from app.schemas import (
    ApiResponse,
    CacheEfficiencyResponse,
    CacheStatsResponse,
    CleanupResponse,
    CycleResultResponse,
    CycleStatsResponse,
    PriceHistoryPoint,
    PriceHistoryResponse,
    StatsResponse,
    StatusResponse,
    StoreSummaryResponse,
)
from app.scrapers.scheduler import CycleScheduler
from app.scrapers.utils.identifier import is_valid_deal_id
from app.services.ingestion_pipeline import IngestionPipeline

router = APIRouter()
logger = structlog.get_logger(__name__)


def _cache_sections(pipeline: IngestionPipeline):
    cache = CacheStatsResponse(**pipeline.cache.stats())
    efficiency = CacheEfficiencyResponse.model_validate(pipeline.cache.efficiency())
    return cache, efficiency


@router.get("/status", response_model=ApiResponse[StatusResponse])
async def get_status(
    pipeline: IngestionPipeline = Depends(get_pipeline),
    scheduler: Optional[CycleScheduler] = Depends(get_scheduler),
):
    """Server state, cycle counters and identifier cache statistics."""
    cache, efficiency = _cache_sections(pipeline)
    data = StatusResponse(
        environment=settings.ENVIRONMENT,
        store_strategy=pipeline.store.strategy,
        is_crawling=pipeline.is_running,
        scheduler=scheduler.get_job_status() if scheduler else {},
        crawl_stats=CycleStatsResponse(**pipeline.stats.as_dict()),
        cache=cache,
        cache_efficiency=efficiency,
    )
    return ApiResponse(data=data)


@router.get("/stats", response_model=ApiResponse[StatsResponse])
async def get_stats(pipeline: IngestionPipeline = Depends(get_pipeline)):
    """Store row counts combined with cache and cycle counters."""
    try:
        summary = await pipeline.store.summary()
    except StoreFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    cache, efficiency = _cache_sections(pipeline)
    data = StatsResponse(
        database=StoreSummaryResponse.model_validate(summary),
        cache=cache,
        cache_efficiency=efficiency,
        crawl_stats=CycleStatsResponse(**pipeline.stats.as_dict()),
    )
    return ApiResponse(data=data)


@router.post("/crawl", response_model=ApiResponse[CycleResultResponse])
async def trigger_crawl(pipeline: IngestionPipeline = Depends(get_pipeline)):
    """Run one ingestion cycle now.

    Returns 409 while another cycle is running and 503 when the cycle fails.
    """
    logger.info("manual_crawl_requested")
    try:
        result = await pipeline.run_one_cycle()
    except CycleInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except (FetchFailure, StoreFailure) as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return ApiResponse(data=CycleResultResponse.model_validate(result))


@router.post("/cleanup", response_model=ApiResponse[CleanupResponse])
async def trigger_cleanup(
    days: Optional[int] = Query(default=None, ge=1, le=365),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Delete old Algumon rows now; days defaults to the configured retention."""
    days = days or pipeline.retention_days
    logger.info("manual_cleanup_requested", days=days)
    try:
        deleted = await pipeline.cleanup(days)
    except StoreFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return ApiResponse(data=CleanupResponse(deleted=deleted, days=days))


@router.get("/deals/{deal_id}/price-history", response_model=ApiResponse[PriceHistoryResponse])
async def get_price_history(
    deal_id: str,
    limit: int = Query(default=30, ge=1, le=365),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Stored price observations for one deal, newest first."""
    if not is_valid_deal_id(deal_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid deal id")

    try:
        rows = await pipeline.store.get_price_history(deal_id, limit)
    except StoreFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return ApiResponse(
        data=PriceHistoryResponse(
            deal_id=deal_id,
            history=[PriceHistoryPoint.model_validate(row) for row in rows],
        )
    )
