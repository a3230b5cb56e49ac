"""Health check endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_db, get_scheduler
from app.schemas import HealthCheckResponse
from app.scrapers.scheduler import CycleScheduler

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[CycleScheduler] = Depends(get_scheduler),
):
    """Return service health status.

    Checks connectivity to the database and reports the identifier cache
    size and scheduler state.
    """
    services = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {str(e)}"

    services["database"] = db_status

    pipeline = getattr(request.app.state, "pipeline", None)
    services["pipeline"] = "ok" if pipeline is not None else "error: not initialized"

    scheduler_status = "running" if scheduler and scheduler.is_running() else "disabled"

    overall_status = "ok" if all(s == "ok" for s in services.values()) else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        cache_size=len(pipeline.cache) if pipeline is not None else 0,
        scheduler=scheduler_status,
        services=services,
    )
