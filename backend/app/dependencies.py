"""FastAPI dependency injection providers."""

from typing import AsyncGenerator, Optional

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import async_session_factory
from app.scrapers.scheduler import CycleScheduler
from app.services.ingestion_pipeline import IngestionPipeline


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for request-scoped usage.

    The session is automatically committed on success or rolled back on error.
    Always closed after the request completes.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_pipeline(request: Request) -> IngestionPipeline:
    """Return the pipeline built during application startup.

    Raises 503 while startup has not finished (or failed).
    """
    pipeline: Optional[IngestionPipeline] = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Crawler is not initialized",
        )
    return pipeline


def get_scheduler(request: Request) -> Optional[CycleScheduler]:
    return getattr(request.app.state, "scheduler", None)
