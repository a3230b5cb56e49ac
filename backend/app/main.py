"""Algumon crawler -- FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1.router import api_v1_router
from app.config import settings
from app.core.exceptions import StoreFailure
from app.db.session import async_session_factory, create_tables, engine
from app.scrapers.adapters import AlgumonAdapter
from app.scrapers.base import CATEGORIES
from app.scrapers.scheduler import CycleScheduler
from app.services.deal_cache import IdentifierCache
from app.services.deal_store import select_deal_store
from app.services.ingestion_pipeline import IngestionPipeline

APP_NAME = "Algumon Crawler API"
APP_VERSION = "0.1.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    app.state.pipeline = None
    app.state.scheduler = None

    # Startup
    logger.info(f"Starting {APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    source = AlgumonAdapter()
    try:
        await create_tables()
        logger.info("Database tables verified/created")

        store = await select_deal_store(async_session_factory)
        logger.info(f"Deal store strategy: {store.strategy}")

        cache = IdentifierCache()
        pipeline = IngestionPipeline(source=source, store=store, cache=cache)
        try:
            await pipeline.warm_cache()
        except StoreFailure as e:
            # Cold cache; the store's conflict policy still prevents duplicates
            logger.warning(f"Identifier cache warm-up failed: {e.message}")
        app.state.pipeline = pipeline
    except Exception as e:
        logger.error(f"Crawler init failed: {e}", exc_info=True)

    # Start crawl scheduler (only in non-test environments)
    if app.state.pipeline is not None and settings.SCHEDULER_ENABLED and settings.ENVIRONMENT != "test":
        logger.info("Initializing crawl scheduler...")
        scheduler = CycleScheduler(app.state.pipeline)
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Scheduler disabled")

    yield

    # Shutdown
    logger.info(f"Shutting down {APP_NAME}...")

    if app.state.scheduler:
        logger.info("Stopping crawl scheduler...")
        app.state.scheduler.stop()

    await source.close()
    await engine.dispose()


app = FastAPI(
    title=APP_NAME,
    description="Algumon hot deal crawler with identifier-based deduplication",
    version=APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with service information."""
    pipeline = getattr(app.state, "pipeline", None)
    cache_summary = None
    if pipeline is not None:
        efficiency = pipeline.cache.efficiency()
        cache_summary = {
            "size": len(pipeline.cache),
            "hit_rate": efficiency.hit_rate,
            "saved_queries": efficiency.saved_queries,
        }

    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "categories": CATEGORIES,
        "interval_minutes": settings.CRAWL_INTERVAL_MINUTES,
        "cache": cache_summary,
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/api/v1/health",
    }
