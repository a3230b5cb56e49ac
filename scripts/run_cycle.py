"""Manual crawl runner for testing and debugging the pipeline.

Runs one ingestion cycle against the configured database, or with
--dry-run only fetches and builds deals for one category without writing
anything.

Usage:
    python scripts/run_cycle.py
    python scripts/run_cycle.py --dry-run --category 2
    python scripts/run_cycle.py --dry-run --category 3 --limit 5
"""

import asyncio
import argparse
import sys
import os

# Add backend to path so we can import app modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from app.core.exceptions import AlgumonCrawlerError
from app.db.session import async_session_factory, create_tables, engine
from app.scrapers.adapters import AlgumonAdapter
from app.scrapers.base import CATEGORIES
from app.scrapers.record_builder import RecordBuilder
from app.services.deal_cache import IdentifierCache
from app.services.deal_store import select_deal_store
from app.services.dedup import DedupEngine
from app.services.ingestion_pipeline import IngestionPipeline


async def dry_run(category: str, limit: int = 10):
    """Fetch one category and display the deals it builds.

    Args:
        category: Algumon category code ("1"-"6")
        limit: Maximum number of deals to display (default: 10)
    """
    print(f"\n{'='*70}")
    print(f"  Dry run: category {category} ({CATEGORIES.get(category, 'Unknown')})")
    print(f"{'='*70}\n")

    adapter = AlgumonAdapter()
    builder = RecordBuilder(origin=adapter.base_url)

    try:
        listings = await adapter.fetch_listings(category)
        deals = [d for d in (builder.build(raw, category) for raw in listings) if d is not None]
        unique = DedupEngine.dedupe_batch(deals)

        print(f"✅ {len(listings)} listings, {len(deals)} built, {len(unique)} unique\n")

        for i, deal in enumerate(unique[:limit], 1):
            print(f"[{i}] {deal.title}")
            print(f"    🆔 Deal ID: {deal.deal_id}")
            print(f"    💰 Price: {deal.price_text}")
            if deal.site_name:
                print(f"    🏢 Site: {deal.site_name}")
            print(f"    🔗 URL: {deal.url[:80]}")
            print()

    except AlgumonCrawlerError as e:
        print(f"\n❌ {e.message}\n")

    finally:
        await adapter.close()


async def run_cycle():
    """Run one full ingestion cycle and print its summary."""
    adapter = AlgumonAdapter()

    try:
        await create_tables()
        store = await select_deal_store(async_session_factory)
        print(f"\n🗄️  Store strategy: {store.strategy}")

        pipeline = IngestionPipeline(source=adapter, store=store, cache=IdentifierCache())
        loaded = await pipeline.warm_cache()
        print(f"🧠 Cache warmed with {loaded} identifiers\n")

        result = await pipeline.run_one_cycle()

        print(f"{'='*70}")
        print(f"  Summary")
        print(f"{'='*70}")
        for category in result.categories:
            mark = "✅" if category.success else "❌"
            detail = f"{category.listings} listings" if category.success else category.error
            print(f"  {mark} {category.category} {category.category_name}: {detail}")
        print(f"  Unique deals: {result.unique}")
        print(f"  Cache hits: {result.cache_hits}")
        print(f"  Saved: {result.saved}")
        print(f"  Store conflicts: {result.store_conflicts}")
        print(f"  Dropped listings: {result.dropped}")
        print(f"  Duration: {result.duration_ms}ms")
        print(f"{'='*70}\n")

    except AlgumonCrawlerError as e:
        print(f"\n❌ Cycle failed: {e.message}\n")

    finally:
        await adapter.close()
        await engine.dispose()


def main():
    """Parse arguments and run the crawler."""
    parser = argparse.ArgumentParser(
        description="Run one Algumon crawl cycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_cycle.py
  python scripts/run_cycle.py --dry-run --category 2
  python scripts/run_cycle.py --dry-run --category 3 --limit 5
        """,
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and build one category without touching the database",
    )

    parser.add_argument(
        "--category",
        default="1",
        choices=sorted(CATEGORIES),
        help="Category code for --dry-run (default: 1)",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum number of deals to display (default: 10)",
    )

    args = parser.parse_args()

    if args.dry_run:
        asyncio.run(dry_run(args.category, args.limit))
    else:
        asyncio.run(run_cycle())


if __name__ == "__main__":
    main()
