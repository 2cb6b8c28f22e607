"""Backfill transaction valuation snapshots for a portfolio."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from portfolio_tracker.core.logging import setup_logging
from portfolio_tracker.db.init import init_database
from portfolio_tracker.db.session import get_database
from portfolio_tracker.providers.registry import build_provider_registry
from portfolio_tracker.services.market_data_cache import HistoricalMarketDataCache
from portfolio_tracker.services.snapshots import TransactionPortfolioSnapshotService


async def _run(owner_id: str, portfolio_id: int, start: date, end: date, refresh: bool) -> None:
    database = get_database()
    providers = build_provider_registry()
    await init_database(database)
    try:
        async with database.session() as session:
            cache = HistoricalMarketDataCache(session, providers)
            service = TransactionPortfolioSnapshotService(session, cache, owner_id=owner_id)
            if refresh:
                count = await service.refresh_from(portfolio_id, start)
                print(f"Recomputed {count} snapshots for portfolio {portfolio_id} from {start}")
            else:
                count = await service.backfill(portfolio_id, start, end)
                print(f"Created {count} snapshots for portfolio {portfolio_id} between {start} and {end}")
    finally:
        await providers.aclose()
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill transaction snapshots for a portfolio")
    parser.add_argument("--owner", required=True, help="Owning user id")
    parser.add_argument("--portfolio", required=True, type=int)
    parser.add_argument("--start", required=True, type=date.fromisoformat)
    parser.add_argument("--end", type=date.fromisoformat, default=date.today())
    parser.add_argument("--refresh", action="store_true", help="Recompute existing snapshots from --start")
    args = parser.parse_args()
    setup_logging()
    asyncio.run(_run(args.owner, args.portfolio, args.start, args.end, args.refresh))


if __name__ == "__main__":
    main()
