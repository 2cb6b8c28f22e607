"""FastAPI dependencies wiring the request session into domain services."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.db.session import Database
from portfolio_tracker.providers.registry import ProviderRegistry
from portfolio_tracker.services.market_data_cache import HistoricalMarketDataCache
from portfolio_tracker.services.performance import PerformanceService
from portfolio_tracker.services.snapshots import TransactionPortfolioSnapshotService

from .context import RequestContext, get_request_context


def get_app_database(request: Request) -> Database:
    return request.app.state.database


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.providers


async def get_db_session(database: Database = Depends(get_app_database)) -> AsyncIterator[AsyncSession]:
    async for session in database.get_session():  # pragma: no cover - FastAPI dependency wrapper
        yield session


def get_market_data_cache(
    session: AsyncSession = Depends(get_db_session),
    providers: ProviderRegistry = Depends(get_provider_registry),
) -> HistoricalMarketDataCache:
    return HistoricalMarketDataCache(session, providers)


def get_snapshot_service(
    session: AsyncSession = Depends(get_db_session),
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
    context: RequestContext = Depends(get_request_context),
) -> TransactionPortfolioSnapshotService:
    return TransactionPortfolioSnapshotService(session, cache, owner_id=context.user_id)


def get_performance_service(
    session: AsyncSession = Depends(get_db_session),
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
    snapshots: TransactionPortfolioSnapshotService = Depends(get_snapshot_service),
    context: RequestContext = Depends(get_request_context),
) -> PerformanceService:
    return PerformanceService(session, cache, snapshots, owner_id=context.user_id)


__all__ = [
    "get_app_database",
    "get_provider_registry",
    "get_db_session",
    "get_market_data_cache",
    "get_snapshot_service",
    "get_performance_service",
]
