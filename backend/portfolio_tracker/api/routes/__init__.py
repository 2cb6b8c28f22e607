"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .market_data import router as market_data_router
from .performance import router as performance_router
from .portfolios import router as portfolios_router
from .snapshots import router as snapshots_router
from .stock_splits import router as stock_splits_router
from .transactions import router as transactions_router

api_router = APIRouter()
api_router.include_router(portfolios_router, prefix="/portfolios", tags=["portfolios"])
api_router.include_router(
    transactions_router, prefix="/portfolios/{portfolio_id}/transactions", tags=["transactions"]
)
api_router.include_router(snapshots_router, prefix="/portfolios/{portfolio_id}/snapshots", tags=["snapshots"])
api_router.include_router(stock_splits_router, prefix="/stock-splits", tags=["stock-splits"])
api_router.include_router(market_data_router, prefix="/market-data", tags=["market-data"])
api_router.include_router(performance_router, prefix="/performance", tags=["performance"])

__all__ = ["api_router"]
