"""Historical price and exchange-rate cache endpoints."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status

from portfolio_tracker.core.resolution import Resolution, Resolved
from portfolio_tracker.models import Market
from portfolio_tracker.schemas import (
    ManualTransactionRateRequest,
    ManualYearEndPriceRequest,
    ManualYearEndRateRequest,
    MarketDataLookupSchema,
)
from portfolio_tracker.services.market_data_cache import HistoricalMarketDataCache
from portfolio_tracker.api.dependencies.context import get_request_context
from portfolio_tracker.api.dependencies.services import get_market_data_cache

router = APIRouter(dependencies=[Depends(get_request_context)])


def _serialize_resolution(resolution: Resolution, key: str, period: str) -> MarketDataLookupSchema:
    if isinstance(resolution, Resolved):
        return MarketDataLookupSchema(
            resolved=True,
            key=key,
            period=period,
            value=float(resolution.value),
            currency=resolution.currency,
            actual_date=resolution.actual_date,
            requested_date=resolution.requested_date,
            source=resolution.source,
            from_cache=resolution.from_cache,
        )
    return MarketDataLookupSchema(
        resolved=False,
        key=resolution.key,
        period=resolution.period,
        reason=resolution.reason.value,
    )


@router.get("/year-end-prices/{ticker}", response_model=MarketDataLookupSchema)
async def get_year_end_price(
    ticker: str,
    year: int = Query(..., ge=1900),
    market: Market | None = Query(default=None),
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
) -> MarketDataLookupSchema:
    resolution = await cache.get_or_fetch_year_end_price(ticker, year, market)
    return _serialize_resolution(resolution, ticker.strip().upper(), str(year))


@router.post(
    "/year-end-prices",
    response_model=MarketDataLookupSchema,
    status_code=status.HTTP_201_CREATED,
)
async def save_year_end_price(
    payload: ManualYearEndPriceRequest,
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
) -> MarketDataLookupSchema:
    resolution = await cache.save_manual_year_end_price(
        payload.ticker,
        payload.year,
        Decimal(str(payload.price)),
        payload.currency,
        payload.actual_date,
    )
    return _serialize_resolution(resolution, payload.ticker.strip().upper(), str(payload.year))


@router.get("/year-end-rates", response_model=MarketDataLookupSchema)
async def get_year_end_rate(
    from_currency: str = Query(..., min_length=3, max_length=3),
    to_currency: str = Query(..., min_length=3, max_length=3),
    year: int = Query(..., ge=1900),
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
) -> MarketDataLookupSchema:
    resolution = await cache.get_or_fetch_year_end_rate(from_currency, to_currency, year)
    return _serialize_resolution(resolution, f"{from_currency}{to_currency}".upper(), str(year))


@router.post(
    "/year-end-rates",
    response_model=MarketDataLookupSchema,
    status_code=status.HTTP_201_CREATED,
)
async def save_year_end_rate(
    payload: ManualYearEndRateRequest,
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
) -> MarketDataLookupSchema:
    resolution = await cache.save_manual_year_end_rate(
        payload.from_currency,
        payload.to_currency,
        payload.year,
        Decimal(str(payload.rate)),
        payload.actual_date,
    )
    key = f"{payload.from_currency}{payload.to_currency}".upper()
    return _serialize_resolution(resolution, key, str(payload.year))


@router.get("/transaction-rates", response_model=MarketDataLookupSchema)
async def get_transaction_rate(
    from_currency: str = Query(..., min_length=3, max_length=3),
    to_currency: str = Query(..., min_length=3, max_length=3),
    on_date: date = Query(..., alias="date"),
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
) -> MarketDataLookupSchema:
    resolution = await cache.get_or_fetch_transaction_date_rate(from_currency, to_currency, on_date)
    return _serialize_resolution(resolution, f"{from_currency}{to_currency}".upper(), on_date.isoformat())


@router.post(
    "/transaction-rates",
    response_model=MarketDataLookupSchema,
    status_code=status.HTTP_201_CREATED,
)
async def save_transaction_rate(
    payload: ManualTransactionRateRequest,
    cache: HistoricalMarketDataCache = Depends(get_market_data_cache),
) -> MarketDataLookupSchema:
    resolution = await cache.save_manual_transaction_date_rate(
        payload.from_currency,
        payload.to_currency,
        payload.transaction_date,
        Decimal(str(payload.rate)),
    )
    key = f"{payload.from_currency}{payload.to_currency}".upper()
    return _serialize_resolution(resolution, key, payload.transaction_date.isoformat())


__all__ = ["router"]
