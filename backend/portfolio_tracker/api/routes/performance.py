"""Year performance and XIRR endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping

from fastapi import APIRouter, Depends

from portfolio_tracker.schemas import (
    AvailableYearsSchema,
    MissingExchangeRateSchema,
    MissingPriceSchema,
    PositionXirrRequest,
    ReferencePriceSchema,
    XirrRequest,
    XirrSchema,
    YearPerformanceRequest,
    YearPerformanceSchema,
)
from portfolio_tracker.services.performance import (
    AvailableYears,
    PerformanceService,
    ReferencePrice,
    XirrResult,
    YearPerformance,
    as_percentage,
)
from portfolio_tracker.api.dependencies.services import get_performance_service

router = APIRouter()


def _reference_price(schema: ReferencePriceSchema) -> ReferencePrice:
    return ReferencePrice(price=Decimal(str(schema.price)), exchange_rate=Decimal(str(schema.exchange_rate)))


def _reference_prices(prices: Mapping[str, ReferencePriceSchema] | None) -> dict[str, ReferencePrice] | None:
    if prices is None:
        return None
    return {ticker: _reference_price(price) for ticker, price in prices.items()}


def _optional_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _serialize_years(years: AvailableYears) -> AvailableYearsSchema:
    return AvailableYearsSchema(
        years=years.years,
        earliest_year=years.earliest_year,
        current_year=years.current_year,
    )


def _serialize_performance(result: YearPerformance) -> YearPerformanceSchema:
    return YearPerformanceSchema(
        year=result.year,
        currency=result.currency,
        period_start=result.period_start,
        period_end=result.period_end,
        start_value_home=_optional_float(result.start_value_home),
        end_value_home=_optional_float(result.end_value_home),
        net_contributions_home=_optional_float(result.net_contributions_home),
        cash_flow_count=result.cash_flow_count,
        transaction_count=result.transaction_count,
        xirr=result.xirr,
        xirr_percentage=as_percentage(result.xirr),
        total_return_percentage=as_percentage(result.total_return),
        modified_dietz_percentage=as_percentage(result.modified_dietz),
        time_weighted_return_percentage=as_percentage(result.time_weighted),
        source_currency=result.source_currency,
        start_value_source=_optional_float(result.start_value_source),
        end_value_source=_optional_float(result.end_value_source),
        net_contributions_source=_optional_float(result.net_contributions_source),
        xirr_source=result.xirr_source,
        xirr_source_percentage=as_percentage(result.xirr_source),
        total_return_source_percentage=as_percentage(result.total_return_source),
        modified_dietz_source_percentage=as_percentage(result.modified_dietz_source),
        time_weighted_return_source_percentage=as_percentage(result.time_weighted_source),
        missing_prices=[
            MissingPriceSchema(ticker=item.ticker, date=item.date, price_type=item.price_type, reason=item.reason)
            for item in result.missing_prices
        ],
        is_complete=result.is_complete,
        portfolio_ids=result.portfolio_ids,
        excluded_portfolio_ids=result.excluded_portfolio_ids,
    )


def _serialize_xirr(result: XirrResult) -> XirrSchema:
    return XirrSchema(
        as_of=result.as_of,
        xirr=result.xirr,
        xirr_percentage=as_percentage(result.xirr),
        cash_flow_count=result.cash_flow_count,
        current_value_home=float(result.current_value_home),
        earliest_transaction_date=result.earliest_transaction_date,
        missing_exchange_rates=[
            MissingExchangeRateSchema(
                transaction_id=item.transaction_id,
                ticker=item.ticker,
                transaction_date=item.transaction_date,
                currency=item.currency,
            )
            for item in result.missing_exchange_rates
        ],
    )


@router.get("/years", response_model=AvailableYearsSchema)
async def get_aggregate_available_years(
    service: PerformanceService = Depends(get_performance_service),
) -> AvailableYearsSchema:
    return _serialize_years(await service.aggregate_available_years())


@router.get("/portfolios/{portfolio_id}/years", response_model=AvailableYearsSchema)
async def get_available_years(
    portfolio_id: int,
    service: PerformanceService = Depends(get_performance_service),
) -> AvailableYearsSchema:
    return _serialize_years(await service.available_years(portfolio_id))


@router.post("/portfolios/{portfolio_id}/year", response_model=YearPerformanceSchema)
async def calculate_year_performance(
    portfolio_id: int,
    payload: YearPerformanceRequest,
    service: PerformanceService = Depends(get_performance_service),
) -> YearPerformanceSchema:
    result = await service.calculate_year_performance(
        portfolio_id,
        payload.year,
        year_start_prices=_reference_prices(payload.year_start_prices),
        year_end_prices=_reference_prices(payload.year_end_prices),
    )
    return _serialize_performance(result)


@router.post("/aggregate/year", response_model=YearPerformanceSchema)
async def calculate_aggregate_year_performance(
    payload: YearPerformanceRequest,
    service: PerformanceService = Depends(get_performance_service),
) -> YearPerformanceSchema:
    result = await service.calculate_aggregate_year_performance(
        payload.year,
        year_start_prices=_reference_prices(payload.year_start_prices),
        year_end_prices=_reference_prices(payload.year_end_prices),
    )
    return _serialize_performance(result)


@router.post("/portfolios/{portfolio_id}/xirr", response_model=XirrSchema)
async def calculate_xirr(
    portfolio_id: int,
    payload: XirrRequest,
    service: PerformanceService = Depends(get_performance_service),
) -> XirrSchema:
    result = await service.calculate_xirr(portfolio_id, _reference_prices(payload.current_prices), payload.as_of)
    return _serialize_xirr(result)


@router.post("/portfolios/{portfolio_id}/positions/{ticker}/xirr", response_model=XirrSchema)
async def calculate_position_xirr(
    portfolio_id: int,
    ticker: str,
    payload: PositionXirrRequest,
    service: PerformanceService = Depends(get_performance_service),
) -> XirrSchema:
    current_price = _reference_price(payload.current_price) if payload.current_price else None
    result = await service.calculate_position_xirr(portfolio_id, ticker, current_price, payload.as_of)
    return _serialize_xirr(result)


@router.post("/aggregate/xirr", response_model=XirrSchema)
async def calculate_aggregate_xirr(
    payload: XirrRequest,
    service: PerformanceService = Depends(get_performance_service),
) -> XirrSchema:
    result = await service.calculate_aggregate_xirr(_reference_prices(payload.current_prices), payload.as_of)
    return _serialize_xirr(result)


__all__ = ["router"]
