"""Pydantic schemas for year performance and XIRR responses."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class ReferencePriceSchema(BaseModel):
    price: float = Field(..., gt=0)
    exchange_rate: float = Field(default=1.0, gt=0, description="Rate to the home currency")


class YearPerformanceRequest(BaseModel):
    year: int = Field(..., ge=1900)
    year_start_prices: dict[str, ReferencePriceSchema] | None = Field(
        default=None,
        description="Prices for holdings at the start of the year, keyed by ticker",
    )
    year_end_prices: dict[str, ReferencePriceSchema] | None = Field(
        default=None,
        description="Prices for holdings at the end of the year, keyed by ticker",
    )


class MissingPriceSchema(BaseModel):
    ticker: str
    date: date
    price_type: str
    reason: str | None = None


class YearPerformanceSchema(BaseModel):
    year: int
    currency: str
    period_start: date
    period_end: date
    start_value_home: float | None = None
    end_value_home: float | None = None
    net_contributions_home: float | None = None
    cash_flow_count: int = 0
    transaction_count: int = 0
    xirr: float | None = None
    xirr_percentage: float | None = None
    total_return_percentage: float | None = None
    modified_dietz_percentage: float | None = None
    time_weighted_return_percentage: float | None = None
    source_currency: str | None = None
    start_value_source: float | None = None
    end_value_source: float | None = None
    net_contributions_source: float | None = None
    xirr_source: float | None = None
    xirr_source_percentage: float | None = None
    total_return_source_percentage: float | None = None
    modified_dietz_source_percentage: float | None = None
    time_weighted_return_source_percentage: float | None = None
    missing_prices: list[MissingPriceSchema] = Field(default_factory=list)
    is_complete: bool = True
    portfolio_ids: list[int] = Field(default_factory=list)
    excluded_portfolio_ids: list[int] = Field(default_factory=list)


class AvailableYearsSchema(BaseModel):
    years: list[int]
    earliest_year: int | None = None
    current_year: int


class XirrRequest(BaseModel):
    current_prices: dict[str, ReferencePriceSchema] = Field(default_factory=dict)
    as_of: date | None = None


class PositionXirrRequest(BaseModel):
    current_price: ReferencePriceSchema | None = None
    as_of: date | None = None


class MissingExchangeRateSchema(BaseModel):
    transaction_id: int
    ticker: str
    transaction_date: date
    currency: str


class XirrSchema(BaseModel):
    as_of: date
    xirr: float | None = None
    xirr_percentage: float | None = None
    cash_flow_count: int
    current_value_home: float
    earliest_transaction_date: date | None = None
    missing_exchange_rates: list[MissingExchangeRateSchema] = Field(default_factory=list)


__all__ = [
    "ReferencePriceSchema",
    "YearPerformanceRequest",
    "MissingPriceSchema",
    "YearPerformanceSchema",
    "AvailableYearsSchema",
    "XirrRequest",
    "PositionXirrRequest",
    "MissingExchangeRateSchema",
    "XirrSchema",
]
