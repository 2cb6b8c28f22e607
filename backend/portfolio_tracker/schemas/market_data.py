"""Pydantic schemas for cached historical prices and exchange rates."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class ManualYearEndPriceRequest(BaseModel):
    ticker: str = Field(..., examples=["ASML"])
    year: int = Field(..., ge=1900)
    price: float
    currency: str = Field(..., min_length=3, max_length=3)
    actual_date: date | None = None


class ManualYearEndRateRequest(BaseModel):
    from_currency: str = Field(..., min_length=3, max_length=3, examples=["USD"])
    to_currency: str = Field(..., min_length=3, max_length=3, examples=["TWD"])
    year: int = Field(..., ge=1900)
    rate: float
    actual_date: date | None = None


class ManualTransactionRateRequest(BaseModel):
    from_currency: str = Field(..., min_length=3, max_length=3)
    to_currency: str = Field(..., min_length=3, max_length=3)
    transaction_date: date
    rate: float


class MarketDataLookupSchema(BaseModel):
    """A resolved value, or the key, period and reason it could not be resolved."""

    resolved: bool
    key: str
    period: str
    value: float | None = None
    currency: str | None = None
    actual_date: date | None = None
    requested_date: date | None = None
    source: str | None = None
    from_cache: bool = False
    reason: str | None = None


__all__ = [
    "ManualYearEndPriceRequest",
    "ManualYearEndRateRequest",
    "ManualTransactionRateRequest",
    "MarketDataLookupSchema",
]
