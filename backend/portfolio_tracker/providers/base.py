"""Shared contracts for historical market-data providers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from portfolio_tracker.models import DataSource, Market


class MarketDataProviderError(RuntimeError):
    """Raised for transport failures, rate limiting and unreadable payloads."""


@dataclass(frozen=True)
class PriceQuote:
    price: Decimal
    currency: str
    actual_date: date
    source: DataSource


@dataclass(frozen=True)
class RateQuote:
    rate: Decimal
    actual_date: date
    source: DataSource


class PriceProvider(Protocol):
    """Historical close lookups; ``None`` means the provider has no data."""

    source: DataSource

    async def get_price_on_date(self, ticker: str, market: Market, on_date: date) -> PriceQuote | None:
        ...

    async def get_year_end_price(self, ticker: str, market: Market, year: int) -> PriceQuote | None:
        ...


class ExchangeRateProvider(Protocol):
    source: DataSource

    async def get_exchange_rate(self, from_ccy: str, to_ccy: str, on_date: date) -> RateQuote | None:
        ...


def year_end(year: int) -> date:
    return date(year, 12, 31)


__all__ = [
    "MarketDataProviderError",
    "PriceQuote",
    "RateQuote",
    "PriceProvider",
    "ExchangeRateProvider",
    "year_end",
]
