"""Shared builders for persistence-backed tests."""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Mapping

from portfolio_tracker.db.init import init_database
from portfolio_tracker.db.session import Database
from portfolio_tracker.models import DataSource, Market, Portfolio, StockTransaction, TransactionType
from portfolio_tracker.providers.base import MarketDataProviderError, PriceQuote, RateQuote, year_end
from portfolio_tracker.providers.registry import ProviderRegistry

Series = Mapping[date, Decimal]


class FakeProvider:
    """In-memory price and rate source returning the latest value on or before a date."""

    def __init__(
        self,
        prices: Mapping[str, tuple[str, Series]] | None = None,
        rates: Mapping[str, Series] | None = None,
        *,
        source: DataSource = DataSource.STOOQ,
        fail: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.source = source
        self._prices = {ticker.upper(): value for ticker, value in (prices or {}).items()}
        self._rates = {pair.upper(): value for pair, value in (rates or {}).items()}
        self._fail = fail
        self._delay = delay
        self.calls: list[tuple[str, date]] = []

    async def get_price_on_date(self, ticker: str, market: Market, on_date: date) -> PriceQuote | None:
        await self._tick(ticker, on_date)
        entry = self._prices.get(ticker.upper())
        if entry is None:
            return None
        currency, series = entry
        latest = _latest(series, on_date)
        if latest is None:
            return None
        actual_date, price = latest
        return PriceQuote(price=price, currency=currency, actual_date=actual_date, source=self.source)

    async def get_year_end_price(self, ticker: str, market: Market, year: int) -> PriceQuote | None:
        return await self.get_price_on_date(ticker, market, year_end(year))

    async def get_exchange_rate(self, from_ccy: str, to_ccy: str, on_date: date) -> RateQuote | None:
        pair = f"{from_ccy}{to_ccy}".upper()
        await self._tick(pair, on_date)
        latest = _latest(self._rates.get(pair, {}), on_date)
        if latest is None:
            return None
        actual_date, rate = latest
        return RateQuote(rate=rate, actual_date=actual_date, source=self.source)

    async def _tick(self, key: str, on_date: date) -> None:
        self.calls.append((key, on_date))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail:
            raise MarketDataProviderError(f"{self.source.value} is down")


def _latest(series: Series, on_date: date) -> tuple[date, Decimal] | None:
    eligible = [day for day in series if day <= on_date]
    if not eligible:
        return None
    day = max(eligible)
    return day, series[day]


def registry_for(*providers: FakeProvider) -> ProviderRegistry:
    chain = list(providers)
    return ProviderRegistry(
        price_chains={market: chain for market in Market},
        year_end_rate_chain=chain,
        transaction_date_rate_chain=chain,
    )


async def make_database(tmp_path: Path, name: str = "test.db") -> Database:
    database = Database(url=f"sqlite+aiosqlite:///{tmp_path / name}")
    await init_database(database)
    return database


async def add_portfolio(
    database: Database,
    owner_id: str = "user-1",
    *,
    name: str = "Main",
    home_currency: str = "TWD",
    base_currency: str = "USD",
) -> int:
    async with database.session() as session:
        portfolio = Portfolio(
            owner_id=owner_id, name=name, base_currency=base_currency, home_currency=home_currency
        )
        session.add(portfolio)
        await session.commit()
        return portfolio.id


async def add_transaction(
    database: Database,
    portfolio_id: int,
    on: date,
    ticker: str,
    shares: str,
    price: str,
    *,
    tx_type: TransactionType = TransactionType.BUY,
    market: Market | None = None,
    currency: str | None = None,
    exchange_rate: str | None = None,
    fees: str = "0",
) -> int:
    market = market or Market.detect(ticker)
    async with database.session() as session:
        transaction = StockTransaction(
            portfolio_id=portfolio_id,
            transaction_date=on,
            ticker=ticker,
            transaction_type=tx_type,
            shares=Decimal(shares),
            price_per_share=Decimal(price),
            fees=Decimal(fees),
            exchange_rate=Decimal(exchange_rate) if exchange_rate is not None else None,
            market=market,
            currency=currency or market.default_currency,
            is_deleted=False,
        )
        session.add(transaction)
        await session.commit()
        return transaction.id
