"""Lazily populated, append-only cache of historical prices and exchange rates.

Lookups follow cache → provider chain → persist. Provider failures never
escape this module: they become ``Unresolved`` results that the performance
services report as missing inputs. Persisting uses an insert-or-return-existing
primitive so concurrent first fetches of the same key both observe the single
stored row.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Sequence, TypeVar

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.core.errors import BusinessRuleError, DuplicateCacheEntryError
from portfolio_tracker.core.resolution import Resolution, Resolved, Unresolved, UnresolvedReason
from portfolio_tracker.core.telemetry import provider_span
from portfolio_tracker.models import (
    DataSource,
    HistoricalDataType,
    HistoricalExchangeRateCache,
    HistoricalYearEndData,
    Market,
    currency_pair,
)
from portfolio_tracker.providers.base import MarketDataProviderError, PriceQuote, RateQuote, year_end
from portfolio_tracker.providers.registry import ProviderRegistry
from portfolio_tracker.repositories import market_data as cache_repo

logger = logging.getLogger(__name__)

IDENTITY_SOURCE = "Identity"

ProviderT = TypeVar("ProviderT")
QuoteT = TypeVar("QuoteT", PriceQuote, RateQuote)


def _year_end_resolution(entry: HistoricalYearEndData, *, from_cache: bool) -> Resolved:
    return Resolved(
        value=Decimal(str(entry.value)),
        actual_date=entry.actual_date,
        source=entry.source,
        from_cache=from_cache,
        currency=entry.currency,
        requested_date=year_end(entry.year),
    )


def _rate_resolution(entry: HistoricalExchangeRateCache, *, from_cache: bool) -> Resolved:
    return Resolved(
        value=Decimal(str(entry.rate)),
        actual_date=entry.actual_date,
        source=entry.source,
        from_cache=from_cache,
        currency=entry.currency_pair[3:],
        requested_date=entry.requested_date,
    )


def _require_positive(value: Decimal, label: str) -> Decimal:
    value = Decimal(str(value))
    if value <= 0:
        raise BusinessRuleError(f"{label} must be positive")
    return value


class HistoricalMarketDataCache:
    """Resolve year-end prices, year-end rates and transaction-date rates."""

    def __init__(
        self,
        session: AsyncSession,
        providers: ProviderRegistry,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._session = session
        self._providers = providers
        self._today = today

    # Year-end stock prices

    async def get_or_fetch_year_end_price(
        self,
        ticker: str,
        year: int,
        market: Market | None = None,
    ) -> Resolution:
        symbol = ticker.strip().upper()
        market = market or Market.detect(symbol)
        period = str(year)
        cached = await cache_repo.get_year_end_entry(
            self._session, HistoricalDataType.STOCK_PRICE, symbol, year
        )
        if cached is not None:
            return _year_end_resolution(cached, from_cache=True)
        if year >= self._today().year:
            # The close can still move; only manual entries are served
            return Unresolved(symbol, period, UnresolvedReason.CURRENT_PERIOD)

        quote, failed = await self._first_quote(
            self._providers.price_chain(market),
            lambda provider: provider.get_year_end_price(symbol, market, year),
            f"year_end_price {symbol} {year}",
        )
        if quote is None:
            if market in self._providers.manual_entry_markets:
                reason = UnresolvedReason.MANUAL_ENTRY_REQUIRED
            else:
                reason = UnresolvedReason.PROVIDER_ERROR if failed else UnresolvedReason.NOT_FOUND
            return Unresolved(symbol, period, reason)

        outcome = await cache_repo.insert_or_get_year_end_entry(
            self._session,
            HistoricalYearEndData(
                data_type=HistoricalDataType.STOCK_PRICE,
                ticker=symbol,
                year=year,
                value=quote.price,
                currency=quote.currency,
                actual_date=quote.actual_date,
                source=quote.source.value,
            ),
        )
        return _year_end_resolution(outcome.entry, from_cache=not outcome.created)

    async def save_manual_year_end_price(
        self,
        ticker: str,
        year: int,
        price: Decimal,
        currency: str,
        actual_date: date | None = None,
    ) -> Resolved:
        symbol = ticker.strip().upper()
        price = _require_positive(price, "Price")
        entry = HistoricalYearEndData(
            data_type=HistoricalDataType.STOCK_PRICE,
            ticker=symbol,
            year=year,
            value=price,
            currency=currency.strip().upper(),
            actual_date=actual_date or year_end(year),
            source=DataSource.MANUAL.value,
        )
        return await self._save_manual_year_end(entry)

    # Year-end exchange rates

    async def get_or_fetch_year_end_rate(self, from_ccy: str, to_ccy: str, year: int) -> Resolution:
        pair = currency_pair(from_ccy, to_ccy)
        period = str(year)
        if pair[:3] == pair[3:]:
            return Resolved(Decimal("1"), year_end(year), IDENTITY_SOURCE, False, pair[3:], year_end(year))
        cached = await cache_repo.get_year_end_entry(
            self._session, HistoricalDataType.EXCHANGE_RATE, pair, year
        )
        if cached is not None:
            return _year_end_resolution(cached, from_cache=True)
        if year >= self._today().year:
            return Unresolved(pair, period, UnresolvedReason.CURRENT_PERIOD)

        quote, failed = await self._first_quote(
            self._providers.year_end_rate_chain,
            lambda provider: provider.get_exchange_rate(pair[:3], pair[3:], year_end(year)),
            f"year_end_rate {pair} {year}",
        )
        if quote is None:
            reason = UnresolvedReason.PROVIDER_ERROR if failed else UnresolvedReason.NOT_FOUND
            return Unresolved(pair, period, reason)

        outcome = await cache_repo.insert_or_get_year_end_entry(
            self._session,
            HistoricalYearEndData(
                data_type=HistoricalDataType.EXCHANGE_RATE,
                ticker=pair,
                year=year,
                value=quote.rate,
                currency=pair[3:],
                actual_date=quote.actual_date,
                source=quote.source.value,
            ),
        )
        return _year_end_resolution(outcome.entry, from_cache=not outcome.created)

    async def save_manual_year_end_rate(
        self,
        from_ccy: str,
        to_ccy: str,
        year: int,
        rate: Decimal,
        actual_date: date | None = None,
    ) -> Resolved:
        pair = currency_pair(from_ccy, to_ccy)
        rate = _require_positive(rate, "Exchange rate")
        entry = HistoricalYearEndData(
            data_type=HistoricalDataType.EXCHANGE_RATE,
            ticker=pair,
            year=year,
            value=rate,
            currency=pair[3:],
            actual_date=actual_date or year_end(year),
            source=DataSource.MANUAL.value,
        )
        return await self._save_manual_year_end(entry)

    # Transaction-date exchange rates

    async def get_or_fetch_transaction_date_rate(
        self,
        from_ccy: str,
        to_ccy: str,
        on_date: date,
    ) -> Resolution:
        pair = currency_pair(from_ccy, to_ccy)
        period = on_date.isoformat()
        if pair[:3] == pair[3:]:
            return Resolved(Decimal("1"), on_date, IDENTITY_SOURCE, False, pair[3:], on_date)
        if on_date > self._today():
            return Unresolved(pair, period, UnresolvedReason.CURRENT_PERIOD)

        cached = await cache_repo.get_rate_entry(self._session, pair, on_date)
        if cached is not None:
            return _rate_resolution(cached, from_cache=True)

        quote, failed = await self._first_quote(
            self._providers.transaction_date_rate_chain,
            lambda provider: provider.get_exchange_rate(pair[:3], pair[3:], on_date),
            f"transaction_date_rate {pair} {period}",
        )
        if quote is None:
            reason = UnresolvedReason.PROVIDER_ERROR if failed else UnresolvedReason.NOT_FOUND
            return Unresolved(pair, period, reason)

        outcome = await cache_repo.insert_or_get_rate_entry(
            self._session,
            HistoricalExchangeRateCache(
                currency_pair=pair,
                requested_date=on_date,
                rate=quote.rate,
                actual_date=quote.actual_date,
                source=quote.source.value,
            ),
        )
        return _rate_resolution(outcome.entry, from_cache=not outcome.created)

    async def save_manual_transaction_date_rate(
        self,
        from_ccy: str,
        to_ccy: str,
        on_date: date,
        rate: Decimal,
    ) -> Resolved:
        pair = currency_pair(from_ccy, to_ccy)
        rate = _require_positive(rate, "Exchange rate")
        if await cache_repo.rate_entry_exists(self._session, pair, on_date):
            raise DuplicateCacheEntryError(f"{pair}:{on_date.isoformat()}")
        entry = await cache_repo.add_rate_entry(
            self._session,
            HistoricalExchangeRateCache(
                currency_pair=pair,
                requested_date=on_date,
                rate=rate,
                actual_date=on_date,
                source=DataSource.MANUAL.value,
            ),
        )
        logger.info("Manually cached exchange rate %s on %s: %s", pair, on_date, rate)
        return _rate_resolution(entry, from_cache=True)

    # Daily prices (not persisted)

    async def get_price_on_date(self, ticker: str, on_date: date, market: Market | None = None) -> Resolution:
        """Fetch a close on or before ``on_date`` straight from the providers."""

        symbol = ticker.strip().upper()
        market = market or Market.detect(symbol)
        quote, failed = await self._first_quote(
            self._providers.price_chain(market),
            lambda provider: provider.get_price_on_date(symbol, market, on_date),
            f"price_on_date {symbol} {on_date.isoformat()}",
        )
        if quote is None:
            reason = UnresolvedReason.PROVIDER_ERROR if failed else UnresolvedReason.NOT_FOUND
            return Unresolved(symbol, on_date.isoformat(), reason)
        return Resolved(
            value=quote.price,
            actual_date=quote.actual_date,
            source=quote.source.value,
            from_cache=False,
            currency=quote.currency,
            requested_date=on_date,
        )

    # Helpers

    async def _save_manual_year_end(self, entry: HistoricalYearEndData) -> Resolved:
        if await cache_repo.year_end_entry_exists(self._session, entry.data_type, entry.ticker, entry.year):
            raise DuplicateCacheEntryError(f"{entry.data_type.value}:{entry.ticker}:{entry.year}")
        stored = await cache_repo.add_year_end_entry(self._session, entry)
        logger.info(
            "Manually cached %s for %s/%s: %s", entry.data_type.value, entry.ticker, entry.year, entry.value
        )
        return _year_end_resolution(stored, from_cache=True)

    async def _first_quote(
        self,
        chain: Sequence[ProviderT],
        fetch: Callable[[ProviderT], Awaitable[QuoteT | None]],
        label: str,
    ) -> tuple[QuoteT | None, bool]:
        """Walk ``chain`` until a provider returns a usable quote.

        Returns the quote (or ``None``) and whether any provider failed outright.
        """

        failed = False
        for provider in chain:
            source = getattr(provider, "source", provider.__class__.__name__)
            source_name = getattr(source, "value", str(source))
            with provider_span(source_name, label) as span:
                try:
                    quote = await fetch(provider)
                except (MarketDataProviderError, httpx.HTTPError) as exc:
                    failed = True
                    span.record_exception(exc)
                    logger.warning("%s lookup failed for %s: %s", source_name, label, exc)
                    continue
            if quote is None:
                logger.info("%s has no data for %s", source_name, label)
                continue
            value = quote.price if isinstance(quote, PriceQuote) else quote.rate
            if value <= 0:
                logger.warning("%s returned non-positive value %s for %s; ignoring", source_name, value, label)
                continue
            return quote, failed
        return None, failed


__all__ = ["HistoricalMarketDataCache", "IDENTITY_SOURCE"]
