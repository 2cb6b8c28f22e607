"""Historical market-data cache backed by SQLite."""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import func, select

from factories import FakeProvider, make_database, registry_for
from portfolio_tracker.core.errors import BusinessRuleError, DuplicateCacheEntryError
from portfolio_tracker.core.resolution import Resolved, Unresolved, UnresolvedReason
from portfolio_tracker.models import DataSource, HistoricalExchangeRateCache, HistoricalYearEndData, Market
from portfolio_tracker.providers.registry import ProviderRegistry
from portfolio_tracker.services.market_data_cache import HistoricalMarketDataCache


def _today() -> date:
    return date(2025, 3, 1)


AAPL = {"AAPL": ("USD", {date(2024, 12, 31): Decimal("250.42")})}
USDTWD = {"USDTWD": {date(2024, 12, 31): Decimal("32.79"), date(2024, 7, 1): Decimal("32.5")}}


@pytest.mark.asyncio
async def test_first_fetch_persists_and_second_read_hits_cache(tmp_path: Path):
    database = await make_database(tmp_path)
    provider = FakeProvider(prices=AAPL)
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, registry_for(provider), today=_today)
        first = await cache.get_or_fetch_year_end_price("aapl", 2024)
        second = await cache.get_or_fetch_year_end_price("AAPL", 2024)

    assert isinstance(first, Resolved) and isinstance(second, Resolved)
    assert first.value == Decimal("250.42")
    assert first.currency == "USD"
    assert first.source == DataSource.STOOQ.value
    assert first.from_cache is False
    assert second.from_cache is True
    assert len(provider.calls) == 1
    await database.dispose()


@pytest.mark.asyncio
async def test_falls_through_failing_provider(tmp_path: Path):
    database = await make_database(tmp_path)
    broken = FakeProvider(fail=True)
    backup = FakeProvider(prices=AAPL, source=DataSource.YAHOO)
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, registry_for(broken, backup), today=_today)
        result = await cache.get_or_fetch_year_end_price("AAPL", 2024)

    assert isinstance(result, Resolved)
    assert result.source == DataSource.YAHOO.value
    await database.dispose()


@pytest.mark.asyncio
async def test_unresolved_reasons(tmp_path: Path):
    database = await make_database(tmp_path)
    async with database.session() as session:
        empty = HistoricalMarketDataCache(session, registry_for(FakeProvider()), today=_today)
        failing = HistoricalMarketDataCache(session, registry_for(FakeProvider(fail=True)), today=_today)

        missing = await empty.get_or_fetch_year_end_price("NOPE", 2024)
        broken = await failing.get_or_fetch_year_end_rate("USD", "TWD", 2024)
        manual = await empty.get_or_fetch_year_end_price("ASML", 2024, Market.EU)

    assert missing == Unresolved("NOPE", "2024", UnresolvedReason.NOT_FOUND)
    assert isinstance(broken, Unresolved) and broken.reason == UnresolvedReason.PROVIDER_ERROR
    assert isinstance(manual, Unresolved) and manual.reason == UnresolvedReason.MANUAL_ENTRY_REQUIRED
    await database.dispose()


@pytest.mark.asyncio
async def test_current_year_is_never_fetched_or_stored(tmp_path: Path):
    database = await make_database(tmp_path)
    provider = FakeProvider(prices={"AAPL": ("USD", {date(2025, 2, 28): Decimal("240")})})
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, registry_for(provider), today=_today)
        result = await cache.get_or_fetch_year_end_price("AAPL", 2025)
        count = (await session.execute(select(func.count()).select_from(HistoricalYearEndData))).scalar()

    assert isinstance(result, Unresolved)
    assert result.reason == UnresolvedReason.CURRENT_PERIOD
    assert provider.calls == []
    assert count == 0
    await database.dispose()


@pytest.mark.asyncio
async def test_manual_current_year_entries_are_served_from_cache(tmp_path: Path):
    database = await make_database(tmp_path)
    provider = FakeProvider(prices={"AAPL": ("USD", {date(2025, 2, 28): Decimal("240")})})
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, registry_for(provider), today=_today)
        await cache.save_manual_year_end_price("AAPL", 2025, Decimal("245.5"), "USD")
        await cache.save_manual_year_end_rate("USD", "TWD", 2025, Decimal("32.4"))
        price = await cache.get_or_fetch_year_end_price("aapl", 2025)
        rate = await cache.get_or_fetch_year_end_rate("usd", "twd", 2025)
        unknown = await cache.get_or_fetch_year_end_price("MSFT", 2025)

    assert isinstance(price, Resolved) and price.from_cache is True
    assert price.value == Decimal("245.5")
    assert isinstance(rate, Resolved) and rate.value == Decimal("32.4")
    assert isinstance(unknown, Unresolved) and unknown.reason == UnresolvedReason.CURRENT_PERIOD
    assert provider.calls == []
    await database.dispose()


@pytest.mark.asyncio
async def test_same_currency_rate_is_identity(tmp_path: Path):
    database = await make_database(tmp_path)
    provider = FakeProvider()
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, registry_for(provider), today=_today)
        year_end_rate = await cache.get_or_fetch_year_end_rate("twd", "TWD", 2024)
        daily_rate = await cache.get_or_fetch_transaction_date_rate("USD", "usd", date(2024, 5, 2))

    assert isinstance(year_end_rate, Resolved) and year_end_rate.value == Decimal("1")
    assert isinstance(daily_rate, Resolved) and daily_rate.value == Decimal("1")
    assert provider.calls == []
    await database.dispose()


@pytest.mark.asyncio
async def test_transaction_date_rate_is_cached_per_day(tmp_path: Path):
    database = await make_database(tmp_path)
    provider = FakeProvider(rates=USDTWD)
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, registry_for(provider), today=_today)
        first = await cache.get_or_fetch_transaction_date_rate("USD", "TWD", date(2024, 7, 3))
        second = await cache.get_or_fetch_transaction_date_rate("USD", "TWD", date(2024, 7, 3))

    assert isinstance(first, Resolved) and isinstance(second, Resolved)
    assert first.value == Decimal("32.5")
    assert first.actual_date == date(2024, 7, 1)
    assert (first.from_cache, second.from_cache) == (False, True)
    assert len(provider.calls) == 1
    await database.dispose()


@pytest.mark.asyncio
async def test_non_positive_provider_values_are_ignored(tmp_path: Path):
    database = await make_database(tmp_path)
    zero = FakeProvider(rates={"USDTWD": {date(2024, 12, 31): Decimal("0")}})
    good = FakeProvider(rates=USDTWD, source=DataSource.YAHOO)
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, registry_for(zero, good), today=_today)
        result = await cache.get_or_fetch_year_end_rate("USD", "TWD", 2024)

    assert isinstance(result, Resolved)
    assert result.value == Decimal("32.79")
    await database.dispose()


@pytest.mark.asyncio
async def test_concurrent_first_fetch_stores_a_single_row(tmp_path: Path):
    database = await make_database(tmp_path)
    provider = FakeProvider(prices=AAPL, delay=0.05)
    registry = registry_for(provider)

    async def fetch():
        async with database.session() as session:
            cache = HistoricalMarketDataCache(session, registry, today=_today)
            return await cache.get_or_fetch_year_end_price("AAPL", 2024)

    results = await asyncio.gather(fetch(), fetch())
    async with database.session() as session:
        count = (await session.execute(select(func.count()).select_from(HistoricalYearEndData))).scalar()

    assert count == 1
    assert all(isinstance(result, Resolved) for result in results)
    assert {result.value for result in results} == {Decimal("250.42")}
    assert sorted(result.from_cache for result in results) == [False, True]
    await database.dispose()


@pytest.mark.asyncio
async def test_manual_entries_are_immutable(tmp_path: Path):
    database = await make_database(tmp_path)
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, ProviderRegistry(), today=_today)
        saved = await cache.save_manual_year_end_price("asml", 2024, Decimal("678.7"), "eur")
        with pytest.raises(DuplicateCacheEntryError):
            await cache.save_manual_year_end_price("ASML", 2024, Decimal("700"), "EUR")
        again = await cache.get_or_fetch_year_end_price("ASML", 2024, Market.EU)

    assert saved.source == DataSource.MANUAL.value
    assert saved.actual_date == date(2024, 12, 31)
    assert isinstance(again, Resolved)
    assert again.value == Decimal("678.7")
    assert again.currency == "EUR"
    await database.dispose()


@pytest.mark.asyncio
async def test_manual_transaction_rate_duplicate_and_validation(tmp_path: Path):
    database = await make_database(tmp_path)
    async with database.session() as session:
        cache = HistoricalMarketDataCache(session, ProviderRegistry(), today=_today)
        await cache.save_manual_transaction_date_rate("USD", "TWD", date(2024, 5, 2), Decimal("32.1"))
        with pytest.raises(DuplicateCacheEntryError):
            await cache.save_manual_transaction_date_rate("USD", "TWD", date(2024, 5, 2), Decimal("32.2"))
        with pytest.raises(BusinessRuleError):
            await cache.save_manual_year_end_rate("USD", "TWD", 2024, Decimal("0"))
        stored = (await session.execute(select(HistoricalExchangeRateCache))).scalars().all()

    assert [row.rate for row in stored] == [Decimal("32.10000000")]
    await database.dispose()
