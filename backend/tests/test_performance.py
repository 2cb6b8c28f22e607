"""Year performance, aggregate performance and XIRR orchestration."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from factories import FakeProvider, add_portfolio, add_transaction, make_database, registry_for
from portfolio_tracker.core.errors import BusinessRuleError, NotFoundError
from portfolio_tracker.core.resolution import Resolved
from portfolio_tracker.models import TransactionType
from portfolio_tracker.services.market_data_cache import HistoricalMarketDataCache
from portfolio_tracker.services.performance import (
    PRICE_TYPE_TRANSACTION_RATE,
    PRICE_TYPE_YEAR_END,
    PRICE_TYPE_YEAR_START,
    MissingPrice,
    PerformanceService,
    ReferencePrice,
    dedupe_missing_prices,
)
from portfolio_tracker.services.snapshots import TransactionPortfolioSnapshotService


def _today() -> date:
    return date(2025, 3, 1)


def _provider() -> FakeProvider:
    return FakeProvider(
        prices={
            "AAPL": (
                "USD",
                {
                    date(2023, 12, 29): Decimal("190"),
                    date(2024, 3, 1): Decimal("180"),
                    date(2024, 9, 2): Decimal("230"),
                    date(2024, 12, 31): Decimal("250"),
                },
            ),
            "2330": ("TWD", {date(2023, 12, 29): Decimal("590"), date(2024, 12, 31): Decimal("1075")}),
        },
        rates={
            "USDTWD": {
                date(2023, 12, 29): Decimal("30.7"),
                date(2024, 3, 1): Decimal("31"),
                date(2024, 9, 2): Decimal("32"),
                date(2024, 12, 31): Decimal("32.8"),
            }
        },
    )


def _service(session, provider: FakeProvider, owner_id: str = "user-1") -> PerformanceService:
    cache = HistoricalMarketDataCache(session, registry_for(provider), today=_today)
    snapshots = TransactionPortfolioSnapshotService(session, cache, owner_id=owner_id)
    return PerformanceService(session, cache, snapshots, owner_id=owner_id, today=_today)


async def _seed_us_portfolio(database, owner_id: str = "user-1") -> int:
    portfolio_id = await add_portfolio(database, owner_id)
    await add_transaction(database, portfolio_id, date(2023, 6, 1), "AAPL", "10", "100", exchange_rate="30")
    await add_transaction(database, portfolio_id, date(2024, 3, 1), "AAPL", "5", "150")
    await add_transaction(
        database,
        portfolio_id,
        date(2024, 9, 2),
        "AAPL",
        "3",
        "200",
        tx_type=TransactionType.SELL,
        exchange_rate="32",
    )
    return portfolio_id


def test_missing_prices_collapse_case_insensitively():
    day = date(2024, 12, 31)
    items = [
        MissingPrice("AAPL", day, "YearEnd"),
        MissingPrice("aapl", day, "yearend"),
        MissingPrice("AAPL", date(2023, 12, 31), "YearStart"),
    ]
    assert dedupe_missing_prices(items) == [items[0], items[2]]


@pytest.mark.asyncio
async def test_year_performance_full_calculation(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await _seed_us_portfolio(database)

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_year_performance(portfolio_id, 2024)

    start = Decimal("58330")
    end = Decimal("98400")
    buy = Decimal("23250")
    sell = Decimal("19200")
    denominator = start + buy * Decimal(305) / Decimal(365) - sell * Decimal(120) / Decimal(365)
    twr = (Decimal("55800") / start) * (Decimal("110400") / Decimal("83700")) * (end / Decimal("88320")) - 1

    assert result.is_complete
    assert result.period_start == date(2024, 1, 1)
    assert result.period_end == date(2024, 12, 31)
    assert result.start_value_home == pytest.approx(start)
    assert result.end_value_home == pytest.approx(end)
    assert result.net_contributions_home == pytest.approx(buy - sell)
    assert result.transaction_count == 2
    assert result.cash_flow_count == 4
    assert result.modified_dietz == pytest.approx((end - start - (buy - sell)) / denominator)
    assert result.total_return == pytest.approx((end - start - (buy - sell)) / start)
    assert result.time_weighted == pytest.approx(twr)
    assert result.xirr is not None and result.xirr > 0

    # Same year measured in the portfolio's base currency (USD)
    source_start = Decimal("1900")
    source_end = Decimal("3000")
    source_buy = Decimal("750")
    source_sell = Decimal("600")
    source_net = source_buy - source_sell
    source_denominator = (
        source_start + source_buy * Decimal(305) / Decimal(365) - source_sell * Decimal(120) / Decimal(365)
    )
    source_twr = (
        (Decimal("1800") / source_start) * (Decimal("3450") / Decimal("2700")) * (source_end / Decimal("2760")) - 1
    )
    assert result.source_currency == "USD"
    assert result.start_value_source == pytest.approx(source_start)
    assert result.end_value_source == pytest.approx(source_end)
    assert result.net_contributions_source == pytest.approx(source_net)
    assert result.total_return_source == pytest.approx((source_end - source_start - source_net) / source_start)
    assert result.modified_dietz_source == pytest.approx(
        (source_end - source_start - source_net) / source_denominator
    )
    assert result.time_weighted_source == pytest.approx(source_twr)
    assert result.xirr_source is not None and result.xirr_source > 0
    await database.dispose()


@pytest.mark.asyncio
async def test_year_performance_reports_missing_price_without_failing(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await add_portfolio(database)
    await add_transaction(database, portfolio_id, date(2024, 2, 1), "ZZZZ", "10", "50", exchange_rate="31")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_year_performance(portfolio_id, 2024)

    assert not result.is_complete
    assert len(result.missing_prices) == 1
    missing = result.missing_prices[0]
    assert (missing.ticker, missing.price_type, missing.date) == ("ZZZZ", PRICE_TYPE_YEAR_END, date(2024, 12, 31))
    assert result.modified_dietz is None
    assert result.time_weighted is None
    await database.dispose()


@pytest.mark.asyncio
async def test_manual_reference_prices_complete_the_year(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await add_portfolio(database)
    await add_transaction(database, portfolio_id, date(2023, 2, 1), "ZZZZ", "10", "50", exchange_rate="31")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_year_performance(
            portfolio_id,
            2024,
            year_start_prices={"zzzz": ReferencePrice(Decimal("60"), Decimal("30"))},
            year_end_prices={"ZZZZ": ReferencePrice(Decimal("66"), Decimal("30"))},
        )

    assert result.is_complete
    assert result.start_value_home == Decimal("18000")
    assert result.end_value_home == Decimal("19800")
    assert result.modified_dietz == pytest.approx(Decimal("0.1"))
    assert result.time_weighted == pytest.approx(Decimal("0.1"))
    await database.dispose()


@pytest.mark.asyncio
async def test_missing_transaction_rate_is_reported(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await add_portfolio(database)
    await add_transaction(database, portfolio_id, date(2024, 4, 1), "VWRA.L", "10", "100")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_year_performance(
            portfolio_id,
            2024,
            year_end_prices={"VWRA.L": ReferencePrice(Decimal("110"), Decimal("41"))},
        )

    assert [(item.ticker, item.price_type) for item in result.missing_prices] == [
        ("GBPTWD", PRICE_TYPE_TRANSACTION_RATE)
    ]
    await database.dispose()


@pytest.mark.asyncio
async def test_current_year_needs_manual_year_end_prices(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await add_portfolio(database)
    await add_transaction(database, portfolio_id, date(2024, 5, 2), "2330", "1000", "800")

    async with database.session() as session:
        service = _service(session, _provider())
        partial = await service.calculate_year_performance(portfolio_id, 2025)
        complete = await service.calculate_year_performance(
            portfolio_id, 2025, year_end_prices={"2330": ReferencePrice(Decimal("1100"))}
        )
        with pytest.raises(BusinessRuleError):
            await service.calculate_year_performance(portfolio_id, 2026)

    assert partial.period_end == date(2025, 3, 1)
    assert [(item.ticker, item.price_type) for item in partial.missing_prices] == [("2330", PRICE_TYPE_YEAR_END)]
    assert complete.is_complete
    assert complete.start_value_home == Decimal("1075000")
    assert complete.total_return == pytest.approx(Decimal("25000") / Decimal("1075000"))
    await database.dispose()


@pytest.mark.asyncio
async def test_available_years_span_first_trade_to_today(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await _seed_us_portfolio(database)
    empty_id = await add_portfolio(database, name="Empty")

    async with database.session() as session:
        service = _service(session, _provider())
        years = await service.available_years(portfolio_id)
        empty = await service.available_years(empty_id)
        aggregate = await service.aggregate_available_years()

    assert years.years == [2025, 2024, 2023]
    assert years.earliest_year == 2023
    assert empty.years == [] and empty.earliest_year is None
    assert aggregate.years == [2025, 2024, 2023]
    await database.dispose()


@pytest.mark.asyncio
async def test_other_users_portfolios_are_not_found(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await _seed_us_portfolio(database, owner_id="owner")

    async with database.session() as session:
        with pytest.raises(NotFoundError):
            await _service(session, _provider(), owner_id="intruder").calculate_year_performance(portfolio_id, 2024)
    await database.dispose()


@pytest.mark.asyncio
async def test_aggregate_combines_portfolios_in_the_same_home_currency(tmp_path: Path):
    database = await make_database(tmp_path)
    us_id = await _seed_us_portfolio(database)
    tw_id = await add_portfolio(database, name="Taiwan", base_currency="TWD")
    await add_transaction(database, tw_id, date(2023, 3, 1), "2330", "1000", "500")
    usd_id = await add_portfolio(database, name="Dollar", home_currency="USD")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_aggregate_year_performance(2024)

    held = Decimal("590000")
    start = Decimal("58330") + held
    end = Decimal("98400") + Decimal("1075000")
    net = Decimal("23250") - Decimal("19200")
    # The Taiwan holding widens both sides of every US trade
    twr = (
        ((Decimal("55800") + held) / start)
        * ((Decimal("110400") + held) / (Decimal("83700") + held))
        * (end / (Decimal("88320") + held))
        - 1
    )
    assert result.is_complete
    assert result.portfolio_ids == [us_id, tw_id]
    assert result.excluded_portfolio_ids == [usd_id]
    assert result.start_value_home == pytest.approx(start)
    assert result.end_value_home == pytest.approx(end)
    assert result.net_contributions_home == pytest.approx(net)
    assert result.total_return == pytest.approx((end - start - net) / start)
    assert result.time_weighted == pytest.approx(twr)
    assert result.source_currency is None
    assert result.time_weighted_source is None
    await database.dispose()


@pytest.mark.asyncio
async def test_aggregate_chains_same_day_trades_across_portfolios(tmp_path: Path):
    database = await make_database(tmp_path)
    first_id = await add_portfolio(database, name="First", base_currency="TWD")
    second_id = await add_portfolio(database, name="Second", base_currency="TWD")
    await add_transaction(database, first_id, date(2024, 3, 1), "2330", "1000", "590")
    await add_transaction(database, second_id, date(2024, 3, 1), "2330", "1000", "590")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_aggregate_year_performance(2024)

    # 0 -> 590000 for the first trade, then 590000 -> 1180000 for the second
    twr = Decimal("2150000") / Decimal("1180000") - 1
    assert result.is_complete
    assert result.start_value_home == Decimal("0")
    assert result.end_value_home == pytest.approx(Decimal("2150000"))
    assert result.net_contributions_home == pytest.approx(Decimal("1180000"))
    assert result.time_weighted == pytest.approx(twr)
    assert result.source_currency == "TWD"
    assert result.time_weighted_source == pytest.approx(twr)
    assert result.end_value_source == pytest.approx(Decimal("2150000"))
    await database.dispose()


@pytest.mark.asyncio
async def test_aggregate_reports_each_missing_price_once(tmp_path: Path):
    database = await make_database(tmp_path)
    first_id = await add_portfolio(database, name="First")
    second_id = await add_portfolio(database, name="Second")
    await add_transaction(database, first_id, date(2024, 2, 1), "ZZZZ", "10", "50", exchange_rate="31")
    await add_transaction(database, second_id, date(2024, 4, 1), "zzzz", "5", "55", exchange_rate="31")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_aggregate_year_performance(2024)

    assert not result.is_complete
    assert [(item.ticker, item.price_type, item.date) for item in result.missing_prices] == [
        ("ZZZZ", PRICE_TYPE_YEAR_END, date(2024, 12, 31))
    ]
    assert result.transaction_count == 2
    assert result.time_weighted is None
    assert result.modified_dietz is None
    await database.dispose()


@pytest.mark.asyncio
async def test_xirr_auto_fills_missing_exchange_rate(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await add_portfolio(database)
    await add_transaction(database, portfolio_id, date(2024, 3, 1), "AAPL", "10", "150")
    provider = _provider()

    async with database.session() as session:
        service = _service(session, provider)
        result = await service.calculate_xirr(
            portfolio_id,
            {"AAPL": ReferencePrice(Decimal("250"), Decimal("32.8"))},
            as_of=date(2025, 3, 1),
        )
        cache = HistoricalMarketDataCache(session, registry_for(provider), today=_today)
        cached = await cache.get_or_fetch_transaction_date_rate("USD", "TWD", date(2024, 3, 1))

    assert result.missing_exchange_rates == []
    assert result.cash_flow_count == 2
    assert result.current_value_home == Decimal("82000")
    assert result.xirr is not None and result.xirr > 0
    assert isinstance(cached, Resolved) and cached.from_cache is True
    await database.dispose()


@pytest.mark.asyncio
async def test_xirr_excludes_transactions_without_rates(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await add_portfolio(database)
    await add_transaction(database, portfolio_id, date(2023, 1, 3), "2330", "1000", "500")
    gbp_id = await add_transaction(database, portfolio_id, date(2024, 1, 2), "VWRA.L", "10", "100")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_xirr(
            portfolio_id,
            {"2330": ReferencePrice(Decimal("1000"))},
            as_of=date(2024, 1, 3),
        )

    assert [item.transaction_id for item in result.missing_exchange_rates] == [gbp_id]
    assert result.cash_flow_count == 2
    assert result.xirr == pytest.approx(1.0, abs=1e-3)
    await database.dispose()


@pytest.mark.asyncio
async def test_position_xirr_only_uses_the_ticker(tmp_path: Path):
    database = await make_database(tmp_path)
    portfolio_id = await add_portfolio(database)
    await add_transaction(database, portfolio_id, date(2023, 1, 3), "2330", "1000", "500")
    await add_transaction(database, portfolio_id, date(2023, 1, 3), "0050", "1000", "100")

    async with database.session() as session:
        result = await _service(session, _provider()).calculate_position_xirr(
            portfolio_id, "2330", ReferencePrice(Decimal("550")), as_of=date(2024, 1, 3)
        )

    assert result.cash_flow_count == 2
    assert result.current_value_home == Decimal("550000")
    assert result.xirr == pytest.approx(0.1, abs=1e-4)
    await database.dispose()
