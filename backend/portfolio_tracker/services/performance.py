"""Year performance, aggregate performance and XIRR for a user's portfolios.

Every price and exchange rate goes through ``HistoricalMarketDataCache``. An
input that cannot be resolved does not abort the calculation: it is collected
as a ``MissingPrice`` so the caller can supply manual values and retry.
All statements on the request session are awaited one after another.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, getcontext
from typing import Callable, Iterable, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.core.errors import BusinessRuleError
from portfolio_tracker.core.resolution import KnownRate, Resolved, Unresolved
from portfolio_tracker.models import (
    Portfolio,
    StockSplit,
    StockTransaction,
    TransactionPortfolioSnapshot,
    TransactionType,
    currency_pair,
)
from portfolio_tracker.repositories import portfolio as portfolio_repo

from .market_data_cache import HistoricalMarketDataCache
from .portfolios import list_owned_portfolios, load_owned_portfolio
from .positions import Position, calculate_positions
from .returns import (
    ReturnCashFlow,
    ReturnValuationSnapshot,
    XirrCashFlow,
    modified_dietz,
    time_weighted_return,
    xirr,
)
from .snapshots import TransactionPortfolioSnapshotService
from .split_adjustment import adjust_transactions

getcontext().prec = 28

logger = logging.getLogger(__name__)

PRICE_TYPE_YEAR_START = "YearStart"
PRICE_TYPE_YEAR_END = "YearEnd"
PRICE_TYPE_YEAR_START_RATE = "YearStartExchangeRate"
PRICE_TYPE_YEAR_END_RATE = "YearEndExchangeRate"
PRICE_TYPE_TRANSACTION_RATE = "TransactionExchangeRate"

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class MissingPrice:
    ticker: str
    date: date
    price_type: str
    reason: str | None = field(default=None, compare=False)

    @property
    def dedup_key(self) -> tuple[str, str, date]:
        return (self.ticker.upper(), self.price_type.upper(), self.date)


def dedupe_missing_prices(items: Iterable[MissingPrice]) -> list[MissingPrice]:
    """Drop repeats of the same ticker, price type and date, ignoring case."""

    seen: set[tuple[str, str, date]] = set()
    unique: list[MissingPrice] = []
    for item in items:
        if item.dedup_key in seen:
            continue
        seen.add(item.dedup_key)
        unique.append(item)
    return unique


@dataclass(frozen=True)
class ReferencePrice:
    """Caller-supplied price and its rate to the home currency."""

    price: Decimal
    exchange_rate: Decimal = Decimal("1")


@dataclass(frozen=True)
class MissingExchangeRate:
    transaction_id: int
    ticker: str
    transaction_date: date
    currency: str


@dataclass
class YearPerformance:
    """Year metrics in the home currency and in the portfolio's base currency.

    Base-currency ("source") metrics stay ``None`` when a holding or flow
    cannot be converted into the base currency; home metrics are unaffected.
    """

    year: int
    currency: str
    period_start: date
    period_end: date
    start_value_home: Decimal | None = None
    end_value_home: Decimal | None = None
    net_contributions_home: Decimal | None = None
    cash_flow_count: int = 0
    transaction_count: int = 0
    xirr: float | None = None
    total_return: Decimal | None = None
    modified_dietz: Decimal | None = None
    time_weighted: Decimal | None = None
    source_currency: str | None = None
    start_value_source: Decimal | None = None
    end_value_source: Decimal | None = None
    net_contributions_source: Decimal | None = None
    xirr_source: float | None = None
    total_return_source: Decimal | None = None
    modified_dietz_source: Decimal | None = None
    time_weighted_source: Decimal | None = None
    missing_prices: list[MissingPrice] = field(default_factory=list)
    portfolio_ids: list[int] = field(default_factory=list)
    excluded_portfolio_ids: list[int] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_prices


@dataclass
class XirrResult:
    as_of: date
    xirr: float | None
    cash_flow_count: int
    current_value_home: Decimal
    earliest_transaction_date: date | None = None
    missing_exchange_rates: list[MissingExchangeRate] = field(default_factory=list)


@dataclass(frozen=True)
class AvailableYears:
    years: list[int]
    earliest_year: int | None
    current_year: int


@dataclass
class _Leg:
    """Start value, end value and external flows in one currency."""

    start_value: Decimal = _ZERO
    end_value: Decimal = _ZERO
    cash_flows: list[ReturnCashFlow] = field(default_factory=list)

    @property
    def net_contributions(self) -> Decimal:
        return sum((flow.amount for flow in self.cash_flows), _ZERO)


@dataclass(frozen=True)
class _LegResult:
    xirr: float | None
    xirr_flow_count: int
    total_return: Decimal | None
    modified_dietz: Decimal | None
    time_weighted: Decimal | None


@dataclass
class _YearInputs:
    """Resolved inputs of one portfolio for one year."""

    portfolio: Portfolio
    period_start: date
    period_end: date
    home: _Leg = field(default_factory=_Leg)
    source: _Leg | None = field(default_factory=_Leg)
    transaction_count: int = 0
    missing: list[MissingPrice] = field(default_factory=list)


def _normalize_prices(prices: Mapping[str, ReferencePrice] | None) -> dict[str, ReferencePrice]:
    return {ticker.strip().upper(): price for ticker, price in (prices or {}).items()}


def _total_return(start_value: Decimal, end_value: Decimal, net_contributions: Decimal) -> Decimal | None:
    if start_value > 0:
        return (end_value - start_value - net_contributions) / start_value
    if net_contributions > 0:
        return (end_value - net_contributions) / net_contributions
    return None


def _xirr_flows(leg: _Leg, period_start: date, period_end: date) -> list[XirrCashFlow]:
    # Investor view: contributions are payments out
    flows = []
    if leg.start_value > 0:
        flows.append(XirrCashFlow(amount=-float(leg.start_value), date=period_start))
    flows.extend(XirrCashFlow(amount=-float(flow.amount), date=flow.date) for flow in leg.cash_flows)
    if leg.end_value > 0:
        flows.append(XirrCashFlow(amount=float(leg.end_value), date=period_end))
    return flows


def _combine_legs(legs: Sequence[_Leg]) -> _Leg:
    return _Leg(
        start_value=sum((leg.start_value for leg in legs), _ZERO),
        end_value=sum((leg.end_value for leg in legs), _ZERO),
        cash_flows=sorted((flow for leg in legs for flow in leg.cash_flows), key=lambda flow: flow.date),
    )


def _leg_result(
    leg: _Leg,
    period_start: date,
    period_end: date,
    snapshots: Sequence[ReturnValuationSnapshot] | None,
) -> _LegResult:
    xirr_flows = _xirr_flows(leg, period_start, period_end)
    return _LegResult(
        xirr=xirr(xirr_flows),
        xirr_flow_count=len(xirr_flows),
        total_return=_total_return(leg.start_value, leg.end_value, leg.net_contributions),
        modified_dietz=modified_dietz(leg.start_value, leg.end_value, period_start, period_end, leg.cash_flows),
        time_weighted=_twr(leg, snapshots),
    )


def _twr(leg: _Leg, snapshots: Sequence[ReturnValuationSnapshot] | None) -> Decimal | None:
    if snapshots is None:
        return None
    try:
        return time_weighted_return(
            leg.start_value, leg.end_value, snapshots, cash_flow_count=len(leg.cash_flows)
        )
    except ValueError:
        logger.warning("No valuation snapshots for %d cash flows; TWR unavailable", len(leg.cash_flows))
        return None


def _apply_home(result: YearPerformance, leg: _Leg, outcome: _LegResult) -> None:
    result.start_value_home = leg.start_value
    result.end_value_home = leg.end_value
    result.net_contributions_home = leg.net_contributions
    result.cash_flow_count = outcome.xirr_flow_count
    result.xirr = outcome.xirr
    result.total_return = outcome.total_return
    result.modified_dietz = outcome.modified_dietz
    result.time_weighted = outcome.time_weighted


def _apply_source(result: YearPerformance, leg: _Leg, outcome: _LegResult) -> None:
    result.start_value_source = leg.start_value
    result.end_value_source = leg.end_value
    result.net_contributions_source = leg.net_contributions
    result.xirr_source = outcome.xirr
    result.total_return_source = outcome.total_return
    result.modified_dietz_source = outcome.modified_dietz
    result.time_weighted_source = outcome.time_weighted


def _optional_decimal(value: Decimal | float | None) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


def _row_values(row: TransactionPortfolioSnapshot, *, source: bool) -> tuple[Decimal | None, Decimal | None]:
    if source:
        return _optional_decimal(row.value_before_source), _optional_decimal(row.value_after_source)
    return _optional_decimal(row.value_before), _optional_decimal(row.value_after)


def _valuation_snapshots(
    rows: Sequence[TransactionPortfolioSnapshot],
    *,
    source: bool = False,
) -> list[ReturnValuationSnapshot] | None:
    """Rows as TWR inputs, or ``None`` when any row lacks the requested values."""

    snapshots = []
    for row in rows:
        before, after = _row_values(row, source=source)
        if before is None or after is None:
            return None
        snapshots.append(ReturnValuationSnapshot(date=row.snapshot_date, value_before=before, value_after=after))
    return snapshots


class PerformanceService:
    """Assemble per-portfolio and cross-portfolio returns for the current user."""

    def __init__(
        self,
        session: AsyncSession,
        cache: HistoricalMarketDataCache,
        snapshots: TransactionPortfolioSnapshotService,
        *,
        owner_id: str,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._session = session
        self._cache = cache
        self._snapshots = snapshots
        self._owner_id = owner_id
        self._today = today

    # Available years

    async def available_years(self, portfolio_id: int) -> AvailableYears:
        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        transactions = await portfolio_repo.list_transactions(self._session, portfolio.id)
        return self._years_from(transactions)

    async def aggregate_available_years(self) -> AvailableYears:
        transactions: list[StockTransaction] = []
        for portfolio in await list_owned_portfolios(self._session, self._owner_id):
            transactions.extend(await portfolio_repo.list_transactions(self._session, portfolio.id))
        return self._years_from(transactions)

    def _years_from(self, transactions: Sequence[StockTransaction]) -> AvailableYears:
        current_year = self._today().year
        if not transactions:
            return AvailableYears(years=[], earliest_year=None, current_year=current_year)
        earliest = min(t.transaction_date.year for t in transactions)
        return AvailableYears(
            years=list(range(current_year, earliest - 1, -1)),
            earliest_year=earliest,
            current_year=current_year,
        )

    # Year performance

    async def calculate_year_performance(
        self,
        portfolio_id: int,
        year: int,
        *,
        year_start_prices: Mapping[str, ReferencePrice] | None = None,
        year_end_prices: Mapping[str, ReferencePrice] | None = None,
    ) -> YearPerformance:
        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        splits = await portfolio_repo.list_splits(self._session)
        inputs = await self._collect(portfolio, year, splits, year_start_prices, year_end_prices)

        result = YearPerformance(
            year=year,
            currency=portfolio.home_currency,
            period_start=inputs.period_start,
            period_end=inputs.period_end,
            transaction_count=inputs.transaction_count,
            source_currency=portfolio.base_currency,
            portfolio_ids=[portfolio.id],
        )
        if inputs.missing:
            result.missing_prices = dedupe_missing_prices(inputs.missing)
            logger.warning(
                "Portfolio %s year %s is missing %d inputs",
                portfolio.id,
                year,
                len(result.missing_prices),
            )
            return result

        rows = await self._year_rows(portfolio, inputs.period_start, inputs.period_end)
        _apply_home(
            result,
            inputs.home,
            _leg_result(inputs.home, inputs.period_start, inputs.period_end, _valuation_snapshots(rows)),
        )
        if inputs.source is not None:
            snapshots = _valuation_snapshots(rows, source=True)
            _apply_source(
                result,
                inputs.source,
                _leg_result(inputs.source, inputs.period_start, inputs.period_end, snapshots),
            )
        logger.info(
            "Portfolio %s year %s: dietz=%s twr=%s xirr=%s",
            portfolio.id,
            year,
            result.modified_dietz,
            result.time_weighted,
            result.xirr,
        )
        return result

    async def calculate_aggregate_year_performance(
        self,
        year: int,
        *,
        year_start_prices: Mapping[str, ReferencePrice] | None = None,
        year_end_prices: Mapping[str, ReferencePrice] | None = None,
    ) -> YearPerformance:
        """Combine every portfolio that shares the first portfolio's home currency.

        Base-currency metrics are produced only when all included portfolios
        share one base currency.
        """

        period_start, period_end, _ = self._period(year)
        portfolios = await list_owned_portfolios(self._session, self._owner_id)
        if not portfolios:
            return YearPerformance(year=year, currency="", period_start=period_start, period_end=period_end)

        currency = portfolios[0].home_currency
        included = [p for p in portfolios if p.home_currency == currency]
        excluded = [p.id for p in portfolios if p.home_currency != currency]
        if excluded:
            logger.info("Aggregate year %s skips portfolios %s in other home currencies", year, excluded)
        base_currencies = {p.base_currency for p in included}
        source_currency = included[0].base_currency if len(base_currencies) == 1 else None

        splits = await portfolio_repo.list_splits(self._session)
        collected = []
        for portfolio in included:
            collected.append(
                await self._collect(portfolio, year, splits, year_start_prices, year_end_prices)
            )

        result = YearPerformance(
            year=year,
            currency=currency,
            period_start=period_start,
            period_end=period_end,
            transaction_count=sum(inputs.transaction_count for inputs in collected),
            source_currency=source_currency,
            portfolio_ids=[p.id for p in included],
            excluded_portfolio_ids=excluded,
        )
        missing = dedupe_missing_prices(item for inputs in collected for item in inputs.missing)
        if missing:
            result.missing_prices = missing
            return result

        events = await self._merged_events(collected)
        home = _combine_legs([inputs.home for inputs in collected])
        snapshots = await self._combined_snapshots(collected, events, splits)
        _apply_home(result, home, _leg_result(home, period_start, period_end, snapshots))

        legs = [inputs.source for inputs in collected]
        if source_currency is None:
            logger.info("Aggregate year %s mixes base currencies %s", year, sorted(base_currencies))
        elif all(leg is not None for leg in legs):
            source = _combine_legs(legs)
            snapshots = await self._combined_snapshots(collected, events, splits, source=True)
            _apply_source(result, source, _leg_result(source, period_start, period_end, snapshots))
        return result

    # XIRR

    async def calculate_xirr(
        self,
        portfolio_id: int,
        current_prices: Mapping[str, ReferencePrice],
        as_of: date | None = None,
    ) -> XirrResult:
        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        return await self._xirr_for([portfolio], current_prices, as_of)

    async def calculate_position_xirr(
        self,
        portfolio_id: int,
        ticker: str,
        current_price: ReferencePrice | None,
        as_of: date | None = None,
    ) -> XirrResult:
        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        symbol = ticker.strip().upper()
        prices = {symbol: current_price} if current_price is not None else {}
        return await self._xirr_for([portfolio], prices, as_of, ticker=symbol)

    async def calculate_aggregate_xirr(
        self,
        current_prices: Mapping[str, ReferencePrice],
        as_of: date | None = None,
    ) -> XirrResult:
        portfolios = await list_owned_portfolios(self._session, self._owner_id)
        if portfolios:
            currency = portfolios[0].home_currency
            portfolios = [p for p in portfolios if p.home_currency == currency]
        return await self._xirr_for(portfolios, current_prices, as_of)

    async def _xirr_for(
        self,
        portfolios: Sequence[Portfolio],
        current_prices: Mapping[str, ReferencePrice],
        as_of: date | None,
        *,
        ticker: str | None = None,
    ) -> XirrResult:
        as_of = as_of or self._today()
        prices = _normalize_prices(current_prices)
        splits = await portfolio_repo.list_splits(self._session)
        flows: list[XirrCashFlow] = []
        missing: list[MissingExchangeRate] = []
        current_value = _ZERO
        earliest: date | None = None

        for portfolio in portfolios:
            transactions = await portfolio_repo.list_transactions(self._session, portfolio.id, end=as_of)
            if ticker is not None:
                transactions = [t for t in transactions if t.ticker.strip().upper() == ticker]
            for transaction in transactions:
                if not transaction.is_cash_flow:
                    continue
                rate = await self._transaction_rate(portfolio, transaction)
                if rate is None:
                    missing.append(
                        MissingExchangeRate(
                            transaction_id=transaction.id,
                            ticker=transaction.ticker,
                            transaction_date=transaction.transaction_date,
                            currency=transaction.currency,
                        )
                    )
                    continue
                if transaction.transaction_type == TransactionType.BUY:
                    amount = -(transaction.total_cost_source * rate)
                else:
                    amount = transaction.net_proceeds_source * rate
                flows.append(XirrCashFlow(amount=float(amount), date=transaction.transaction_date))
                if earliest is None or transaction.transaction_date < earliest:
                    earliest = transaction.transaction_date

            positions = calculate_positions(adjust_transactions(transactions, splits), until=as_of)
            for position in positions.values():
                quote = prices.get(position.ticker)
                if quote is None:
                    logger.warning("No current price for %s; excluded from XIRR", position.ticker)
                    continue
                current_value += position.shares * Decimal(str(quote.price)) * Decimal(str(quote.exchange_rate))

        if current_value > 0:
            flows.append(XirrCashFlow(amount=float(current_value), date=as_of))
        if missing:
            logger.info("XIRR excluded %d transactions without exchange rates", len(missing))
        return XirrResult(
            as_of=as_of,
            xirr=xirr(flows),
            cash_flow_count=len(flows),
            current_value_home=current_value,
            earliest_transaction_date=earliest,
            missing_exchange_rates=missing,
        )

    # Helpers

    def _period(self, year: int) -> tuple[date, date, date]:
        today = self._today()
        if year > today.year:
            raise BusinessRuleError(f"Cannot calculate performance for future year {year}")
        period_start = date(year, 1, 1)
        period_end = today if year == today.year else date(year, 12, 31)
        # Year-start holdings are priced at the prior year's close
        return period_start, period_end, date(year - 1, 12, 31)

    async def _collect(
        self,
        portfolio: Portfolio,
        year: int,
        splits: Sequence[StockSplit],
        year_start_prices: Mapping[str, ReferencePrice] | None,
        year_end_prices: Mapping[str, ReferencePrice] | None,
    ) -> _YearInputs:
        period_start, period_end, reference_date = self._period(year)
        inputs = _YearInputs(portfolio=portfolio, period_start=period_start, period_end=period_end)
        transactions = await portfolio_repo.list_transactions(self._session, portfolio.id, end=period_end)
        adjusted = adjust_transactions(transactions, splits)
        same_currency = portfolio.base_currency.upper() == portfolio.home_currency.upper()
        source_currency = None if same_currency else portfolio.base_currency
        source_complete = True

        inputs.home.start_value, source_start = await self._value_positions(
            portfolio,
            calculate_positions(adjusted, before=period_start),
            year - 1,
            reference_date,
            PRICE_TYPE_YEAR_START,
            PRICE_TYPE_YEAR_START_RATE,
            _normalize_prices(year_start_prices),
            inputs.missing,
            source_currency,
        )
        inputs.home.end_value, source_end = await self._value_positions(
            portfolio,
            calculate_positions(adjusted, until=period_end),
            year,
            period_end,
            PRICE_TYPE_YEAR_END,
            PRICE_TYPE_YEAR_END_RATE,
            _normalize_prices(year_end_prices),
            inputs.missing,
            source_currency,
        )
        source_flows: list[ReturnCashFlow] = []

        for transaction in transactions:
            if transaction.transaction_date < period_start or not transaction.is_cash_flow:
                continue
            inputs.transaction_count += 1
            rate = await self._transaction_rate(portfolio, transaction)
            if rate is None:
                inputs.missing.append(
                    MissingPrice(
                        ticker=currency_pair(transaction.currency, portfolio.home_currency),
                        date=transaction.transaction_date,
                        price_type=PRICE_TYPE_TRANSACTION_RATE,
                    )
                )
                continue
            if transaction.transaction_type == TransactionType.BUY:
                amount = transaction.total_cost_source
            else:
                amount = -transaction.net_proceeds_source
            inputs.home.cash_flows.append(ReturnCashFlow(date=transaction.transaction_date, amount=amount * rate))
            if source_currency is not None and source_complete:
                source_rate = await self._source_rate(
                    transaction.currency, source_currency, transaction.transaction_date
                )
                if source_rate is None:
                    source_complete = False
                else:
                    source_flows.append(
                        ReturnCashFlow(date=transaction.transaction_date, amount=amount * source_rate)
                    )

        if same_currency:
            inputs.source = _Leg(
                start_value=inputs.home.start_value,
                end_value=inputs.home.end_value,
                cash_flows=list(inputs.home.cash_flows),
            )
        elif source_complete and source_start is not None and source_end is not None:
            inputs.source = _Leg(start_value=source_start, end_value=source_end, cash_flows=source_flows)
        else:
            inputs.source = None
            logger.info(
                "Portfolio %s year %s has no complete %s valuation",
                portfolio.id,
                year,
                portfolio.base_currency,
            )
        return inputs

    async def _value_positions(
        self,
        portfolio: Portfolio,
        positions: Mapping[str, Position],
        price_year: int,
        price_date: date,
        price_type: str,
        rate_type: str,
        overrides: Mapping[str, ReferencePrice],
        missing: list[MissingPrice],
        source_currency: str | None = None,
    ) -> tuple[Decimal, Decimal | None]:
        """Home value of ``positions`` and, with ``source_currency``, their value in it.

        The second item is ``None`` when some position cannot be converted
        into ``source_currency``; that alone is not reported as missing.
        """

        total = _ZERO
        source_total: Decimal | None = _ZERO if source_currency is not None else None
        for position in positions.values():
            override = overrides.get(position.ticker)
            if override is not None:
                price_value = Decimal(str(override.price))
                price_currency = position.currency
                home_rate = Decimal(str(override.exchange_rate))
            else:
                price = await self._cache.get_or_fetch_year_end_price(position.ticker, price_year, position.market)
                if isinstance(price, Unresolved):
                    missing.append(MissingPrice(position.ticker, price_date, price_type, price.reason.value))
                    continue
                price_value = price.value
                price_currency = price.currency or position.currency
                rate = await self._cache.get_or_fetch_year_end_rate(
                    price_currency, portfolio.home_currency, price_year
                )
                if isinstance(rate, Unresolved):
                    missing.append(MissingPrice(rate.key, price_date, rate_type, rate.reason.value))
                    continue
                home_rate = rate.value
            total += position.shares * price_value * home_rate

            if source_total is None:
                continue
            source_rate = await self._source_rate(price_currency, source_currency, price_date, year=price_year)
            if source_rate is None:
                source_total = None
            else:
                source_total += position.shares * price_value * source_rate
        return total, source_total

    async def _source_rate(
        self,
        from_ccy: str,
        to_ccy: str,
        on_date: date,
        *,
        year: int | None = None,
    ) -> Decimal | None:
        """Rate into a portfolio's base currency.

        Closed years use the year-end rate; flows and the running year use
        the rate on ``on_date``.
        """

        if from_ccy.upper() == to_ccy.upper():
            return Decimal("1")
        if year is not None and year < self._today().year:
            resolution = await self._cache.get_or_fetch_year_end_rate(from_ccy, to_ccy, year)
        else:
            resolution = await self._cache.get_or_fetch_transaction_date_rate(from_ccy, to_ccy, on_date)
        if isinstance(resolution, Resolved):
            return resolution.value
        logger.info("No %s/%s rate on %s for base-currency metrics", from_ccy, to_ccy, on_date)
        return None

    async def _transaction_rate(self, portfolio: Portfolio, transaction: StockTransaction) -> Decimal | None:
        """Stored rate, else 1 for home-currency trades, else the transaction-date cache."""

        state = transaction.rate_state
        if isinstance(state, KnownRate):
            return state.rate
        if transaction.currency.upper() == portfolio.home_currency.upper():
            return Decimal("1")
        resolution = await self._cache.get_or_fetch_transaction_date_rate(
            transaction.currency, portfolio.home_currency, transaction.transaction_date
        )
        if isinstance(resolution, Resolved):
            return resolution.value
        logger.info(
            "No %s/%s rate for transaction %s on %s",
            transaction.currency,
            portfolio.home_currency,
            transaction.id,
            transaction.transaction_date,
        )
        return None

    async def _year_rows(
        self,
        portfolio: Portfolio,
        period_start: date,
        period_end: date,
    ) -> list[TransactionPortfolioSnapshot]:
        await self._snapshots.backfill(portfolio.id, period_start, period_end)
        return await self._snapshots.get_snapshots(portfolio.id, period_start, period_end)

    async def _merged_events(
        self,
        collected: Sequence[_YearInputs],
    ) -> list[tuple[int, TransactionPortfolioSnapshot]]:
        events: list[tuple[int, TransactionPortfolioSnapshot]] = []
        for index, inputs in enumerate(collected):
            rows = await self._year_rows(inputs.portfolio, inputs.period_start, inputs.period_end)
            events.extend((index, row) for row in rows)
        events.sort(key=lambda event: (event[1].snapshot_date, event[1].transaction_id))
        return events

    async def _combined_snapshots(
        self,
        collected: Sequence[_YearInputs],
        events: Sequence[tuple[int, TransactionPortfolioSnapshot]],
        splits: Sequence[StockSplit],
        *,
        source: bool = False,
    ) -> list[ReturnValuationSnapshot] | None:
        """Merge per-portfolio snapshots into whole-account valuations.

        Each event's before/after value is widened by what every other
        portfolio was worth at that moment: its own same-day snapshot when it
        has one, otherwise its holdings valued on that date. Returns ``None``
        when some value is unavailable.
        """

        transactions_by_index: dict[int, list[StockTransaction]] = {}
        held_values: dict[tuple[int, date], Decimal | None] = {}
        merged: list[ReturnValuationSnapshot] = []
        for position, (index, row) in enumerate(events):
            before, after = _row_values(row, source=source)
            if before is None or after is None:
                return None
            others = _ZERO
            for other_index, other in enumerate(collected):
                if other_index == index:
                    continue
                same_day = [
                    (order, event_row)
                    for order, (event_index, event_row) in enumerate(events)
                    if event_index == other_index and event_row.snapshot_date == row.snapshot_date
                ]
                earlier = [event_row for order, event_row in same_day if order < position]
                if earlier:
                    value = _row_values(earlier[-1], source=source)[1]
                elif same_day:
                    value = _row_values(same_day[0][1], source=source)[0]
                else:
                    key = (other_index, row.snapshot_date)
                    if key not in held_values:
                        if other_index not in transactions_by_index:
                            transactions_by_index[other_index] = await portfolio_repo.list_transactions(
                                self._session, other.portfolio.id
                            )
                        held = [
                            t
                            for t in transactions_by_index[other_index]
                            if t.transaction_date <= row.snapshot_date
                        ]
                        value_holdings = (
                            self._snapshots.value_holdings_source if source else self._snapshots.value_holdings
                        )
                        held_values[key] = await value_holdings(other.portfolio, held, splits, row.snapshot_date)
                    value = held_values[key]
                if value is None:
                    return None
                others += value
            merged.append(
                ReturnValuationSnapshot(
                    date=row.snapshot_date,
                    value_before=before + others,
                    value_after=after + others,
                )
            )
        return merged


def as_percentage(fraction: Decimal | float | None) -> float | None:
    if fraction is None:
        return None
    return float(Decimal(str(fraction)) * _HUNDRED)


__all__ = [
    "PerformanceService",
    "YearPerformance",
    "XirrResult",
    "AvailableYears",
    "MissingPrice",
    "MissingExchangeRate",
    "ReferencePrice",
    "dedupe_missing_prices",
    "as_percentage",
    "PRICE_TYPE_YEAR_START",
    "PRICE_TYPE_YEAR_END",
    "PRICE_TYPE_YEAR_START_RATE",
    "PRICE_TYPE_YEAR_END_RATE",
    "PRICE_TYPE_TRANSACTION_RATE",
]
