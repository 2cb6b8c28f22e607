"""Before/after portfolio valuations around each cash-flow transaction.

Snapshots are the only valuation input to time-weighted returns. Both sides
of a snapshot are priced on the transaction date, so the difference between
them is the cash flow alone. Transactions sharing a date are chained in id
order: each one's "before" state includes the earlier same-day trades.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, getcontext
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.core.errors import BusinessRuleError, NotFoundError
from portfolio_tracker.core.resolution import Resolved
from portfolio_tracker.models import Market, Portfolio, StockSplit, StockTransaction, TransactionPortfolioSnapshot
from portfolio_tracker.repositories import portfolio as portfolio_repo

from .market_data_cache import HistoricalMarketDataCache
from .portfolios import load_owned_portfolio
from .positions import calculate_positions
from .split_adjustment import adjust_transactions

getcontext().prec = 28

logger = logging.getLogger(__name__)

_VALUE_QUANTUM = Decimal("0.0001")


def _precedes(candidate: StockTransaction, anchor: StockTransaction) -> bool:
    if candidate.transaction_date != anchor.transaction_date:
        return candidate.transaction_date < anchor.transaction_date
    return candidate.id < anchor.id


class TransactionPortfolioSnapshotService:
    """Maintain one valuation snapshot per cash-flow transaction."""

    def __init__(self, session: AsyncSession, cache: HistoricalMarketDataCache, *, owner_id: str) -> None:
        self._session = session
        self._cache = cache
        self._owner_id = owner_id
        self._prices: dict[tuple[str, date], Resolved | None] = {}
        self._rates: dict[tuple[str, str, date], Decimal | None] = {}

    async def upsert(
        self,
        portfolio_id: int,
        transaction_id: int,
        on_date: date | None = None,
    ) -> TransactionPortfolioSnapshot | None:
        """Recompute and store the snapshot for one transaction.

        With ``on_date`` the snapshot is valued on that date and its "before"
        state holds every other transaction dated strictly before it. Deleted
        or non cash-flow transactions end up without a snapshot.
        """

        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        transaction = await self._owned_transaction(portfolio, transaction_id)
        if transaction.is_deleted or not transaction.is_cash_flow:
            await self.delete(portfolio_id, transaction_id)
            return None

        transactions = await portfolio_repo.list_transactions(self._session, portfolio.id)
        splits = await portfolio_repo.list_splits(self._session)
        snapshot = await self._write_snapshot(portfolio, transaction, transactions, splits, on_date)
        await self._session.commit()
        return snapshot

    async def delete(self, portfolio_id: int, transaction_id: int) -> bool:
        await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        removed = await portfolio_repo.delete_snapshot(self._session, portfolio_id, transaction_id)
        await self._session.commit()
        return removed > 0

    async def backfill(self, portfolio_id: int, start: date, end: date) -> int:
        """Create missing snapshots for cash-flow transactions dated in ``[start, end]``."""

        if end < start:
            raise BusinessRuleError("Backfill range end precedes its start")
        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        transactions = await portfolio_repo.list_transactions(self._session, portfolio.id)
        existing = {
            snapshot.transaction_id
            for snapshot in await portfolio_repo.list_snapshots(self._session, portfolio.id, start, end)
        }
        pending = [
            transaction
            for transaction in transactions
            if transaction.is_cash_flow
            and start <= transaction.transaction_date <= end
            and transaction.id not in existing
        ]
        if not pending:
            return 0

        splits = await portfolio_repo.list_splits(self._session)
        for transaction in pending:
            await self._write_snapshot(portfolio, transaction, transactions, splits, None)
        await self._session.commit()
        logger.info("Backfilled %d snapshots for portfolio %s", len(pending), portfolio.id)
        return len(pending)

    async def refresh_from(self, portfolio_id: int, start: date) -> int:
        """Recompute every cash-flow snapshot dated on or after ``start``."""

        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        transactions = await portfolio_repo.list_transactions(self._session, portfolio.id)
        affected = [t for t in transactions if t.is_cash_flow and t.transaction_date >= start]
        if not affected:
            return 0
        splits = await portfolio_repo.list_splits(self._session)
        for transaction in affected:
            await self._write_snapshot(portfolio, transaction, transactions, splits, None)
        await self._session.commit()
        return len(affected)

    async def get_snapshots(self, portfolio_id: int, start: date, end: date) -> list[TransactionPortfolioSnapshot]:
        portfolio = await load_owned_portfolio(self._session, portfolio_id, self._owner_id)
        return await portfolio_repo.list_snapshots(self._session, portfolio.id, start, end)

    async def value_holdings(
        self,
        portfolio: Portfolio,
        transactions: Sequence[StockTransaction],
        splits: Sequence[StockSplit],
        on_date: date,
    ) -> Decimal:
        """Home-currency market value of ``transactions`` folded into positions.

        Positions whose price or exchange rate cannot be resolved are left out
        and logged.
        """

        total, _ = await self._value_in(portfolio, transactions, splits, on_date, portfolio.home_currency)
        return total

    async def value_holdings_source(
        self,
        portfolio: Portfolio,
        transactions: Sequence[StockTransaction],
        splits: Sequence[StockSplit],
        on_date: date,
    ) -> Decimal | None:
        """Market value in the portfolio's base currency.

        ``None`` when a priced holding has no rate into the base currency.
        """

        total, unconverted = await self._value_in(
            portfolio, transactions, splits, on_date, portfolio.base_currency
        )
        return None if unconverted else total

    async def _value_in(
        self,
        portfolio: Portfolio,
        transactions: Sequence[StockTransaction],
        splits: Sequence[StockSplit],
        on_date: date,
        currency: str,
    ) -> tuple[Decimal, list[str]]:
        positions = calculate_positions(adjust_transactions(transactions, splits))
        total = Decimal("0")
        unconverted: list[str] = []
        for position in positions.values():
            price = await self._price(position.ticker, position.market, on_date)
            if price is None:
                logger.warning(
                    "No price for %s on %s; excluded from portfolio %s valuation",
                    position.ticker,
                    on_date,
                    portfolio.id,
                )
                continue
            price_currency = price.currency or position.currency
            rate = await self._rate(price_currency, currency, on_date)
            if rate is None:
                logger.warning(
                    "No %s/%s rate on %s; %s excluded from portfolio %s valuation",
                    price_currency,
                    currency,
                    on_date,
                    position.ticker,
                    portfolio.id,
                )
                unconverted.append(position.ticker)
                continue
            total += position.shares * price.value * rate
        return total.quantize(_VALUE_QUANTUM), unconverted

    async def _write_snapshot(
        self,
        portfolio: Portfolio,
        transaction: StockTransaction,
        transactions: Sequence[StockTransaction],
        splits: Sequence[StockSplit],
        on_date: date | None,
    ) -> TransactionPortfolioSnapshot:
        valuation_date = on_date or transaction.transaction_date
        others = [t for t in transactions if t.id != transaction.id]
        if on_date is None:
            earlier = [t for t in others if _precedes(t, transaction)]
        else:
            earlier = [t for t in others if t.transaction_date < on_date]
        holdings_after = [*earlier, transaction]

        value_before = await self.value_holdings(portfolio, earlier, splits, valuation_date)
        value_after = await self.value_holdings(portfolio, holdings_after, splits, valuation_date)
        source_before = await self.value_holdings_source(portfolio, earlier, splits, valuation_date)
        source_after = await self.value_holdings_source(portfolio, holdings_after, splits, valuation_date)

        snapshot = await portfolio_repo.get_snapshot_for_transaction(self._session, transaction.id)
        if snapshot is None:
            snapshot = TransactionPortfolioSnapshot(
                portfolio_id=portfolio.id,
                transaction_id=transaction.id,
            )
            self._session.add(snapshot)
        snapshot.snapshot_date = valuation_date
        snapshot.value_before = value_before
        snapshot.value_after = value_after
        snapshot.currency = portfolio.home_currency
        snapshot.value_before_source = source_before
        snapshot.value_after_source = source_after
        snapshot.source_currency = portfolio.base_currency
        await self._session.flush()
        logger.debug(
            "Snapshot for transaction %s on %s: before=%s after=%s",
            transaction.id,
            valuation_date,
            value_before,
            value_after,
        )
        return snapshot

    async def _owned_transaction(self, portfolio: Portfolio, transaction_id: int) -> StockTransaction:
        transaction = await portfolio_repo.get_transaction(self._session, transaction_id)
        if transaction is None or transaction.portfolio_id != portfolio.id:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def _price(self, ticker: str, market: Market, on_date: date) -> Resolved | None:
        key = (ticker, on_date)
        if key not in self._prices:
            resolution = await self._cache.get_price_on_date(ticker, on_date, market)
            self._prices[key] = resolution if isinstance(resolution, Resolved) else None
        return self._prices[key]

    async def _rate(self, from_ccy: str, to_ccy: str, on_date: date) -> Decimal | None:
        if from_ccy.upper() == to_ccy.upper():
            return Decimal("1")
        key = (from_ccy.upper(), to_ccy.upper(), on_date)
        if key not in self._rates:
            resolution = await self._cache.get_or_fetch_transaction_date_rate(from_ccy, to_ccy, on_date)
            self._rates[key] = resolution.value if isinstance(resolution, Resolved) else None
        return self._rates[key]


__all__ = ["TransactionPortfolioSnapshotService"]
