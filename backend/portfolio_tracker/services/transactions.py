"""Stock transaction lifecycle for a user's portfolio.

Every change re-values the snapshot of the changed transaction and of each
later cash-flow transaction, since their "before" holdings now differ.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.core.errors import BusinessRuleError, NotFoundError
from portfolio_tracker.models import Market, Portfolio, StockTransaction, TransactionType
from portfolio_tracker.repositories import portfolio as portfolio_repo
from portfolio_tracker.schemas import TransactionCreateRequest, TransactionUpdateRequest

from .portfolios import load_owned_portfolio
from .snapshots import TransactionPortfolioSnapshotService
from .split_adjustment import SplitAdjustedTransaction, adjust_transactions

logger = logging.getLogger(__name__)


def _stored_rate(value: float | None) -> Decimal | None:
    # Blank and non-positive rates both mean "not known yet"
    if value is None:
        return None
    rate = Decimal(str(value))
    return rate if rate > 0 else None


def _apply_payload(transaction: StockTransaction, payload: TransactionCreateRequest) -> None:
    ticker = payload.ticker.strip().upper()
    if not ticker:
        raise BusinessRuleError("Ticker must not be empty")
    market = Market(payload.market) if payload.market else Market.detect(ticker)

    transaction.ticker = ticker
    transaction.transaction_type = TransactionType(payload.transaction_type)
    transaction.transaction_date = payload.transaction_date
    transaction.shares = Decimal(str(payload.shares))
    transaction.price_per_share = Decimal(str(payload.price_per_share))
    transaction.fees = Decimal(str(payload.fees))
    transaction.exchange_rate = _stored_rate(payload.exchange_rate)
    transaction.market = market
    transaction.currency = (payload.currency or market.default_currency).upper()
    transaction.notes = payload.notes


async def _owned_transaction(session: AsyncSession, portfolio: Portfolio, transaction_id: int) -> StockTransaction:
    transaction = await portfolio_repo.get_transaction(session, transaction_id)
    if transaction is None or transaction.portfolio_id != portfolio.id or transaction.is_deleted:
        raise NotFoundError("Transaction", transaction_id)
    return transaction


async def list_portfolio_transactions(
    session: AsyncSession,
    owner_id: str,
    portfolio_id: int,
    *,
    start: date | None = None,
    end: date | None = None,
) -> list[SplitAdjustedTransaction]:
    portfolio = await load_owned_portfolio(session, portfolio_id, owner_id)
    transactions = await portfolio_repo.list_transactions(session, portfolio.id, start=start, end=end)
    splits = await portfolio_repo.list_splits(session)
    return adjust_transactions(transactions, splits)


async def get_portfolio_transaction(
    session: AsyncSession,
    owner_id: str,
    portfolio_id: int,
    transaction_id: int,
) -> SplitAdjustedTransaction:
    portfolio = await load_owned_portfolio(session, portfolio_id, owner_id)
    transaction = await _owned_transaction(session, portfolio, transaction_id)
    splits = await portfolio_repo.list_splits(session)
    return adjust_transactions([transaction], splits)[0]


async def create_transaction(
    session: AsyncSession,
    snapshots: TransactionPortfolioSnapshotService,
    owner_id: str,
    portfolio_id: int,
    payload: TransactionCreateRequest,
) -> StockTransaction:
    portfolio = await load_owned_portfolio(session, portfolio_id, owner_id)
    transaction = StockTransaction(portfolio_id=portfolio.id, is_deleted=False)
    _apply_payload(transaction, payload)
    session.add(transaction)
    await session.commit()
    await session.refresh(transaction)
    logger.info(
        "Created %s transaction %s for %s in portfolio %s",
        transaction.transaction_type.value,
        transaction.id,
        transaction.ticker,
        portfolio.id,
    )

    await snapshots.upsert(portfolio.id, transaction.id)
    await snapshots.refresh_from(portfolio.id, transaction.transaction_date)
    return transaction


async def update_transaction(
    session: AsyncSession,
    snapshots: TransactionPortfolioSnapshotService,
    owner_id: str,
    portfolio_id: int,
    transaction_id: int,
    payload: TransactionUpdateRequest,
) -> StockTransaction:
    portfolio = await load_owned_portfolio(session, portfolio_id, owner_id)
    transaction = await _owned_transaction(session, portfolio, transaction_id)
    previous_date = transaction.transaction_date
    _apply_payload(transaction, payload)
    await session.commit()
    await session.refresh(transaction)

    await snapshots.upsert(portfolio.id, transaction.id)
    await snapshots.refresh_from(portfolio.id, min(previous_date, transaction.transaction_date))
    return transaction


async def delete_transaction(
    session: AsyncSession,
    snapshots: TransactionPortfolioSnapshotService,
    owner_id: str,
    portfolio_id: int,
    transaction_id: int,
) -> None:
    """Soft-delete the transaction and drop its snapshot."""

    portfolio = await load_owned_portfolio(session, portfolio_id, owner_id)
    transaction = await _owned_transaction(session, portfolio, transaction_id)
    transaction.is_deleted = True
    await session.commit()
    logger.info("Deleted transaction %s from portfolio %s", transaction_id, portfolio.id)

    await snapshots.delete(portfolio.id, transaction.id)
    await snapshots.refresh_from(portfolio.id, transaction.transaction_date)


__all__ = [
    "list_portfolio_transactions",
    "get_portfolio_transaction",
    "create_transaction",
    "update_transaction",
    "delete_transaction",
]
