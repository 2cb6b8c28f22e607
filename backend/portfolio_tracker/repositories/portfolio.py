"""Ordered queries over portfolios, transactions, splits and snapshots."""

from __future__ import annotations

from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.models import (
    Market,
    Portfolio,
    StockSplit,
    StockTransaction,
    TransactionPortfolioSnapshot,
)


async def get_portfolio(session: AsyncSession, portfolio_id: int) -> Portfolio | None:
    return await session.get(Portfolio, portfolio_id)


async def list_portfolios_for_owner(session: AsyncSession, owner_id: str) -> list[Portfolio]:
    result = await session.execute(
        select(Portfolio).where(Portfolio.owner_id == owner_id).order_by(Portfolio.id)
    )
    return list(result.scalars().all())


async def get_transaction(session: AsyncSession, transaction_id: int) -> StockTransaction | None:
    return await session.get(StockTransaction, transaction_id)


async def list_transactions(
    session: AsyncSession,
    portfolio_id: int,
    *,
    start: date | None = None,
    end: date | None = None,
    include_deleted: bool = False,
) -> list[StockTransaction]:
    """Transactions in ``[start, end]`` ordered by date then id."""

    stmt = select(StockTransaction).where(StockTransaction.portfolio_id == portfolio_id)
    if not include_deleted:
        stmt = stmt.where(StockTransaction.is_deleted.is_(False))
    if start is not None:
        stmt = stmt.where(StockTransaction.transaction_date >= start)
    if end is not None:
        stmt = stmt.where(StockTransaction.transaction_date <= end)
    stmt = stmt.order_by(StockTransaction.transaction_date, StockTransaction.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_splits(
    session: AsyncSession,
    *,
    symbol: str | None = None,
    market: Market | None = None,
) -> list[StockSplit]:
    stmt = select(StockSplit)
    if symbol is not None:
        stmt = stmt.where(StockSplit.symbol == symbol.strip().upper())
    if market is not None:
        stmt = stmt.where(StockSplit.market == market)
    stmt = stmt.order_by(StockSplit.split_date, StockSplit.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_split(session: AsyncSession, split_id: int) -> StockSplit | None:
    return await session.get(StockSplit, split_id)


async def find_split(session: AsyncSession, symbol: str, market: Market, split_date: date) -> StockSplit | None:
    result = await session.execute(
        select(StockSplit).where(
            StockSplit.symbol == symbol,
            StockSplit.market == market,
            StockSplit.split_date == split_date,
        )
    )
    return result.scalars().first()


async def get_snapshot_for_transaction(
    session: AsyncSession, transaction_id: int
) -> TransactionPortfolioSnapshot | None:
    result = await session.execute(
        select(TransactionPortfolioSnapshot).where(
            TransactionPortfolioSnapshot.transaction_id == transaction_id
        )
    )
    return result.scalars().first()


async def list_snapshots(
    session: AsyncSession,
    portfolio_id: int,
    start: date,
    end: date,
) -> list[TransactionPortfolioSnapshot]:
    """Snapshots in ``[start, end]`` ordered by date, ties broken by transaction id."""

    result = await session.execute(
        select(TransactionPortfolioSnapshot)
        .where(
            TransactionPortfolioSnapshot.portfolio_id == portfolio_id,
            TransactionPortfolioSnapshot.snapshot_date >= start,
            TransactionPortfolioSnapshot.snapshot_date <= end,
        )
        .order_by(TransactionPortfolioSnapshot.snapshot_date, TransactionPortfolioSnapshot.transaction_id)
    )
    return list(result.scalars().all())


async def delete_snapshot(session: AsyncSession, portfolio_id: int, transaction_id: int) -> int:
    result = await session.execute(
        delete(TransactionPortfolioSnapshot).where(
            TransactionPortfolioSnapshot.portfolio_id == portfolio_id,
            TransactionPortfolioSnapshot.transaction_id == transaction_id,
        )
    )
    return result.rowcount or 0


__all__ = [
    "get_portfolio",
    "list_portfolios_for_owner",
    "get_transaction",
    "list_transactions",
    "list_splits",
    "get_split",
    "find_split",
    "get_snapshot_for_transaction",
    "list_snapshots",
    "delete_snapshot",
]
