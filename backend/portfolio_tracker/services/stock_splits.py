"""Stock split registry.

Splits are never applied to stored transactions; adjustments are computed on
read, so changes here take effect on the next calculation.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.core.errors import BusinessRuleError, NotFoundError
from portfolio_tracker.models import Market, StockSplit
from portfolio_tracker.repositories import portfolio as portfolio_repo

from .split_adjustment import validate_split_ratio

logger = logging.getLogger(__name__)


async def list_stock_splits(
    session: AsyncSession,
    *,
    symbol: str | None = None,
    market: Market | None = None,
) -> list[StockSplit]:
    return await portfolio_repo.list_splits(session, symbol=symbol, market=market)


async def get_stock_split(session: AsyncSession, split_id: int) -> StockSplit:
    split = await portfolio_repo.get_split(session, split_id)
    if split is None:
        raise NotFoundError("StockSplit", split_id)
    return split


async def create_stock_split(
    session: AsyncSession,
    *,
    symbol: str,
    split_date: date,
    split_ratio: Decimal,
    market: Market | None = None,
    description: str | None = None,
) -> StockSplit:
    ticker = symbol.strip().upper()
    if not ticker:
        raise BusinessRuleError("Split symbol must not be empty")
    market = market or Market.detect(ticker)
    ratio = validate_split_ratio(split_ratio)
    if await portfolio_repo.find_split(session, ticker, market, split_date) is not None:
        raise BusinessRuleError(f"A split for {ticker} ({market.value}) on {split_date} already exists")

    split = StockSplit(
        symbol=ticker,
        market=market,
        split_date=split_date,
        split_ratio=ratio,
        description=description,
    )
    session.add(split)
    await _commit(session, ticker, market, split_date)
    await session.refresh(split)
    logger.info("Registered %s split for %s on %s", ratio, ticker, split_date)
    return split


async def update_stock_split(
    session: AsyncSession,
    split_id: int,
    *,
    split_date: date | None = None,
    split_ratio: Decimal | None = None,
    description: str | None = None,
) -> StockSplit:
    split = await get_stock_split(session, split_id)
    if split_date is not None and split_date != split.split_date:
        clash = await portfolio_repo.find_split(session, split.symbol, split.market, split_date)
        if clash is not None:
            raise BusinessRuleError(
                f"A split for {split.symbol} ({split.market.value}) on {split_date} already exists"
            )
        split.split_date = split_date
    if split_ratio is not None:
        split.split_ratio = validate_split_ratio(split_ratio)
    if description is not None:
        split.description = description
    await _commit(session, split.symbol, split.market, split.split_date)
    await session.refresh(split)
    return split


async def delete_stock_split(session: AsyncSession, split_id: int) -> None:
    split = await get_stock_split(session, split_id)
    await session.delete(split)
    await session.commit()
    logger.info("Deleted split %s for %s", split_id, split.symbol)


async def _commit(session: AsyncSession, symbol: str, market: Market, split_date: date) -> None:
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise BusinessRuleError(
            f"A split for {symbol} ({market.value}) on {split_date} already exists"
        ) from exc


__all__ = [
    "list_stock_splits",
    "get_stock_split",
    "create_stock_split",
    "update_stock_split",
    "delete_stock_split",
]
