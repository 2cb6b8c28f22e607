"""Persistence helpers for the append-only market-data cache tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Generic, TypeVar

from sqlalchemy import exists, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.core.errors import DuplicateCacheEntryError
from portfolio_tracker.models import HistoricalDataType, HistoricalExchangeRateCache, HistoricalYearEndData

logger = logging.getLogger(__name__)

EntryT = TypeVar("EntryT", HistoricalYearEndData, HistoricalExchangeRateCache)

_YEAR_END_KEY = ("data_type", "ticker", "year")
_RATE_KEY = ("currency_pair", "requested_date")
_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass(frozen=True)
class InsertOutcome(Generic[EntryT]):
    """Stored row after an insert attempt; ``created`` is False when another writer won."""

    entry: EntryT
    created: bool


def _year_end_key(entry: HistoricalYearEndData) -> str:
    return f"{entry.data_type.value}:{entry.ticker}:{entry.year}"


def _rate_key(entry: HistoricalExchangeRateCache) -> str:
    return f"{entry.currency_pair}:{entry.requested_date.isoformat()}"


def _column_values(entry: Any) -> dict[str, Any]:
    mapper = entry.__mapper__
    values = {}
    for column in mapper.columns:
        if column.primary_key:
            continue
        value = getattr(entry, column.key)
        if value is None and column.default is not None:
            continue
        values[column.key] = value
    return values


async def get_year_end_entry(
    session: AsyncSession,
    data_type: HistoricalDataType,
    ticker: str,
    year: int,
) -> HistoricalYearEndData | None:
    result = await session.execute(
        select(HistoricalYearEndData).where(
            HistoricalYearEndData.data_type == data_type,
            HistoricalYearEndData.ticker == ticker,
            HistoricalYearEndData.year == year,
        )
    )
    return result.scalars().first()


async def year_end_entry_exists(
    session: AsyncSession,
    data_type: HistoricalDataType,
    ticker: str,
    year: int,
) -> bool:
    stmt = select(
        exists().where(
            HistoricalYearEndData.data_type == data_type,
            HistoricalYearEndData.ticker == ticker,
            HistoricalYearEndData.year == year,
        )
    )
    return bool((await session.execute(stmt)).scalar())


async def get_rate_entry(session: AsyncSession, pair: str, requested_date: date) -> HistoricalExchangeRateCache | None:
    result = await session.execute(
        select(HistoricalExchangeRateCache).where(
            HistoricalExchangeRateCache.currency_pair == pair,
            HistoricalExchangeRateCache.requested_date == requested_date,
        )
    )
    return result.scalars().first()


async def rate_entry_exists(session: AsyncSession, pair: str, requested_date: date) -> bool:
    stmt = select(
        exists().where(
            HistoricalExchangeRateCache.currency_pair == pair,
            HistoricalExchangeRateCache.requested_date == requested_date,
        )
    )
    return bool((await session.execute(stmt)).scalar())


async def add_year_end_entry(session: AsyncSession, entry: HistoricalYearEndData) -> HistoricalYearEndData:
    """Insert a new row; an existing key raises ``DuplicateCacheEntryError``."""

    return await _add(session, entry, _year_end_key(entry))


async def add_rate_entry(session: AsyncSession, entry: HistoricalExchangeRateCache) -> HistoricalExchangeRateCache:
    return await _add(session, entry, _rate_key(entry))


async def insert_or_get_year_end_entry(
    session: AsyncSession, entry: HistoricalYearEndData
) -> InsertOutcome[HistoricalYearEndData]:
    """Insert unless the key exists, then return whichever row is stored."""

    created = await _insert_ignoring_conflict(session, entry, _YEAR_END_KEY, _year_end_key(entry))
    stored = await get_year_end_entry(session, entry.data_type, entry.ticker, entry.year)
    if stored is None:  # pragma: no cover - the row was just written or already present
        raise RuntimeError(f"Cache row vanished for {_year_end_key(entry)}")
    return InsertOutcome(entry=stored, created=created)


async def insert_or_get_rate_entry(
    session: AsyncSession, entry: HistoricalExchangeRateCache
) -> InsertOutcome[HistoricalExchangeRateCache]:
    created = await _insert_ignoring_conflict(session, entry, _RATE_KEY, _rate_key(entry))
    stored = await get_rate_entry(session, entry.currency_pair, entry.requested_date)
    if stored is None:  # pragma: no cover - the row was just written or already present
        raise RuntimeError(f"Cache row vanished for {_rate_key(entry)}")
    return InsertOutcome(entry=stored, created=created)


async def _add(session: AsyncSession, entry: EntryT, key: str) -> EntryT:
    session.add(entry)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateCacheEntryError(key) from exc
    logger.info("Stored cache entry %s", key)
    return entry


async def _insert_ignoring_conflict(
    session: AsyncSession,
    entry: Any,
    key_columns: tuple[str, ...],
    key: str,
) -> bool:
    dialect = session.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        try:
            await _add(session, entry, key)
        except DuplicateCacheEntryError:
            logger.debug("Cache entry %s already stored by a concurrent writer", key)
            return False
        return True

    stmt = (
        insert(type(entry))
        .values(**_column_values(entry))
        .on_conflict_do_nothing(index_elements=list(key_columns))
    )
    result = await session.execute(stmt)
    await session.commit()
    created = result.rowcount == 1
    if created:
        logger.info("Stored cache entry %s", key)
    else:
        logger.debug("Cache entry %s already stored by a concurrent writer", key)
    return created


__all__ = [
    "InsertOutcome",
    "get_year_end_entry",
    "year_end_entry_exists",
    "get_rate_entry",
    "rate_entry_exists",
    "add_year_end_entry",
    "add_rate_entry",
    "insert_or_get_year_end_entry",
    "insert_or_get_rate_entry",
]
