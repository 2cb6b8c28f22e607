"""Append-only historical market-data cache models."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_tracker.db.base import Base


class HistoricalDataType(str, enum.Enum):
    STOCK_PRICE = "StockPrice"
    EXCHANGE_RATE = "ExchangeRate"


class DataSource(str, enum.Enum):
    STOOQ = "Stooq"
    TWSE = "TWSE"
    YAHOO = "Yahoo"
    MANUAL = "Manual"


def currency_pair(from_ccy: str, to_ccy: str) -> str:
    return f"{from_ccy.strip().upper()}{to_ccy.strip().upper()}"


class HistoricalYearEndData(Base):
    """Year-end close of a stock or currency pair, written once per key."""

    __tablename__ = "historical_year_end_data"
    __table_args__ = (
        UniqueConstraint("data_type", "ticker", "year", name="uq_year_end_type_ticker_year"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    data_type: Mapped[HistoricalDataType] = mapped_column(
        Enum(HistoricalDataType, name="historical_data_type", values_callable=lambda e: [m.value for m in e])
    )
    ticker: Mapped[str] = mapped_column(String(20))
    year: Mapped[int] = mapped_column(Integer)
    value: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    actual_date: Mapped[date] = mapped_column(Date)
    source: Mapped[str] = mapped_column(String(16))
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class HistoricalExchangeRateCache(Base):
    """Exchange rate for an exact requested date, written once per key."""

    __tablename__ = "historical_exchange_rate_cache"
    __table_args__ = (
        UniqueConstraint("currency_pair", "requested_date", name="uq_fx_cache_pair_date"),
        Index("ix_fx_cache_pair", "currency_pair", "requested_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    currency_pair: Mapped[str] = mapped_column(String(6))
    requested_date: Mapped[date] = mapped_column(Date)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    actual_date: Mapped[date] = mapped_column(Date)
    source: Mapped[str] = mapped_column(String(16))
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


__all__ = [
    "HistoricalDataType",
    "DataSource",
    "HistoricalYearEndData",
    "HistoricalExchangeRateCache",
    "currency_pair",
]
