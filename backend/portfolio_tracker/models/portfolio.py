"""Portfolio, stock transaction, and stock split models."""

from __future__ import annotations

import enum
import re
from datetime import date, datetime
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portfolio_tracker.core.resolution import ExchangeRateState, KnownRate, exchange_rate_state
from portfolio_tracker.db.base import Base

_TAIWAN_BASE_TICKER = re.compile(r"^\d{4,6}$")


class Market(str, enum.Enum):
    TW = "TW"
    US = "US"
    UK = "UK"
    EU = "EU"

    @classmethod
    def detect(cls, ticker: str) -> "Market":
        """Infer the listing market from the ticker shape.

        EU listings cannot be told apart from US tickers and must be given
        explicitly.
        """

        symbol = ticker.strip().upper()
        if symbol and symbol[0].isdigit():
            return cls.TW
        if symbol.endswith(".L"):
            return cls.UK
        return cls.US

    @property
    def default_currency(self) -> str:
        return _MARKET_CURRENCIES[self]


_MARKET_CURRENCIES = {
    Market.TW: "TWD",
    Market.US: "USD",
    Market.UK: "GBP",
    Market.EU: "EUR",
}


def is_taiwan_ticker(ticker: str) -> bool:
    """Return True for Taiwan listed stocks such as ``2330`` or ``00878.TW``."""

    base = ticker.strip().split(".", 1)[0]
    return bool(_TAIWAN_BASE_TICKER.match(base))


class TransactionType(str, enum.Enum):
    BUY = "Buy"
    SELL = "Sell"
    SPLIT = "Split"
    ADJUSTMENT = "Adjustment"


CASH_FLOW_TYPES = (TransactionType.BUY, TransactionType.SELL)


class Portfolio(Base):
    __tablename__ = "portfolio"
    __table_args__ = (Index("ix_portfolio_owner", "owner_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(128), default="Portfolio")
    base_currency: Mapped[str] = mapped_column(String(3), default="USD")
    home_currency: Mapped[str] = mapped_column(String(3), default="TWD")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    transactions: Mapped[list["StockTransaction"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan"
    )


class StockTransaction(Base):
    __tablename__ = "stock_transaction"
    __table_args__ = (
        Index("ix_stock_transaction_portfolio_date", "portfolio_id", "transaction_date"),
        Index("ix_stock_transaction_ticker", "ticker"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    transaction_date: Mapped[date] = mapped_column(Date)
    ticker: Mapped[str] = mapped_column(String(20))
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type", values_callable=lambda e: [m.value for m in e])
    )
    shares: Mapped[Decimal] = mapped_column(Numeric(18, 4))
    price_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    fees: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    market: Mapped[Market] = mapped_column(Enum(Market, name="stock_market"))
    currency: Mapped[str] = mapped_column(String(3))
    notes: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    portfolio: Mapped[Portfolio] = relationship(back_populates="transactions")

    @property
    def is_cash_flow(self) -> bool:
        return self.transaction_type in CASH_FLOW_TYPES

    @property
    def total_cost_source(self) -> Decimal:
        """Shares times price plus fees; Taiwan subtotals drop fractional dollars."""

        subtotal = Decimal(str(self.shares)) * Decimal(str(self.price_per_share))
        if is_taiwan_ticker(self.ticker):
            subtotal = subtotal.to_integral_value(rounding=ROUND_FLOOR)
        return subtotal + Decimal(str(self.fees or 0))

    @property
    def net_proceeds_source(self) -> Decimal:
        """Sale value after fees, in the transaction currency."""

        gross = Decimal(str(self.shares)) * Decimal(str(self.price_per_share))
        return gross - Decimal(str(self.fees or 0))

    @property
    def rate_state(self) -> ExchangeRateState:
        return exchange_rate_state(self.exchange_rate, self.currency)

    @property
    def total_cost_home(self) -> Decimal | None:
        state = self.rate_state
        if isinstance(state, KnownRate):
            return self.total_cost_source * state.rate
        return None


class StockSplit(Base):
    __tablename__ = "stock_split"
    __table_args__ = (
        UniqueConstraint("symbol", "market", "split_date", name="uq_stock_split_symbol_market_date"),
        Index("ix_stock_split_symbol_market", "symbol", "market"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20))
    market: Mapped[Market] = mapped_column(Enum(Market, name="stock_market"))
    split_date: Mapped[date] = mapped_column(Date)
    split_ratio: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


__all__ = [
    "Market",
    "TransactionType",
    "CASH_FLOW_TYPES",
    "Portfolio",
    "StockTransaction",
    "StockSplit",
    "is_taiwan_ticker",
]
