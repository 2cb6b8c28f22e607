"""Per-transaction portfolio valuation snapshots."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_tracker.db.base import Base


class TransactionPortfolioSnapshot(Base):
    __tablename__ = "transaction_portfolio_snapshot"
    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_snapshot_transaction"),
        Index("ix_snapshot_portfolio_date", "portfolio_id", "snapshot_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    transaction_id: Mapped[int] = mapped_column(ForeignKey("stock_transaction.id", ondelete="CASCADE"))
    snapshot_date: Mapped[date] = mapped_column(Date)
    value_before: Mapped[Decimal] = mapped_column(Numeric(20, 4))
    value_after: Mapped[Decimal] = mapped_column(Numeric(20, 4))
    currency: Mapped[str] = mapped_column(String(3))
    # Base-currency values; null when a holding could not be converted
    value_before_source: Mapped[Decimal | None] = mapped_column(Numeric(20, 4), nullable=True)
    value_after_source: Mapped[Decimal | None] = mapped_column(Numeric(20, 4), nullable=True)
    source_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )


__all__ = ["TransactionPortfolioSnapshot"]
