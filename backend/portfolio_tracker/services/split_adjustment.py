"""Split-adjusted views over raw stock transactions.

Raw transaction rows are never rewritten. Every read recomputes the adjusted
share count and price from the raw fields and the current split list, so
registering, editing or deleting a split is reflected immediately and
re-adjusting a view is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from portfolio_tracker.core.errors import BusinessRuleError
from portfolio_tracker.models import Market, StockSplit, StockTransaction

_ONE = Decimal("1")


@dataclass(frozen=True)
class SplitAdjustedTransaction:
    transaction: StockTransaction
    split_ratio: Decimal = _ONE

    @property
    def adjusted_shares(self) -> Decimal:
        return Decimal(str(self.transaction.shares)) * self.split_ratio

    @property
    def adjusted_price(self) -> Decimal:
        return Decimal(str(self.transaction.price_per_share)) / self.split_ratio

    @property
    def total_cost_source(self) -> Decimal:
        # Splits do not change invested capital
        return self.transaction.total_cost_source

    @property
    def has_split_adjustment(self) -> bool:
        return self.split_ratio != _ONE


def validate_split_ratio(ratio: Decimal | float | str) -> Decimal:
    value = Decimal(str(ratio))
    if value <= 0:
        raise BusinessRuleError("Split ratio must be greater than zero")
    return value


def _applies(split: StockSplit, symbol: str, market: Market, on_date: date) -> bool:
    return (
        split.symbol.strip().upper() == symbol
        and split.market == market
        # A split dated on the trade day still post-dates the trade
        and split.split_date >= on_date
    )


def cumulative_split_ratio(
    symbol: str,
    market: Market,
    on_date: date,
    splits: Iterable[StockSplit],
) -> Decimal:
    """Product of ratios for splits of ``symbol`` effective on or after ``on_date``."""

    normalized = symbol.strip().upper()
    ratio = _ONE
    for split in splits:
        if _applies(split, normalized, market, on_date):
            ratio *= Decimal(str(split.split_ratio))
    return ratio


def adjust_transaction(
    transaction: StockTransaction | SplitAdjustedTransaction,
    splits: Sequence[StockSplit],
) -> SplitAdjustedTransaction:
    raw = transaction.transaction if isinstance(transaction, SplitAdjustedTransaction) else transaction
    ratio = cumulative_split_ratio(raw.ticker, raw.market, raw.transaction_date, splits)
    return SplitAdjustedTransaction(transaction=raw, split_ratio=ratio)


def adjust_transactions(
    transactions: Iterable[StockTransaction | SplitAdjustedTransaction],
    splits: Sequence[StockSplit],
) -> list[SplitAdjustedTransaction]:
    return [adjust_transaction(transaction, splits) for transaction in transactions]


__all__ = [
    "SplitAdjustedTransaction",
    "validate_split_ratio",
    "cumulative_split_ratio",
    "adjust_transaction",
    "adjust_transactions",
]
