"""Holdings derived from split-adjusted transactions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from portfolio_tracker.models import Market, TransactionType

from .split_adjustment import SplitAdjustedTransaction

_ZERO = Decimal("0")


@dataclass
class Position:
    ticker: str
    market: Market
    currency: str
    shares: Decimal = _ZERO
    total_cost_source: Decimal = _ZERO

    @property
    def average_cost(self) -> Decimal | None:
        if self.shares <= 0:
            return None
        return self.total_cost_source / self.shares

    @property
    def is_open(self) -> bool:
        return self.shares > 0


def calculate_positions(
    transactions: Iterable[SplitAdjustedTransaction],
    *,
    until: date | None = None,
    before: date | None = None,
) -> dict[str, Position]:
    """Fold transactions into open positions keyed by upper-case ticker.

    ``until`` keeps trades dated on or before it, ``before`` keeps trades
    strictly earlier. Sells release cost at the running average.
    """

    ordered = sorted(
        transactions,
        key=lambda item: (item.transaction.transaction_date, item.transaction.id or 0),
    )
    positions: dict[str, Position] = {}
    for item in ordered:
        raw = item.transaction
        if raw.is_deleted:
            continue
        if until is not None and raw.transaction_date > until:
            continue
        if before is not None and raw.transaction_date >= before:
            continue
        ticker = raw.ticker.strip().upper()
        position = positions.get(ticker)
        if position is None:
            position = Position(ticker=ticker, market=raw.market, currency=raw.currency)
            positions[ticker] = position

        shares = item.adjusted_shares
        if raw.transaction_type == TransactionType.BUY:
            position.shares += shares
            position.total_cost_source += item.total_cost_source
        elif raw.transaction_type == TransactionType.SELL:
            average = position.average_cost or _ZERO
            position.total_cost_source -= average * min(shares, position.shares)
            position.shares -= shares
        elif raw.transaction_type == TransactionType.ADJUSTMENT:
            position.shares += shares
        if position.shares <= 0:
            position.shares = _ZERO
            position.total_cost_source = _ZERO

    return {ticker: position for ticker, position in positions.items() if position.is_open}


__all__ = ["Position", "calculate_positions"]
