"""Two-case result types for values that may still need resolution.

Market data and exchange rates are either known (``Resolved`` / ``KnownRate``)
or explicitly pending (``Unresolved`` / ``NeedsRate``). Callers branch on the
type instead of testing for ``None`` so a pending value is never mistaken for
zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Union


class UnresolvedReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    CURRENT_PERIOD = "CURRENT_PERIOD"
    MANUAL_ENTRY_REQUIRED = "MANUAL_ENTRY_REQUIRED"


@dataclass(frozen=True)
class Resolved:
    value: Decimal
    actual_date: date
    source: str
    from_cache: bool
    currency: str | None = None
    requested_date: date | None = None


@dataclass(frozen=True)
class Unresolved:
    key: str
    period: str
    reason: UnresolvedReason = UnresolvedReason.NOT_FOUND


Resolution = Union[Resolved, Unresolved]


@dataclass(frozen=True)
class KnownRate:
    rate: Decimal


@dataclass(frozen=True)
class NeedsRate:
    currency: str


ExchangeRateState = Union[KnownRate, NeedsRate]


def exchange_rate_state(raw_rate: Decimal | float | None, currency: str) -> ExchangeRateState:
    """Classify a stored rate; anything non-positive still needs resolution."""

    if raw_rate is None:
        return NeedsRate(currency=currency)
    rate = Decimal(str(raw_rate))
    if rate <= 0:
        return NeedsRate(currency=currency)
    return KnownRate(rate=rate)


__all__ = [
    "UnresolvedReason",
    "Resolved",
    "Unresolved",
    "Resolution",
    "KnownRate",
    "NeedsRate",
    "ExchangeRateState",
    "exchange_rate_state",
]
