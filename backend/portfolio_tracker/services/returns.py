"""Return calculations over cash-flow and valuation series.

All functions are pure. Modified Dietz and TWR return a fraction
(``Decimal("0.125")`` is 12.5%) or ``None`` when the return is undefined.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, getcontext
from typing import Sequence

getcontext().prec = 28

_ONE = Decimal("1")
_ZERO = Decimal("0")

XIRR_INITIAL_GUESS = 0.1
XIRR_MAX_ITERATIONS = 100
XIRR_TOLERANCE = 1e-7
XIRR_MIN_RATE = -0.999
XIRR_MAX_RATE = 1e6
XIRR_BISECTION_ITERATIONS = 200


@dataclass(frozen=True)
class ReturnCashFlow:
    """External cash flow; positive amounts are inflows."""

    date: date
    amount: Decimal


@dataclass(frozen=True)
class ReturnValuationSnapshot:
    date: date
    value_before: Decimal
    value_after: Decimal


@dataclass(frozen=True)
class XirrCashFlow:
    """Investor-side flow: money paid in is negative, money received positive."""

    amount: float
    date: date


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def modified_dietz(
    start_value: Decimal,
    end_value: Decimal,
    period_start: date | datetime,
    period_end: date | datetime,
    cash_flows: Sequence[ReturnCashFlow],
) -> Decimal | None:
    """Money-weighted return weighting each flow by the share of the period it was invested."""

    start = _as_date(period_start)
    end = _as_date(period_end)
    total_days = (end - start).days
    if total_days <= 0:
        return None

    start_value = Decimal(str(start_value))
    end_value = Decimal(str(end_value))
    net_flow = _ZERO
    weighted_flow = _ZERO
    for flow in cash_flows:
        flow_date = _as_date(flow.date)
        if flow_date < start or flow_date > end:
            continue
        amount = Decimal(str(flow.amount))
        weight = Decimal(total_days - (flow_date - start).days) / Decimal(total_days)
        net_flow += amount
        weighted_flow += amount * weight

    denominator = start_value + weighted_flow
    if denominator <= 0:
        return None
    return (end_value - start_value - net_flow) / denominator


def _sub_periods(
    start_value: Decimal,
    end_value: Decimal,
    snapshots: Sequence[ReturnValuationSnapshot],
) -> list[tuple[Decimal, Decimal]]:
    ordered = [
        snapshot
        for _, snapshot in sorted(enumerate(snapshots), key=lambda item: (_as_date(item[1].date), item[0]))
    ]
    periods = []
    current = Decimal(str(start_value))
    for snapshot in ordered:
        periods.append((current, Decimal(str(snapshot.value_before))))
        current = Decimal(str(snapshot.value_after))
    periods.append((current, Decimal(str(end_value))))
    return periods


def time_weighted_return(
    start_value: Decimal,
    end_value: Decimal,
    snapshots: Sequence[ReturnValuationSnapshot],
    *,
    cash_flow_count: int = 0,
) -> Decimal | None:
    """Chain sub-period returns between valuation snapshots.

    Snapshots are ordered by date; same-day snapshots keep their input order.
    Returns ``None`` when nothing was held in any sub-period. Raises
    ``ValueError`` when cash flows exist but no snapshots were supplied,
    since the sub-period boundaries are then unknown.
    """

    if not snapshots and cash_flow_count:
        raise ValueError("Time-weighted return needs valuation snapshots when cash flows exist")

    growth = _ONE
    defined = False
    for period_start, period_end in _sub_periods(start_value, end_value, snapshots):
        if period_start == 0 and period_end == 0:
            # Nothing was held during this stretch
            continue
        if period_start <= 0:
            return None
        growth *= period_end / period_start
        defined = True
    if not defined:
        return None
    return growth - _ONE


def _npv(rate: float, amounts: Sequence[float], years: Sequence[float]) -> float | None:
    try:
        return sum(amount / (1.0 + rate) ** t for amount, t in zip(amounts, years))
    except (OverflowError, ZeroDivisionError):
        return None


def _npv_derivative(rate: float, amounts: Sequence[float], years: Sequence[float]) -> float | None:
    try:
        return sum(-t * amount / (1.0 + rate) ** (t + 1.0) for amount, t in zip(amounts, years))
    except (OverflowError, ZeroDivisionError):
        return None


def _newton(amounts: Sequence[float], years: Sequence[float]) -> float | None:
    rate = XIRR_INITIAL_GUESS
    for _ in range(XIRR_MAX_ITERATIONS):
        value = _npv(rate, amounts, years)
        slope = _npv_derivative(rate, amounts, years)
        if value is None or slope is None or slope == 0 or math.isnan(value):
            return None
        candidate = min(max(rate - value / slope, XIRR_MIN_RATE), XIRR_MAX_RATE)
        if abs(candidate - rate) < XIRR_TOLERANCE:
            return candidate
        rate = candidate
    return None


def _bisection(amounts: Sequence[float], years: Sequence[float]) -> float | None:
    def npv(rate: float) -> float | None:
        return _npv(rate, amounts, years)

    low, high = XIRR_MIN_RATE, 10.0
    low_value, high_value = npv(low), npv(high)
    while low_value is not None and high_value is not None and low_value * high_value > 0:
        if high >= XIRR_MAX_RATE:
            return None
        high = min(high * 10.0, XIRR_MAX_RATE)
        high_value = npv(high)
    if low_value is None or high_value is None:
        return None

    for _ in range(XIRR_BISECTION_ITERATIONS):
        mid = (low + high) / 2.0
        mid_value = npv(mid)
        if mid_value is None:
            return None
        if abs(mid_value) < XIRR_TOLERANCE or (high - low) / 2.0 < XIRR_TOLERANCE:
            return mid
        if mid_value * low_value < 0:
            high = mid
        else:
            low, low_value = mid, mid_value
    return (low + high) / 2.0


def xirr(cash_flows: Sequence[XirrCashFlow]) -> float | None:
    """Annualised internal rate of return for irregularly dated flows.

    Needs at least two flows with both signs present. Newton-Raphson is tried
    first and bisection is the fallback. The result is rounded to six places.
    """

    flows = [flow for flow in cash_flows if flow.amount != 0]
    if len(flows) < 2:
        return None
    if not any(flow.amount < 0 for flow in flows) or not any(flow.amount > 0 for flow in flows):
        return None

    origin = min(_as_date(flow.date) for flow in flows)
    amounts = [float(flow.amount) for flow in flows]
    years = [(_as_date(flow.date) - origin).days / 365.0 for flow in flows]

    rate = _newton(amounts, years)
    if rate is None:
        rate = _bisection(amounts, years)
    if rate is None or math.isnan(rate) or math.isinf(rate):
        return None
    return round(rate, 6)


__all__ = [
    "ReturnCashFlow",
    "ReturnValuationSnapshot",
    "XirrCashFlow",
    "modified_dietz",
    "time_weighted_return",
    "xirr",
]
