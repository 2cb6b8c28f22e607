"""Split adjustment and position folding over transient transactions."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from portfolio_tracker.core.errors import BusinessRuleError
from portfolio_tracker.models import Market, StockSplit, StockTransaction, TransactionType
from portfolio_tracker.services.positions import calculate_positions
from portfolio_tracker.services.split_adjustment import (
    adjust_transaction,
    adjust_transactions,
    cumulative_split_ratio,
    validate_split_ratio,
)


def _tx(
    tx_id: int,
    on: date,
    ticker: str = "0050",
    shares: str = "1000",
    price: str = "120",
    tx_type: TransactionType = TransactionType.BUY,
    market: Market = Market.TW,
    fees: str = "0",
) -> StockTransaction:
    return StockTransaction(
        id=tx_id,
        portfolio_id=1,
        transaction_date=on,
        ticker=ticker,
        transaction_type=tx_type,
        shares=Decimal(shares),
        price_per_share=Decimal(price),
        fees=Decimal(fees),
        market=market,
        currency=market.default_currency,
        is_deleted=False,
    )


def _split(on: date, ratio: str, symbol: str = "0050", market: Market = Market.TW) -> StockSplit:
    return StockSplit(symbol=symbol, market=market, split_date=on, split_ratio=Decimal(ratio))


def test_adjusts_trades_before_split():
    adjusted = adjust_transaction(_tx(1, date(2025, 1, 10)), [_split(date(2025, 6, 18), "4")])
    assert adjusted.adjusted_shares == Decimal("4000")
    assert adjusted.adjusted_price == Decimal("30")
    assert adjusted.has_split_adjustment


def test_split_dated_on_trade_day_still_applies():
    adjusted = adjust_transaction(_tx(1, date(2025, 6, 18)), [_split(date(2025, 6, 18), "4")])
    assert adjusted.split_ratio == Decimal("4")


def test_later_trades_and_other_symbols_are_untouched():
    splits = [_split(date(2025, 6, 18), "4")]
    after = adjust_transaction(_tx(1, date(2025, 7, 1)), splits)
    other = adjust_transaction(_tx(2, date(2025, 1, 1), ticker="2330"), splits)
    other_market = adjust_transaction(_tx(3, date(2025, 1, 1), ticker="0050", market=Market.US), splits)
    assert not after.has_split_adjustment
    assert not other.has_split_adjustment
    assert not other_market.has_split_adjustment


def test_multiple_splits_multiply():
    splits = [_split(date(2020, 1, 1), "2"), _split(date(2022, 1, 1), "3")]
    assert cumulative_split_ratio("0050", Market.TW, date(2019, 6, 1), splits) == Decimal("6")
    assert cumulative_split_ratio("0050", Market.TW, date(2021, 6, 1), splits) == Decimal("3")


def test_adjustment_is_idempotent_and_preserves_cost():
    splits = [_split(date(2025, 6, 18), "4")]
    raw = _tx(1, date(2025, 1, 10))
    once = adjust_transaction(raw, splits)
    twice = adjust_transaction(once, splits)
    assert twice.adjusted_shares == once.adjusted_shares
    assert twice.total_cost_source == raw.total_cost_source == Decimal("120000")
    assert raw.shares == Decimal("1000")


def test_rejects_non_positive_ratio():
    with pytest.raises(BusinessRuleError):
        validate_split_ratio("0")
    with pytest.raises(BusinessRuleError):
        validate_split_ratio(Decimal("-2"))


def test_taiwan_subtotal_is_floored_before_fees():
    tx = _tx(1, date(2025, 1, 10), ticker="2330", shares="3", price="100.7", fees="20")
    assert tx.total_cost_source == Decimal("322")


def test_positions_use_adjusted_shares_and_average_cost():
    splits = [_split(date(2025, 6, 18), "4")]
    transactions = [
        _tx(1, date(2025, 1, 10), shares="1000", price="120"),
        _tx(2, date(2025, 7, 1), shares="1000", price="40"),
        _tx(3, date(2025, 8, 1), shares="2500", price="45", tx_type=TransactionType.SELL),
    ]
    positions = calculate_positions(adjust_transactions(transactions, splits))
    position = positions["0050"]
    assert position.shares == Decimal("2500")
    assert position.total_cost_source == pytest.approx(Decimal("160000") / Decimal("5000") * Decimal("2500"))


def test_positions_respect_until_and_before():
    transactions = [
        _tx(1, date(2024, 12, 31), ticker="AAPL", shares="10", price="100", market=Market.US),
        _tx(2, date(2025, 1, 1), ticker="AAPL", shares="5", price="110", market=Market.US),
    ]
    adjusted = adjust_transactions(transactions, [])
    assert calculate_positions(adjusted, before=date(2025, 1, 1))["AAPL"].shares == Decimal("10")
    assert calculate_positions(adjusted, until=date(2025, 1, 1))["AAPL"].shares == Decimal("15")


def test_fully_sold_positions_are_dropped():
    transactions = [
        _tx(1, date(2024, 1, 2), ticker="MSFT", shares="10", price="300", market=Market.US),
        _tx(2, date(2024, 5, 2), ticker="MSFT", shares="10", price="400", market=Market.US, tx_type=TransactionType.SELL),
    ]
    assert calculate_positions(adjust_transactions(transactions, [])) == {}
