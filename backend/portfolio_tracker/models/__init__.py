"""Database model exports."""

from .market_data import (
    DataSource,
    HistoricalDataType,
    HistoricalExchangeRateCache,
    HistoricalYearEndData,
    currency_pair,
)
from .portfolio import (
    CASH_FLOW_TYPES,
    Market,
    Portfolio,
    StockSplit,
    StockTransaction,
    TransactionType,
    is_taiwan_ticker,
)
from .snapshots import TransactionPortfolioSnapshot

__all__ = [
    "Portfolio",
    "StockTransaction",
    "StockSplit",
    "Market",
    "TransactionType",
    "CASH_FLOW_TYPES",
    "is_taiwan_ticker",
    "HistoricalYearEndData",
    "HistoricalExchangeRateCache",
    "HistoricalDataType",
    "DataSource",
    "currency_pair",
    "TransactionPortfolioSnapshot",
]
