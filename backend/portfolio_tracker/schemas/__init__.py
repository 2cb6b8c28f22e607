"""Pydantic schema exports."""

from .market_data import (
    ManualTransactionRateRequest,
    ManualYearEndPriceRequest,
    ManualYearEndRateRequest,
    MarketDataLookupSchema,
)
from .performance import (
    AvailableYearsSchema,
    MissingExchangeRateSchema,
    MissingPriceSchema,
    PositionXirrRequest,
    ReferencePriceSchema,
    XirrRequest,
    XirrSchema,
    YearPerformanceRequest,
    YearPerformanceSchema,
)
from .splits import StockSplitCreateRequest, StockSplitSchema, StockSplitUpdateRequest
from .transactions import (
    PortfolioCreateRequest,
    PortfolioSchema,
    SnapshotBackfillRequest,
    SnapshotBackfillResponse,
    SnapshotSchema,
    TransactionCreateRequest,
    TransactionSchema,
    TransactionUpdateRequest,
)

__all__ = [
    "ManualTransactionRateRequest",
    "ManualYearEndPriceRequest",
    "ManualYearEndRateRequest",
    "MarketDataLookupSchema",
    "AvailableYearsSchema",
    "MissingExchangeRateSchema",
    "MissingPriceSchema",
    "PositionXirrRequest",
    "ReferencePriceSchema",
    "XirrRequest",
    "XirrSchema",
    "YearPerformanceRequest",
    "YearPerformanceSchema",
    "StockSplitCreateRequest",
    "StockSplitSchema",
    "StockSplitUpdateRequest",
    "PortfolioCreateRequest",
    "PortfolioSchema",
    "SnapshotBackfillRequest",
    "SnapshotBackfillResponse",
    "SnapshotSchema",
    "TransactionCreateRequest",
    "TransactionSchema",
    "TransactionUpdateRequest",
]
