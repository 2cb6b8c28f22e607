"""Pydantic schemas for portfolios, stock transactions and their snapshots."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

TransactionTypeName = Literal["Buy", "Sell", "Split", "Adjustment"]
MarketName = Literal["TW", "US", "UK", "EU"]


class PortfolioCreateRequest(BaseModel):
    name: str = Field(..., description="Display name for the portfolio", examples=["Long term"])
    base_currency: str = Field(default="USD", min_length=3, max_length=3)
    home_currency: str | None = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="Reporting currency; defaults to the configured home currency",
    )


class PortfolioSchema(BaseModel):
    id: int
    name: str
    base_currency: str
    home_currency: str
    created_at: datetime | None = None


class TransactionCreateRequest(BaseModel):
    ticker: str = Field(..., examples=["AAPL", "2330", "VWRA.L"])
    transaction_type: TransactionTypeName
    transaction_date: date
    shares: float = Field(..., ge=0)
    price_per_share: float = Field(..., ge=0)
    fees: float = Field(default=0.0, ge=0)
    exchange_rate: float | None = Field(
        default=None,
        description="Rate from the transaction currency to the home currency; blank or <= 0 means unknown",
    )
    market: MarketName | None = Field(default=None, description="Inferred from the ticker when omitted")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None


class TransactionUpdateRequest(TransactionCreateRequest):
    pass


class TransactionSchema(BaseModel):
    id: int
    portfolio_id: int
    ticker: str
    transaction_type: TransactionTypeName
    transaction_date: date
    shares: float
    price_per_share: float
    fees: float
    exchange_rate: float | None = None
    market: MarketName
    currency: str
    notes: str | None = None
    total_cost_source: float
    total_cost_home: float | None = None
    adjusted_shares: float
    adjusted_price: float
    split_ratio: float = 1.0
    has_split_adjustment: bool = False


class SnapshotSchema(BaseModel):
    transaction_id: int
    snapshot_date: date
    value_before: float
    value_after: float
    currency: str
    value_before_source: float | None = None
    value_after_source: float | None = None
    source_currency: str | None = None


class SnapshotBackfillRequest(BaseModel):
    start_date: date
    end_date: date


class SnapshotBackfillResponse(BaseModel):
    created: int


__all__ = [
    "PortfolioCreateRequest",
    "PortfolioSchema",
    "TransactionCreateRequest",
    "TransactionUpdateRequest",
    "TransactionSchema",
    "SnapshotSchema",
    "SnapshotBackfillRequest",
    "SnapshotBackfillResponse",
]
