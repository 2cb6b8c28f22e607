"""Pydantic schemas for the stock split registry."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from .transactions import MarketName


class StockSplitCreateRequest(BaseModel):
    symbol: str = Field(..., examples=["0050"])
    split_date: date
    split_ratio: float = Field(..., description="New shares per old share, e.g. 4 for a 1-to-4 split")
    market: MarketName | None = None
    description: str | None = None


class StockSplitUpdateRequest(BaseModel):
    split_date: date | None = None
    split_ratio: float | None = None
    description: str | None = None


class StockSplitSchema(BaseModel):
    id: int
    symbol: str
    market: MarketName
    split_date: date
    split_ratio: float
    description: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "id": 1,
                "symbol": "0050",
                "market": "TW",
                "split_date": "2025-06-18",
                "split_ratio": 4,
                "description": "1-to-4 split",
            }
        }


__all__ = ["StockSplitCreateRequest", "StockSplitUpdateRequest", "StockSplitSchema"]
