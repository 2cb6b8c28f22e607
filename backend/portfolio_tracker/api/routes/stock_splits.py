"""Stock split registry endpoints."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.models import Market, StockSplit
from portfolio_tracker.schemas import StockSplitCreateRequest, StockSplitSchema, StockSplitUpdateRequest
from portfolio_tracker.services import stock_splits as split_service
from portfolio_tracker.api.dependencies.context import get_request_context
from portfolio_tracker.api.dependencies.services import get_db_session

router = APIRouter(dependencies=[Depends(get_request_context)])


def _serialize_split(split: StockSplit) -> StockSplitSchema:
    return StockSplitSchema(
        id=split.id,
        symbol=split.symbol,
        market=split.market.value,
        split_date=split.split_date,
        split_ratio=float(split.split_ratio),
        description=split.description,
    )


@router.get("", response_model=list[StockSplitSchema])
async def list_splits(
    symbol: str | None = Query(default=None),
    market: Market | None = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> list[StockSplitSchema]:
    splits = await split_service.list_stock_splits(session, symbol=symbol, market=market)
    return [_serialize_split(split) for split in splits]


@router.post("", response_model=StockSplitSchema, status_code=status.HTTP_201_CREATED)
async def create_split(
    payload: StockSplitCreateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> StockSplitSchema:
    split = await split_service.create_stock_split(
        session,
        symbol=payload.symbol,
        split_date=payload.split_date,
        split_ratio=Decimal(str(payload.split_ratio)),
        market=Market(payload.market) if payload.market else None,
        description=payload.description,
    )
    return _serialize_split(split)


@router.put("/{split_id}", response_model=StockSplitSchema)
async def update_split(
    split_id: int,
    payload: StockSplitUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
) -> StockSplitSchema:
    split = await split_service.update_stock_split(
        session,
        split_id,
        split_date=payload.split_date,
        split_ratio=Decimal(str(payload.split_ratio)) if payload.split_ratio is not None else None,
        description=payload.description,
    )
    return _serialize_split(split)


@router.delete("/{split_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_split(
    split_id: int,
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    await split_service.delete_stock_split(session, split_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
