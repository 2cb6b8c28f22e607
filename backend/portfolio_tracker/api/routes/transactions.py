"""Stock transaction endpoints for one portfolio."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.schemas import TransactionCreateRequest, TransactionSchema, TransactionUpdateRequest
from portfolio_tracker.services import transactions as transaction_service
from portfolio_tracker.services.snapshots import TransactionPortfolioSnapshotService
from portfolio_tracker.services.split_adjustment import SplitAdjustedTransaction
from portfolio_tracker.api.dependencies.context import RequestContext, get_request_context
from portfolio_tracker.api.dependencies.services import get_db_session, get_snapshot_service

router = APIRouter()


def _serialize_transaction(item: SplitAdjustedTransaction) -> TransactionSchema:
    tx = item.transaction
    total_cost_home = tx.total_cost_home
    return TransactionSchema(
        id=tx.id,
        portfolio_id=tx.portfolio_id,
        ticker=tx.ticker,
        transaction_type=tx.transaction_type.value,
        transaction_date=tx.transaction_date,
        shares=float(tx.shares),
        price_per_share=float(tx.price_per_share),
        fees=float(tx.fees or 0),
        exchange_rate=float(tx.exchange_rate) if tx.exchange_rate is not None else None,
        market=tx.market.value,
        currency=tx.currency,
        notes=tx.notes,
        total_cost_source=float(tx.total_cost_source),
        total_cost_home=float(total_cost_home) if total_cost_home is not None else None,
        adjusted_shares=float(item.adjusted_shares),
        adjusted_price=float(item.adjusted_price),
        split_ratio=float(item.split_ratio),
        has_split_adjustment=item.has_split_adjustment,
    )


@router.get("", response_model=list[TransactionSchema])
async def list_transactions(
    portfolio_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> list[TransactionSchema]:
    items = await transaction_service.list_portfolio_transactions(
        session, context.user_id, portfolio_id, start=start_date, end=end_date
    )
    return [_serialize_transaction(item) for item in items]


@router.get("/{transaction_id}", response_model=TransactionSchema)
async def get_transaction(
    portfolio_id: int,
    transaction_id: int,
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> TransactionSchema:
    item = await transaction_service.get_portfolio_transaction(
        session, context.user_id, portfolio_id, transaction_id
    )
    return _serialize_transaction(item)


@router.post("", response_model=TransactionSchema, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    portfolio_id: int,
    payload: TransactionCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    snapshots: TransactionPortfolioSnapshotService = Depends(get_snapshot_service),
    context: RequestContext = Depends(get_request_context),
) -> TransactionSchema:
    tx = await transaction_service.create_transaction(session, snapshots, context.user_id, portfolio_id, payload)
    item = await transaction_service.get_portfolio_transaction(session, context.user_id, portfolio_id, tx.id)
    return _serialize_transaction(item)


@router.put("/{transaction_id}", response_model=TransactionSchema)
async def update_transaction(
    portfolio_id: int,
    transaction_id: int,
    payload: TransactionUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    snapshots: TransactionPortfolioSnapshotService = Depends(get_snapshot_service),
    context: RequestContext = Depends(get_request_context),
) -> TransactionSchema:
    await transaction_service.update_transaction(
        session, snapshots, context.user_id, portfolio_id, transaction_id, payload
    )
    item = await transaction_service.get_portfolio_transaction(
        session, context.user_id, portfolio_id, transaction_id
    )
    return _serialize_transaction(item)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    portfolio_id: int,
    transaction_id: int,
    session: AsyncSession = Depends(get_db_session),
    snapshots: TransactionPortfolioSnapshotService = Depends(get_snapshot_service),
    context: RequestContext = Depends(get_request_context),
) -> Response:
    await transaction_service.delete_transaction(session, snapshots, context.user_id, portfolio_id, transaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
