"""Transaction valuation snapshot endpoints."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from portfolio_tracker.models import TransactionPortfolioSnapshot
from portfolio_tracker.schemas import SnapshotBackfillRequest, SnapshotBackfillResponse, SnapshotSchema
from portfolio_tracker.services.snapshots import TransactionPortfolioSnapshotService
from portfolio_tracker.api.dependencies.services import get_snapshot_service

router = APIRouter()


def _optional_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _serialize_snapshot(snapshot: TransactionPortfolioSnapshot) -> SnapshotSchema:
    return SnapshotSchema(
        transaction_id=snapshot.transaction_id,
        snapshot_date=snapshot.snapshot_date,
        value_before=float(snapshot.value_before),
        value_after=float(snapshot.value_after),
        currency=snapshot.currency,
        value_before_source=_optional_float(snapshot.value_before_source),
        value_after_source=_optional_float(snapshot.value_after_source),
        source_currency=snapshot.source_currency,
    )


@router.get("", response_model=list[SnapshotSchema])
async def list_snapshots(
    portfolio_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    snapshots: TransactionPortfolioSnapshotService = Depends(get_snapshot_service),
) -> list[SnapshotSchema]:
    rows = await snapshots.get_snapshots(portfolio_id, start_date, end_date)
    return [_serialize_snapshot(row) for row in rows]


@router.post("/backfill", response_model=SnapshotBackfillResponse)
async def backfill_snapshots(
    portfolio_id: int,
    payload: SnapshotBackfillRequest,
    snapshots: TransactionPortfolioSnapshotService = Depends(get_snapshot_service),
) -> SnapshotBackfillResponse:
    created = await snapshots.backfill(portfolio_id, payload.start_date, payload.end_date)
    return SnapshotBackfillResponse(created=created)


__all__ = ["router"]
