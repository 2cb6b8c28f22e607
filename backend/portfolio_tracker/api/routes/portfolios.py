"""Portfolio endpoints scoped to the requesting user."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.models import Portfolio
from portfolio_tracker.schemas import PortfolioCreateRequest, PortfolioSchema
from portfolio_tracker.services import portfolios as portfolio_service
from portfolio_tracker.api.dependencies.context import RequestContext, get_request_context
from portfolio_tracker.api.dependencies.services import get_db_session

router = APIRouter()


def _serialize_portfolio(portfolio: Portfolio) -> PortfolioSchema:
    return PortfolioSchema(
        id=portfolio.id,
        name=portfolio.name,
        base_currency=portfolio.base_currency,
        home_currency=portfolio.home_currency,
        created_at=portfolio.created_at,
    )


@router.get("", response_model=list[PortfolioSchema])
async def list_portfolios(
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> list[PortfolioSchema]:
    portfolios = await portfolio_service.list_owned_portfolios(session, context.user_id)
    return [_serialize_portfolio(portfolio) for portfolio in portfolios]


@router.post("", response_model=PortfolioSchema, status_code=status.HTTP_201_CREATED)
async def create_portfolio(
    payload: PortfolioCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> PortfolioSchema:
    portfolio = await portfolio_service.create_portfolio(
        session,
        context.user_id,
        name=payload.name,
        base_currency=payload.base_currency,
        home_currency=payload.home_currency,
    )
    return _serialize_portfolio(portfolio)


@router.get("/{portfolio_id}", response_model=PortfolioSchema)
async def get_portfolio(
    portfolio_id: int,
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> PortfolioSchema:
    portfolio = await portfolio_service.load_owned_portfolio(session, portfolio_id, context.user_id)
    return _serialize_portfolio(portfolio)


__all__ = ["router"]
