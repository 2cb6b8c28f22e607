"""Portfolio lookup scoped to the requesting user."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.config import get_settings
from portfolio_tracker.core.errors import BusinessRuleError, NotFoundError
from portfolio_tracker.models import Portfolio
from portfolio_tracker.repositories import portfolio as portfolio_repo


async def load_owned_portfolio(session: AsyncSession, portfolio_id: int, owner_id: str) -> Portfolio:
    """Return the portfolio or raise ``NotFoundError`` when absent or owned by someone else."""

    portfolio = await portfolio_repo.get_portfolio(session, portfolio_id)
    if portfolio is None or portfolio.owner_id != owner_id:
        raise NotFoundError("Portfolio", portfolio_id)
    return portfolio


async def list_owned_portfolios(session: AsyncSession, owner_id: str) -> list[Portfolio]:
    return await portfolio_repo.list_portfolios_for_owner(session, owner_id)


async def create_portfolio(
    session: AsyncSession,
    owner_id: str,
    *,
    name: str,
    base_currency: str = "USD",
    home_currency: str | None = None,
) -> Portfolio:
    if not name.strip():
        raise BusinessRuleError("Portfolio name must not be empty")
    portfolio = Portfolio(
        owner_id=owner_id,
        name=name.strip(),
        base_currency=base_currency.strip().upper(),
        home_currency=(home_currency or get_settings().home_currency).strip().upper(),
    )
    session.add(portfolio)
    await session.commit()
    await session.refresh(portfolio)
    return portfolio


__all__ = ["load_owned_portfolio", "list_owned_portfolios", "create_portfolio"]
