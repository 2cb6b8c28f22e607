"""Taiwan Stock Exchange STOCK_DAY client."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable

import httpx

from portfolio_tracker.config import get_settings
from portfolio_tracker.models import DataSource, Market

from .base import MarketDataProviderError, PriceQuote, year_end

logger = logging.getLogger(__name__)

_ROC_YEAR_OFFSET = 1911
_CLOSE_COLUMN = 6


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` acquisitions per ``window_seconds``.

    TWSE blocks clients that exceed three requests in five seconds.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._calls and self._calls[0] <= now - self._window:
                    self._calls.popleft()
                if len(self._calls) < self._max_requests:
                    self._calls.append(now)
                    return
                await self._sleep(self._calls[0] + self._window - now)


def parse_roc_date(raw: str) -> date | None:
    """Convert a Minguo calendar date such as ``114/01/02`` to a ``date``."""

    try:
        roc_year, month, day = (int(part) for part in raw.strip().split("/"))
        return date(roc_year + _ROC_YEAR_OFFSET, month, day)
    except (ValueError, TypeError):
        return None


def _previous_month(day: date) -> date:
    if day.month == 1:
        return date(day.year - 1, 12, 1)
    return date(day.year, day.month - 1, 1)


class TwseClient:
    """Historical daily closes for TWSE listed stocks, always in TWD."""

    source = DataSource.TWSE

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: Any | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = base_url or settings.twse_stock_day_url
        self._timeout = timeout or settings.provider_timeout_seconds
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": settings.provider_user_agent}
        )
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            settings.twse_max_requests, settings.twse_window_seconds
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_price_on_date(self, ticker: str, market: Market, on_date: date) -> PriceQuote | None:
        stock_no = ticker.strip().split(".", 1)[0]
        month = on_date.replace(day=1)
        # Early-month dates may precede the first trading day
        for candidate in (month, _previous_month(month)):
            rows = await self._month_rows(stock_no, candidate)
            latest = self._latest_close(rows, on_date)
            if latest is not None:
                actual_date, close = latest
                return PriceQuote(price=close, currency="TWD", actual_date=actual_date, source=self.source)
        return None

    async def get_year_end_price(self, ticker: str, market: Market, year: int) -> PriceQuote | None:
        return await self.get_price_on_date(ticker, market, year_end(year))

    async def _month_rows(self, stock_no: str, month: date) -> list[list[Any]]:
        await self._rate_limiter.acquire()
        params = {"response": "json", "date": month.strftime("%Y%m01"), "stockNo": stock_no}
        try:
            response = await self._client.get(self._base_url, params=params, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise MarketDataProviderError(f"TWSE request failed for {stock_no}") from exc
        if response.status_code >= 400:
            raise MarketDataProviderError(f"TWSE returned HTTP {response.status_code} for {stock_no}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise MarketDataProviderError(f"Unreadable TWSE payload for {stock_no}") from exc
        if payload.get("stat") != "OK":
            logger.debug("TWSE has no rows for %s in %s: %s", stock_no, month, payload.get("stat"))
            return []
        return payload.get("data") or []

    @staticmethod
    def _latest_close(rows: list[list[Any]], on_date: date) -> tuple[date, Decimal] | None:
        best: tuple[date, Decimal] | None = None
        for row in rows:
            if len(row) <= _CLOSE_COLUMN:
                continue
            day = parse_roc_date(str(row[0]))
            if day is None or day > on_date:
                continue
            try:
                close = Decimal(str(row[_CLOSE_COLUMN]).replace(",", ""))
            except InvalidOperation:
                # Suspended days report "--"
                continue
            if best is None or day > best[0]:
                best = (day, close)
        return best


__all__ = ["TwseClient", "SlidingWindowRateLimiter", "parse_roc_date"]
