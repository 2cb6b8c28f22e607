"""Yahoo Finance chart API client."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx
import pandas as pd

from portfolio_tracker.config import get_settings
from portfolio_tracker.models import DataSource, Market

from .base import MarketDataProviderError, PriceQuote, RateQuote, year_end

logger = logging.getLogger(__name__)

_MARKET_SUFFIXES = {Market.UK: ".L", Market.EU: ".AS"}


def yahoo_symbol(ticker: str, market: Market) -> str:
    """Return the Yahoo symbol, keeping any exchange suffix already present."""

    symbol = ticker.strip().upper()
    if "." in symbol:
        return symbol
    return symbol + _MARKET_SUFFIXES.get(market, "")


def _unix(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp())


class YahooFinanceClient:
    """Look up daily closes through the public v8 chart endpoint."""

    source = DataSource.YAHOO

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: Any | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.yahoo_chart_base_url).rstrip("/")
        self._timeout = timeout or settings.provider_timeout_seconds
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": settings.provider_user_agent}
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_price_on_date(self, ticker: str, market: Market, on_date: date) -> PriceQuote | None:
        symbol = yahoo_symbol(ticker, market)
        chart = await self._chart(symbol, on_date)
        if chart is None:
            return None
        meta = chart.get("meta") or {}
        currency = meta.get("currency") or market.default_currency
        latest = self._latest_close(chart, on_date)
        if latest is None:
            return None
        actual_date, close = latest
        if currency == "GBp":
            close = close / 100
            currency = "GBP"
        return PriceQuote(price=close, currency=currency.upper(), actual_date=actual_date, source=self.source)

    async def get_year_end_price(self, ticker: str, market: Market, year: int) -> PriceQuote | None:
        return await self.get_price_on_date(ticker, market, year_end(year))

    async def get_exchange_rate(self, from_ccy: str, to_ccy: str, on_date: date) -> RateQuote | None:
        symbol = f"{from_ccy}{to_ccy}=X".upper()
        chart = await self._chart(symbol, on_date)
        if chart is None:
            return None
        latest = self._latest_close(chart, on_date)
        if latest is None:
            return None
        actual_date, rate = latest
        return RateQuote(rate=rate, actual_date=actual_date, source=self.source)

    async def _chart(self, symbol: str, on_date: date) -> dict[str, Any] | None:
        params = {
            "period1": _unix(on_date - timedelta(days=7)),
            "period2": _unix(on_date + timedelta(days=1)),
            "interval": "1d",
        }
        url = f"{self._base_url}/{symbol}"
        try:
            response = await self._client.get(url, params=params, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise MarketDataProviderError(f"Yahoo Finance request failed for {symbol}") from exc
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise MarketDataProviderError(f"Yahoo Finance returned HTTP {response.status_code} for {symbol}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise MarketDataProviderError(f"Unreadable Yahoo Finance payload for {symbol}") from exc
        chart = payload.get("chart") or {}
        if chart.get("error"):
            logger.debug("Yahoo Finance error for %s: %s", symbol, chart["error"])
            return None
        results = chart.get("result") or []
        if not results:
            return None
        return results[0]

    @staticmethod
    def _latest_close(chart: dict[str, Any], on_date: date) -> tuple[date, Decimal] | None:
        timestamps = chart.get("timestamp") or []
        quotes = (chart.get("indicators") or {}).get("quote") or [{}]
        closes = quotes[0].get("close") or []
        if not timestamps or not closes:
            return None
        frame = pd.DataFrame({"ts": timestamps[: len(closes)], "close": closes[: len(timestamps)]})
        frame = frame.dropna(subset=["close"])
        frame["day"] = pd.to_datetime(frame["ts"], unit="s", utc=True).dt.date
        frame = frame[frame["day"] <= on_date].sort_values("day")
        if frame.empty:
            return None
        latest = frame.iloc[-1]
        return latest["day"], Decimal(str(latest["close"]))


__all__ = ["YahooFinanceClient", "yahoo_symbol"]
