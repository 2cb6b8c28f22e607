"""Stooq daily CSV client for stock closes and currency pairs."""

from __future__ import annotations

import io
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import httpx
import pandas as pd

from portfolio_tracker.config import get_settings
from portfolio_tracker.models import DataSource, Market

from .base import MarketDataProviderError, PriceQuote, RateQuote, year_end

logger = logging.getLogger(__name__)

_LOOKBACK_DAYS = 10
_MARKET_SUFFIXES = {Market.US: ".us", Market.UK: ".uk", Market.EU: ".nl"}
_SUFFIX_CURRENCIES = {".us": "USD", ".uk": "GBP", ".de": "EUR", ".nl": "EUR"}


def stooq_symbol(ticker: str, market: Market) -> str:
    """Map a portfolio ticker onto Stooq's ``name.exchange`` form."""

    symbol = ticker.strip().lower()
    if symbol.endswith(".l"):
        return symbol[:-2] + ".uk"
    if "." in symbol:
        return symbol
    return symbol + _MARKET_SUFFIXES.get(market, ".us")


def _parse_latest_close(csv_text: str, on_date: date) -> tuple[date, Decimal] | None:
    try:
        frame = pd.read_csv(io.StringIO(csv_text))
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise MarketDataProviderError("Unreadable Stooq payload") from exc
    if "Date" not in frame.columns or "Close" not in frame.columns:
        raise MarketDataProviderError(f"Unexpected Stooq payload: {csv_text[:80]!r}")
    frame["Date"] = pd.to_datetime(frame["Date"], errors="coerce").dt.date
    frame = frame.dropna(subset=["Date", "Close"])
    frame = frame[frame["Date"] <= on_date].sort_values("Date")
    if frame.empty:
        return None
    latest = frame.iloc[-1]
    return latest["Date"], Decimal(str(latest["Close"]))


class StooqClient:
    """Fetch historical closes from stooq.com."""

    source = DataSource.STOOQ

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: Any | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = base_url or settings.stooq_base_url
        self._timeout = timeout or settings.provider_timeout_seconds
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": settings.provider_user_agent}
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_price_on_date(self, ticker: str, market: Market, on_date: date) -> PriceQuote | None:
        symbol = stooq_symbol(ticker, market)
        body = await self._download(symbol, on_date)
        if body is None:
            return None
        latest = _parse_latest_close(body, on_date)
        if latest is None:
            return None
        actual_date, close = latest
        suffix = "." + symbol.rsplit(".", 1)[-1]
        currency = _SUFFIX_CURRENCIES.get(suffix, market.default_currency)
        if currency == "GBP" and close > 100:
            # London listings are quoted in pence
            close = close / 100
        return PriceQuote(price=close, currency=currency, actual_date=actual_date, source=self.source)

    async def get_year_end_price(self, ticker: str, market: Market, year: int) -> PriceQuote | None:
        return await self.get_price_on_date(ticker, market, year_end(year))

    async def get_exchange_rate(self, from_ccy: str, to_ccy: str, on_date: date) -> RateQuote | None:
        symbol = f"{from_ccy}{to_ccy}".lower()
        body = await self._download(symbol, on_date)
        if body is None:
            return None
        latest = _parse_latest_close(body, on_date)
        if latest is None:
            return None
        actual_date, rate = latest
        return RateQuote(rate=rate, actual_date=actual_date, source=self.source)

    async def _download(self, symbol: str, on_date: date) -> str | None:
        params = {
            "s": symbol,
            "d1": (on_date - timedelta(days=_LOOKBACK_DAYS)).strftime("%Y%m%d"),
            "d2": on_date.strftime("%Y%m%d"),
            "i": "d",
        }
        try:
            response = await self._client.get(self._base_url, params=params, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise MarketDataProviderError(f"Stooq request failed for {symbol}") from exc
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise MarketDataProviderError(f"Stooq returned HTTP {response.status_code} for {symbol}")
        body = response.text.strip()
        if not body or body.startswith("No data"):
            logger.debug("Stooq has no data for %s around %s", symbol, on_date)
            return None
        return body


__all__ = ["StooqClient", "stooq_symbol"]
