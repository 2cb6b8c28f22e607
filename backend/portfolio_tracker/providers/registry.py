"""Provider selection keyed by listing market."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from portfolio_tracker.config import AppSettings, get_settings
from portfolio_tracker.models import Market

from .base import ExchangeRateProvider, PriceProvider
from .stooq import StooqClient
from .twse import TwseClient
from .yahoo import YahooFinanceClient


@dataclass
class ProviderRegistry:
    """Ordered provider chains; the first provider with data wins."""

    price_chains: dict[Market, Sequence[PriceProvider]] = field(default_factory=dict)
    year_end_rate_chain: Sequence[ExchangeRateProvider] = ()
    transaction_date_rate_chain: Sequence[ExchangeRateProvider] = ()
    # Markets whose unresolved prices must be typed in by hand
    manual_entry_markets: frozenset[Market] = frozenset({Market.EU})

    def price_chain(self, market: Market) -> Sequence[PriceProvider]:
        return self.price_chains.get(market, ())

    async def aclose(self) -> None:
        seen: set[int] = set()
        providers: list[object] = [p for chain in self.price_chains.values() for p in chain]
        providers.extend(self.year_end_rate_chain)
        providers.extend(self.transaction_date_rate_chain)
        for provider in providers:
            if id(provider) in seen or not hasattr(provider, "aclose"):
                continue
            seen.add(id(provider))
            await provider.aclose()  # type: ignore[attr-defined]


def build_provider_registry(settings: AppSettings | None = None) -> ProviderRegistry:
    """Wire the default Stooq, Yahoo Finance and TWSE clients."""

    settings = settings or get_settings()
    stooq = [StooqClient()] if settings.stooq_enabled else []
    yahoo = [YahooFinanceClient()] if settings.yahoo_enabled else []
    twse = [TwseClient()] if settings.twse_enabled else []

    return ProviderRegistry(
        price_chains={
            Market.TW: twse,
            Market.US: stooq + yahoo,
            Market.UK: stooq + yahoo,
            # Stooq does not list Euronext
            Market.EU: yahoo,
        },
        year_end_rate_chain=stooq + yahoo,
        transaction_date_rate_chain=yahoo + stooq,
    )


__all__ = ["ProviderRegistry", "build_provider_registry"]
