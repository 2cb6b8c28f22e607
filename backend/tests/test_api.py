"""HTTP surface exercised through the ASGI transport."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from factories import FakeProvider, registry_for
from portfolio_tracker.db.session import Database
from portfolio_tracker.main import create_app

HEADERS = {"X-User-Id": "user-1"}


def _provider() -> FakeProvider:
    return FakeProvider(
        prices={
            "2330": (
                "TWD",
                {
                    date(2022, 12, 30): Decimal("450"),
                    date(2023, 6, 1): Decimal("500"),
                    date(2023, 12, 29): Decimal("590"),
                },
            ),
            "0050": ("TWD", {date(2023, 3, 1): Decimal("120")}),
        }
    )


def _client(tmp_path: Path):
    database = Database(url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    app = create_app(database, registry_for(_provider()))

    @asynccontextmanager
    async def _manager():
        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                yield client

    return _manager


async def _create_portfolio(client: AsyncClient, name: str = "Main") -> int:
    response = await client.post("/portfolios", json={"name": name, "home_currency": "TWD"}, headers=HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.asyncio
async def test_requests_without_user_context_are_rejected(tmp_path: Path):
    async with _client(tmp_path)() as client:
        assert (await client.get("/health")).status_code == 200
        assert (await client.get("/portfolios")).status_code == 401
        assert (await client.get("/performance/years")).status_code == 401


@pytest.mark.asyncio
async def test_transactions_and_splits_flow(tmp_path: Path):
    async with _client(tmp_path)() as client:
        portfolio_id = await _create_portfolio(client)
        created = await client.post(
            f"/portfolios/{portfolio_id}/transactions",
            json={
                "ticker": "0050",
                "transaction_type": "Buy",
                "transaction_date": "2023-03-01",
                "shares": 1000,
                "price_per_share": 120.5,
                "fees": 20,
                "exchange_rate": 0,
            },
            headers=HEADERS,
        )
        assert created.status_code == 201
        body = created.json()
        assert body["market"] == "TW"
        assert body["currency"] == "TWD"
        assert body["exchange_rate"] is None
        assert body["total_cost_source"] == pytest.approx(120520)

        split = await client.post(
            "/stock-splits",
            json={"symbol": "0050", "split_date": "2025-06-18", "split_ratio": 4},
            headers=HEADERS,
        )
        assert split.status_code == 201
        duplicate = await client.post(
            "/stock-splits",
            json={"symbol": "0050", "split_date": "2025-06-18", "split_ratio": 4},
            headers=HEADERS,
        )
        assert duplicate.status_code == 400
        invalid = await client.post(
            "/stock-splits",
            json={"symbol": "0050", "split_date": "2024-01-01", "split_ratio": 0},
            headers=HEADERS,
        )
        assert invalid.status_code == 400

        listed = await client.get(f"/portfolios/{portfolio_id}/transactions", headers=HEADERS)
        item = listed.json()[0]
        assert item["shares"] == pytest.approx(1000)
        assert item["adjusted_shares"] == pytest.approx(4000)
        assert item["adjusted_price"] == pytest.approx(30.125)
        assert item["has_split_adjustment"] is True

        snapshots = await client.get(
            f"/portfolios/{portfolio_id}/snapshots",
            params={"start_date": "2023-01-01", "end_date": "2023-12-31"},
            headers=HEADERS,
        )
        assert snapshots.status_code == 200
        assert len(snapshots.json()) == 1
        assert snapshots.json()[0]["source_currency"] == "USD"

        deleted = await client.delete(f"/portfolios/{portfolio_id}/transactions/{body['id']}", headers=HEADERS)
        assert deleted.status_code == 204
        assert (await client.get(f"/portfolios/{portfolio_id}/transactions", headers=HEADERS)).json() == []
        missing = await client.get(f"/portfolios/{portfolio_id}/transactions/{body['id']}", headers=HEADERS)
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_manual_cache_entries_conflict(tmp_path: Path):
    async with _client(tmp_path)() as client:
        payload = {"ticker": "ASML", "year": 2023, "price": 678.7, "currency": "EUR"}
        first = await client.post("/market-data/year-end-prices", json=payload, headers=HEADERS)
        assert first.status_code == 201
        assert first.json()["source"] == "Manual"
        second = await client.post("/market-data/year-end-prices", json=payload, headers=HEADERS)
        assert second.status_code == 409

        lookup = await client.get(
            "/market-data/year-end-prices/asml", params={"year": 2023, "market": "EU"}, headers=HEADERS
        )
        assert lookup.json()["resolved"] is True
        assert lookup.json()["value"] == pytest.approx(678.7)

        unknown = await client.get(
            "/market-data/year-end-prices/ZZZZ", params={"year": 2023}, headers=HEADERS
        )
        assert unknown.json()["resolved"] is False
        assert unknown.json()["reason"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_year_performance_and_xirr_endpoints(tmp_path: Path):
    async with _client(tmp_path)() as client:
        portfolio_id = await _create_portfolio(client)
        await client.post(
            f"/portfolios/{portfolio_id}/transactions",
            json={
                "ticker": "2330",
                "transaction_type": "Buy",
                "transaction_date": "2023-06-01",
                "shares": 1000,
                "price_per_share": 500,
            },
            headers=HEADERS,
        )

        response = await client.post(
            f"/performance/portfolios/{portfolio_id}/year", json={"year": 2023}, headers=HEADERS
        )
        assert response.status_code == 200
        body = response.json()
        assert body["is_complete"] is True
        assert body["start_value_home"] is None or body["start_value_home"] == 0
        assert body["end_value_home"] == pytest.approx(590000)
        assert body["total_return_percentage"] == pytest.approx(18.0)
        assert body["time_weighted_return_percentage"] == pytest.approx(18.0)
        assert body["modified_dietz_percentage"] > 18.0
        assert body["source_currency"] == "USD"

        xirr = await client.post(
            f"/performance/portfolios/{portfolio_id}/xirr",
            json={"current_prices": {"2330": {"price": 550}}, "as_of": "2024-05-31"},
            headers=HEADERS,
        )
        assert xirr.status_code == 200
        assert xirr.json()["xirr_percentage"] == pytest.approx(10.0, abs=0.01)

        years = await client.get(f"/performance/portfolios/{portfolio_id}/years", headers=HEADERS)
        assert years.json()["earliest_year"] == 2023

        not_found = await client.post("/performance/portfolios/999/year", json={"year": 2023}, headers=HEADERS)
        assert not_found.status_code == 404
