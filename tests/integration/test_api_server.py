"""
Integration tests for the expense REST API.
Runs the aiohttp application in-process against an in-memory store.
"""

from __future__ import annotations

import logging
import warnings
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import AsyncIterator

import pytest
from aiohttp import test_utils, web

from expense_tracker.api_server import CLIENT_ORIGIN_KEY, ExpenseApplication, configure_logging
from expense_tracker.expense_store import InMemoryExpenseStore
from expense_tracker.models import DetectionConfig


@asynccontextmanager
async def api_client(store=None) -> AsyncIterator[test_utils.TestClient]:
    server = ExpenseApplication(store=store or InMemoryExpenseStore(), default_config=DetectionConfig())
    async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
        yield client


def days_ago(days: int) -> str:
    return (date.today() - timedelta(days=days)).isoformat()


async def seed(client: test_utils.TestClient, amounts, category="Food & Tiffin", user="u1"):
    for i, amount in enumerate(amounts):
        response = await client.post(
            "/api/expenses",
            json={"amount": amount, "category": category, "date": days_ago(i + 1)},
            headers={"X-User-Id": user},
        )
        assert response.status == 201


@pytest.mark.asyncio
async def test_health_endpoints():
    async with api_client() as client:
        for path in ("/health", "/api/health"):
            response = await client.get(path)
            assert response.status == 200
            assert (await response.json())["ok"] is True


@pytest.mark.asyncio
async def test_expense_crud_roundtrip():
    async with api_client() as client:
        headers = {"X-User-Id": "u1"}
        created = await client.post(
            "/api/expenses",
            json={"amount": 120, "category": "Food & Tiffin", "description": "Idli", "date": days_ago(1)},
            headers=headers,
        )
        assert created.status == 201
        expense = (await created.json())["expense"]
        assert expense["amount"] == 120.0
        assert expense["date"] == days_ago(1)

        updated = await client.put(f"/api/expenses/{expense['id']}", json={"amount": 150}, headers=headers)
        assert updated.status == 200
        assert (await updated.json())["expense"]["amount"] == 150.0

        listed = await client.get("/api/expenses", headers=headers)
        assert [e["id"] for e in (await listed.json())["expenses"]] == [expense["id"]]

        deleted = await client.delete(f"/api/expenses/{expense['id']}", headers=headers)
        assert deleted.status == 204

        missing = await client.delete(f"/api/expenses/{expense['id']}", headers=headers)
        assert missing.status == 404
        assert await missing.json() == {"error": "Expense not found"}


@pytest.mark.asyncio
async def test_validation_and_bad_json_return_400():
    async with api_client() as client:
        invalid = await client.post("/api/expenses", json={"amount": -3, "category": "", "date": "soon"})
        assert invalid.status == 400
        errors = (await invalid.json())["error"]["fieldErrors"]
        assert set(errors) == {"amount", "category", "date"}

        oversized = await client.post(
            "/api/expenses",
            data='{"amount": 1' + "0" * 400 + ', "category": "Rent/Housing", "date": "2024-03-01"}',
            headers={"Content-Type": "application/json"},
        )
        assert oversized.status == 400
        assert (await oversized.json())["error"]["fieldErrors"] == {
            "amount": ["Amount must be a positive finite number"]
        }

        garbled = await client.post(
            "/api/expenses", data="{not json", headers={"Content-Type": "application/json"}
        )
        assert garbled.status == 400
        assert "Invalid JSON payload" in (await garbled.json())["error"]


@pytest.mark.asyncio
async def test_users_only_see_their_own_expenses():
    async with api_client() as client:
        await seed(client, [100, 200], user="u1")
        await seed(client, [300], user="u2")

        u1 = await (await client.get("/api/expenses", headers={"X-User-Id": "u1"})).json()
        u2 = await (await client.get("/api/expenses", headers={"X-User-Id": "u2"})).json()

        assert len(u1["expenses"]) == 2
        assert [e["amount"] for e in u2["expenses"]] == [300.0]


@pytest.mark.asyncio
async def test_category_filter_summary_and_clear():
    async with api_client() as client:
        headers = {"X-User-Id": "u1"}
        await seed(client, [100, 50], category="Food & Tiffin")
        await seed(client, [400], category="Rent/Housing")

        filtered = await (await client.get("/api/expenses?category=Rent/Housing", headers=headers)).json()
        assert [e["amount"] for e in filtered["expenses"]] == [400.0]

        summary = await (await client.get("/api/expenses/summary", headers=headers)).json()
        assert summary["total"] == 550.0
        assert summary["count"] == 3
        assert summary["categories"] == {"Food & Tiffin": 150.0, "Rent/Housing": 400.0}

        cleared = await client.delete("/api/expenses", headers=headers)
        assert await cleared.json() == {"deleted": 3}


@pytest.mark.asyncio
async def test_anomalies_endpoint_flags_spike():
    async with api_client() as client:
        headers = {"X-User-Id": "u1"}
        await seed(client, [200, 210, 190, 205, 195, 215])
        await client.post(
            "/api/expenses",
            json={"amount": 260, "category": "Food & Tiffin", "description": "Zomato party", "date": days_ago(0)},
            headers=headers,
        )

        response = await client.get("/api/insights/anomalies", headers=headers)
        body = await response.json()

        assert response.status == 200
        assert body["config"] == {"windowDays": 45, "sensitivity": 3.5, "minHistory": 5}
        assert body["count"] == 1
        anomaly = body["anomalies"][0]
        assert anomaly["expense"]["amount"] == 260.0
        assert anomaly["categoryMedian"] == 202.5
        assert anomaly["zScore"] == 5.17

        stricter = await (await client.get("/api/insights/anomalies?sensitivity=5.5", headers=headers)).json()
        assert stricter["count"] == 0


@pytest.mark.asyncio
async def test_anomaly_query_is_clamped_and_validated():
    async with api_client() as client:
        clamped = await (await client.get("/api/insights/anomalies?windowDays=500&minHistory=1&sensitivity=0")).json()
        assert clamped["config"] == {"windowDays": 120, "sensitivity": 2.5, "minHistory": 3}

        bad = await client.get("/api/insights/anomalies?windowDays=lots")
        assert bad.status == 400
        assert (await bad.json())["error"] == "windowDays must be a number"


@pytest.mark.asyncio
async def test_unknown_route_and_cors(monkeypatch):
    monkeypatch.setenv("CLIENT_ORIGIN", "http://localhost:5173")
    async with api_client() as client:
        missing = await client.get("/api/nowhere")
        assert missing.status == 404
        assert await missing.json() == {"error": "Not found"}

        preflight = await client.options("/api/expenses", headers={"Origin": "http://localhost:5173"})
        assert preflight.status == 204
        assert preflight.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

        foreign = await client.get("/api/health", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in foreign.headers


@pytest.mark.asyncio
async def test_unexpected_errors_map_to_500():
    store = InMemoryExpenseStore()
    store.list_expenses = lambda user_id: 1 / 0

    async with api_client(store=store) as client:
        response = await client.get("/api/expenses")
        assert response.status == 500
        assert await response.json() == {"error": "Server error"}


def test_configure_logging_falls_back_to_console(monkeypatch, tmp_path, caplog):
    blocked = tmp_path / "not-a-dir"
    blocked.write_text("file in the way")
    monkeypatch.setenv("LOG_DIR", str(blocked))

    with caplog.at_level(logging.INFO, logger="expense_tracker.api"):
        configure_logging()

    assert "File logging disabled" in caplog.text


def test_client_origin_uses_typed_app_key(monkeypatch):
    monkeypatch.setenv("CLIENT_ORIGIN", "https://budget.example")

    with warnings.catch_warnings():
        warnings.simplefilter("error", web.NotAppKeyWarning)
        server = ExpenseApplication(store=InMemoryExpenseStore(), default_config=DetectionConfig())

    assert server.app[CLIENT_ORIGIN_KEY] == "https://budget.example"
