"""API integration tests.

Runs the real application through httpx's ASGI transport with the database,
clock and cache dependencies pointed at the test fixtures.
"""

import os
from collections.abc import AsyncGenerator
from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from streakledger.api.deps import get_clock, get_redis
from streakledger.clock import FixedClock
from streakledger.main import app
from streakledger.utils.db import get_db

ADMIN_HEADERS = {"X-API-Key": os.environ["INTERNAL_API_KEY"]}


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, frozen at 2024-01-10."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    clock = FixedClock(date(2024, 1, 10))
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_redis] = lambda: None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def headers(user) -> dict[str, str]:
    return {"X-User-Id": user.id}


class TestCallerIdentity:
    @pytest.mark.asyncio
    async def test_missing_user_header(self, client):
        response = await client.post("/attendance/check-in")

        assert response.status_code == 401
        body = response.json()
        assert body["error"]["code"] == "AUTH_REQUIRED"
        assert "traceId" in body

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.get("/attendance/summary", headers={"X-User-Id": "ghost"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestCheckInApi:
    @pytest.mark.asyncio
    async def test_check_in_then_conflict(self, client, headers):
        first = await client.post("/attendance/check-in", headers=headers)
        second = await client.post("/attendance/check-in", headers=headers)

        assert first.status_code == 200
        assert first.json()["streak"] == 1
        assert first.json()["balance"] == 10

        assert second.status_code == 409
        error = second.json()["error"]
        assert error["code"] == "ALREADY_CHECKED_IN"
        assert error["details"] == {"date": "2024-01-10"}

    @pytest.mark.asyncio
    async def test_status_and_history(self, client, headers):
        await client.post("/attendance/check-in", headers=headers)

        status = await client.get("/attendance/status", headers=headers)
        history = await client.get("/attendance/history", headers=headers)

        assert status.json()["checked_in_today"] is True
        assert status.json()["summary"]["total_days"] == 1
        assert history.json()["total"] == 1
        assert history.json()["items"][0]["status"] == "attended"

    @pytest.mark.asyncio
    async def test_calendar_defaults_to_current_month(self, client, headers):
        response = await client.get("/attendance/calendar", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert (body["month"], body["year"]) == (1, 2024)
        assert len(body["days"]) == 31

    @pytest.mark.asyncio
    async def test_yearly_stats(self, client, headers):
        await client.post("/attendance/check-in", headers=headers)

        stats = await client.get("/attendance/stats", params={"year": 2024}, headers=headers)
        future = await client.get("/attendance/stats", params={"year": 2025}, headers=headers)

        assert stats.status_code == 200
        assert stats.json()["overall"]["total_days"] == 1
        assert stats.json()["year_stats"]["total_coins_earned"] == 10
        assert stats.json()["year_stats"]["months"][0]["total_days"] == 1
        assert future.status_code == 400

    @pytest.mark.asyncio
    async def test_calendar_future_month_rejected(self, client, headers):
        response = await client.get(
            "/attendance/calendar", params={"month": 3, "year": 2024}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestMissedDaysApi:
    @pytest.mark.asyncio
    async def test_purchase_flow(self, client, headers, user, fund):
        await fund(user.id, 100)

        available = await client.get("/attendance/missed-days", headers=headers)
        purchase = await client.post(
            "/attendance/missed-days/purchase",
            json={"dates": ["2024-01-09"]},
            headers=headers,
        )
        balance = await client.get("/wallet/balance", headers=headers)

        assert available.json()["count"] == 30
        assert available.json()["max_affordable"] == 2
        assert purchase.status_code == 200
        assert purchase.json()["net_cost"] == 40
        assert purchase.json()["summary"]["current_streak"] == 1
        assert balance.json() == {"balance": 60, "frozen": False}

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, client, headers):
        response = await client.post(
            "/attendance/missed-days/purchase",
            json={"dates": ["2024-01-09"]},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INSUFFICIENT_BALANCE"

    @pytest.mark.asyncio
    async def test_empty_purchase_is_validation_error(self, client, headers):
        response = await client.post(
            "/attendance/missed-days/purchase", json={"dates": []}, headers=headers
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_pricing(self, client):
        response = await client.get("/attendance/missed-days/pricing")

        assert response.json()["net_cost_per_day"] == 40


class TestMilestoneApi:
    async def create_milestone(self, client, **overrides):
        body = {
            "scope": "monthly",
            "required_days": 1,
            "reward_type": "coin",
            "reward_value": 50,
            "title": "First day",
        }
        body.update(overrides)
        return await client.post("/internal/admin/milestones", json=body, headers=ADMIN_HEADERS)

    @pytest.mark.asyncio
    async def test_admin_requires_api_key(self, client):
        response = await client.get("/internal/admin/milestones")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_API_KEY"

    @pytest.mark.asyncio
    async def test_admin_catalog_crud(self, client):
        created = await self.create_milestone(client)
        duplicate = await self.create_milestone(client, title="Again")
        milestone_id = created.json()["id"]

        patched = await client.patch(
            f"/internal/admin/milestones/{milestone_id}",
            json={"reward_value": 75},
            headers=ADMIN_HEADERS,
        )
        deleted = await client.delete(
            f"/internal/admin/milestones/{milestone_id}", headers=ADMIN_HEADERS
        )
        listed = await client.get("/internal/admin/milestones", headers=ADMIN_HEADERS)

        assert created.status_code == 201
        assert duplicate.status_code == 409
        assert patched.json()["reward_value"] == 75
        assert deleted.json()["is_active"] is False
        assert listed.json() == []

    @pytest.mark.asyncio
    async def test_claim_flow(self, client, headers):
        milestone_id = (await self.create_milestone(client)).json()["id"]
        await client.post("/attendance/check-in", headers=headers)

        listing = await client.get("/attendance/milestones", headers=headers)
        claim = await client.post(
            f"/attendance/milestones/{milestone_id}/claim", headers=headers
        )
        again = await client.post(
            f"/attendance/milestones/{milestone_id}/claim", headers=headers
        )
        history = await client.get("/attendance/claims", headers=headers)
        transactions = await client.get("/wallet/transactions", headers=headers)

        assert listing.json()["monthly"][0]["eligible"] is True
        assert claim.status_code == 200
        assert claim.json()["claim"]["period"] == {"month": 1, "year": 2024}
        assert claim.json()["balance"] == 60
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ALREADY_CLAIMED"
        assert history.json()["total"] == 1
        assert [t["reason"] for t in transactions.json()] == [
            "milestone_reward",
            "daily_checkin",
        ]

    @pytest.mark.asyncio
    async def test_claim_without_progress(self, client, headers):
        milestone_id = (await self.create_milestone(client, required_days=5)).json()["id"]

        response = await client.post(
            f"/attendance/milestones/{milestone_id}/claim", headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["required"] == 5


class TestLedgerAdminApi:
    @pytest.mark.asyncio
    async def test_reconcile(self, client, headers, user):
        await client.post("/attendance/check-in", headers=headers)

        response = await client.post(
            f"/internal/admin/ledger/{user.id}/reconcile", headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["consistent"] is True
        assert response.json()["balance"] == 10

    @pytest.mark.asyncio
    async def test_adjust_balance(self, client, headers, user):
        body = {"amount": 120, "reference_id": "support-42", "description": "Refund"}

        first = await client.post(
            f"/internal/admin/ledger/{user.id}/adjust", json=body, headers=ADMIN_HEADERS
        )
        again = await client.post(
            f"/internal/admin/ledger/{user.id}/adjust", json=body, headers=ADMIN_HEADERS
        )
        transactions = await client.get("/wallet/transactions", headers=headers)

        assert first.status_code == 200
        assert first.json()["balance"] == 120
        assert again.status_code == 409
        assert [t["reason"] for t in transactions.json()] == ["admin_adjust"]

    @pytest.mark.asyncio
    async def test_settle_without_pending(self, client):
        response = await client.post("/internal/admin/claims/settle", headers=ADMIN_HEADERS)

        assert response.json() == {"pending": 0, "settled": 0, "failed": []}


class TestMonitoringApi:
    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client, headers):
        await client.post("/attendance/check-in", headers=headers)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "streakledger_checkins_total" in response.text
