"""
Tests for the admin HTTP surface.
"""

from datetime import date

import httpx
import pytest

from ledger_engine.api.main import create_app
from tests.factories import add_commission, add_position, add_wallets


PREFIX = "/api/v1"


@pytest.fixture
async def client(ledger_engine, config):
    app = create_app(engine=ledger_engine, config=config)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_manual_run_and_repeat(client, ledger_engine):
    await add_position(ledger_engine.session_factory)

    response = await client.post(
        f"{PREFIX}/admin/jobs/daily_benefits/run",
        params={"process_date": "2024-03-10"},
        headers={"X-Actor-Id": "admin-9"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    [result] = body["data"]
    assert result["outcome"] == "completed"
    assert result["processed"] == 1

    repeat = await client.post(
        f"{PREFIX}/admin/jobs/daily_benefits/run",
        params={"process_date": "2024-03-10"}
    )
    assert repeat.json()["data"][0]["outcome"] == "skipped"
    assert repeat.json()["data"][0]["reason"] == "ALREADY_COMPLETED"

    runs = await client.get(f"{PREFIX}/admin/jobs/daily_benefits/runs")
    [record] = runs.json()["data"]
    assert record["status"] == "completed"
    assert record["actor_id"] == "admin-9"
    assert record["triggered_by"] == "manual"


async def test_unknown_job_type_is_rejected(client):
    response = await client.post(f"{PREFIX}/admin/jobs/payouts/run")
    assert response.status_code == 422


async def test_force_restart_errors_map_to_http_status(client):
    missing = await client.post(f"{PREFIX}/admin/jobs/commission_unlock/runs/2024-03-01/force-restart")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "NOT_FOUND"

    await client.post(f"{PREFIX}/admin/jobs/commission_unlock/run", params={"process_date": "2024-03-01"})
    completed = await client.post(f"{PREFIX}/admin/jobs/commission_unlock/runs/2024-03-01/force-restart")
    assert completed.status_code == 409
    assert completed.json()["error_code"] == "ALREADY_COMPLETED"


async def test_force_restart_releases_stuck_run(client, ledger_engine):
    await ledger_engine.ledger.start_run(ledger_engine.today(), "daily_benefits")

    response = await client.post(
        f"{PREFIX}/admin/jobs/daily_benefits/runs/2024-03-10/force-restart",
        headers={"X-Actor-Id": "ops"}
    )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "failed"


async def test_wallet_allocation(client, ledger_engine):
    empty = await client.post(f"{PREFIX}/wallets/allocate", json={})
    assert empty.status_code == 503
    assert empty.json()["error_code"] == "NO_WALLETS_AVAILABLE"

    wallets = await add_wallets(ledger_engine.session_factory, 2)
    response = await client.post(f"{PREFIX}/wallets/allocate", json={"network": "BEP20", "currency": "USDT"})

    assert response.status_code == 200
    assert response.json()["data"] == {
        "wallet_id": wallets[0].id,
        "address": wallets[0].address,
        "network": "BEP20",
        "currency": "USDT",
    }


async def test_wallet_admin_endpoints(client):
    added = await client.post(
        f"{PREFIX}/admin/wallets",
        json={"address": "0xnew", "network": "BEP20", "currency": "USDT", "label": "cold"}
    )
    assert added.status_code == 200
    wallet_id = added.json()["data"]["id"]

    duplicate = await client.post(
        f"{PREFIX}/admin/wallets",
        json={"address": "0xnew", "network": "BEP20", "currency": "USDT"}
    )
    assert duplicate.status_code == 400

    health = await client.get(f"{PREFIX}/admin/wallets/health")
    assert health.json()["data"]["issues"] == ["LOW_AVAILABLE_WALLETS"]

    disabled = await client.post(f"{PREFIX}/admin/wallets/{wallet_id}/disable")
    assert disabled.json()["data"]["status"] == "disabled"

    health = await client.get(f"{PREFIX}/admin/wallets/health")
    assert health.json()["data"]["status"] == "critical"

    rebalance = await client.post(f"{PREFIX}/admin/wallets/rebalance")
    assert rebalance.json()["data"] == {"wallets_reset": 0}


async def test_upcoming_unlocks_and_health(client):
    upcoming = await client.get(f"{PREFIX}/admin/commissions/upcoming", params={"days": 3})
    assert upcoming.json()["data"] == []

    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["services"]["database"] == "healthy"


async def test_unlock_stats_endpoint(client, ledger_engine):
    await add_commission(ledger_engine.session_factory, date(2024, 3, 9))
    await client.post(f"{PREFIX}/admin/jobs/commission_unlock/run")

    response = await client.get(f"{PREFIX}/admin/commissions/unlock-stats")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["process_date"] == "2024-03-10"
    assert data["unlocked_count"] == 1
    assert data["unlocked_amount"] == "50.00000000"
    assert data["ready_count"] == 0
