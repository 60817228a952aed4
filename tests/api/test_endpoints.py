"""
API endpoint tests
"""

import pytest
import pytest_asyncio
import httpx
from api.main import app
from api.dependencies import get_session_factory
from reconciliation.lock import SyncLockManager


@pytest_asyncio.fixture
async def client(session_factory):
    """Create test client with session factory override"""
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_root_lists_endpoints(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["trigger"] == "/sync/trigger"


@pytest.mark.asyncio
async def test_health_endpoint_database_connected(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["database_connected"] is True
    assert data["status"] == "healthy"
    assert data["sync_running"] is False
    assert "X-Request-ID" in response.headers
    assert "X-API-Latency-ms" in response.headers


@pytest.mark.asyncio
async def test_trigger_sync_returns_result(client, seed_catalog, sample_catalog):
    await seed_catalog(sample_catalog)

    response = await client.post("/sync/trigger", headers={"X-User-Id": "alice"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["status"] == "succeeded"
    assert data["inserted_count"] == 3

    runs = (await client.get("/sync/runs")).json()
    assert len(runs) == 1
    assert runs[0]["triggered_by"] == "alice"

    detail = await client.get(f"/sync/runs/{data['run_id']}")
    assert detail.status_code == 200
    assert detail.json()["errors"] == []


@pytest.mark.asyncio
async def test_trigger_while_running_returns_409(client, session_factory, fetch_runs):
    lease = await SyncLockManager(session_factory).try_acquire(owner="scheduler")
    assert lease is not None

    response = await client.post("/sync/trigger")

    assert response.status_code == 409
    assert response.json()["detail"]["owner"] == "scheduler"
    assert await fetch_runs() == []


@pytest.mark.asyncio
async def test_status_polling_cadence(client, session_factory):
    idle = (await client.get("/sync/status")).json()
    assert idle["is_running"] is False
    assert idle["next_poll_seconds"] == 30
    assert idle["last_run"] is None

    await SyncLockManager(session_factory).try_acquire(owner="alice")
    busy = (await client.get("/sync/status")).json()
    assert busy["is_running"] is True
    assert busy["lock"]["owner"] == "alice"
    assert busy["next_poll_seconds"] == 2


@pytest.mark.asyncio
async def test_last_sync_after_trigger(client, seed_catalog):
    await seed_catalog([{"item_code": "A1"}, {"item_code": ""}])

    assert (await client.get("/sync/last")).json() is None

    await client.post("/sync/trigger")
    last = (await client.get("/sync/last")).json()

    assert last["status"] == "partial"
    assert last["error_count"] == 1


@pytest.mark.asyncio
async def test_unknown_run_returns_404(client):
    response = await client.get("/sync/runs/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_statistics_endpoint(client, seed_catalog):
    await seed_catalog([{"item_code": "A1"}])
    await client.post("/sync/trigger")

    response = await client.get("/sync/statistics", params={"days": 7})

    assert response.status_code == 200
    data = response.json()
    assert data["total_runs"] == 1
    assert data["success_rate"] == 100.0
    assert data["total_records_touched"] == 1


@pytest.mark.asyncio
async def test_statistics_rejects_invalid_window(client):
    response = await client.get("/sync/statistics", params={"days": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_validate_endpoint(client, seed_catalog):
    await seed_catalog([{"item_code": "NEG", "unit_price": -1.0}])

    response = await client.get("/sync/validate")

    assert response.status_code == 200
    data = response.json()
    assert data["is_valid"] is False
    assert data["issues"][0]["category"] == "invalid_unit_price"


@pytest.mark.asyncio
async def test_refresh_view_endpoint(client, seed_stock):
    await seed_stock([{"item_code": "A1", "posting_group": "HARDWARE", "quantity": 5}])

    response = await client.post("/sync/refresh-view")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["rows_written"] == 1
