import json

import pytest
from httpx import ASGITransport, AsyncClient

from factories import BASE_URL, FakeResponse, condition, page, patient
from wardsync.api import deps
from wardsync.config import settings
from wardsync.main import app
from wardsync.services.container import ServiceContainer
from wardsync.services.sync.census import CensusBuilder
from wardsync.services.sync.orchestrator import SyncOrchestrator
from wardsync.services.sync.store import SnapshotStore

API = settings.api_prefix


def _route_ward(fake_session, *patient_ids: str) -> None:
    fake_session.route(f"{BASE_URL}/Patient", page([patient(pid) for pid in patient_ids]))
    for pid in patient_ids:
        fake_session.route(f"{BASE_URL}/Patient/{pid}", patient(pid))
    fake_session.route(f"{BASE_URL}/Condition", page([condition("c1", "Sepsis")]))


def _container(fhir_client, transformer, store) -> ServiceContainer:
    orchestrator = SyncOrchestrator(client=fhir_client, transformer=transformer, store=store)

    async def _no_pause(_seconds: float) -> None:
        return None

    census = CensusBuilder(
        client=fhir_client,
        transformer=transformer,
        store=store,
        orchestrator=orchestrator,
        target_count=5,
        min_store_size=5,
        overfetch_multiplier=1.0,
        background_reseed=False,
        sleep=_no_pause,
    )
    return ServiceContainer(
        settings=settings,
        client=fhir_client,
        transformer=transformer,
        store=store,
        orchestrator=orchestrator,
        census=census,
    )


@pytest.fixture()
def services(fhir_client, transformer, store):
    container = _container(fhir_client, transformer, store)
    app.state.services = container
    yield container
    del app.state.services


@pytest.fixture()
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.mark.anyio
async def test_health_and_root(client):
    health = await client.get("/health")
    root = await client.get("/")

    assert health.json() == {"status": "healthy", "service": "wardsync-api"}
    assert root.json() == {
        "message": "Welcome to WardSync API",
        "docs": "/docs",
        "health": "/health",
    }
    assert health.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.anyio
async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-Id": "req-123"})

    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.anyio
async def test_store_health(client, services):
    response = await client.get("/health/store")

    assert response.json() == {"configured": True, "reachable": True}


@pytest.mark.anyio
async def test_uninitialized_services_return_503(client):
    response = await client.get(f"{API}/census")

    assert response.status_code == 503
    assert response.json()["error"]["type"] == "http_error"


@pytest.mark.anyio
async def test_api_key_is_enforced_when_configured(client, services, monkeypatch):
    monkeypatch.setattr(deps.settings, "api_key", "ward-key")

    denied = await client.get(f"{API}/census/summary")
    allowed = await client.get(f"{API}/census/summary", headers={"X-API-Key": "ward-key"})

    assert denied.status_code == 401
    assert denied.json()["error"]["message"] == "Invalid API key"
    assert allowed.status_code == 200


@pytest.mark.anyio
async def test_sync_patient_and_last_sync(client, services, fake_session):
    _route_ward(fake_session, "p1")

    synced = await client.post(f"{API}/sync/patients/p1")
    last = await client.get(f"{API}/sync/patients/p1/last-sync")

    body = synced.json()
    assert synced.status_code == 200
    assert body["success"] is True
    assert body["snapshot_id"].startswith("snap-")
    assert body["rows_written"] == 1
    assert last.json()["synced_recently"] is True
    assert last.json()["last_synced_at"] is not None


@pytest.mark.anyio
async def test_sync_failure_is_reported_in_body(client, services):
    response = await client.post(f"{API}/sync/patients/nobody")

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert "No Patient resource" in response.json()["error"]


@pytest.mark.anyio
async def test_last_sync_requires_store(client, services):
    services.store = SnapshotStore(None)

    response = await client.get(f"{API}/sync/patients/p1/last-sync")

    assert response.status_code == 503
    assert response.json()["error"]["status_code"] == 503


@pytest.mark.anyio
async def test_preseed_with_explicit_ids(client, services, fake_session):
    _route_ward(fake_session, "p1", "p2")

    response = await client.post(f"{API}/sync/preseed", json={"patient_ids": ["p1", "p2", "p1"]})

    assert response.json() == {"total": 2, "synced": 2, "errors": 0, "skipped": False}


@pytest.mark.anyio
async def test_preseed_lists_source_when_no_ids(client, services, fake_session):
    _route_ward(fake_session, "p1", "p2")

    response = await client.post(f"{API}/sync/preseed", json={"count": 2})

    assert response.json()["synced"] == 2


@pytest.mark.anyio
async def test_preseed_source_failure_is_bad_gateway(client, services, fake_session):
    fake_session.route(f"{BASE_URL}/Patient", FakeResponse(500, None, "down"))

    response = await client.post(f"{API}/sync/preseed", json={"count": 2})

    assert response.status_code == 502


@pytest.mark.anyio
async def test_preseed_validates_count(client, services):
    response = await client.post(f"{API}/sync/preseed", json={"count": 0})

    assert response.status_code == 422
    assert response.json()["error"]["type"] == "validation_error"


@pytest.mark.anyio
async def test_census_and_patient_lookup(client, services, fake_session):
    _route_ward(fake_session, "p1", "p2")

    census = await client.get(f"{API}/census")
    found = await client.get(f"{API}/census/patients/p2")
    missing = await client.get(f"{API}/census/patients/zzz")

    assert sorted(p["id"] for p in census.json()) == ["p1", "p2"]
    assert census.json()[0]["diagnosis"] == "Sepsis"
    assert found.json()["id"] == "p2"
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_census_stream_emits_patients_then_census(client, services, fake_session):
    _route_ward(fake_session, "p1", "p2")

    response = await client.get(f"{API}/census/stream")

    lines = [json.loads(line) for line in response.text.splitlines() if line]
    assert response.headers["content-type"].startswith("application/x-ndjson")
    assert [line["type"] for line in lines] == ["patient", "patient", "census"]
    assert sorted(p["id"] for p in lines[-1]["patients"]) == ["p1", "p2"]


@pytest.mark.anyio
async def test_cohort_summary(client, services, fake_session):
    _route_ward(fake_session, "p1")
    await client.post(f"{API}/sync/patients/p1")

    response = await client.get(f"{API}/census/summary")

    assert response.json()["total_patients"] == 1
    assert response.json()["distinct_diagnoses"] == 1


@pytest.mark.anyio
async def test_fhir_patient_list(client, services, fake_session):
    _route_ward(fake_session, "p1", "p2")

    response = await client.get(f"{API}/fhir/patients", params={"count": 1})

    assert [p["id"] for p in response.json()] == ["p1"]


@pytest.mark.anyio
async def test_fhir_patient_list_failure(client, services, fake_session):
    fake_session.route(f"{BASE_URL}/Patient", FakeResponse(503, None, "unavailable"))

    response = await client.get(f"{API}/fhir/patients")

    assert response.status_code == 502


@pytest.mark.anyio
async def test_fhir_bundle_refresh_and_cache_clear(client, services, fake_session):
    _route_ward(fake_session, "p1")

    cached = await client.get(f"{API}/fhir/patients/p1/bundle")
    await client.get(f"{API}/fhir/patients/p1/bundle")
    assert fake_session.calls_to(f"{BASE_URL}/Patient/p1") == 1

    refreshed = await client.get(f"{API}/fhir/patients/p1/bundle", params={"refresh": True})
    cleared = await client.delete(f"{API}/fhir/cache")

    assert cached.json()["total"] == 2
    assert refreshed.json()["type"] == "searchset"
    assert fake_session.calls_to(f"{BASE_URL}/Patient/p1") == 2
    assert cleared.status_code == 204
    assert len(services.client.cache) == 0
