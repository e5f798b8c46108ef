from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from rewards_api.schemas.records import Collection
from rewards_api.services.members import ExternalFetchError, ExternalMemberRecord
from rewards_api.services.store import StoreWriteError


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_scan_endpoint_returns_member_progress(app_with_store) -> None:
    app, store = app_with_store

    async with _client(app) as client:
        response = await client.post("/api/v1/scans", json={"code": "QR-BOB"})

    assert response.status_code == 200
    body = response.json()
    assert body["memberId"] == 2
    assert body["memberName"] == "Bob"
    assert body["memberTypeName"] == "Regular"
    assert body["pointsAfter"] == 0
    assert body["scansRequiredForReward"] == 3
    assert body["rewardDue"] is True
    assert "scannedAt" in body
    assert len(store.records(Collection.REDEEM_LOGS)) == 1


@pytest.mark.asyncio
async def test_scan_endpoint_maps_rejections(app_with_store) -> None:
    app, store = app_with_store

    async with _client(app) as client:
        missing = await client.post("/api/v1/scans", json={"code": "QR-NOBODY"})
        blank = await client.post("/api/v1/scans", json={"code": "  "})

    assert missing.status_code == 404
    assert blank.status_code == 400
    assert store.writes == []


@pytest.mark.asyncio
async def test_scan_endpoint_reports_partial_commit(app_with_store, monkeypatch) -> None:
    app, store = app_with_store
    original_create = store.create

    async def failing_create(collection, data):
        if collection == Collection.SCAN_LOGS:
            raise StoreWriteError("scan log rejected", collection=collection)
        return await original_create(collection, data)

    monkeypatch.setattr(store, "create", failing_create)

    async with _client(app) as client:
        response = await client.post("/api/v1/scans", json={"code": "QR-ALICE"})

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["memberId"] == 1
    assert detail["completedSteps"] == ["member_update", "member_type_counter"]
    assert detail["failedStep"] == "scan_log"


@pytest.mark.asyncio
async def test_sync_endpoint_returns_summary(app_with_store, member_source) -> None:
    app, store = app_with_store
    member_source.records = [
        ExternalMemberRecord(
            external_id="recA",
            name="Erin",
            email="erin@example.com",
            membership_type="Regular",
            qr_code_url=None,
            created_at=None,
        )
    ]

    async with _client(app) as client:
        response = await client.post("/api/v1/pending-members/sync")

    assert response.status_code == 200
    assert response.json() == {"created": 1, "skipped": 0, "failed": 0, "failures": []}
    assert [item["airtable_id"] for item in store.records(Collection.PENDING_MEMBERS)] == ["recA"]


@pytest.mark.asyncio
async def test_sync_endpoint_maps_source_failure(app_with_store, member_source) -> None:
    app, _ = app_with_store
    member_source.error = ExternalFetchError("Airtable request failed", status_code=503)

    async with _client(app) as client:
        response = await client.post("/api/v1/pending-members/sync")

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_health_and_observability_endpoints(app_with_store) -> None:
    app, _ = app_with_store

    async with _client(app) as client:
        health = await client.get("/healthz")
        await client.post("/api/v1/scans", json={"code": "QR-ALICE"})
        await client.post("/api/v1/scans", json={"code": "QR-NOBODY"})
        counters = await client.get("/api/v1/observability/rewards")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    assert counters.status_code == 200
    payload = counters.json()
    assert payload["scans"]["accepted"] == 1
    assert payload["scans"]["rejected:member_not_found"] == 1
    assert payload["scheduler"] is None
