from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from rewards_api.services.members import AirtableClient, ExternalFetchError, map_airtable_record


def _client(handler) -> tuple[AirtableClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = AirtableClient(
        base_id="appBase",
        table_name="Membership Applications",
        api_key="key-123",
        api_url="https://airtable.test/v0/",
        http_client=http_client,
    )
    return client, http_client


def test_map_record_reads_attachment_and_created_fallback() -> None:
    mapped = map_airtable_record(
        {
            "id": "rec1",
            "createdTime": "2024-02-01T08:30:00.000Z",
            "fields": {
                "Name": " Dana ",
                "Email": "dana@example.com",
                "Membership Type": "Regular",
                "QR Code": [{"url": "https://dl.airtable.test/qr.png", "filename": "qr.png"}],
            },
        }
    )

    assert mapped is not None
    assert mapped.name == "Dana"
    assert mapped.qr_code_url == "https://dl.airtable.test/qr.png"
    assert mapped.created_at == datetime(2024, 2, 1, 8, 30, tzinfo=timezone.utc)


def test_map_record_without_id_is_dropped() -> None:
    assert map_airtable_record({"fields": {"Name": "Nobody"}}) is None


@pytest.mark.asyncio
async def test_fetch_records_follows_offsets() -> None:
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "offset" not in request.url.params:
            return httpx.Response(
                200,
                json={
                    "records": [
                        {"id": "rec1", "fields": {"Name": "One", "QR Code": "https://qr.test/1"}},
                        {"fields": {"Name": "No id"}},
                    ],
                    "offset": "page2",
                },
            )
        return httpx.Response(200, json={"records": [{"id": "rec2", "fields": {"Email": "two@example.com"}}]})

    client, http_client = _client(handler)
    records = await client.fetch_records()
    await http_client.aclose()

    assert [record.external_id for record in records] == ["rec1", "rec2"]
    assert records[0].qr_code_url == "https://qr.test/1"
    assert records[1].email == "two@example.com"

    assert len(requests) == 2
    assert requests[0].url.path == "/v0/appBase/Membership Applications"
    assert requests[0].url.params["pageSize"] == "100"
    assert requests[1].url.params["offset"] == "page2"
    assert all(request.headers["Authorization"] == "Bearer key-123" for request in requests)


@pytest.mark.asyncio
async def test_error_status_raises_external_fetch_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "AUTHENTICATION_REQUIRED"})

    client, http_client = _client(handler)
    with pytest.raises(ExternalFetchError) as excinfo:
        await client.fetch_records()
    await http_client.aclose()

    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_failure_on_later_page_discards_partial_results() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if "offset" in request.url.params:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"records": [{"id": "rec1", "fields": {}}], "offset": "next"})

    client, http_client = _client(handler)
    with pytest.raises(ExternalFetchError, match="ReadTimeout"):
        await client.fetch_records()
    await http_client.aclose()
