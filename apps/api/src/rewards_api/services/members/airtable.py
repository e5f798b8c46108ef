"""Airtable source for membership applications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol
from urllib.parse import quote

import httpx
from loguru import logger

AIRTABLE_PAGE_SIZE = 100
MAX_PAGES = 1000


class ExternalFetchError(RuntimeError):
    """Raised when the external member source cannot be read completely."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class ExternalMemberRecord:
    """Membership application as read from the external table."""

    external_id: str
    name: str | None
    email: str | None
    membership_type: str | None
    qr_code_url: str | None
    created_at: datetime | None


class ExternalMemberSource(Protocol):
    source_name: str

    async def fetch_records(self) -> list[ExternalMemberRecord]:
        ...


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    if value is None:
        return None
    return str(value)


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _attachment_url(value: Any) -> str | None:
    # "QR Code" is either a URL string or an attachment list.
    if isinstance(value, list):
        for item in value:
            if isinstance(item, Mapping) and _coerce_str(item.get("url")):
                return _coerce_str(item.get("url"))
        return None
    return _coerce_str(value)


def map_airtable_record(record: Mapping[str, Any]) -> ExternalMemberRecord | None:
    """Convert a raw Airtable record, returning None when it has no id."""

    external_id = _coerce_str(record.get("id"))
    if not external_id:
        return None
    fields = record.get("fields")
    if not isinstance(fields, Mapping):
        fields = {}
    return ExternalMemberRecord(
        external_id=external_id,
        name=_coerce_str(fields.get("Name")),
        email=_coerce_str(fields.get("Email")),
        membership_type=_coerce_str(fields.get("Membership Type")),
        qr_code_url=_attachment_url(fields.get("QR Code")),
        created_at=_parse_datetime(fields.get("Created")) or _parse_datetime(record.get("createdTime")),
    )


class AirtableClient:
    """Read every record of one Airtable table."""

    source_name = "Airtable"

    def __init__(
        self,
        *,
        base_id: str,
        table_name: str,
        api_key: str,
        api_url: str = "https://api.airtable.com/v0",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
        source_name: str | None = None,
    ) -> None:
        self._url = f"{api_url.rstrip('/')}/{quote(base_id, safe='')}/{quote(table_name, safe='')}"
        self._api_key = api_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None
        if source_name:
            self.source_name = source_name

    @classmethod
    def from_settings(cls, config: Any, *, http_client: httpx.AsyncClient | None = None) -> "AirtableClient":
        return cls(
            base_id=config.airtable_base_id,
            table_name=config.airtable_table_name,
            api_key=config.airtable_api_key,
            api_url=config.airtable_api_url,
            http_client=http_client,
            timeout_seconds=config.airtable_timeout_seconds,
            source_name=config.pending_member_source,
        )

    async def fetch_records(self) -> list[ExternalMemberRecord]:
        records: list[ExternalMemberRecord] = []
        dropped = 0
        offset: str | None = None
        for _ in range(MAX_PAGES):
            payload = await self._fetch_page(offset)
            raw_records = payload.get("records")
            if not isinstance(raw_records, list):
                raise ExternalFetchError("Airtable response is missing 'records'")
            for raw in raw_records:
                mapped = map_airtable_record(raw) if isinstance(raw, Mapping) else None
                if mapped is None:
                    dropped += 1
                    continue
                records.append(mapped)
            offset = _coerce_str(payload.get("offset"))
            if not offset:
                break
        else:
            raise ExternalFetchError(f"Airtable pagination did not finish within {MAX_PAGES} pages")

        if dropped:
            logger.warning("Ignored Airtable records without an id", dropped=dropped)
        return records

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _fetch_page(self, offset: str | None) -> Mapping[str, Any]:
        params: dict[str, str | int] = {"pageSize": AIRTABLE_PAGE_SIZE}
        if offset:
            params["offset"] = offset
        try:
            response = await self._client.get(
                self._url,
                params=params,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            raise ExternalFetchError(f"Airtable request failed: {exc.__class__.__name__}: {exc}") from exc

        if response.status_code >= 400:
            raise ExternalFetchError(
                f"Airtable request failed: {response.text.strip()[:500]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalFetchError("Airtable returned invalid JSON", status_code=response.status_code) from exc
        if not isinstance(payload, Mapping):
            raise ExternalFetchError("Airtable returned a non-object payload", status_code=response.status_code)
        return payload


__all__ = [
    "AirtableClient",
    "ExternalFetchError",
    "ExternalMemberRecord",
    "ExternalMemberSource",
    "map_airtable_record",
]
