"""HTTP client for the simple REST record store used by the admin console."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

import httpx
from loguru import logger

from rewards_api.schemas.records import Collection, RecordId, collection_name

from .base import DEFAULT_SORT, RecordPage, SortSpec, matches_snapshot
from .errors import (
    ConflictError,
    NotFoundError,
    RecordValidationError,
    StoreReadError,
    StoreWriteError,
)

_CONTENT_RANGE = re.compile(r"(?:\w+\s+)?(?:\d+-\d+|\*)/(\d+)")
_VALIDATION_STATUSES = {400, 409, 422}
_CONFLICT_STATUSES = {409, 412}


def parse_content_range(value: str | None) -> int | None:
    """Extract the total from headers such as ``items 0-24/319``."""

    if not value:
        return None
    match = _CONTENT_RANGE.search(value.strip())
    if not match:
        return None
    return int(match.group(1))


def _error_detail(response: httpx.Response) -> str:
    text = response.text.strip()
    return text[:500] if text else response.reason_phrase


class RestRecordStore:
    """Record store speaking ``GET/POST/PUT /{collection}[/{id}]``."""

    def __init__(
        self,
        base_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        api_token: str | None = None,
        timeout_seconds: float = 10.0,
        increment_max_attempts: int = 5,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._headers = headers
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None
        self._increment_max_attempts = max(increment_max_attempts, 1)

    @classmethod
    def from_settings(cls, config: Any, *, http_client: httpx.AsyncClient | None = None) -> "RestRecordStore":
        return cls(
            config.store_api_url,
            http_client=http_client,
            api_token=config.store_api_token,
            timeout_seconds=config.store_timeout_seconds,
            increment_max_attempts=config.store_increment_max_attempts,
        )

    async def get_list(
        self,
        collection: Collection | str,
        *,
        filter: Mapping[str, Any] | None = None,
        sort: SortSpec = DEFAULT_SORT,
        page: int = 1,
        per_page: int = 25,
    ) -> RecordPage:
        name = collection_name(collection)
        start = max(page - 1, 0) * per_page
        params = {
            "filter": json.dumps(dict(filter or {})),
            "sort": json.dumps([sort[0], sort[1]]),
            "range": json.dumps([start, start + per_page - 1]),
        }
        response = await self._send("GET", name, params=params, error=StoreReadError)
        if response.status_code >= 400:
            raise StoreReadError(
                f"Listing {name} failed ({response.status_code}): {_error_detail(response)}",
                collection=name,
            )
        payload = self._decode(response, StoreReadError, name)
        if not isinstance(payload, list):
            raise StoreReadError(f"Listing {name} returned a non-list payload", collection=name)

        return RecordPage(
            data=[dict(item) for item in payload],
            total=parse_content_range(response.headers.get("Content-Range")),
        )

    async def get_one(self, collection: Collection | str, record_id: RecordId) -> dict[str, Any]:
        name = collection_name(collection)
        response = await self._send("GET", name, record_id, error=StoreReadError)
        if response.status_code == 404:
            raise NotFoundError(f"{name}/{record_id} not found", collection=name, record_id=record_id)
        if response.status_code >= 400:
            raise StoreReadError(
                f"Reading {name}/{record_id} failed ({response.status_code}): {_error_detail(response)}",
                collection=name,
                record_id=record_id,
            )
        payload = self._decode(response, StoreReadError, name, record_id)
        if not isinstance(payload, dict):
            raise StoreReadError(f"{name}/{record_id} returned a non-object payload", collection=name, record_id=record_id)
        return payload

    async def create(self, collection: Collection | str, data: Mapping[str, Any]) -> dict[str, Any]:
        name = collection_name(collection)
        response = await self._send("POST", name, json_body=dict(data), error=StoreWriteError)
        if response.status_code in _VALIDATION_STATUSES:
            raise RecordValidationError(
                f"{name} rejected record: {_error_detail(response)}",
                collection=name,
            )
        if response.status_code >= 400:
            raise StoreWriteError(
                f"Creating {name} record failed ({response.status_code}): {_error_detail(response)}",
                collection=name,
            )
        body = self._decode(response, StoreWriteError, name)
        created = dict(data)
        if isinstance(body, dict):
            created.update(body)
        return created

    async def update(
        self,
        collection: Collection | str,
        record_id: RecordId,
        previous: Mapping[str, Any],
        data: Mapping[str, Any],
    ) -> dict[str, Any]:
        name = collection_name(collection)
        try:
            current = await self.get_one(name, record_id)
        except (NotFoundError, StoreReadError) as exc:
            raise StoreWriteError(
                f"Precondition read for {name}/{record_id} failed: {exc}",
                collection=name,
                record_id=record_id,
            ) from exc
        if not matches_snapshot(current, previous):
            raise ConflictError(
                f"{name}/{record_id} changed since it was read", collection=name, record_id=record_id
            )

        response = await self._send("PUT", name, record_id, json_body=dict(data), error=StoreWriteError)
        if response.status_code in _CONFLICT_STATUSES:
            raise ConflictError(
                f"{name}/{record_id} update conflicted: {_error_detail(response)}",
                collection=name,
                record_id=record_id,
            )
        if response.status_code in _VALIDATION_STATUSES:
            raise RecordValidationError(
                f"{name}/{record_id} rejected update: {_error_detail(response)}",
                collection=name,
                record_id=record_id,
            )
        if response.status_code >= 400:
            raise StoreWriteError(
                f"Updating {name}/{record_id} failed ({response.status_code}): {_error_detail(response)}",
                collection=name,
                record_id=record_id,
            )
        body = self._decode(response, StoreWriteError, name, record_id)
        updated = dict(data)
        if isinstance(body, dict):
            updated.update(body)
        return updated

    async def increment(
        self,
        collection: Collection | str,
        record_id: RecordId,
        field: str,
        amount: int = 1,
    ) -> dict[str, Any]:
        """Increment a counter using conditional updates, retrying lost races only."""

        name = collection_name(collection)
        last_conflict: ConflictError | None = None
        for attempt in range(1, self._increment_max_attempts + 1):
            try:
                current = await self.get_one(name, record_id)
            except StoreReadError as exc:
                raise StoreWriteError(
                    f"Reading {name}/{record_id} before increment failed: {exc}",
                    collection=name,
                    record_id=record_id,
                ) from exc
            updated = dict(current)
            updated[field] = int(current.get(field) or 0) + amount
            try:
                return await self.update(name, record_id, current, updated)
            except ConflictError as exc:
                last_conflict = exc
                logger.warning(
                    "Counter increment lost a race; retrying",
                    collection=name,
                    record_id=record_id,
                    field=field,
                    attempt=attempt,
                )
        raise ConflictError(
            f"Incrementing {name}/{record_id}.{field} kept conflicting after "
            f"{self._increment_max_attempts} attempts",
            collection=name,
            record_id=record_id,
        ) from last_conflict

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send(
        self,
        method: str,
        name: str,
        record_id: RecordId | None = None,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Mapping[str, Any] | None = None,
        error: type[StoreReadError] | type[StoreWriteError],
    ) -> httpx.Response:
        url = f"{self._base_url}/{name}"
        if record_id is not None:
            url = f"{url}/{record_id}"
        try:
            return await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            raise error(
                f"{method} {url} failed: {exc.__class__.__name__}: {exc}",
                collection=name,
                record_id=record_id,
            ) from exc

    @staticmethod
    def _decode(
        response: httpx.Response,
        error: type[StoreReadError] | type[StoreWriteError],
        name: str,
        record_id: RecordId | None = None,
    ) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise error(f"{name} returned invalid JSON", collection=name, record_id=record_id) from exc


__all__ = ["RestRecordStore", "parse_content_range"]
