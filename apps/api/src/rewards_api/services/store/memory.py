"""In-memory record store for local runs and tests."""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from rewards_api.schemas.records import Collection, RecordId, collection_name

from .base import DEFAULT_SORT, RecordPage, SortSpec, matches_snapshot, sort_records
from .errors import ConflictError, NotFoundError, RecordValidationError, StoreWriteError

DEFAULT_UNIQUE_FIELDS: dict[str, tuple[str, ...]] = {
    Collection.PENDING_MEMBERS.value: ("airtable_id",),
}


@dataclass(slots=True)
class StoreWrite:
    """Journal entry for a mutation applied by the in-memory store."""

    operation: str
    collection: str
    record_id: RecordId


class InMemoryRecordStore:
    """Dict-backed store honouring the same contract as the REST client.

    Each operation completes without yielding to the event loop once its
    optional latency has elapsed, so conditional updates and increments are
    atomic with respect to other coroutines.
    """

    def __init__(
        self,
        *,
        unique_fields: Mapping[str, Iterable[str]] | None = None,
        latency_seconds: float = 0.0,
    ) -> None:
        fields = DEFAULT_UNIQUE_FIELDS if unique_fields is None else unique_fields
        self._unique_fields = {collection_name(key): tuple(value) for key, value in fields.items()}
        self._records: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._next_ids: dict[str, int] = defaultdict(int)
        self.latency_seconds = latency_seconds
        self.writes: list[StoreWrite] = []

    def seed(self, collection: Collection | str, records: Iterable[Mapping[str, Any]]) -> None:
        """Insert records directly, bypassing constraints and the write journal."""

        name = collection_name(collection)
        for record in records:
            payload = copy.deepcopy(dict(record))
            record_id = payload.get("id")
            if record_id is None:
                record_id = self._allocate_id(name)
                payload["id"] = record_id
            elif isinstance(record_id, int):
                self._next_ids[name] = max(self._next_ids[name], record_id)
            self._records[name][self._key(record_id)] = payload

    def records(self, collection: Collection | str) -> list[dict[str, Any]]:
        name = collection_name(collection)
        return sort_records(list(self._records[name].values()), DEFAULT_SORT)

    async def get_list(
        self,
        collection: Collection | str,
        *,
        filter: Mapping[str, Any] | None = None,
        sort: SortSpec = DEFAULT_SORT,
        page: int = 1,
        per_page: int = 25,
    ) -> RecordPage:
        await self._pause()
        name = collection_name(collection)
        criteria = dict(filter or {})
        matched = [
            record
            for record in self._records[name].values()
            if all(record.get(key) == value for key, value in criteria.items())
        ]
        ordered = sort_records(matched, sort)
        start = max(page - 1, 0) * per_page
        window = ordered[start : start + per_page]
        return RecordPage(data=copy.deepcopy(window), total=len(ordered))

    async def get_one(self, collection: Collection | str, record_id: RecordId) -> dict[str, Any]:
        await self._pause()
        return copy.deepcopy(self._require(collection, record_id))

    async def create(self, collection: Collection | str, data: Mapping[str, Any]) -> dict[str, Any]:
        await self._pause()
        name = collection_name(collection)
        payload = copy.deepcopy(dict(data))
        self._check_unique(name, payload)

        record_id = payload.get("id")
        if record_id is None:
            record_id = self._allocate_id(name)
            payload["id"] = record_id
        elif self._key(record_id) in self._records[name]:
            raise RecordValidationError(
                f"Duplicate id {record_id!r} in {name}", collection=name, record_id=record_id
            )

        self._records[name][self._key(record_id)] = payload
        self.writes.append(StoreWrite("create", name, record_id))
        return copy.deepcopy(payload)

    async def update(
        self,
        collection: Collection | str,
        record_id: RecordId,
        previous: Mapping[str, Any],
        data: Mapping[str, Any],
    ) -> dict[str, Any]:
        await self._pause()
        name = collection_name(collection)
        try:
            current = self._require(name, record_id)
        except NotFoundError as exc:
            raise StoreWriteError(str(exc), collection=name, record_id=record_id) from exc
        if not matches_snapshot(current, previous):
            raise ConflictError(
                f"{name}/{record_id} changed since it was read", collection=name, record_id=record_id
            )

        payload = copy.deepcopy(dict(data))
        payload["id"] = current["id"]
        self._check_unique(name, payload, ignore_id=current["id"])
        self._records[name][self._key(record_id)] = payload
        self.writes.append(StoreWrite("update", name, record_id))
        return copy.deepcopy(payload)

    async def increment(
        self,
        collection: Collection | str,
        record_id: RecordId,
        field: str,
        amount: int = 1,
    ) -> dict[str, Any]:
        await self._pause()
        name = collection_name(collection)
        current = self._require(name, record_id)
        current[field] = int(current.get(field) or 0) + amount
        self.writes.append(StoreWrite("increment", name, record_id))
        return copy.deepcopy(current)

    async def aclose(self) -> None:
        return None

    async def _pause(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    def _require(self, collection: Collection | str, record_id: RecordId) -> dict[str, Any]:
        name = collection_name(collection)
        record = self._records[name].get(self._key(record_id))
        if record is None:
            raise NotFoundError(f"{name}/{record_id} not found", collection=name, record_id=record_id)
        return record

    def _check_unique(self, name: str, payload: Mapping[str, Any], *, ignore_id: RecordId | None = None) -> None:
        for field_name in self._unique_fields.get(name, ()):
            value = payload.get(field_name)
            if value is None:
                continue
            for existing in self._records[name].values():
                if ignore_id is not None and existing.get("id") == ignore_id:
                    continue
                if existing.get(field_name) == value:
                    raise RecordValidationError(
                        f"{name}.{field_name} must be unique ({value!r} already exists)",
                        collection=name,
                        record_id=existing.get("id"),
                    )

    def _allocate_id(self, name: str) -> int:
        self._next_ids[name] += 1
        return self._next_ids[name]

    @staticmethod
    def _key(record_id: RecordId) -> str:
        return str(record_id)


__all__ = ["InMemoryRecordStore", "StoreWrite"]
