"""Record store protocol shared by the REST and in-memory clients."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Mapping, Protocol, Sequence, TypeVar

from rewards_api.schemas.records import Collection, RecordId

from .errors import RecordStoreError

T = TypeVar("T")

SortSpec = tuple[str, str]
DEFAULT_SORT: SortSpec = ("id", "ASC")


@dataclass(slots=True)
class RecordPage:
    """One page of a list query plus the total number of matching records.

    ``total`` is None when the store did not report it.
    """

    data: list[dict[str, Any]] = field(default_factory=list)
    total: int | None = 0


class RecordStore(Protocol):
    """CRUD access to the rewards collections."""

    async def get_list(
        self,
        collection: Collection | str,
        *,
        filter: Mapping[str, Any] | None = None,
        sort: SortSpec = DEFAULT_SORT,
        page: int = 1,
        per_page: int = 25,
    ) -> RecordPage:
        ...

    async def get_one(self, collection: Collection | str, record_id: RecordId) -> dict[str, Any]:
        ...

    async def create(self, collection: Collection | str, data: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def update(
        self,
        collection: Collection | str,
        record_id: RecordId,
        previous: Mapping[str, Any],
        data: Mapping[str, Any],
    ) -> dict[str, Any]:
        ...

    async def increment(
        self,
        collection: Collection | str,
        record_id: RecordId,
        field: str,
        amount: int = 1,
    ) -> dict[str, Any]:
        ...

    async def aclose(self) -> None:
        ...


async def call_with_timeout(
    awaitable: Awaitable[T],
    *,
    timeout: float | None,
    error: type[RecordStoreError],
    message: str,
    collection: Collection | str | None = None,
    record_id: RecordId | None = None,
) -> T:
    """Await a single store call, converting expiry into a store error."""

    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise error(
            f"{message} timed out after {timeout:g}s",
            collection=collection,
            record_id=record_id,
        ) from exc


def matches_snapshot(current: Mapping[str, Any], previous: Mapping[str, Any]) -> bool:
    """Return True when every field of ``previous`` still holds in ``current``."""

    for key, value in previous.items():
        if key not in current:
            return False
        if current[key] != value:
            return False
    return True


def sort_records(records: Sequence[Mapping[str, Any]], sort: SortSpec) -> list[dict[str, Any]]:
    field_name, order = sort
    reverse = str(order).upper() == "DESC"

    def _key(record: Mapping[str, Any]) -> tuple[int, str, Any]:
        value = record.get(field_name)
        if value is None:
            return (1, "", "")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, "", value)
        return (0, str(type(value).__name__), str(value))

    return sorted((dict(record) for record in records), key=_key, reverse=reverse)


__all__ = [
    "DEFAULT_SORT",
    "RecordPage",
    "RecordStore",
    "SortSpec",
    "call_with_timeout",
    "matches_snapshot",
    "sort_records",
]
