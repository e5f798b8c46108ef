"""Errors raised by record store clients."""

from __future__ import annotations

from rewards_api.schemas.records import Collection, RecordId, collection_name


class RecordStoreError(RuntimeError):
    """Base error for record store operations."""

    def __init__(
        self,
        message: str,
        *,
        collection: Collection | str | None = None,
        record_id: RecordId | None = None,
    ) -> None:
        super().__init__(message)
        self.collection = collection_name(collection) if collection is not None else None
        self.record_id = record_id


class StoreReadError(RecordStoreError):
    """A read could not be completed (transport failure, timeout, bad payload)."""


class NotFoundError(RecordStoreError):
    """The requested record does not exist."""


class StoreWriteError(RecordStoreError):
    """A create or update could not be completed."""


class RecordValidationError(StoreWriteError):
    """The store rejected the payload, e.g. a uniqueness violation."""


class ConflictError(StoreWriteError):
    """The stored record no longer matches the snapshot an update was based on."""


__all__ = [
    "ConflictError",
    "NotFoundError",
    "RecordStoreError",
    "RecordValidationError",
    "StoreReadError",
    "StoreWriteError",
]
