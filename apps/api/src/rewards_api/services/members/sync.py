"""Reconcile external membership applications into pending members."""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from rewards_api.observability.rewards import RewardsObservabilityStore, get_rewards_store
from rewards_api.observability.tracing import get_tracer
from rewards_api.schemas.records import Collection, PendingMember, PendingMemberStatus
from rewards_api.services.store import (
    RecordStore,
    RecordValidationError,
    StoreReadError,
    StoreWriteError,
    call_with_timeout,
)

from .airtable import ExternalFetchError, ExternalMemberRecord, ExternalMemberSource

# Sync runs are serial; overlapping triggers on one event loop queue here.
_SYNC_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def _sync_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _SYNC_LOCKS.get(loop)
    if lock is None:
        lock = _SYNC_LOCKS[loop] = asyncio.Lock()
    return lock


@dataclass(slots=True)
class PendingMemberSyncFailure:
    external_id: str
    name: str | None
    error: str


@dataclass(slots=True)
class PendingMemberSyncSummary:
    created: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[PendingMemberSyncFailure] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "failures": [
                {"external_id": item.external_id, "name": item.name, "error": item.error}
                for item in self.failures
            ],
        }


def _normalize_email(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def build_pending_member(record: ExternalMemberRecord, *, source: str) -> PendingMember:
    return PendingMember(
        airtable_id=record.external_id,
        name=record.name,
        email=record.email,
        membership_type=record.membership_type,
        qr_code_url=record.qr_code_url,
        created_at=record.created_at,
        status=PendingMemberStatus.PENDING,
        source=source,
    )


class PendingMemberSyncService:
    """Import new external applications as pending members, best effort per record."""

    def __init__(
        self,
        store: RecordStore,
        source: ExternalMemberSource,
        *,
        page_size: int = 1000,
        timeout_seconds: float | None = None,
        observability: RewardsObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._page_size = max(page_size, 1)
        self._timeout = timeout_seconds
        self._observability = observability or get_rewards_store()

    async def sync_pending_members(self) -> PendingMemberSyncSummary:
        async with _sync_lock():
            with get_tracer().start_as_current_span("rewards.sync_pending_members"):
                try:
                    summary = await self._run()
                except ExternalFetchError as exc:
                    self._observability.record_sync_failure("external_fetch")
                    logger.error("Pending member sync aborted: external fetch failed", error=str(exc))
                    raise
                except StoreReadError as exc:
                    self._observability.record_sync_failure("store_read")
                    logger.error("Pending member sync aborted: could not read pending members", error=str(exc))
                    raise

        self._observability.record_sync_run(
            created=summary.created,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        logger.bind(created=summary.created, skipped=summary.skipped, failed=summary.failed).info(
            "Pending member sync completed"
        )
        return summary

    async def _run(self) -> PendingMemberSyncSummary:
        candidates = await self._source.fetch_records()
        existing = await self._fetch_existing()

        known_ids: set[str] = set()
        known_emails: set[str] = set()
        for record in existing:
            if record.get("airtable_id"):
                known_ids.add(str(record["airtable_id"]))
            email = _normalize_email(record.get("email") if isinstance(record.get("email"), str) else None)
            if email:
                known_emails.add(email)

        summary = PendingMemberSyncSummary()
        for candidate in candidates:
            email = _normalize_email(candidate.email)
            if candidate.external_id in known_ids or (email and email in known_emails):
                summary.skipped += 1
                continue

            pending = build_pending_member(candidate, source=self._source.source_name)
            try:
                await call_with_timeout(
                    self._store.create(Collection.PENDING_MEMBERS, pending.to_store(exclude_none=True)),
                    timeout=self._timeout,
                    error=StoreWriteError,
                    message="Creating pending member",
                    collection=Collection.PENDING_MEMBERS,
                )
            except RecordValidationError as exc:
                # Another writer got there first; the uniqueness constraint did its job.
                summary.skipped += 1
                logger.info(
                    "Pending member already present at the store",
                    external_id=candidate.external_id,
                    error=str(exc),
                )
            except StoreWriteError as exc:
                summary.failed += 1
                summary.failures.append(
                    PendingMemberSyncFailure(external_id=candidate.external_id, name=candidate.name, error=str(exc))
                )
                logger.error(
                    "Error creating pending member",
                    external_id=candidate.external_id,
                    name=candidate.name,
                    error=str(exc),
                )
                continue
            else:
                summary.created += 1
                logger.info("Created pending member", external_id=candidate.external_id, name=candidate.name)

            known_ids.add(candidate.external_id)
            if email:
                known_emails.add(email)

        return summary

    async def _fetch_existing(self) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        page = 1
        while True:
            result = await call_with_timeout(
                self._store.get_list(
                    Collection.PENDING_MEMBERS,
                    filter={},
                    sort=("id", "ASC"),
                    page=page,
                    per_page=self._page_size,
                ),
                timeout=self._timeout,
                error=StoreReadError,
                message="Listing pending members",
                collection=Collection.PENDING_MEMBERS,
            )
            records.extend(result.data)
            if len(result.data) < self._page_size:
                return records
            if result.total is not None and len(records) >= result.total:
                return records
            page += 1


__all__ = [
    "PendingMemberSyncFailure",
    "PendingMemberSyncService",
    "PendingMemberSyncSummary",
    "build_pending_member",
]
