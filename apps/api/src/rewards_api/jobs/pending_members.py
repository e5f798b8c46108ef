"""Scheduled import of Airtable membership applications."""

# meta: job: pending-member-sync

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Dict

import httpx
from loguru import logger

from rewards_api.core.settings import settings
from rewards_api.services.members import AirtableClient, PendingMemberSyncService
from rewards_api.services.store import RecordStore

StoreFactory = Callable[[], RecordStore] | Callable[[], Awaitable[RecordStore]]


async def run_pending_member_sync(
    *,
    store_factory: StoreFactory,
    http_client: httpx.AsyncClient | None = None,
) -> Dict[str, Any]:
    """Pull the Airtable table and create pending members for new applicants."""

    maybe_store = store_factory()
    store: RecordStore = await maybe_store if inspect.isawaitable(maybe_store) else maybe_store

    source = AirtableClient.from_settings(settings, http_client=http_client)
    try:
        service = PendingMemberSyncService(
            store,
            source,
            page_size=settings.store_page_size,
            timeout_seconds=settings.store_timeout_seconds,
        )
        summary = (await service.sync_pending_members()).as_dict()
    finally:
        await source.aclose()

    logger.bind(summary=summary).info("Pending member sync job finished")
    return summary


__all__ = ["run_pending_member_sync"]
