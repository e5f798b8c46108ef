"""Trigger for the Airtable membership application import."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from rewards_api.api.dependencies.engines import get_pending_member_sync
from rewards_api.services.members import ExternalFetchError, PendingMemberSyncService
from rewards_api.services.store import StoreReadError

router = APIRouter(prefix="/pending-members", tags=["Pending members"])


class SyncFailureResponse(BaseModel):
    externalId: str
    name: str | None
    error: str


class SyncResponse(BaseModel):
    created: int
    skipped: int
    failed: int
    failures: list[SyncFailureResponse]


@router.post("/sync", response_model=SyncResponse, summary="Import new membership applications")
async def sync_pending_members(
    service: PendingMemberSyncService = Depends(get_pending_member_sync),
) -> SyncResponse:
    try:
        summary = await service.sync_pending_members()
    except ExternalFetchError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except StoreReadError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not read existing pending members",
        ) from exc

    return SyncResponse(
        created=summary.created,
        skipped=summary.skipped,
        failed=summary.failed,
        failures=[
            SyncFailureResponse(externalId=item.external_id, name=item.name, error=item.error)
            for item in summary.failures
        ],
    )
