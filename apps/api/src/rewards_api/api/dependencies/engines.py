"""Engine dependencies shared by the v1 endpoints."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from rewards_api.services.members import PendingMemberSyncService
from rewards_api.services.scans import ScanLedgerService


def get_scan_ledger(request: Request) -> ScanLedgerService:
    """Return the app-wide ledger so every request shares one member lock table."""

    ledger = getattr(request.app.state, "scan_ledger", None)
    if ledger is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scan ledger is not configured",
        )
    return ledger


def get_pending_member_sync(request: Request) -> PendingMemberSyncService:
    service = getattr(request.app.state, "pending_member_sync", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pending member sync is not configured",
        )
    return service
