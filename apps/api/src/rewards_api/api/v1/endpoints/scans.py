"""Scan endpoint used by the scanning station."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from rewards_api.api.dependencies.engines import get_scan_ledger
from rewards_api.services.scans import (
    AmbiguousCodeError,
    InvalidScanCodeError,
    MemberNotFoundError,
    MemberTypeNotFoundError,
    PartialCommitError,
    ScanLedgerService,
)
from rewards_api.services.store import ConflictError, RecordStoreError

router = APIRouter(prefix="/scans", tags=["Scans"])


class ScanRequest(BaseModel):
    code: str = Field(..., max_length=2048, description="Raw value read from the member's code")


class ScanResponse(BaseModel):
    memberId: int | str
    memberName: str
    memberTypeName: str
    pointsAfter: int
    scansRequiredForReward: int
    pointsToReward: int
    rewardDue: bool
    scannedAt: datetime


@router.post("", response_model=ScanResponse, summary="Record a scan")
async def record_scan(
    payload: ScanRequest,
    ledger: ScanLedgerService = Depends(get_scan_ledger),
) -> ScanResponse:
    try:
        result = await ledger.process_scan(payload.code)
    except InvalidScanCodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Scanned code is empty") from exc
    except MemberNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No member found with this code") from exc
    except MemberTypeNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No member type found for this member",
        ) from exc
    except AmbiguousCodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This code is assigned to more than one member",
        ) from exc
    except PartialCommitError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Scan was only partially saved; do not rescan, ask an administrator to check this member",
                "memberId": exc.member_id,
                "completedSteps": [step.value for step in exc.completed_steps],
                "failedStep": exc.failed_step.value,
            },
        ) from exc
    except ConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Account may have just been scanned, please try again",
        ) from exc
    except RecordStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Error processing scan, the rewards database is unavailable",
        ) from exc

    return ScanResponse(
        memberId=result.member_id,
        memberName=result.member_name,
        memberTypeName=result.member_type_name,
        pointsAfter=result.points_after,
        scansRequiredForReward=result.scans_required_for_reward,
        pointsToReward=result.points_to_reward,
        rewardDue=result.reward_due,
        scannedAt=result.scanned_at,
    )
