"""Record shapes exchanged with the rewards record store."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

RecordId = int | str


class Collection(str, Enum):
    MEMBERS = "members"
    MEMBER_TYPES = "member_types"
    REWARD_TYPES = "reward_types"
    SCAN_LOGS = "scan_logs"
    REDEEM_LOGS = "redeem_logs"
    PENDING_MEMBERS = "pending_members"


def collection_name(collection: Collection | str) -> str:
    return collection.value if isinstance(collection, Collection) else str(collection)


class PendingMemberStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class _StoreRecord(BaseModel):
    # Unknown store columns are carried through so full-record updates keep them.
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_store(self, *, exclude_none: bool = False) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=exclude_none)


class Member(_StoreRecord):
    id: RecordId
    qr_code: str
    name: str
    member_type_id: RecordId
    points: int = 0
    total_scans: int = 0
    points_to_reward: int | None = None
    reward_due: bool = False
    reward_earned_at: datetime | None = None
    last_scan_at: datetime | None = None


class MemberType(_StoreRecord):
    id: RecordId
    name: str
    scans_required: int
    reward_type_id: RecordId | None = None
    total_scans: int = 0


class ScanLog(_StoreRecord):
    id: RecordId | None = None
    scanned_value: str
    created_at: datetime | None = None


class RedeemLog(_StoreRecord):
    id: RecordId | None = None
    member_id: RecordId
    reward_type_id: RecordId | None = None
    created_at: datetime | None = None


class PendingMember(_StoreRecord):
    id: RecordId | None = None
    airtable_id: str
    name: str | None = None
    email: str | None = None
    membership_type: str | None = None
    qr_code_url: str | None = None
    created_at: datetime | None = None
    status: PendingMemberStatus = PendingMemberStatus.PENDING
    processed_at: datetime | None = None
    processed_by: str | None = None
    source: str = Field(default="Airtable")


__all__ = [
    "Collection",
    "Member",
    "MemberType",
    "PendingMember",
    "PendingMemberStatus",
    "RecordId",
    "RedeemLog",
    "ScanLog",
    "collection_name",
]
