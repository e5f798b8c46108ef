"""Scan-to-reward ledger: turn one scanned code into point and reward updates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from rewards_api.observability.rewards import RewardsObservabilityStore, get_rewards_store
from rewards_api.observability.tracing import get_tracer
from rewards_api.schemas.records import Collection, Member, MemberType, RecordId, RedeemLog, ScanLog
from rewards_api.services.store import (
    ConflictError,
    NotFoundError,
    RecordStore,
    RecordStoreError,
    StoreReadError,
    StoreWriteError,
    call_with_timeout,
)

from .locks import MemberLockRegistry

ModelT = TypeVar("ModelT", bound=BaseModel)
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommitStep(str, Enum):
    MEMBER_UPDATE = "member_update"
    MEMBER_TYPE_COUNTER = "member_type_counter"
    SCAN_LOG = "scan_log"
    REDEEM_LOG = "redeem_log"


class ScanLedgerError(RuntimeError):
    """Base error for scans the ledger refused or could not finish."""

    code = "scan_failed"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class InvalidScanCodeError(ScanLedgerError):
    code = "invalid_code"


class MemberNotFoundError(ScanLedgerError):
    code = "member_not_found"


class AmbiguousCodeError(ScanLedgerError):
    code = "ambiguous_code"

    def __init__(self, message: str, *, matches: int) -> None:
        super().__init__(message)
        self.matches = matches


class MemberTypeNotFoundError(ScanLedgerError):
    code = "member_type_not_found"


class PartialCommitError(ScanLedgerError):
    """Some, but not all, of a scan's writes reached the store.

    Completed writes are not rolled back; an operator has to reconcile them.
    Re-running the scan is a new scan, not a resumption.
    """

    code = "partial_commit"

    def __init__(
        self,
        message: str,
        *,
        member_id: RecordId,
        completed_steps: Sequence[CommitStep],
        failed_step: CommitStep,
    ) -> None:
        super().__init__(message)
        self.member_id = member_id
        self.completed_steps = tuple(completed_steps)
        self.failed_step = failed_step


@dataclass(slots=True)
class ScanResult:
    """Outcome of an accepted scan, shaped for the scanner display."""

    member_id: RecordId
    member_name: str
    member_type_name: str
    points_after: int
    scans_required_for_reward: int
    points_to_reward: int
    reward_due: bool
    scanned_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "member_id": self.member_id,
            "member_name": self.member_name,
            "member_type_name": self.member_type_name,
            "points_after": self.points_after,
            "scans_required_for_reward": self.scans_required_for_reward,
            "points_to_reward": self.points_to_reward,
            "reward_due": self.reward_due,
            "scanned_at": self.scanned_at.isoformat(),
        }


def apply_scan(member: Member, member_type: MemberType, *, now: datetime) -> tuple[Member, bool]:
    """Return the member as it looks after one more scan, and whether a reward is due."""

    new_points = member.points + 1
    remaining = member_type.scans_required - new_points
    reward_due = remaining <= 0

    # An unredeemed reward keeps the timestamp of the scan that first earned it.
    reward_earned_at = member.reward_earned_at
    if reward_due and reward_earned_at is None:
        reward_earned_at = now

    updated = member.model_copy(
        update={
            "total_scans": member.total_scans + 1,
            "points": 0 if reward_due else new_points,
            "points_to_reward": remaining,
            "reward_due": reward_due,
            "reward_earned_at": reward_earned_at,
            "last_scan_at": now,
        }
    )
    return updated, reward_due


class ScanLedgerService:
    """Resolve scanned codes to members and commit the resulting ledger writes."""

    def __init__(
        self,
        store: RecordStore,
        *,
        locks: MemberLockRegistry | None = None,
        timeout_seconds: float | None = None,
        observability: RewardsObservabilityStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._locks = locks or MemberLockRegistry()
        self._timeout = timeout_seconds
        self._observability = observability or get_rewards_store()
        self._clock = clock or _utcnow

    @property
    def locks(self) -> MemberLockRegistry:
        return self._locks

    async def process_scan(self, code: str) -> ScanResult:
        """Record one scan of ``code`` and return the member's new standing."""

        normalized = (code or "").strip()
        tracer = get_tracer()
        with tracer.start_as_current_span("rewards.process_scan") as span:
            try:
                if not normalized:
                    raise InvalidScanCodeError("Scanned code is empty")
                member_id = await self._resolve_member_id(normalized)
                span.set_attribute("rewards.member_id", str(member_id))
                async with self._locks.hold(str(member_id)):
                    result = await self._apply(code, normalized, member_id)
            except PartialCommitError as exc:
                self._observability.record_partial_commit(exc.failed_step.value)
                raise
            except ScanLedgerError as exc:
                self._observability.record_scan_rejected(exc.code)
                logger.info("Scan rejected", reason=exc.code, error=str(exc))
                raise
            except RecordStoreError as exc:
                self._observability.record_scan_rejected("store_error")
                logger.warning(
                    "Scan aborted by record store error",
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                    collection=exc.collection,
                    record_id=exc.record_id,
                )
                raise

            span.set_attribute("rewards.reward_due", result.reward_due)

        self._observability.record_scan_accepted(reward_issued=result.reward_due)
        logger.bind(
            member_id=result.member_id,
            points_after=result.points_after,
            reward_due=result.reward_due,
        ).info("Scan recorded")
        return result

    async def _resolve_member_id(self, code: str) -> RecordId:
        page = await call_with_timeout(
            self._store.get_list(
                Collection.MEMBERS,
                filter={"qr_code": code},
                sort=("id", "ASC"),
                page=1,
                per_page=2,
            ),
            timeout=self._timeout,
            error=StoreReadError,
            message="Member lookup",
            collection=Collection.MEMBERS,
        )
        matches = max(len(page.data), page.total or 0)
        if matches == 0:
            raise MemberNotFoundError("No member found with this code")
        if matches > 1:
            logger.error("Scanned code matches several members", matches=matches)
            raise AmbiguousCodeError(f"Code matches {matches} members", matches=matches)

        record = page.data[0]
        if record.get("id") is None:
            raise StoreReadError("Member record has no id", collection=Collection.MEMBERS)
        return record["id"]

    async def _apply(self, raw_code: str, code: str, member_id: RecordId) -> ScanResult:
        # Re-read under the lock so the snapshot reflects any scan that just finished.
        try:
            snapshot = await self._read_one(Collection.MEMBERS, member_id)
        except NotFoundError as exc:
            raise MemberNotFoundError("Member was removed before the scan could be applied") from exc
        member = _parse(Member, snapshot, Collection.MEMBERS)
        if member.qr_code.strip() != code:
            raise MemberNotFoundError("Member code changed before the scan could be applied")

        try:
            type_record = await self._read_one(Collection.MEMBER_TYPES, member.member_type_id)
        except NotFoundError as exc:
            raise MemberTypeNotFoundError("No member type found for this member") from exc
        member_type = _parse(MemberType, type_record, Collection.MEMBER_TYPES)

        now = self._clock()
        updated, reward_due = apply_scan(member, member_type, now=now)

        try:
            await self._write(
                self._store.update(Collection.MEMBERS, member.id, snapshot, updated.to_store()),
                "Member update",
                Collection.MEMBERS,
                member.id,
            )
        except ConflictError:
            logger.error(
                "Member changed underneath a locked scan",
                member_id=member.id,
            )
            raise

        steps: list[tuple[CommitStep, Callable[[], Awaitable[Any]]]] = [
            (
                CommitStep.MEMBER_TYPE_COUNTER,
                lambda: self._write(
                    self._store.increment(Collection.MEMBER_TYPES, member_type.id, "total_scans", 1),
                    "Member type counter",
                    Collection.MEMBER_TYPES,
                    member_type.id,
                ),
            ),
            (
                CommitStep.SCAN_LOG,
                lambda: self._write(
                    self._store.create(
                        Collection.SCAN_LOGS,
                        ScanLog(scanned_value=raw_code, created_at=now).to_store(exclude_none=True),
                    ),
                    "Scan log",
                    Collection.SCAN_LOGS,
                ),
            ),
        ]
        if reward_due:
            steps.append(
                (
                    CommitStep.REDEEM_LOG,
                    lambda: self._write(
                        self._store.create(
                            Collection.REDEEM_LOGS,
                            RedeemLog(
                                member_id=member.id,
                                reward_type_id=member_type.reward_type_id,
                                created_at=now,
                            ).to_store(exclude_none=True),
                        ),
                        "Redeem log",
                        Collection.REDEEM_LOGS,
                    ),
                )
            )

        completed: list[CommitStep] = [CommitStep.MEMBER_UPDATE]
        for step, run in steps:
            try:
                await run()
            except RecordStoreError as exc:
                logger.error(
                    "Scan partially committed",
                    member_id=member.id,
                    completed_steps=[item.value for item in completed],
                    failed_step=step.value,
                    error=str(exc),
                )
                raise PartialCommitError(
                    f"Scan for member {member.id} stopped at {step.value}: {exc}",
                    member_id=member.id,
                    completed_steps=completed,
                    failed_step=step,
                ) from exc
            completed.append(step)

        return ScanResult(
            member_id=member.id,
            member_name=member.name,
            member_type_name=member_type.name,
            points_after=updated.points,
            scans_required_for_reward=member_type.scans_required,
            points_to_reward=updated.points_to_reward if updated.points_to_reward is not None else 0,
            reward_due=reward_due,
            scanned_at=now,
        )

    async def _read_one(self, collection: Collection, record_id: RecordId) -> dict[str, Any]:
        return await call_with_timeout(
            self._store.get_one(collection, record_id),
            timeout=self._timeout,
            error=StoreReadError,
            message=f"Reading {collection.value}/{record_id}",
            collection=collection,
            record_id=record_id,
        )

    async def _write(
        self,
        awaitable: Awaitable[Any],
        label: str,
        collection: Collection,
        record_id: RecordId | None = None,
    ) -> Any:
        return await call_with_timeout(
            awaitable,
            timeout=self._timeout,
            error=StoreWriteError,
            message=label,
            collection=collection,
            record_id=record_id,
        )


def _parse(model: type[ModelT], record: Mapping[str, Any], collection: Collection) -> ModelT:
    try:
        return model.model_validate(record)
    except ValidationError as exc:
        raise StoreReadError(
            f"Malformed {collection.value} record: {exc.error_count()} invalid field(s)",
            collection=collection,
            record_id=record.get("id"),
        ) from exc


__all__ = [
    "AmbiguousCodeError",
    "CommitStep",
    "InvalidScanCodeError",
    "MemberNotFoundError",
    "MemberTypeNotFoundError",
    "PartialCommitError",
    "ScanLedgerError",
    "ScanLedgerService",
    "ScanResult",
    "apply_scan",
]
