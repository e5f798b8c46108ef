from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RewardsSnapshot:
    scans: Dict[str, int]
    partial_commits: Dict[str, int]
    sync: Dict[str, int]
    jobs: Dict[str, Dict[str, object]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "scans": dict(self.scans),
            "partial_commits": dict(self.partial_commits),
            "sync": dict(self.sync),
            "jobs": {key: dict(value) for key, value in self.jobs.items()},
        }


class RewardsObservabilityStore:
    """Collect scan ledger, reconciliation and job telemetry."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._scans: Dict[str, int] = defaultdict(int)
        self._partial_commits: Dict[str, int] = defaultdict(int)
        self._sync: Dict[str, int] = defaultdict(int)
        self._jobs: Dict[str, Dict[str, object]] = {}

    def record_scan_accepted(self, *, reward_issued: bool) -> None:
        with self._lock:
            self._scans["accepted"] += 1
            if reward_issued:
                self._scans["rewards_issued"] += 1

    def record_scan_rejected(self, reason: str) -> None:
        with self._lock:
            self._scans["rejected"] += 1
            self._scans[f"rejected:{reason}"] += 1

    def record_partial_commit(self, failed_step: str) -> None:
        with self._lock:
            self._scans["partial_commits"] += 1
            self._partial_commits[failed_step] += 1

    def record_sync_run(self, *, created: int, skipped: int, failed: int) -> None:
        with self._lock:
            self._sync["runs"] += 1
            self._sync["created"] += created
            self._sync["skipped"] += skipped
            self._sync["failed"] += failed

    def record_sync_failure(self, reason: str) -> None:
        with self._lock:
            self._sync["aborted"] += 1
            self._sync[f"aborted:{reason}"] += 1

    def record_job_result(self, job_id: str, *, success: bool, attempts: int, runtime_seconds: float, error: str | None = None) -> None:
        with self._lock:
            state = self._jobs.setdefault(job_id, {"runs": 0, "success": 0, "failures": 0})
            state["runs"] = int(state["runs"]) + 1
            if success:
                state["success"] = int(state["success"]) + 1
                state["last_success_at"] = _utcnow().isoformat()
            else:
                state["failures"] = int(state["failures"]) + 1
                state["last_error_at"] = _utcnow().isoformat()
                state["last_error"] = error
            state["last_attempts"] = attempts
            state["last_runtime_seconds"] = round(runtime_seconds, 6)

    def snapshot(self) -> RewardsSnapshot:
        with self._lock:
            return RewardsSnapshot(
                scans=dict(self._scans),
                partial_commits=dict(self._partial_commits),
                sync=dict(self._sync),
                jobs={key: dict(value) for key, value in self._jobs.items()},
            )

    def reset(self) -> None:
        with self._lock:
            self._scans.clear()
            self._partial_commits.clear()
            self._sync.clear()
            self._jobs.clear()


_STORE = RewardsObservabilityStore()


def get_rewards_store() -> RewardsObservabilityStore:
    return _STORE


__all__ = ["get_rewards_store", "RewardsObservabilityStore", "RewardsSnapshot"]
