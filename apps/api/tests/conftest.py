import sys
from pathlib import Path

import pytest
import pytest_asyncio


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rewards_api.app import create_app  # noqa: E402
from rewards_api.api.dependencies.engines import get_pending_member_sync, get_scan_ledger  # noqa: E402
from rewards_api.observability.rewards import get_rewards_store  # noqa: E402
from rewards_api.schemas.records import Collection  # noqa: E402
from rewards_api.services.members import ExternalMemberRecord, PendingMemberSyncService  # noqa: E402
from rewards_api.services.scans import ScanLedgerService  # noqa: E402
from rewards_api.services.store import InMemoryRecordStore  # noqa: E402


class StaticMemberSource:
    """External source returning a fixed list of applications."""

    source_name = "Airtable"

    def __init__(self, records: list[ExternalMemberRecord] | None = None, error: Exception | None = None) -> None:
        self.records = list(records or [])
        self.error = error
        self.calls = 0

    async def fetch_records(self) -> list[ExternalMemberRecord]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.records)


def make_member(member_id: int, qr_code: str, *, member_type_id: int = 1, points: int = 0, total_scans: int = 0, **extra):
    record = {
        "id": member_id,
        "qr_code": qr_code,
        "name": f"Member {member_id}",
        "member_type_id": member_type_id,
        "points": points,
        "total_scans": total_scans,
        "points_to_reward": None,
        "reward_due": False,
        "reward_earned_at": None,
        "last_scan_at": None,
    }
    record.update(extra)
    return record


@pytest.fixture(autouse=True)
def reset_rewards_observability():
    store = get_rewards_store()
    store.reset()
    yield store
    store.reset()


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    store.seed(Collection.REWARD_TYPES, [{"id": 1, "name": "Free coffee"}])
    store.seed(
        Collection.MEMBER_TYPES,
        [
            {"id": 1, "name": "Regular", "scans_required": 3, "reward_type_id": 1, "total_scans": 10},
            {"id": 2, "name": "Punch card", "scans_required": 10, "reward_type_id": 1, "total_scans": 0},
        ],
    )
    store.seed(
        Collection.MEMBERS,
        [
            make_member(1, "QR-ALICE", name="Alice"),
            make_member(2, "QR-BOB", points=2, total_scans=2, name="Bob"),
            make_member(3, "QR-CAROL", member_type_id=2, name="Carol"),
        ],
    )
    return store


@pytest.fixture
def member_factory():
    return make_member


@pytest.fixture
def ledger(record_store: InMemoryRecordStore) -> ScanLedgerService:
    return ScanLedgerService(record_store)


@pytest.fixture
def member_source() -> StaticMemberSource:
    return StaticMemberSource()


@pytest.fixture
def pending_member_sync(record_store: InMemoryRecordStore, member_source: StaticMemberSource) -> PendingMemberSyncService:
    return PendingMemberSyncService(record_store, member_source)


@pytest_asyncio.fixture
async def app_with_store(record_store, ledger, pending_member_sync):
    app = create_app()
    app.dependency_overrides[get_scan_ledger] = lambda: ledger
    app.dependency_overrides[get_pending_member_sync] = lambda: pending_member_sync

    try:
        yield app, record_store
    finally:
        app.dependency_overrides.clear()
        await app.state.record_store.aclose()
        await app.state.airtable_client.aclose()
