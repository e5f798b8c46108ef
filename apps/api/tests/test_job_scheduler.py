from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from rewards_api.jobs import pending_members
from rewards_api.jobs.pending_members import run_pending_member_sync
from rewards_api.schemas.records import Collection
from rewards_api.scheduling import JobDefinition, JobScheduler, load_job_definitions
from rewards_api.scheduling.runner import compute_backoff, resolve_task


def _write_schedule(tmp_path: Path) -> Path:
    path = tmp_path / "schedules.toml"
    path.write_text(
        """
timezone = "Europe/London"

[jobs.pending_member_sync]
task = "rewards_api.jobs.pending_members.run_pending_member_sync"
cron = "*/15 * * * *"
max_attempts = 3
base_backoff_seconds = 10
backoff_multiplier = 2
max_backoff_seconds = 15

[jobs.paused]
task = "rewards_api.jobs.pending_members.run_pending_member_sync"
cron = "0 * * * *"
enabled = false

[jobs.broken]
cron = "0 * * * *"
""".strip()
    )
    return path


def test_load_job_definitions_skips_disabled_and_incomplete(tmp_path: Path) -> None:
    config = load_job_definitions(_write_schedule(tmp_path))

    assert config.timezone == "Europe/London"
    assert [job.id for job in config.jobs] == ["pending_member_sync"]
    job = config.jobs[0]
    assert job.max_attempts == 3
    assert compute_backoff(job, 1) == 10
    assert compute_backoff(job, 2) == 15


def test_bundled_schedule_registers_pending_member_sync() -> None:
    path = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"
    config = load_job_definitions(path)

    job = next(job for job in config.jobs if job.id == "pending_member_sync")
    assert resolve_task(job.task) is run_pending_member_sync


def test_resolve_task_rejects_bad_paths() -> None:
    with pytest.raises(ValueError):
        resolve_task("no_module_path")
    with pytest.raises(AttributeError):
        resolve_task("rewards_api.jobs.pending_members.missing_task")
    with pytest.raises(TypeError):
        resolve_task("rewards_api.scheduling.runner.compute_backoff")


@pytest.mark.asyncio
async def test_wrap_retries_with_backoff_then_succeeds(tmp_path: Path, reset_rewards_observability) -> None:
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    calls: list[object] = []

    async def flaky_task(*, store_factory, label: str) -> dict[str, str]:
        calls.append(store_factory)
        if len(calls) < 3:
            raise RuntimeError("store unavailable")
        return {"label": label}

    def store_factory():
        return None

    scheduler = JobScheduler(store_factory=store_factory, config_path=tmp_path / "unused.toml", sleep=fake_sleep)
    job = JobDefinition(
        id="flaky",
        task="tests.flaky",
        cron="* * * * *",
        kwargs={"label": "ok"},
        max_attempts=3,
        base_backoff_seconds=1.0,
        backoff_multiplier=2.0,
        max_backoff_seconds=60.0,
        jitter_seconds=0.0,
    )

    result = await scheduler.wrap(flaky_task, job)()

    assert result == {"label": "ok"}
    assert delays == [1.0, 2.0]
    assert all(factory is store_factory for factory in calls)

    metrics = reset_rewards_observability.snapshot().jobs["flaky"]
    assert metrics["success"] == 1
    assert metrics["last_attempts"] == 3


@pytest.mark.asyncio
async def test_wrap_records_failure_after_last_attempt(tmp_path: Path, reset_rewards_observability) -> None:
    async def fake_sleep(delay: float) -> None:
        return None

    async def failing_task(*, store_factory) -> None:
        raise RuntimeError("airtable down")

    scheduler = JobScheduler(store_factory=lambda: None, config_path=tmp_path / "unused.toml", sleep=fake_sleep)
    job = JobDefinition(id="failing", task="tests.failing", cron="* * * * *", max_attempts=2, jitter_seconds=0.0)

    assert await scheduler.wrap(failing_task, job)() is None

    metrics = reset_rewards_observability.snapshot().jobs["failing"]
    assert metrics["failures"] == 1
    assert metrics["last_error"] == "airtable down"
    assert metrics["last_attempts"] == 2


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(tmp_path: Path) -> None:
    scheduler = JobScheduler(store_factory=lambda: None, config_path=_write_schedule(tmp_path))

    scheduler.start()
    try:
        assert scheduler.is_running
        health = scheduler.health()
        assert health["configured_jobs"] == 1
        assert health["jobs"][0]["id"] == "pending_member_sync"
    finally:
        await scheduler.stop()

    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_run_pending_member_sync_job(record_store, monkeypatch) -> None:
    monkeypatch.setattr(pending_members.settings, "airtable_base_id", "appJob")
    monkeypatch.setattr(pending_members.settings, "airtable_table_name", "Applications")
    monkeypatch.setattr(pending_members.settings, "airtable_api_key", "key-job")
    monkeypatch.setattr(pending_members.settings, "airtable_api_url", "https://airtable.test/v0")

    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v0/appJob/Applications"
        return httpx.Response(
            200,
            json={"records": [{"id": "recJ", "fields": {"Name": "Jo", "Email": "jo@example.com"}}]},
        )

    async def store_factory():
        return record_store

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        summary = await run_pending_member_sync(store_factory=store_factory, http_client=http_client)

    assert summary == {"created": 1, "skipped": 0, "failed": 0, "failures": []}
    assert [item["airtable_id"] for item in record_store.records(Collection.PENDING_MEMBERS)] == ["recJ"]
