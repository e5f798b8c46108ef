"""Scheduler runtime for recurring rewards jobs."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from rewards_api.observability.rewards import get_rewards_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

StoreFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
Sleep = Callable[[float], Awaitable[Any]]


def compute_backoff(job: JobDefinition, attempt: int) -> float:
    """Delay before retry number ``attempt + 1``, jitter excluded."""

    delay = job.base_backoff_seconds * (job.backoff_multiplier ** (attempt - 1))
    if job.max_backoff_seconds:
        delay = min(delay, job.max_backoff_seconds)
    return max(delay, 0.0)


class JobScheduler:
    """Register and run recurring jobs from a TOML schedule."""

    # meta: scheduler: rewards-jobs

    def __init__(
        self,
        *,
        store_factory: StoreFactory,
        config_path: Path,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store_factory = store_factory
        self._config_path = config_path
        self._sleep = sleep
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running: bool = False
        self._observability = get_rewards_store()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.jobs:
            func = resolve_task(job.task)
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            scheduler.add_job(
                self.wrap(func, job),
                trigger=trigger,
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Registered scheduled job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        self._is_running = True
        logger.info("Job scheduler started", jobs=len(config.jobs))

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        self._is_running = False
        logger.info("Job scheduler stopped")

    def wrap(self, func: Callable[..., Awaitable[Any]], job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        """Wrap a task with retry, backoff and run bookkeeping."""

        async def _runner() -> Any:
            started_at = time.perf_counter()
            for attempt in range(1, job.max_attempts + 1):
                try:
                    result = await func(store_factory=self._store_factory, **job.kwargs)
                except Exception as exc:  # noqa: BLE001 - any task failure is retried then recorded
                    error_message = str(exc) or exc.__class__.__name__
                    if attempt >= job.max_attempts:
                        self._observability.record_job_result(
                            job.id,
                            success=False,
                            attempts=attempt,
                            runtime_seconds=time.perf_counter() - started_at,
                            error=error_message,
                        )
                        logger.exception(
                            "Scheduled job failed after retries",
                            job_id=job.id,
                            task=job.task,
                            attempts=attempt,
                            error=error_message,
                        )
                        return None

                    delay = compute_backoff(job, attempt)
                    if job.jitter_seconds:
                        delay += random.uniform(0, job.jitter_seconds)
                    logger.warning(
                        "Scheduled job retrying",
                        job_id=job.id,
                        task=job.task,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=error_message,
                    )
                    if delay:
                        await self._sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_job_result(
                    job.id,
                    success=True,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                )
                logger.info(
                    "Scheduled job completed",
                    job_id=job.id,
                    task=job.task,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                )
                return result
            return None

        return _runner

    def health(self) -> dict[str, object]:
        jobs = self._observability.snapshot().jobs
        config_jobs = self._config.jobs if self._config else []
        return {
            "running": self._is_running,
            "configured_jobs": len(config_jobs),
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "metrics": jobs.get(job.id),
                }
                for job in config_jobs
            ],
        }


def resolve_task(task: str) -> Callable[..., Awaitable[Any]]:
    module_name, _, attr = task.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {task}")
    module: ModuleType = import_module(module_name)
    func = getattr(module, attr, None)
    if func is None:
        raise AttributeError(f"Task {task} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {task} must be an async function")
    return func


__all__ = ["JobScheduler", "compute_backoff", "resolve_task"]
