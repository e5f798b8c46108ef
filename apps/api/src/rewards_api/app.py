from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from rewards_api.core.settings import settings
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import JobScheduler
from .services.members import AirtableClient, PendingMemberSyncService
from .services.scans import ScanLedgerService
from .services.store import RecordStore, RestRecordStore


APP_VERSION = "0.1.0"


def build_record_store() -> RecordStore:
    return RestRecordStore.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store: RecordStore = app.state.record_store

    schedule_path = Path(settings.job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    job_scheduler = JobScheduler(store_factory=lambda: store, config_path=schedule_path)
    app.state.job_scheduler = job_scheduler

    scheduler_enabled = settings.job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Job scheduler failed to start", error=str(exc))
        else:
            logger.info("Job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info("Job scheduler disabled", reason="job_scheduler_enabled is false")

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()
        await app.state.airtable_client.aclose()
        await store.aclose()


def create_app() -> FastAPI:
    """Application factory for the rewards FastAPI service."""
    configure_logging(
        service_name="rewards-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="rewards-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    # Engines live for the whole app so concurrent requests share one member lock table.
    store = build_record_store()
    airtable_client = AirtableClient.from_settings(settings)
    app.state.record_store = store
    app.state.airtable_client = airtable_client
    app.state.job_scheduler = None
    app.state.scan_ledger = ScanLedgerService(store, timeout_seconds=settings.store_timeout_seconds)
    app.state.pending_member_sync = PendingMemberSyncService(
        store,
        airtable_client,
        page_size=settings.store_page_size,
        timeout_seconds=settings.store_timeout_seconds,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
