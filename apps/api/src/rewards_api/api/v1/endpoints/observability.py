from __future__ import annotations

from fastapi import APIRouter, Request

from rewards_api.observability.rewards import get_rewards_store

router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/rewards", summary="Scan and sync counters")
async def get_rewards_snapshot(request: Request) -> dict[str, object]:
    snapshot = get_rewards_store().snapshot().as_dict()
    scheduler = getattr(request.app.state, "job_scheduler", None)
    snapshot["scheduler"] = scheduler.health() if scheduler is not None else None
    return snapshot
