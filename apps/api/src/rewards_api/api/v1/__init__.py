from fastapi import APIRouter

from .endpoints import observability, pending_members, scans

router = APIRouter()
router.include_router(scans.router)
router.include_router(pending_members.router)
router.include_router(observability.router)
