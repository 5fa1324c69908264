"""Admin routes: dashboard snapshot and saga recovery."""

from fastapi import APIRouter, Query, Request

from ..admin import DashboardSnapshot, get_dashboard_snapshot
from ..auth import AdminIdentity
from ..database import Database
from ..logging_config import get_logger
from ..rate_limit import limiter
from ..sagas import recover_stalled_sagas

logger = get_logger("craftnet.routes.admin")
router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/dashboard", response_model=DashboardSnapshot)
@limiter.limit("30/minute")
async def dashboard(request: Request, admin: AdminIdentity, db: Database):
    return await get_dashboard_snapshot(db)


@router.post("/sagas/recover")
@limiter.limit("5/minute")
async def recover_sagas(
    request: Request,
    admin: AdminIdentity,
    db: Database,
    older_than_seconds: int | None = Query(None, ge=0),
):
    """Replay or compensate workflows that stopped part-way."""
    logger.info(f"POST /admin/sagas/recover | admin={admin.user_id}")
    return await recover_stalled_sagas(db, older_than_seconds)
