"""Dispute routes. Resolving or closing a dispute is admin only."""

from fastapi import APIRouter, File, Form, Query, Request, UploadFile, status
from pydantic import BaseModel

from ..auth import AdminIdentity, CurrentIdentity
from ..database import Database
from ..disputes import (
    dispute_stats,
    evidence_signed_url,
    get_all_disputes,
    get_user_disputes,
    submit_dispute,
    update_dispute_status,
)
from ..logging_config import get_logger
from ..models import Dispute, DisputeCreate, DisputeResolution, DisputeStatus, EvidenceFile
from ..rate_limit import limiter

logger = get_logger("craftnet.routes.disputes")
router = APIRouter(prefix="/disputes", tags=["disputes"])


class DisputeListResponse(BaseModel):
    disputes: list[Dispute]
    stats: dict[str, int]


class AdminDisputeListResponse(BaseModel):
    disputes: list[dict]
    stats: dict[str, int]


class DisputeStatusUpdate(BaseModel):
    status: DisputeStatus
    admin_notes: str | None = None
    resolution: DisputeResolution | None = None


@router.post("", response_model=Dispute, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def open_dispute(
    request: Request,
    auth: CurrentIdentity,
    db: Database,
    job_id: str = Form(...),
    description: str = Form(...),
    type: str = Form("payment"),
    evidence: list[UploadFile] = File(default=[]),
):
    """Raise a dispute on a job, with optional evidence attachments."""
    logger.info(f"POST /disputes | job={job_id} | user={auth.user_id} | files={len(evidence)}")
    files = [
        EvidenceFile(filename=f.filename or "evidence", content=await f.read(), content_type=f.content_type)
        for f in evidence
    ]
    return await submit_dispute(db, job_id, auth.user_id, DisputeCreate(type=type, description=description), files)


@router.get("/mine", response_model=DisputeListResponse)
@limiter.limit("60/minute")
async def list_my_disputes(request: Request, auth: CurrentIdentity, db: Database):
    disputes = await get_user_disputes(db, auth.user_id)
    return DisputeListResponse(disputes=disputes, stats=dispute_stats(disputes))


@router.get("/evidence")
@limiter.limit("60/minute")
async def get_evidence_url(
    request: Request,
    auth: CurrentIdentity,
    db: Database,
    reference: str = Query(..., min_length=1),
):
    return {"url": await evidence_signed_url(db, reference)}


@router.get("", response_model=AdminDisputeListResponse)
@limiter.limit("30/minute")
async def list_all_disputes(request: Request, admin: AdminIdentity, db: Database):
    disputes = await get_all_disputes(db, admin.user_id)
    return AdminDisputeListResponse(disputes=disputes, stats=dispute_stats(disputes))


@router.patch("/{dispute_id}", response_model=Dispute)
@limiter.limit("20/minute")
async def set_dispute_status(
    request: Request,
    dispute_id: str,
    body: DisputeStatusUpdate,
    admin: AdminIdentity,
    db: Database,
):
    logger.info(f"PATCH /disputes/{dispute_id} | admin={admin.user_id} | status={body.status.value}")
    return await update_dispute_status(
        db, dispute_id, body.status, admin.user_id, body.admin_notes, body.resolution
    )
