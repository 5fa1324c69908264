"""Job routes.

Posting a job escrows its price from the client's wallet; approving the
finished job pays the apprentice and rejecting it refunds the client.
"""

from decimal import Decimal

from fastapi import APIRouter, File, Form, Query, Request, UploadFile, status
from pydantic import BaseModel, Field

from ..auth import CurrentIdentity
from ..database import Database
from ..jobs import (
    apply_for_job,
    complete_job,
    create_job_request,
    delete_job_request,
    get_apprentice_active_jobs,
    get_apprentice_applications,
    get_client_job_requests,
    get_job_applications,
    get_job_request,
    get_jobs_pending_review,
    list_open_jobs,
    review_job,
    update_application_status,
    update_job_progress,
)
from ..logging_config import get_logger
from ..models import (
    ApplicationStatus,
    DeletionResult,
    JobApplication,
    JobFilters,
    JobRequest,
    JobRequestCreate,
    ReviewResult,
)
from ..rate_limit import limiter
from ..storage import upload_cv

logger = get_logger("craftnet.routes.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])


# =============================================================================
# Request/Response Models
# =============================================================================


class MyJobsResponse(BaseModel):
    """Jobs the caller posted and jobs assigned to the caller."""

    posted: list[JobRequest]
    assigned: list[JobRequest]


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus


class ProgressUpdateRequest(BaseModel):
    progress: int = Field(..., ge=0, le=100)


class ReviewRequest(BaseModel):
    approved: bool
    review_notes: str | None = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=JobRequest, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_job(request: Request, job: JobRequestCreate, auth: CurrentIdentity, db: Database):
    """Post a job. The fixed price is held in escrow from the caller's wallet."""
    logger.info(f"POST /jobs | client={auth.user_id} | title={job.title[:50]} | price={job.fixed_price}")
    return await create_job_request(db, auth.user_id, job)


@router.get("", response_model=list[JobRequest])
@limiter.limit("60/minute")
async def list_jobs(
    request: Request,
    auth: CurrentIdentity,
    db: Database,
    skills: list[str] | None = Query(None),
    location: str | None = Query(None),
    min_budget: Decimal | None = Query(None, ge=0),
    max_budget: Decimal | None = Query(None, ge=0),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """List open jobs, newest first."""
    filters = JobFilters(
        skills=skills or [],
        location=location,
        min_budget=min_budget,
        max_budget=max_budget,
        limit=limit,
        offset=offset,
    )
    return await list_open_jobs(db, filters)


@router.get("/mine", response_model=MyJobsResponse)
@limiter.limit("60/minute")
async def list_my_jobs(request: Request, auth: CurrentIdentity, db: Database):
    posted = await get_client_job_requests(db, auth.user_id)
    assigned = await get_apprentice_active_jobs(db, auth.user_id)
    return MyJobsResponse(posted=posted, assigned=assigned)


@router.get("/pending-review", response_model=list[JobRequest])
@limiter.limit("60/minute")
async def list_jobs_pending_review(request: Request, auth: CurrentIdentity, db: Database):
    return await get_jobs_pending_review(db, auth.user_id)


@router.get("/applications/mine", response_model=list[JobApplication])
@limiter.limit("60/minute")
async def list_my_applications(request: Request, auth: CurrentIdentity, db: Database):
    return await get_apprentice_applications(db, auth.user_id)


@router.post("/applications/{application_id}/status", response_model=JobApplication)
@limiter.limit("20/minute")
async def set_application_status(
    request: Request,
    application_id: str,
    body: ApplicationStatusUpdate,
    auth: CurrentIdentity,
    db: Database,
):
    """Accept or reject an application. Accepting assigns the apprentice."""
    logger.info(f"POST /jobs/applications/{application_id}/status | client={auth.user_id} | status={body.status.value}")
    return await update_application_status(db, application_id, body.status, auth.user_id)


@router.get("/{job_id}", response_model=JobRequest)
@limiter.limit("60/minute")
async def get_job(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    return await get_job_request(db, job_id)


@router.delete("/{job_id}", response_model=DeletionResult)
@limiter.limit("10/minute")
async def delete_job(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    """Delete an open, unassigned job and refund its escrow."""
    logger.info(f"DELETE /jobs/{job_id} | client={auth.user_id}")
    return await delete_job_request(db, job_id, auth.user_id)


@router.post("/{job_id}/apply", response_model=JobApplication, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def apply(
    request: Request,
    job_id: str,
    auth: CurrentIdentity,
    db: Database,
    proposal: str = Form(...),
    cv: UploadFile | None = File(None),
    cv_url: str | None = Form(None),
):
    """Apply with a proposal and either an uploaded CV or a previously stored one."""
    logger.info(f"POST /jobs/{job_id}/apply | apprentice={auth.user_id}")
    if cv is not None:
        content = await cv.read()
        cv_url = await upload_cv(db, auth.user_id, cv.filename or "cv", content, cv.content_type)
    return await apply_for_job(db, auth.user_id, job_id, proposal, cv_url)


@router.get("/{job_id}/applications", response_model=list[JobApplication])
@limiter.limit("30/minute")
async def list_applications(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    return await get_job_applications(db, job_id, auth.user_id)


@router.post("/{job_id}/progress", response_model=JobRequest)
@limiter.limit("30/minute")
async def set_progress(
    request: Request,
    job_id: str,
    body: ProgressUpdateRequest,
    auth: CurrentIdentity,
    db: Database,
):
    return await update_job_progress(db, job_id, body.progress, auth.user_id)


@router.post("/{job_id}/complete", response_model=JobRequest)
@limiter.limit("10/minute")
async def complete(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    """Assigned apprentice submits the job for the client's review."""
    logger.info(f"POST /jobs/{job_id}/complete | apprentice={auth.user_id}")
    return await complete_job(db, job_id, auth.user_id)


@router.post("/{job_id}/review", response_model=ReviewResult)
@limiter.limit("10/minute")
async def review(request: Request, job_id: str, body: ReviewRequest, auth: CurrentIdentity, db: Database):
    """Approve (pay the apprentice) or reject (refund the client) submitted work."""
    logger.info(f"POST /jobs/{job_id}/review | client={auth.user_id} | approved={body.approved}")
    return await review_job(db, job_id, body.approved, body.review_notes, auth.user_id)
