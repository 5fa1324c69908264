"""Routes for delivered work: job updates, progress updates and final submissions."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

from ..auth import AdminIdentity, CurrentIdentity
from ..database import Database
from ..jobs import (
    auto_acknowledge_progress_updates,
    auto_acknowledge_updates,
    get_final_submissions,
    get_job_updates,
    get_pending_final_submissions,
    get_pending_progress_updates,
    get_progress_updates,
    get_updates_pending_review,
    review_final_submission,
    submit_final_submission_feedback,
    submit_final_work,
    submit_job_feedback,
    submit_job_update,
    submit_progress_update,
    submit_progress_update_feedback,
)
from ..logging_config import get_logger
from ..models import (
    FeedbackCreate,
    FinalFeedbackResult,
    FinalSubmission,
    FinalSubmissionStatus,
    FinalWorkCreate,
    JobUpdate,
    JobUpdateCreate,
    ProgressUpdate,
    ProgressUpdateCreate,
    UserRole,
)
from ..profiles import get_role
from ..rate_limit import limiter

logger = get_logger("craftnet.routes.submissions")
router = APIRouter(prefix="/submissions", tags=["submissions"])


class FinalReviewRequest(BaseModel):
    status: FinalSubmissionStatus
    review_notes: str | None = None


async def _role(db, user_id: str) -> str:
    return await get_role(db, user_id) or UserRole.member.value


# =============================================================================
# Job updates
# =============================================================================


@router.post("/jobs/{job_id}/updates", response_model=JobUpdate, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def post_job_update(
    request: Request,
    job_id: str,
    body: JobUpdateCreate,
    auth: CurrentIdentity,
    db: Database,
):
    logger.info(f"POST /submissions/jobs/{job_id}/updates | apprentice={auth.user_id}")
    return await submit_job_update(db, job_id, auth.user_id, body)


@router.get("/jobs/{job_id}/updates", response_model=list[JobUpdate])
@limiter.limit("60/minute")
async def list_job_updates(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    return await get_job_updates(db, job_id)


@router.get("/updates/pending", response_model=list[JobUpdate])
@limiter.limit("60/minute")
async def list_updates_pending_review(request: Request, auth: CurrentIdentity, db: Database):
    return await get_updates_pending_review(db, auth.user_id)


@router.post("/updates/{update_id}/feedback")
@limiter.limit("20/minute")
async def post_job_feedback(
    request: Request,
    update_id: str,
    body: FeedbackCreate,
    auth: CurrentIdentity,
    db: Database,
):
    return await submit_job_feedback(db, update_id, auth.user_id, body)


# =============================================================================
# Progress updates
# =============================================================================


@router.post(
    "/jobs/{job_id}/progress-updates", response_model=ProgressUpdate, status_code=status.HTTP_201_CREATED
)
@limiter.limit("20/minute")
async def post_progress_update(
    request: Request,
    job_id: str,
    body: ProgressUpdateCreate,
    auth: CurrentIdentity,
    db: Database,
):
    logger.info(f"POST /submissions/jobs/{job_id}/progress-updates | apprentice={auth.user_id}")
    return await submit_progress_update(db, job_id, auth.user_id, body)


@router.get("/jobs/{job_id}/progress-updates", response_model=list[ProgressUpdate])
@limiter.limit("60/minute")
async def list_progress_updates(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    """Progress updates oldest first. Apprentices only see their own."""
    role = await _role(db, auth.user_id)
    return await get_progress_updates(db, job_id, role, auth.user_id)


@router.get("/progress-updates/pending", response_model=list[ProgressUpdate])
@limiter.limit("60/minute")
async def list_pending_progress_updates(request: Request, auth: CurrentIdentity, db: Database):
    return await get_pending_progress_updates(db, auth.user_id)


@router.post("/progress-updates/{progress_update_id}/feedback")
@limiter.limit("20/minute")
async def post_progress_feedback(
    request: Request,
    progress_update_id: str,
    body: FeedbackCreate,
    auth: CurrentIdentity,
    db: Database,
):
    return await submit_progress_update_feedback(db, progress_update_id, auth.user_id, body)


# =============================================================================
# Final submissions
# =============================================================================


@router.post("/final", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def post_final_work(request: Request, body: FinalWorkCreate, auth: CurrentIdentity, db: Database):
    logger.info(f"POST /submissions/final | apprentice={auth.user_id} | job={body.job_request_id}")
    return await submit_final_work(db, body)


@router.get("/final/pending", response_model=list[FinalSubmission])
@limiter.limit("60/minute")
async def list_pending_final_submissions(request: Request, auth: CurrentIdentity, db: Database):
    return await get_pending_final_submissions(db, auth.user_id)


@router.get("/jobs/{job_id}/final", response_model=list[FinalSubmission])
@limiter.limit("60/minute")
async def list_final_submissions(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    role = await _role(db, auth.user_id)
    return await get_final_submissions(db, job_id, role, auth.user_id)


@router.post("/final/{submission_id}/feedback", response_model=FinalFeedbackResult)
@limiter.limit("10/minute")
async def post_final_feedback(
    request: Request,
    submission_id: str,
    body: FeedbackCreate,
    auth: CurrentIdentity,
    db: Database,
):
    """Feedback on final work. ``approve`` completes the job and pays the apprentice."""
    logger.info(
        f"POST /submissions/final/{submission_id}/feedback | member={auth.user_id} | type={body.feedback_type}"
    )
    return await submit_final_submission_feedback(db, submission_id, auth.user_id, body)


@router.post("/final/{submission_id}/review", response_model=FinalSubmission)
@limiter.limit("10/minute")
async def post_final_review(
    request: Request,
    submission_id: str,
    body: FinalReviewRequest,
    auth: CurrentIdentity,
    db: Database,
):
    return await review_final_submission(db, submission_id, auth.user_id, body.status, body.review_notes)


@router.post("/auto-acknowledge")
@limiter.limit("5/minute")
async def run_auto_acknowledge(request: Request, admin: AdminIdentity, db: Database):
    """Acknowledge updates the client left unanswered past the grace period."""
    logger.info(f"POST /submissions/auto-acknowledge | admin={admin.user_id}")
    return {
        "updates": await auto_acknowledge_updates(db),
        "progress_updates": await auto_acknowledge_progress_updates(db),
    }
