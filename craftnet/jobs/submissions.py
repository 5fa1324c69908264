"""Progress updates, final submissions and the feedback that drives payout.

Job updates and progress updates are versioned per job by the
``get_next_version_number`` procedure. Approving a final submission is the
payout trigger and runs as a three-step saga:

1. submission → approved
2. job pending_review → completed (conditional)
3. ``process_job_payout`` procedure

A failure in step 2 or 3 puts the submission back to its previous status.
The payout procedure is idempotent, so approving again after a failed
payout completes the missing step.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from supabase import Client

from ..database import (
    FINAL_SUBMISSION_FEEDBACK_TABLE,
    FINAL_SUBMISSIONS_TABLE,
    JOB_FEEDBACK_TABLE,
    JOB_REQUESTS_TABLE,
    JOB_UPDATES_TABLE,
    PROGRESS_UPDATES_TABLE,
    RPC_AUTO_ACKNOWLEDGE_PROGRESS_UPDATES,
    RPC_AUTO_ACKNOWLEDGE_UPDATES,
    RPC_NEXT_VERSION_NUMBER,
    RPC_PROCESS_JOB_PAYOUT,
    RPC_SUBMIT_FINAL_WORK,
    UPDATE_FEEDBACK_TABLE,
    call_rpc,
    execute,
    fetch_all,
    fetch_one,
)
from ..errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    PayoutFailed,
    RemoteFailure,
    ValidationError,
)
from ..logging_config import get_logger
from ..models import (
    FeedbackCreate,
    FinalFeedbackResult,
    FinalSubmission,
    FinalSubmissionStatus,
    FinalWorkCreate,
    JobRequest,
    JobStatus,
    JobUpdate,
    JobUpdateCreate,
    ProgressUpdate,
    ProgressUpdateCreate,
    UpdateStatus,
    UserRole,
)
from ..sagas import SagaKind, SagaLog
from ..storage import PROGRESS_FILES_BUCKET, is_url, signed_url
from .lifecycle import atomic_update_job_status, find_job

logger = get_logger("craftnet.submissions")

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)

JOB_UPDATE_FEEDBACK_STATUS = {
    "approve": UpdateStatus.approved,
    "needs_changes": UpdateStatus.needs_changes,
}

PROGRESS_FEEDBACK_STATUS = {
    "approve": UpdateStatus.approved,
    "needs_changes": UpdateStatus.needs_changes,
}

FINAL_FEEDBACK_STATUS = {
    "approve": FinalSubmissionStatus.approved,
    "request_revision": FinalSubmissionStatus.needs_revision,
    "dispute": FinalSubmissionStatus.disputed,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_uuid(value: str | None) -> str | None:
    """Return ``value`` stripped if it is a UUID, else None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value in ("undefined", "null"):
        return None
    return value if _UUID_RE.match(value) else None


async def _require_client(db: Client, job_id: str, member_id: str) -> JobRequest:
    job = await find_job(db, job_id)
    if job is None or job.client_id != member_id:
        raise AuthorizationError("Job not found or unauthorized")
    return job


async def _require_assigned(db: Client, job_id: str, apprentice_id: str) -> JobRequest:
    job = await find_job(db, job_id)
    if job is None or job.assigned_apprentice_id != apprentice_id:
        raise AuthorizationError("Job not found or unauthorized")
    return job


async def next_version_number(db: Client, job_id: str) -> int:
    version = await call_rpc(db, RPC_NEXT_VERSION_NUMBER, {"job_id": job_id})
    if version is None:
        raise RemoteFailure("Could not allocate a version number")
    return int(version)


# =============================================================================
# Job updates
# =============================================================================


async def submit_job_update(
    db: Client,
    job_id: str,
    apprentice_id: str,
    data: JobUpdateCreate,
) -> JobUpdate:
    job = await _require_assigned(db, job_id, apprentice_id)
    if job.status != JobStatus.in_progress:
        raise InvalidTransitionError("Updates can only be posted while the job is in progress")

    version = await next_version_number(db, job_id)
    result = await execute(
        db.table(JOB_UPDATES_TABLE).insert(
            {
                "job_request_id": job_id,
                "apprentice_id": apprentice_id,
                "title": data.title,
                "description": data.description,
                "update_type": data.update_type or "progress",
                "version_number": version,
                "file_urls": data.file_urls,
                "links": data.links,
                "status": UpdateStatus.pending_review.value,
                "created_at": _now(),
                "updated_at": _now(),
            }
        )
    )
    return JobUpdate(**result.data[0])


async def get_job_updates(db: Client, job_id: str) -> list[JobUpdate]:
    rows = await fetch_all(
        db.table(JOB_UPDATES_TABLE).select("*").eq("job_request_id", job_id).order("created_at", desc=True)
    )
    return [JobUpdate(**r) for r in rows]


async def submit_job_feedback(
    db: Client,
    update_id: str,
    member_id: str,
    data: FeedbackCreate,
) -> dict:
    """Record (or replace) a member's feedback on a job update."""
    update = await fetch_one(
        db.table(JOB_UPDATES_TABLE).select("id, job_request_id").eq("id", update_id).limit(1)
    )
    if update is None:
        raise AuthorizationError("Update not found or unauthorized")
    await _require_client(db, update["job_request_id"], member_id)

    existing = await fetch_one(
        db.table(JOB_FEEDBACK_TABLE)
        .select("id")
        .eq("job_update_id", update_id)
        .eq("member_id", member_id)
        .limit(1)
    )
    if existing:
        result = await execute(
            db.table(JOB_FEEDBACK_TABLE)
            .update({"feedback_type": data.feedback_type, "remarks": data.remarks, "updated_at": _now()})
            .eq("id", existing["id"])
        )
    else:
        result = await execute(
            db.table(JOB_FEEDBACK_TABLE).insert(
                {
                    "job_update_id": update_id,
                    "member_id": member_id,
                    "feedback_type": data.feedback_type,
                    "remarks": data.remarks,
                    "created_at": _now(),
                    "updated_at": _now(),
                }
            )
        )

    status = JOB_UPDATE_FEEDBACK_STATUS.get(data.feedback_type, UpdateStatus.pending_review)
    await execute(
        db.table(JOB_UPDATES_TABLE).update({"status": status.value, "updated_at": _now()}).eq("id", update_id)
    )
    return result.data[0]


async def get_updates_pending_review(db: Client, member_id: str) -> list[JobUpdate]:
    job_ids = await _client_job_ids(db, member_id)
    if not job_ids:
        return []
    rows = await fetch_all(
        db.table(JOB_UPDATES_TABLE)
        .select("*")
        .in_("job_request_id", job_ids)
        .eq("status", UpdateStatus.pending_review.value)
        .order("created_at", desc=True)
    )
    return [JobUpdate(**r) for r in rows]


async def auto_acknowledge_updates(db: Client):
    return await call_rpc(db, RPC_AUTO_ACKNOWLEDGE_UPDATES)


# =============================================================================
# Progress updates
# =============================================================================


async def submit_progress_update(
    db: Client,
    job_id: str,
    apprentice_id: str,
    data: ProgressUpdateCreate,
) -> ProgressUpdate:
    await _require_assigned(db, job_id, apprentice_id)
    version = await next_version_number(db, job_id)
    result = await execute(
        db.table(PROGRESS_UPDATES_TABLE).insert(
            {
                "job_request_id": job_id,
                "apprentice_id": apprentice_id,
                "version_number": version,
                "title": data.title,
                "description": data.description,
                "file_url": data.file_url,
                "file_type": data.file_type,
                "link_url": data.link_url,
                "status": UpdateStatus.pending.value,
            }
        )
    )
    return ProgressUpdate(**result.data[0])


async def submit_progress_update_feedback(
    db: Client,
    progress_update_id: str,
    member_id: str,
    data: FeedbackCreate,
) -> dict:
    """Comment on a progress update.

    A ``remark`` leaves the status alone; any other feedback type sets it
    (unknown types acknowledge the update).
    """
    update = await fetch_one(
        db.table(PROGRESS_UPDATES_TABLE).select("id, job_request_id").eq("id", progress_update_id).limit(1)
    )
    if update is None:
        raise NotFoundError("Progress update not found")
    await _require_client(db, update["job_request_id"], member_id)

    result = await execute(
        db.table(UPDATE_FEEDBACK_TABLE).insert(
            {
                "progress_update_id": progress_update_id,
                "member_id": member_id,
                "feedback_type": data.feedback_type,
                "remarks": data.remarks,
            }
        )
    )

    if data.feedback_type == "remark":
        changes = {"updated_at": _now()}
    else:
        status = PROGRESS_FEEDBACK_STATUS.get(data.feedback_type, UpdateStatus.acknowledged)
        changes = {"status": status.value, "acknowledged_at": _now(), "updated_at": _now()}
    await execute(db.table(PROGRESS_UPDATES_TABLE).update(changes).eq("id", progress_update_id))
    return result.data[0]


async def get_progress_updates(
    db: Client,
    job_id: str,
    role: str,
    user_id: str,
) -> list[ProgressUpdate]:
    """Progress updates oldest first; stored file paths become signed URLs."""
    query = db.table(PROGRESS_UPDATES_TABLE).select("*").eq("job_request_id", job_id)
    if role == UserRole.apprentice.value:
        query = query.eq("apprentice_id", user_id)
    rows = await fetch_all(query.order("version_number"))

    updates = []
    for row in rows:
        file_url = row.get("file_url")
        if file_url and not is_url(file_url):
            try:
                row["file_url"] = await signed_url(db, PROGRESS_FILES_BUCKET, file_url)
            except RemoteFailure as e:
                logger.warning("Could not sign progress file %s: %s", file_url, e)
        updates.append(ProgressUpdate(**row))
    return updates


async def get_pending_progress_updates(db: Client, member_id: str) -> list[ProgressUpdate]:
    job_ids = await _client_job_ids(db, member_id)
    if not job_ids:
        return []
    rows = await fetch_all(
        db.table(PROGRESS_UPDATES_TABLE)
        .select("*")
        .in_("job_request_id", job_ids)
        .eq("status", UpdateStatus.pending.value)
        .order("created_at", desc=True)
    )
    return [ProgressUpdate(**r) for r in rows]


async def auto_acknowledge_progress_updates(db: Client):
    return await call_rpc(db, RPC_AUTO_ACKNOWLEDGE_PROGRESS_UPDATES)


# =============================================================================
# Final submissions
# =============================================================================


async def submit_final_work(db: Client, data: FinalWorkCreate, job_id: str | None = None) -> dict:
    """Submit final work through the ``submit_final_work_v2`` procedure."""
    job_request_id = normalize_uuid(data.job_request_id)
    plain_job_id = normalize_uuid(job_id)
    if not job_request_id and not plain_job_id:
        raise ValidationError("Missing or invalid job reference")

    result = await call_rpc(
        db,
        RPC_SUBMIT_FINAL_WORK,
        {
            "p_job_request_id": job_request_id,
            "p_job_id": plain_job_id,
            "p_title": data.title,
            "p_description": data.description,
            "p_file_urls": data.file_urls,
            "p_links": data.links,
        },
    )
    if isinstance(result, dict) and result.get("success") is False:
        raise RemoteFailure(result.get("error") or "Submission failed")
    logger.info(f"Final work submitted | job={job_request_id or plain_job_id}")
    return result


async def get_final_submission(db: Client, submission_id: str) -> FinalSubmission:
    row = await fetch_one(db.table(FINAL_SUBMISSIONS_TABLE).select("*").eq("id", submission_id).limit(1))
    if row is None:
        raise NotFoundError("Submission not found")
    return FinalSubmission(**row)


async def get_final_submissions(db: Client, job_id: str, role: str, user_id: str) -> list[FinalSubmission]:
    query = db.table(FINAL_SUBMISSIONS_TABLE).select("*").eq("job_request_id", job_id)
    if role == UserRole.apprentice.value:
        query = query.eq("apprentice_id", user_id)
    rows = await fetch_all(query.order("created_at", desc=True))
    return [FinalSubmission(**r) for r in rows]


async def get_pending_final_submissions(db: Client, member_id: str) -> list[FinalSubmission]:
    job_ids = await _client_job_ids(db, member_id)
    if not job_ids:
        return []
    rows = await fetch_all(
        db.table(FINAL_SUBMISSIONS_TABLE)
        .select("*")
        .in_("job_request_id", job_ids)
        .eq("status", FinalSubmissionStatus.pending_review.value)
        .order("created_at", desc=True)
    )
    return [FinalSubmission(**r) for r in rows]


async def _set_submission_status(db: Client, submission_id: str, status: str, **extra) -> FinalSubmission | None:
    result = await execute(
        db.table(FINAL_SUBMISSIONS_TABLE)
        .update({"status": status, "updated_at": _now(), **extra})
        .eq("id", submission_id)
    )
    return FinalSubmission(**result.data[0]) if result.data else None


async def _revert_submission(saga: SagaLog, submission_id: str, previous_status: str, reason: str) -> None:
    try:
        await _set_submission_status(saga.db, submission_id, previous_status)
    except RemoteFailure as e:
        # Marker stays in flight for the recovery sweep
        logger.error(f"Could not revert submission {submission_id} to {previous_status}: {e}")
        return
    await saga.compensated(reason)


async def approve_final_submission(
    db: Client,
    submission: FinalSubmission,
    job: JobRequest,
    member_id: str,
) -> dict:
    """Run the approval saga. Returns the payout procedure's result."""
    if not submission.job_request_id or not submission.apprentice_id:
        raise ValidationError("Submission is missing its job or apprentice")

    previous = submission.status.value if submission.status != FinalSubmissionStatus.approved else (
        FinalSubmissionStatus.pending_review.value
    )
    saga = await SagaLog.start(
        db,
        SagaKind.final_approval,
        job_id=job.id,
        payload={
            "submission_id": submission.id,
            "previous_status": previous,
            "apprentice_id": submission.apprentice_id,
            "payer_id": member_id,
        },
    )

    try:
        await _set_submission_status(db, submission.id, FinalSubmissionStatus.approved.value)
    except RemoteFailure as e:
        await saga.compensated("submission update failed")
        raise PayoutFailed(f"Failed to update submission status: {e.message}") from e
    await saga.advance("submission_approved")

    try:
        updated, error = await atomic_update_job_status(
            db, job.id, JobStatus.pending_review, JobStatus.completed, completed_at=_now()
        )
    except RemoteFailure as e:
        await _revert_submission(saga, submission.id, previous, "job update failed")
        raise PayoutFailed(_payout_message(f"Failed to update job status to completed: {e.message}")) from e
    if updated is None:
        current = await find_job(db, job.id)
        if current is None or current.status != JobStatus.completed:
            await _revert_submission(saga, submission.id, previous, error or "conflict")
            raise InvalidTransitionError("Job is not awaiting review")
        # Completed by an earlier attempt whose payout failed; retry the payout
    await saga.advance("job_completed")

    try:
        result = await call_rpc(
            db,
            RPC_PROCESS_JOB_PAYOUT,
            {
                "p_final_submission_id": submission.id,
                "p_job_request_id": job.id,
                "p_apprentice_id": submission.apprentice_id,
                "p_payer_id": member_id,
            },
        )
    except RemoteFailure as e:
        await _revert_submission(saga, submission.id, previous, "payout rpc failed")
        raise PayoutFailed(_payout_message(f"Payout processing failed: {e.message}")) from e

    if not isinstance(result, dict) or not result.get("success"):
        message = (result or {}).get("message") if isinstance(result, dict) else None
        await _revert_submission(saga, submission.id, previous, "payout unsuccessful")
        raise PayoutFailed(_payout_message(message or "Payout processing returned unsuccessful result"))

    if result.get("skipped"):
        logger.warning(
            "Payout for submission %s skipped, already processed (transaction %s)",
            submission.id,
            result.get("existing_transaction_id"),
        )
    else:
        logger.info(
            "Payout processed | submission=%s | transaction=%s | amount=%s",
            submission.id,
            result.get("transaction_id"),
            result.get("amount_ngn"),
        )
    await saga.advance("payout_done")
    await saga.complete()
    return result


def _payout_message(details: str) -> str:
    return (
        f"Approval saved, but payout failed. {details} "
        "Please try again or contact support if the issue persists."
    )


async def submit_final_submission_feedback(
    db: Client,
    submission_id: str,
    member_id: str,
    data: FeedbackCreate,
) -> FinalFeedbackResult:
    """Record feedback on a final submission; ``approve`` pays the apprentice.

    Raises:
        PayoutFailed: job completion or payout failed; the submission is back
            at its previous status.
    """
    submission = await get_final_submission(db, submission_id)
    job = await _require_client(db, submission.job_request_id, member_id)

    await execute(
        db.table(FINAL_SUBMISSION_FEEDBACK_TABLE).insert(
            {
                "job_final_submission_id": submission_id,
                "member_id": member_id,
                "feedback_type": data.feedback_type,
                "remarks": data.remarks,
            }
        )
    )

    status = FINAL_FEEDBACK_STATUS.get(data.feedback_type)
    if status == FinalSubmissionStatus.approved:
        payout = await approve_final_submission(db, submission, job, member_id)
        return FinalFeedbackResult(
            submission_status=status.value, payout=payout, payout_skipped=bool(payout.get("skipped"))
        )
    if status is not None:
        await _set_submission_status(db, submission_id, status.value)
        return FinalFeedbackResult(submission_status=status.value)
    return FinalFeedbackResult(submission_status=submission.status.value)


async def review_final_submission(
    db: Client,
    submission_id: str,
    member_id: str,
    status: FinalSubmissionStatus,
    review_notes: str | None,
) -> FinalSubmission:
    """Set a review decision. Approval goes through the payout saga."""
    submission = await get_final_submission(db, submission_id)
    job = await _require_client(db, submission.job_request_id, member_id)

    if status == FinalSubmissionStatus.approved:
        await approve_final_submission(db, submission, job, member_id)

    updated = await _set_submission_status(
        db,
        submission_id,
        status.value,
        review_notes=review_notes,
        reviewed_by=member_id,
        reviewed_at=_now(),
    )
    if updated is None:
        raise NotFoundError("Submission not found")
    return updated


async def _client_job_ids(db: Client, member_id: str) -> list[str]:
    rows = await fetch_all(db.table(JOB_REQUESTS_TABLE).select("id").eq("client_id", member_id))
    return [r["id"] for r in rows]


__all__ = [
    "submit_job_update",
    "get_job_updates",
    "submit_job_feedback",
    "get_updates_pending_review",
    "auto_acknowledge_updates",
    "submit_progress_update",
    "submit_progress_update_feedback",
    "get_progress_updates",
    "get_pending_progress_updates",
    "auto_acknowledge_progress_updates",
    "submit_final_work",
    "get_final_submission",
    "get_final_submissions",
    "get_pending_final_submissions",
    "approve_final_submission",
    "submit_final_submission_feedback",
    "review_final_submission",
]
