"""Job request lifecycle.

    open ──accept──▶ in_progress ──complete──▶ pending_review ──approve──▶ completed
      │                   ▲                          │
      └──delete           └─────────reject───────────┘

Status changes are conditional updates (``... WHERE status = expected``) so a
concurrent request cannot move the same job twice. Money moves through
:class:`~craftnet.wallet.WalletLedger`; each money-moving flow records its
progress in a :class:`~craftnet.sagas.SagaLog`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from supabase import Client

from ..config import Settings, get_settings
from ..database import (
    DISPUTES_TABLE,
    JOB_APPLICATIONS_TABLE,
    JOB_REQUESTS_TABLE,
    NOTIFICATIONS_TABLE,
    PROFILES_TABLE,
    count_rows,
    execute,
    fetch_all,
    fetch_one,
)
from ..errors import (
    AlreadyProcessed,
    AuthorizationError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    PartialFailure,
    PayoutFailed,
    RemoteFailure,
    ValidationError,
)
from ..logging_config import get_logger
from ..models import (
    ApplicationStatus,
    DeletionResult,
    JobApplication,
    JobFilters,
    JobRequest,
    JobRequestCreate,
    JobStatus,
    ReviewResult,
    TransactionType,
)
from ..notifications import (
    broadcast_job_alerts,
    notify_escrow_event,
    notify_job_application_status,
    notify_job_application_submitted,
)
from ..profiles import add_earnings
from ..sagas import SagaKind, SagaLog, hold_reversal_reference
from ..wallet import (
    WalletLedger,
    deletion_refund_reference,
    escrow_hold_reference,
    payout_reference,
    rejection_refund_reference,
)

logger = get_logger("craftnet.jobs")


VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.open: {JobStatus.in_progress},
    JobStatus.in_progress: {JobStatus.pending_review},
    JobStatus.pending_review: {JobStatus.completed, JobStatus.in_progress},
    JobStatus.completed: set(),
}


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# =============================================================================
# Database Operations
# =============================================================================


async def find_job(db: Client, job_id: str) -> JobRequest | None:
    row = await fetch_one(db.table(JOB_REQUESTS_TABLE).select("*").eq("id", job_id).limit(1))
    return JobRequest(**row) if row else None


async def get_job_request(db: Client, job_id: str) -> JobRequest:
    """Fetch a job or raise NotFoundError."""
    job = await find_job(db, job_id)
    if job is None:
        raise NotFoundError("Job not found")
    return job


async def atomic_update_job_status(
    db: Client,
    job_id: str,
    expected_status: JobStatus,
    new_status: JobStatus,
    **updates,
) -> tuple[JobRequest | None, str | None]:
    """Move a job between statuses only if it still has ``expected_status``.

    Returns:
        Tuple of (updated_job, error).
        - If successful: (job, None)
        - If job not found: (None, "not_found")
        - If status mismatch (concurrent change): (None, "conflict")
    """
    update_data = {"status": new_status.value, "updated_at": _now().isoformat(), **updates}
    result = await execute(
        db.table(JOB_REQUESTS_TABLE)
        .update(update_data)
        .eq("id", job_id)
        .eq("status", expected_status.value)
    )
    if result.data:
        return JobRequest(**result.data[0]), None

    job = await find_job(db, job_id)
    if job is None:
        return None, "not_found"

    logger.warning(
        f"Status conflict on job {job_id}: expected '{expected_status.value}', found '{job.status.value}'"
    )
    return None, "conflict"


def _transition_error(error: str | None, action: str) -> MarketplaceError:
    if error == "not_found":
        return NotFoundError("Job not found")
    return InvalidTransitionError(f"Job status changed, cannot {action}. Please refresh and try again.")


# =============================================================================
# Create
# =============================================================================


def validate_fixed_price(price: Decimal, settings: Settings) -> None:
    if price < settings.min_fixed_price:
        raise ValidationError(f"Fixed price must be at least ₦{settings.min_fixed_price:,}", field="job-price")
    if price > settings.max_fixed_price:
        raise ValidationError(f"Fixed price cannot exceed ₦{settings.max_fixed_price:,}", field="job-price")


async def check_free_plan_limit(db: Client, client_id: str, settings: Settings) -> None:
    """Free-plan members may post a limited number of jobs per calendar month.

    A failed lookup never blocks posting.
    """
    try:
        profile = await fetch_one(
            db.table(PROFILES_TABLE).select("subscription_plan").eq("id", client_id).limit(1)
        )
        plan = (profile or {}).get("subscription_plan") or "free"
        if plan != "free":
            return
        posted = await count_rows(
            db.table(JOB_REQUESTS_TABLE)
            .select("id", count="exact")
            .eq("client_id", client_id)
            .gte("created_at", _month_start(_now()).isoformat())
        )
    except RemoteFailure as e:
        logger.warning("Free plan limit check failed for %s, allowing post: %s", client_id, e)
        return

    if posted >= settings.free_plan_monthly_job_limit:
        raise ValidationError(
            f"Free plan members can post up to {settings.free_plan_monthly_job_limit} jobs per month. "
            "Upgrade your plan to post more.",
            field="job-form",
        )


async def create_job_request(
    db: Client,
    client_id: str,
    data: JobRequestCreate,
    settings: Settings | None = None,
) -> JobRequest:
    """Escrow the price from the client's wallet and post the job.

    If the job row cannot be inserted the hold is reversed before the error
    surfaces.

    Raises:
        ValidationError: price out of range or monthly free-plan limit reached.
        InsufficientFunds: wallet balance below the price; nothing is written.
    """
    settings = settings or get_settings()
    price = data.fixed_price
    validate_fixed_price(price, settings)
    await check_free_plan_limit(db, client_id, settings)

    reference = escrow_hold_reference()
    saga = await SagaLog.start(
        db,
        SagaKind.create_job,
        payload={"client_id": client_id, "amount": str(price), "reference": reference},
    )

    try:
        await WalletLedger.debit(
            db,
            client_id,
            price,
            transaction_type=TransactionType.escrow_hold,
            reference=reference,
            description=f"Escrow hold for job: {data.title}",
            metadata={"job_title": data.title, "escrow_type": "job_request"},
            field="job-price",
        )
    except MarketplaceError as e:
        await saga.compensated(type(e).__name__)
        raise
    await saga.advance("funds_debited")

    record = {
        "client_id": client_id,
        "title": data.title,
        "description": data.description,
        "fixed_price": str(price),
        "budget_min": str(price),
        "budget_max": str(price),
        "escrow_amount": str(price),
        "skills_required": data.skills_required,
        "location": data.location,
        "deadline": data.deadline.isoformat() if data.deadline else None,
        "status": JobStatus.open.value,
        "created_at": _now().isoformat(),
    }
    try:
        result = await execute(db.table(JOB_REQUESTS_TABLE).insert(record))
        if not result.data:
            raise RemoteFailure("Failed to create job request")
    except RemoteFailure:
        logger.error(f"Job insert failed for client {client_id}, reversing escrow hold {reference}")
        try:
            await WalletLedger.credit(
                db,
                client_id,
                price,
                transaction_type=TransactionType.escrow_refund,
                reference=hold_reversal_reference(reference),
                description=f"Escrow returned: job could not be created ({data.title})",
                metadata={"escrow_reference": reference, "refund_type": "job_creation_failed"},
            )
            await saga.compensated("job insert failed")
        except MarketplaceError as refund_error:
            # Marker stays in flight; the recovery sweep retries the reversal
            logger.error(f"Could not reverse escrow hold {reference}: {refund_error}")
        raise

    job = JobRequest(**result.data[0])
    await saga.advance("job_created", job_id=job.id)
    await saga.complete()
    logger.info(f"Job created | id={job.id} | client={client_id} | escrow={price}")

    await notify_escrow_event(db, client_id, "held", price, job.id, job.title)
    await broadcast_job_alerts(db, job)
    return job


# =============================================================================
# Applications
# =============================================================================


async def apply_for_job(
    db: Client,
    apprentice_id: str,
    job_id: str,
    proposal: str,
    cv_url: str | None,
) -> JobApplication:
    """Submit an application with a CV.

    Raises:
        ValidationError: no CV, or applying to one's own job.
        AlreadyProcessed: the apprentice already applied.
    """
    if not cv_url:
        raise ValidationError("CV is required to apply for jobs", field="cv-upload")

    job = await get_job_request(db, job_id)
    if job.client_id == apprentice_id:
        raise ValidationError("You cannot apply to your own job")
    if job.status != JobStatus.open:
        raise InvalidTransitionError("This job is no longer accepting applications")

    existing = await fetch_one(
        db.table(JOB_APPLICATIONS_TABLE)
        .select("id")
        .eq("job_request_id", job_id)
        .eq("apprentice_id", apprentice_id)
        .limit(1)
    )
    if existing:
        raise AlreadyProcessed("You have already applied for this job")

    try:
        result = await execute(
            db.table(JOB_APPLICATIONS_TABLE).insert(
                {
                    "job_request_id": job_id,
                    "apprentice_id": apprentice_id,
                    "proposal": proposal,
                    "cv_url": cv_url,
                    "status": ApplicationStatus.pending.value,
                    "created_at": _now().isoformat(),
                }
            )
        )
    except AlreadyProcessed:
        raise AlreadyProcessed("You have already applied for this job")
    application = JobApplication(**result.data[0])

    apprentice = await fetch_one(db.table(PROFILES_TABLE).select("name").eq("id", apprentice_id).limit(1))
    await notify_job_application_submitted(
        db, job.client_id, job.id, job.title, (apprentice or {}).get("name")
    )
    return application


async def get_application(db: Client, application_id: str) -> JobApplication | None:
    row = await fetch_one(db.table(JOB_APPLICATIONS_TABLE).select("*").eq("id", application_id).limit(1))
    return JobApplication(**row) if row else None


async def _set_application_status(
    db: Client,
    application_id: str,
    expected: ApplicationStatus,
    new: ApplicationStatus,
) -> JobApplication | None:
    result = await execute(
        db.table(JOB_APPLICATIONS_TABLE)
        .update({"status": new.value, "updated_at": _now().isoformat()})
        .eq("id", application_id)
        .eq("status", expected.value)
    )
    return JobApplication(**result.data[0]) if result.data else None


async def update_application_status(
    db: Client,
    application_id: str,
    status: ApplicationStatus,
    client_id: str,
) -> JobApplication:
    """Accept or reject a pending application.

    Accepting assigns the apprentice and starts the job. The assignment is a
    conditional update on an open, unassigned job, so only one application
    per job can ever be accepted.
    """
    if status == ApplicationStatus.pending:
        raise ValidationError("Application can only be accepted or rejected")

    application = await get_application(db, application_id)
    if application is None:
        raise NotFoundError("Application not found")
    job = await get_job_request(db, application.job_request_id)
    if job.client_id != client_id:
        raise AuthorizationError("Application not found or unauthorized")

    updated = await _set_application_status(db, application_id, ApplicationStatus.pending, status)
    if updated is None:
        raise AlreadyProcessed("This application has already been processed")

    if status == ApplicationStatus.accepted:
        result = await execute(
            db.table(JOB_REQUESTS_TABLE)
            .update(
                {
                    "status": JobStatus.in_progress.value,
                    "assigned_apprentice_id": application.apprentice_id,
                    "updated_at": _now().isoformat(),
                }
            )
            .eq("id", job.id)
            .eq("status", JobStatus.open.value)
            .is_("assigned_apprentice_id", "null")
        )
        if not result.data:
            await _set_application_status(db, application_id, ApplicationStatus.accepted, ApplicationStatus.pending)
            raise AlreadyProcessed("An apprentice has already been assigned to this job")
        logger.info(f"Application accepted | job={job.id} | apprentice={application.apprentice_id}")

    client = await fetch_one(db.table(PROFILES_TABLE).select("name").eq("id", client_id).limit(1))
    await notify_job_application_status(
        db, application.apprentice_id, job.id, job.title, status.value, (client or {}).get("name")
    )
    return updated


# =============================================================================
# Progress and completion
# =============================================================================


async def update_job_progress(db: Client, job_id: str, progress: int, apprentice_id: str) -> JobRequest:
    if not 0 <= progress <= 100:
        raise ValidationError("Progress must be between 0 and 100", field="job-progress")
    result = await execute(
        db.table(JOB_REQUESTS_TABLE)
        .update({"progress": progress, "updated_at": _now().isoformat()})
        .eq("id", job_id)
        .eq("assigned_apprentice_id", apprentice_id)
    )
    if not result.data:
        raise AuthorizationError("Job not found or unauthorized")
    return JobRequest(**result.data[0])


async def complete_job(db: Client, job_id: str, apprentice_id: str) -> JobRequest:
    """Assigned apprentice submits the job for review. No money moves."""
    job = await get_job_request(db, job_id)
    if job.assigned_apprentice_id != apprentice_id:
        raise AuthorizationError("Job not found or unauthorized")

    now = _now().isoformat()
    updated, error = await atomic_update_job_status(
        db,
        job_id,
        JobStatus.in_progress,
        JobStatus.pending_review,
        completed_at=now,
        review_submitted_at=now,
    )
    if updated is None:
        raise _transition_error(error, "submit for review")
    logger.info(f"Job submitted for review | id={job_id} | apprentice={apprentice_id}")
    return updated


# =============================================================================
# Review
# =============================================================================


async def pay_apprentice(
    db: Client,
    job_id: str,
    apprentice_id: str,
    amount: Decimal,
    job_title: str,
) -> bool:
    """Release the escrow to the apprentice. Returns False if it was already paid."""
    if amount <= 0:
        logger.warning(f"Job {job_id} holds no escrow, nothing to pay out")
        return False
    payout = await WalletLedger.release_payout(
        db,
        apprentice_id,
        amount,
        job_id=job_id,
        description=f"Payment for completed job: {job_title}",
        metadata={"job_request_id": job_id, "job_title": job_title, "payment_type": "job_completion"},
    )
    if payout.skipped:
        return False

    try:
        await add_earnings(db, apprentice_id, amount)
    except RemoteFailure as e:
        logger.error(f"Paid apprentice {apprentice_id} for job {job_id} but stats update failed: {e}")
    await notify_escrow_event(db, apprentice_id, "released", amount, job_id, job_title)
    return True


async def _approve(db: Client, job: JobRequest, review_notes: str | None) -> ReviewResult:
    amount = job.held_amount()
    if job.status == JobStatus.completed:
        return ReviewResult(job=job, skipped=True)
    if job.status != JobStatus.pending_review:
        raise InvalidTransitionError("Job is not awaiting review")
    if not job.assigned_apprentice_id:
        raise ValidationError("Job has no assigned apprentice to pay")

    review_fields = {
        "review_approved": True,
        "review_notes": review_notes,
        "completed_at": _now().isoformat(),
    }

    if await WalletLedger.has_transaction(db, payout_reference(job.id), TransactionType.escrow_release):
        logger.warning(f"Job {job.id} already paid, marking completed without payout")
        updated, error = await atomic_update_job_status(
            db, job.id, JobStatus.pending_review, JobStatus.completed, **review_fields
        )
        return ReviewResult(job=updated or await get_job_request(db, job.id), skipped=True)

    saga = await SagaLog.start(
        db,
        SagaKind.review_approval,
        job_id=job.id,
        payload={"apprentice_id": job.assigned_apprentice_id, "amount": str(amount), "job_title": job.title},
    )
    updated, error = await atomic_update_job_status(
        db, job.id, JobStatus.pending_review, JobStatus.completed, **review_fields
    )
    if updated is None:
        await saga.compensated(error or "conflict")
        current = await find_job(db, job.id)
        if current is not None and current.status == JobStatus.completed:
            return ReviewResult(job=current, skipped=True)
        raise _transition_error(error, "approve")
    await saga.advance("job_completed")

    try:
        paid = await pay_apprentice(db, job.id, job.assigned_apprentice_id, amount, job.title)
    except MarketplaceError as e:
        logger.error(f"Payout for job {job.id} failed, reverting to pending_review: {e}")
        await atomic_update_job_status(
            db,
            job.id,
            JobStatus.completed,
            JobStatus.pending_review,
            review_approved=None,
            completed_at=job.completed_at.isoformat() if job.completed_at else None,
        )
        await saga.compensated("payout failed")
        raise PayoutFailed(f"Failed to dispatch funds to apprentice: {e.message}") from e

    await saga.advance("payout_done")
    await saga.complete()
    logger.info(f"Job approved | id={job.id} | paid={paid} | amount={amount}")
    return ReviewResult(job=updated, payment=amount if paid else None, skipped=not paid)


async def _reject(db: Client, job: JobRequest, review_notes: str | None) -> ReviewResult:
    amount = job.held_amount()
    updated, error = await atomic_update_job_status(
        db,
        job.id,
        JobStatus.pending_review,
        JobStatus.in_progress,
        review_approved=False,
        review_notes=review_notes,
    )
    if updated is None:
        raise _transition_error(error, "reject")

    if amount <= 0:
        logger.info(f"Job rejected | id={job.id} | no escrow held, nothing to refund")
        return ReviewResult(job=updated, skipped=True)

    try:
        await WalletLedger.credit(
            db,
            job.client_id,
            amount,
            transaction_type=TransactionType.escrow_refund,
            reference=rejection_refund_reference(job.id),
            description=f"Escrow refund for job: {job.title}",
            metadata={"job_request_id": job.id, "job_title": job.title, "refund_type": "job_rejection"},
        )
    except RemoteFailure as e:
        logger.error(f"Job {job.id} returned to in_progress but refund failed: {e}")
        raise RemoteFailure(f"Job returned to in progress, but the refund failed: {e.message}") from e

    await notify_escrow_event(db, job.client_id, "refunded", amount, job.id, job.title, "Work rejected")
    logger.info(f"Job rejected | id={job.id} | refund={amount}")
    return ReviewResult(job=updated, refund=amount)


async def review_job(
    db: Client,
    job_id: str,
    approved: bool,
    review_notes: str | None,
    client_id: str,
) -> ReviewResult:
    """Approve (pay the apprentice) or reject (refund the client) a job under review.

    Approving is idempotent: the apprentice is paid at most once per job no
    matter how many times approval is requested.

    Raises:
        PayoutFailed: the credit failed after the job was completed; the job is
            back in ``pending_review``.
    """
    job = await get_job_request(db, job_id)
    if job.client_id != client_id:
        raise AuthorizationError("Job not found or unauthorized")
    if approved:
        return await _approve(db, job, review_notes)
    if job.status != JobStatus.pending_review:
        raise InvalidTransitionError("Job is not awaiting review")
    return await _reject(db, job, review_notes)


# =============================================================================
# Delete
# =============================================================================


async def _delete_dependents(db: Client, job_id: str) -> None:
    # Applications must go; a failure aborts before anything else changes
    await execute(db.table(JOB_APPLICATIONS_TABLE).delete().eq("job_request_id", job_id))

    for label, query in (
        ("disputes", db.table(DISPUTES_TABLE).delete().eq("job_id", job_id)),
        ("notifications", db.table(NOTIFICATIONS_TABLE).delete().eq("metadata->>jobId", job_id)),
        ("notifications", db.table(NOTIFICATIONS_TABLE).delete().eq("metadata->>job_request_id", job_id)),
    ):
        try:
            await execute(query)
        except RemoteFailure as e:
            logger.warning(f"Could not delete {label} for job {job_id}: {e}")


async def delete_job_request(db: Client, job_id: str, client_id: str) -> DeletionResult:
    """Delete an open, unassigned job and refund its escrow.

    The refund is issued only after a re-read confirms the row is gone.

    Raises:
        AuthorizationError: caller is not the owner, or an apprentice is assigned.
        InvalidTransitionError: job is no longer open.
        PartialFailure: dependents were removed but the job row survived.
    """
    job = await get_job_request(db, job_id)
    if job.client_id != client_id:
        raise AuthorizationError("You can only delete your own job requests")
    if job.assigned_apprentice_id:
        raise AuthorizationError(
            "Cannot delete job: An apprentice has already been assigned. Please contact support."
        )
    if job.status != JobStatus.open:
        raise InvalidTransitionError("Cannot delete job that is in progress or completed")

    amount = job.held_amount()
    reference = deletion_refund_reference(job_id)
    saga = await SagaLog.start(
        db,
        SagaKind.delete_job,
        job_id=job_id,
        payload={"client_id": client_id, "amount": str(amount), "reference": reference, "job_title": job.title},
    )

    try:
        await _delete_dependents(db, job_id)
    except MarketplaceError as e:
        await saga.compensated("dependents delete failed")
        logger.error(f"Deleting applications for job {job_id} failed: {e}")
        raise
    await saga.advance("dependents_deleted")

    result = await execute(
        db.table(JOB_REQUESTS_TABLE)
        .delete(count="exact")
        .eq("id", job_id)
        .eq("client_id", client_id)
        .eq("status", JobStatus.open.value)
        .is_("assigned_apprentice_id", "null")
    )
    deleted_now = bool(result.data) or bool(result.count)

    if await find_job(db, job_id) is not None:
        await saga.compensated("job row survived delete")
        raise PartialFailure(
            "Job could not be deleted. Related records were removed but no refund was issued. "
            "Please try again or contact support."
        )
    if not deleted_now:
        # Someone else removed it between our read and delete
        await saga.compensated("already deleted")
        return DeletionResult(deleted=True, already_deleted=True)

    await saga.advance("job_deleted")
    if amount <= 0:
        await saga.complete()
        logger.info(f"Job deleted | id={job_id} | no escrow held, nothing to refund")
        return DeletionResult(deleted=True)

    try:
        await WalletLedger.credit(
            db,
            client_id,
            amount,
            transaction_type=TransactionType.escrow_refund,
            reference=reference,
            description=f"Refund for deleted job: {job.title}",
            metadata={"job_request_id": job_id, "job_title": job.title, "refund_type": "job_deletion"},
        )
    except MarketplaceError as e:
        # Marker stays at job_deleted; the recovery sweep issues the refund
        logger.error(f"Job {job_id} deleted but refund failed: {e}")
        return DeletionResult(deleted=True, refunded=False)

    await saga.complete()
    await notify_escrow_event(db, client_id, "refunded", amount, job_id, job.title, "Job deleted")
    logger.info(f"Job deleted | id={job_id} | refund={amount}")
    return DeletionResult(deleted=True, refunded=True, refund_amount=amount)


# =============================================================================
# Reads
# =============================================================================


async def list_open_jobs(db: Client, filters: JobFilters | None = None) -> list[JobRequest]:
    filters = filters or JobFilters()
    query = db.table(JOB_REQUESTS_TABLE).select("*").eq("status", JobStatus.open.value)
    if filters.skills:
        query = query.overlaps("skills_required", filters.skills)
    if filters.location:
        query = query.ilike("location", f"%{filters.location}%")
    if filters.min_budget is not None:
        query = query.gte("fixed_price", str(filters.min_budget))
    if filters.max_budget is not None:
        query = query.lte("fixed_price", str(filters.max_budget))
    rows = await fetch_all(
        query.order("created_at", desc=True).range(filters.offset, filters.offset + filters.limit - 1)
    )
    return [JobRequest(**r) for r in rows]


async def get_client_job_requests(db: Client, client_id: str) -> list[JobRequest]:
    rows = await fetch_all(
        db.table(JOB_REQUESTS_TABLE).select("*").eq("client_id", client_id).order("created_at", desc=True)
    )
    return [JobRequest(**r) for r in rows]


async def get_job_applications(db: Client, job_id: str, client_id: str) -> list[JobApplication]:
    job = await get_job_request(db, job_id)
    if job.client_id != client_id:
        raise AuthorizationError("Job not found or unauthorized")
    rows = await fetch_all(
        db.table(JOB_APPLICATIONS_TABLE).select("*").eq("job_request_id", job_id).order("created_at", desc=True)
    )
    return [JobApplication(**r) for r in rows]


async def get_apprentice_applications(db: Client, apprentice_id: str) -> list[JobApplication]:
    rows = await fetch_all(
        db.table(JOB_APPLICATIONS_TABLE)
        .select("*")
        .eq("apprentice_id", apprentice_id)
        .order("created_at", desc=True)
    )
    return [JobApplication(**r) for r in rows]


async def get_jobs_pending_review(db: Client, client_id: str) -> list[JobRequest]:
    rows = await fetch_all(
        db.table(JOB_REQUESTS_TABLE)
        .select("*")
        .eq("client_id", client_id)
        .eq("status", JobStatus.pending_review.value)
        .order("review_submitted_at", desc=True)
    )
    return [JobRequest(**r) for r in rows]


async def get_apprentice_active_jobs(db: Client, apprentice_id: str) -> list[JobRequest]:
    rows = await fetch_all(
        db.table(JOB_REQUESTS_TABLE)
        .select("*")
        .eq("assigned_apprentice_id", apprentice_id)
        .in_("status", [JobStatus.in_progress.value, JobStatus.pending_review.value])
        .order("created_at", desc=True)
    )
    return [JobRequest(**r) for r in rows]
