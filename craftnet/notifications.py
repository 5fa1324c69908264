"""In-app notifications.

Notifications are a side channel: every public ``notify_*`` helper logs and
swallows its own failures so it can never block the workflow that called it.
"""

from __future__ import annotations

import functools
from decimal import Decimal

from supabase import Client

from .config import get_settings
from .database import (
    NOTIFICATIONS_TABLE,
    PROFILES_TABLE,
    RPC_CREATE_NOTIFICATION,
    call_rpc,
    execute,
    fetch_all,
)
from .errors import RemoteFailure
from .logging_config import get_logger
from .models import JobRequest, UserRole

logger = get_logger("craftnet.notifications")

DEFAULT_CHANNELS = ["in_app"]
JOB_ALERT_SUMMARY_LIMIT = 160
JOB_ALERT_DESCRIPTION_LIMIT = 200


def best_effort(func):
    """Log and swallow any error raised by a notification helper."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.warning(f"{func.__name__} failed: {type(e).__name__}: {e}")
            return None

    return wrapper


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending with an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."


def format_naira(amount: Decimal | int | float) -> str:
    return f"₦{Decimal(str(amount)):,.2f}"


async def create_notification(
    db: Client,
    user_id: str,
    type: str,
    title: str,
    message: str,
    metadata: dict | None = None,
    actor_id: str | None = None,
    channels: list[str] | None = None,
):
    """Create a notification via RPC, falling back to a direct insert."""
    metadata = metadata or {}
    channels = channels or DEFAULT_CHANNELS
    try:
        return await call_rpc(
            db,
            RPC_CREATE_NOTIFICATION,
            {
                "p_actor_id": actor_id,
                "p_user_id": user_id,
                "p_type": type,
                "p_title": title,
                "p_message": message,
                "p_metadata": metadata,
                "p_channels": channels,
            },
        )
    except RemoteFailure as e:
        logger.warning("create_notification RPC failed, using direct insert: %s", e)

    result = await execute(
        db.table(NOTIFICATIONS_TABLE).insert(
            {
                "user_id": user_id,
                "delivery_channels": channels,
                "type": type,
                "title": title,
                "message": message,
                "metadata": metadata,
            }
        )
    )
    return result.data[0] if result.data else None


# =============================================================================
# Job notifications
# =============================================================================


@best_effort
async def notify_job_application_submitted(
    db: Client,
    client_id: str,
    job_id: str,
    job_title: str,
    apprentice_name: str | None,
):
    message = (
        f'{apprentice_name or "An apprentice"} applied for "{job_title}". '
        "Review the proposal and respond when ready."
    )
    return await create_notification(
        db,
        client_id,
        "job_application",
        "New Job Application",
        message,
        {"jobId": job_id, "jobTitle": job_title, "applicant": apprentice_name},
    )


@best_effort
async def notify_job_application_status(
    db: Client,
    apprentice_id: str,
    job_id: str,
    job_title: str,
    status: str,
    client_name: str | None = None,
):
    client = client_name or "The client"
    if status == "accepted":
        type_, title = "job_application_accepted", "Job Application Accepted"
        message = f'{client} accepted your application for "{job_title}". Get ready to start!'
    else:
        type_, title = "job_application_update", "Job Application Update"
        message = f'{client} updated your application for "{job_title}". Status: {status}.'
    return await create_notification(
        db,
        apprentice_id,
        type_,
        title,
        message,
        {"jobId": job_id, "jobTitle": job_title, "status": status, "clientName": client_name},
    )


@best_effort
async def notify_job_alert(
    db: Client,
    user_id: str,
    job_id: str,
    job_title: str,
    summary: str | None,
    skills_match: list[str] | None = None,
):
    short = truncate(summary or "Check it out before it fills up.", JOB_ALERT_SUMMARY_LIMIT)
    return await create_notification(
        db,
        user_id,
        "job_alert",
        "Job Alert",
        f'New job posted: "{job_title}". {short}',
        {"jobId": job_id, "jobTitle": job_title, "summary": short, "skillsMatch": skills_match or []},
    )


@best_effort
async def notify_escrow_event(
    db: Client,
    user_id: str,
    kind: str,
    amount: Decimal,
    job_id: str,
    job_title: str,
    reason: str | None = None,
):
    """Notify a wallet owner that escrow was held, released or refunded."""
    amount_text = format_naira(amount)
    if kind == "held":
        type_, title = "escrow_hold", "Funds Held in Escrow"
        message = (
            f'{amount_text} has been held in escrow for job: "{job_title}". '
            "Funds will be released upon job completion."
        )
    elif kind == "released":
        type_, title = "escrow_released", "Escrow Funds Released"
        message = (
            f'{amount_text} has been released from escrow for completed job: "{job_title}". '
            "Funds are now in your wallet."
        )
    else:
        type_, title = "escrow_refunded", "Escrow Funds Refunded"
        message = f'{amount_text} has been refunded from escrow for job: "{job_title}". Reason: {reason}.'
    return await create_notification(
        db,
        user_id,
        type_,
        title,
        message,
        {"jobId": job_id, "jobTitle": job_title, "amount": str(amount), "status": kind, "reason": reason},
    )


@best_effort
async def broadcast_job_alerts(db: Client, job: JobRequest) -> int:
    """Notify apprentices whose skill or creative type matches the job.

    Returns the number of alerts attempted.
    """
    settings = get_settings()
    skills = sorted({s.strip().lower() for s in job.skills_required if s and s.strip()})
    if not skills:
        return 0

    clauses = []
    for skill in skills:
        clauses.append(f"skill.ilike.%{skill}%")
        clauses.append(f"creative_type.ilike.%{skill}%")

    candidates = await fetch_all(
        db.table(PROFILES_TABLE)
        .select("id, skill, creative_type")
        .eq("role", UserRole.apprentice.value)
        .or_(",".join(clauses))
        .limit(settings.job_alert_candidate_limit)
    )
    recipients = [c for c in candidates if c.get("id") != job.client_id][: settings.job_alert_recipient_limit]

    summary = truncate(job.description or "", JOB_ALERT_DESCRIPTION_LIMIT)
    for candidate in recipients:
        await notify_job_alert(db, candidate["id"], job.id, job.title, summary, skills)

    logger.info("Job %s alert sent to %d apprentices", job.id, len(recipients))
    return len(recipients)
