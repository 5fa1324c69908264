"""Profile reads, basic profile creation and per-role stats."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from supabase import Client

from .config import Settings, get_settings
from .database import (
    JOB_APPLICATIONS_TABLE,
    JOB_REQUESTS_TABLE,
    PROFILES_TABLE,
    RPC_AWARD_REFERRAL_POINTS,
    call_rpc,
    count_rows,
    execute,
    fetch_all,
    fetch_one,
)
from .errors import AuthorizationError, RemoteFailure
from .logging_config import get_logger
from .models import JobRequest, JobStatus, Profile, UserRole

logger = get_logger("craftnet.profiles")

# Admin is granted out of band, never from user-editable signup metadata
SELF_ASSIGNABLE_ROLES = {UserRole.member.value, UserRole.apprentice.value}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def create_basic_profile(db: Client, user_id: str, metadata: dict | None = None) -> None:
    """Upsert a minimal profile row using the signup metadata."""
    metadata = metadata or {}
    role = metadata.get("role")
    if role not in SELF_ASSIGNABLE_ROLES:
        if role:
            logger.warning("Ignoring role %r in metadata for user %s", role, user_id)
        role = UserRole.member.value
    data = {
        "id": user_id,
        "name": metadata.get("name") or "New User",
        "email": metadata.get("email") or "",
        "role": role,
        "followers": 0,
        "following": 0,
        "created_at": _now(),
        "updated_at": _now(),
    }
    if role == UserRole.member.value:
        data.update(
            creative_type=metadata.get("creative_type") or "Other",
            description="",
            eligibility_points=0,
            referral_points=0,
            referrals=0,
            subscription_plan="free",
        )
    elif role == UserRole.apprentice.value:
        data.update(
            skill=metadata.get("skill") or "Not specified",
            location=metadata.get("location") or "Not specified",
            description="",
        )

    await execute(db.table(PROFILES_TABLE).upsert(data, on_conflict="id"))
    logger.info("Created basic %s profile for user %s", role, user_id)


async def get_user_profile(
    db: Client,
    user_id: str,
    metadata: dict | None = None,
    settings: Settings | None = None,
) -> Profile:
    """Fetch a profile with a fixed retry.

    A missing row is created from ``metadata`` and fetched again on the next
    attempt. Raises the last gateway error once the attempts are used up.
    """
    settings = settings or get_settings()
    attempts = settings.profile_fetch_attempts
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            row = await fetch_one(db.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1))
            if row:
                return Profile(**row)
            await create_basic_profile(db, user_id, metadata)
            last_error = RemoteFailure(f"Profile for user {user_id} not found")
        except RemoteFailure as e:
            last_error = e
            logger.warning("Profile fetch for %s failed (attempt %d/%d): %s", user_id, attempt, attempts, e)
        if attempt < attempts:
            await asyncio.sleep(settings.profile_retry_delay_seconds)

    raise last_error


async def get_role(db: Client, user_id: str) -> str | None:
    row = await fetch_one(db.table(PROFILES_TABLE).select("role").eq("id", user_id).limit(1))
    return row.get("role") if row else None


async def is_admin(db: Client, user_id: str) -> bool:
    return await get_role(db, user_id) == UserRole.admin.value


async def require_admin(db: Client, user_id: str) -> None:
    """Raise unless the user's profile role is admin."""
    if not await is_admin(db, user_id):
        raise AuthorizationError("Admin privileges required")


async def add_earnings(db: Client, apprentice_id: str, amount: Decimal) -> None:
    """Increment an apprentice's total_earnings and completed_jobs counters."""
    row = await fetch_one(
        db.table(PROFILES_TABLE).select("total_earnings, completed_jobs").eq("id", apprentice_id).limit(1)
    )
    if row is None:
        raise RemoteFailure(f"Profile for apprentice {apprentice_id} not found")
    total = Decimal(str(row.get("total_earnings") or 0)) + amount
    completed = int(row.get("completed_jobs") or 0) + 1
    await execute(
        db.table(PROFILES_TABLE)
        .update({"total_earnings": str(total), "completed_jobs": completed, "updated_at": _now()})
        .eq("id", apprentice_id)
    )


async def award_referral_points(
    db: Client,
    referrer_user_id: str,
    referred_user_id: str,
    referral_code_id: str,
):
    return await call_rpc(
        db,
        RPC_AWARD_REFERRAL_POINTS,
        {
            "referrer_user_id": referrer_user_id,
            "referred_user_id": referred_user_id,
            "referral_code_id": referral_code_id,
        },
    )


# =============================================================================
# Stats
# =============================================================================


async def get_apprentice_stats(db: Client, apprentice_id: str) -> dict:
    profile_row = await fetch_one(
        db.table(PROFILES_TABLE).select("total_earnings, completed_jobs").eq("id", apprentice_id).limit(1)
    )
    if profile_row is None:
        raise RemoteFailure(f"Profile for apprentice {apprentice_id} not found")

    pending_applications, active_jobs, pending_review_jobs = await asyncio.gather(
        count_rows(
            db.table(JOB_APPLICATIONS_TABLE)
            .select("id", count="exact")
            .eq("apprentice_id", apprentice_id)
            .eq("status", "pending")
        ),
        count_rows(
            db.table(JOB_REQUESTS_TABLE)
            .select("id", count="exact")
            .eq("assigned_apprentice_id", apprentice_id)
            .eq("status", JobStatus.in_progress.value)
        ),
        count_rows(
            db.table(JOB_REQUESTS_TABLE)
            .select("id", count="exact")
            .eq("assigned_apprentice_id", apprentice_id)
            .eq("status", JobStatus.pending_review.value)
        ),
    )
    return {
        "total_earned": Decimal(str(profile_row.get("total_earnings") or 0)),
        "completed_jobs": int(profile_row.get("completed_jobs") or 0),
        "pending_applications": pending_applications,
        "active_jobs": active_jobs,
        "pending_review_jobs": pending_review_jobs,
    }


async def get_client_stats(db: Client, client_id: str) -> dict:
    rows = await fetch_all(db.table(JOB_REQUESTS_TABLE).select("*").eq("client_id", client_id))
    jobs = [JobRequest(**r) for r in rows]

    def _count(status: JobStatus) -> int:
        return sum(1 for j in jobs if j.status == status)

    return {
        "total_jobs": len(jobs),
        "open_jobs": _count(JobStatus.open),
        "in_progress_jobs": _count(JobStatus.in_progress),
        "pending_review_jobs": _count(JobStatus.pending_review),
        "completed_jobs": _count(JobStatus.completed),
        "total_spent": sum(
            (j.held_amount() for j in jobs if j.status == JobStatus.completed), Decimal("0")
        ),
    }
