"""Admin dashboard snapshot.

Recomputed on every call from independent reads issued concurrently. A read
that fails contributes zero (or nothing to the activity feed) instead of
failing the whole snapshot.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, TypeVar

from dateutil.parser import parse
from pydantic import BaseModel, Field, field_validator
from supabase import Client

from ..config import Settings, get_settings
from ..database import (
    DISPUTES_TABLE,
    FUNDING_REQUESTS_TABLE,
    JOB_ESCROW_TABLE,
    JOB_REQUESTS_TABLE,
    PROFILES_TABLE,
    SUBSCRIPTION_PAYMENT_REQUESTS_TABLE,
    WALLET_TRANSACTIONS_TABLE,
    WITHDRAWAL_REQUESTS_TABLE,
    count_rows,
    fetch_all,
)
from ..logging_config import get_logger
from ..models import JobStatus
from ..notifications import format_naira

logger = get_logger("craftnet.admin")

T = TypeVar("T")

PAYMENT_REQUEST_TABLES = (
    FUNDING_REQUESTS_TABLE,
    WITHDRAWAL_REQUESTS_TABLE,
    SUBSCRIPTION_PAYMENT_REQUESTS_TABLE,
)


class ActivityItem(BaseModel):
    type: str
    title: str
    created_at: datetime
    icon: str
    time_ago: str = ""

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v


class DashboardSnapshot(BaseModel):
    total_users: int = 0
    active_jobs: int = 0
    pending_payments: int = 0
    total_escrow: Decimal = Decimal("0")
    recent_activity: list[ActivityItem] = Field(default_factory=list)


def format_time_ago(timestamp: datetime | str, now: datetime | None = None) -> str:
    """Render a timestamp as "Just now", "5 minutes ago", "2 days ago"..."""
    when = parse(timestamp) if isinstance(timestamp, str) else timestamp
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = int((now - when).total_seconds())

    if seconds < 60:
        return "Just now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            n = seconds // size
            return f"{n} {unit}{'s' if n > 1 else ''} ago"
    return "Just now"


async def _degrade(label: str, coro: Awaitable[T], default: T) -> T:
    try:
        return await coro
    except Exception as e:
        logger.warning(f"Dashboard read '{label}' failed: {type(e).__name__}: {e}")
        return default


# =============================================================================
# Sources
# =============================================================================


async def _count_users(db: Client) -> int:
    return await count_rows(db.table(PROFILES_TABLE).select("id", count="exact"))


async def _count_active_jobs(db: Client) -> int:
    return await count_rows(
        db.table(JOB_REQUESTS_TABLE).select("id", count="exact").eq("status", JobStatus.in_progress.value)
    )


async def _count_pending(db: Client, table: str) -> int:
    return await count_rows(db.table(table).select("id", count="exact").eq("status", "pending"))


async def _total_escrow(db: Client) -> Decimal:
    rows = await fetch_all(db.table(JOB_ESCROW_TABLE).select("amount_ngn").eq("status", "held"))
    return sum((Decimal(str(r.get("amount_ngn") or 0)) for r in rows), Decimal("0"))


async def _recent_users(db: Client, limit: int) -> list[ActivityItem]:
    rows = await fetch_all(
        db.table(PROFILES_TABLE).select("id, name, email, created_at").order("created_at", desc=True).limit(limit)
    )
    return [
        ActivityItem(
            type="user",
            title=f"New user registration: {r.get('name') or r.get('email')}",
            created_at=r["created_at"],
            icon="user-plus",
        )
        for r in rows
        if r.get("created_at")
    ]


async def _recent_jobs(db: Client, limit: int) -> list[ActivityItem]:
    rows = await fetch_all(
        db.table(JOB_REQUESTS_TABLE)
        .select("id, title, status, created_at, updated_at")
        .order("created_at", desc=True)
        .limit(limit)
    )
    return [
        ActivityItem(
            type="job",
            title=f"Job {r.get('status')}: {r.get('title')}",
            created_at=r.get("updated_at") or r["created_at"],
            icon="briefcase",
        )
        for r in rows
        if r.get("updated_at") or r.get("created_at")
    ]


async def _recent_funding(db: Client, limit: int) -> list[ActivityItem]:
    rows = await fetch_all(
        db.table(FUNDING_REQUESTS_TABLE).select("id, amount_ngn, created_at").order("created_at", desc=True).limit(limit)
    )
    return [
        ActivityItem(
            type="payment",
            title=f"New funding request: {format_naira(r.get('amount_ngn') or 0)}",
            created_at=r["created_at"],
            icon="credit-card",
        )
        for r in rows
        if r.get("created_at")
    ]


async def _recent_disputes(db: Client, limit: int) -> list[ActivityItem]:
    rows = await fetch_all(
        db.table(DISPUTES_TABLE).select("id, type, status, created_at").order("created_at", desc=True).limit(limit)
    )
    return [
        ActivityItem(
            type="dispute",
            title=f"Dispute {r.get('status')}: {r.get('type') or 'payment'}",
            created_at=r["created_at"],
            icon="gavel",
        )
        for r in rows
        if r.get("created_at")
    ]


async def _recent_transactions(db: Client, limit: int) -> list[ActivityItem]:
    rows = await fetch_all(
        db.table(WALLET_TRANSACTIONS_TABLE)
        .select("id, transaction_type, amount_ngn, created_at")
        .order("created_at", desc=True)
        .limit(limit)
    )
    return [
        ActivityItem(
            type="transaction",
            title=f"{str(r.get('transaction_type')).replace('_', ' ').capitalize()}: "
            f"{format_naira(abs(Decimal(str(r.get('amount_ngn') or 0))))}",
            created_at=r["created_at"],
            icon="exchange-alt",
        )
        for r in rows
        if r.get("created_at")
    ]


# =============================================================================
# Snapshot
# =============================================================================


async def get_dashboard_snapshot(
    db: Client,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> DashboardSnapshot:
    settings = settings or get_settings()
    per_source = settings.recent_activity_per_source
    now = now or datetime.now(timezone.utc)

    (
        total_users,
        active_jobs,
        total_escrow,
        *rest,
    ) = await asyncio.gather(
        _degrade("users", _count_users(db), 0),
        _degrade("active_jobs", _count_active_jobs(db), 0),
        _degrade("escrow", _total_escrow(db), Decimal("0")),
        *(_degrade(f"pending:{t}", _count_pending(db, t), 0) for t in PAYMENT_REQUEST_TABLES),
        _degrade("recent_users", _recent_users(db, per_source), []),
        _degrade("recent_jobs", _recent_jobs(db, per_source), []),
        _degrade("recent_funding", _recent_funding(db, per_source), []),
        _degrade("recent_disputes", _recent_disputes(db, per_source), []),
        _degrade("recent_transactions", _recent_transactions(db, per_source), []),
    )
    pending_counts = rest[: len(PAYMENT_REQUEST_TABLES)]
    feeds = rest[len(PAYMENT_REQUEST_TABLES):]

    activity = sorted(
        (item for feed in feeds for item in feed),
        key=lambda item: item.created_at,
        reverse=True,
    )[: settings.recent_activity_limit]
    for item in activity:
        item.time_ago = format_time_ago(item.created_at, now)

    return DashboardSnapshot(
        total_users=total_users,
        active_jobs=active_jobs,
        pending_payments=sum(pending_counts),
        total_escrow=total_escrow,
        recent_activity=activity,
    )
