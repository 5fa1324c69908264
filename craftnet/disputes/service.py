"""Dispute workflow.

    open ──resolve(resolution)──▶ resolved
      └───close─────────────────▶ closed

Either party to a job can raise a dispute; only an admin can move it out of
``open``. Resolving records which side the decision favours. Moving the
escrow afterwards is a manual follow-up and is not done here.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone

from supabase import Client

from ..database import (
    DISPUTES_TABLE,
    JOB_ESCROW_TABLE,
    PROFILES_TABLE,
    execute,
    fetch_all,
    fetch_one,
)
from ..errors import AuthorizationError, InvalidTransitionError, MarketplaceError, NotFoundError, ValidationError
from ..jobs.lifecycle import get_job_request
from ..logging_config import get_logger
from ..models import Dispute, DisputeCreate, DisputeResolution, DisputeStatus, EvidenceFile
from ..profiles import require_admin
from ..storage import DISPUTE_EVIDENCE_BUCKET, signed_url, upload_dispute_evidence

logger = get_logger("craftnet.disputes")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _held_escrow_amount(db: Client, job_id: str):
    row = await fetch_one(
        db.table(JOB_ESCROW_TABLE).select("amount_ngn").eq("job_id", job_id).eq("status", "held").limit(1)
    )
    return (row or {}).get("amount_ngn") or 0


async def submit_dispute(
    db: Client,
    job_id: str,
    user_id: str,
    data: DisputeCreate,
    evidence: list[EvidenceFile] | None = None,
) -> Dispute:
    """Open a dispute on a job as its client or assigned apprentice.

    Evidence files that fail to upload are skipped; the dispute is still
    created with whatever uploaded.
    """
    job = await get_job_request(db, job_id)
    is_member = job.client_id == user_id
    is_apprentice = job.assigned_apprentice_id == user_id
    if not is_member and not is_apprentice:
        raise AuthorizationError("You are not authorized to dispute this job")

    amount = await _held_escrow_amount(db, job_id)

    references = []
    for file in evidence or []:
        try:
            references.append(
                await upload_dispute_evidence(db, user_id, file.filename, file.content, file.content_type)
            )
        except MarketplaceError as e:
            logger.warning(f"Skipping evidence file {file.filename} for job {job_id}: {e}")

    result = await execute(
        db.table(DISPUTES_TABLE).insert(
            {
                "job_id": job_id,
                "member_id": job.client_id,
                "apprentice_id": job.assigned_apprentice_id,
                "raised_by": user_id,
                "type": data.type or "payment",
                "status": DisputeStatus.open.value,
                "description": data.description,
                "evidence": json.dumps(references) if references else None,
                "amount": str(amount),
                "created_at": _now(),
            }
        )
    )
    dispute = Dispute(**result.data[0])
    logger.info(f"Dispute opened | id={dispute.id} | job={job_id} | raised_by={user_id}")
    return dispute


async def get_dispute(db: Client, dispute_id: str) -> Dispute:
    row = await fetch_one(db.table(DISPUTES_TABLE).select("*").eq("id", dispute_id).limit(1))
    if row is None:
        raise NotFoundError("Dispute not found")
    return Dispute(**row)


async def update_dispute_status(
    db: Client,
    dispute_id: str,
    status: DisputeStatus,
    admin_id: str,
    admin_notes: str | None = None,
    resolution: DisputeResolution | None = None,
) -> Dispute:
    """Resolve or close an open dispute (admin only).

    Raises:
        AuthorizationError: caller's profile role is not admin.
        InvalidTransitionError: the dispute is no longer open.
        ValidationError: resolve without a resolution, or close with one.
    """
    await require_admin(db, admin_id)

    if status == DisputeStatus.open:
        raise ValidationError("Dispute can only be resolved or closed", field="dispute-status")
    if status == DisputeStatus.resolved and resolution is None:
        raise ValidationError("A resolution is required to resolve a dispute", field="dispute-resolution")
    if status == DisputeStatus.closed and resolution is not None:
        raise ValidationError("A closed dispute cannot carry a resolution", field="dispute-resolution")

    changes = {
        "status": status.value,
        "resolved_at": _now(),
        "resolved_by": admin_id,
        "updated_at": _now(),
    }
    if admin_notes:
        changes["admin_notes"] = admin_notes
    if resolution is not None:
        changes["resolution"] = resolution.value

    result = await execute(
        db.table(DISPUTES_TABLE)
        .update(changes)
        .eq("id", dispute_id)
        .eq("status", DisputeStatus.open.value)
    )
    if not result.data:
        current = await get_dispute(db, dispute_id)
        raise InvalidTransitionError(f"Dispute is already {current.status.value}")

    dispute = Dispute(**result.data[0])
    logger.info(f"Dispute {status.value} | id={dispute_id} | admin={admin_id} | resolution={changes.get('resolution')}")
    if resolution is not None:
        logger.warning(
            "Dispute %s resolved %s for job %s: escrow disposition must be completed manually",
            dispute_id,
            resolution.value,
            dispute.job_id,
        )
    return dispute


async def get_user_disputes(db: Client, user_id: str) -> list[Dispute]:
    rows = await fetch_all(
        db.table(DISPUTES_TABLE)
        .select("*")
        .or_(f"member_id.eq.{user_id},apprentice_id.eq.{user_id}")
        .order("created_at", desc=True)
    )
    return [Dispute(**r) for r in rows]


async def get_all_disputes(db: Client, admin_id: str) -> list[dict]:
    """Every dispute, newest first, with party names attached (admin only)."""
    await require_admin(db, admin_id)
    rows = await fetch_all(db.table(DISPUTES_TABLE).select("*").order("created_at", desc=True))

    party_ids = sorted(
        {r[k] for r in rows for k in ("member_id", "apprentice_id", "raised_by") if r.get(k)}
    )
    names = {}
    if party_ids:
        profiles = await fetch_all(db.table(PROFILES_TABLE).select("id, name, email").in_("id", party_ids))
        names = {p["id"]: p for p in profiles}

    disputes = []
    for row in rows:
        entry = Dispute(**row).model_dump(mode="json")
        entry["member"] = names.get(row.get("member_id"))
        entry["apprentice"] = names.get(row.get("apprentice_id"))
        entry["raised_by_profile"] = names.get(row.get("raised_by"))
        disputes.append(entry)
    return disputes


def dispute_stats(disputes: list[Dispute | dict]) -> dict[str, int]:
    """Count disputes per status. Accepts models or serialized rows."""
    counts = Counter(d["status"] if isinstance(d, dict) else d.status.value for d in disputes)
    stats = {s.value: counts.get(s.value, 0) for s in DisputeStatus}
    stats["total"] = len(disputes)
    return stats


async def evidence_signed_url(db: Client, reference: str, expires_in: int | None = None) -> str:
    if not reference:
        raise ValidationError("Invalid evidence reference provided")
    return await signed_url(db, DISPUTE_EVIDENCE_BUCKET, reference, expires_in)
