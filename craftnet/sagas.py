"""Step log and recovery sweep for multi-write workflows.

Job creation, job approval, final-submission approval and job deletion each
touch several rows with no transaction around them. Each run records an
``in_flight`` marker in ``workflow_sagas`` and advances its ``step`` as
writes land. If the process dies mid-way, :func:`recover_stalled_sagas`
finds markers that stopped moving and either replays the remaining steps
or compensates the ones that already happened. Every replayed money
movement reuses the reference from the original run, so the unique
``(reference, transaction_type)`` key makes recovery safe to repeat.

Marker writes are best-effort: losing a marker never aborts the workflow.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from supabase import Client

from .config import get_settings
from .database import (
    FINAL_SUBMISSIONS_TABLE,
    JOB_REQUESTS_TABLE,
    RPC_PROCESS_JOB_PAYOUT,
    WORKFLOW_SAGAS_TABLE,
    call_rpc,
    execute,
    fetch_all,
    fetch_one,
)
from .errors import AlreadyProcessed, MarketplaceError
from .logging_config import get_logger, log_saga_event
from .models import JobStatus, TransactionType

logger = get_logger("craftnet.sagas")


class SagaKind(str, Enum):
    create_job = "create_job"
    review_approval = "review_approval"
    final_approval = "final_approval"
    delete_job = "delete_job"


class SagaStatus(str, Enum):
    in_flight = "in_flight"
    completed = "completed"
    compensated = "compensated"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def hold_reversal_reference(hold_reference: str) -> str:
    """Refund reference paired with an escrow hold that produced no job."""
    return f"{hold_reference}-REVERSAL"


class SagaLog:
    """Persisted progress marker for one workflow run."""

    def __init__(self, db: Client, kind: SagaKind, job_id: str | None = None, payload: dict | None = None):
        self.db = db
        self.kind = kind
        self.job_id = job_id
        self.payload: dict[str, Any] = dict(payload or {})
        self.step = "started"
        self.id: str | None = None

    @classmethod
    async def start(
        cls,
        db: Client,
        kind: SagaKind,
        job_id: str | None = None,
        payload: dict | None = None,
    ) -> "SagaLog":
        saga = cls(db, kind, job_id, payload)
        now = _now().isoformat()
        try:
            result = await execute(
                db.table(WORKFLOW_SAGAS_TABLE).insert(
                    {
                        "kind": kind.value,
                        "job_id": job_id,
                        "step": saga.step,
                        "status": SagaStatus.in_flight.value,
                        "payload": saga.payload,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            )
            if result.data:
                saga.id = result.data[0]["id"]
        except MarketplaceError as e:
            logger.warning("Could not record %s saga for job %s: %s", kind.value, job_id, e)
        log_saga_event(kind.value, saga.step, job_id, "started")
        return saga

    async def advance(self, step: str, **payload) -> None:
        self.step = step
        self.payload.update(payload)
        if "job_id" in payload:
            self.job_id = payload["job_id"]
        await self._write({"step": step, "payload": self.payload, "job_id": self.job_id})
        log_saga_event(self.kind.value, step, self.job_id, "advanced")

    async def complete(self) -> None:
        await self._write({"status": SagaStatus.completed.value})
        log_saga_event(self.kind.value, self.step, self.job_id, "completed")

    async def compensated(self, reason: str) -> None:
        self.payload["compensation_reason"] = reason
        await self._write({"status": SagaStatus.compensated.value, "payload": self.payload})
        log_saga_event(self.kind.value, self.step, self.job_id, f"compensated ({reason})")

    async def _write(self, update: dict) -> None:
        if self.id is None:
            return
        update["updated_at"] = _now().isoformat()
        try:
            await execute(self.db.table(WORKFLOW_SAGAS_TABLE).update(update).eq("id", self.id))
        except MarketplaceError as e:
            logger.warning("Could not update saga %s: %s", self.id, e)

    @classmethod
    def from_row(cls, db: Client, row: dict) -> "SagaLog":
        saga = cls(db, SagaKind(row["kind"]), row.get("job_id"), row.get("payload") or {})
        saga.id = row["id"]
        saga.step = row.get("step") or "started"
        return saga


# =============================================================================
# Recovery
# =============================================================================


async def _job_status(db: Client, job_id: str | None) -> str | None:
    if not job_id:
        return None
    row = await fetch_one(db.table(JOB_REQUESTS_TABLE).select("status").eq("id", job_id).limit(1))
    return row["status"] if row else None


async def _recover_create_job(saga: SagaLog) -> str:
    from .wallet import WalletLedger

    if saga.step == "job_created":
        await saga.complete()
        return SagaStatus.completed.value

    hold_reference = saga.payload["reference"]
    if not await WalletLedger.has_transaction(saga.db, hold_reference, TransactionType.escrow_hold):
        await saga.compensated("no funds were held")
        return SagaStatus.compensated.value

    try:
        await WalletLedger.credit(
            saga.db,
            saga.payload["client_id"],
            Decimal(str(saga.payload["amount"])),
            transaction_type=TransactionType.escrow_refund,
            reference=hold_reversal_reference(hold_reference),
            description="Escrow returned: job was never created",
            metadata={"escrow_reference": hold_reference, "refund_type": "job_creation_failed"},
        )
    except AlreadyProcessed:
        pass
    await saga.compensated("escrow hold reversed")
    return SagaStatus.compensated.value


async def _recover_review_approval(saga: SagaLog) -> str:
    from .jobs.lifecycle import pay_apprentice

    if saga.step == "job_completed" and await _job_status(saga.db, saga.job_id) == JobStatus.completed.value:
        await pay_apprentice(
            saga.db,
            saga.job_id,
            saga.payload["apprentice_id"],
            Decimal(str(saga.payload["amount"])),
            saga.payload.get("job_title", ""),
        )
        await saga.advance("payout_done")
    await saga.complete()
    return SagaStatus.completed.value


async def _recover_final_approval(saga: SagaLog) -> str:
    db = saga.db
    submission_id = saga.payload["submission_id"]
    status = await _job_status(db, saga.job_id)

    if saga.step in ("started", "submission_approved") and status != JobStatus.completed.value:
        await execute(
            db.table(FINAL_SUBMISSIONS_TABLE)
            .update({"status": saga.payload["previous_status"], "updated_at": _now().isoformat()})
            .eq("id", submission_id)
        )
        await saga.compensated("job was not completed; submission reverted")
        return SagaStatus.compensated.value

    if saga.step in ("submission_approved", "job_completed"):
        result = await call_rpc(
            db,
            RPC_PROCESS_JOB_PAYOUT,
            {
                "p_final_submission_id": submission_id,
                "p_job_request_id": saga.job_id,
                "p_apprentice_id": saga.payload["apprentice_id"],
                "p_payer_id": saga.payload["payer_id"],
            },
        )
        if not result or not result.get("success"):
            raise MarketplaceError(f"Payout replay for submission {submission_id} was unsuccessful")
        await saga.advance("payout_done")

    await saga.complete()
    return SagaStatus.completed.value


async def _recover_delete_job(saga: SagaLog) -> str:
    from .wallet import WalletLedger

    if saga.step != "job_deleted":
        if await _job_status(saga.db, saga.job_id) is not None:
            await saga.compensated("job still exists; nothing to refund")
            return SagaStatus.compensated.value
        # Row vanished after the marker stopped moving; refund below
    amount = Decimal(str(saga.payload["amount"]))
    if amount <= 0:
        await saga.complete()
        return SagaStatus.completed.value
    try:
        await WalletLedger.credit(
            saga.db,
            saga.payload["client_id"],
            amount,
            transaction_type=TransactionType.escrow_refund,
            reference=saga.payload["reference"],
            description=f"Refund for deleted job: {saga.payload.get('job_title', '')}",
            metadata={"job_request_id": saga.job_id, "refund_type": "job_deletion"},
        )
    except AlreadyProcessed:
        pass
    await saga.complete()
    return SagaStatus.completed.value


_RECOVERY = {
    SagaKind.create_job: _recover_create_job,
    SagaKind.review_approval: _recover_review_approval,
    SagaKind.final_approval: _recover_final_approval,
    SagaKind.delete_job: _recover_delete_job,
}


async def recover_stalled_sagas(db: Client, older_than_seconds: int | None = None) -> dict[str, int]:
    """Replay or compensate sagas whose marker has not moved for a while.

    Returns counts per outcome: ``completed``, ``compensated`` and ``failed``.
    A saga that fails recovery stays ``in_flight`` and is retried next sweep.
    """
    if older_than_seconds is None:
        older_than_seconds = get_settings().saga_stall_seconds
    cutoff = (_now() - timedelta(seconds=older_than_seconds)).isoformat()

    rows = await fetch_all(
        db.table(WORKFLOW_SAGAS_TABLE)
        .select("*")
        .eq("status", SagaStatus.in_flight.value)
        .lt("updated_at", cutoff)
        .order("created_at")
    )

    summary = {SagaStatus.completed.value: 0, SagaStatus.compensated.value: 0, "failed": 0}
    for row in rows:
        saga = SagaLog.from_row(db, row)
        try:
            outcome = await _RECOVERY[saga.kind](saga)
        except (MarketplaceError, KeyError) as e:
            logger.error(f"Recovery of saga {saga.id} ({saga.kind.value}) failed: {type(e).__name__}: {e}")
            summary["failed"] += 1
            continue
        summary[outcome] += 1

    if rows:
        logger.info("Saga recovery examined %d stalled sagas: %s", len(rows), summary)
    return summary
