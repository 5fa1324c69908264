"""Tests for saga markers and the recovery sweep."""

from decimal import Decimal

import pytest

from craftnet.sagas import SagaKind, SagaLog, SagaStatus, recover_stalled_sagas

STALE = "2020-01-01T00:00:00+00:00"


def _seed_saga(db, kind, step, job_id=None, **payload):
    return db.seed(
        "workflow_sagas",
        {
            "kind": kind.value,
            "step": step,
            "status": "in_flight",
            "job_id": job_id,
            "payload": payload,
            "updated_at": STALE,
        },
    )[0]


def _balance(db, user_id):
    return Decimal(str(db.rows("user_wallets", user_id=user_id)[0]["balance_ngn"]))


class TestSagaLog:
    @pytest.mark.asyncio
    async def test_records_progress(self, db):
        saga = await SagaLog.start(db, SagaKind.delete_job, job_id="job-1", payload={"amount": "5000"})
        await saga.advance("dependents_deleted")
        await saga.complete()

        [row] = db.rows("workflow_sagas")
        assert row["step"] == "dependents_deleted"
        assert row["status"] == "completed"
        assert row["payload"] == {"amount": "5000"}

    @pytest.mark.asyncio
    async def test_compensation_reason_is_kept(self, db):
        saga = await SagaLog.start(db, SagaKind.create_job)
        await saga.compensated("InsufficientFunds")
        [row] = db.rows("workflow_sagas")
        assert row["status"] == "compensated"
        assert row["payload"]["compensation_reason"] == "InsufficientFunds"

    @pytest.mark.asyncio
    async def test_marker_failure_does_not_raise(self, db):
        db.fail("workflow_sagas", "insert")
        saga = await SagaLog.start(db, SagaKind.create_job)
        assert saga.id is None
        await saga.advance("funds_debited")
        await saga.complete()
        assert db.rows("workflow_sagas") == []


class TestRecovery:
    @pytest.mark.asyncio
    async def test_fresh_sagas_are_left_alone(self, db):
        await SagaLog.start(db, SagaKind.create_job, payload={"reference": "JOB-ESCROW-1-a"})
        summary = await recover_stalled_sagas(db)
        assert summary == {"completed": 0, "compensated": 0, "failed": 0}
        assert db.rows("workflow_sagas")[0]["status"] == "in_flight"

    @pytest.mark.asyncio
    async def test_create_job_reverses_orphaned_hold(self, db, seed_wallet):
        seed_wallet("client-1", 5000)
        db.seed(
            "wallet_transactions",
            {"user_id": "client-1", "transaction_type": "escrow_hold", "amount_ngn": "-5000", "reference": "JOB-ESCROW-1-a"},
        )
        _seed_saga(db, SagaKind.create_job, "funds_debited", client_id="client-1", amount="5000", reference="JOB-ESCROW-1-a")

        summary = await recover_stalled_sagas(db)
        assert summary["compensated"] == 1
        assert _balance(db, "client-1") == Decimal("10000")
        assert db.rows("wallet_transactions", reference="JOB-ESCROW-1-a-REVERSAL")

        # Second sweep finds nothing in flight
        assert await recover_stalled_sagas(db) == {"completed": 0, "compensated": 0, "failed": 0}
        assert _balance(db, "client-1") == Decimal("10000")

    @pytest.mark.asyncio
    async def test_create_job_without_hold(self, db):
        _seed_saga(db, SagaKind.create_job, "started", client_id="client-1", amount="5000", reference="JOB-ESCROW-2-a")
        summary = await recover_stalled_sagas(db)
        assert summary["compensated"] == 1
        assert db.rows("wallet_transactions") == []

    @pytest.mark.asyncio
    async def test_create_job_that_finished(self, db):
        _seed_saga(db, SagaKind.create_job, "job_created", job_id="job-1", reference="JOB-ESCROW-3-a")
        assert (await recover_stalled_sagas(db))["completed"] == 1

    @pytest.mark.asyncio
    async def test_delete_job_issues_missing_refund(self, db, seed_wallet):
        seed_wallet("client-1", 0)
        _seed_saga(
            db, SagaKind.delete_job, "job_deleted", job_id="job-1",
            client_id="client-1", amount="5000", reference="JOB-DELETE-job-1-1", job_title="Logo",
        )
        summary = await recover_stalled_sagas(db)
        assert summary["completed"] == 1
        assert _balance(db, "client-1") == Decimal("5000")

    @pytest.mark.asyncio
    async def test_delete_job_refund_already_issued(self, db, seed_wallet):
        seed_wallet("client-1", 5000)
        db.seed(
            "wallet_transactions",
            {"user_id": "client-1", "transaction_type": "escrow_refund", "amount_ngn": "5000", "reference": "JOB-DELETE-job-1-1"},
        )
        _seed_saga(
            db, SagaKind.delete_job, "job_deleted", job_id="job-1",
            client_id="client-1", amount="5000", reference="JOB-DELETE-job-1-1",
        )
        await recover_stalled_sagas(db)
        assert _balance(db, "client-1") == Decimal("5000")

    @pytest.mark.asyncio
    async def test_delete_job_without_escrow(self, db):
        _seed_saga(
            db, SagaKind.delete_job, "job_deleted", job_id="job-1",
            client_id="client-1", amount="0", reference="JOB-DELETE-job-1-1",
        )
        summary = await recover_stalled_sagas(db)
        assert summary == {"completed": 1, "compensated": 0, "failed": 0}
        assert db.rows("wallet_transactions") == []
        assert db.rows("workflow_sagas")[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_delete_job_with_surviving_row(self, db, seed_job):
        job = seed_job()
        _seed_saga(
            db, SagaKind.delete_job, "dependents_deleted", job_id=job["id"],
            client_id="client-1", amount="5000", reference="JOB-DELETE-x-1",
        )
        summary = await recover_stalled_sagas(db)
        assert summary["compensated"] == 1
        assert db.rows("wallet_transactions") == []

    @pytest.mark.asyncio
    async def test_review_approval_pays_completed_job(self, db, seed_job):
        job = seed_job(status="completed", assigned_apprentice_id="apprentice-1")
        _seed_saga(
            db, SagaKind.review_approval, "job_completed", job_id=job["id"],
            apprentice_id="apprentice-1", amount="5000", job_title="Logo design",
        )
        summary = await recover_stalled_sagas(db)
        assert summary["completed"] == 1
        assert _balance(db, "apprentice-1") == Decimal("5000")
        assert db.rows("wallet_transactions", reference=f"JOB-PAYMENT-{job['id']}")

    @pytest.mark.asyncio
    async def test_final_approval_reverts_submission(self, db, seed_job):
        job = seed_job(status="pending_review", assigned_apprentice_id="apprentice-1")
        [submission] = db.seed(
            "job_final_submissions",
            {"job_request_id": job["id"], "apprentice_id": "apprentice-1", "status": "approved"},
        )
        _seed_saga(
            db, SagaKind.final_approval, "submission_approved", job_id=job["id"],
            submission_id=submission["id"], previous_status="pending_review",
            apprentice_id="apprentice-1", payer_id="client-1",
        )
        summary = await recover_stalled_sagas(db)
        assert summary["compensated"] == 1
        assert db.rows("job_final_submissions", id=submission["id"])[0]["status"] == "pending_review"

    @pytest.mark.asyncio
    async def test_final_approval_replays_payout(self, db, seed_job):
        job = seed_job(status="completed", assigned_apprentice_id="apprentice-1")
        _seed_saga(
            db, SagaKind.final_approval, "job_completed", job_id=job["id"],
            submission_id="sub-1", previous_status="pending_review",
            apprentice_id="apprentice-1", payer_id="client-1",
        )

        summary = await recover_stalled_sagas(db)
        assert summary["failed"] == 1
        assert db.rows("workflow_sagas")[0]["status"] == SagaStatus.in_flight.value

        db.rpc_handlers["process_job_payout"] = lambda p: {"success": True, "transaction_id": "t"}
        summary = await recover_stalled_sagas(db)
        assert summary["completed"] == 1
        assert db.rpc_calls[-1][1]["p_final_submission_id"] == "sub-1"
