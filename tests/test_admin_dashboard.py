"""Tests for the admin dashboard snapshot."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from craftnet.admin import format_time_ago, get_dashboard_snapshot

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ago(**kwargs) -> str:
    return (NOW - timedelta(**kwargs)).isoformat()


class TestFormatTimeAgo:
    @pytest.mark.parametrize(
        "delta, expected",
        [
            (timedelta(seconds=30), "Just now"),
            (timedelta(minutes=1), "1 minute ago"),
            (timedelta(minutes=45), "45 minutes ago"),
            (timedelta(hours=1, minutes=5), "1 hour ago"),
            (timedelta(hours=5), "5 hours ago"),
            (timedelta(days=3), "3 days ago"),
        ],
    )
    def test_buckets(self, delta, expected):
        assert format_time_ago(NOW - delta, NOW) == expected

    def test_accepts_strings_and_naive_times(self):
        assert format_time_ago("2026-03-01T11:00:00", NOW) == "1 hour ago"
        assert format_time_ago("2026-03-01T11:58:00+00:00", NOW) == "2 minutes ago"


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_counts_and_totals(self, db, seed_job, seed_profile):
        seed_profile("u-1", created_at=_ago(days=2))
        seed_profile("u-2", created_at=_ago(days=1))
        seed_job(status="in_progress", created_at=_ago(hours=5))
        seed_job(status="open", created_at=_ago(hours=4))
        db.seed(
            "job_escrow",
            {"job_id": "j-1", "amount_ngn": "5000", "status": "held"},
            {"job_id": "j-2", "amount_ngn": "2500.50", "status": "held"},
            {"job_id": "j-3", "amount_ngn": "9000", "status": "released"},
        )
        db.seed("funding_requests", {"status": "pending", "amount_ngn": "1000", "created_at": _ago(minutes=3)})
        db.seed("wallet_withdrawal_requests", {"status": "pending"}, {"status": "approved"})
        db.seed("subscription_payment_requests", {"status": "pending"})

        snapshot = await get_dashboard_snapshot(db, now=NOW)
        assert snapshot.total_users == 2
        assert snapshot.active_jobs == 1
        assert snapshot.pending_payments == 3
        assert snapshot.total_escrow == Decimal("7500.50")

    @pytest.mark.asyncio
    async def test_activity_feed_is_merged_newest_first(self, db, seed_profile, seed_job):
        seed_profile("u-1", name="Chi", created_at=_ago(days=1))
        seed_job(title="Logo", status="open", created_at=_ago(hours=2), updated_at=_ago(hours=2))
        db.seed("funding_requests", {"status": "pending", "amount_ngn": "1000", "created_at": _ago(minutes=3)})
        db.seed("disputes", {"type": "quality", "status": "open", "created_at": _ago(seconds=10)})
        db.seed(
            "wallet_transactions",
            {"transaction_type": "escrow_hold", "amount_ngn": "-5000", "created_at": _ago(hours=1)},
        )

        snapshot = await get_dashboard_snapshot(db, now=NOW)
        feed = snapshot.recent_activity
        assert [item.type for item in feed] == ["dispute", "payment", "transaction", "job", "user"]
        assert feed[0].time_ago == "Just now"
        assert feed[1].title == "New funding request: ₦1,000.00"
        assert feed[2].title == "Escrow hold: ₦5,000.00"
        assert feed[3].title == "Job open: Logo"
        assert feed[4].title == "New user registration: Chi"
        assert feed[4].time_ago == "1 day ago"

    @pytest.mark.asyncio
    async def test_feed_is_capped(self, db, seed_profile):
        for i in range(5):
            seed_profile(f"u-{i}", created_at=_ago(minutes=i + 1))
        for i in range(5):
            db.seed("disputes", {"status": "open", "created_at": _ago(minutes=10 + i)})
        for i in range(5):
            db.seed("funding_requests", {"status": "pending", "amount_ngn": "1", "created_at": _ago(minutes=20 + i)})

        snapshot = await get_dashboard_snapshot(db, now=NOW)
        assert len(snapshot.recent_activity) == 10

    @pytest.mark.asyncio
    async def test_failed_reads_degrade_to_zero(self, db, seed_profile, seed_job):
        seed_profile("u-1", created_at=_ago(days=1))
        seed_job(status="in_progress")
        db.fail("job_requests", "select", times=2)
        db.fail("job_escrow", "select")

        snapshot = await get_dashboard_snapshot(db, now=NOW)
        assert snapshot.total_users == 1
        assert snapshot.active_jobs == 0
        assert snapshot.total_escrow == Decimal("0")
        assert [item.type for item in snapshot.recent_activity] == ["user"]

    @pytest.mark.asyncio
    async def test_empty_database(self, db):
        snapshot = await get_dashboard_snapshot(db, now=NOW)
        assert snapshot.total_users == 0
        assert snapshot.pending_payments == 0
        assert snapshot.recent_activity == []
