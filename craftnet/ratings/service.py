"""Ratings a client leaves for the apprentice on a completed job."""

from __future__ import annotations

from datetime import datetime, timezone

from supabase import Client

from ..database import (
    JOB_REQUESTS_TABLE,
    PROFILES_TABLE,
    RATINGS_TABLE,
    RPC_APPRENTICE_RATING_DETAILS,
    RPC_CAN_RATE_APPRENTICE,
    call_rpc,
    execute,
    fetch_all,
    fetch_one,
)
from ..errors import AlreadyProcessed, AuthorizationError, RemoteFailure, ValidationError
from ..logging_config import get_logger
from ..models import JobStatus, Rating

logger = get_logger("craftnet.ratings")

EMPTY_RATING_DETAILS = {
    "total_ratings": 0,
    "average_rating": 0.0,
    "ratings_5_star": 0,
    "recent_ratings": [],
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_rating(rating: int) -> None:
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5 stars", field="rating-value")


class RatingService:
    """Stateless service; every method receives a Supabase `Client`."""

    @staticmethod
    async def submit_rating(
        db: Client,
        job_id: str,
        rating: int,
        comment: str | None,
        rater_id: str,
    ) -> Rating:
        """Rate the apprentice on a completed job the rater owns.

        Raises:
            ValidationError: rating outside 1-5, or rating oneself.
            AuthorizationError: job missing, not owned by the rater or not completed.
            AlreadyProcessed: the rater already rated this job.
        """
        validate_rating(rating)

        job = await fetch_one(
            db.table(JOB_REQUESTS_TABLE)
            .select("assigned_apprentice_id, client_id, status")
            .eq("id", job_id)
            .eq("client_id", rater_id)
            .eq("status", JobStatus.completed.value)
            .limit(1)
        )
        if job is None:
            raise AuthorizationError("Job not found or unauthorized")
        ratee_id = job.get("assigned_apprentice_id")
        if not ratee_id:
            raise ValidationError("This job has no apprentice to rate")
        if ratee_id == rater_id:
            raise ValidationError("You cannot rate yourself")

        existing = await fetch_one(
            db.table(RATINGS_TABLE).select("id").eq("job_request_id", job_id).eq("rater_id", rater_id).limit(1)
        )
        if existing:
            raise AlreadyProcessed("You have already rated this job")

        try:
            result = await execute(
                db.table(RATINGS_TABLE).insert(
                    {
                        "job_request_id": job_id,
                        "rater_id": rater_id,
                        "ratee_id": ratee_id,
                        "rating": rating,
                        "comment": comment or None,
                    }
                )
            )
        except AlreadyProcessed:
            raise AlreadyProcessed("You have already rated this job")
        logger.info(f"Rating submitted | job={job_id} | rater={rater_id} | rating={rating}")
        return Rating(**result.data[0])

    @staticmethod
    async def _require_owner(db: Client, rating_id: str, rater_id: str) -> None:
        row = await fetch_one(
            db.table(RATINGS_TABLE).select("id").eq("id", rating_id).eq("rater_id", rater_id).limit(1)
        )
        if row is None:
            raise AuthorizationError("Rating not found or unauthorized")

    @staticmethod
    async def update_rating(
        db: Client,
        rating_id: str,
        rating: int,
        comment: str | None,
        rater_id: str,
    ) -> Rating:
        validate_rating(rating)
        await RatingService._require_owner(db, rating_id, rater_id)
        result = await execute(
            db.table(RATINGS_TABLE)
            .update({"rating": rating, "comment": comment or None, "updated_at": _now()})
            .eq("id", rating_id)
        )
        return Rating(**result.data[0])

    @staticmethod
    async def delete_rating(db: Client, rating_id: str, rater_id: str) -> bool:
        await RatingService._require_owner(db, rating_id, rater_id)
        await execute(db.table(RATINGS_TABLE).delete().eq("id", rating_id))
        logger.info(f"Rating deleted | id={rating_id} | rater={rater_id}")
        return True

    @staticmethod
    async def get_job_ratings(db: Client, job_id: str) -> list[dict]:
        """Ratings for a job, newest first, each with a ``rater`` profile summary."""
        rows = await fetch_all(
            db.table(RATINGS_TABLE).select("*").eq("job_request_id", job_id).order("created_at", desc=True)
        )
        rater_ids = sorted({r["rater_id"] for r in rows})
        raters = {}
        if rater_ids:
            profiles = await fetch_all(
                db.table(PROFILES_TABLE).select("id, name, creative_type").in_("id", rater_ids)
            )
            raters = {p["id"]: p for p in profiles}
        return [
            {**Rating(**r).model_dump(mode="json"), "rater": raters.get(r["rater_id"])} for r in rows
        ]

    @staticmethod
    async def get_apprentice_rating_details(db: Client, apprentice_id: str) -> dict:
        try:
            data = await call_rpc(db, RPC_APPRENTICE_RATING_DETAILS, {"apprentice_uuid": apprentice_id})
        except RemoteFailure as e:
            logger.warning("Rating details for apprentice %s unavailable: %s", apprentice_id, e)
            return dict(EMPTY_RATING_DETAILS)
        if isinstance(data, list):
            data = data[0] if data else None
        return data or dict(EMPTY_RATING_DETAILS)

    @staticmethod
    async def can_rate_apprentice(db: Client, job_id: str, member_id: str) -> bool:
        """Eligibility check; any gateway error counts as not eligible."""
        try:
            return bool(
                await call_rpc(db, RPC_CAN_RATE_APPRENTICE, {"job_uuid": job_id, "member_uuid": member_id})
            )
        except RemoteFailure as e:
            logger.warning("can_rate_apprentice failed for job %s: %s", job_id, e)
            return False
