"""Rating routes."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from ..auth import CurrentIdentity
from ..database import Database
from ..logging_config import get_logger
from ..models import Rating
from ..rate_limit import limiter
from ..ratings import RatingService

logger = get_logger("craftnet.routes.ratings")
router = APIRouter(prefix="/ratings", tags=["ratings"])


class RatingCreate(BaseModel):
    job_id: str
    # Range is checked by the service so the error carries its field key
    rating: int
    comment: str | None = Field(None, max_length=2000)


class RatingEdit(BaseModel):
    rating: int
    comment: str | None = Field(None, max_length=2000)


@router.post("", response_model=Rating, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_rating(request: Request, body: RatingCreate, auth: CurrentIdentity, db: Database):
    logger.info(f"POST /ratings | job={body.job_id} | rater={auth.user_id}")
    return await RatingService.submit_rating(db, body.job_id, body.rating, body.comment, auth.user_id)


@router.patch("/{rating_id}", response_model=Rating)
@limiter.limit("10/minute")
async def edit_rating(request: Request, rating_id: str, body: RatingEdit, auth: CurrentIdentity, db: Database):
    return await RatingService.update_rating(db, rating_id, body.rating, body.comment, auth.user_id)


@router.delete("/{rating_id}")
@limiter.limit("10/minute")
async def remove_rating(request: Request, rating_id: str, auth: CurrentIdentity, db: Database):
    return {"deleted": await RatingService.delete_rating(db, rating_id, auth.user_id)}


@router.get("/jobs/{job_id}")
@limiter.limit("60/minute")
async def list_job_ratings(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    return await RatingService.get_job_ratings(db, job_id)


@router.get("/jobs/{job_id}/eligibility")
@limiter.limit("60/minute")
async def rating_eligibility(request: Request, job_id: str, auth: CurrentIdentity, db: Database):
    return {"can_rate": await RatingService.can_rate_apprentice(db, job_id, auth.user_id)}


@router.get("/apprentices/{apprentice_id}")
@limiter.limit("60/minute")
async def apprentice_rating_details(request: Request, apprentice_id: str, auth: CurrentIdentity, db: Database):
    return await RatingService.get_apprentice_rating_details(db, apprentice_id)
