"""Auth routes proxied to Supabase Auth, plus the caller's profile."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from ..auth import CurrentIdentity, sign_in, sign_out, sign_up
from ..database import Database, get_current_user
from ..logging_config import get_logger
from ..models import Profile, UserRole
from ..profiles import get_apprentice_stats, get_client_stats, get_user_profile
from ..rate_limit import limiter

logger = get_logger("craftnet.routes.auth")
router = APIRouter(prefix="/auth", tags=["auth"])


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1)


class SignUpRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8)
    name: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.member
    skill: str | None = None
    creative_type: str | None = None
    location: str | None = None


class SessionResponse(BaseModel):
    user_id: str
    email: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None


@router.post("/signin", response_model=SessionResponse)
@limiter.limit("5/minute")
async def signin(request: Request, body: SignInRequest, db: Database):
    return await sign_in(db, body.email, body.password)


@router.post("/signup", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def signup(request: Request, body: SignUpRequest, db: Database):
    if body.role == UserRole.admin:
        body.role = UserRole.member
    metadata = body.model_dump(exclude={"email", "password"}, exclude_none=True, mode="json")
    logger.info(f"POST /auth/signup | email={body.email} | role={metadata['role']}")
    return await sign_up(db, body.email, body.password, metadata)


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def signout(request: Request, auth: CurrentIdentity, db: Database):
    await sign_out(db, auth.access_token)


@router.get("/me", response_model=Profile)
@limiter.limit("60/minute")
async def me(request: Request, auth: CurrentIdentity, db: Database):
    """Caller's profile; a missing row is created from the signup metadata."""
    user = await get_current_user(db, auth.access_token)
    metadata = dict(getattr(user, "user_metadata", None) or {})
    metadata.setdefault("email", auth.email)
    return await get_user_profile(db, auth.user_id, metadata)


@router.get("/me/stats")
@limiter.limit("60/minute")
async def my_stats(request: Request, auth: CurrentIdentity, db: Database):
    profile = await get_user_profile(db, auth.user_id)
    if profile.role == UserRole.apprentice.value:
        return await get_apprentice_stats(db, auth.user_id)
    return await get_client_stats(db, auth.user_id)
