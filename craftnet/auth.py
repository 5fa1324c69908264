"""Authentication for the Craftnet API.

Supabase Auth issues the access tokens; this module only verifies them
(HS256, audience ``authenticated``) and proxies sign-in, sign-up and
sign-out to the Supabase Auth API.
"""

import asyncio
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from supabase import Client

from .config import Settings, get_settings
from .database import Database
from .errors import AuthenticationError, RemoteFailure
from .logging_config import get_logger
from .profiles import create_basic_profile, require_admin

logger = get_logger("craftnet.auth")

# Cookie set by the web app after sign-in
AUTH_COOKIE_NAME = "sb-access-token"

# Bearer token scheme
# Make bearer optional to allow cookie fallback
security = HTTPBearer(auto_error=False)


def decode_access_token(token: str, settings: Settings) -> dict:
    """Decode and validate a Supabase access token."""
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class Identity:
    """The authenticated caller, taken from the token claims."""

    def __init__(self, user_id: str, email: str | None = None, role: str | None = None, access_token: str = ""):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.access_token = access_token


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
    request: Request,
) -> Identity:
    """Get the caller's identity from the bearer token or auth cookie."""
    token = credentials.credentials if credentials else request.cookies.get(AUTH_COOKIE_NAME)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated - provide Authorization header or auth cookie",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(token, settings)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    # Role claim is advisory only; admin checks always read the profile row
    role = (payload.get("user_metadata") or {}).get("role")
    return Identity(user_id=user_id, email=payload.get("email"), role=role, access_token=token)


# Type alias for dependency injection
CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


async def get_admin_identity(identity: CurrentIdentity, db: Database) -> Identity:
    await require_admin(db, identity.user_id)
    return identity


AdminIdentity = Annotated[Identity, Depends(get_admin_identity)]


# =============================================================================
# Supabase Auth proxies
# =============================================================================


def _session_payload(response) -> dict:
    session = getattr(response, "session", None)
    user = response.user
    return {
        "user_id": user.id,
        "email": user.email,
        "access_token": session.access_token if session else None,
        "refresh_token": session.refresh_token if session else None,
    }


async def sign_in(db: Client, email: str, password: str) -> dict:
    try:
        response = await asyncio.to_thread(
            db.auth.sign_in_with_password, {"email": email, "password": password}
        )
    except Exception as e:
        logger.info(f"Sign-in failed for {email}: {type(e).__name__}")
        raise AuthenticationError("Invalid email or password", field="login-form") from e
    return _session_payload(response)


async def sign_up(db: Client, email: str, password: str, metadata: dict | None = None) -> dict:
    """Register with Supabase Auth and create the basic profile row."""
    metadata = dict(metadata or {})
    try:
        response = await asyncio.to_thread(
            db.auth.sign_up,
            {"email": email, "password": password, "options": {"data": metadata}},
        )
    except Exception as e:
        raise RemoteFailure(f"Sign-up failed: {e}", field="signup-form") from e
    if response.user is None:
        raise RemoteFailure("Sign-up failed: no user returned", field="signup-form")

    await create_basic_profile(db, response.user.id, {**metadata, "email": email})
    logger.info(f"User signed up | id={response.user.id} | role={metadata.get('role', 'member')}")
    return _session_payload(response)


async def sign_out(db: Client, access_token: str) -> None:
    try:
        await asyncio.to_thread(db.auth.admin.sign_out, access_token)
    except Exception as e:
        raise RemoteFailure(f"Sign-out failed: {e}") from e
