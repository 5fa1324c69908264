"""Test token verification and the Supabase Auth proxies."""

import pytest
from fastapi import HTTPException
from jose import jwt

from craftnet.auth import decode_access_token, sign_in, sign_out, sign_up
from craftnet.config import get_settings
from craftnet.database import get_current_user
from craftnet.errors import AuthenticationError, RemoteFailure


class TestDecodeAccessToken:
    def test_valid_token(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "user-1", "aud": "authenticated", "email": "a@example.com"},
            settings.supabase_jwt_secret,
            algorithm="HS256",
        )
        payload = decode_access_token(token, settings)
        assert payload["sub"] == "user-1"

    def test_expired_token(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "user-1", "aud": "authenticated", "exp": 1},
            settings.supabase_jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc:
            decode_access_token(token, settings)
        assert exc.value.status_code == 401

    def test_garbage(self):
        with pytest.raises(HTTPException):
            decode_access_token("not-a-jwt", get_settings())


class TestAuthProxies:
    @pytest.mark.asyncio
    async def test_sign_in(self, db):
        db.auth.add_user("user-1", "chi@example.com", "pa55word")
        session = await sign_in(db, "chi@example.com", "pa55word")
        assert session["user_id"] == "user-1"
        assert session["access_token"] == "token-user-1"

    @pytest.mark.asyncio
    async def test_sign_in_failure(self, db):
        with pytest.raises(AuthenticationError) as exc:
            await sign_in(db, "nobody@example.com", "x")
        assert exc.value.field == "login-form"

    @pytest.mark.asyncio
    async def test_sign_up_creates_profile(self, db):
        session = await sign_up(db, "ada@example.com", "longenough", {"name": "Ada", "role": "apprentice"})
        [profile] = db.rows("profiles", id=session["user_id"])
        assert profile["role"] == "apprentice"
        assert profile["email"] == "ada@example.com"
        assert session["access_token"] is None

    @pytest.mark.asyncio
    async def test_sign_out_unknown_session(self, db):
        with pytest.raises(RemoteFailure):
            await sign_out(db, "stale-token")

    @pytest.mark.asyncio
    async def test_current_user(self, db):
        db.auth.add_user("user-1", "chi@example.com", token="tok")
        user = await get_current_user(db, "tok")
        assert user.id == "user-1"
        with pytest.raises(RemoteFailure):
            await get_current_user(db, "other")
