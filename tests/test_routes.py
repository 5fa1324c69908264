"""HTTP-level tests for the API routes.

Requests carry real HS256 tokens signed with the test secret; the database
dependency is replaced with the in-memory fake.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from craftnet.config import get_settings
from craftnet.database import get_db
from craftnet.main import app
from craftnet.rate_limit import limiter


def make_token(user_id: str, email: str | None = None, **claims) -> str:
    settings = get_settings()
    payload = {"sub": user_id, "aud": settings.jwt_audience, "email": email or f"{user_id}@example.com", **claims}
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm=settings.jwt_algorithm)


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_connected(self, client, db):
        with patch("craftnet.main.get_supabase_client", return_value=db):
            response = client.get("/health")
        assert response.json() == {"status": "healthy", "database": "connected"}

    def test_health_degraded(self, client, db):
        db.fail("profiles", "select", message="timeout")
        with patch("craftnet.main.get_supabase_client", return_value=db):
            response = client.get("/health")
        body = response.json()
        assert body["status"] == "degraded"
        assert body["database"].startswith("error: timeout")


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/wallets/me")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_bad_signature(self, client):
        token = jwt.encode({"sub": "user-1", "aud": "authenticated"}, "wrong-secret", algorithm="HS256")
        response = client.get("/wallets/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_wrong_audience(self, client):
        token = make_token("user-1", aud="anon")
        response = client.get("/wallets/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_cookie_fallback(self, client, seed_wallet):
        seed_wallet("user-1", 1500)
        client.cookies.set("sb-access-token", make_token("user-1"))
        response = client.get("/wallets/me")
        assert response.status_code == 200
        assert Decimal(str(response.json()["balance_ngn"])) == Decimal("1500")


class TestAuthRoutes:
    def test_signin(self, client, db):
        db.auth.add_user("user-1", "chi@example.com", "pa55word")
        response = client.post("/auth/signin", json={"email": "chi@example.com", "password": "pa55word"})
        assert response.status_code == 200
        assert response.json()["access_token"] == "token-user-1"

    def test_signin_failure_names_form(self, client, db):
        db.auth.add_user("user-1", "chi@example.com", "pa55word")
        response = client.post("/auth/signin", json={"email": "chi@example.com", "password": "nope"})
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid email or password", "field": "login-form"}

    def test_signin_is_rate_limited(self, client):
        for _ in range(5):
            client.post("/auth/signin", json={"email": "x@example.com", "password": "p"})
        response = client.post("/auth/signin", json={"email": "x@example.com", "password": "p"})
        assert response.status_code == 429

    def test_signup_cannot_claim_admin(self, client, db):
        response = client.post(
            "/auth/signup",
            json={"email": "eve@example.com", "password": "longenough", "name": "Eve", "role": "admin"},
        )
        assert response.status_code == 201
        user_id = response.json()["user_id"]
        assert db.rows("profiles", id=user_id)[0]["role"] == "member"

    def test_me_creates_missing_profile(self, client, db):
        token = make_token("user-1", "ada@example.com")
        db.auth.add_user("user-1", "ada@example.com", token=token)
        db.auth.users["ada@example.com"].user_metadata = {"name": "Ada", "role": "apprentice"}

        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["role"] == "apprentice"
        assert response.json()["email"] == "ada@example.com"

    def test_me_ignores_admin_role_in_metadata(self, client, db):
        token = make_token("user-1", "eve@example.com")
        db.auth.add_user("user-1", "eve@example.com", token=token)
        db.auth.users["eve@example.com"].user_metadata = {"name": "Eve", "role": "admin"}
        headers = {"Authorization": f"Bearer {token}"}

        response = client.get("/auth/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["role"] == "member"
        assert client.get("/admin/dashboard", headers=headers).status_code == 403

    def test_signout(self, client, db):
        token = make_token("user-1")
        db.auth.add_user("user-1", "user-1@example.com", token=token)
        response = client.post("/auth/signout", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 204
        assert token not in db.auth.sessions


class TestJobRoutes:
    def test_post_job_holds_escrow(self, client, db, seed_wallet):
        seed_wallet("client-1", 10000)
        response = client.post(
            "/jobs",
            json={"title": "Logo", "description": "Bakery logo", "fixed_price": "5000", "skills_required": ["design"]},
            headers=auth("client-1"),
        )
        assert response.status_code == 201
        assert response.json()["status"] == "open"
        assert Decimal(str(db.rows("user_wallets", user_id="client-1")[0]["balance_ngn"])) == Decimal("5000")

    def test_insufficient_funds(self, client, db, seed_wallet):
        seed_wallet("client-1", 2000)
        response = client.post(
            "/jobs",
            json={"title": "Logo", "description": "Bakery logo", "fixed_price": "3000"},
            headers=auth("client-1"),
        )
        assert response.status_code == 402
        body = response.json()
        assert body["field"] == "job-price"
        assert body["detail"].startswith("Insufficient funds.")
        assert db.rows("job_requests") == []

    def test_apply_with_cv_upload(self, client, db, seed_job):
        job = seed_job()
        response = client.post(
            f"/jobs/{job['id']}/apply",
            data={"proposal": "I can do this"},
            files={"cv": ("cv.pdf", b"%PDF-1.4", "application/pdf")},
            headers=auth("apprentice-1"),
        )
        assert response.status_code == 201
        assert response.json()["cv_url"].startswith("cvs/apprentice-1/")
        assert len(db.storage.objects) == 1

    def test_apply_without_cv(self, client, seed_job):
        job = seed_job()
        response = client.post(
            f"/jobs/{job['id']}/apply", data={"proposal": "Hi"}, headers=auth("apprentice-1")
        )
        assert response.status_code == 400
        assert response.json()["field"] == "cv-upload"

    def test_review_approve_pays_once(self, client, db, seed_job):
        job = seed_job(status="pending_review", assigned_apprentice_id="apprentice-1")
        first = client.post(f"/jobs/{job['id']}/review", json={"approved": True}, headers=auth("client-1"))
        second = client.post(f"/jobs/{job['id']}/review", json={"approved": True}, headers=auth("client-1"))

        assert first.status_code == 200
        assert Decimal(str(first.json()["payment"])) == Decimal("5000")
        assert second.status_code == 200
        assert second.json()["skipped"] is True
        assert len(db.rows("wallet_transactions", transaction_type="escrow_release")) == 1

    def test_delete_by_other_user(self, client, seed_job):
        job = seed_job()
        response = client.delete(f"/jobs/{job['id']}", headers=auth("client-2"))
        assert response.status_code == 403

    def test_missing_job(self, client):
        response = client.get("/jobs/missing", headers=auth("client-1"))
        assert response.status_code == 404
        assert response.json() == {"detail": "Job not found", "field": None}

    def test_my_jobs(self, client, seed_job):
        seed_job()
        seed_job(client_id="client-2", status="in_progress", assigned_apprentice_id="client-1")
        response = client.get("/jobs/mine", headers=auth("client-1"))
        body = response.json()
        assert len(body["posted"]) == 1
        assert len(body["assigned"]) == 1


class TestDisputeRoutes:
    def test_open_dispute_with_evidence(self, client, db, seed_job):
        job = seed_job(status="in_progress", assigned_apprentice_id="apprentice-1")
        response = client.post(
            "/disputes",
            data={"job_id": job["id"], "description": "Nothing delivered", "type": "quality"},
            files=[("evidence", ("chat.png", b"png", "image/png"))],
            headers=auth("client-1"),
        )
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "open"
        assert len(body["evidence"]) == 1

        mine = client.get("/disputes/mine", headers=auth("apprentice-1")).json()
        assert mine["stats"]["open"] == 1

    def test_admin_only_listing(self, client, seed_profile):
        seed_profile("admin-1", role="admin")
        seed_profile("client-1")
        assert client.get("/disputes", headers=auth("client-1")).status_code == 403
        assert client.get("/disputes", headers=auth("admin-1")).status_code == 200

    def test_role_claim_does_not_grant_admin(self, client, seed_profile):
        seed_profile("client-1")
        token = make_token("client-1", user_metadata={"role": "admin"})
        response = client.get("/admin/dashboard", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403

    def test_resolve(self, client, db, seed_profile, seed_job):
        seed_profile("admin-1", role="admin")
        job = seed_job(status="in_progress", assigned_apprentice_id="apprentice-1")
        [dispute] = db.seed(
            "disputes",
            {"job_id": job["id"], "member_id": "client-1", "raised_by": "client-1", "status": "open"},
        )
        response = client.patch(
            f"/disputes/{dispute['id']}",
            json={"status": "resolved", "resolution": "favor_apprentice"},
            headers=auth("admin-1"),
        )
        assert response.status_code == 200
        assert response.json()["resolution"] == "favor_apprentice"

        again = client.patch(
            f"/disputes/{dispute['id']}", json={"status": "closed"}, headers=auth("admin-1")
        )
        assert again.status_code == 409


class TestRatingRoutes:
    def test_rate_once(self, client, seed_job):
        job = seed_job(status="completed", assigned_apprentice_id="apprentice-1")
        body = {"job_id": job["id"], "rating": 5, "comment": "Great"}
        assert client.post("/ratings", json=body, headers=auth("client-1")).status_code == 201
        assert client.post("/ratings", json=body, headers=auth("client-1")).status_code == 409

    def test_out_of_range(self, client, seed_job):
        job = seed_job(status="completed", assigned_apprentice_id="apprentice-1")
        response = client.post("/ratings", json={"job_id": job["id"], "rating": 7}, headers=auth("client-1"))
        assert response.status_code == 400
        assert response.json()["field"] == "rating-value"


class TestAdminRoutes:
    def test_dashboard(self, client, seed_profile):
        seed_profile("admin-1", role="admin")
        response = client.get("/admin/dashboard", headers=auth("admin-1"))
        assert response.status_code == 200
        assert response.json()["total_users"] == 1

    def test_saga_recovery(self, client, seed_profile):
        seed_profile("admin-1", role="admin")
        response = client.post("/admin/sagas/recover?older_than_seconds=0", headers=auth("admin-1"))
        assert response.status_code == 200
        assert response.json() == {"completed": 0, "compensated": 0, "failed": 0}
