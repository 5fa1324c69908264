"""Pytest configuration and fixtures.

``FakeSupabase`` stands in for the supabase-py ``Client``: it keeps rows in
memory per table and supports the slice of the PostgREST query builder,
RPC, storage and auth APIs the workflows use. Failures can be injected per
table and operation to exercise compensation paths.
"""

import os
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

if not os.environ.get("RUN_INTEGRATION"):
    os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
    os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
    os.environ.setdefault("SUPABASE_PUBLISHABLE_KEY", "test-publishable-key")
    os.environ.setdefault("SUPABASE_JWT_SECRET", _TEST_JWT_SECRET)
    os.environ.setdefault("PROFILE_RETRY_DELAY_SECONDS", "0")
else:
    from pathlib import Path

    from dotenv import load_dotenv

    load_dotenv(Path(__file__).parent.parent / ".env", override=True)


# =============================================================================
# Fake Supabase client
# =============================================================================


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get(row: dict, column: str):
    # Supports JSON path filters such as "metadata->>job_request_id"
    if "->>" in column:
        base, key = column.split("->>", 1)
        return (row.get(base) or {}).get(key)
    return row.get(column)


def _same(actual, expected) -> bool:
    if actual == expected:
        return True
    if actual is None or expected is None:
        return False
    try:
        return Decimal(str(actual)) == Decimal(str(expected))
    except (InvalidOperation, ValueError):
        return str(actual) == str(expected)


def _compare(actual, expected) -> int | None:
    if actual is None:
        return None
    try:
        a, b = Decimal(str(actual)), Decimal(str(expected))
    except (InvalidOperation, ValueError):
        a, b = str(actual), str(expected)
    return (a > b) - (a < b)


def _sort_key(value):
    if value is None:
        return (1, 0, "")
    if isinstance(value, (int, float, Decimal)):
        return (0, value, "")
    return (0, 0, str(value))


def _ilike(actual, pattern: str) -> bool:
    if actual is None:
        return False
    needle = pattern.strip("%").lower()
    return needle in str(actual).lower()


class FakeResponse:
    def __init__(self, data=None, count=None):
        self.data = data if data is not None else []
        self.count = count


class FakeQuery:
    """Chainable query over one in-memory table."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload = None
        self._filters = []
        self._order = []
        self._limit = None
        self._range = None
        self._count = None
        self._on_conflict = "id"

    # -- operations ---------------------------------------------------------

    def select(self, columns: str = "*", count: str | None = None):
        self._count = count
        return self

    def insert(self, payload):
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload):
        self._op = "update"
        self._payload = payload
        return self

    def upsert(self, payload, on_conflict: str = "id"):
        self._op = "upsert"
        self._payload = payload
        self._on_conflict = on_conflict
        return self

    def delete(self, count: str | None = None):
        self._op = "delete"
        self._count = count
        return self

    # -- filters ------------------------------------------------------------

    def eq(self, column, value):
        self._filters.append(lambda r: _same(_get(r, column), value))
        return self

    def neq(self, column, value):
        self._filters.append(lambda r: not _same(_get(r, column), value))
        return self

    def in_(self, column, values):
        self._filters.append(lambda r: any(_same(_get(r, column), v) for v in values))
        return self

    def gte(self, column, value):
        self._filters.append(lambda r: (_compare(_get(r, column), value) or 0) >= 0 and _get(r, column) is not None)
        return self

    def lte(self, column, value):
        self._filters.append(lambda r: (_compare(_get(r, column), value) or 0) <= 0 and _get(r, column) is not None)
        return self

    def lt(self, column, value):
        self._filters.append(lambda r: _get(r, column) is not None and _compare(_get(r, column), value) < 0)
        return self

    def is_(self, column, value):
        expected = None if value in ("null", None) else value
        self._filters.append(lambda r: _get(r, column) == expected)
        return self

    def ilike(self, column, pattern):
        self._filters.append(lambda r: _ilike(_get(r, column), pattern))
        return self

    def overlaps(self, column, values):
        wanted = {str(v).lower() for v in values}
        self._filters.append(lambda r: bool(wanted & {str(v).lower() for v in (_get(r, column) or [])}))
        return self

    def contains(self, column, values):
        self._filters.append(lambda r: set(values) <= set(_get(r, column) or []))
        return self

    def or_(self, expression: str):
        clauses = []
        for part in expression.split(","):
            column, op, value = part.split(".", 2)
            clauses.append((column, op, value))

        def _match(row):
            for column, op, value in clauses:
                if op == "eq" and _same(_get(row, column), value):
                    return True
                if op == "ilike" and _ilike(_get(row, column), value):
                    return True
            return False

        self._filters.append(_match)
        return self

    def order(self, column, desc: bool = False):
        self._order.append((column, desc))
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    # -- execution ----------------------------------------------------------

    def _matching(self) -> list[dict]:
        if (self._table, self._op) in self._db.blocked:
            return []
        return [r for r in self._db.tables.setdefault(self._table, []) if all(f(r) for f in self._filters)]

    def execute(self) -> FakeResponse:
        self._db.calls.append((self._table, self._op, self._payload))
        self._db.maybe_fail(self._table, self._op)
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "select":
            found = self._matching()
            for column, desc in reversed(self._order):
                found.sort(key=lambda r: _sort_key(_get(r, column)), reverse=desc)
            total = len(found)
            if self._range:
                found = found[self._range[0] : self._range[1] + 1]
            if self._limit is not None:
                found = found[: self._limit]
            return FakeResponse([dict(r) for r in found], total if self._count else None)

        if self._op in ("insert", "upsert"):
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            out = []
            for item in payload:
                if self._op == "upsert":
                    keys = [k.strip() for k in self._on_conflict.split(",")]
                    existing = next(
                        (r for r in rows if all(_same(r.get(k), item.get(k)) for k in keys)), None
                    )
                    if existing is not None:
                        existing.update(item)
                        out.append(dict(existing))
                        continue
                row = {"id": str(uuid.uuid4()), "created_at": _now_iso(), **item}
                self._db.check_unique(self._table, row)
                rows.append(row)
                out.append(dict(row))
            return FakeResponse(out)

        if self._op == "update":
            found = self._matching()
            for r in found:
                r.update(self._payload)
            return FakeResponse([dict(r) for r in found])

        if self._op == "delete":
            found = self._matching()
            for r in found:
                rows.remove(r)
            return FakeResponse([dict(r) for r in found], len(found) if self._count else None)

        raise AssertionError(f"unsupported op {self._op}")


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict):
        self._db = db
        self._name = name
        self._params = params

    def execute(self) -> FakeResponse:
        self._db.rpc_calls.append((self._name, self._params))
        self._db.maybe_fail(f"rpc:{self._name}", "call")
        handler = self._db.rpc_handlers.get(self._name)
        if handler is None:
            raise APIError({"message": f"function {self._name} does not exist", "code": "PGRST202"})
        return FakeResponse(handler(self._params))


class FakeBucket:
    def __init__(self, storage: "FakeStorage", name: str):
        self._storage = storage
        self._name = name

    def upload(self, path, file, file_options=None):
        if self._name in self._storage.failing_buckets:
            raise RuntimeError(f"upload to {self._name} failed")
        self._storage.objects[(self._name, path)] = file
        return SimpleNamespace(path=path, full_path=f"{self._name}/{path}")

    def create_signed_url(self, path, expires_in, options=None):
        if self._name in self._storage.failing_buckets:
            raise RuntimeError(f"signing in {self._name} failed")
        return {"signedURL": f"https://test.supabase.co/storage/v1/object/sign/{self._name}/{path}?token=t&expires={expires_in}"}

    def get_public_url(self, path, options=None):
        return f"https://test.supabase.co/storage/v1/object/public/{self._name}/{path}"

    def list(self, path=None, options=None):
        prefix = path or ""
        return [{"name": p} for (b, p) in self._storage.objects if b == self._name and p.startswith(prefix)]


class FakeStorage:
    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.failing_buckets: set[str] = set()

    def from_(self, bucket: str) -> FakeBucket:
        return FakeBucket(self, bucket)


class FakeAuth:
    def __init__(self):
        self.users: dict[str, SimpleNamespace] = {}
        self.sessions: dict[str, str] = {}

    def add_user(self, user_id: str, email: str, password: str = "secret", token: str | None = None):
        self.users[email] = SimpleNamespace(id=user_id, email=email, password=password, user_metadata={})
        if token:
            self.sessions[token] = email

    def get_user(self, jwt=None):
        email = self.sessions.get(jwt)
        if email is None:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=self.users[email])

    def sign_in_with_password(self, credentials):
        user = self.users.get(credentials["email"])
        if user is None or user.password != credentials["password"]:
            raise RuntimeError("Invalid login credentials")
        token = f"token-{user.id}"
        self.sessions[token] = user.email
        return SimpleNamespace(user=user, session=SimpleNamespace(access_token=token, refresh_token="r"))

    def sign_up(self, credentials):
        user_id = str(uuid.uuid4())
        self.add_user(user_id, credentials["email"], credentials["password"])
        user = self.users[credentials["email"]]
        user.user_metadata = credentials.get("options", {}).get("data", {})
        return SimpleNamespace(user=user, session=None)

    @property
    def admin(self):
        return SimpleNamespace(sign_out=self._admin_sign_out)

    def _admin_sign_out(self, jwt, scope="global"):
        if self.sessions.pop(jwt, None) is None:
            raise RuntimeError("invalid JWT")


class FakeSupabase:
    """In-memory stand-in for ``supabase.Client``."""

    UNIQUE_KEYS = {
        "user_wallets": [("user_id",)],
        "job_applications": [("job_request_id", "apprentice_id")],
        "ratings": [("job_request_id", "rater_id")],
        "wallet_transactions": [("reference", "transaction_type")],
    }

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple] = []
        self.rpc_calls: list[tuple] = []
        self.rpc_handlers: dict = {}
        self.failures: dict[tuple[str, str], list] = {}
        self.blocked: set[tuple[str, str]] = set()
        self.storage = FakeStorage()
        self.auth = FakeAuth()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict | None = None) -> FakeRpc:
        return FakeRpc(self, name, params or {})

    # -- helpers for tests --------------------------------------------------

    def seed(self, table: str, *rows: dict) -> list[dict]:
        stored = []
        for row in rows:
            full = {"id": str(uuid.uuid4()), "created_at": _now_iso(), **row}
            self.tables.setdefault(table, []).append(full)
            stored.append(full)
        return stored

    def rows(self, table: str, **where) -> list[dict]:
        return [r for r in self.tables.get(table, []) if all(_same(r.get(k), v) for k, v in where.items())]

    def fail(self, table: str, op: str, times: int = 1, code: str = "500", message: str = "boom"):
        """Make the next ``times`` executions of ``op`` on ``table`` raise APIError."""
        self.failures.setdefault((table, op), []).extend(
            [APIError({"message": message, "code": code, "hint": None, "details": None})] * times
        )

    def block(self, table: str, op: str):
        """Make ``op`` on ``table`` match no rows, like a row-level security policy would."""
        self.blocked.add((table, op))

    def maybe_fail(self, table: str, op: str):
        pending = self.failures.get((table, op))
        if pending:
            raise pending.pop(0)

    def check_unique(self, table: str, row: dict):
        for keys in self.UNIQUE_KEYS.get(table, []):
            for other in self.tables.get(table, []):
                if all(_same(other.get(k), row.get(k)) for k in keys):
                    raise APIError(
                        {"message": f"duplicate key value violates unique constraint on {table}", "code": "23505"}
                    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def settings():
    from craftnet.config import get_settings

    return get_settings()


@pytest.fixture
def seed_wallet(db):
    def _seed(user_id: str, balance) -> dict:
        return db.seed("user_wallets", {"user_id": user_id, "balance_ngn": str(Decimal(str(balance)))})[0]

    return _seed


@pytest.fixture
def seed_job(db):
    def _seed(client_id: str = "client-1", **overrides) -> dict:
        row = {
            "client_id": client_id,
            "title": "Logo design",
            "description": "Design a logo for a bakery",
            "fixed_price": "5000",
            "budget_min": "5000",
            "budget_max": "5000",
            "escrow_amount": "5000",
            "skills_required": ["design"],
            "status": "open",
            "assigned_apprentice_id": None,
        }
        row.update(overrides)
        return db.seed("job_requests", row)[0]

    return _seed


@pytest.fixture
def seed_profile(db):
    def _seed(user_id: str, role: str = "member", **overrides) -> dict:
        row = {"id": user_id, "role": role, "name": f"User {user_id}", "total_earnings": 0, "completed_jobs": 0}
        row.update(overrides)
        return db.seed("profiles", row)[0]

    return _seed
