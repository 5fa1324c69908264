"""Database utilities for Supabase integration.

The supabase-py client is synchronous; every call is pushed to a worker
thread so workflow functions can stay ``async`` and independent reads can
be gathered concurrently.
"""

import asyncio
from typing import Annotated, Any

from fastapi import Depends
from postgrest.exceptions import APIError

from supabase import Client, create_client

from .config import Settings, get_settings
from .errors import AlreadyProcessed, RemoteFailure
from .logging_config import get_logger

logger = get_logger("craftnet.database")

_supabase_client: Client | None = None

# Postgres error code for unique_violation
UNIQUE_VIOLATION = "23505"


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names
# =============================================================================

PROFILES_TABLE = "profiles"
USER_WALLETS_TABLE = "user_wallets"
WALLET_TRANSACTIONS_TABLE = "wallet_transactions"
JOB_REQUESTS_TABLE = "job_requests"
JOB_APPLICATIONS_TABLE = "job_applications"
JOB_UPDATES_TABLE = "job_updates"
JOB_FEEDBACK_TABLE = "job_feedback"
PROGRESS_UPDATES_TABLE = "progress_updates"
UPDATE_FEEDBACK_TABLE = "update_feedback"
FINAL_SUBMISSIONS_TABLE = "job_final_submissions"
FINAL_SUBMISSION_FEEDBACK_TABLE = "job_final_submission_feedback"
DISPUTES_TABLE = "disputes"
RATINGS_TABLE = "ratings"
NOTIFICATIONS_TABLE = "notifications"
JOB_ESCROW_TABLE = "job_escrow"
FUNDING_REQUESTS_TABLE = "funding_requests"
WITHDRAWAL_REQUESTS_TABLE = "wallet_withdrawal_requests"
SUBSCRIPTION_PAYMENT_REQUESTS_TABLE = "subscription_payment_requests"
WORKFLOW_SAGAS_TABLE = "workflow_sagas"


# =============================================================================
# Remote procedures
# =============================================================================

RPC_NEXT_VERSION_NUMBER = "get_next_version_number"
RPC_PROCESS_JOB_PAYOUT = "process_job_payout"
RPC_SUBMIT_FINAL_WORK = "submit_final_work_v2"
RPC_AWARD_REFERRAL_POINTS = "award_referral_points"
RPC_AUTO_ACKNOWLEDGE_UPDATES = "auto_acknowledge_updates"
RPC_AUTO_ACKNOWLEDGE_PROGRESS_UPDATES = "auto_acknowledge_progress_updates"
RPC_CAN_RATE_APPRENTICE = "can_rate_apprentice"
RPC_APPRENTICE_RATING_DETAILS = "get_apprentice_rating_details"
RPC_CREATE_USER_WALLET = "create_user_wallet"
RPC_CREATE_NOTIFICATION = "create_notification"


# =============================================================================
# Query execution
# =============================================================================


def _describe(exc: Exception) -> str:
    if isinstance(exc, APIError):
        return exc.message or str(exc)
    return str(exc) or type(exc).__name__


async def execute(query) -> Any:
    """Run a built query (or RPC call) in a worker thread.

    Gateway errors are translated into ``RemoteFailure``; a unique-constraint
    violation becomes ``AlreadyProcessed`` since every unique key in the
    schema guards against a duplicate action.
    """
    try:
        return await asyncio.to_thread(query.execute)
    except APIError as e:
        if e.code == UNIQUE_VIOLATION:
            raise AlreadyProcessed(_describe(e)) from e
        raise RemoteFailure(_describe(e)) from e
    except Exception as e:
        logger.error(f"Gateway call failed: {type(e).__name__}: {e}")
        raise RemoteFailure(_describe(e)) from e


async def fetch_one(query) -> dict | None:
    """Execute and return the first row, or None."""
    result = await execute(query)
    return result.data[0] if result.data else None


async def fetch_all(query) -> list[dict]:
    result = await execute(query)
    return list(result.data or [])


async def count_rows(query) -> int:
    """Execute a ``select(..., count="exact")`` query and return the count."""
    result = await execute(query)
    if result.count is not None:
        return result.count
    return len(result.data or [])


async def call_rpc(db: Client, name: str, params: dict | None = None) -> Any:
    """Invoke a Postgres function and return its payload."""
    result = await execute(db.rpc(name, params or {}))
    return result.data


async def get_current_user(db: Client, access_token: str):
    """Look up the user behind an access token via Supabase Auth."""
    try:
        response = await asyncio.to_thread(db.auth.get_user, access_token)
    except Exception as e:
        raise RemoteFailure(f"Failed to resolve current user: {_describe(e)}") from e
    return response.user if response else None
