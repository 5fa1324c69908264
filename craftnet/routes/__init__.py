"""API routes."""

from .admin import router as admin_router
from .auth import router as auth_router
from .disputes import router as disputes_router
from .jobs import router as jobs_router
from .ratings import router as ratings_router
from .submissions import router as submissions_router
from .wallets import router as wallets_router

__all__ = [
    "admin_router",
    "auth_router",
    "wallets_router",
    "jobs_router",
    "submissions_router",
    "disputes_router",
    "ratings_router",
]
