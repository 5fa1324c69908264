"""Craftnet Backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .database import PROFILES_TABLE, fetch_one, get_supabase_client
from .errors import MarketplaceError, RemoteFailure
from .logging_config import configure_logging, get_logger
from .rate_limit import limiter
from .routes import (
    admin_router,
    auth_router,
    disputes_router,
    jobs_router,
    ratings_router,
    submissions_router,
    wallets_router,
)

logger = get_logger("craftnet.api")

GENERIC_ERROR = "Something went wrong. Please try again."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"Starting Craftnet Backend API (debug={settings.debug})")
    yield
    logger.info("Shutting down Craftnet Backend API")


app = FastAPI(
    title="Craftnet Backend API",
    description="Job marketplace workflows: escrow wallet, submissions, disputes and ratings",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    """Workflow errors carry their own status and the form field they belong to."""
    if isinstance(exc, RemoteFailure):
        logger.error(f"{request.method} {request.url.path} | {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "field": exc.field},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}")
    return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR, "field": None})


# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(wallets_router)
app.include_router(jobs_router)
app.include_router(submissions_router)
app.include_router(disputes_router)
app.include_router(ratings_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "craftnet-backend",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    db_status = "disconnected"
    try:
        await fetch_one(get_supabase_client().table(PROFILES_TABLE).select("id").limit(1))
        db_status = "connected"
    except (MarketplaceError, ValueError) as e:
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"
    return {
        "status": overall_status,
        "database": db_status,
    }
