"""
Main FastAPI application for the RosterSync service.
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request

from rostersync.core.config import settings
from rostersync.core.database import SessionLocal, init_db
from rostersync.core.logging import configure_logging, get_logger
from rostersync.api.routes import sync
from rostersync.services.core.rate_limiter import RateLimiter, RateLimitConfig
from rostersync.services.sync.adapters.db_adapter import SqlAlchemyPlayerStore
from rostersync.services.sync.adapters.espn_adapter import EspnSourceClient
from rostersync.services.sync.matchers.player_matcher import PlayerMatcher
from rostersync.services.sync.models import MatchingOptions, SyncOptions
from rostersync.services.sync.orchestrator import SyncOrchestrator

# Load environment variables from .env file
from dotenv import load_dotenv
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

configure_logging(
    level=settings.LOG_LEVEL,
    json_output=settings.LOG_JSON,
)
logger = get_logger(__name__)


def build_orchestrator(source: EspnSourceClient, session_factory=SessionLocal) -> SyncOrchestrator:
    """Wire the orchestrator from settings around a source client."""
    store = SqlAlchemyPlayerStore(session_factory)
    return SyncOrchestrator(
        source=source,
        store=store,
        matcher=PlayerMatcher(store, MatchingOptions.from_settings(settings)),
        default_options=SyncOptions.from_settings(settings),
        run_timeout=settings.SYNC_TIMEOUT_MINUTES * 60 if settings.SYNC_TIMEOUT_MINUTES > 0 else None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    init_db()

    rate_limiter = RateLimiter(RateLimitConfig.from_settings(settings))
    source = EspnSourceClient(
        rate_limiter=rate_limiter,
        site_api_url=settings.ESPN_SITE_API_URL,
        core_api_url=settings.ESPN_CORE_API_URL,
        season_type=settings.ESPN_SEASON_TYPE,
        athlete_page_limit=settings.ESPN_ATHLETE_PAGE_LIMIT,
        timeout=settings.ESPN_REQUEST_TIMEOUT,
    )
    app.state.rate_limiter = rate_limiter
    app.state.orchestrator = build_orchestrator(source)
    logger.info("Application started")

    yield

    # Shutdown
    if app.state.orchestrator.cancel_running_sync():
        logger.warning("Cancelled running sync on shutdown")
    await source.aclose()
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Keeps an NFL player database in step with ESPN rosters and box scores",
    lifespan=lifespan,
)

app.include_router(sync.router, prefix="/api/v1")


@app.get("/")
async def root(request: Request):
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "sync": "/api/v1/sync",
            "docs": "/docs",
            "health": "/health",
        },
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
    }
