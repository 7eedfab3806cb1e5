"""Sync API routes for roster and stat synchronization.

Provides endpoints for:
- Current sync status and cancellation
- Manual sync triggers (players, weekly stats, full season)
- Connectivity checks against ESPN and the database
- Sync history
- Unmatched athletes for manual review, and manual player links
- Outbound rate limiter status
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from pybreaker import CircuitBreaker
from pydantic import BaseModel, Field

from rostersync.services.core.circuit_breaker import get_breaker_state
from rostersync.services.core.rate_limiter import RateLimiter
from rostersync.services.sync.models import SyncOptions, SyncType
from rostersync.services.sync.orchestrator import NO_PLAYER_DATA_ERROR, SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncOptionsRequest(BaseModel):
    """Per-run overrides; omitted fields fall back to the configured defaults."""
    batch_size: Optional[int] = Field(None, gt=0, le=5000)
    retry_delay_ms: Optional[int] = Field(None, ge=0, le=60000)
    skip_invalid_records: Optional[bool] = None


class LinkPlayerRequest(BaseModel):
    external_id: str = Field(..., min_length=1)
    player_id: str = Field(..., min_length=1)
    source_name: str = ""
    confidence: float = Field(1.0, ge=0.0, le=1.0)


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Dependency returning the application's shared orchestrator."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync service is not initialized")
    return orchestrator


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise HTTPException(status_code=503, detail="Rate limiter is not initialized")
    return limiter


def _build_options(orchestrator: SyncOrchestrator, body: Optional[SyncOptionsRequest]) -> SyncOptions:
    defaults = orchestrator.default_options
    if body is None:
        return defaults
    return SyncOptions(
        batch_size=body.batch_size or defaults.batch_size,
        retry_delay=(body.retry_delay_ms / 1000) if body.retry_delay_ms is not None else defaults.retry_delay,
        skip_invalid_records=(
            body.skip_invalid_records if body.skip_invalid_records is not None else defaults.skip_invalid_records
        ),
    )


def _reject_if_running(orchestrator: SyncOrchestrator) -> None:
    if orchestrator.is_sync_running():
        current = orchestrator.get_current_sync() or {}
        raise HTTPException(
            status_code=409,
            detail=f"Another sync operation is already running ({current.get('sync_id', 'unknown')})",
        )


@router.get("/status")
async def get_sync_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> Dict:
    """
    Current sync state.

    Returns whether a run is active, a snapshot of it, and the ESPN circuit
    breaker state.
    """
    breaker = getattr(orchestrator.source, "breaker", None)
    return {
        "is_running": orchestrator.is_sync_running(),
        "current_sync": orchestrator.get_current_sync(),
        "espn_circuit_breaker": get_breaker_state(breaker) if isinstance(breaker, CircuitBreaker) else None,
    }


@router.post("/players")
async def trigger_sync_players(
    background_tasks: BackgroundTasks,
    body: Optional[SyncOptionsRequest] = None,
    background: bool = Query(False, description="Run after the response is sent"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Manually trigger a player sync.

    This will:
    1. Fetch every active ESPN athlete
    2. Match each one to an existing player (external ID, then fuzzy match)
    3. Create or update the player rows

    Returns:
        The sync report, or a scheduling acknowledgement with ``background=true``
    """
    _reject_if_running(orchestrator)
    options = _build_options(orchestrator, body)

    if background:
        background_tasks.add_task(orchestrator.sync_players, options)
        return {"status": "scheduled", "sync_type": SyncType.PLAYERS.value}

    result = await orchestrator.sync_players(options)
    return result.to_dict()


@router.post("/stats")
async def trigger_sync_stats(
    background_tasks: BackgroundTasks,
    season: int = Query(..., ge=2000, le=2100, description="Season year"),
    week: int = Query(..., ge=1, le=25, description="Week number"),
    body: Optional[SyncOptionsRequest] = None,
    background: bool = Query(False, description="Run after the response is sent"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Manually trigger a stats sync for one week of a season."""
    _reject_if_running(orchestrator)
    options = _build_options(orchestrator, body)

    if background:
        background_tasks.add_task(orchestrator.sync_player_stats, season, week, options)
        return {"status": "scheduled", "sync_type": SyncType.PLAYER_STATS.value, "season": season, "week": week}

    result = await orchestrator.sync_player_stats(season, week, options)
    return result.to_dict()


@router.post("/full")
async def trigger_full_sync(
    background_tasks: BackgroundTasks,
    season: int = Query(..., ge=2000, le=2100, description="Season year"),
    body: Optional[SyncOptionsRequest] = None,
    background: bool = Query(True, description="Run after the response is sent"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Trigger a full sync: players, then every week of ``season``.

    Runs in the background by default since a season covers hundreds of games.
    """
    _reject_if_running(orchestrator)
    options = _build_options(orchestrator, body)

    if background:
        background_tasks.add_task(orchestrator.full_sync, season, options)
        return {"status": "scheduled", "sync_type": SyncType.FULL.value, "season": season}

    result = await orchestrator.full_sync(season, options)
    return result.to_dict()


@router.post("/cancel")
async def cancel_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> Dict:
    """Cancel the running sync, if any."""
    current = orchestrator.get_current_sync()
    cancelled = orchestrator.cancel_running_sync()
    return {
        "cancelled": cancelled,
        "sync_id": current["sync_id"] if cancelled and current else None,
    }


@router.get("/connectivity")
async def check_connectivity(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> Dict:
    """Check that ESPN and the database are both reachable."""
    connectivity = await orchestrator.validate_connectivity()
    return connectivity.to_dict()


@router.get("/history")
async def get_sync_history(
    limit: int = Query(50, ge=1, le=500),
    sync_type: Optional[SyncType] = Query(None, description="Filter by sync type"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """Recent sync reports, newest first."""
    runs: List[Dict] = await orchestrator.get_sync_history(
        limit=limit,
        sync_type=sync_type.value if sync_type else None,
    )
    return {"count": len(runs), "runs": runs}


@router.get("/players/unmatched")
async def get_unmatched_players(
    limit: Optional[int] = Query(None, ge=1, le=5000, description="Maximum athletes to return"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    ESPN athletes with no linked player, each with its top candidates.

    Feeds the manual review workflow; pick a candidate and POST it to
    /players/link.

    Raises:
        HTTPException 502: If ESPN returned no athletes
    """
    athletes = await orchestrator.source.fetch_all_players()
    if not athletes:
        raise HTTPException(status_code=502, detail=NO_PLAYER_DATA_ERROR)

    unmatched = await orchestrator.matcher.get_unmatched_players(athletes, limit=limit)
    return {
        "count": len(unmatched),
        "total_athletes": len(athletes),
        "players": [player.to_dict() for player in unmatched],
    }


@router.post("/players/link")
async def link_player(
    body: LinkPlayerRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Link an ESPN athlete ID to a player by hand.

    Raises:
        HTTPException 409: If the player does not exist or the ID is taken
    """
    link = await orchestrator.matcher.link_player(
        body.external_id,
        body.player_id,
        confidence=body.confidence,
        source_name=body.source_name,
    )
    if not link.persisted:
        raise HTTPException(
            status_code=409,
            detail=f"Could not link external ID {body.external_id} to player {body.player_id}",
        )

    return {
        "external_id": link.match.source_id,
        "player_id": link.match.matched_entity_id,
        "confidence": link.match.confidence_score,
        "match_method": link.match.match_method.value,
        "persisted": link.persisted,
    }


@router.get("/rate-limit")
async def get_rate_limit_status(limiter: RateLimiter = Depends(get_rate_limiter)) -> Dict:
    """Sliding window status of the outbound ESPN rate limiter."""
    return limiter.get_status().to_dict()
