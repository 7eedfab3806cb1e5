"""
Repository layer for data access.

Usage:
    from rostersync.repositories import PlayerRepository
    from rostersync.core.database import SessionLocal

    with SessionLocal() as db:
        player = PlayerRepository(db).find_by_external_id("3139477")
"""

from rostersync.repositories.base import BaseRepository
from rostersync.repositories.player_repository import PlayerRepository
from rostersync.repositories.sync_repository import (
    PlayerGameStatsRepository,
    SyncRunRepository,
    MatchAuditRepository,
)

__all__ = [
    "BaseRepository",
    "PlayerRepository",
    "PlayerGameStatsRepository",
    "SyncRunRepository",
    "MatchAuditRepository",
]
