"""
Database models.

Usage:
    from rostersync.models import Player, PlayerGameStats
"""
from rostersync.models.models import (
    Base,
    Player,
    PlayerGameStats,
    SyncRun,
    MatchAuditLog,
)

__all__ = [
    "Base",
    "Player",
    "PlayerGameStats",
    "SyncRun",
    "MatchAuditLog",
]
