"""
Repositories for sync output: per-game stat lines and sync run reports.
"""
from typing import Optional, List

from sqlalchemy import desc

from rostersync.models import PlayerGameStats, SyncRun, MatchAuditLog
from rostersync.repositories.base import BaseRepository


class PlayerGameStatsRepository(BaseRepository[PlayerGameStats]):
    """Repository for per-game player stat lines."""

    def __init__(self, db):
        super().__init__(PlayerGameStats, db)

    def find_for_player_game(self, player_id: str, game_id: str) -> Optional[PlayerGameStats]:
        """Find the stat line for one player in one game."""
        return self.where_first(
            PlayerGameStats.player_id == player_id,
            PlayerGameStats.game_id == game_id,
        )


class SyncRunRepository(BaseRepository[SyncRun]):
    """Repository for sync run reports."""

    def __init__(self, db):
        super().__init__(SyncRun, db)

    def find_recent(self, limit: int = 50, sync_type: Optional[str] = None) -> List[SyncRun]:
        """
        Find the most recent sync reports, newest first.

        Args:
            limit: Maximum number of reports
            sync_type: Optional filter (players, player_stats, full)
        """
        query = self.query()
        if sync_type:
            query = query.filter(SyncRun.sync_type == sync_type)
        return query.order_by(desc(SyncRun.started_at)).limit(limit).all()


class MatchAuditRepository(BaseRepository[MatchAuditLog]):
    """Repository for the player link audit trail."""

    def __init__(self, db):
        super().__init__(MatchAuditLog, db)

