"""
Player Repository for roster data access.

Usage:
    repo = PlayerRepository(db)
    player = repo.find_by_external_id("3139477")
    candidates = repo.search_by_last_name("mahomes", unlinked_only=True)
"""
from typing import Optional, List

from rostersync.models import Player
from rostersync.repositories.base import BaseRepository


class PlayerRepository(BaseRepository[Player]):
    """Repository for player data access."""

    def __init__(self, db):
        super().__init__(Player, db)

    # ========================================================================
    # External ID Lookups
    # ========================================================================

    def find_by_external_id(self, external_id: str) -> Optional[Player]:
        """Find a player by ESPN athlete ID."""
        return self.where_first(Player.external_id == external_id)

    # ========================================================================
    # Name-based Lookups
    # ========================================================================

    def search_by_last_name(
        self,
        last_name: str,
        limit: int = 200,
        unlinked_only: bool = False,
    ) -> List[Player]:
        """
        Find players whose stored last name (or full name) contains the given text.

        Args:
            last_name: Last name hint (case-insensitive)
            limit: Maximum number of results
            unlinked_only: Only return players without an external ID

        Returns:
            List of matching players, ordered by name
        """
        pattern = f"%{last_name.lower()}%"
        query = self.query().filter(
            (Player.last_name.ilike(pattern)) | (Player.name.ilike(pattern))
        )
        if unlinked_only:
            query = query.filter(Player.external_id.is_(None))
        return query.order_by(Player.name, Player.id).limit(limit).all()

    def find_active(self, limit: Optional[int] = None, unlinked_only: bool = False) -> List[Player]:
        """Find all active players, ordered by name."""
        query = self.query().filter(Player.active.is_(True))
        if unlinked_only:
            query = query.filter(Player.external_id.is_(None))
        query = query.order_by(Player.name, Player.id)
        if limit is not None:
            query = query.limit(limit)
        return query.all()
