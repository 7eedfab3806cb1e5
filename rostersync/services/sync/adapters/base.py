"""
Collaborator contracts of the sync pipeline.

The orchestrator and matcher only talk to the outside world through these two
interfaces:

- SourceClient: reads athletes, games and box scores from the external provider
- DatabaseStore: reads and writes players, stat lines and sync reports

Every method accepts an optional cancellation token; implementations that make
rate-limited calls should hand it to the rate limiter so a cancelled run stops
waiting for request slots.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from rostersync.services.sync.cancellation import CancellationToken
from rostersync.services.sync.models import (
    CandidateRecord,
    GameRef,
    PlayerStatLine,
    SourcePlayer,
    SourceStatRecord,
    SyncResult,
)


class SourceClient(ABC):
    """Read-only access to the external data provider."""

    @abstractmethod
    async def fetch_all_players(self, token: Optional[CancellationToken] = None) -> List[SourcePlayer]:
        """Fetch every active athlete in a single bulk call."""

    @abstractmethod
    async def fetch_games_for_week(
        self, season: int, week: int, token: Optional[CancellationToken] = None
    ) -> List[GameRef]:
        """Fetch the games scheduled in one week of a season."""

    @abstractmethod
    async def fetch_game_stats(
        self, game_id: str, token: Optional[CancellationToken] = None
    ) -> List[SourceStatRecord]:
        """Fetch the box-score stat lines of one game."""

    @abstractmethod
    async def fetch_season_weeks(self, season: int, token: Optional[CancellationToken] = None) -> List[int]:
        """Fetch the week numbers of a season's regular season."""

    @abstractmethod
    async def check_connectivity(self, token: Optional[CancellationToken] = None) -> bool:
        """True if the provider answers."""


class DatabaseStore(ABC):
    """Narrow persistence contract used by the sync pipeline."""

    @abstractmethod
    async def find_player_by_external_id(
        self, external_id: str, token: Optional[CancellationToken] = None
    ) -> Optional[str]:
        """Return the player ID linked to an external ID, if any."""

    @abstractmethod
    async def find_candidates(
        self, name_hint: str, token: Optional[CancellationToken] = None
    ) -> List[CandidateRecord]:
        """Return players that may match a name."""

    @abstractmethod
    async def create_player(self, player: SourcePlayer, token: Optional[CancellationToken] = None) -> Optional[str]:
        """Create a player from a source record. Returns the new ID, or None on failure."""

    @abstractmethod
    async def update_player(
        self, entity_id: str, player: SourcePlayer, token: Optional[CancellationToken] = None
    ) -> bool:
        """Refresh an existing player from a source record and link its external ID."""

    @abstractmethod
    async def link_external_id(
        self,
        entity_id: str,
        external_id: str,
        match_details: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ) -> bool:
        """Attach an external ID to an existing player."""

    @abstractmethod
    async def save_stat_record(self, stat_line: PlayerStatLine, token: Optional[CancellationToken] = None) -> bool:
        """Insert or update one player's stat line for one game."""

    @abstractmethod
    async def check_connectivity(self, token: Optional[CancellationToken] = None) -> bool:
        """True if the database answers."""

    @abstractmethod
    async def save_sync_report(self, result: SyncResult) -> bool:
        """Persist the report of a finished run."""

    @abstractmethod
    async def get_sync_history(self, limit: int = 50, sync_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return recent sync reports, newest first."""
