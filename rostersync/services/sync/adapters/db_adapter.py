"""SQLAlchemy implementation of the sync pipeline's DatabaseStore.

Each operation opens its own short-lived session from the injected session
factory, so one store instance can be shared by the orchestrator and by API
request handlers. Sessions are synchronous, so every operation runs in the
loop's default thread pool and never blocks the event loop.

Failure handling:
- Duplicate external IDs on create/link are rolled back and reported as a
  failed operation (None / False)
- Any other database error propagates to the caller
"""
import asyncio
import functools
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from rostersync.models import Player
from rostersync.repositories import (
    MatchAuditRepository,
    PlayerGameStatsRepository,
    PlayerRepository,
    SyncRunRepository,
)
from rostersync.services.sync.adapters.base import DatabaseStore
from rostersync.services.sync.cancellation import CancellationToken
from rostersync.services.sync.models import (
    CandidateRecord,
    PlayerStatLine,
    SourcePlayer,
    SyncResult,
)
from rostersync.services.sync.utils.name_normalizer import last_name_hint

logger = logging.getLogger(__name__)

# Upper bound on the fallback pool when a last-name lookup finds nothing
DEFAULT_FALLBACK_POOL_SIZE = 2000

T = TypeVar("T")


def _candidate(player: Player) -> CandidateRecord:
    return CandidateRecord(
        entity_id=player.id,
        name=player.name,
        team=player.team,
        position=player.position,
    )


class SqlAlchemyPlayerStore(DatabaseStore):
    """Player, stat line and sync report persistence over SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker, fallback_pool_size: int = DEFAULT_FALLBACK_POOL_SIZE):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing SQLAlchemy sessions
            fallback_pool_size: Maximum candidates returned when the last-name
                lookup comes back empty
        """
        self.session_factory = session_factory
        self.fallback_pool_size = fallback_pool_size

    def _session(self) -> Session:
        return self.session_factory()

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    # ========================================================================
    # Player lookups
    # ========================================================================

    async def find_player_by_external_id(
        self, external_id: str, token: Optional[CancellationToken] = None
    ) -> Optional[str]:
        if not external_id:
            return None
        return await self._run(self._find_player_by_external_id, external_id)

    def _find_player_by_external_id(self, external_id: str) -> Optional[str]:
        with self._session() as db:
            player = PlayerRepository(db).find_by_external_id(external_id)
            return player.id if player else None

    async def find_candidates(
        self, name_hint: str, token: Optional[CancellationToken] = None
    ) -> List[CandidateRecord]:
        """
        Unlinked players sharing the hint's last name, or the unlinked active pool.

        Players already linked to an external ID are left out: the external ID
        lookup has already ruled them out for this record.

        The fallback keeps nickname and misspelled-surname cases matchable at
        the cost of a larger pool.
        """
        return await self._run(self._find_candidates, last_name_hint(name_hint))

    def _find_candidates(self, hint: str) -> List[CandidateRecord]:
        with self._session() as db:
            repo = PlayerRepository(db)
            players = repo.search_by_last_name(hint, unlinked_only=True) if hint else []
            if not players:
                players = repo.find_active(limit=self.fallback_pool_size, unlinked_only=True)
            return [_candidate(p) for p in players]

    # ========================================================================
    # Player writes
    # ========================================================================

    async def create_player(self, player: SourcePlayer, token: Optional[CancellationToken] = None) -> Optional[str]:
        if not player.name:
            logger.warning(f"Refusing to create player without a name (ID: {player.external_id})")
            return None
        return await self._run(self._create_player, player)

    def _create_player(self, player: SourcePlayer) -> Optional[str]:
        first_name, last_name = self._name_parts(player)
        now = datetime.utcnow()
        with self._session() as db:
            repo = PlayerRepository(db)
            try:
                created = repo.create(
                    id=str(uuid.uuid4()),
                    external_id=player.external_id or None,
                    id_source='espn',
                    name=player.name,
                    first_name=first_name,
                    last_name=last_name,
                    team=player.team,
                    position=player.position,
                    jersey=player.jersey,
                    active=player.active,
                    created_at=now,
                    updated_at=now,
                )
                repo.save()
                return created.id
            except IntegrityError as e:
                repo.rollback()
                logger.warning(f"Could not create player {player.name} (ID: {player.external_id}): {e.orig}")
                return None

    async def update_player(
        self, entity_id: str, player: SourcePlayer, token: Optional[CancellationToken] = None
    ) -> bool:
        """
        Refresh a player from a source record.

        Only fields the source actually provides are overwritten, and the
        external ID is attached if the row was not linked yet.
        """
        return await self._run(self._update_player, entity_id, player)

    def _update_player(self, entity_id: str, player: SourcePlayer) -> bool:
        first_name, last_name = self._name_parts(player)
        fields = {
            "name": player.name,
            "first_name": first_name,
            "last_name": last_name,
            "team": player.team,
            "position": player.position,
            "jersey": player.jersey,
        }
        updates = {key: value for key, value in fields.items() if value}
        updates["active"] = player.active

        with self._session() as db:
            repo = PlayerRepository(db)
            existing = repo.find_by_id(entity_id)
            if existing is None:
                logger.warning(f"Cannot update missing player {entity_id}")
                return False

            if player.external_id and existing.external_id != player.external_id:
                if existing.external_id:
                    logger.warning(
                        f"Player {entity_id} is linked to {existing.external_id}, "
                        f"not relinking to {player.external_id}"
                    )
                    return False
                updates["external_id"] = player.external_id

            try:
                repo.update(entity_id, **updates)
                repo.save()
                return True
            except IntegrityError as e:
                repo.rollback()
                logger.warning(f"Could not update player {entity_id}: {e.orig}")
                return False

    async def link_external_id(
        self,
        entity_id: str,
        external_id: str,
        match_details: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ) -> bool:
        """
        Attach an external ID to a player and record it in the audit log.

        Linking a player to the ID it already has succeeds without changes.
        """
        return await self._run(self._link_external_id, entity_id, external_id, match_details)

    def _link_external_id(
        self, entity_id: str, external_id: str, match_details: Optional[Dict[str, Any]]
    ) -> bool:
        with self._session() as db:
            players = PlayerRepository(db)
            player = players.find_by_id(entity_id)
            if player is None:
                logger.warning(f"Cannot link {external_id}: player {entity_id} not found")
                return False

            if player.external_id == external_id:
                return True

            holder = players.find_by_external_id(external_id)
            if holder is not None:
                logger.warning(f"External ID {external_id} already belongs to player {holder.id}")
                return False

            previous = player.external_id
            try:
                players.update(entity_id, external_id=external_id)
                MatchAuditRepository(db).create(
                    id=str(uuid.uuid4()),
                    entity_type='player',
                    entity_id=entity_id,
                    action='relinked' if previous else 'linked',
                    previous_state=json.dumps({"external_id": previous}),
                    new_state=json.dumps({"external_id": external_id}),
                    match_details=json.dumps(match_details or {}),
                    performed_by='system',
                    created_at=datetime.utcnow(),
                )
                players.save()
                return True
            except IntegrityError as e:
                players.rollback()
                logger.warning(f"Could not link {external_id} to player {entity_id}: {e.orig}")
                return False

    # ========================================================================
    # Stats
    # ========================================================================

    async def save_stat_record(self, stat_line: PlayerStatLine, token: Optional[CancellationToken] = None) -> bool:
        """Insert or replace the stat line for (player, game)."""
        if not stat_line.player_entity_id:
            logger.warning(f"Stat line for game {stat_line.game_id} has no player ID")
            return False
        return await self._run(self._save_stat_record, stat_line)

    def _save_stat_record(self, stat_line: PlayerStatLine) -> bool:
        now = datetime.utcnow()
        payload = json.dumps(stat_line.stats, sort_keys=True)
        with self._session() as db:
            repo = PlayerGameStatsRepository(db)
            existing = repo.find_for_player_game(stat_line.player_entity_id, stat_line.game_id)
            if existing is not None:
                existing.stats = payload
                existing.team = stat_line.team or existing.team
                existing.season = stat_line.season
                existing.week = stat_line.week
                existing.updated_at = now
            else:
                repo.create(
                    id=str(uuid.uuid4()),
                    player_id=stat_line.player_entity_id,
                    game_id=stat_line.game_id,
                    season=stat_line.season,
                    week=stat_line.week,
                    team=stat_line.team,
                    stats=payload,
                    created_at=now,
                    updated_at=now,
                )
            repo.save()
            return True

    # ========================================================================
    # Health and reports
    # ========================================================================

    async def check_connectivity(self, token: Optional[CancellationToken] = None) -> bool:
        return await self._run(self._check_connectivity)

    def _check_connectivity(self) -> bool:
        try:
            with self._session() as db:
                db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connectivity check failed: {e}")
            return False

    async def save_sync_report(self, result: SyncResult) -> bool:
        return await self._run(self._save_sync_report, result)

    def _save_sync_report(self, result: SyncResult) -> bool:
        report = result.to_dict()
        with self._session() as db:
            repo = SyncRunRepository(db)
            repo.create(
                id=result.sync_id,
                sync_type=result.sync_type.value,
                status=result.status.value,
                started_at=result.start_time,
                completed_at=result.end_time,
                duration_ms=report["duration_ms"],
                records_processed=result.records_processed,
                players_processed=result.players_processed,
                new_players_added=result.new_players_added,
                players_updated=result.players_updated,
                stats_records_processed=result.stats_records_processed,
                data_errors=result.data_errors,
                matching_errors=result.matching_errors,
                api_errors=result.api_errors,
                success_rate=report["success_rate"],
                errors=json.dumps(result.errors),
                warnings=json.dumps(result.warnings),
                options=json.dumps(report["options"]),
            )
            repo.save()
        logger.debug(f"Saved report for sync {result.sync_id}")
        return True

    async def get_sync_history(self, limit: int = 50, sync_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._run(self._get_sync_history, limit, sync_type)

    def _get_sync_history(self, limit: int, sync_type: Optional[str]) -> List[Dict[str, Any]]:
        with self._session() as db:
            runs = SyncRunRepository(db).find_recent(limit=limit, sync_type=sync_type)
            return [
                {
                    "sync_id": run.id,
                    "sync_type": run.sync_type,
                    "status": run.status,
                    "started_at": run.started_at.isoformat() if run.started_at else None,
                    "completed_at": run.completed_at.isoformat() if run.completed_at else None,
                    "duration_ms": run.duration_ms,
                    "players_processed": run.players_processed,
                    "new_players_added": run.new_players_added,
                    "players_updated": run.players_updated,
                    "stats_records_processed": run.stats_records_processed,
                    "data_errors": run.data_errors,
                    "matching_errors": run.matching_errors,
                    "api_errors": run.api_errors,
                    "success_rate": run.success_rate,
                    "errors": json.loads(run.errors) if run.errors else [],
                    "warnings": json.loads(run.warnings) if run.warnings else [],
                }
                for run in runs
            ]

    @staticmethod
    def _name_parts(player: SourcePlayer) -> tuple[Optional[str], Optional[str]]:
        if player.first_name or player.last_name:
            return player.first_name, player.last_name
        if not player.name:
            return None, None
        # Stored as given; lookups match case-insensitively
        parts = player.name.split()
        return parts[0], (' '.join(parts[1:]) or None)
