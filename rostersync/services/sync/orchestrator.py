"""Sync orchestrator for keeping the player database in step with ESPN.

This orchestrator coordinates:
- Player sync: fetch every ESPN athlete, resolve each one to a player row
  (external ID first, fuzzy matching second) and create or update it
- Stats sync: fetch a week's games and box scores, merge them into stat lines
  and store them, creating players for unknown athlete IDs
- Full sync: player sync followed by a stats sync for every week of a season
- Sync reports and connectivity checks

Only one sync runs per orchestrator at a time. A second request while one is
running is rejected immediately with a FAILED result; it never waits.

Every run gets its own cancellation token, linked to the caller's token if one
is given. ``cancel_running_sync()`` cancels the active run only. When the task
running a sync is itself cancelled, the run is stamped CANCELLED, the lock is
released and ``asyncio.CancelledError`` is re-raised to the task owner.
"""
import asyncio
import logging
import threading
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from rostersync.core.logging import set_sync_id, clear_sync_id
from rostersync.services.sync.adapters.base import DatabaseStore, SourceClient
from rostersync.services.sync.cancellation import CancellationToken, SyncCancelledError
from rostersync.services.sync.matchers.player_matcher import PlayerMatcher
from rostersync.services.sync.models import (
    ConnectivityResult,
    PlayerStatLine,
    SourcePlayer,
    SyncOptions,
    SyncResult,
    SyncStatus,
    SyncType,
)
from rostersync.services.sync.stats_transformer import StatsTransformer

logger = logging.getLogger(__name__)

ALREADY_RUNNING_ERROR = "Another sync operation is already running"
NO_PLAYER_DATA_ERROR = "No player data retrieved from ESPN API"


class SyncAbortedError(Exception):
    """A record failed while ``skip_invalid_records`` is off; the run stops."""


class SyncOrchestrator:
    """
    Coordinates sync runs between the ESPN source and the player database.

    This is the main entry point for the sync layer. All sync operations
    should go through this orchestrator.
    """

    def __init__(
        self,
        source: SourceClient,
        store: DatabaseStore,
        matcher: Optional[PlayerMatcher] = None,
        default_options: Optional[SyncOptions] = None,
        stats_transformer: Optional[StatsTransformer] = None,
        run_timeout: Optional[float] = None,
    ):
        """
        Initialize the sync orchestrator.

        Args:
            source: External data source
            store: Database store
            matcher: Player matcher (defaults to one backed by ``store``)
            default_options: Options used when a caller passes none
            stats_transformer: Box-score to stat-line transformer
            run_timeout: Optional deadline in seconds applied to every run
        """
        self.source = source
        self.store = store
        self.matcher = matcher or PlayerMatcher(store)
        self.default_options = default_options or SyncOptions()
        self.stats_transformer = stats_transformer or StatsTransformer()
        self.run_timeout = run_timeout

        self._sync_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._active_result: Optional[SyncResult] = None
        self._active_token: Optional[CancellationToken] = None

    # ========================================================================
    # Public operations
    # ========================================================================

    async def sync_players(
        self,
        options: Optional[SyncOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """
        Sync every ESPN athlete into the players table.

        Steps:
        1. Validate source and database connectivity
        2. Fetch all athletes in one call (an empty list fails the run)
        3. Process athletes in batches of ``options.batch_size``, sleeping
           ``options.retry_delay`` between batches
        4. Derive the final status from the counters

        Args:
            options: Run options (defaults to the orchestrator's)
            token: Optional caller cancellation token

        Returns:
            SyncResult of the run
        """
        options = options or self.default_options
        result = SyncResult(sync_type=SyncType.PLAYERS, options=options)
        return await self._execute(result, token, lambda run_token: self._run_players(result, options, run_token))

    async def sync_player_stats(
        self,
        season: int,
        week: int,
        options: Optional[SyncOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """
        Sync the box scores of one week.

        A failing game or stat line is counted and skipped; it never aborts
        the rest of the week.
        """
        options = options or self.default_options
        result = SyncResult(sync_type=SyncType.PLAYER_STATS, options=options)
        return await self._execute(
            result,
            token,
            lambda run_token: self._run_player_stats(result, season, week, options, run_token),
        )

    async def full_sync(
        self,
        season: int,
        options: Optional[SyncOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """
        Sync players, then the stats of every week of ``season``.

        A failed player phase fails the whole run. Weeks that fail or finish
        with problems are reported as warnings and the run moves on.
        """
        options = replace(options or self.default_options, force_full_sync=True)
        result = SyncResult(sync_type=SyncType.FULL, options=options)
        return await self._execute(
            result,
            token,
            lambda run_token: self._run_full(result, season, options, run_token),
        )

    def is_sync_running(self) -> bool:
        """True while a sync run holds the single-flight lock."""
        return self._sync_lock.locked()

    def cancel_running_sync(self) -> bool:
        """
        Cancel the active run, if there is one.

        Returns:
            True if a running sync was cancelled by this call
        """
        with self._state_lock:
            token = self._active_token
            active = self._active_result

        if token is None:
            logger.info("Cancel requested but no sync is running")
            return False

        cancelled = token.cancel("cancelled by request")
        if cancelled:
            logger.warning(f"Cancellation requested for sync {active.sync_id if active else '?'}")
        return cancelled

    def get_current_sync(self) -> Optional[Dict[str, Any]]:
        """Snapshot of the active run, or None when idle."""
        with self._state_lock:
            active = self._active_result
        return active.to_dict() if active is not None else None

    async def validate_connectivity(self, token: Optional[CancellationToken] = None) -> ConnectivityResult:
        """
        Check that both the source and the database answer.

        Returns:
            ConnectivityResult with per-side status, response times and errors
        """
        token = token or CancellationToken()
        connectivity = ConnectivityResult()

        started = time.perf_counter()
        try:
            connectivity.source_ok = bool(await token.guard(self.source.check_connectivity(token=token)))
            if not connectivity.source_ok:
                connectivity.errors.append("ESPN API is not accessible")
        except SyncCancelledError:
            raise
        except Exception as e:
            connectivity.errors.append(f"ESPN API connectivity check failed: {e}")
        connectivity.source_response_ms = round((time.perf_counter() - started) * 1000, 1)

        started = time.perf_counter()
        try:
            connectivity.db_ok = bool(await token.guard(self.store.check_connectivity(token=token)))
            if not connectivity.db_ok:
                connectivity.errors.append("Database is not accessible")
        except SyncCancelledError:
            raise
        except Exception as e:
            connectivity.errors.append(f"Database connectivity check failed: {e}")
        connectivity.db_response_ms = round((time.perf_counter() - started) * 1000, 1)

        if not connectivity.is_valid:
            logger.warning(f"Connectivity validation failed: {'; '.join(connectivity.errors)}")
        return connectivity

    async def get_sync_history(self, limit: int = 50, sync_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Recent sync reports, newest first."""
        return await self.store.get_sync_history(limit=limit, sync_type=sync_type)

    # ========================================================================
    # Run lifecycle
    # ========================================================================

    async def _execute(
        self,
        result: SyncResult,
        token: Optional[CancellationToken],
        runner: Callable[[CancellationToken], Awaitable[None]],
    ) -> SyncResult:
        if not self._sync_lock.acquire(blocking=False):
            logger.warning(
                f"Rejected {result.sync_type.value} sync {result.sync_id}: {ALREADY_RUNNING_ERROR}"
            )
            result.fail(ALREADY_RUNNING_ERROR)
            return result

        run_token = token.link() if token is not None else CancellationToken()
        with self._state_lock:
            self._active_result = result
            self._active_token = run_token
        log_context = set_sync_id(result.sync_id)

        try:
            await self._run_with_lock(result, run_token, runner)
            logger.info(
                f"Sync {result.sync_id} finished as {result.status.value}: "
                f"{result.players_processed} processed, {result.new_players_added} added, "
                f"{result.players_updated} updated, {result.stats_records_processed} stat lines, "
                f"errors data={result.data_errors} matching={result.matching_errors} api={result.api_errors}"
            )
            await self._save_report(result)
        finally:
            clear_sync_id(log_context)
        return result

    async def _run_with_lock(
        self,
        result: SyncResult,
        run_token: CancellationToken,
        runner: Callable[[CancellationToken], Awaitable[None]],
    ) -> None:
        try:
            if self.run_timeout:
                run_token.cancel_after(self.run_timeout)
            logger.info(f"Starting {result.sync_type.value} sync {result.sync_id}")
            await runner(run_token)
        except SyncCancelledError as e:
            logger.warning(f"Sync {result.sync_id} cancelled: {e}")
            self._finish(result, SyncStatus.CANCELLED)
        except asyncio.CancelledError:
            logger.warning(f"Sync {result.sync_id} cancelled with its task")
            self._finish(result, SyncStatus.CANCELLED)
            raise
        except SyncAbortedError as e:
            # The failing record is already counted and described in result.errors
            logger.error(f"Sync {result.sync_id} aborted: {e}")
            if not result.is_finished:
                result.fail("Sync aborted: invalid record encountered with skip_invalid_records disabled")
        except Exception as e:
            logger.exception(f"Unexpected error in sync {result.sync_id}")
            if not result.is_finished:
                result.fail(f"Unexpected error: {e}")
        finally:
            if not result.is_finished:
                # A runner that returns without finishing is a bug; never leave a run RUNNING
                result.finish()
            with self._state_lock:
                self._active_result = None
                self._active_token = None
            run_token.detach()
            self._sync_lock.release()

    @staticmethod
    def _finish(result: SyncResult, status: SyncStatus) -> None:
        if not result.is_finished:
            result.finish(status)

    async def _save_report(self, result: SyncResult) -> None:
        try:
            await self.store.save_sync_report(result)
        except Exception as e:
            logger.error(f"Failed to save report for sync {result.sync_id}: {e}")

    async def _ensure_connectivity(self, result: SyncResult, token: CancellationToken) -> bool:
        connectivity = await self.validate_connectivity(token)
        if connectivity.is_valid:
            return True
        result.errors.extend(connectivity.errors)
        result.finish(SyncStatus.FAILED)
        return False

    @staticmethod
    def _batches(items: List[Any], size: int) -> List[List[Any]]:
        return [items[i:i + size] for i in range(0, len(items), size)]

    # ========================================================================
    # Player sync
    # ========================================================================

    async def _run_players(self, result: SyncResult, options: SyncOptions, token: CancellationToken) -> None:
        if not await self._ensure_connectivity(result, token):
            return

        try:
            players = await token.guard(self.source.fetch_all_players(token=token))
        except SyncCancelledError:
            raise
        except Exception as e:
            result.add_api_error(f"Failed to fetch players from ESPN API: {e}")
            result.finish(SyncStatus.FAILED)
            return

        if not players:
            logger.error(NO_PLAYER_DATA_ERROR)
            result.fail(NO_PLAYER_DATA_ERROR)
            return

        result.records_processed = len(players)
        batches = self._batches(list(players), options.batch_size)
        logger.info(f"Processing {len(players)} players in {len(batches)} batches of {options.batch_size}")

        for index, batch in enumerate(batches, start=1):
            token.raise_if_cancelled()
            for player in batch:
                await self._process_player(player, result, options, token)

            logger.info(
                f"Batch {index}/{len(batches)} complete: {result.players_processed} processed, "
                f"{result.data_errors + result.matching_errors} errors so far"
            )
            if index < len(batches) and options.retry_delay > 0:
                await token.sleep(options.retry_delay)

        result.finish()

    async def _process_player(
        self,
        player: SourcePlayer,
        result: SyncResult,
        options: SyncOptions,
        token: CancellationToken,
    ) -> None:
        token.raise_if_cancelled()
        result.players_processed += 1

        try:
            entity_id = await token.guard(self.store.find_player_by_external_id(player.external_id, token=token))

            if entity_id is None:
                candidates = await token.guard(self.store.find_candidates(player.name, token=token))
                match = self.matcher.find_match(player, candidates)
                entity_id = match.matched_entity_id
                if match.is_match and match.requires_manual_review:
                    result.players_flagged_for_review += 1
                    logger.warning(
                        f"Linking {player.name} (ID: {player.external_id}) to player {entity_id} "
                        f"needs review: confidence {match.confidence_score:.2f} ({match.match_method.value})"
                    )

            if entity_id is not None:
                if await token.guard(self.store.update_player(entity_id, player, token=token)):
                    result.players_updated += 1
                else:
                    result.add_data_error(f"Failed to update player: {player.name} (ID: {player.external_id})")
                return

            new_id = await token.guard(self.store.create_player(player, token=token))
            if new_id:
                result.new_players_added += 1
                logger.debug(f"Added new player {player.name} (ID: {player.external_id}) as {new_id}")
            else:
                result.add_matching_error(f"Failed to add new player: {player.name} (ID: {player.external_id})")

        except SyncCancelledError:
            raise
        except Exception as e:
            message = f"Error processing player {player.name} (ID: {player.external_id}): {e}"
            result.add_data_error(message)
            logger.error(message)
            if not options.skip_invalid_records:
                raise SyncAbortedError(message) from e

    # ========================================================================
    # Stats sync
    # ========================================================================

    async def _run_player_stats(
        self,
        result: SyncResult,
        season: int,
        week: int,
        options: SyncOptions,
        token: CancellationToken,
        check_connectivity: bool = True,
    ) -> None:
        if check_connectivity and not await self._ensure_connectivity(result, token):
            return

        try:
            games = await token.guard(self.source.fetch_games_for_week(season, week, token=token))
        except SyncCancelledError:
            raise
        except Exception as e:
            result.add_api_error(f"Failed to fetch games for season {season} week {week}: {e}")
            result.finish()
            return

        if not games:
            result.add_warning(f"No games found for season {season} week {week}")
            result.finish()
            return

        stat_lines: List[PlayerStatLine] = []
        for game in games:
            token.raise_if_cancelled()
            try:
                records = await token.guard(self.source.fetch_game_stats(game.game_id, token=token))
            except SyncCancelledError:
                raise
            except Exception as e:
                message = f"Failed to fetch stats for game {game.game_id}: {e}"
                result.add_api_error(message)
                logger.error(message)
                continue

            if not records:
                result.add_warning(f"No stats returned for game {game.game_id}")
                continue

            result.records_processed += len(records)
            stat_lines.extend(self.stats_transformer.transform(records, season, week))

        batches = self._batches(stat_lines, options.batch_size)
        logger.info(f"Processing {len(stat_lines)} stat lines from {len(games)} games for week {week}")

        for index, batch in enumerate(batches, start=1):
            token.raise_if_cancelled()
            for line in batch:
                await self._process_stat_line(line, result, token)
            if index < len(batches) and options.retry_delay > 0:
                await token.sleep(options.retry_delay)

        result.finish()

    async def _process_stat_line(self, line: PlayerStatLine, result: SyncResult, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        result.players_processed += 1

        try:
            if not line.external_player_id:
                result.add_data_error(f"Stat line without athlete ID in game {line.game_id}")
                return

            entity_id = await token.guard(
                self.store.find_player_by_external_id(line.external_player_id, token=token)
            )

            if entity_id is None:
                if not line.player_name:
                    result.add_data_error(
                        f"Unknown athlete {line.external_player_id} in game {line.game_id} has no display name"
                    )
                    return

                new_player = SourcePlayer(
                    external_id=line.external_player_id,
                    name=line.player_name,
                    team=line.team,
                )
                entity_id = await token.guard(self.store.create_player(new_player, token=token))
                if not entity_id:
                    result.add_matching_error(
                        f"Failed to add new player: {line.player_name} (ID: {line.external_player_id})"
                    )
                    return
                result.new_players_added += 1
                logger.info(f"Created player {line.player_name} (ID: {line.external_player_id}) from box score")

            line.player_entity_id = entity_id
            if await token.guard(self.store.save_stat_record(line, token=token)):
                result.stats_records_processed += 1
            else:
                result.add_data_error(
                    f"Failed to save stats for athlete {line.external_player_id} in game {line.game_id}"
                )

        except SyncCancelledError:
            raise
        except Exception as e:
            message = f"Error processing stats for athlete {line.external_player_id} in game {line.game_id}: {e}"
            result.add_data_error(message)
            logger.error(message)

    # ========================================================================
    # Full sync
    # ========================================================================

    async def _run_full(self, result: SyncResult, season: int, options: SyncOptions, token: CancellationToken) -> None:
        players_result = SyncResult(sync_type=SyncType.PLAYERS, options=options, sync_id=result.sync_id)
        try:
            await self._run_players(players_result, options, token)
        finally:
            self._absorb(result, players_result)

        if players_result.status is SyncStatus.FAILED:
            logger.error(f"Full sync {result.sync_id}: player phase failed, skipping stats")
            result.finish(SyncStatus.FAILED)
            return

        try:
            weeks = await token.guard(self.source.fetch_season_weeks(season, token=token))
        except SyncCancelledError:
            raise
        except Exception as e:
            result.add_warning(f"Failed to fetch weeks for season {season}: {e}")
            weeks = []

        if not weeks:
            result.add_warning(f"No weeks found for season {season}")

        for week in weeks:
            token.raise_if_cancelled()
            week_result = SyncResult(sync_type=SyncType.PLAYER_STATS, options=options, sync_id=result.sync_id)
            try:
                await self._run_player_stats(week_result, season, week, options, token, check_connectivity=False)
            except SyncCancelledError:
                raise
            except Exception as e:
                logger.error(f"Stats sync for week {week} raised: {e}")
                result.add_warning(f"Failed to sync stats for week {week}: {e}")
                continue

            result.records_processed += week_result.records_processed
            result.stats_records_processed += week_result.stats_records_processed
            result.new_players_added += week_result.new_players_added

            if week_result.status is SyncStatus.FAILED:
                result.add_warning(f"Failed to sync stats for week {week}")
            elif week_result.status is not SyncStatus.COMPLETED:
                result.add_warning(f"Stats sync for week {week} finished as {week_result.status.value}")
            result.errors.extend(f"Week {week}: {error}" for error in week_result.errors)

            logger.info(
                f"Week {week}: {week_result.stats_records_processed} stat lines, status {week_result.status.value}"
            )

        result.finish()

    @staticmethod
    def _absorb(target: SyncResult, source: SyncResult) -> None:
        target.records_processed += source.records_processed
        target.players_processed += source.players_processed
        target.new_players_added += source.new_players_added
        target.players_updated += source.players_updated
        target.players_flagged_for_review += source.players_flagged_for_review
        target.stats_records_processed += source.stats_records_processed
        target.data_errors += source.data_errors
        target.matching_errors += source.matching_errors
        target.api_errors += source.api_errors
        target.errors.extend(source.errors)
        target.warnings.extend(source.warnings)
