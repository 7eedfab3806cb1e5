"""Player matcher: resolve ESPN athletes to existing player rows.

Used when an athlete's ESPN ID is not linked to any player yet. Every candidate
from the store is scored on name, team and position (see confidence_scorer);
candidates under the minimum confidence are dropped and the best remaining one
wins.

Ranking is by confidence, highest first. Candidates with exactly equal scores
are ordered by entity ID (lowest wins), so the winner never depends on the
order the store returned the pool in.

A match still needs manual review when:
- its confidence is under the auto-link threshold, or
- the runner-up is within the manual-review margin of it
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from rostersync.services.sync.adapters.base import DatabaseStore
from rostersync.services.sync.cancellation import CancellationToken, SyncCancelledError
from rostersync.services.sync.models import (
    CandidateRecord,
    LinkResult,
    MatchCandidate,
    MatchingOptions,
    MatchMethod,
    PlayerMatchResult,
    SourcePlayer,
    UnmatchedPlayer,
)
from rostersync.services.sync.utils.confidence_scorer import (
    calculate_player_match_confidence,
    calculate_position_score,
    calculate_team_score,
    classify_match_method,
    describe_match_reasons,
)
from rostersync.services.sync.utils.teams import TeamLookup, DEFAULT_TEAM_LOOKUP

logger = logging.getLogger(__name__)

# Unmatched athletes whose best candidate scores under this are reported as low confidence
LOW_CONFIDENCE_CUTOFF = 0.5
MAX_REVIEW_CANDIDATES = 3


class PlayerMatcher:
    """
    Weighted fuzzy matching of source athletes against database players.

    ``find_match`` and ``rank_candidates`` are pure; ``match_player``,
    ``bulk_match``, ``link_player`` and ``get_unmatched_players`` go through
    the store.
    """

    def __init__(
        self,
        store: Optional[DatabaseStore] = None,
        options: Optional[MatchingOptions] = None,
        team_lookup: TeamLookup = DEFAULT_TEAM_LOOKUP,
    ):
        """
        Initialize the player matcher.

        Args:
            store: Store used for candidate lookups and manual links
            options: Thresholds and weights (defaults match production settings)
            team_lookup: Team table used to compare team names and codes
        """
        self.store = store
        self.options = options or MatchingOptions()
        self.team_lookup = team_lookup

    def score_candidate(self, player: SourcePlayer, candidate: CandidateRecord) -> MatchCandidate:
        """Score one database player against a source record."""
        confidence = calculate_player_match_confidence(
            player.name,
            candidate.name,
            player.team,
            candidate.team,
            player.position,
            candidate.position,
            options=self.options,
            team_lookup=self.team_lookup,
        )
        reasons = describe_match_reasons(
            player.name,
            candidate.name,
            calculate_team_score(player.team, candidate.team, self.team_lookup),
            calculate_position_score(player.position, candidate.position),
            self.options,
        )

        if self.options.verbose_logging:
            logger.debug(
                f"Candidate {candidate.entity_id} ({candidate.name}) for {player.name}: "
                f"{confidence:.3f} [{', '.join(reasons)}]"
            )

        return MatchCandidate(
            database_entity_id=candidate.entity_id,
            database_name=candidate.name,
            database_team=candidate.team,
            database_position=candidate.position,
            confidence_score=confidence,
            match_reasons=reasons,
        )

    def rank_candidates(self, player: SourcePlayer, candidates: Iterable[CandidateRecord]) -> List[MatchCandidate]:
        """Score the pool and keep candidates at or above the minimum confidence, best first."""
        threshold = self.options.minimum_confidence_threshold
        scored = [self.score_candidate(player, candidate) for candidate in candidates]
        viable = [c for c in scored if c.confidence_score >= threshold]
        viable.sort(key=lambda c: (-c.confidence_score, str(c.database_entity_id)))
        return viable

    def find_match(self, player: SourcePlayer, candidates: Iterable[CandidateRecord]) -> PlayerMatchResult:
        """
        Pick the best database player for a source record.

        Args:
            player: Source athlete (name, optional team and position)
            candidates: Pool of database players to consider

        Returns:
            PlayerMatchResult; ``matched_entity_id`` is None when no candidate
            reaches the minimum confidence
        """
        threshold = self.options.minimum_confidence_threshold
        viable = self.rank_candidates(player, candidates)

        if not viable:
            logger.debug(f"No candidate above {threshold:.2f} for {player.name} (ID: {player.external_id})")
            return PlayerMatchResult(
                source_id=player.external_id,
                source_name=player.name,
                matched_entity_id=None,
                confidence_score=0.0,
                match_method=MatchMethod.NONE,
                requires_manual_review=True,
            )

        best = viable[0]
        runner_up = viable[1] if len(viable) > 1 else None
        requires_review = (
            best.confidence_score < self.options.auto_link_confidence_threshold
            or (
                runner_up is not None
                and runner_up.confidence_score > best.confidence_score - self.options.manual_review_threshold
            )
        )

        logger.debug(
            f"Matched {player.name} (ID: {player.external_id}) to {best.database_name} "
            f"({best.database_entity_id}) with confidence {best.confidence_score:.2f}, "
            f"review={requires_review}"
        )

        return PlayerMatchResult(
            source_id=player.external_id,
            source_name=player.name,
            matched_entity_id=best.database_entity_id,
            confidence_score=best.confidence_score,
            match_method=classify_match_method(player.name, best.database_name, self.options),
            requires_manual_review=requires_review,
            alternate_candidates=viable[1:1 + self.options.max_alternate_candidates],
        )

    def _require_store(self) -> DatabaseStore:
        if self.store is None:
            raise RuntimeError("PlayerMatcher was created without a store")
        return self.store

    async def match_player(
        self,
        player: SourcePlayer,
        token: Optional[CancellationToken] = None,
    ) -> PlayerMatchResult:
        """Look up candidates for a source record in the store and match against them."""
        store = self._require_store()
        candidates = await store.find_candidates(player.name, token=token)
        return self.find_match(player, candidates)

    async def bulk_match(
        self,
        players: Iterable[SourcePlayer],
        token: Optional[CancellationToken] = None,
    ) -> List[PlayerMatchResult]:
        """
        Match several records in order, pausing briefly between them.

        The pause keeps a long bulk match from monopolizing the database.
        """
        results = []
        players = list(players)
        for index, player in enumerate(players):
            if token is not None:
                token.raise_if_cancelled()
            results.append(await self.match_player(player, token=token))

            if index < len(players) - 1 and self.options.bulk_match_delay > 0:
                if token is not None:
                    await token.sleep(self.options.bulk_match_delay)
                else:
                    await asyncio.sleep(self.options.bulk_match_delay)

        matched = sum(1 for r in results if r.is_match)
        logger.info(f"Bulk match finished: {matched}/{len(results)} players matched")
        return results

    async def link_player(
        self,
        source_id: str,
        entity_id: str,
        confidence: float = 1.0,
        method: MatchMethod = MatchMethod.MANUAL_LINK,
        source_name: str = "",
        token: Optional[CancellationToken] = None,
    ) -> LinkResult:
        """
        Link an external ID to a database player by hand.

        The match metadata is always produced; whether the store accepted the
        link is reported separately in ``LinkResult.persisted``.
        """
        store = self._require_store()
        match = PlayerMatchResult(
            source_id=source_id,
            source_name=source_name,
            matched_entity_id=entity_id,
            confidence_score=confidence,
            match_method=method,
            requires_manual_review=False,
        )

        persisted = await store.link_external_id(
            entity_id,
            source_id,
            match_details={"confidence": confidence, "method": method.value},
            token=token,
        )
        if persisted:
            logger.info(f"Linked external ID {source_id} to player {entity_id} ({method.value})")
        else:
            logger.warning(f"Store rejected link of external ID {source_id} to player {entity_id}")

        return LinkResult(match=match, persisted=persisted)

    async def get_unmatched_players(
        self,
        players: Iterable[SourcePlayer],
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[UnmatchedPlayer]:
        """
        Source athletes whose external ID is not linked to any player yet.

        Each entry carries the best-scoring candidates for manual review. An
        athlete that cannot be checked is logged and left out of the list.

        Args:
            players: Source athletes, usually the full active roster
            limit: Stop after this many unmatched athletes
            token: Optional cancellation token

        Returns:
            UnmatchedPlayer records in source order
        """
        store = self._require_store()
        players = list(players)
        unmatched: List[UnmatchedPlayer] = []

        for player in players:
            if limit is not None and len(unmatched) >= limit:
                break
            if token is not None:
                token.raise_if_cancelled()

            try:
                if await store.find_player_by_external_id(player.external_id, token=token) is not None:
                    continue
                ranked = self.rank_candidates(player, await store.find_candidates(player.name, token=token))
            except SyncCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Error checking match for {player.name} (ID: {player.external_id}): {e}")
                continue

            best_score = ranked[0].confidence_score if ranked else 0.0
            unmatched.append(
                UnmatchedPlayer(
                    source_id=player.external_id,
                    source_name=player.name,
                    first_name=player.first_name or "",
                    last_name=player.last_name or "",
                    team=player.team or "Unknown",
                    position=player.position or "Unknown",
                    active=player.active,
                    best_candidates=ranked[:MAX_REVIEW_CANDIDATES],
                    failure_reason=(
                        "Low confidence matches" if best_score < LOW_CONFIDENCE_CUTOFF else "No exact match found"
                    ),
                )
            )

        logger.info(f"Found {len(unmatched)} unmatched athletes out of {len(players)}")
        return unmatched
