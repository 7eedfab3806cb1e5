"""
Data model of the sync pipeline.

Holds the run-level types (options, result accumulator, status machine), the
matching types produced by the player matcher, and the plain records exchanged
with the source and database collaborators.
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Dict, Optional, Any, Mapping


class SyncType(str, Enum):
    """Kind of sync run."""
    PLAYERS = "players"
    PLAYER_STATS = "player_stats"
    FULL = "full"


class SyncStatus(str, Enum):
    """Run status. Everything except RUNNING is terminal."""
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncStatus.RUNNING


class MatchMethod(str, Enum):
    """How a source record was tied to a database player (informational)."""
    NONE = "none"
    EXACT_NAME_MATCH = "exact_name_match"
    NAME_VARIATION = "name_variation"
    PHONETIC_MATCH = "phonetic_match"
    FUZZY_NAME_MATCH = "fuzzy_name_match"
    MULTIPLE_FACTORS = "multiple_factors"
    MANUAL_LINK = "manual_link"


# ============================================================================
# Run options and results
# ============================================================================

@dataclass(frozen=True)
class SyncOptions:
    """Immutable configuration for one sync run."""
    batch_size: int = 100
    retry_delay: float = 1.0  # seconds slept between batches
    skip_invalid_records: bool = True
    force_full_sync: bool = False

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must not be negative, got {self.retry_delay}")

    @classmethod
    def from_settings(cls, settings=None) -> "SyncOptions":
        if settings is None:
            from rostersync.core.config import settings
        return cls(
            batch_size=settings.SYNC_BATCH_SIZE,
            retry_delay=settings.SYNC_RETRY_DELAY_MS / 1000,
            skip_invalid_records=settings.SYNC_SKIP_INVALID_RECORDS,
        )


@dataclass
class SyncResult:
    """
    Mutable accumulator for one sync run.

    Created with status RUNNING, mutated in place while batches complete, and
    frozen exactly once through ``finish()``.
    """
    sync_type: SyncType
    options: SyncOptions = field(default_factory=SyncOptions)
    sync_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SyncStatus = SyncStatus.RUNNING
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    records_processed: int = 0
    players_processed: int = 0
    new_players_added: int = 0
    players_updated: int = 0
    players_flagged_for_review: int = 0
    stats_records_processed: int = 0
    data_errors: int = 0
    matching_errors: int = 0
    api_errors: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Percentage of processed players that finished without an error."""
        if self.players_processed <= 0:
            return 0.0
        failed = self.data_errors + self.matching_errors
        return (self.players_processed - failed) / self.players_processed * 100

    @property
    def has_errors(self) -> bool:
        return (self.data_errors + self.matching_errors + self.api_errors) > 0

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    def add_data_error(self, message: str) -> None:
        self.data_errors += 1
        self.errors.append(message)

    def add_matching_error(self, message: str) -> None:
        self.matching_errors += 1
        self.errors.append(message)

    def add_api_error(self, message: str) -> None:
        self.api_errors += 1
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def determine_status(self) -> SyncStatus:
        """
        Derive the terminal status from the counters.

        Precedence:
        1. Any error counter > 0: PARTIALLY_COMPLETED when players were processed
           and the success rate is above 50%, FAILED otherwise.
        2. Warnings present: COMPLETED_WITH_WARNINGS.
        3. COMPLETED.
        """
        if self.has_errors:
            if self.players_processed > 0 and self.success_rate > 50:
                return SyncStatus.PARTIALLY_COMPLETED
            return SyncStatus.FAILED
        if self.warnings:
            return SyncStatus.COMPLETED_WITH_WARNINGS
        return SyncStatus.COMPLETED

    def finish(self, status: Optional[SyncStatus] = None) -> SyncStatus:
        """
        Freeze the run with the given status (or the derived one) and stamp end_time.

        Raises:
            RuntimeError: If the run was already frozen
        """
        if self.is_finished:
            raise RuntimeError(f"Sync {self.sync_id} already finished as {self.status.value}")
        if status is SyncStatus.RUNNING:
            raise ValueError("RUNNING is not a terminal status")
        self.status = status or self.determine_status()
        self.end_time = datetime.utcnow()
        return self.status

    def fail(self, message: str) -> SyncStatus:
        """Record a run-level fault and freeze the run as FAILED."""
        self.errors.append(message)
        return self.finish(SyncStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict rendering for reports and API responses."""
        duration = self.duration
        return {
            "sync_id": self.sync_id,
            "sync_type": self.sync_type.value,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": int(duration.total_seconds() * 1000) if duration is not None else None,
            "records_processed": self.records_processed,
            "players_processed": self.players_processed,
            "new_players_added": self.new_players_added,
            "players_updated": self.players_updated,
            "players_flagged_for_review": self.players_flagged_for_review,
            "stats_records_processed": self.stats_records_processed,
            "data_errors": self.data_errors,
            "matching_errors": self.matching_errors,
            "api_errors": self.api_errors,
            "success_rate": round(self.success_rate, 2),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "options": asdict(self.options),
        }

    def __repr__(self):
        return (f"SyncResult(id={self.sync_id}, type={self.sync_type.value}, "
                f"status={self.status.value}, processed={self.players_processed})")


# ============================================================================
# Matching
# ============================================================================

@dataclass(frozen=True)
class MatchingOptions:
    """Thresholds and weights used by the player matcher."""
    minimum_confidence_threshold: float = 0.5
    auto_link_confidence_threshold: float = 0.9
    manual_review_threshold: float = 0.1  # top-2 margin that still counts as ambiguous
    max_alternate_candidates: int = 5
    enable_phonetic_matching: bool = True
    enable_name_variation_matching: bool = True
    name_weight: float = 0.7
    team_weight: float = 0.2
    position_weight: float = 0.1
    bulk_match_delay: float = 0.01  # seconds between records in bulk_match
    verbose_logging: bool = False

    @classmethod
    def from_settings(cls, settings=None) -> "MatchingOptions":
        if settings is None:
            from rostersync.core.config import settings
        return cls(
            minimum_confidence_threshold=settings.MATCH_MINIMUM_CONFIDENCE,
            auto_link_confidence_threshold=settings.MATCH_AUTO_LINK_CONFIDENCE,
            manual_review_threshold=settings.MATCH_MANUAL_REVIEW_MARGIN,
            max_alternate_candidates=settings.MATCH_MAX_ALTERNATES,
            enable_phonetic_matching=settings.MATCH_ENABLE_PHONETIC,
            enable_name_variation_matching=settings.MATCH_ENABLE_NAME_VARIATIONS,
            name_weight=settings.MATCH_NAME_WEIGHT,
            team_weight=settings.MATCH_TEAM_WEIGHT,
            position_weight=settings.MATCH_POSITION_WEIGHT,
            bulk_match_delay=settings.MATCH_BULK_DELAY_MS / 1000,
            verbose_logging=settings.MATCH_VERBOSE_LOGGING,
        )


@dataclass
class MatchCandidate:
    """A scored database player for one source record."""
    database_entity_id: str
    database_name: str
    database_team: Optional[str]
    database_position: Optional[str]
    confidence_score: float
    match_reasons: List[str] = field(default_factory=list)

    def __repr__(self):
        return (f"MatchCandidate(id={self.database_entity_id}, "
                f"name={self.database_name!r}, confidence={self.confidence_score:.2f})")


@dataclass
class PlayerMatchResult:
    """Outcome of matching one source record against a candidate pool."""
    source_id: str
    source_name: str
    matched_entity_id: Optional[str] = None
    confidence_score: float = 0.0
    match_method: MatchMethod = MatchMethod.NONE
    requires_manual_review: bool = True
    alternate_candidates: List[MatchCandidate] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return self.matched_entity_id is not None


@dataclass
class LinkResult:
    """Manual link outcome: match metadata plus whether the store accepted it."""
    match: PlayerMatchResult
    persisted: bool


@dataclass
class UnmatchedPlayer:
    """A source athlete with no linked player, queued for manual review."""
    source_id: str
    source_name: str
    first_name: str
    last_name: str
    team: str
    position: str
    active: bool
    best_candidates: List[MatchCandidate] = field(default_factory=list)
    failure_reason: str = ""

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "team": self.team,
            "position": self.position,
            "active": self.active,
            "best_candidates": [
                {
                    "player_id": c.database_entity_id,
                    "name": c.database_name,
                    "team": c.database_team,
                    "position": c.database_position,
                    "confidence": round(c.confidence_score, 4),
                    "match_reasons": c.match_reasons,
                }
                for c in self.best_candidates
            ],
            "failure_reason": self.failure_reason,
        }


# ============================================================================
# Collaborator records
# ============================================================================

@dataclass(frozen=True)
class SourcePlayer:
    """A player record as delivered by the external source."""
    external_id: str
    name: str
    team: Optional[str] = None
    position: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    jersey: Optional[str] = None
    active: bool = True


@dataclass(frozen=True)
class CandidateRecord:
    """A database player offered to the matcher."""
    entity_id: str
    name: str
    team: Optional[str] = None
    position: Optional[str] = None


@dataclass(frozen=True)
class GameRef:
    """Reference to one game in a season week."""
    game_id: str
    season: int
    week: int
    name: Optional[str] = None
    date: Optional[datetime] = None


@dataclass(frozen=True)
class SourceStatRecord:
    """One stat category line for one athlete in one game, as delivered by the source."""
    external_player_id: str
    player_name: str
    game_id: str
    team: Optional[str]
    category: str
    stats: Mapping[str, Any]


@dataclass
class PlayerStatLine:
    """A player's merged stats for one game, in the shape the database stores."""
    external_player_id: str
    player_name: str
    game_id: str
    season: int
    week: int
    team: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    player_entity_id: Optional[str] = None


@dataclass
class ConnectivityResult:
    """Reachability of the source and the database at one point in time."""
    source_ok: bool = False
    db_ok: bool = False
    errors: List[str] = field(default_factory=list)
    source_response_ms: Optional[float] = None
    db_response_ms: Optional[float] = None
    validated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_valid(self) -> bool:
        return self.source_ok and self.db_ok and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_ok": self.source_ok,
            "db_ok": self.db_ok,
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "source_response_ms": self.source_response_ms,
            "db_response_ms": self.db_response_ms,
            "validated_at": self.validated_at.isoformat(),
        }
