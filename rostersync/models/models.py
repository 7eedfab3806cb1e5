"""
Database models for the roster sync service.

Players carry an optional ESPN ``external_id``: rows created by hand or by an
older import stay unlinked until the matcher (or a manual link) attaches one.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, Boolean, Text, Index, UniqueConstraint
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


class Player(Base):
    """NFL player with an optional stable external identifier."""
    __tablename__ = "players"

    id = Column(String(36), primary_key=True)
    external_id = Column(String(100), unique=True, nullable=True)  # ESPN athlete ID, null until linked
    id_source = Column(String(10), nullable=False, default='espn')
    name = Column(String(255), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True, index=True)
    team = Column(String(8), nullable=True, index=True)  # Team abbreviation
    position = Column(String(10), nullable=True)
    jersey = Column(String(4), nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    game_stats = relationship("PlayerGameStats", back_populates="player", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_players_external_id', 'external_id'),
    )


class PlayerGameStats(Base):
    """One player's merged box-score line for one game."""
    __tablename__ = "player_game_stats"

    id = Column(String(36), primary_key=True)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    game_id = Column(String(64), nullable=False, index=True)  # ESPN event ID
    season = Column(Integer, nullable=False, index=True)
    week = Column(Integer, nullable=False)
    team = Column(String(8), nullable=True)
    stats = Column(Text, nullable=False)  # JSON object keyed "category.stat"
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    player = relationship("Player", back_populates="game_stats")

    __table_args__ = (
        UniqueConstraint('player_id', 'game_id', name='uq_player_game_stats_player_game'),
        Index('ix_player_game_stats_season_week', 'season', 'week'),
    )


class SyncRun(Base):
    """Report of one finished sync run.

    Written once when the run reaches a terminal status; used for sync history
    and for diagnosing partial failures after the fact.
    """
    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True)  # sync_id of the run
    sync_type = Column(String(16), nullable=False, index=True)  # players, player_stats, full
    status = Column(String(32), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True, index=True)
    duration_ms = Column(Integer, nullable=True)
    records_processed = Column(Integer, nullable=False, default=0)
    players_processed = Column(Integer, nullable=False, default=0)
    new_players_added = Column(Integer, nullable=False, default=0)
    players_updated = Column(Integer, nullable=False, default=0)
    stats_records_processed = Column(Integer, nullable=False, default=0)
    data_errors = Column(Integer, nullable=False, default=0)
    matching_errors = Column(Integer, nullable=False, default=0)
    api_errors = Column(Integer, nullable=False, default=0)
    success_rate = Column(Float, nullable=False, default=0.0)
    errors = Column(Text, nullable=True)  # JSON list
    warnings = Column(Text, nullable=True)  # JSON list
    options = Column(Text, nullable=True)  # JSON object

    __table_args__ = (
        Index('ix_sync_runs_type_started', 'sync_type', 'started_at'),
    )


class MatchAuditLog(Base):
    """Audit trail for player links.

    Every manual link of an ESPN athlete to an existing player row is recorded
    with the previous and new external ID so bad links can be traced and undone.
    """
    __tablename__ = "match_audit_log"

    id = Column(String(36), primary_key=True)
    entity_type = Column(String(16), nullable=False)  # player
    entity_id = Column(String(64), nullable=False)
    action = Column(String(16), nullable=False, index=True)  # linked, relinked
    previous_state = Column(Text, nullable=True)  # JSON
    new_state = Column(Text, nullable=True)  # JSON
    match_details = Column(Text, nullable=True)  # JSON with confidence, method
    performed_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
    )
