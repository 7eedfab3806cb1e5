"""Shared pytest fixtures for rostersync tests."""
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Generator, List, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rostersync.models import Base, Player
from rostersync.services.sync.adapters.base import SourceClient
from rostersync.services.sync.adapters.db_adapter import SqlAlchemyPlayerStore
from rostersync.services.sync.models import SourcePlayer, SyncOptions


@pytest.fixture(scope="function")
def session_factory() -> Generator[sessionmaker, None, None]:
    """Session factory bound to a fresh in-memory database.

    StaticPool keeps a single connection, so every session the store opens
    sees the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)

    engine.dispose()


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session for arranging and inspecting test data."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(session_factory) -> SqlAlchemyPlayerStore:
    return SqlAlchemyPlayerStore(session_factory)


@pytest.fixture
def source() -> AsyncMock:
    """Source client mock that answers connectivity checks and returns no data."""
    mock = AsyncMock(spec=SourceClient)
    mock.check_connectivity.return_value = True
    mock.fetch_all_players.return_value = []
    mock.fetch_games_for_week.return_value = []
    mock.fetch_game_stats.return_value = []
    mock.fetch_season_weeks.return_value = []
    return mock


@pytest.fixture
def fast_options() -> SyncOptions:
    """Run options without the inter-batch pause."""
    return SyncOptions(batch_size=10, retry_delay=0)


def add_player(
    session: Session,
    name: str,
    team: Optional[str] = None,
    position: Optional[str] = None,
    external_id: Optional[str] = None,
    player_id: Optional[str] = None,
    active: bool = True,
) -> Player:
    """Insert a player row and return it."""
    parts = name.split()
    now = datetime.utcnow()
    player = Player(
        id=player_id or str(uuid.uuid4()),
        external_id=external_id,
        id_source="espn",
        name=name,
        first_name=parts[0],
        last_name=" ".join(parts[1:]) or None,
        team=team,
        position=position,
        active=active,
        created_at=now,
        updated_at=now,
    )
    session.add(player)
    session.commit()
    return player


def make_players(count: int, prefix: str = "Player") -> List[SourcePlayer]:
    """Distinct source players with sequential external IDs."""
    return [
        SourcePlayer(external_id=str(1000 + i), name=f"{prefix} Number{i}", team="KC", position="WR")
        for i in range(count)
    ]
