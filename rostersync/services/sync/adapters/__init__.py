"""Adapters between the sync pipeline and the outside world.

The orchestrator only sees the two contracts in ``base``; the concrete
adapters translate them to ESPN's JSON APIs and to SQLAlchemy.

Available adapters:
- espn_adapter: ESPN NFL athletes, scoreboards, box scores and calendar
- db_adapter: SQLAlchemy-backed player, stat line and sync report store
"""
from rostersync.services.sync.adapters.base import DatabaseStore, SourceClient
from rostersync.services.sync.adapters.db_adapter import SqlAlchemyPlayerStore
from rostersync.services.sync.adapters.espn_adapter import EspnSourceClient

__all__ = [
    "DatabaseStore",
    "SourceClient",
    "SqlAlchemyPlayerStore",
    "EspnSourceClient",
]
