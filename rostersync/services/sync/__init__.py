"""
Roster Sync Service

Keeps the player database in step with ESPN.

Key components:
- Rate limiter: sliding-window throttling of outbound ESPN calls
- Matchers: resolve ESPN athletes to existing player rows by weighted fuzzy matching
- Adapters: ESPN source client and SQLAlchemy store behind narrow contracts
- Orchestrator: single-flight player, stats and full sync runs
"""
