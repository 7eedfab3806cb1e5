#!/usr/bin/env python3
"""
Run a roster or stats sync from the command line.

Usage:
    python scripts/run_sync.py players
    python scripts/run_sync.py stats --season 2024 --week 5
    python scripts/run_sync.py full --season 2024 --batch-size 50

Cron scheduling (player sync every morning):
    0 6 * * * cd /opt/rostersync && venv/bin/python scripts/run_sync.py players >> /tmp/rostersync.log 2>&1

Exit code is 0 for COMPLETED / COMPLETED_WITH_WARNINGS, 1 otherwise.
"""
import asyncio
import json
import signal
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from rostersync.core.config import settings
from rostersync.core.database import init_db
from rostersync.core.logging import configure_logging, get_logger
from rostersync.main import build_orchestrator
from rostersync.services.sync.adapters.espn_adapter import EspnSourceClient
from rostersync.services.sync.cancellation import CancellationToken
from rostersync.services.sync.models import SyncOptions, SyncStatus

logger = get_logger(__name__)

SUCCESS_STATUSES = {SyncStatus.COMPLETED, SyncStatus.COMPLETED_WITH_WARNINGS}


async def run(args) -> int:
    init_db()

    defaults = SyncOptions.from_settings(settings)
    options = SyncOptions(
        batch_size=args.batch_size or defaults.batch_size,
        retry_delay=defaults.retry_delay,
        skip_invalid_records=not args.strict,
    )

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        loop.add_signal_handler(signal.SIGTERM, token.cancel, "terminated")
    except NotImplementedError:
        # Windows event loops have no signal handlers
        pass

    async with EspnSourceClient.from_settings(settings) as source:
        orchestrator = build_orchestrator(source)

        if args.command == "players":
            result = await orchestrator.sync_players(options, token=token)
        elif args.command == "stats":
            result = await orchestrator.sync_player_stats(args.season, args.week, options, token=token)
        else:
            result = await orchestrator.full_sync(args.season, options, token=token)

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.status in SUCCESS_STATUSES else 1


def main():
    import argparse

    parser = argparse.ArgumentParser(
        description="Sync NFL players and box scores from ESPN"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Records per batch (default: {settings.SYNC_BATCH_SIZE})"
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort on the first invalid record instead of skipping it"
    )
    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        help="Logging level (default: %(default)s)"
    )

    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("players", help="Sync the active roster")

    stats = subcommands.add_parser("stats", help="Sync one week of box scores")
    stats.add_argument("--season", type=int, required=True)
    stats.add_argument("--week", type=int, required=True)

    full = subcommands.add_parser("full", help="Sync players, then every week of a season")
    full.add_argument("--season", type=int, required=True)

    args = parser.parse_args()
    configure_logging(level=args.log_level, json_output=settings.LOG_JSON)

    try:
        sys.exit(asyncio.run(run(args)))
    except ValueError as e:
        logger.error(f"Invalid options: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
