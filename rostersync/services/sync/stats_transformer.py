"""
Turn ESPN box-score records into database stat lines.

ESPN reports one record per (athlete, game, category): a quarterback who also
ran the ball shows up under both "passing" and "rushing". Records for the same
athlete and game are merged into one stat line keyed "category.stat".
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rostersync.services.sync.models import PlayerStatLine, SourceStatRecord
from rostersync.services.sync.utils.teams import TeamLookup, DEFAULT_TEAM_LOOKUP

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"^-?\d+$")
_FLOAT_PATTERN = re.compile(r"^-?\d*\.\d+$")


def parse_stat_value(value: Any) -> Any:
    """
    Convert ESPN's string stat values to numbers where they are plain numbers.

    Compound values such as "22/31" (completions/attempts) stay strings.

    Examples:
        >>> parse_stat_value("287")
        287
        >>> parse_stat_value("4.5")
        4.5
        >>> parse_stat_value("22/31")
        '22/31'
        >>> parse_stat_value("--") is None
        True
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text in ("", "-", "--"):
        return None
    if _INT_PATTERN.match(text):
        return int(text)
    if _FLOAT_PATTERN.match(text):
        return float(text)
    return text


class StatsTransformer:
    """Group and convert source stat records."""

    def __init__(self, team_lookup: TeamLookup = DEFAULT_TEAM_LOOKUP):
        self.team_lookup = team_lookup

    def transform(
        self,
        records: Iterable[SourceStatRecord],
        season: int,
        week: int,
    ) -> List[PlayerStatLine]:
        """
        Merge records into one stat line per (athlete, game), keeping first-seen order.

        Args:
            records: Box-score records from the source
            season: Season year to stamp on each line
            week: Week number to stamp on each line

        Returns:
            Stat lines ready for the store
        """
        lines: Dict[Tuple[str, str], PlayerStatLine] = {}

        for record in records:
            key = (record.external_player_id or "", record.game_id)
            line = lines.get(key)
            if line is None:
                line = PlayerStatLine(
                    external_player_id=record.external_player_id or "",
                    player_name=record.player_name or "",
                    game_id=record.game_id,
                    season=season,
                    week=week,
                    team=self._team(record.team),
                )
                lines[key] = line
            elif not line.player_name and record.player_name:
                line.player_name = record.player_name

            category = (record.category or "misc").lower()
            for stat, value in record.stats.items():
                line.stats[f"{category}.{stat}"] = parse_stat_value(value)

        logger.debug(f"Transformed stat records into {len(lines)} stat lines for week {week}")
        return list(lines.values())

    def _team(self, team: Optional[str]) -> Optional[str]:
        return self.team_lookup.to_abbreviation(team)
