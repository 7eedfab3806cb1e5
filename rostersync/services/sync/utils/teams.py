"""
NFL team lookup.

Read-only mapping between team abbreviations and the names ESPN uses for them.
Components receive a ``TeamLookup`` instance instead of reaching for module
globals, so tests can swap in a smaller table.
"""
from types import MappingProxyType
from typing import Mapping, Optional

from rostersync.services.sync.utils.name_normalizer import normalize, normalize_team

NFL_TEAMS: Mapping[str, str] = MappingProxyType({
    "ARI": "Arizona Cardinals",
    "ATL": "Atlanta Falcons",
    "BAL": "Baltimore Ravens",
    "BUF": "Buffalo Bills",
    "CAR": "Carolina Panthers",
    "CHI": "Chicago Bears",
    "CIN": "Cincinnati Bengals",
    "CLE": "Cleveland Browns",
    "DAL": "Dallas Cowboys",
    "DEN": "Denver Broncos",
    "DET": "Detroit Lions",
    "GB": "Green Bay Packers",
    "HOU": "Houston Texans",
    "IND": "Indianapolis Colts",
    "JAX": "Jacksonville Jaguars",
    "KC": "Kansas City Chiefs",
    "LV": "Las Vegas Raiders",
    "LAC": "Los Angeles Chargers",
    "LAR": "Los Angeles Rams",
    "MIA": "Miami Dolphins",
    "MIN": "Minnesota Vikings",
    "NE": "New England Patriots",
    "NO": "New Orleans Saints",
    "NYG": "New York Giants",
    "NYJ": "New York Jets",
    "PHI": "Philadelphia Eagles",
    "PIT": "Pittsburgh Steelers",
    "SF": "San Francisco 49ers",
    "SEA": "Seattle Seahawks",
    "TB": "Tampa Bay Buccaneers",
    "TEN": "Tennessee Titans",
    "WSH": "Washington Commanders",
})

# Alternate abbreviations seen in ESPN payloads and older rosters
NFL_TEAM_ALIASES: Mapping[str, str] = MappingProxyType({
    "WAS": "WSH",
    "JAC": "JAX",
    "LA": "LAR",
    "OAK": "LV",
    "SD": "LAC",
    "STL": "LAR",
    "GNB": "GB",
    "KAN": "KC",
    "NWE": "NE",
    "NOR": "NO",
    "SFO": "SF",
    "TAM": "TB",
})


class TeamLookup:
    """Resolve team abbreviations, full names and nicknames to one canonical abbreviation."""

    def __init__(
        self,
        teams: Mapping[str, str] = NFL_TEAMS,
        aliases: Mapping[str, str] = NFL_TEAM_ALIASES,
    ):
        self._teams = MappingProxyType(dict(teams))
        self._aliases = MappingProxyType(dict(aliases))
        by_name = {}
        for abbreviation, full_name in self._teams.items():
            by_name[normalize(full_name)] = abbreviation
            # "Kansas City Chiefs" → "chiefs"
            by_name[normalize(full_name).split()[-1]] = abbreviation
        self._by_name = MappingProxyType(by_name)

    def to_abbreviation(self, team: Optional[str]) -> Optional[str]:
        """
        Canonical abbreviation for a team code or name.

        Unknown values come back uppercased rather than dropped, so an unrecognized
        but consistent code still compares equal to itself.

        Examples:
            >>> TeamLookup().to_abbreviation("Kansas City Chiefs")
            'KC'
            >>> TeamLookup().to_abbreviation("was")
            'WSH'
            >>> TeamLookup().to_abbreviation(None) is None
            True
        """
        code = normalize_team(team)
        if not code:
            return None
        if code in self._teams:
            return code
        if code in self._aliases:
            return self._aliases[code]
        return self._by_name.get(normalize(team), code)

    def full_name(self, abbreviation: str) -> Optional[str]:
        return self._teams.get(self.to_abbreviation(abbreviation) or "")


DEFAULT_TEAM_LOOKUP = TeamLookup()
