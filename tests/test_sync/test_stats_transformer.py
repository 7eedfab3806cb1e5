"""Unit tests for StatsTransformer.

Test Strategy:
1. Test stat value parsing (ints, floats, compound values, placeholders)
2. Test records for one athlete and game merge into one stat line
3. Test team canonicalization and season/week stamping
"""
import pytest

from rostersync.services.sync.models import SourceStatRecord
from rostersync.services.sync.stats_transformer import StatsTransformer, parse_stat_value


def record(athlete_id, name, game_id, category, stats, team="KC") -> SourceStatRecord:
    return SourceStatRecord(
        external_player_id=athlete_id,
        player_name=name,
        game_id=game_id,
        team=team,
        category=category,
        stats=stats,
    )


class TestParseStatValue:
    """Test suite for stat value conversion."""

    @pytest.mark.parametrize("raw,expected", [
        ("287", 287),
        ("-3", -3),
        ("4.5", 4.5),
        (".5", 0.5),
        ("22/31", "22/31"),
        ("--", None),
        ("", None),
        (12, 12),
        (None, None),
    ])
    def test_values(self, raw, expected):
        """Should convert plain numbers and keep compound values as strings."""
        assert parse_stat_value(raw) == expected


class TestStatsTransformer:
    """Test suite for merging box-score records."""

    def test_merges_categories_per_athlete_and_game(self):
        """Should merge passing and rushing lines of one athlete into one stat line."""
        records = [
            record("3139477", "Patrick Mahomes", "401547353", "passing", {"completions/passingAttempts": "22/31", "passingYards": "287"}),
            record("3139477", "Patrick Mahomes", "401547353", "rushing", {"rushingYards": "24"}),
            record("3116406", "Tyreek Hill", "401547353", "receiving", {"receptions": "7"}, team="MIA"),
        ]

        lines = StatsTransformer().transform(records, season=2024, week=3)

        assert len(lines) == 2
        mahomes = lines[0]
        assert mahomes.external_player_id == "3139477"
        assert mahomes.season == 2024
        assert mahomes.week == 3
        assert mahomes.stats == {
            "passing.completions/passingAttempts": "22/31",
            "passing.passingYards": 287,
            "rushing.rushingYards": 24,
        }
        assert lines[1].team == "MIA"

    def test_same_athlete_in_two_games(self):
        """Should keep separate stat lines per game."""
        records = [
            record("3139477", "Patrick Mahomes", "g1", "passing", {"passingYards": "200"}),
            record("3139477", "Patrick Mahomes", "g2", "passing", {"passingYards": "300"}),
        ]

        lines = StatsTransformer().transform(records, season=2024, week=3)

        assert [(line.game_id, line.stats["passing.passingYards"]) for line in lines] == [("g1", 200), ("g2", 300)]

    def test_canonicalizes_team(self):
        """Should convert team names and aliases to abbreviations."""
        lines = StatsTransformer().transform(
            [record("1", "Terry McLaurin", "g1", "receiving", {"receptions": "5"}, team="WAS")],
            season=2024,
            week=1,
        )
        assert lines[0].team == "WSH"

    def test_fills_missing_name_from_later_record(self):
        """Should take the athlete name from any record that has it."""
        lines = StatsTransformer().transform(
            [
                record("1", "", "g1", "defensive", {"totalTackles": "3"}),
                record("1", "Nick Bolton", "g1", "interceptions", {"interceptions": "1"}),
            ],
            season=2024,
            week=1,
        )
        assert lines[0].player_name == "Nick Bolton"

    def test_empty_input(self):
        assert StatsTransformer().transform([], season=2024, week=1) == []
