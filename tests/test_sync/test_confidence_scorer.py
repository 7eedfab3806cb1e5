"""Unit tests for confidence_scorer and the team lookup.

Test Strategy:
1. Test exact match scenarios (confidence = 1.0)
2. Test nickname and fuzzy name scenarios
3. Test team and position contributions, including missing data
4. Test position groups
5. Test match method classification and reasons
6. Test confidence always stays within [0, 1]

Each test follows the pattern:
- Given: A source athlete and a database player with specific characteristics
- When: calculate_player_match_confidence() is called
- Then: Confidence score matches expected value
"""
import pytest

from rostersync.services.sync.models import MatchingOptions, MatchMethod
from rostersync.services.sync.utils.confidence_scorer import (
    calculate_name_score,
    calculate_player_match_confidence,
    calculate_position_score,
    calculate_team_score,
    classify_match_method,
    describe_match_reasons,
)
from rostersync.services.sync.utils.teams import DEFAULT_TEAM_LOOKUP, TeamLookup


class TestConfidenceScorer:
    """Test suite for match confidence scoring."""

    # Exact Match Tests (Confidence = 1.0)
    # ─────────────────────────────────────────────────────────────

    def test_exact_match_name_team_position(self):
        """Should return exactly 1.0 for identical name, team and position."""
        confidence = calculate_player_match_confidence(
            "Patrick Mahomes", "Patrick Mahomes", "KC", "KC", "QB", "QB"
        )
        assert confidence == 1.0

    def test_exact_match_is_case_insensitive(self):
        """Should ignore case, punctuation and suffixes."""
        confidence = calculate_player_match_confidence(
            "PATRICK MAHOMES II", "patrick mahomes", "kc", "KC", "qb", "QB"
        )
        assert confidence == 1.0

    # Name Variation Tests
    # ─────────────────────────────────────────────────────────────

    def test_nickname_with_team_and_position(self):
        """Should score 'Pat Mahomes' against 'Patrick Mahomes' (KC, QB) at 0.9 or above."""
        confidence = calculate_player_match_confidence(
            "Pat Mahomes", "Patrick Mahomes", "KC", "KC", "QB", "QB"
        )
        assert 0.9 <= confidence <= 1.0
        assert classify_match_method("Pat Mahomes", "Patrick Mahomes") == MatchMethod.NAME_VARIATION

    def test_name_variation_floor(self):
        """Should lift known nicknames to 0.9 only while variations are enabled."""
        assert calculate_name_score("Bill Smith", "William Smith") == pytest.approx(0.9)

        disabled = MatchingOptions(enable_name_variation_matching=False)
        assert calculate_name_score("Bill Smith", "William Smith", disabled) < 0.85

    def test_unrelated_names_score_low(self):
        """Should give clearly different names a low name score."""
        assert calculate_name_score("Patrick Mahomes", "Tyreek Hill") < 0.6

    def test_empty_name_scores_zero(self):
        """Should return 0.0 when either name is empty."""
        assert calculate_name_score("", "Josh Allen") == 0.0

    # Team and Position Tests
    # ─────────────────────────────────────────────────────────────

    def test_missing_team_contributes_nothing(self):
        """Should not redistribute the team weight when a team is missing."""
        confidence = calculate_player_match_confidence(
            "Josh Allen", "Josh Allen", None, "BUF", "QB", "QB"
        )
        assert confidence == pytest.approx(0.8)

    def test_team_mismatch(self):
        """Should drop the team weight for different teams."""
        confidence = calculate_player_match_confidence(
            "Josh Allen", "Josh Allen", "JAX", "BUF", "QB", "QB"
        )
        assert confidence == pytest.approx(0.8)

    def test_team_names_resolve_through_lookup(self):
        """Should treat a team code and its full name as the same team."""
        assert calculate_team_score("KC", "Kansas City Chiefs", DEFAULT_TEAM_LOOKUP) == 1.0
        assert calculate_team_score("KC", "Kansas City Chiefs") == 0.0
        assert calculate_team_score("KC", None) is None

    @pytest.mark.parametrize("pos1,pos2,expected", [
        ("QB", "qb", 1.0),
        ("RB", "HB", 0.8),
        ("HB", "FB", 0.8),
        ("WR", "FL", 0.8),
        ("K", "PK", 0.8),
        ("DST", "D/ST", 0.8),
        ("QB", "WR", 0.0),
        ("TE", "WR", 0.0),
    ])
    def test_position_scores(self, pos1, pos2, expected):
        """Should score same positions 1.0, same groups 0.8 and others 0.0."""
        assert calculate_position_score(pos1, pos2) == expected
        assert calculate_position_score(pos2, pos1) == expected

    def test_missing_position(self):
        """Should return None for an unknown position."""
        assert calculate_position_score(None, "QB") is None

    def test_position_group_contribution(self):
        """Should add 0.8 of the position weight for a group match."""
        confidence = calculate_player_match_confidence(
            "Bijan Robinson", "Bijan Robinson", "ATL", "ATL", "HB", "RB"
        )
        assert confidence == pytest.approx(0.98)

    # Bounds Tests
    # ─────────────────────────────────────────────────────────────

    def test_confidence_capped_at_one(self):
        """Should cap confidence at 1.0 even with oversized weights."""
        options = MatchingOptions(name_weight=1.0, team_weight=1.0, position_weight=1.0)
        confidence = calculate_player_match_confidence(
            "Josh Allen", "Josh Allen", "BUF", "BUF", "QB", "QB", options=options
        )
        assert confidence == 1.0

    @pytest.mark.parametrize("source,candidate", [
        (("Patrick Mahomes", "KC", "QB"), ("Josh Allen", "BUF", "QB")),
        (("", None, None), ("Josh Allen", "BUF", "QB")),
        (("Amon-Ra St. Brown", "DET", "WR"), ("Equanimeous St. Brown", "CHI", "WR")),
    ])
    def test_confidence_in_unit_interval(self, source, candidate):
        """Should always return a confidence between 0 and 1."""
        confidence = calculate_player_match_confidence(
            source[0], candidate[0], source[1], candidate[1], source[2], candidate[2]
        )
        assert 0.0 <= confidence <= 1.0


class TestMatchClassification:
    """Test suite for match method and reasons."""

    @pytest.mark.parametrize("source,candidate,method", [
        ("Josh Allen", "JOSH ALLEN", MatchMethod.EXACT_NAME_MATCH),
        ("Mike Evans", "Michael Evans", MatchMethod.NAME_VARIATION),
        ("Jon Smyth", "John Smith", MatchMethod.PHONETIC_MATCH),
        ("Davante Adams", "Davante Odams", MatchMethod.FUZZY_NAME_MATCH),
        ("Josh Allen", "Josh Allison", MatchMethod.MULTIPLE_FACTORS),
    ])
    def test_classify_match_method(self, source, candidate, method):
        """Should name the strongest name signal."""
        assert classify_match_method(source, candidate) == method

    def test_describe_match_reasons(self):
        """Should list name, team and position findings."""
        reasons = describe_match_reasons("Pat Mahomes", "Patrick Mahomes", 1.0, 0.8)
        assert reasons == ["name: name variation", "team match", "position group match"]

    def test_describe_skips_unknown_team_and_position(self):
        """Should leave out signals that could not be compared."""
        reasons = describe_match_reasons("Josh Allen", "Josh Allen", None, None)
        assert reasons == ["name: exact name match"]


class TestTeamLookup:
    """Test suite for team abbreviation lookups."""

    @pytest.mark.parametrize("team,expected", [
        ("KC", "KC"),
        ("kc", "KC"),
        ("Kansas City Chiefs", "KC"),
        ("Chiefs", "KC"),
        ("WAS", "WSH"),
        ("OAK", "LV"),
        ("XYZ", "XYZ"),
    ])
    def test_to_abbreviation(self, team, expected):
        """Should resolve codes, aliases, names and nicknames."""
        assert DEFAULT_TEAM_LOOKUP.to_abbreviation(team) == expected

    def test_missing_team(self):
        """Should return None for a missing team."""
        assert DEFAULT_TEAM_LOOKUP.to_abbreviation(None) is None
        assert DEFAULT_TEAM_LOOKUP.to_abbreviation("  ") is None

    def test_full_name(self):
        """Should return the full team name for codes and aliases."""
        assert DEFAULT_TEAM_LOOKUP.full_name("was") == "Washington Commanders"
        assert DEFAULT_TEAM_LOOKUP.full_name("XYZ") is None

    def test_custom_table(self):
        """Should use an injected table instead of the NFL one."""
        lookup = TeamLookup({"AAA": "Alpha Ants"}, {"AA": "AAA"})
        assert lookup.to_abbreviation("ants") == "AAA"
        assert lookup.to_abbreviation("AA") == "AAA"
        assert lookup.to_abbreviation("KC") == "KC"
