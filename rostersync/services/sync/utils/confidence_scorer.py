"""Confidence scoring for player matches.

Calculates a confidence score (0.0 to 1.0) for matching an ESPN athlete to a
database player from three weighted signals:

- Name (0.70): exact normalized match, else the best of edit distance,
  Jaro-Winkler, phonetic (0.8), nickname variation (0.9) and initials (0.6)
- Team (0.20): same team; contributes nothing when either side lacks a team
- Position (0.10): same position, or the same position group (0.8)
"""
from typing import List, Optional

from rostersync.services.sync.models import MatchingOptions, MatchMethod
from rostersync.services.sync.utils.name_normalizer import normalize, normalize_team
from rostersync.services.sync.utils.string_similarity import (
    are_name_variations,
    are_phonetically_similar,
    get_initials,
    jaro_winkler_similarity,
    levenshtein_similarity,
)
from rostersync.services.sync.utils.teams import TeamLookup

PHONETIC_MATCH_SCORE = 0.8
NAME_VARIATION_SCORE = 0.9
INITIALS_MATCH_SCORE = 0.6
POSITION_GROUP_SCORE = 0.8
FUZZY_METHOD_THRESHOLD = 0.8

# Positions ESPN and older rosters use interchangeably
POSITION_GROUPS = (
    frozenset({"RB", "HB", "FB"}),
    frozenset({"WR", "FL", "SE"}),
    frozenset({"TE"}),
    frozenset({"QB"}),
    frozenset({"K", "PK"}),
    frozenset({"DEF", "DST", "D/ST"}),
)

DEFAULT_OPTIONS = MatchingOptions()


def calculate_name_score(
    name1: str,
    name2: str,
    options: MatchingOptions = DEFAULT_OPTIONS,
) -> float:
    """
    Score two player names in [0, 1].

    Examples:
        >>> calculate_name_score("Patrick Mahomes", "PATRICK MAHOMES")
        1.0
        >>> calculate_name_score("Pat Mahomes", "Patrick Mahomes") >= 0.9
        True
    """
    norm1, norm2 = normalize(name1), normalize(name2)
    if not norm1 or not norm2:
        return 0.0
    if norm1 == norm2:
        return 1.0

    score = max(
        levenshtein_similarity(norm1, norm2),
        jaro_winkler_similarity(norm1, norm2),
    )

    if options.enable_phonetic_matching and are_phonetically_similar(norm1, norm2):
        score = max(score, PHONETIC_MATCH_SCORE)

    if options.enable_name_variation_matching and are_name_variations(norm1, norm2):
        score = max(score, NAME_VARIATION_SCORE)

    initials1, initials2 = get_initials(norm1), get_initials(norm2)
    if len(initials1) >= 2 and initials1 == initials2:
        score = max(score, INITIALS_MATCH_SCORE)

    return min(score, 1.0)


def calculate_team_score(
    team1: Optional[str],
    team2: Optional[str],
    team_lookup: Optional[TeamLookup] = None,
) -> Optional[float]:
    """
    1.0 for the same team, 0.0 for different teams, None if either is unknown.

    With a ``team_lookup`` both sides are canonicalized first, so "KC" and
    "Kansas City Chiefs" compare equal.
    """
    if team_lookup is not None:
        team1, team2 = team_lookup.to_abbreviation(team1), team_lookup.to_abbreviation(team2)
    code1, code2 = normalize_team(team1), normalize_team(team2)
    if not code1 or not code2:
        return None
    return 1.0 if code1 == code2 else 0.0


def calculate_position_score(position1: Optional[str], position2: Optional[str]) -> Optional[float]:
    """
    1.0 for the same position, 0.8 within a position group, 0.0 otherwise.

    Returns None if either position is unknown.

    Examples:
        >>> calculate_position_score("rb", "RB")
        1.0
        >>> calculate_position_score("HB", "FB")
        0.8
        >>> calculate_position_score("QB", "WR")
        0.0
    """
    pos1, pos2 = normalize_team(position1), normalize_team(position2)
    if not pos1 or not pos2:
        return None
    if pos1 == pos2:
        return 1.0
    for group in POSITION_GROUPS:
        if pos1 in group and pos2 in group:
            return POSITION_GROUP_SCORE
    return 0.0


def calculate_player_match_confidence(
    source_name: str,
    candidate_name: str,
    source_team: Optional[str] = None,
    candidate_team: Optional[str] = None,
    source_position: Optional[str] = None,
    candidate_position: Optional[str] = None,
    options: MatchingOptions = DEFAULT_OPTIONS,
    team_lookup: Optional[TeamLookup] = None,
) -> float:
    """
    Weighted confidence that two player records describe the same person.

    Missing team or position data contributes nothing; the weights are not
    redistributed, so a record without a team tops out at name + position weight.

    Returns:
        Confidence score between 0.0 and 1.0
    """
    confidence = calculate_name_score(source_name, candidate_name, options) * options.name_weight

    team_score = calculate_team_score(source_team, candidate_team, team_lookup)
    if team_score is not None:
        confidence += team_score * options.team_weight

    position_score = calculate_position_score(source_position, candidate_position)
    if position_score is not None:
        confidence += position_score * options.position_weight

    # Rounding keeps an exact match at 1.0 despite float summation (0.7 + 0.2 + 0.1)
    return round(max(0.0, min(confidence, 1.0)), 6)


def classify_match_method(
    source_name: str,
    candidate_name: str,
    options: MatchingOptions = DEFAULT_OPTIONS,
) -> MatchMethod:
    """Describe which name signal produced a match. Informational only."""
    norm1, norm2 = normalize(source_name), normalize(candidate_name)
    if norm1 and norm1 == norm2:
        return MatchMethod.EXACT_NAME_MATCH
    if options.enable_name_variation_matching and are_name_variations(norm1, norm2):
        return MatchMethod.NAME_VARIATION
    if options.enable_phonetic_matching and are_phonetically_similar(norm1, norm2):
        return MatchMethod.PHONETIC_MATCH
    if levenshtein_similarity(norm1, norm2) > FUZZY_METHOD_THRESHOLD:
        return MatchMethod.FUZZY_NAME_MATCH
    return MatchMethod.MULTIPLE_FACTORS


def describe_match_reasons(
    source_name: str,
    candidate_name: str,
    team_score: Optional[float],
    position_score: Optional[float],
    options: MatchingOptions = DEFAULT_OPTIONS,
) -> List[str]:
    """
    Human-readable reasons behind a candidate's score.

    Example:
        ['name: name variation', 'team match', 'position group match']
    """
    method = classify_match_method(source_name, candidate_name, options)
    reasons = [f"name: {method.value.replace('_', ' ')}"]
    if team_score == 1.0:
        reasons.append("team match")
    elif team_score == 0.0:
        reasons.append("team mismatch")
    if position_score == 1.0:
        reasons.append("position match")
    elif position_score == POSITION_GROUP_SCORE:
        reasons.append("position group match")
    elif position_score == 0.0:
        reasons.append("position mismatch")
    return reasons
