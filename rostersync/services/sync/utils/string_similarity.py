"""
String similarity toolkit for player name matching.

All functions are pure and operate on normalized names (see name_normalizer):

- levenshtein_similarity: 1 - edit distance / longer length
- jaro_winkler_similarity: Jaro-Winkler with the standard 0.1 prefix weight
- soundex / are_phonetically_similar: phonetic comparison per name token
- get_initials: "Amon-Ra St. Brown" → "ARSB"
- are_name_variations: "Pat Mahomes" ≈ "Patrick Mahomes" via the nickname table

Edit distance metrics come from rapidfuzz.
"""
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping

from rapidfuzz.distance import JaroWinkler, Levenshtein

from rostersync.services.sync.utils.name_normalizer import normalize, extract_player_name_parts


# Canonical first name → common short forms
NAME_VARIATIONS: Mapping[str, FrozenSet[str]] = MappingProxyType({
    "anthony": frozenset({"tony"}),
    "christopher": frozenset({"chris", "kit"}),
    "daniel": frozenset({"dan", "danny"}),
    "david": frozenset({"dave", "davey"}),
    "edward": frozenset({"ed", "eddie", "ted"}),
    "eugene": frozenset({"gene"}),
    "frederick": frozenset({"fred", "freddy"}),
    "gregory": frozenset({"greg"}),
    "james": frozenset({"jim", "jimmy", "jamie"}),
    "jeffrey": frozenset({"jeff"}),
    "joseph": frozenset({"joe", "joey"}),
    "joshua": frozenset({"josh"}),
    "kenneth": frozenset({"ken", "kenny"}),
    "matthew": frozenset({"matt"}),
    "michael": frozenset({"mike", "mickey"}),
    "nicholas": frozenset({"nick", "nicky"}),
    "patrick": frozenset({"pat", "paddy"}),
    "richard": frozenset({"rick", "ricky", "dick"}),
    "robert": frozenset({"rob", "bob", "bobby"}),
    "stephen": frozenset({"steve", "stevie"}),
    "theodore": frozenset({"ted", "teddy"}),
    "thomas": frozenset({"tom", "tommy"}),
    "william": frozenset({"will", "bill", "billy"}),
    "zachary": frozenset({"zach"}),
})


def _build_families(variations: Mapping[str, FrozenSet[str]]) -> Mapping[str, FrozenSet[str]]:
    # Every spelling → the canonical names it can stand for ("ted" → edward, theodore)
    families: Dict[str, set] = {}
    for canonical, short_forms in variations.items():
        for spelling in (canonical, *short_forms):
            families.setdefault(spelling, set()).add(canonical)
    return MappingProxyType({k: frozenset(v) for k, v in families.items()})


_NAME_FAMILIES = _build_families(NAME_VARIATIONS)

_SOUNDEX_CODES = MappingProxyType({
    **dict.fromkeys("BFPV", "1"),
    **dict.fromkeys("CGJKQSXZ", "2"),
    **dict.fromkeys("DT", "3"),
    "L": "4",
    **dict.fromkeys("MN", "5"),
    "R": "6",
})


def levenshtein_similarity(name1: str, name2: str) -> float:
    """
    Edit-distance similarity of two names in [0, 1].

    Examples:
        >>> levenshtein_similarity("Josh Allen", "josh allen")
        1.0
        >>> levenshtein_similarity("", "Josh Allen")
        0.0
    """
    norm1, norm2 = normalize(name1), normalize(name2)
    if not norm1 and not norm2:
        return 1.0
    if not norm1 or not norm2:
        return 0.0
    return Levenshtein.normalized_similarity(norm1, norm2)


def jaro_winkler_similarity(name1: str, name2: str) -> float:
    """Jaro-Winkler similarity of two names in [0, 1] (prefix weight 0.1)."""
    norm1, norm2 = normalize(name1), normalize(name2)
    if not norm1 and not norm2:
        return 1.0
    if not norm1 or not norm2:
        return 0.0
    return JaroWinkler.similarity(norm1, norm2, prefix_weight=0.1)


def soundex(name: str) -> str:
    """
    Four-character Soundex code of a name.

    Spaces and uncoded letters (vowels, H, W, Y) separate runs, so a repeated
    consonant sound is coded again after them.

    Examples:
        >>> soundex("Robert")
        'R163'
        >>> soundex("Rupert")
        'R163'
        >>> soundex("")
        ''
    """
    letters = [c for c in normalize(name).upper() if c.isalpha()]
    if not letters:
        return ""

    code = [letters[0]]
    last = _SOUNDEX_CODES.get(letters[0])
    for char in letters[1:]:
        digit = _SOUNDEX_CODES.get(char)
        if digit and digit != last:
            code.append(digit)
            if len(code) == 4:
                break
        last = digit

    return ''.join(code).ljust(4, '0')


def are_phonetically_similar(name1: str, name2: str) -> bool:
    """
    True if first and last names both share a Soundex code.

    "Jon Mahomes" and "John Mahomes" are phonetically similar, "Josh Allen"
    and "Josh Allison" are not (A450 vs A425).
    """
    first1, last1 = extract_player_name_parts(name1)
    first2, last2 = extract_player_name_parts(name2)
    if not first1 or not first2:
        return False
    if bool(last1) != bool(last2):
        return False
    return soundex(first1) == soundex(first2) and soundex(last1) == soundex(last2)


def get_initials(name: str) -> str:
    """
    Uppercase initials of every name part.

    Examples:
        >>> get_initials("Amon-Ra St. Brown")
        'ARSB'
        >>> get_initials("D.J. Moore")
        'DM'
    """
    return ''.join(part[0].upper() for part in normalize(name).split())


def are_first_names_related(first1: str, first2: str) -> bool:
    """True if two different first names are known variations of one another."""
    first1, first2 = first1.lower(), first2.lower()
    if first1 == first2:
        return False
    families1 = _NAME_FAMILIES.get(first1)
    families2 = _NAME_FAMILIES.get(first2)
    if not families1 or not families2:
        return False
    return bool(families1 & families2)


def are_name_variations(name1: str, name2: str) -> bool:
    """
    True if the names share a last name and their first names are known variations.

    Examples:
        >>> are_name_variations("Pat Mahomes", "Patrick Mahomes")
        True
        >>> are_name_variations("Pat Mahomes", "Pat Freiermuth")
        False
    """
    first1, last1 = extract_player_name_parts(name1)
    first2, last2 = extract_player_name_parts(name2)
    if not last1 or last1 != last2:
        return False
    return are_first_names_related(first1, first2)
