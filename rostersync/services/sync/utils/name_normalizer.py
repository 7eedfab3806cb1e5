"""Name normalization utilities for player matching.

Handles common variations between ESPN and the roster database:
- Suffixes: "Jr.", "Sr.", "III", "II"
- Punctuation: "D.J. Moore" → "dj moore", "Ja'Marr Chase" → "jamarr chase"
- Hyphens: "Amon-Ra St. Brown" → "amon ra st brown"
- Accents: "Tomás Hernández" → "tomas hernandez"
- Case and extra spaces
"""
import re
import unicodedata


# Common name suffixes that should be removed for comparison
SUFFIXES = {
    'jr', 'sr', 'iii', 'iv', 'ii', 'v',
}


def normalize(name: str) -> str:
    """
    Normalize a name for comparison by removing variations.

    Steps:
    1. Remove common suffixes (Jr, Sr, III, etc.)
    2. Normalize unicode characters (accents)
    3. Convert to lowercase
    4. Turn hyphens into spaces, drop remaining punctuation
    5. Collapse whitespace

    Examples:
        >>> normalize("D.J. Moore")
        'dj moore'
        >>> normalize("Odell Beckham Jr.")
        'odell beckham'
        >>> normalize("Amon-Ra St. Brown")
        'amon ra st brown'
        >>> normalize("  PATRICK   Mahomes II ")
        'patrick mahomes'
    """
    if not name:
        return ""

    name = _remove_suffixes(name.strip())
    name = _normalize_unicode(name)
    name = name.lower()
    name = name.replace('-', ' ')
    name = re.sub(r'[^\w\s]', '', name)
    name = ' '.join(name.split())

    return name


def _remove_suffixes(name: str) -> str:
    """Remove a trailing name suffix (Jr, Sr, II, III, ...), if present."""
    parts = name.split()

    # "Jr." on its own is a name, not a suffix
    if len(parts) > 1 and parts[-1].lower().replace('.', '').rstrip(',') in SUFFIXES:
        return ' '.join(parts[:-1]).rstrip(',')

    return name


def _normalize_unicode(name: str) -> str:
    """
    Remove accents and diacritics from unicode characters.

    Converts 'á' → 'a', 'ñ' → 'n', etc.
    """
    normalized = unicodedata.normalize('NFD', name)
    return ''.join(
        c for c in normalized
        if unicodedata.category(c) != 'Mn'
    )


def normalize_team(team: str | None) -> str:
    """Uppercase, trimmed team code ("kc " → "KC"); empty string for missing values."""
    if not team:
        return ""
    return team.strip().upper()


def extract_player_name_parts(name: str) -> tuple[str, str]:
    """
    Split a normalized player name into first and last name.

    Multi-word last names keep every word after the first:
    - "patrick mahomes" → ("patrick", "mahomes")
    - "amon ra st brown" → ("amon", "ra st brown")
    - "mahomes" → ("mahomes", "")

    Args:
        name: Player name (normalized or raw)

    Returns:
        Tuple of (first_name, last_name)
    """
    parts = normalize(name).split()

    if not parts:
        return ("", "")

    if len(parts) == 1:
        return (parts[0], "")

    return (parts[0], ' '.join(parts[1:]))


def last_name_hint(name: str) -> str:
    """
    Last token of the normalized name, used to narrow candidate lookups.

    Examples:
        >>> last_name_hint("Patrick Mahomes II")
        'mahomes'
        >>> last_name_hint("")
        ''
    """
    parts = normalize(name).split()
    return parts[-1] if parts else ""
