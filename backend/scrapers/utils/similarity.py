"""
Camp-name similarity and session natural keys.

Re-scrapes match incoming records to existing sessions of the same source
by (in order):
1. source_session_key when the routine supplies a stable id
2. exact natural key: start date, end date and normalized camp name
3. fuzzy fallback: same start date and name similarity above the threshold
"""
import re
from typing import Optional


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return re.sub(r"\s+", " ", (name or "").lower().strip())


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings (two-row dynamic programming)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j - 1] + cost,  # substitution
                current[j - 1] + 1,      # insertion
                previous[j] + 1,         # deletion
            ))
        previous = current
    return previous[-1]


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Similarity in [0, 1]: 1 - distance / longer length, case-insensitive.

    Two empty names are identical; one empty name matches nothing.
    """
    a_norm, b_norm = normalize_name(a), normalize_name(b)
    if a_norm == b_norm:
        return 1.0
    if not a_norm or not b_norm:
        return 0.0
    longest = max(len(a_norm), len(b_norm))
    return 1 - levenshtein(a_norm, b_norm) / longest


def natural_key(start_date: str, end_date: str, camp_name: str) -> str:
    """Exact-match key for a session within one source."""
    return f"{start_date}|{end_date}|{normalize_name(camp_name)}"
