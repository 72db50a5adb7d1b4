from typing import Optional

from rapidfuzz.distance import Levenshtein


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost edit distance (substitution, insertion, deletion)."""
    return Levenshtein.distance(a, b)


def calculate_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalised Levenshtein similarity in ``[0, 1]``.

    ``None`` on either side scores 0, two empty strings score 1. Comparison is
    case-sensitive; lowercase both sides first for case-insensitive scoring.
    """
    if a is None or b is None:
        return 0.0
    if a == b:
        return 1.0

    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0

    distance = levenshtein_distance(a, b)
    return (longest - distance) / longest
