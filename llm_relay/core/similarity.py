"""String similarity for fuzzy summary matching."""

from __future__ import annotations


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit cost for insert, delete, and substitute."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Percentage similarity in [0, 100]: ``(maxLen - distance) / maxLen * 100``.

    Two empty strings are identical (100). One empty string scores 0.
    """
    if not a and not b:
        return 100.0
    if not a or not b:
        return 0.0
    max_len = max(len(a), len(b))
    return (max_len - levenshtein_distance(a, b)) * 100 / max_len


def is_similar(a: str, b: str, threshold: float = 90.0) -> bool:
    """True when both are empty, or the similarity strictly exceeds *threshold*."""
    if not a and not b:
        return True
    if not a or not b:
        return False
    return similarity(a, b) > threshold
