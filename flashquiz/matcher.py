"""Edit-distance answer matching with a tolerance knob.

threshold: 0.0 = exact match required, 1.0 = anything goes.
Two strings match when their normalized similarity is at least
``1 - threshold``. Callers normalize case and whitespace beforehand.
"""
from __future__ import annotations

from collections.abc import Sequence


def levenshtein(a: str, b: str) -> int:
    """Levenshtein distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a):
        current = [i + 1]
        for j, cb in enumerate(b):
            insertion = previous[j + 1] + 1
            deletion = current[j] + 1
            substitution = previous[j] + (ca != cb)
            current.append(min(insertion, deletion, substitution))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1.0 for identical strings, 0.0 for nothing in common."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def is_match(a: str, b: str, threshold: float) -> bool:
    threshold = max(0.0, min(1.0, threshold))
    if threshold == 0.0:
        return a == b
    return similarity(a, b) >= 1.0 - threshold


def matches_any(answer: str, expected: Sequence[str], threshold: float) -> bool:
    """Whether a single answer fits at least one expected segment."""
    return any(is_match(answer, exp, threshold) for exp in expected)


def is_fuzzy_match(
    submitted: Sequence[str],
    expected: Sequence[str],
    threshold: float = 0.4,
) -> bool:
    """True iff every expected segment is covered by some submission.

    Order does not matter and extra submissions are tolerated; an
    uncovered expected segment fails the whole set.
    """
    if not submitted:
        return not expected
    return all(matches_any(exp, submitted, threshold) for exp in expected)
