"""String similarity helpers shared by the store and the behavior model."""

import re

from rapidfuzz.distance import Levenshtein

_WORD_RE = re.compile(r"[a-z0-9']+")


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost insert/delete/substitute edit distance."""
    return Levenshtein.distance(a, b)


def string_similarity(a: str, b: str) -> float:
    """Edit-distance similarity normalized by the longer string, in [0, 1].

    Two empty strings are identical (1.0).
    """
    return Levenshtein.normalized_similarity(a, b)


def sequence_similarity(
    first: list[str], second: list[str], step_threshold: float = 0.8
) -> float:
    """Fraction of aligned steps that are near-duplicates.

    Steps are compared position by position; the denominator is the
    longer sequence so trailing unmatched steps count against the score.
    """
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    matches = sum(
        1 for x, y in zip(first, second) if string_similarity(x, y) > step_threshold
    )
    return matches / max(len(first), len(second))


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens."""
    return _WORD_RE.findall(text.lower())


def word_overlap(content: str, query: str) -> float:
    """Share of query words present in *content*, in [0, 1].

    An empty query is neutral and scores 0.5.
    """
    query_words = tokenize(query)
    if not query_words:
        return 0.5
    content_words = set(tokenize(content))
    hits = sum(1 for word in query_words if word in content_words)
    return min(hits / len(query_words), 1.0)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp *value* to the closed interval [low, high]."""
    return max(low, min(high, value))
