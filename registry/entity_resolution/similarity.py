"""
String similarity primitives used as per-field scorers.

All scores are floats in [0, 1].
"""

from rapidfuzz.distance import Jaro

# Winkler prefix bonus is capped at 4 characters
MAX_PREFIX_LENGTH = 4

# Containment matches count slightly less than a near-exact match
CONTAINMENT_DISCOUNT = 0.9


def jaro(s1: str, s2: str) -> float:
    """
    Classical Jaro similarity.

    Match window is floor(max(len(s1), len(s2)) / 2) - 1. Transpositions
    are half the out-of-order matched characters, rounded down (t // 2), as
    rapidfuzz and jellyfish count them. Equal strings score 1.0; an empty
    side or no matching characters scores 0.0.
    """
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    return Jaro.similarity(s1, s2)


def common_prefix_length(s1: str, s2: str, limit: int = MAX_PREFIX_LENGTH) -> int:
    """Length of the shared leading run of characters, capped at `limit`."""
    length = 0
    for c1, c2 in zip(s1[:limit], s2[:limit]):
        if c1 != c2:
            break
        length += 1
    return length


def jaro_winkler(s1: str, s2: str, prefix_scale: float = 0.1) -> float:
    """
    Jaro-Winkler similarity.

    Adds prefix * prefix_scale * (1 - jaro) for a shared prefix of up to four
    characters. The bonus is applied at every Jaro level, not only above the
    usual 0.7 boost threshold.

    Raises:
        ValueError: if prefix_scale would push scores above 1.0
    """
    if not 0 <= prefix_scale <= 0.25:
        raise ValueError(f"prefix_scale must be within [0, 0.25], got {prefix_scale}")

    score = jaro(s1, s2)
    prefix = common_prefix_length(s1, s2)
    return score + prefix * prefix_scale * (1 - score)


def containment(s1: str, s2: str) -> float:
    """
    Substring containment score.

    len(shorter) / len(longer) when the shorter string occurs inside the
    longer one, else 0. Catches truncated names such as "ABC CHILDCARE"
    inside "ABC CHILDCARE CENTER MANCHESTER".
    """
    if not s1 or not s2:
        return 0.0

    shorter, longer = (s1, s2) if len(s1) <= len(s2) else (s2, s1)
    if shorter in longer:
        return len(shorter) / len(longer)
    return 0.0


def name_similarity(s1: str, s2: str) -> float:
    """Best of Jaro-Winkler and discounted containment."""
    return max(jaro_winkler(s1, s2), CONTAINMENT_DISCOUNT * containment(s1, s2))
