"""
Tests for the string similarity primitives.
"""

import pytest

from registry.entity_resolution.similarity import (
    containment,
    jaro,
    jaro_winkler,
    name_similarity,
)

PAIRS = [
    ("MARTHA", "MARHTA"),
    ("DWAYNE", "DUANE"),
    ("DIXON", "DICKSONX"),
    ("LITTLE STARS CHILDCARE", "LITTLE STAR CHILDCARE CENTER"),
    ("ABC", "XYZ"),
]


def test_reference_vectors():
    """Classical Jaro / Jaro-Winkler values from the literature."""
    assert jaro("MARTHA", "MARHTA") == pytest.approx(0.944, abs=1e-3)
    assert jaro_winkler("MARTHA", "MARHTA") == pytest.approx(0.961, abs=1e-3)
    assert jaro_winkler("DWAYNE", "DUANE") == pytest.approx(0.840, abs=1e-3)
    assert jaro_winkler("DIXON", "DICKSONX") == pytest.approx(0.813, abs=1e-3)


def test_odd_transposition_count_rounds_down():
    """Three out-of-order matches count as one transposition, not 1.5."""
    # m=4, t=3//2=1: (4/7 + 4/7 + 3/4) / 3
    assert jaro("C BCACB", "ABA BAB") == pytest.approx((4 / 7 + 4 / 7 + 3 / 4) / 3)
    assert jaro("C BCACB", "ABA BAB") == pytest.approx(0.6310, abs=1e-4)


@pytest.mark.parametrize("value", ["A", "MARTHA", "LITTLE STARS CHILDCARE", "123 MAIN ST"])
def test_identical_strings_score_one(value):
    assert jaro_winkler(value, value) == 1.0


@pytest.mark.parametrize("a, b", PAIRS)
def test_jaro_winkler_is_symmetric(a, b):
    assert jaro_winkler(a, b) == pytest.approx(jaro_winkler(b, a))


def test_empty_and_disjoint_strings():
    assert jaro("", "ABC") == 0.0
    assert jaro("ABC", "") == 0.0
    assert jaro_winkler("", "ABC") == 0.0
    assert jaro("ABC", "XYZ") == 0.0


def test_prefix_bonus_applies_below_boost_threshold():
    """The Winkler bonus is not gated on jaro > 0.7."""
    base = jaro("ABCXXXXX", "ABCYYYYY")
    assert base < 0.7
    assert jaro_winkler("ABCXXXXX", "ABCYYYYY") == pytest.approx(base + 3 * 0.1 * (1 - base))


def test_prefix_bonus_capped_at_four_characters():
    base = jaro("ABCDEFXX", "ABCDEFYY")
    assert jaro_winkler("ABCDEFXX", "ABCDEFYY") == pytest.approx(base + 4 * 0.1 * (1 - base))


def test_prefix_scale_out_of_range():
    with pytest.raises(ValueError):
        jaro_winkler("MARTHA", "MARHTA", prefix_scale=0.3)


def test_containment():
    short = "ABC CHILDCARE"
    long = "ABC CHILDCARE CENTER MANCHESTER"
    assert containment(short, long) == pytest.approx(len(short) / len(long))
    assert containment(long, short) == containment(short, long)
    assert containment("ABC CHILDCARE", "XYZ CHILDCARE CENTER") == 0.0
    assert containment("", long) == 0.0


def test_name_similarity_takes_best_signal():
    short = "KIDS"
    long = "TINY TOTS KIDS"
    expected = max(jaro_winkler(short, long), 0.9 * containment(short, long))
    assert name_similarity(short, long) == pytest.approx(expected)
    assert name_similarity(short, long) >= 0.9 * containment(short, long)
