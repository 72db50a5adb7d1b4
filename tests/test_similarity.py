import itertools

import pytest

from slabmarket.utils.similarity import calculate_similarity, levenshtein_distance

SAMPLES = ["", "a", "Charizard", "charizard", "Charizard ex", "Blastoise", "4/102", "4", None]


# ---------- levenshtein_distance ----------


def test_levenshtein_classic_example():
    assert levenshtein_distance("kitten", "sitting") == 3


def test_levenshtein_insert_delete_substitute_cost_one():
    assert levenshtein_distance("abc", "abcd") == 1
    assert levenshtein_distance("abcd", "abc") == 1
    assert levenshtein_distance("abc", "abd") == 1


# ---------- calculate_similarity ----------


def test_both_empty_is_identical():
    assert calculate_similarity("", "") == 1.0


@pytest.mark.parametrize("other", ["", "x", "Charizard", None])
def test_none_scores_zero(other):
    assert calculate_similarity(None, other) == 0.0
    assert calculate_similarity(other, None) == 0.0


def test_equal_strings_score_one():
    for value in SAMPLES:
        if value is not None:
            assert calculate_similarity(value, value) == 1.0


def test_normalised_distance():
    assert calculate_similarity("kitten", "sitting") == pytest.approx(4 / 7)
    assert calculate_similarity("", "abc") == 0.0


def test_case_sensitive():
    assert calculate_similarity("Charizard", "charizard") < 1.0
    assert calculate_similarity("Charizard".lower(), "charizard") == 1.0


def test_bounds_and_symmetry():
    for a, b in itertools.product(SAMPLES, repeat=2):
        score = calculate_similarity(a, b)
        assert 0.0 <= score <= 1.0
        assert score == calculate_similarity(b, a)
