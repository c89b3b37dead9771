"""Similarity tests: normalize, bigrams and the Dice coefficient.

Tests cover:
    - normalization of case, punctuation and whitespace
    - bigram padding and the empty string
    - symmetry, range and identity of dice_similarity
"""

import pytest

from similarity import bigrams, dice_similarity, normalize


def test_normalize_lowercases_and_strips_punctuation():
    assert normalize("  Pay   RENT!! (May) ") == "pay rent may"


def test_normalize_handles_empty_and_none():
    assert normalize("") == ""
    assert normalize(None) == ""


def test_bigrams_are_padded_with_spaces():
    assert bigrams("ab") == {" a", "ab", "b "}


def test_bigrams_of_punctuation_only_is_empty():
    assert bigrams("!!!") == set()


@pytest.mark.parametrize("a,b", [
    ("Buy milk", "Buy milk and eggs"),
    ("Quarterly report", "Report quarterly"),
    ("abc", "xyz"),
])
def test_dice_is_symmetric_and_bounded(a, b):
    forward = dice_similarity(a, b)
    assert forward == dice_similarity(b, a)
    assert 0.0 <= forward <= 1.0


def test_dice_of_identical_text_is_one():
    assert dice_similarity("Call the dentist", "call the DENTIST.") == 1.0


def test_dice_with_empty_side_is_zero():
    assert dice_similarity("", "anything") == 0.0
    assert dice_similarity("...", "...") == 0.0


def test_dice_known_value():
    """' a', 'ab', 'b ' vs ' a', 'ac', 'c ' share one of three bigrams each."""
    assert dice_similarity("ab", "ac") == pytest.approx(2 * 1 / 6)
