"""
Title similarity for duplicate detection: character-bigram Dice coefficient over normalized text.
"""
from __future__ import annotations

import re

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(value: str) -> str:
    """Lowercase, punctuation to spaces, whitespace collapsed. 'Pay  Rent!' -> 'pay rent'."""
    text = _NON_ALNUM.sub(" ", (value or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


def bigrams(value: str) -> set[str]:
    """Two-character tokens of the normalized string padded with one space each side."""
    normalized = normalize(value)
    if not normalized:
        return set()
    text = f" {normalized} "
    return {text[i:i + 2] for i in range(len(text) - 1)}


def dice_similarity(a: str, b: str) -> float:
    """2 * |A & B| / (|A| + |B|) over bigram sets; 0.0 when either set is empty."""
    set_a = bigrams(a)
    set_b = bigrams(b)
    if not set_a or not set_b:
        return 0.0
    return 2 * len(set_a & set_b) / (len(set_a) + len(set_b))
