"""Fuzzy matching of invoice descriptions: pure Python, zero external dependencies.

Two scores, not interchangeable:

* ``token_overlap_score``: symmetric, used to compare a new invoice
  description with descriptions already stored in the mapping store.
* ``name_coverage_score``: asymmetric, used to compare an invoice
  description with an ingredient name. Ingredient names are short, so
  the score is the share of name tokens found in the description.
"""

from __future__ import annotations

import math
from typing import Iterable

from domain.models import IngredientRef
from domain.normalization import normalize_description

MIN_TOKEN_LENGTH = 3


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def tokenize(text: str) -> set[str]:
    """Normalized tokens of at least three characters."""
    return {t for t in normalize_description(text).split() if len(t) >= MIN_TOKEN_LENGTH}


def token_overlap_score(a: str, b: str) -> int:
    """Dice coefficient over significant tokens, 0–100."""
    norm_a = normalize_description(a)
    norm_b = normalize_description(b)
    if norm_a and norm_a == norm_b:
        return 100
    tokens_a = tokenize(norm_a)
    tokens_b = tokenize(norm_b)
    if not tokens_a or not tokens_b:
        return 0
    common = len(tokens_a & tokens_b)
    return _round_half_up(2 * common / (len(tokens_a) + len(tokens_b)) * 100)


def name_coverage_score(description: str, name: str) -> int:
    """Share of the ingredient name's tokens present in the description, 0–100."""
    norm_desc = normalize_description(description)
    norm_name = normalize_description(name)
    if norm_name and norm_desc == norm_name:
        return 100
    name_tokens = tokenize(norm_name)
    if not name_tokens:
        return 0
    matched = len(name_tokens & tokenize(norm_desc))
    return _round_half_up(matched / len(name_tokens) * 100)


def best_ingredient_match(
    description: str,
    ingredients: Iterable[IngredientRef],
    threshold: int = 40,
) -> tuple[IngredientRef, int] | None:
    """Return the best-scoring active ingredient and its score, or None.

    Ties keep the first candidate seen.
    """
    best: IngredientRef | None = None
    best_score = 0
    for ingredient in ingredients:
        if not ingredient.active:
            continue
        score = name_coverage_score(description, ingredient.name)
        if score > best_score:
            best, best_score = ingredient, score
    if best is None or best_score < threshold:
        return None
    return best, best_score
