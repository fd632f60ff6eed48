"""Tests for domain.matching: the two token scores and best-match selection."""

import pytest

from domain.matching import (
    best_ingredient_match,
    name_coverage_score,
    token_overlap_score,
    tokenize,
)
from domain.models import IngredientRef


class TestTokenize:
    def test_drops_short_tokens(self):
        assert tokenize("Farina tipo 00 kg 25") == {"farina", "tipo"}

    def test_normalizes_first(self):
        assert tokenize("FARINA, Tipo") == {"farina", "tipo"}


# ------------------------------------------------------------------
# token_overlap_score (symmetric)
# ------------------------------------------------------------------


class TestTokenOverlapScore:
    def test_identical_after_normalization_is_100(self):
        assert token_overlap_score("Farina Tipo 00", "farina  tipo 00") == 100

    def test_no_shared_tokens_is_0(self):
        assert token_overlap_score("Farina tipo 00", "Zucchero semolato") == 0

    def test_only_short_tokens_is_0(self):
        assert token_overlap_score("kg 25", "pz 10") == 0

    def test_dice_coefficient(self):
        # {farina, tipo, 25kg} vs {farina, tipo}: 2*2/5 = 80
        assert token_overlap_score("Farina tipo 00 25kg", "FARINA TIPO 00 kg 25") == 80

    def test_symmetric(self):
        a, b = "Mandorle pelate siciliane", "mandorle sgusciate"
        assert token_overlap_score(a, b) == token_overlap_score(b, a)

    def test_rounds_to_nearest(self):
        # 1 common over 3+4 tokens: 28.57
        assert token_overlap_score("aaa bbb ccc", "aaa ddd eee fff") == 29

    def test_rounds_half_up(self):
        # 1 common over 8+8 tokens: 12.5
        a = "aaa bbb ccc ddd eee fff ggg hhh"
        b = "aaa iii jjj kkk lll mmm nnn ooo"
        assert token_overlap_score(a, b) == 13

    def test_empty_strings(self):
        assert token_overlap_score("", "") == 0


# ------------------------------------------------------------------
# name_coverage_score (asymmetric)
# ------------------------------------------------------------------


class TestNameCoverageScore:
    def test_identical_is_100(self):
        assert name_coverage_score("Farina 00", "farina 00") == 100

    def test_every_name_token_in_description(self):
        assert name_coverage_score("Farina tipo 00 25kg", "Farina 00") == 100

    def test_partial_coverage(self):
        assert name_coverage_score("Zucchero di canna", "Zucchero semolato") == 50

    def test_no_shared_tokens_is_0(self):
        assert name_coverage_score("Olio extravergine", "Farina 00") == 0

    def test_not_symmetric(self):
        description = "Farina tipo 00 macinata a pietra"
        assert name_coverage_score(description, "Farina") == 100
        assert name_coverage_score("Farina", description) < 100

    def test_name_with_only_short_tokens(self):
        assert name_coverage_score("Sale fino", "00") == 0


# ------------------------------------------------------------------
# best_ingredient_match
# ------------------------------------------------------------------


@pytest.fixture
def catalogue():
    return [
        IngredientRef(id=1, name="Farina 00", category="Farine", unit="KG"),
        IngredientRef(id=2, name="Farina di semola", category="Farine", unit="KG"),
        IngredientRef(id=3, name="Zucchero semolato", category="Dolcificanti", unit="KG"),
    ]


class TestBestIngredientMatch:
    def test_returns_best(self, catalogue):
        ingredient, score = best_ingredient_match("Farina tipo 00 25kg", catalogue)
        assert ingredient.id == 1
        assert score == 100

    def test_below_threshold_is_none(self, catalogue):
        assert best_ingredient_match("Zucchero di canna", catalogue, threshold=60) is None

    def test_at_threshold_is_accepted(self, catalogue):
        ingredient, score = best_ingredient_match("Zucchero di canna", catalogue, threshold=50)
        assert (ingredient.id, score) == (3, 50)

    def test_ties_keep_first_seen(self):
        candidates = [
            IngredientRef(id=7, name="Farina integrale"),
            IngredientRef(id=8, name="Farina bianca"),
        ]
        ingredient, score = best_ingredient_match("Farina", candidates)
        assert ingredient.id == 7
        assert score == 50

    def test_skips_inactive(self):
        candidates = [
            IngredientRef(id=1, name="Farina 00", active=False),
            IngredientRef(id=2, name="Farina", active=True),
        ]
        ingredient, _ = best_ingredient_match("Farina 00", candidates)
        assert ingredient.id == 2

    def test_no_candidates(self):
        assert best_ingredient_match("Farina", []) is None
