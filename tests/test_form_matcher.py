"""
Tests for form / alias matching and product form coverage.

Run: python -m pytest tests/test_form_matcher.py -v
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from labelfacts.forms.matcher import (
    BUILTIN_FORM_ALIASES,
    FormMatchOutcome,
    alias_matches_candidate,
    compute_form_coverage,
    form_matches_candidate,
    grade_weight,
    group_forms,
    match_form,
    select_best_form_match,
    split_aliases,
)
from labelfacts.ocr_types import FormAlias, IngredientForm, ProductIngredientRow


def form(key, label=None, ingredient="mg", status="verified", conf=1.0, grade="A"):
    return IngredientForm(
        ingredient_id=ingredient,
        form_key=key,
        form_label=label,
        audit_status=status,
        confidence=conf,
        evidence_grade=grade,
    )


CITRATE = form("citrate", "Magnesium Citrate")
BISGLYCINATE = form("bisglycinate", "Magnesium Bisglycinate")
THREONATE = form("l_threonate")
MAGTEIN = FormAlias(alias_text="Magtein", alias_norm="magtein", form_key="l_threonate", confidence=0.8)


class TestMatchForm:
    def test_form_key_in_candidate(self):
        assert match_form("Magnesium Bisglycinate Chelate", [BISGLYCINATE]) == FormMatchOutcome.MATCHED

    def test_case_and_punctuation_insensitive(self):
        assert match_form("MAGNESIUM-BISGLYCINATE", [BISGLYCINATE]) == FormMatchOutcome.MATCHED
        assert form_matches_candidate("l threonate", THREONATE)

    def test_no_verified_forms(self):
        pending = [form("citrate", status="pending")]
        assert match_form("citrate", pending) == FormMatchOutcome.MISSING_VERIFIED
        assert match_form(None, []) == FormMatchOutcome.MISSING_VERIFIED

    def test_blank_candidate(self):
        assert match_form("  ", [CITRATE]) == FormMatchOutcome.FORM_RAW_MISSING
        assert match_form(None, [CITRATE]) == FormMatchOutcome.FORM_RAW_MISSING

    def test_taxonomy_gap(self):
        assert match_form("oxide", [CITRATE, BISGLYCINATE, THREONATE]) == FormMatchOutcome.TAXONOMY_MISMATCH

    def test_alias_rescues_brand_name(self):
        assert match_form("Magtein", [THREONATE]) == FormMatchOutcome.TAXONOMY_MISMATCH
        assert match_form("Magtein", [THREONATE], [MAGTEIN]) == FormMatchOutcome.MATCHED
        assert alias_matches_candidate("magtein 144 mg", MAGTEIN)
        assert not alias_matches_candidate("", MAGTEIN)


class TestSelectBestFormMatch:
    def test_key_substring_beats_label_token(self):
        best = select_best_form_match("magnesium citrate", [BISGLYCINATE, CITRATE])
        assert best.form is CITRATE
        assert best.match_score == pytest.approx(1.0)
        assert best.alias is None

    def test_alias_score_weighted(self):
        threonate = form("l_threonate", conf=0.9, grade="B")
        best = select_best_form_match("magtein", [threonate], [MAGTEIN])
        # alias 1.0 × conf 0.8 × unverified 0.8, then form conf 0.9 × grade B 0.85
        assert best.match_score == pytest.approx(0.64 * 0.9 * 0.85)
        assert best.alias is MAGTEIN

    def test_alias_for_other_form_ignored(self):
        assert select_best_form_match("magtein", [CITRATE], [MAGTEIN]) is None

    def test_nothing_to_match(self):
        assert select_best_form_match("", [CITRATE]) is None
        assert select_best_form_match("citrate", []) is None

    def test_grade_weights(self):
        assert grade_weight("A") == 1.0
        assert grade_weight(" moderate ") == 0.85
        assert grade_weight(None) == 0.75
        assert grade_weight("unrated") == 0.75


class TestGrouping:
    def test_group_forms_drops_unverified(self):
        grouped = group_forms([CITRATE, form("oxide", status="pending"), form("picolinate", ingredient="zn")])
        assert sorted(grouped) == ["mg", "zn"]
        assert grouped["mg"] == [CITRATE]

    def test_split_aliases(self):
        scoped = FormAlias(alias_text="chelated", form_key="bisglycinate", ingredient_id="mg")
        global_aliases, by_ingredient = split_aliases([MAGTEIN, scoped])
        assert global_aliases == [MAGTEIN]
        assert by_ingredient == {"mg": [scoped]}

    def test_builtin_aliases_are_global_seeds(self):
        assert BUILTIN_FORM_ALIASES
        assert all(a.is_global and a.source == "seed" for a in BUILTIN_FORM_ALIASES)


class TestComputeFormCoverage:
    def test_ratio_over_active_rows(self):
        forms = [CITRATE, form("picolinate", ingredient="zn")]
        rows = [
            ProductIngredientRow("p1", ingredient_id="mg", form_raw="Magnesium citrate"),
            ProductIngredientRow("p1", ingredient_id="zn", name_raw="Zinc Picolinate"),
            ProductIngredientRow("p1", ingredient_id="fe", form_raw="ferrous fumarate"),
            ProductIngredientRow("p1", ingredient_id="mg", form_raw="citrate", is_active=False),
        ]
        assert compute_form_coverage(rows, forms) == pytest.approx(2 / 3)

    def test_name_fallback_when_form_text_misses(self):
        forms = [form("picolinate", ingredient="zn")]
        rows = [ProductIngredientRow("p1", ingredient_id="zn", form_raw="capsule", name_raw="Zinc Picolinate")]
        assert compute_form_coverage(rows, forms, aliases=()) == 1.0

    def test_missing_ingredient_id_never_matches(self):
        rows = [ProductIngredientRow("p1", form_raw="citrate")]
        assert compute_form_coverage(rows, [CITRATE]) == 0.0

    def test_no_active_rows(self):
        rows = [ProductIngredientRow("p1", ingredient_id="mg", form_raw="citrate", is_active=False)]
        assert compute_form_coverage(rows, [CITRATE]) == 0.0
        assert compute_form_coverage([], [CITRATE]) == 0.0
