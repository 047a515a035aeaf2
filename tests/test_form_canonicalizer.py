"""
Tests for form-token canonicalization and the explicit chemical-form rules.

Run: python -m pytest tests/test_form_canonicalizer.py -v
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from labelfacts.forms.canonicalizer import (
    canonicalize_form_text,
    canonicalize_form_tokens,
    collect_explicit_form_tokens,
    extract_explicit_form_tokens,
    is_coq10,
    normalize_form_text,
)


class TestCanonicalize:
    @pytest.mark.parametrize("text", ["Coenzyme Q10 (Ubidecarenone)", "CoQ10", "Ubiquinone"])
    def test_coq10_collapses_to_one_token(self, text):
        assert canonicalize_form_text(text) == ["ubiquinone"]

    def test_word_rewrites(self):
        assert canonicalize_form_text("Rhizome, standardized extract") == ["root", "std", "extract"]
        assert canonicalize_form_text("Aerial parts") == ["whole", "plant", "parts"]

    def test_idempotent(self):
        once = canonicalize_form_text("Rhizome, standardized extract")
        assert canonicalize_form_tokens(once) == once

    def test_filler_and_dosage_tokens_dropped(self):
        assert canonicalize_form_text("root and 500mg extract") == ["root", "extract"]

    def test_duplicates_and_short_tokens(self):
        assert canonicalize_form_tokens(["Root", "tuber", "a", "42", "root"]) == ["root"]

    def test_empty_input(self):
        assert canonicalize_form_tokens([None, "", "  "]) == []

    def test_normalize_keeps_underscores(self):
        assert normalize_form_text(" D3_Cholecalciferol!! ") == "d3_cholecalciferol"
        assert is_coq10("coenzyme q10")
        assert not is_coq10("")


class TestExplicitRules:
    def test_bisglycinate_is_not_glycinate(self):
        assert extract_explicit_form_tokens("Magnesium bisglycinate chelate") == ["bisglycinate", "chelate"]

    def test_methylfolate_spellings(self):
        assert extract_explicit_form_tokens("L-5-MTHF") == ["5_mthf"]
        assert extract_explicit_form_tokens("L-methylfolate calcium") == ["5_mthf"]

    def test_specific_salt_and_generic_anion_both_reported(self):
        assert extract_explicit_form_tokens("Pyridoxal-5'-phosphate") == ["p5p", "phosphate"]

    def test_ascorbates(self):
        assert extract_explicit_form_tokens("Sodium ascorbate") == ["sodium_ascorbate"]

    def test_no_rule_matches(self):
        assert extract_explicit_form_tokens("Whole leaf powder") == []
        assert extract_explicit_form_tokens(None) == []

    def test_collect_canonicalizes_union(self):
        assert collect_explicit_form_tokens(
            ["Vitamin D3 (cholecalciferol)", "Calcium citrate", None, "citrate"]
        ) == ["d3_cholecalciferol", "citrate"]
