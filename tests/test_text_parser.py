"""
Tests for paragraph-style label parsing, draft merging and prompt rendering.

Run: python -m pytest tests/test_text_parser.py -v
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from labelfacts.ocr_types import IssueKind, LabelDraft, ParsedIngredient, ValidationIssue
from labelfacts.parsers.text_parser import (
    TextLine,
    analyze_label_draft,
    build_text_lines,
    detect_sections,
    extract_text_ingredients,
    format_for_prompt,
    ingredient_keys,
    merge_drafts,
    merge_split_lines,
    normalize_for_match,
    parse_text_line,
)

NPN_LABEL = "\n".join([
    "Medicinal Ingredients:",
    "Each capsule contains:",
    "Vitamin C (ascorbic acid) 500 mg",
    "Zinc (zinc citrate) 10 mg",
    "Non-medicinal ingredients: cellulose",
    "Directions: Adults take 1 capsule daily.",
])


def line(raw):
    return TextLine(raw=raw, normalized=normalize_for_match(raw))


def ing(name, amount, unit, conf=0.9, dv=None):
    return ParsedIngredient(name=name, amount=amount, unit=unit, dv_percent=dv, confidence=conf)


def draft(ingredients, score=0.8, coverage=1.0, serving="1 capsule", attempted=0, issues=()):
    return LabelDraft(
        serving_size=serving,
        ingredients=tuple(ingredients),
        parse_coverage=coverage,
        confidence_score=score,
        issues=tuple(issues),
        rows_attempted=attempted,
    )


class TestBuildTextLines:
    def test_sparse_tokens_fall_back_to_full_text(self):
        lines = build_text_lines([], NPN_LABEL)
        assert [ln.raw for ln in lines] == NPN_LABEL.splitlines()

    def test_nothing_to_read(self):
        assert build_text_lines([], None) == []


class TestSections:
    def test_medicinal_block_ends_at_next_heading(self):
        lines = build_text_lines([], NPN_LABEL)
        sections, has_medicinal = detect_sections(lines)

        assert has_medicinal
        assert [ln.raw for ln in sections["medicinal"]] == [
            "Each capsule contains:",
            "Vitamin C (ascorbic acid) 500 mg",
            "Zinc (zinc citrate) 10 mg",
        ]

    def test_non_medicinal_heading_is_not_medicinal(self):
        _, has_medicinal = detect_sections([line("Non-medicinal ingredients: gelatin")])
        assert not has_medicinal


class TestMergeSplitLines:
    def test_name_joined_with_amount_on_next_line(self):
        merged = merge_split_lines([line("Vitamin D3 (cholecalciferol)"), line("25 mcg")])
        assert [ln.raw for ln in merged] == ["Vitamin D3 (cholecalciferol) 25 mcg"]

    def test_complete_lines_left_alone(self):
        lines = [line("Zinc 10 mg"), line("Copper 1 mg")]
        assert merge_split_lines(lines) == lines


class TestExtractTextIngredients:
    def test_medicinal_section(self):
        d = extract_text_ingredients([], NPN_LABEL)

        assert [(i.name, i.amount, i.unit) for i in d.ingredients] == [
            ("Vitamin C (ascorbic acid)", 500.0, "mg"),
            ("Zinc (zinc citrate)", 10.0, "mg"),
        ]
        assert d.serving_size == "per capsule"
        assert d.parse_coverage == 1.0
        assert d.issues == ()
        assert d.confidence_score >= 0.9

    def test_missing_medicinal_heading_reported(self):
        d = extract_text_ingredients([], "Vitamin C 500 mg\nZinc 10 mg\nTake 1 capsule daily")
        assert len(d.ingredients) == 2
        assert d.has_issue(IssueKind.HEADER_NOT_FOUND)
        assert d.serving_size == "1 capsule"

    def test_noise_lines_skipped(self):
        d = extract_text_ingredients([], "Medicinal ingredients:\nNPN 80012345 lot 22 mg\nBiotin 30 mcg")
        assert [i.name for i in d.ingredients] == ["Biotin"]

    def test_thousands_separator_not_left_in_name(self):
        ing = parse_text_line(line("Vitamin C 1,000 mg"), medicinal=True)
        assert (ing.name, ing.amount, ing.unit) == ("Vitamin C", 1000.0, "mg")

    def test_probiotic_count(self):
        ing = parse_text_line(line("Lactobacillus rhamnosus 10 billion CFU"), medicinal=True)
        assert (ing.name, ing.amount, ing.unit) == ("Lactobacillus rhamnosus", 10e9, "CFU")


class TestAnalyzeLabelDraft:
    def test_text_layout_selected_for_npn_label(self):
        assert analyze_label_draft([], NPN_LABEL) == extract_text_ingredients([], NPN_LABEL)


class TestMergeDrafts:
    def test_core_key_ignores_parentheticals(self):
        assert ingredient_keys("Vitamin C (ascorbic acid)")[1] == "vitamin c"
        assert ingredient_keys("Magnesium (as citrate)")[1] == "magnesium"

    def test_agreeing_amounts_earn_bonus(self):
        merged = merge_drafts(
            draft([ing("Vitamin C", 500, "mg")], score=0.8),
            draft([ing("Vitamin C (ascorbic acid)", 0.5, "g")], score=0.7),
            allow_supplement=False,
        )
        assert len(merged.ingredients) == 1
        assert merged.confidence_score == pytest.approx(0.93)
        assert not merged.has_issue(IssueKind.VALUE_ANOMALY)

    def test_conflicting_amounts_flagged(self):
        merged = merge_drafts(
            draft([ing("Vitamin C", 500, "mg")], score=0.8),
            draft([ing("Vitamin C (ascorbic acid)", 1000, "mg")], score=0.7),
            allow_supplement=False,
        )
        assert merged.has_issue(IssueKind.VALUE_ANOMALY)
        assert merged.confidence_score == pytest.approx(0.7)

    def test_missing_amount_filled_from_partner(self):
        merged = merge_drafts(
            draft([ing("Biotin", None, None, dv=100)]),
            draft([ing("Biotin", 30, "mcg", conf=0.7)]),
            allow_supplement=False,
        )
        only = merged.ingredients[0]
        assert (only.amount, only.unit, only.dv_percent) == (30, "mcg", 100)

    def test_large_amounts_pair_across_layouts(self):
        text = extract_text_ingredients([], "Medicinal ingredients:\nVitamin C 1,000 mg")
        merged = merge_drafts(
            draft([ing("Vitamin C", 1000, "mg")], attempted=1),
            text,
            allow_supplement=True,
        )
        assert [i.name for i in merged.ingredients] == ["Vitamin C"]
        assert not merged.has_issue(IssueKind.VALUE_ANOMALY)

    def test_supplement_only_when_allowed(self):
        primary = draft([ing("Vitamin C", 500, "mg")])
        secondary = draft([ing("Zinc", 10, "mg", conf=0.7)])

        assert len(merge_drafts(primary, secondary, allow_supplement=False).ingredients) == 1

        merged = merge_drafts(primary, secondary, allow_supplement=True)
        assert [i.name for i in merged.ingredients] == ["Vitamin C", "Zinc"]
        assert merged.ingredients[1].confidence == pytest.approx(0.56)


class TestMergedCoverage:
    TABLE = [
        ing("Vitamin C", 500, "mg"),
        ing("Zinc", 10, "mg"),
        ing("Biotin", None, None),
        ing("Choline", None, None),
        ing("Inositol", None, None),
    ]
    LOW = ValidationIssue(IssueKind.LOW_COVERAGE, "Only 40% of rows have valid amount/unit")

    def table_draft(self):
        return draft(self.TABLE, coverage=0.4, attempted=5, issues=[self.LOW])

    def test_coverage_recomputed_from_merged_rows(self):
        text = draft([ing("Biotin", 30, "mcg", conf=0.7)], attempted=1)
        merged = merge_drafts(self.table_draft(), text, allow_supplement=False)

        assert merged.rows_attempted == 5
        assert merged.parse_coverage == pytest.approx(0.6)
        assert merged.has_issue(IssueKind.LOW_COVERAGE) == (merged.parse_coverage < 0.7)
        low = [i for i in merged.issues if i.kind == IssueKind.LOW_COVERAGE]
        assert [i.message for i in low] == ["Only 60% of rows have valid amount/unit"]

    def test_gaps_filled_clears_low_coverage(self):
        text = draft([
            ing("Biotin", 30, "mcg", conf=0.7),
            ing("Choline", 50, "mg", conf=0.7),
            ing("Inositol", 25, "mg", conf=0.7),
        ], attempted=3)
        merged = merge_drafts(self.table_draft(), text, allow_supplement=False)

        assert merged.parse_coverage == 1.0
        assert not merged.has_issue(IssueKind.LOW_COVERAGE)

    def test_serving_size_from_either_draft(self):
        table = draft(self.TABLE, serving=None, attempted=5, issues=[
            ValidationIssue(IssueKind.MISSING_SERVING_SIZE, "Serving size not found"),
        ])
        merged = merge_drafts(table, draft([], serving="per capsule"), allow_supplement=False)
        assert merged.serving_size == "per capsule"
        assert not merged.has_issue(IssueKind.MISSING_SERVING_SIZE)


class TestFormatForPrompt:
    def test_rendering(self):
        d = draft([ing("Vitamin C", 500.0, "mg", dv=556)])
        assert format_for_prompt(d) == (
            "Serving Size: 1 capsule\n\nIngredients:\n- Vitamin C: 500 mg (556% DV)"
        )

    def test_name_only_ingredient(self):
        d = draft([ing("Choline", None, None)], serving=None)
        assert format_for_prompt(d) == "\nIngredients:\n- Choline"
