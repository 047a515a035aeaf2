# labelfacts/scoring/confidence.py
"""
Extraction Validator & Confidence Scorer

Validation (per ingredient, then aggregate):

  unit_invalid          unit not in the recognized set (case-insensitive)
  value_anomaly         known high-risk ingredient above its sanity ceiling
  missing_serving_size  no serving size detected
  low_coverage          parse coverage < 0.70 (percentage in the message)
  header_not_found      no table header, but ingredients were extracted

Confidence composition runs as an ordered sequence of pure steps over a
ScoreAccumulator; the order is part of the contract:

  1. start at 1.0
  2. coverage < 0.70       → subtract (0.70 − coverage) × 0.5
  3. every issue           → subtract its severity weight
  4. any ingredients       → score × 0.7 + mean ingredient confidence × 0.3
  5. clamp to [0, 1]

needs_confirmation() triggers on a strictly broader set than the penalties:
a single anomaly forces review even when the blended score stays high.

Entry functions:
  validate_ingredient(ing)
  build_issues(...)
  compute_confidence(ingredients, parse_coverage, issues)
  finalize_draft(...)
  needs_confirmation(draft)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..ocr_types import IssueKind, LabelDraft, ParsedIngredient, ValidationIssue
from ..ocr_utils import clamp, mean
from ..parsers.label_vocab import RECOGNIZED_UNITS, SANITY_LIMITS

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COVERAGE_THRESHOLD = 0.70
_COVERAGE_PENALTY_FACTOR = 0.5

_INITIAL_SCORE = 1.0

# Blend weights for step 4 (must sum to 1.0)
_W_STRUCTURE = 0.7
_W_INGREDIENTS = 0.3

ISSUE_SEVERITY: Dict[IssueKind, float] = {
    IssueKind.MISSING_SERVING_SIZE: 0.15,
    IssueKind.HEADER_NOT_FOUND: 0.10,
    IssueKind.LOW_COVERAGE: 0.20,
    IssueKind.UNIT_INVALID: 0.10,
    IssueKind.VALUE_ANOMALY: 0.15,
}
_DEFAULT_SEVERITY = 0.05

CONFIRMATION_THRESHOLD = 0.70
CONFIRMATION_ISSUES = frozenset({
    IssueKind.MISSING_SERVING_SIZE,
    IssueKind.UNIT_INVALID,
    IssueKind.VALUE_ANOMALY,
})

HEADER_NOT_FOUND_MESSAGE = "Table header not detected, column mapping may be inaccurate"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_ingredient(ing: ParsedIngredient) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []

    if ing.unit and ing.unit.lower() not in RECOGNIZED_UNITS:
        issues.append(ValidationIssue(
            IssueKind.UNIT_INVALID,
            f'Invalid unit "{ing.unit}" for {ing.name}',
        ))

    if ing.amount is not None and ing.unit:
        lower_name = ing.name.lower()
        unit = ing.unit.lower()
        for key, max_amount, units in SANITY_LIMITS:
            if key not in lower_name:
                continue
            if unit in units and ing.amount > max_amount:
                issues.append(ValidationIssue(
                    IssueKind.VALUE_ANOMALY,
                    f"{ing.name} amount {_fmt_amount(ing.amount)} {ing.unit} "
                    f"exceeds typical max {_fmt_amount(max_amount)}",
                ))
            # first matching name wins
            break

    return issues


def _fmt_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def coverage_percent(parse_coverage: float) -> int:
    """Round half up, the way the percentage has always been displayed."""
    return int(math.floor(parse_coverage * 100 + 0.5))


def build_issues(
    *,
    serving_size: Optional[str],
    ingredients: Sequence[ParsedIngredient],
    parse_coverage: float,
    header_found: bool,
    coverage_noun: str = "rows",
    header_message: str = HEADER_NOT_FOUND_MESSAGE,
) -> List[ValidationIssue]:
    """Aggregate checks first, then per-ingredient checks, in a stable order."""
    issues: List[ValidationIssue] = []

    if not serving_size:
        issues.append(ValidationIssue(IssueKind.MISSING_SERVING_SIZE, "Serving size not found"))

    if parse_coverage < COVERAGE_THRESHOLD:
        issues.append(ValidationIssue(
            IssueKind.LOW_COVERAGE,
            f"Only {coverage_percent(parse_coverage)}% of {coverage_noun} have valid amount/unit",
        ))

    if not header_found and ingredients:
        issues.append(ValidationIssue(IssueKind.HEADER_NOT_FOUND, header_message))

    for ing in ingredients:
        issues.extend(validate_ingredient(ing))

    return issues


# ---------------------------------------------------------------------------
# Confidence pipeline
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ScoreAccumulator:
    score: float
    ingredients: Tuple[ParsedIngredient, ...]
    parse_coverage: float
    issues: Tuple[ValidationIssue, ...]

    def with_score(self, score: float) -> "ScoreAccumulator":
        return replace(self, score=score)


ScoreStep = Callable[[ScoreAccumulator], ScoreAccumulator]


def apply_coverage_penalty(acc: ScoreAccumulator) -> ScoreAccumulator:
    if acc.parse_coverage < COVERAGE_THRESHOLD:
        penalty = (COVERAGE_THRESHOLD - acc.parse_coverage) * _COVERAGE_PENALTY_FACTOR
        return acc.with_score(acc.score - penalty)
    return acc


def apply_issue_penalties(acc: ScoreAccumulator) -> ScoreAccumulator:
    penalty = sum(ISSUE_SEVERITY.get(i.kind, _DEFAULT_SEVERITY) for i in acc.issues)
    return acc.with_score(acc.score - penalty)


def blend_ingredient_confidence(acc: ScoreAccumulator) -> ScoreAccumulator:
    if not acc.ingredients:
        return acc
    avg = mean(i.confidence for i in acc.ingredients)
    return acc.with_score(acc.score * _W_STRUCTURE + avg * _W_INGREDIENTS)


def clamp_score(acc: ScoreAccumulator) -> ScoreAccumulator:
    return acc.with_score(clamp(acc.score, 0.0, 1.0))


CONFIDENCE_STEPS: Tuple[ScoreStep, ...] = (
    apply_coverage_penalty,
    apply_issue_penalties,
    blend_ingredient_confidence,
    clamp_score,
)


def compute_confidence(
    ingredients: Sequence[ParsedIngredient],
    parse_coverage: float,
    issues: Sequence[ValidationIssue],
) -> float:
    acc = ScoreAccumulator(
        score=_INITIAL_SCORE,
        ingredients=tuple(ingredients),
        parse_coverage=parse_coverage,
        issues=tuple(issues),
    )
    for step in CONFIDENCE_STEPS:
        acc = step(acc)
    return acc.score


def compute_parse_coverage(parsed_with_amount_unit: int, rows_attempted: int) -> float:
    if rows_attempted <= 0:
        return 0.0
    return clamp(parsed_with_amount_unit / rows_attempted, 0.0, 1.0)


def finalize_draft(
    *,
    serving_size: Optional[str],
    ingredients: Sequence[ParsedIngredient],
    rows_attempted: int,
    header_found: bool,
    coverage_noun: str = "rows",
    header_message: str = HEADER_NOT_FOUND_MESSAGE,
) -> LabelDraft:
    """
    Derive coverage from the ingredient list, validate, score, and freeze
    the result into a LabelDraft.
    """
    parsed_with_amount_unit = sum(1 for i in ingredients if i.has_amount_and_unit)
    parse_coverage = compute_parse_coverage(parsed_with_amount_unit, rows_attempted)

    issues = build_issues(
        serving_size=serving_size,
        ingredients=ingredients,
        parse_coverage=parse_coverage,
        header_found=header_found,
        coverage_noun=coverage_noun,
        header_message=header_message,
    )
    score = compute_confidence(ingredients, parse_coverage, issues)

    log.debug(
        "label draft: %d ingredients, coverage=%.2f, confidence=%.3f, %d issues",
        len(ingredients), parse_coverage, score, len(issues),
    )

    return LabelDraft(
        serving_size=serving_size,
        ingredients=tuple(ingredients),
        parse_coverage=parse_coverage,
        confidence_score=score,
        issues=tuple(issues),
        rows_attempted=rows_attempted,
    )


# ---------------------------------------------------------------------------
# Confirmation policy
# ---------------------------------------------------------------------------

def needs_confirmation(draft: LabelDraft) -> bool:
    if draft.confidence_score < CONFIRMATION_THRESHOLD:
        return True
    if draft.parse_coverage < COVERAGE_THRESHOLD:
        return True
    return any(i.kind in CONFIRMATION_ISSUES for i in draft.issues)
