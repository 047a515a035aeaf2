# labelfacts/ocr_types.py
"""
LabelFacts Types: geometry, label draft, and reference-row shapes.

OCR primitives (Token → Row → Cell) form a strict producer chain:
the OCR client emits Tokens, the clusterer groups them into Rows and
Cells, and the row parser turns Cells into ParsedIngredients. Every
stage produces new frozen values; nothing is mutated after creation.

Reference rows (IngredientForm / FormAlias / IngredientMeta /
ProductIngredientRow) mirror the read-only taxonomy store used by the
form matcher, the UL calculator, and the root-cause diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# ────────────────────────────────────────────────
# Base geometric unit: bounding box
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class BBox:
    x_min: float
    x_max: float
    y_min: float
    y_max: float

    @property
    def width(self) -> float:
        return max(0.0, self.x_max - self.x_min)

    @property
    def height(self) -> float:
        return max(0.0, self.y_max - self.y_min)

    @property
    def y_center(self) -> float:
        return (self.y_min + self.y_max) / 2.0


# ────────────────────────────────────────────────
# OCR primitives
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Token:
    """One recognized word. Confidence is normalized to 0.0–1.0."""
    text: str
    bbox: BBox
    confidence: float = 0.9

    @property
    def height(self) -> float:
        return self.bbox.height

    @property
    def y_center(self) -> float:
        return self.bbox.y_center

    @property
    def x_min(self) -> float:
        return self.bbox.x_min

    @property
    def x_max(self) -> float:
        return self.bbox.x_max


@dataclass(frozen=True, slots=True)
class Row:
    """Tokens judged to sit on one visual line (always x-sorted)."""
    tokens: Tuple[Token, ...]

    @property
    def y_min(self) -> float:
        return min(t.bbox.y_min for t in self.tokens)

    @property
    def y_max(self) -> float:
        return max(t.bbox.y_max for t in self.tokens)

    @property
    def y_center(self) -> float:
        return sum(t.y_center for t in self.tokens) / len(self.tokens)

    @property
    def text(self) -> str:
        return " ".join(t.text for t in self.tokens).strip()


@dataclass(frozen=True, slots=True)
class Cell:
    text: str
    x_min: float
    x_max: float
    confidence: float
    tokens: Tuple[Token, ...] = ()


@dataclass(frozen=True, slots=True)
class OcrResult:
    tokens: Tuple[Token, ...]
    full_text: str


# ────────────────────────────────────────────────
# Label draft
# ────────────────────────────────────────────────

class IssueKind(str, Enum):
    UNIT_INVALID = "unit_invalid"
    VALUE_ANOMALY = "value_anomaly"
    MISSING_SERVING_SIZE = "missing_serving_size"
    HEADER_NOT_FOUND = "header_not_found"
    LOW_COVERAGE = "low_coverage"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    kind: IssueKind
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.kind.value, "message": self.message}


@dataclass(frozen=True, slots=True)
class ParsedIngredient:
    name: str
    amount: Optional[float]
    unit: Optional[str]
    dv_percent: Optional[int]
    confidence: float
    source: str = ""

    @property
    def has_amount_and_unit(self) -> bool:
        return self.amount is not None and bool(self.unit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "amount": self.amount,
            "unit": self.unit,
            "dvPercent": self.dv_percent,
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class LabelDraft:
    """
    Aggregate extraction result handed to snapshot assembly.

    parse_coverage is derived from the ingredient list and rows_attempted
    (the ingredient-like rows or lines the parser tried); it is never set
    independently.
    """
    serving_size: Optional[str]
    ingredients: Tuple[ParsedIngredient, ...]
    parse_coverage: float
    confidence_score: float
    issues: Tuple[ValidationIssue, ...] = ()
    rows_attempted: int = 0

    def has_issue(self, kind: IssueKind) -> bool:
        return any(i.kind == kind for i in self.issues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "servingSize": self.serving_size,
            "ingredients": [i.to_dict() for i in self.ingredients],
            "parseCoverage": self.parse_coverage,
            "confidenceScore": self.confidence_score,
            "issues": [i.to_dict() for i in self.issues],
        }


# ────────────────────────────────────────────────
# Reference rows (taxonomy store, read-only)
# ────────────────────────────────────────────────

VERIFIED_AUDIT_STATUS = "verified"


@dataclass(frozen=True, slots=True)
class IngredientForm:
    ingredient_id: str
    form_key: str
    form_label: Optional[str] = None
    audit_status: Optional[str] = None
    id: Optional[str] = None
    relative_factor: Optional[float] = None
    confidence: Optional[float] = None
    evidence_grade: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return (self.audit_status or "").strip().lower() == VERIFIED_AUDIT_STATUS


@dataclass(frozen=True, slots=True)
class FormAlias:
    alias_text: str
    form_key: str
    alias_norm: Optional[str] = None
    ingredient_id: Optional[str] = None   # None → global alias
    confidence: Optional[float] = None
    audit_status: Optional[str] = None
    source: Optional[str] = None

    @property
    def is_global(self) -> bool:
        return self.ingredient_id is None


@dataclass(frozen=True, slots=True)
class IngredientMeta:
    id: str
    name: Optional[str] = None
    unit: Optional[str] = None
    rda_adult: Optional[float] = None
    ul_adult: Optional[float] = None


@dataclass(frozen=True, slots=True)
class ProductIngredientRow:
    """A persisted per-product ingredient row (as read back from storage)."""
    source_id: str
    ingredient_id: Optional[str] = None
    name_raw: Optional[str] = None
    form_raw: Optional[str] = None
    amount: Optional[float] = None
    unit: Optional[str] = None
    amount_normalized: Optional[float] = None
    unit_normalized: Optional[str] = None
    unit_kind: Optional[str] = None
    is_active: bool = True
    basis: str = "label_serving"

    @property
    def effective_amount(self) -> Optional[float]:
        return self.amount_normalized if self.amount_normalized is not None else self.amount

    @property
    def effective_unit(self) -> Optional[str]:
        return self.unit_normalized or self.unit


# ────────────────────────────────────────────────
# Daily dose multiplier (per data source)
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class DailyMultiplier:
    multiplier: float = 1.0
    source: str = "default_no_dosing_info"
    reliability: str = "default"          # "reliable" | "default" | "unreliable"
    penalty_reason: Optional[str] = None
    dose_rows_found: Optional[int] = None
    selected_dose_pop: Optional[str] = None
    frequency_unit: Optional[str] = None


__all__ = [
    "BBox",
    "Token",
    "Row",
    "Cell",
    "OcrResult",
    "IssueKind",
    "ValidationIssue",
    "ParsedIngredient",
    "LabelDraft",
    "VERIFIED_AUDIT_STATUS",
    "IngredientForm",
    "FormAlias",
    "IngredientMeta",
    "ProductIngredientRow",
    "DailyMultiplier",
]
