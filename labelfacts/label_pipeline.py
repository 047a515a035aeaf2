# labelfacts/label_pipeline.py
"""
Label pipeline façade: bridges the OCR client, the label parsers and the
form/UL scorers to application code.

Public API:
- analyze_label(source, client=None) -> LabelDraft
- analyze_ocr_result(result) -> LabelDraft
- evaluate_product(store, source, source_id, facts=None, settings=None) -> ProductEvaluation
- health() -> engine + version info

Nothing here persists state; the snapshot consumer receives the draft and
the per-product evaluation separately and assembles its own record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import pytesseract

from .config import Settings, load_settings
from .errors import ConfigurationError
from .forms.matcher import BUILTIN_FORM_ALIASES, compute_form_coverage
from .ocr_client import ImageSource, OcrClient
from .ocr_types import LabelDraft, OcrResult
from .parsers.text_parser import analyze_label_draft
from .reference_store import ReferenceStore
from .scoring.confidence import needs_confirmation
from .scoring.ul_warnings import UlWarnings, compute_daily_multiplier, compute_ul_warnings

log = logging.getLogger(__name__)


def analyze_ocr_result(result: OcrResult) -> LabelDraft:
    return analyze_label_draft(result.tokens, result.full_text)


def analyze_label(source: ImageSource, client: Optional[OcrClient] = None) -> LabelDraft:
    """
    OCR an image and structure it into a LabelDraft. Transport failures and
    empty OCR responses propagate; everything else degrades into issues.
    """
    client = client or OcrClient()
    draft = analyze_ocr_result(client.recognize(source))
    log.info(
        "label analyzed: %d ingredients, coverage=%.2f, confidence=%.2f, confirm=%s",
        len(draft.ingredients), draft.parse_coverage, draft.confidence_score,
        needs_confirmation(draft),
    )
    return draft


@dataclass(frozen=True, slots=True)
class ProductEvaluation:
    source_id: str
    form_coverage_ratio: float
    ul_warnings: UlWarnings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceId": self.source_id,
            "formCoverageRatio": self.form_coverage_ratio,
            "ulWarnings": self.ul_warnings.to_dict(),
        }


def evaluate_product(
    store: ReferenceStore,
    source: str,
    source_id: str,
    facts: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> ProductEvaluation:
    """Form coverage and UL warnings for one persisted product."""
    settings = settings or load_settings()
    rows = store.fetch_product_ingredients(source, [source_id])
    ingredient_ids = [r.ingredient_id for r in rows if r.ingredient_id]

    forms = store.fetch_ingredient_forms(ingredient_ids)
    aliases = [*BUILTIN_FORM_ALIASES, *store.fetch_form_aliases(ingredient_ids)]
    coverage = compute_form_coverage(rows, forms, aliases)

    warnings = compute_ul_warnings(
        rows,
        store.fetch_ingredient_meta(ingredient_ids),
        compute_daily_multiplier(facts),
        settings.ul_thresholds,
    )
    return ProductEvaluation(source_id=source_id, form_coverage_ratio=coverage, ul_warnings=warnings)


def health(settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or load_settings()
    info: Dict[str, Any] = {
        "engine": "tesseract",
        "lang": settings.tesseract_lang,
        "config": settings.tesseract_config,
        "timeout_s": settings.ocr_timeout_s,
    }
    try:
        pytesseract.pytesseract.tesseract_cmd = settings.require_tesseract()
        info["tesseract_version"] = str(pytesseract.get_tesseract_version())
        info["ok"] = True
    except (ConfigurationError, pytesseract.TesseractNotFoundError, OSError) as e:
        info["ok"] = False
        info["error"] = str(e)
    return info
