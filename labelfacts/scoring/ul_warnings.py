# labelfacts/scoring/ul_warnings.py
"""
UL Warning Calculator

Flags ingredients whose per-day adult intake reaches the tolerable upper
intake level (UL) on file for that ingredient.

  per_day = amount × daily multiplier     (multiplier only for label_serving rows)
  ratio   = per_day / UL

  high      ratio > thresholds.high_ratio
  moderate  thresholds.moderate_ratio ≤ ratio, not high
            (tier is disabled when moderate_ratio is None)

Rows are skipped, never flagged, when they are inactive, have no ingredient
id, the ingredient has no positive UL, or the row's unit is not the
ingredient's canonical unit.

The daily multiplier comes from regulatory dose records for the product
(compute_daily_multiplier). Unusable dose data falls back to 1× with a
provenance tag explaining why.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..ocr_types import DailyMultiplier, IngredientMeta, ProductIngredientRow

log = logging.getLogger(__name__)

UL_BASIS = "per_day_adult"
LABEL_SERVING_BASIS = "label_serving"


@dataclass(frozen=True, slots=True)
class UlThresholds:
    high_ratio: float = 1.0
    moderate_ratio: Optional[float] = None


@dataclass(frozen=True, slots=True)
class UlWarnings:
    high: List[str] = field(default_factory=list)
    moderate: List[str] = field(default_factory=list)
    basis: str = UL_BASIS
    daily_multiplier_used: float = 1.0
    daily_multiplier_source: str = "default_no_dosing_info"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "high": list(self.high),
            "moderate": list(self.moderate),
            "basis": self.basis,
            "dailyMultiplierUsed": self.daily_multiplier_used,
            "dailyMultiplierSource": self.daily_multiplier_source,
        }


def _per_day_amount(row: ProductIngredientRow, multiplier: float) -> float:
    amount = float(row.effective_amount)
    if row.basis == LABEL_SERVING_BASIS:
        return amount * multiplier
    return amount


def compute_ul_warnings(
    rows: Sequence[ProductIngredientRow],
    ingredient_meta: Mapping[str, IngredientMeta],
    daily_multiplier: Optional[DailyMultiplier] = None,
    thresholds: Optional[UlThresholds] = None,
) -> UlWarnings:
    dm = daily_multiplier or DailyMultiplier()
    th = thresholds or UlThresholds()

    high: List[str] = []
    moderate: List[str] = []

    for row in rows:
        if not row.is_active or not row.ingredient_id:
            continue
        meta = ingredient_meta.get(row.ingredient_id)
        if meta is None or not meta.ul_adult or meta.ul_adult <= 0:
            continue
        if row.effective_amount is None or not row.effective_unit:
            continue
        if row.effective_unit != meta.unit:
            continue

        ratio = _per_day_amount(row, dm.multiplier) / meta.ul_adult
        name = row.name_raw or meta.name or row.ingredient_id

        if ratio > th.high_ratio:
            high.append(name)
        elif th.moderate_ratio is not None and ratio >= th.moderate_ratio:
            moderate.append(name)

    if high:
        log.info("UL exceeded for %d ingredient(s): %s", len(high), ", ".join(high))

    return UlWarnings(
        high=high,
        moderate=moderate,
        daily_multiplier_used=dm.multiplier,
        daily_multiplier_source=dm.source,
    )


# ---------------------------------------------------------------------------
# Daily multiplier from regulatory dose records
# ---------------------------------------------------------------------------

_POPULATION_KEYS = ("population_type_desc", "population_type", "population_desc")
_AGE_KEYS = ("age_minimum", "age_min", "age")
_AGE_UNIT_KEYS = ("uom_type_desc_age", "age_unit", "age_unit_of_measure")
_FREQ_KEYS = ("frequency", "frequency_value")
_FREQ_MIN_KEYS = ("frequency_minimum", "frequency_min")
_FREQ_MAX_KEYS = ("frequency_maximum", "frequency_max")
_FREQ_UNIT_KEYS = ("uom_type_desc_frequency", "frequency_unit", "frequency_unit_of_measure")
_QTY_KEYS = ("quantity_dose", "quantity", "dose", "dosage", "quantity_value", "dose_value")
_QTY_MIN_KEYS = ("quantity_dose_minimum", "quantity_minimum", "dose_minimum", "quantity_min", "dose_min")
_QTY_MAX_KEYS = ("quantity_dose_maximum", "quantity_maximum", "dose_maximum", "quantity_max", "dose_max")

ADULT_AGE = 18


def _first_value(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


def _first_text(record: Mapping[str, Any], keys: Sequence[str]) -> str:
    value = _first_value(record, keys)
    return str(value).strip().lower() if value is not None else ""


def _positive_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(str(value).strip())
    except ValueError:
        return None
    return num if num > 0 else None


def _ranged_number(record: Mapping[str, Any], keys, min_keys, max_keys) -> Optional[float]:
    direct = _positive_number(_first_value(record, keys))
    if direct is not None:
        return direct
    lo = _positive_number(_first_value(record, min_keys))
    hi = _positive_number(_first_value(record, max_keys))
    if lo is not None and hi is not None:
        return (lo + hi) / 2.0
    return lo if lo is not None else hi


def _is_adult_by_age(record: Mapping[str, Any]) -> bool:
    age = _positive_number(_first_value(record, _AGE_KEYS))
    if age is None or age < ADULT_AGE:
        return False
    unit = _first_text(record, _AGE_UNIT_KEYS)
    return not unit or "year" in unit


def select_adult_dose(doses: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """First record naming an adult population, else the first adult-by-age record."""
    for record in doses:
        if "adult" in _first_text(record, _POPULATION_KEYS):
            return record
    for record in doses:
        if _is_adult_by_age(record):
            return record
    return None


def _as_dose_list(raw: Any) -> List[Mapping[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        return [raw]
    return [r for r in raw if isinstance(r, Mapping)]


def compute_daily_multiplier(facts: Optional[Mapping[str, Any]]) -> DailyMultiplier:
    doses = _as_dose_list((facts or {}).get("doses"))
    if not doses:
        return DailyMultiplier(
            multiplier=1.0,
            source="default_no_dosing_info",
            reliability="default",
            penalty_reason="missing_dose_rows",
            dose_rows_found=0,
        )

    found = len(doses)
    selected = select_adult_dose(doses)
    if selected is None:
        return DailyMultiplier(
            multiplier=1.0,
            source="default_non_adult",
            reliability="default",
            penalty_reason="non_adult_population",
            dose_rows_found=found,
        )

    population = _first_text(selected, _POPULATION_KEYS) or None
    freq_unit = _first_text(selected, _FREQ_UNIT_KEYS)
    freq = _ranged_number(selected, _FREQ_KEYS, _FREQ_MIN_KEYS, _FREQ_MAX_KEYS)
    qty = _ranged_number(selected, _QTY_KEYS, _QTY_MIN_KEYS, _QTY_MAX_KEYS)

    def _result(multiplier: float, source: str, reliability: str,
                penalty: Optional[str] = None) -> DailyMultiplier:
        return DailyMultiplier(
            multiplier=multiplier,
            source=source,
            reliability=reliability,
            penalty_reason=penalty,
            dose_rows_found=found,
            selected_dose_pop=population,
            frequency_unit=freq_unit or None,
        )

    if "week" in freq_unit:
        if freq is None or qty is None:
            return _result(1.0, "default_invalid_fields", "unreliable", "invalid_dose_fields")
        return _result(freq * qty / 7.0, "lnhpd_weekly_dose", "unreliable", "weekly_converted")

    if "day" not in freq_unit and "daily" not in freq_unit:
        log.debug("non-daily frequency unit %r; using 1x", freq_unit)
        return _result(1.0, "non_daily_frequency_unit", "unreliable", "non_daily_frequency_unit")

    if freq is None or qty is None:
        return _result(1.0, "default_invalid_fields", "unreliable", "invalid_dose_fields")

    return _result(freq * qty, "lnhpd_dose", "reliable")
