# labelfacts/diagnostics/root_causes.py
"""
Zero-coverage root-cause diagnostics (offline, read-only).

For every product whose stored form-coverage ratio is ≤ 0, each active
ingredient row is checked in this order:

  no ingredient_id                       → ingredient_id_missing  (stop)
  unit absent / unrecognized             → unit_missing           (continue)
  unit differs from the canonical unit   → unit_mismatch          (continue)
  ingredient has no verified forms       → missingVerified        (stop)
  blank form_raw                         → mismatch / form_raw_missing
  form_raw matches no form and no alias  → mismatch / taxonomy_mismatch

The product's primary reason is the first non-zero count in precedence
order; an identity or unit defect is never reported as a taxonomy gap.
A mismatch product is subtyped form_raw_missing when any of its mismatch
rows is blank, taxonomy_mismatch otherwise.

Random sampling is deterministic: a fixed LCG seeds a Fisher–Yates shuffle
of the sorted, de-duplicated pool, and the pool's sha256 digest is recorded
so two runs can be compared.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..forms.matcher import (
    FormMatchOutcome,
    aliases_for_ingredient,
    group_forms,
    match_form,
    split_aliases,
)
from ..ocr_types import FormAlias, IngredientForm, IngredientMeta, ProductIngredientRow
from ..ocr_utils import normalize_text

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reasons
# ---------------------------------------------------------------------------

INGREDIENT_ID_MISSING = "ingredient_id_missing"
UNIT_MISSING = "unit_missing"
UNIT_MISMATCH = "unit_mismatch"
MISSING_VERIFIED = "missingVerified"
MISMATCH = "mismatch"
UNKNOWN = "unknown"

REASON_PRECEDENCE = (INGREDIENT_ID_MISSING, UNIT_MISSING, UNIT_MISMATCH, MISSING_VERIFIED, MISMATCH)

FORM_RAW_MISSING = FormMatchOutcome.FORM_RAW_MISSING.value
TAXONOMY_MISMATCH = FormMatchOutcome.TAXONOMY_MISMATCH.value

DEFINITIONS: Dict[str, str] = {
    INGREDIENT_ID_MISSING: "At least one active row missing ingredient_id.",
    UNIT_MISSING: "At least one active row missing a recognizable unit.",
    UNIT_MISMATCH: "At least one active row with unit not matching canonical unit.",
    MISSING_VERIFIED: "Active rows have no verified forms for their ingredient_id.",
    MISMATCH: "Form raw missing or does not match verified forms/aliases.",
    "primaryReason": (
        "Primary reason is assigned by precedence: "
        "ingredient_id_missing > unit_missing > unit_mismatch > missingVerified > mismatch."
    ),
}

_RECOGNIZED_UNIT_KINDS = frozenset({"mass", "volume", "iu", "cfu"})
_RECOGNIZED_UNITS = frozenset({"mcg", "ug", "mg", "g", "iu", "ml", "cfu"})

DEFAULT_TOP_N = 20
MAX_EXAMPLES = 200
_SAMPLE_LIMIT = 10


def is_recognized_unit(unit: Optional[str], unit_kind: Optional[str] = None) -> bool:
    if unit_kind:
        return unit_kind in _RECOGNIZED_UNIT_KINDS
    if not unit:
        return False
    return unit.strip().lower() in _RECOGNIZED_UNITS


def resolve_primary_reason(counts: Mapping[str, int]) -> str:
    for reason in REASON_PRECEDENCE:
        if counts.get(reason, 0) > 0:
            return reason
    return UNKNOWN


# ---------------------------------------------------------------------------
# Per-product classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class MismatchRow:
    ingredient_id: str
    ingredient_name: str
    form_raw: Optional[str]
    form_raw_tokens: List[str]
    verified_form_keys: List[str]
    verified_aliases_sample: List[str]
    subtype: str


@dataclass(slots=True)
class ProductDiagnosis:
    source_id: str
    counts: Dict[str, int] = field(default_factory=lambda: {r: 0 for r in REASON_PRECEDENCE})
    mismatch_rows: List[MismatchRow] = field(default_factory=list)
    ingredient_names: List[str] = field(default_factory=list)

    @property
    def primary_reason(self) -> str:
        return resolve_primary_reason(self.counts)

    @property
    def total_count(self) -> int:
        return sum(self.counts.values())

    @property
    def mismatch_subtype(self) -> Optional[str]:
        if self.primary_reason != MISMATCH:
            return None
        if any(r.subtype == FORM_RAW_MISSING for r in self.mismatch_rows):
            return FORM_RAW_MISSING
        return TAXONOMY_MISMATCH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceId": self.source_id,
            "primaryReason": self.primary_reason,
            "counts": {
                "ingredientIdMissing": self.counts[INGREDIENT_ID_MISSING],
                "unitMissing": self.counts[UNIT_MISSING],
                "unitMismatch": self.counts[UNIT_MISMATCH],
                "missingVerified": self.counts[MISSING_VERIFIED],
                "mismatch": self.counts[MISMATCH],
            },
            "ingredientNames": list(dict.fromkeys(self.ingredient_names))[:_SAMPLE_LIMIT],
        }


def classify_product(
    source_id: str,
    rows: Iterable[ProductIngredientRow],
    meta: Mapping[str, IngredientMeta],
    forms_by_ingredient: Mapping[str, List[IngredientForm]],
    global_aliases: Sequence[FormAlias] = (),
    aliases_by_ingredient: Optional[Dict[str, List[FormAlias]]] = None,
) -> ProductDiagnosis:
    """Count every defect on the product's active rows; see module docstring."""
    scoped = aliases_by_ingredient or {}
    product = ProductDiagnosis(source_id=source_id)

    for row in rows:
        if not row.is_active:
            continue
        name = row.name_raw or "Unknown"
        product.ingredient_names.append(name)

        if not row.ingredient_id:
            product.counts[INGREDIENT_ID_MISSING] += 1
            continue

        unit = row.effective_unit
        if not unit or not is_recognized_unit(unit, row.unit_kind):
            product.counts[UNIT_MISSING] += 1

        meta_unit = meta[row.ingredient_id].unit if row.ingredient_id in meta else None
        if meta_unit and unit and unit != meta_unit:
            product.counts[UNIT_MISMATCH] += 1

        forms = forms_by_ingredient.get(row.ingredient_id, [])
        aliases = aliases_for_ingredient(row.ingredient_id, global_aliases, scoped)
        outcome = match_form(row.form_raw, forms, aliases)

        if outcome is FormMatchOutcome.MISSING_VERIFIED:
            product.counts[MISSING_VERIFIED] += 1
            continue
        if outcome is FormMatchOutcome.MATCHED:
            continue

        product.counts[MISMATCH] += 1
        normalized = normalize_text(row.form_raw)
        product.mismatch_rows.append(MismatchRow(
            ingredient_id=row.ingredient_id,
            ingredient_name=name,
            form_raw=row.form_raw,
            form_raw_tokens=normalized.split() if normalized else [],
            verified_form_keys=[f.form_key for f in forms if f.is_verified][:_SAMPLE_LIMIT],
            verified_aliases_sample=[
                a.alias_norm or a.alias_text for a in aliases if (a.alias_norm or a.alias_text)
            ][:_SAMPLE_LIMIT],
            subtype=outcome.value,
        ))

    return product


# ---------------------------------------------------------------------------
# Aggregate report
# ---------------------------------------------------------------------------

def _top_counts(counter: Mapping[str, int], top_n: int) -> List[Dict[str, Any]]:
    ranked = sorted(counter.items(), key=lambda kv: kv[1], reverse=True)[:top_n]
    return [{"ingredientName": name, "count": count} for name, count in ranked]


def build_root_cause_report(
    products: Sequence[ProductDiagnosis],
    *,
    top_n: int = DEFAULT_TOP_N,
    max_examples: int = MAX_EXAMPLES,
) -> Dict[str, Any]:
    total = len(products)

    counts: Dict[str, int] = {}
    for p in products:
        counts[p.primary_reason] = counts.get(p.primary_reason, 0) + 1
    ratios = {reason: round(n / total, 4) if total else 0 for reason, n in counts.items()}

    # stable sort keeps input order among equal totals
    top = sorted(products, key=lambda p: p.total_count, reverse=True)[:top_n]
    top_by_reason: Dict[str, List[Dict[str, Any]]] = {}
    for reason in REASON_PRECEDENCE:
        items = [p.to_dict() for p in products if p.primary_reason == reason][:top_n]
        if items:
            top_by_reason[reason] = items

    subtype_counts = {FORM_RAW_MISSING: 0, TAXONOMY_MISMATCH: 0}
    ingredient_counts: Dict[str, Dict[str, int]] = {FORM_RAW_MISSING: {}, TAXONOMY_MISMATCH: {}}
    source_ids_by_subtype: Dict[str, List[str]] = {FORM_RAW_MISSING: [], TAXONOMY_MISMATCH: []}
    mismatch_source_ids: List[str] = []
    examples: List[Dict[str, Any]] = []

    for p in products:
        subtype = p.mismatch_subtype
        if subtype is None:
            continue
        subtype_counts[subtype] += 1
        mismatch_source_ids.append(p.source_id)
        source_ids_by_subtype[subtype].append(p.source_id)

        for row in p.mismatch_rows:
            if row.subtype != subtype:
                continue
            bucket = ingredient_counts[subtype]
            bucket[row.ingredient_name] = bucket.get(row.ingredient_name, 0) + 1
            if len(examples) < max_examples:
                examples.append({
                    "sourceId": p.source_id,
                    "ingredientName": row.ingredient_name,
                    "resolvedIngredientId": row.ingredient_id,
                    "mismatchSubtype": row.subtype,
                    "formRaw": row.form_raw,
                    "formRawTokens": row.form_raw_tokens,
                    "verifiedFormKeys": row.verified_form_keys,
                    "verifiedAliasesSample": row.verified_aliases_sample,
                })

    return {
        "total": total,
        "counts": counts,
        "ratios": ratios,
        "top20": [p.to_dict() for p in top],
        "top20ByReason": top_by_reason,
        "mismatchCount": len(mismatch_source_ids),
        "mismatchSubtypeCounts": subtype_counts,
        "topIngredientsBySubtype": {
            k: _top_counts(v, top_n) for k, v in ingredient_counts.items()
        },
        "examples": examples,
        "mismatchSourceIds": mismatch_source_ids,
        "taxonomyMismatchSourceIds": source_ids_by_subtype[TAXONOMY_MISMATCH],
        "formRawMissingSourceIds": source_ids_by_subtype[FORM_RAW_MISSING],
        "definitions": dict(DEFINITIONS),
    }


# ---------------------------------------------------------------------------
# Deterministic sampling
# ---------------------------------------------------------------------------

DEFAULT_SEED = 12345
_LCG_MULTIPLIER = 1664525
_LCG_INCREMENT = 1013904223
_LCG_MODULUS = 2 ** 32


def seeded_rng(seed: Optional[int] = DEFAULT_SEED) -> Callable[[], float]:
    state = DEFAULT_SEED if seed is None else int(seed)

    def _next() -> float:
        nonlocal state
        state = (state * _LCG_MULTIPLIER + _LCG_INCREMENT) % _LCG_MODULUS
        return state / _LCG_MODULUS

    return _next


def seeded_shuffle(items: Sequence[Any], seed: Optional[int] = DEFAULT_SEED) -> List[Any]:
    result = list(items)
    rng = seeded_rng(seed)
    for i in range(len(result) - 1, 0, -1):
        j = int(rng() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def sort_unique_ids(ids: Iterable[str]) -> List[str]:
    return sorted({i for i in ids if i})


def pool_digest(ids: Iterable[str]) -> str:
    return hashlib.sha256("\n".join(sort_unique_ids(ids)).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def zero_coverage_ids(coverage: Mapping[str, Optional[float]]) -> List[str]:
    return [sid for sid, ratio in coverage.items() if ratio is not None and ratio <= 0]


def diagnose_products(store, source: str, source_ids: Sequence[str], *, score_version: Optional[str] = None) -> List[ProductDiagnosis]:
    """Fetch, filter to zero coverage, and classify. Never writes to the store."""
    coverage = store.fetch_form_coverage(source, source_ids, score_version)
    zero_ids = zero_coverage_ids(coverage)
    log.info("diagnostics: %d/%d products with zero form coverage", len(zero_ids), len(source_ids))
    if not zero_ids:
        return []

    rows = [r for r in store.fetch_product_ingredients(source, zero_ids) if r.is_active]
    ingredient_ids = sort_unique_ids(r.ingredient_id for r in rows if r.ingredient_id)

    meta = store.fetch_ingredient_meta(ingredient_ids)
    forms_by_ingredient = group_forms(store.fetch_ingredient_forms(ingredient_ids))
    global_aliases, aliases_by_ingredient = split_aliases(store.fetch_form_aliases(ingredient_ids))

    rows_by_product: Dict[str, List[ProductIngredientRow]] = {}
    for row in rows:
        rows_by_product.setdefault(row.source_id, []).append(row)

    zero_set = set(zero_ids)
    return [
        classify_product(sid, product_rows, meta, forms_by_ingredient, global_aliases, aliases_by_ingredient)
        for sid, product_rows in rows_by_product.items()
        if sid in zero_set
    ]


def run_diagnostics(
    store,
    source: str,
    source_ids: Optional[Sequence[str]] = None,
    *,
    random_sample: bool = False,
    limit: int = 1000,
    seed: int = DEFAULT_SEED,
    pool_ids: Optional[Sequence[str]] = None,
    sample_pool: int = 5000,
    score_version: Optional[str] = None,
    top_n: int = DEFAULT_TOP_N,
) -> Dict[str, Any]:
    """
    Build the zero-coverage payload for a fixed id list or a seeded random
    sample of the scored pool.
    """
    pool: List[str] = []
    digest: Optional[str] = None

    if source_ids:
        sample_ids = list(source_ids)
        mode = "fixed"
    elif random_sample:
        if pool_ids:
            pool = sort_unique_ids(pool_ids)
        else:
            pool = store.fetch_pool_source_ids(source, max(limit * 5, sample_pool), score_version)
        if not pool:
            raise ValueError("sample pool is empty")
        digest = pool_digest(pool)
        sample_ids = seeded_shuffle(pool, seed)[:limit]
        mode = "random_sample"
    else:
        sample_ids = store.fetch_recent_source_ids(source, limit, score_version)
        mode = "recent"

    if not sample_ids:
        raise ValueError("no source ids to diagnose")

    products = diagnose_products(store, source, sample_ids, score_version=score_version)
    summary = build_root_cause_report(products, top_n=top_n)

    fixed = mode != "random_sample"
    return {
        "source": source,
        "sample": {
            "mode": mode,
            "seed": None if fixed else seed,
            "count": len(sample_ids),
            "poolSize": None if fixed else len(pool),
            "poolDigest": digest,
        },
        "sampleIds": sample_ids,
        "zeroCoverageCount": len(products),
        "summary": summary,
        "products": [p.to_dict() for p in products],
        "definitions": dict(DEFINITIONS),
    }
