# labelfacts/forms/matcher.py
"""
Form / Alias Matcher

Decides whether a raw ingredient-form string (e.g. "magnesium bisglycinate
chelate") corresponds to one of an ingredient's verified taxonomy forms,
either directly or through the alias table.

Form match, strongest first (candidate and form text normalized alike):
  1.0  candidate contains the normalized form_key
  0.9  every form_key token is in the candidate's token set
  0.8  every form_label token is in the candidate's token set
  0.6  any form_label token is in the candidate's token set

Alias match:
  1.0  candidate equals the alias
  0.9  candidate contains the alias
  0.8  every alias token present
  0.6  any alias token present

The boolean helpers (form_matches_candidate / alias_matches_candidate /
match_form) are what the diagnostics use; select_best_form_match scores the
same tiers, weighted by form and alias confidence, for the score engine.

An ingredient with no verified forms is never a match: match_form reports
it as MISSING_VERIFIED so it can be told apart from a taxonomy gap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..ocr_types import FormAlias, IngredientForm, ProductIngredientRow, VERIFIED_AUDIT_STATUS
from ..ocr_utils import clamp, normalize_text

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_SCORE_KEY_SUBSTRING = 1.0
_SCORE_KEY_TOKENS = 0.9
_SCORE_LABEL_TOKENS = 0.8
_SCORE_LABEL_ANY = 0.6

_SCORE_ALIAS_EQUAL = 1.0
_SCORE_ALIAS_CONTAINS = 0.9
_SCORE_ALIAS_TOKENS = 0.8
_SCORE_ALIAS_ANY = 0.6

_DEFAULT_ALIAS_CONFIDENCE = 0.6
_UNVERIFIED_ALIAS_WEIGHT = 0.8
_DEFAULT_FORM_CONFIDENCE = 0.5

# Evidence grade -> weight; unknown grades sit at the neutral default
_GRADE_WEIGHTS: Dict[str, float] = {
    "a": 1.0, "strong": 1.0, "high": 1.0,
    "b": 0.85, "moderate": 0.85, "medium": 0.85,
    "c": 0.7, "weak": 0.7, "low": 0.7,
    "d": 0.5, "none": 0.5,
}
_DEFAULT_GRADE_WEIGHT = 0.75


class FormMatchOutcome(str, Enum):
    MATCHED = "matched"
    MISSING_VERIFIED = "missing_verified"
    FORM_RAW_MISSING = "form_raw_missing"
    TAXONOMY_MISMATCH = "taxonomy_mismatch"


# ---------------------------------------------------------------------------
# Built-in global aliases (seeded, ingredient-agnostic)
# ---------------------------------------------------------------------------

_BUILTIN_ALIAS_SEEDS: Tuple[Tuple[str, str, float], ...] = (
    ("glycinate", "glycinate", 0.7),
    ("bisglycinate", "bisglycinate", 0.8),
    ("bi-glycinate", "bisglycinate", 0.7),
    ("di-glycinate", "bisglycinate", 0.7),
    ("diglycinate", "bisglycinate", 0.7),
    ("chelate", "bisglycinate", 0.6),
    ("chelated", "bisglycinate", 0.6),
    ("amino acid chelate", "bisglycinate", 0.6),
    ("citrate", "citrate", 0.7),
    ("tri-citrate", "citrate", 0.7),
    ("citrate malate", "citrate_malate", 0.7),
    ("malate", "malate", 0.7),
    ("picolinate", "picolinate", 0.7),
    ("gluconate", "gluconate", 0.7),
    ("sulfate", "sulfate", 0.7),
    ("sulphate", "sulfate", 0.7),
    ("chloride", "chloride", 0.7),
    ("carbonate", "carbonate", 0.7),
    ("nitrate", "nitrate", 0.7),
    ("phosphate", "phosphate", 0.7),
    ("threonate", "l_threonate", 0.7),
    ("l-threonate", "l_threonate", 0.7),
    ("magtein", "l_threonate", 0.8),
    ("hcl", "hcl", 0.7),
    ("hydrochloride", "hcl", 0.7),
    ("ferrous fumarate", "ferrous_fumarate", 0.8),
    ("ferrous sulfate", "ferrous_sulfate", 0.8),
    ("ferrous gluconate", "ferrous_gluconate", 0.8),
    ("manganese bisglycinate", "manganese_bisglycinate", 0.8),
    ("manganese gluconate", "manganese_gluconate", 0.8),
    ("manganese sulfate", "manganese_sulfate", 0.8),
    ("copper bisglycinate", "copper_bisglycinate", 0.8),
    ("copper gluconate", "copper_gluconate", 0.8),
    ("copper sulfate", "copper_sulfate", 0.8),
    ("potassium chloride", "potassium_chloride", 0.8),
    ("potassium citrate", "potassium_citrate", 0.8),
    ("potassium gluconate", "potassium_gluconate", 0.8),
    ("potassium iodide", "potassium_iodide", 0.8),
    ("sodium iodide", "sodium_iodide", 0.8),
    ("sodium ascorbate", "sodium_ascorbate", 0.8),
    ("calcium ascorbate", "calcium_ascorbate", 0.8),
    ("calcium pantothenate", "calcium_pantothenate", 0.8),
    ("calcium fructoborate", "calcium_fructoborate", 0.8),
    ("boron citrate", "boron_citrate", 0.8),
    ("selenium yeast", "selenium_yeast", 0.8),
    ("selenomethionine", "selenomethionine", 0.8),
    ("selenite", "selenite", 0.8),
    ("molybdenum chelate", "molybdenum_chelate", 0.8),
    ("sodium molybdate", "sodium_molybdate", 0.8),
    ("methylfolate", "methylfolate", 0.8),
    ("5-mthf", "5_mthf", 0.8),
    ("5 mthf", "5_mthf", 0.8),
    ("folic acid", "folic_acid", 0.8),
    ("folinic acid", "folinic_acid", 0.8),
    ("cyanocobalamin", "cyanocobalamin", 0.8),
    ("methylcobalamin", "methylcobalamin", 0.8),
    ("adenosylcobalamin", "adenosylcobalamin", 0.8),
    ("hydroxocobalamin", "hydroxocobalamin", 0.8),
    ("p5p", "p5p", 0.8),
    ("pyridoxine hcl", "pyridoxine_hcl", 0.8),
    ("thiamine hcl", "thiamine_hcl", 0.8),
    ("thiamine mononitrate", "thiamine_mononitrate", 0.8),
    ("riboflavin 5 phosphate", "riboflavin_5_phosphate", 0.8),
    ("riboflavin-5-phosphate", "riboflavin_5_phosphate", 0.8),
    ("niacinamide", "niacinamide", 0.8),
    ("nicotinic acid", "nicotinic_acid", 0.8),
    ("nicotinamide riboside", "nicotinamide_riboside", 0.8),
    ("inositol hexanicotinate", "inositol_hexanicotinate", 0.8),
    ("d3", "d3_cholecalciferol", 0.7),
    ("cholecalciferol", "d3_cholecalciferol", 0.8),
    ("d2", "d2_ergocalciferol", 0.7),
    ("ergocalciferol", "d2_ergocalciferol", 0.8),
    ("retinyl palmitate", "retinyl_palmitate", 0.8),
    ("retinyl acetate", "retinyl_acetate", 0.8),
    ("beta carotene", "beta_carotene", 0.8),
    ("ethyl ester", "ethyl_ester", 0.8),
    ("triglyceride", "triglyceride", 0.8),
    ("rTG", "triglyceride", 0.7),
    ("rtg", "triglyceride", 0.7),
    ("re-esterified triglyceride", "triglyceride", 0.7),
    ("reesterified triglyceride", "triglyceride", 0.7),
    ("phospholipid", "phospholipid", 0.8),
    ("phospholipid complex", "phospholipid", 0.7),
    ("free fatty acid", "free_fatty_acid", 0.7),
    ("free acid", "free_acid", 0.7),
    ("liposomal", "liposomal", 0.8),
    ("liposome", "liposomal", 0.7),
    ("phytosome", "phytosome", 0.8),
    ("micellar", "micellar", 0.8),
    ("micellized", "micellized", 0.8),
    ("microencapsulated", "microencapsulated", 0.7),
    ("micronized", "micronized", 0.7),
    ("emulsified", "emulsified", 0.7),
    ("beadlet", "beadlet", 0.7),
    ("delayed release", "delayed_release", 0.7),
    ("sustained release", "sustained_release", 0.7),
    ("slow release", "slow_release", 0.7),
    ("enteric", "enteric", 0.7),
    ("buffered", "buffered", 0.7),
    ("with piperine", "with_piperine", 0.7),
    ("bioperine", "with_piperine", 0.7),
    ("meriva", "phytosome", 0.7),
    ("quercefit", "phytosome", 0.7),
    ("curqfen", "phytosome", 0.6),
    ("bcm-95", "essential_oils_complex", 0.6),
    ("cavacurmin", "micellar", 0.6),
    ("longvida", "solid_lipid_particles", 0.7),
    ("slcp", "solid_lipid_particles", 0.7),
    ("theracurmin", "micellar", 0.7),
    ("novasol", "micellar", 0.7),
    ("emiq", "emiq", 0.8),
    ("isoquercetin", "isoquercetin", 0.8),
    ("suntheanine", "suntheanine", 0.8),
    ("pharmagaba", "pharmaGABA", 0.8),
    ("sensoril", "sensoril", 0.8),
    ("ksm-66", "branded", 0.6),
    ("traacs", "branded", 0.6),
    ("albion", "branded", 0.6),
    ("optizinc", "branded", 0.6),
    ("carnoSyn", "carnoSyn", 0.8),
    ("carnosyn", "carnoSyn", 0.8),
    ("egb 761", "egb761", 0.8),
    ("bacognize", "bacognize", 0.8),
    ("shr-5", "shr5", 0.8),
    ("shr5", "shr5", 0.8),
    ("silexan", "silexan", 0.8),
    ("optiMSM", "optims_msm", 0.8),
    ("optimsm", "optims_msm", 0.8),
)


def _seed_alias(alias_text: str, form_key: str, confidence: float) -> FormAlias:
    return FormAlias(
        alias_text=alias_text,
        alias_norm=normalize_text(alias_text),
        form_key=form_key,
        ingredient_id=None,
        confidence=confidence,
        audit_status="derived",
        source="seed",
    )


BUILTIN_FORM_ALIASES: Tuple[FormAlias, ...] = tuple(_seed_alias(*s) for s in _BUILTIN_ALIAS_SEEDS)


# ---------------------------------------------------------------------------
# Boolean matching
# ---------------------------------------------------------------------------

def _token_set(normalized: str) -> Set[str]:
    return set(normalized.split())


def _form_tier(candidate_norm: str, candidate_tokens: Set[str], form: IngredientForm) -> float:
    key = normalize_text(form.form_key)
    label = normalize_text(form.form_label)
    key_tokens = key.split()
    label_tokens = label.split()

    if key and key in candidate_norm:
        return _SCORE_KEY_SUBSTRING
    if key_tokens and all(t in candidate_tokens for t in key_tokens):
        return _SCORE_KEY_TOKENS
    if label_tokens and all(t in candidate_tokens for t in label_tokens):
        return _SCORE_LABEL_TOKENS
    if any(t in candidate_tokens for t in label_tokens):
        return _SCORE_LABEL_ANY
    return 0.0


def _alias_tier(candidate_norm: str, candidate_tokens: Set[str], alias: FormAlias) -> float:
    alias_norm = normalize_text(alias.alias_norm or alias.alias_text)
    if not alias_norm:
        return 0.0
    if candidate_norm == alias_norm:
        return _SCORE_ALIAS_EQUAL
    if alias_norm in candidate_norm:
        return _SCORE_ALIAS_CONTAINS
    alias_tokens = alias_norm.split()
    if alias_tokens and all(t in candidate_tokens for t in alias_tokens):
        return _SCORE_ALIAS_TOKENS
    if any(t in candidate_tokens for t in alias_tokens):
        return _SCORE_ALIAS_ANY
    return 0.0


def form_matches_candidate(candidate: Optional[str], form: IngredientForm) -> bool:
    norm = normalize_text(candidate)
    if not norm:
        return False
    return _form_tier(norm, _token_set(norm), form) > 0


def alias_matches_candidate(candidate: Optional[str], alias: FormAlias) -> bool:
    norm = normalize_text(candidate)
    if not norm:
        return False
    return _alias_tier(norm, _token_set(norm), alias) > 0


def verified_only(forms: Iterable[IngredientForm]) -> List[IngredientForm]:
    return [f for f in forms if f.is_verified]


def match_form(
    candidate: Optional[str],
    verified_forms: Sequence[IngredientForm],
    aliases: Sequence[FormAlias] = (),
) -> FormMatchOutcome:
    """
    Classify one candidate against an ingredient's verified forms and the
    global + ingredient-scoped aliases.
    """
    forms = verified_only(verified_forms)
    if not forms:
        return FormMatchOutcome.MISSING_VERIFIED

    norm = normalize_text((candidate or "").strip())
    if not norm:
        return FormMatchOutcome.FORM_RAW_MISSING

    tokens = _token_set(norm)
    if any(_form_tier(norm, tokens, f) > 0 for f in forms):
        return FormMatchOutcome.MATCHED
    if any(_alias_tier(norm, tokens, a) > 0 for a in aliases):
        return FormMatchOutcome.MATCHED
    return FormMatchOutcome.TAXONOMY_MISMATCH


# ---------------------------------------------------------------------------
# Scored matching
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FormMatch:
    form: IngredientForm
    match_score: float
    alias: Optional[FormAlias] = None


def grade_weight(grade: Optional[str]) -> float:
    norm = (grade or "").strip().lower()
    if not norm:
        return _DEFAULT_GRADE_WEIGHT
    return _GRADE_WEIGHTS.get(norm, _DEFAULT_GRADE_WEIGHT)


def evidence_weight(form: IngredientForm) -> float:
    return grade_weight(form.evidence_grade) if form.is_verified else 0.0


def _alias_weight(alias: FormAlias) -> float:
    conf = alias.confidence if alias.confidence is not None else _DEFAULT_ALIAS_CONFIDENCE
    audit = 1.0 if (alias.audit_status or "").strip().lower() == VERIFIED_AUDIT_STATUS else _UNVERIFIED_ALIAS_WEIGHT
    return clamp(float(conf), 0.0, 1.0) * audit


def select_best_form_match(
    candidate: Optional[str],
    forms: Sequence[IngredientForm],
    aliases: Sequence[FormAlias] = (),
) -> Optional[FormMatch]:
    """Best-scoring form for a candidate, or None when nothing matches."""
    if not candidate or not forms:
        return None
    norm = normalize_text(candidate)
    if not norm:
        return None
    tokens = _token_set(norm)

    best: Optional[FormMatch] = None
    for form in forms:
        base = _form_tier(norm, tokens, form)
        matched_alias: Optional[FormAlias] = None

        for alias in aliases:
            if alias.form_key != form.form_key:
                continue
            tier = _alias_tier(norm, tokens, alias)
            if not tier:
                continue
            score = tier * _alias_weight(alias)
            if score > base:
                base = score
                matched_alias = alias

        if not base:
            continue

        conf = form.confidence if form.confidence is not None else _DEFAULT_FORM_CONFIDENCE
        match_score = base * clamp(float(conf), 0.0, 1.0) * evidence_weight(form)
        if best is None or match_score > best.match_score:
            best = FormMatch(form=form, match_score=match_score, alias=matched_alias)

    return best


def aliases_for_ingredient(
    ingredient_id: Optional[str],
    global_aliases: Sequence[FormAlias],
    aliases_by_ingredient: Dict[str, List[FormAlias]],
) -> List[FormAlias]:
    scoped = aliases_by_ingredient.get(ingredient_id, []) if ingredient_id else []
    return [*global_aliases, *scoped]


def split_aliases(aliases: Iterable[FormAlias]) -> Tuple[List[FormAlias], Dict[str, List[FormAlias]]]:
    """Partition alias rows into (global, by ingredient id)."""
    global_aliases: List[FormAlias] = []
    by_ingredient: Dict[str, List[FormAlias]] = {}
    for alias in aliases:
        if alias.is_global:
            global_aliases.append(alias)
        else:
            by_ingredient.setdefault(alias.ingredient_id, []).append(alias)
    return global_aliases, by_ingredient


def group_forms(forms: Iterable[IngredientForm], *, verified: bool = True) -> Dict[str, List[IngredientForm]]:
    grouped: Dict[str, List[IngredientForm]] = {}
    for form in forms:
        if verified and not form.is_verified:
            continue
        grouped.setdefault(form.ingredient_id, []).append(form)
    return grouped


def compute_form_coverage(
    rows: Sequence[ProductIngredientRow],
    forms: Iterable[IngredientForm],
    aliases: Iterable[FormAlias] = BUILTIN_FORM_ALIASES,
) -> float:
    """
    Fraction of a product's active ingredients whose declared form matches
    a verified taxonomy entry. Falls back from form_raw to name_raw.
    """
    active = [r for r in rows if r.is_active]
    if not active:
        return 0.0

    forms_by_ingredient = group_forms(forms)
    global_aliases, by_ingredient = split_aliases(aliases)

    matched = 0
    for row in active:
        if not row.ingredient_id:
            continue
        candidate_forms = forms_by_ingredient.get(row.ingredient_id, [])
        if not candidate_forms:
            continue
        row_aliases = aliases_for_ingredient(row.ingredient_id, global_aliases, by_ingredient)
        match = select_best_form_match(row.form_raw or row.name_raw, candidate_forms, row_aliases)
        if match is None and row.form_raw and row.name_raw and row.name_raw != row.form_raw:
            match = select_best_form_match(row.name_raw, candidate_forms, row_aliases)
        if match is not None:
            matched += 1

    ratio = matched / len(active)
    log.debug("form coverage %d/%d = %.2f", matched, len(active), ratio)
    return ratio
