# labelfacts/parsers/text_parser.py
"""
Text-line Parser: paragraph-style labels ("Medicinal ingredients: ...").

Many labels (Canadian NPN products in particular) carry no Supplement Facts
table: ingredients are listed one per line under a section heading, with
the amount somewhere in the line. This path:

  1. builds text lines (full OCR text when the token stream is sparse or
     low-confidence, clustered rows otherwise)
  2. finds section headings and keeps the medicinal-ingredients block
  3. re-joins names split from their amounts across two lines
  4. parses one ingredient per line with an unanchored amount search

analyze_label_draft() runs both the table path and this path, decides which
layout the label most likely has, and merges the two drafts when both fit.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from ..layout.row_clusterer import infer_table_rows
from ..ocr_types import IssueKind, LabelDraft, ParsedIngredient, Row, Token, ValidationIssue
from ..ocr_utils import clamp, mean
from ..scoring.confidence import (
    COVERAGE_THRESHOLD,
    compute_parse_coverage,
    coverage_percent,
    finalize_draft,
)
from .amount_parser import find_amount_unit, parse_dv_percent_from_text_line
from .label_vocab import (
    DIRECTION_WORDS,
    FOOTNOTE_GLYPHS_RE,
    HEADER_AMOUNT_MARKERS,
    HEADER_DV_MARKERS,
    SECTION_PATTERNS,
    TABLE_KEYWORDS_RE,
    TEXT_KEYWORDS_RE,
    TEXT_NOISE_PATTERNS,
)
from .row_parser import extract_ingredients, infer_serving_size

log = logging.getLogger(__name__)

# Prefer the raw full text over clustered tokens below these
_FULL_TEXT_MIN_CHARS = 30
_FULL_TEXT_MIN_TOKENS = 20
_FULL_TEXT_MIN_AVG_CONF = 0.55

_SHORT_LINE_CHARS = 40

# Line confidence model (text lines have no per-cell confidence)
_BASE_LINE_CONF = 0.55
_MEDICINAL_BONUS = 0.15
_LINE_CONF_MIN = 0.45
_LINE_CONF_MAX = 0.9

# Draft merging
_AMOUNT_TOLERANCE = 0.10
_MIN_CORE_KEY_LEN = 4
_SUPPLEMENT_MIN_CONF = 0.6
_SUPPLEMENT_CONF_FACTOR = 0.8
_MATCH_BONUS = 0.1
_MATCH_BONUS_PER_ITEM = 0.03
_CONFLICT_PENALTY = 0.1

MEDICINAL_HEADER_MISSING_MESSAGE = "Medicinal ingredients section not detected"

_LEAD_BULLET_RE = re.compile(r"^[\s•*\-]+")
_CONTAINS_PREFIX_RE = re.compile(r"^(?:each|in each|per)\b.*?\bcontains\s*[:\-–—]?\s*", re.IGNORECASE)
_DOSE_FORM_PREFIX_RE = re.compile(
    r"^(?:each|in each|per)\b\s+(?:capsules?|softgels?|tablets?|gummies?|caplets?|drops?|scoops?|packets?|sticks?|ml)"
    r"\s*[:\-–—]?\s*",
    re.IGNORECASE,
)
_EDGE_PUNCT_RE = re.compile(r"^[:\-–—]+|[:\-–—]+$")
_JOIN_TAIL_RE = re.compile(r"[-:,(]$")
_PARENS_RE = re.compile(r"\([^)]*\)")
_AS_FROM_TAIL_RE = re.compile(r"\b(?:as|from)\b.*$", re.IGNORECASE)
_DESCRIPTOR_RE = re.compile(r"\b(?:whole|extract|powder|concentrate)\b", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class TextLine:
    raw: str
    normalized: str
    tokens: Tuple[Token, ...] = ()


# ---------------------------------------------------------------------------
# Line building
# ---------------------------------------------------------------------------

def normalize_for_match(value: str) -> str:
    """Strip accents, unify apostrophes, lowercase."""
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return stripped.replace("’", "'").lower()


def _make_line(raw: str, tokens: Sequence[Token] = ()) -> TextLine:
    return TextLine(raw=raw, normalized=normalize_for_match(raw), tokens=tuple(tokens))


def should_prefer_full_text(tokens: Sequence[Token], full_text: Optional[str]) -> bool:
    if not full_text or len(full_text.strip()) < _FULL_TEXT_MIN_CHARS:
        return False
    if len(tokens) < _FULL_TEXT_MIN_TOKENS:
        return True
    return mean(t.confidence for t in tokens) < _FULL_TEXT_MIN_AVG_CONF


def build_text_lines(
    tokens: Sequence[Token],
    full_text: Optional[str] = None,
    rows: Optional[Sequence[Row]] = None,
) -> List[TextLine]:
    if should_prefer_full_text(tokens, full_text):
        return [_make_line(raw) for raw in (full_text or "").splitlines() if raw.strip()]

    source_rows = list(rows) if rows else infer_table_rows(tokens)
    if source_rows:
        return [_make_line(r.text, r.tokens) for r in source_rows]

    if full_text:
        return [_make_line(raw) for raw in full_text.splitlines() if raw.strip()]
    return []


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def _section_hits(line: TextLine) -> List[str]:
    hits: List[str] = []
    for key, patterns in SECTION_PATTERNS.items():
        if not any(p.search(line.normalized) for p in patterns):
            continue
        if key == "medicinal" and any(p.search(line.normalized) for p in SECTION_PATTERNS["non_medicinal"]):
            continue
        hits.append(key)
    return hits


def is_section_header(line: TextLine) -> bool:
    return bool(_section_hits(line))


def detect_sections(lines: Sequence[TextLine]) -> Tuple[Dict[str, List[TextLine]], bool]:
    """
    Split lines into sections keyed by the first heading of each kind.
    Returns (sections, has_medicinal_heading).
    """
    first_hit: Dict[str, int] = {}
    for idx, line in enumerate(lines):
        for key in _section_hits(line):
            first_hit.setdefault(key, idx)

    hits = sorted(first_hit.items(), key=lambda kv: kv[1])
    sections: Dict[str, List[TextLine]] = {}
    for pos, (key, idx) in enumerate(hits):
        end = hits[pos + 1][1] if pos + 1 < len(hits) else len(lines)
        if idx + 1 < end:
            sections[key] = list(lines[idx + 1:end])

    return sections, "medicinal" in first_hit


def _has_dose_amount(text: str) -> bool:
    m = find_amount_unit(text)
    return bool(m and m.unit != "%")


def merge_split_lines(lines: Sequence[TextLine]) -> List[TextLine]:
    """Join a name line with the amount on the following line."""
    merged: List[TextLine] = []
    i = 0
    while i < len(lines):
        cur = lines[i]
        nxt = lines[i + 1] if i + 1 < len(lines) else None

        if nxt is not None and not _has_dose_amount(cur.raw) and _has_dose_amount(nxt.raw) \
                and not is_section_header(cur):
            joins = bool(_JOIN_TAIL_RE.search(cur.raw.strip()))
            next_starts_numeric = bool(re.match(r"^\s*\d", nxt.raw))
            short = len(cur.raw.strip()) <= _SHORT_LINE_CHARS
            if joins or next_starts_numeric or short:
                merged.append(_make_line(f"{cur.raw} {nxt.raw}".strip(), cur.tokens + nxt.tokens))
                i += 2
                continue

        merged.append(cur)
        i += 1
    return merged


# ---------------------------------------------------------------------------
# Line → ingredient
# ---------------------------------------------------------------------------

def is_noise_line(normalized: str) -> bool:
    if not normalized:
        return True
    return any(p.search(normalized) for p in TEXT_NOISE_PATTERNS)


def score_ingredient_name(name: str) -> float:
    normalized = normalize_for_match(name)
    words = normalized.split()
    letters = re.sub(r"[^a-z]", "", normalized)
    score = 0.08 if len(letters) >= 3 else -0.1
    if len(words) >= 2:
        score += 0.05
    if any(w in DIRECTION_WORDS for w in words):
        score -= 0.15
    return score


def _clean_line_name(name: str) -> str:
    name = FOOTNOTE_GLYPHS_RE.sub("", name)
    name = _CONTAINS_PREFIX_RE.sub("", name)
    name = _DOSE_FORM_PREFIX_RE.sub("", name)
    name = _EDGE_PUNCT_RE.sub("", name.strip())
    return re.sub(r"\s{2,}", " ", name).strip()


def parse_text_line(line: TextLine, *, medicinal: bool = False) -> Optional[ParsedIngredient]:
    cleaned = _LEAD_BULLET_RE.sub("", line.raw).strip()
    if not cleaned or is_noise_line(line.normalized):
        return None

    found = find_amount_unit(cleaned)
    if found is None or found.unit == "%":
        return None

    idx = cleaned.find(found.raw)
    name = cleaned[:idx].strip() if idx >= 0 else ""
    if len(name) < 2:
        name = cleaned.replace(found.raw, "").strip()
    name = _clean_line_name(name)
    if len(name) < 2:
        return None

    confidence = _BASE_LINE_CONF + (_MEDICINAL_BONUS if medicinal else 0.0)
    confidence = clamp(confidence + score_ingredient_name(name), _LINE_CONF_MIN, _LINE_CONF_MAX)

    return ParsedIngredient(
        name=name,
        amount=found.amount,
        unit=found.unit,
        dv_percent=parse_dv_percent_from_text_line(cleaned),
        confidence=confidence,
        source=cleaned,
    )


def extract_text_ingredients(
    tokens: Sequence[Token],
    full_text: Optional[str] = None,
    *,
    lines: Optional[Sequence[TextLine]] = None,
) -> LabelDraft:
    all_lines = list(lines) if lines is not None else build_text_lines(tokens, full_text)
    sections, has_medicinal = detect_sections(all_lines)
    medicinal_lines = sections.get("medicinal", [])
    in_medicinal = has_medicinal and bool(medicinal_lines)

    target = medicinal_lines if in_medicinal else all_lines
    candidates = merge_split_lines([ln for ln in target if ln.raw.strip()])

    ingredients: List[ParsedIngredient] = []
    attempted = 0
    for line in candidates:
        if is_noise_line(line.normalized):
            continue
        if _has_dose_amount(line.raw):
            attempted += 1
        parsed = parse_text_line(line, medicinal=in_medicinal)
        if parsed is not None:
            ingredients.append(parsed)

    return finalize_draft(
        serving_size=infer_serving_size([ln.raw for ln in all_lines]),
        ingredients=ingredients,
        rows_attempted=attempted,
        header_found=has_medicinal,
        coverage_noun="lines",
        header_message=MEDICINAL_HEADER_MISSING_MESSAGE,
    )


# ---------------------------------------------------------------------------
# Layout detection + merge
# ---------------------------------------------------------------------------

def detect_table_features(lines: Sequence[TextLine], full_text: Optional[str]) -> bool:
    if TABLE_KEYWORDS_RE.search(normalize_for_match(full_text or "")):
        return True
    for line in lines:
        text = line.normalized
        if any(m in text for m in HEADER_AMOUNT_MARKERS) and any(m in text for m in HEADER_DV_MARKERS):
            return True
    return False


def detect_text_features(lines: Sequence[TextLine], full_text: Optional[str]) -> bool:
    hits = set()
    for line in lines:
        hits.update(_section_hits(line))
    if "medicinal" in hits:
        return True
    if TEXT_KEYWORDS_RE.search(normalize_for_match(full_text or "")):
        return True
    return len(hits) >= 2


def _name_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", normalize_for_match(name)).strip()


def ingredient_keys(name: str) -> Tuple[str, str]:
    """(full key, core key without parentheticals, source and form descriptors)."""
    full = _name_key(name)
    core_src = _PARENS_RE.sub(" ", name)
    core_src = _AS_FROM_TAIL_RE.sub(" ", core_src)
    core_src = _DESCRIPTOR_RE.sub(" ", core_src)
    core = _name_key(core_src) or full
    return full, core


def amount_in_mg(amount: Optional[float], unit: Optional[str], name: str = "") -> Optional[float]:
    if amount is None or not unit:
        return None
    u = unit.lower()
    if u == "mg":
        return amount
    if u == "g":
        return amount * 1000
    if u in ("mcg", "μg"):
        return amount / 1000
    if u == "iu" and re.search(r"vitamin\s*d", name, re.IGNORECASE):
        # 40 IU vitamin D = 1 mcg
        return amount / 40 / 1000
    return None


def _amounts_agree(a: ParsedIngredient, b: ParsedIngredient) -> bool:
    a_mg = amount_in_mg(a.amount, a.unit, a.name)
    b_mg = amount_in_mg(b.amount, b.unit, b.name)
    if a_mg is not None and b_mg is not None:
        return abs(a_mg - b_mg) <= max(a_mg, b_mg) * _AMOUNT_TOLERANCE
    if a.unit == b.unit:
        return abs(a.amount - b.amount) <= max(a.amount, b.amount) * _AMOUNT_TOLERANCE
    return False


def _find_partner(
    keys: Tuple[str, str],
    others: Sequence[Tuple[str, str]],
    used: set,
) -> int:
    full, core = keys
    for j, (o_full, o_core) in enumerate(others):
        if j not in used and (o_full == full or o_core == core):
            return j
    if len(core) >= _MIN_CORE_KEY_LEN:
        for j, (_, o_core) in enumerate(others):
            if j in used or len(o_core) < _MIN_CORE_KEY_LEN:
                continue
            if core in o_core or o_core in core:
                return j
    return -1


def merge_drafts(primary: LabelDraft, secondary: LabelDraft, allow_supplement: bool) -> LabelDraft:
    """
    Merge two extractions of the same label. Matching ingredients fill each
    other's gaps; amounts that disagree by more than 10% are a value_anomaly.
    """
    other_keys = [ingredient_keys(i.name) for i in secondary.ingredients]
    used: set = set()
    merged: List[ParsedIngredient] = []
    matches = conflicts = 0

    for ing in primary.ingredients:
        j = _find_partner(ingredient_keys(ing.name), other_keys, used)
        if j < 0:
            merged.append(ing)
            continue

        other = secondary.ingredients[j]
        used.add(j)
        combined = ing
        if combined.amount is None and other.amount is not None:
            combined = replace(combined, amount=other.amount, unit=other.unit)
        combined = replace(
            combined,
            dv_percent=combined.dv_percent if combined.dv_percent is not None else other.dv_percent,
            confidence=max(combined.confidence, other.confidence),
        )
        if combined.has_amount_and_unit and other.has_amount_and_unit:
            if _amounts_agree(combined, other):
                matches += 1
            else:
                conflicts += 1
        merged.append(combined)

    if allow_supplement or matches > 0:
        for j, other in enumerate(secondary.ingredients):
            if j in used or other.confidence < _SUPPLEMENT_MIN_CONF or not other.has_amount_and_unit:
                continue
            merged.append(replace(other, confidence=min(1.0, other.confidence * _SUPPLEMENT_CONF_FACTOR)))

    merged_rows = tuple(merged)
    rows_attempted = max(primary.rows_attempted, secondary.rows_attempted, len(merged_rows))
    parse_coverage = compute_parse_coverage(
        sum(1 for i in merged_rows if i.has_amount_and_unit), rows_attempted,
    )
    serving_size = primary.serving_size or secondary.serving_size

    # coverage and serving size are re-derived for the merged list
    stale = {IssueKind.LOW_COVERAGE, IssueKind.MISSING_SERVING_SIZE}
    issues: List[ValidationIssue] = []
    if not serving_size:
        issues.append(ValidationIssue(IssueKind.MISSING_SERVING_SIZE, "Serving size not found"))
    if parse_coverage < COVERAGE_THRESHOLD:
        issues.append(ValidationIssue(
            IssueKind.LOW_COVERAGE,
            f"Only {coverage_percent(parse_coverage)}% of rows have valid amount/unit",
        ))
    for issue in primary.issues + secondary.issues:
        if issue.kind not in stale and issue not in issues:
            issues.append(issue)
    if conflicts:
        issues.append(ValidationIssue(
            IssueKind.VALUE_ANOMALY,
            "Conflicting ingredient amounts detected across label formats",
        ))

    score = max(primary.confidence_score, secondary.confidence_score)
    if matches:
        score = min(1.0, score + _MATCH_BONUS + matches * _MATCH_BONUS_PER_ITEM)
    if conflicts:
        score = max(0.0, score - conflicts * _CONFLICT_PENALTY)

    log.debug("merged drafts: matches=%d conflicts=%d total=%d", matches, conflicts, len(merged))

    return LabelDraft(
        serving_size=serving_size,
        ingredients=merged_rows,
        parse_coverage=parse_coverage,
        confidence_score=score,
        issues=tuple(issues),
        rows_attempted=rows_attempted,
    )


def analyze_label_draft(tokens: Sequence[Token], full_text: Optional[str] = None) -> LabelDraft:
    rows = infer_table_rows(tokens)
    lines = build_text_lines(tokens, full_text, rows)

    table_draft = extract_ingredients(rows)
    _, has_medicinal = detect_sections(lines)
    text_draft = extract_text_ingredients(tokens, full_text, lines=lines)

    table_likely = detect_table_features(lines, full_text)
    text_likely = detect_text_features(lines, full_text)
    log.info(
        "label layout: table=%s text=%s rows=%d lines=%d",
        table_likely, text_likely, len(rows), len(lines),
    )

    if table_likely and text_likely:
        return merge_drafts(table_draft, text_draft, has_medicinal)
    if table_likely:
        return table_draft
    if text_likely:
        return text_draft
    if table_draft.confidence_score >= text_draft.confidence_score:
        return table_draft
    return text_draft


# ---------------------------------------------------------------------------
# Plain-text rendering for downstream prompts
# ---------------------------------------------------------------------------

def format_for_prompt(draft: LabelDraft) -> str:
    lines: List[str] = []
    if draft.serving_size:
        lines.append(f"Serving Size: {draft.serving_size}")
    lines.append("")
    lines.append("Ingredients:")
    for ing in draft.ingredients:
        line = f"- {ing.name}"
        if ing.has_amount_and_unit:
            amount = int(ing.amount) if float(ing.amount).is_integer() else ing.amount
            line += f": {amount} {ing.unit}"
        if ing.dv_percent is not None:
            line += f" ({ing.dv_percent}% DV)"
        lines.append(line)
    return "\n".join(lines)
