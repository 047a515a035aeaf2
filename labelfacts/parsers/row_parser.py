# labelfacts/parsers/row_parser.py
"""
Ingredient Row Parser: Supplement Facts tables.

Takes clustered rows, splits each into cells, and turns every row below the
table header into at most one ParsedIngredient.

Column dispatch:
  3+ cells : name | amount+unit | %DV
  2 cells  : name | amount+unit   (or name | %DV when the cell holds a '%')
  1 cell   : "Vitamin C 1,000 mg" split by a trailing-amount regex

A missing header never blocks extraction; every row from the top is tried
and header_not_found is reported instead. Rows matching a non-ingredient
pattern are skipped before parsing and do not count toward coverage.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence, Tuple

from ..layout.row_clusterer import infer_table_columns
from ..ocr_types import Cell, LabelDraft, ParsedIngredient, Row
from ..ocr_utils import mean
from ..scoring.confidence import finalize_draft
from .amount_parser import find_cfu_amount, parse_amount_and_unit, parse_dv_percent
from .label_vocab import (
    DIRECTIONS_DOSE_RE,
    FOOTNOTE_GLYPHS_RE,
    HEADER_AMOUNT_MARKERS,
    HEADER_DV_MARKERS,
    HEADER_KEYWORDS,
    NON_INGREDIENT_PATTERNS,
    SERVING_PHRASE_PATTERNS,
    SERVING_SIZE_PATTERNS,
)

log = logging.getLogger(__name__)

TRAILING_AMOUNT_RE = re.compile(r"^(.+?)\s+(\d[\d,]*\.?\d*)\s*([a-zA-Zμµ%]+)\s*$")

MIN_NAME_LENGTH = 2


# ---------------------------------------------------------------------------
# Row classification
# ---------------------------------------------------------------------------

def is_header_row(row_text: str, cell_count: int) -> bool:
    lower = row_text.lower()
    has_amount = any(m in lower for m in HEADER_AMOUNT_MARKERS)
    has_dv = any(m in lower for m in HEADER_DV_MARKERS)
    return cell_count >= 2 and has_amount and has_dv


def is_fallback_header_row(row_text: str, cell_count: int) -> bool:
    lower = row_text.lower()
    return cell_count >= 3 and any(kw in lower for kw in HEADER_KEYWORDS)


def is_serving_size_row(row_text: str) -> bool:
    return any(p.search(row_text) for p in SERVING_SIZE_PATTERNS)


def is_non_ingredient_row(row_text: str) -> bool:
    lower = row_text.lower().strip()
    return any(p.search(lower) for p in NON_INGREDIENT_PATTERNS)


def find_header_index(rows: Sequence[Row], cells: Sequence[Sequence[Cell]]) -> int:
    """
    Index of the table header, or -1. A strict match (amount-like and
    DV-like markers, 2+ cells) is preferred anywhere in the table over the
    keyword fallback (any header keyword, 3+ cells).
    """
    fallback = -1
    for i, row in enumerate(rows):
        text = row.text
        if is_header_row(text, len(cells[i])):
            return i
        if fallback < 0 and is_fallback_header_row(text, len(cells[i])):
            fallback = i
    return fallback


def infer_serving_size(lines: Sequence[str]) -> Optional[str]:
    """
    Serving size from phrases like "each capsule contains" or "take 2
    tablets" when there is no explicit Serving Size row.
    """
    for line in lines:
        for pattern in SERVING_PHRASE_PATTERNS:
            m = pattern.search(line)
            if not m:
                continue
            if pattern is SERVING_PHRASE_PATTERNS[0]:
                return line.strip()
            count = m.group(1)
            unit = re.sub(r"[^a-z]", "", (m.group(2) or "").lower())
            if not unit:
                continue
            return f"{int(count)} {unit}" if count else f"per {unit}"

    m = DIRECTIONS_DOSE_RE.search(" ".join(lines))
    if m:
        return f"{m.group(1)} {m.group(2).lower()}"
    return None


def detect_serving_size(rows: Sequence[Row]) -> Optional[str]:
    for row in rows:
        if is_serving_size_row(row.text):
            return row.text
    return infer_serving_size([r.text for r in rows])


# ---------------------------------------------------------------------------
# Row → ingredient
# ---------------------------------------------------------------------------

def _split_cells(cells: Sequence[Cell]) -> Tuple[str, str, Optional[int], float]:
    """Return (name, amount text, %DV, confidence) for a row's cells."""
    if len(cells) >= 3:
        return (
            cells[0].text,
            cells[1].text,
            parse_dv_percent(cells[2].text),
            mean(c.confidence for c in cells),
        )

    if len(cells) == 2:
        second = cells[1].text
        conf = (cells[0].confidence + cells[1].confidence) / 2.0
        if "%" in second:
            return cells[0].text, "", parse_dv_percent(second), conf
        return cells[0].text, second, None, conf

    text = cells[0].text
    cfu = find_cfu_amount(text)
    idx = text.find(cfu.raw) if cfu is not None else -1
    if idx > 0:
        return text[:idx], cfu.raw, None, cells[0].confidence
    m = TRAILING_AMOUNT_RE.match(text)
    if m:
        amount = m.group(2).replace(",", "")
        return m.group(1), f"{amount} {m.group(3)}", None, cells[0].confidence
    return text, "", None, cells[0].confidence


def clean_name(name: str) -> str:
    return FOOTNOTE_GLYPHS_RE.sub("", name or "").strip()


def parse_row_to_ingredient(cells: Sequence[Cell], raw_line: str) -> Optional[ParsedIngredient]:
    if not cells:
        return None

    name, amount_text, dv_percent, confidence = _split_cells(cells)
    name = clean_name(name)
    if len(name) < MIN_NAME_LENGTH:
        return None

    amount, unit = parse_amount_and_unit(amount_text)
    return ParsedIngredient(
        name=name,
        amount=amount,
        unit=unit,
        dv_percent=dv_percent,
        confidence=confidence,
        source=raw_line,
    )


# ---------------------------------------------------------------------------
# Table extraction
# ---------------------------------------------------------------------------

def extract_ingredients(rows: Sequence[Row]) -> LabelDraft:
    cells = [infer_table_columns(r) for r in rows]
    header_idx = find_header_index(rows, cells)
    serving_size = detect_serving_size(rows)

    start = header_idx + 1 if header_idx >= 0 else 0
    ingredients: List[ParsedIngredient] = []
    attempted = 0

    for i in range(start, len(rows)):
        raw_line = rows[i].text
        if is_non_ingredient_row(raw_line):
            continue
        attempted += 1
        parsed = parse_row_to_ingredient(cells[i], raw_line)
        if parsed is not None:
            ingredients.append(parsed)

    log.debug(
        "table rows=%d header=%d attempted=%d parsed=%d",
        len(rows), header_idx, attempted, len(ingredients),
    )

    return finalize_draft(
        serving_size=serving_size,
        ingredients=ingredients,
        rows_attempted=attempted,
        header_found=header_idx >= 0,
    )
