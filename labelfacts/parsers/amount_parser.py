# labelfacts/parsers/amount_parser.py
"""
Amount / Unit / %DV parsing for supplement label cells.

parse_amount_and_unit("1,000 mg")  -> (1000.0, "mg")
parse_amount_and_unit("25 mcg")    -> (25.0, "mcg")
parse_amount_and_unit("500 iu")    -> (500.0, "IU")
parse_amount_and_unit("10-20 mg")  -> (15.0, "mg")      ranges use the midpoint
parse_amount_and_unit("5 mg/ml")   -> (None, None)      concentration, not an amount
parse_amount_and_unit("5 x 10^9 CFU") -> (5e9, "CFU")
parse_dv_percent("125%†")          -> 125

Unparsable text never raises; it yields (None, None).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from .label_vocab import RATIO_TAIL_RE, UNIT_NORMALIZATIONS, UNIT_PATTERN

_COMPARISON_RE = re.compile(r"[<>≤≥]")
_THOUSANDS_RE = re.compile(r"(?<=\d),(?=\d)")

_NUMBER = r"(\d+(?:\.\d+)?)"
# free text keeps its thousands separators so matches can be located again
_GROUPED_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"

_LEADING_RANGE_RE = re.compile(
    r"^" + _NUMBER + r"\s*(?:-|–|to)\s*" + _NUMBER + r"\s*(" + UNIT_PATTERN + r")",
    re.IGNORECASE,
)
_LEADING_AMOUNT_RE = re.compile(r"^" + _NUMBER + r"\s*(" + UNIT_PATTERN + r")", re.IGNORECASE)

# Unanchored variants for free-text lines
_ANY_RANGE_RE = re.compile(
    _GROUPED_NUMBER + r"\s*(?:-|–|to)\s*" + _GROUPED_NUMBER + r"\s*(" + UNIT_PATTERN + r")",
    re.IGNORECASE,
)
_ANY_AMOUNT_RE = re.compile(_GROUPED_NUMBER + r"\s*(" + UNIT_PATTERN + r")", re.IGNORECASE)

# Probiotic counts, tried in this order before the generic unit match
_CFU = r"(?:cfu|ufc)\b"
_CFU_SHORT_RE = re.compile(_GROUPED_NUMBER + r"\s*(b|m)\s*" + _CFU, re.IGNORECASE)
_CFU_COEFF_EXP_RE = re.compile(_GROUPED_NUMBER + r"\s*[x×]\s*10\^?(\d+)\s*" + _CFU, re.IGNORECASE)
_CFU_PURE_EXP_RE = re.compile(r"\b10\^(\d+)\s*" + _CFU, re.IGNORECASE)
_CFU_SCALED_RE = re.compile(_GROUPED_NUMBER + r"\s*(billion|million)?\s*" + _CFU, re.IGNORECASE)
_CFU_SCALES = {"b": 1e9, "billion": 1e9, "m": 1e6, "million": 1e6}

_DV_STRIP_RE = re.compile(r"[%†*]")
_FIRST_INT_RE = re.compile(r"(\d+)")
_DV_DIRECT_RE = re.compile(r"(\d{1,3})\s*%\s*(?:dv|daily value)\b")
_DV_WORD_RE = re.compile(r"\b(?:dv|daily value)\b")
_PERCENT_RE = re.compile(r"(\d{1,3})\s*%")

# Free text is full of "2 capsules", "30 days": only real dosage units count there.
_AMOUNT_UNITS = frozenset({"mg", "mcg", "g", "iu", "ml", "cfu", "%"})


@dataclass(frozen=True, slots=True)
class AmountMatch:
    amount: float
    unit: str
    raw: str      # the matched substring, as it appears in the input line


def normalize_unit(unit_raw: str) -> Optional[str]:
    """
    Map a unit spelling to its canonical form. Unknown spellings come back
    lowercased so the validator can flag them; "iu" in any case becomes "IU".
    """
    if not unit_raw:
        return None
    lowered = re.sub(r"\s+", " ", unit_raw.strip().lower())
    if not lowered:
        return None
    mapped = UNIT_NORMALIZATIONS.get(lowered) or UNIT_NORMALIZATIONS.get(lowered.rstrip(".")) or lowered
    if mapped.lower() == "iu":
        return "IU"
    return mapped


def _to_float(number: str) -> float:
    return float(number.replace(",", ""))


def strip_comparisons(text: str) -> str:
    return _COMPARISON_RE.sub(" ", text or "")


def clean_amount_text(text: str) -> str:
    """Drop comparison glyphs and thousands separators."""
    return _THOUSANDS_RE.sub("", strip_comparisons(text)).strip()


def _is_ratio_tail(text: str, end: int) -> bool:
    return bool(RATIO_TAIL_RE.match(text[end:]))


def find_cfu_amount(text: str) -> Optional[AmountMatch]:
    """
    "10 billion CFU", "5 B CFU", "5 x 10^9 CFU", "10^9 CFU" -> colony-forming
    units as a plain count.
    """
    m = _CFU_SHORT_RE.search(text)
    if m:
        amount = _to_float(m.group(1)) * _CFU_SCALES[m.group(2).lower()]
        return AmountMatch(amount=amount, unit="CFU", raw=m.group(0))

    m = _CFU_COEFF_EXP_RE.search(text)
    if m:
        amount = _to_float(m.group(1)) * 10 ** int(m.group(2))
        return AmountMatch(amount=amount, unit="CFU", raw=m.group(0))

    m = _CFU_PURE_EXP_RE.search(text)
    if m:
        return AmountMatch(amount=float(10 ** int(m.group(1))), unit="CFU", raw=m.group(0))

    m = _CFU_SCALED_RE.search(text)
    if m:
        scale = _CFU_SCALES.get((m.group(2) or "").lower(), 1.0)
        return AmountMatch(amount=_to_float(m.group(1)) * scale, unit="CFU", raw=m.group(0))

    return None


def parse_amount_and_unit(text: Optional[str]) -> Tuple[Optional[float], Optional[str]]:
    """Parse a leading `<number><unit>` (or `<a>-<b><unit>` range) from a cell."""
    if not text or not text.strip():
        return None, None

    cfu = find_cfu_amount(strip_comparisons(text))
    if cfu is not None:
        return cfu.amount, cfu.unit

    cleaned = clean_amount_text(text)

    m = _LEADING_RANGE_RE.match(cleaned)
    if m and not _is_ratio_tail(cleaned, m.end()):
        unit = normalize_unit(m.group(3))
        if unit:
            return (float(m.group(1)) + float(m.group(2))) / 2.0, unit

    m = _LEADING_AMOUNT_RE.match(cleaned)
    if not m or _is_ratio_tail(cleaned, m.end()):
        return None, None

    unit = normalize_unit(m.group(2))
    if not unit:
        return None, None
    return float(m.group(1)), unit


def find_amount_unit(text: Optional[str]) -> Optional[AmountMatch]:
    """
    Find the first amount+unit anywhere in a free-text line. Percentages
    are only returned when nothing else matched.
    """
    if not text:
        return None
    cleaned = strip_comparisons(text)

    cfu = find_cfu_amount(cleaned)
    if cfu is not None:
        return cfu

    for m in _ANY_RANGE_RE.finditer(cleaned):
        if _is_ratio_tail(cleaned, m.end()):
            continue
        unit = normalize_unit(m.group(3))
        if unit and unit != "%":
            amount = (_to_float(m.group(1)) + _to_float(m.group(2))) / 2.0
            return AmountMatch(amount=amount, unit=unit, raw=m.group(0))

    percent: Optional[AmountMatch] = None
    for m in _ANY_AMOUNT_RE.finditer(cleaned):
        if _is_ratio_tail(cleaned, m.end()):
            continue
        unit = normalize_unit(m.group(2))
        if not unit or unit.lower() not in _AMOUNT_UNITS:
            continue
        if unit == "%":
            if percent is None:
                percent = AmountMatch(amount=_to_float(m.group(1)), unit=unit, raw=m.group(0))
            continue
        return AmountMatch(amount=_to_float(m.group(1)), unit=unit, raw=m.group(0))

    return percent


def parse_dv_percent(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    m = _FIRST_INT_RE.search(_DV_STRIP_RE.sub("", text).strip())
    return int(m.group(1)) if m else None


def parse_dv_percent_from_text_line(text: Optional[str]) -> Optional[int]:
    """%DV inside a free-text line: "... 25 mcg 125% DV"."""
    if not text:
        return None
    lowered = text.lower()
    m = _DV_DIRECT_RE.search(lowered)
    if m:
        return int(m.group(1))
    if _DV_WORD_RE.search(lowered):
        m = _PERCENT_RE.search(lowered)
        if m:
            return int(m.group(1))
    return None
