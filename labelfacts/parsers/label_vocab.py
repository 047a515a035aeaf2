# labelfacts/parsers/label_vocab.py
"""
Shared Label Vocabulary

Single source of truth for the words and patterns the label parsers key on:
unit spellings, table-header markers, serving-size phrases, rows that are
never ingredients, and the section headings of paragraph-style labels.
Used by amount_parser.py, row_parser.py and text_parser.py.
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet, List, Pattern, Tuple


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

# lowercase spelling -> canonical unit
UNIT_NORMALIZATIONS: Dict[str, str] = {
    "μg": "mcg",
    "µg": "mcg",
    "ug": "mcg",
    "mcg": "mcg",
    "microgram": "mcg",
    "micrograms": "mcg",
    "mg": "mg",
    "milligram": "mg",
    "milligrams": "mg",
    "g": "g",
    "gram": "g",
    "grams": "g",
    "ml": "ml",
    "iu": "IU",
    "i.u.": "IU",
    "i.u": "IU",
    "iu.": "IU",
    "ui": "IU",
    "international unit": "IU",
    "international units": "IU",
    "cfu": "CFU",
    "cfu.": "CFU",
    "ufc": "CFU",
}

# Units accepted by the validator (compared case-insensitively)
RECOGNIZED_UNITS: FrozenSet[str] = frozenset({"mg", "mcg", "μg", "g", "iu", "ml", "cfu", "%"})

# Unit group used by the amount regexes; multi-word spellings first
UNIT_PATTERN = r"(?:international\s+units?|i\.u\.?|[a-zA-Zμµ%]+)"

# "5 mg/ml" style concentrations are not amounts
RATIO_TAIL_RE = re.compile(r"^\s*/\s*(?:ml|l|g|kg)\b", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Supplement-facts table
# ---------------------------------------------------------------------------

HEADER_KEYWORDS: Tuple[str, ...] = ("amount", "daily value", "%dv", "dv", "per serving")
HEADER_AMOUNT_MARKERS: Tuple[str, ...] = ("amount", "per serving")
HEADER_DV_MARKERS: Tuple[str, ...] = ("%dv", "daily value", "dv")

SERVING_SIZE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"serving\s*size", re.IGNORECASE),
    re.compile(r"servings?\s*per", re.IGNORECASE),
]

# Rows that are never ingredients (footers, section headings, fine print)
NON_INGREDIENT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"^other\s*ingredients", re.IGNORECASE),
    re.compile(r"^daily\s*value", re.IGNORECASE),
    re.compile(r"\bdaily value\b", re.IGNORECASE),
    re.compile(r"^[*†‡§]\s*percent", re.IGNORECASE),
    re.compile(r"percent\s+daily\s+values?\s+are\s+based\s+on", re.IGNORECASE),
    re.compile(r"^[*†‡§]+\s*$"),
    re.compile(r"^suggested\s*use", re.IGNORECASE),
    re.compile(r"^warning", re.IGNORECASE),
    re.compile(r"^allergen", re.IGNORECASE),
    re.compile(r"^manufactured", re.IGNORECASE),
    re.compile(r"^not\s*a\s*significant", re.IGNORECASE),
]

FOOTNOTE_GLYPHS_RE = re.compile(r"[†*‡§]")

# Sanity ceilings for ingredients that are commonly misread (an extra zero, IU vs mcg).
# name substring -> (max amount, units the ceiling applies to)
SANITY_LIMITS: Tuple[Tuple[str, float, Tuple[str, ...]], ...] = (
    ("vitamin d", 10000, ("iu", "mcg")),
    ("vitamin a", 10000, ("iu", "mcg")),
    ("vitamin c", 3000, ("mg",)),
    ("iron", 100, ("mg",)),
    ("calcium", 2000, ("mg",)),
    ("zinc", 100, ("mg",)),
)


# ---------------------------------------------------------------------------
# Serving-size phrases outside a "Serving Size" row
# ---------------------------------------------------------------------------

_DOSE_FORMS = r"capsule|softgel|tablet|gummy|caplet|scoop|packet|stick|drop|ml"

SERVING_PHRASE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\bserving size\b", re.IGNORECASE),
    re.compile(r"\bper\s+([0-9]+)?\s*(" + _DOSE_FORMS + r")\b", re.IGNORECASE),
    re.compile(r"\bin each\s+([0-9]+)?\s*(" + _DOSE_FORMS + r")\b", re.IGNORECASE),
    re.compile(r"\beach\s+([0-9]+)?\s*(" + _DOSE_FORMS + r")\b", re.IGNORECASE),
]

DIRECTIONS_DOSE_RE = re.compile(
    r"\btakes?\s+(\d+)\s+(capsules?|softgels?|tablets?|gummies?|caplets?|drops?)",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Paragraph-style labels ("Medicinal ingredients: ...")
# ---------------------------------------------------------------------------

SECTION_PATTERNS: Dict[str, List[Pattern[str]]] = {
    "medicinal": [re.compile(r"medicinal ingredients?", re.IGNORECASE)],
    "non_medicinal": [
        re.compile(r"non[-\s]?medicinal ingredients?", re.IGNORECASE),
        re.compile(r"non[-\s]?medicinal", re.IGNORECASE),
    ],
    "directions": [
        re.compile(r"directions?", re.IGNORECASE),
        re.compile(r"suggested use", re.IGNORECASE),
        re.compile(r"\bdos(?:e|age)\b", re.IGNORECASE),
    ],
    "warnings": [
        re.compile(r"warnings?", re.IGNORECASE),
        re.compile(r"cautions?", re.IGNORECASE),
        re.compile(r"keep out of reach", re.IGNORECASE),
    ],
    "uses": [
        re.compile(r"\buses?\b", re.IGNORECASE),
        re.compile(r"\busage\b", re.IGNORECASE),
        re.compile(r"\bindications?\b", re.IGNORECASE),
    ],
}

TEXT_NOISE_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bmedicinal ingredients?\b",
        r"\bnon[-\s]?medicinal\b",
        r"\bnpn\b",
        r"\bdin\b",
        r"\blot\b",
        r"\bexpiry\b",
        r"\bexp\b",
        r"\bbest before\b",
        r"\bkeep out of reach\b",
        r"\bwarning\b",
        r"\bstore\b",
        r"\bsealed\b",
        r"\bdo not use\b",
    )
]

# Words that mark a line as directions/packaging rather than an ingredient name
DIRECTION_WORDS: FrozenSet[str] = frozenset({
    "take", "takes", "adult", "adults", "child", "children",
    "direction", "directions", "use", "usage", "dose", "dosage",
    "warning", "caution", "keep", "store", "suggested", "per", "each",
    "serving", "capsule", "capsules", "softgel", "softgels", "tablet",
    "tablets", "gummy", "gummies", "caplet", "caplets", "drop", "drops",
    "scoop", "packet", "stick", "contains",
})

TABLE_KEYWORDS_RE = re.compile(r"supplement facts|nutrition facts|amount per serving|%dv|daily value")
TEXT_KEYWORDS_RE = re.compile(r"medicinal ingredients|product facts")
