# labelfacts/ocr_utils.py
"""
LabelFacts OCR Utils: small numeric and text helpers shared by the
clusterer, the row parser, and the scoring modules.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    vals = sorted(values)
    n = len(vals)
    mid = n // 2
    if n % 2:
        return float(vals[mid])
    return float((vals[mid - 1] + vals[mid]) / 2.0)


def upper_median(values: Sequence[float], default: float) -> float:
    """
    Median as the label parser has always computed it: the element at
    index n // 2 of the sorted list (upper middle for even counts), or
    `default` when there are no values.
    """
    if not values:
        return float(default)
    vals = sorted(values)
    return float(vals[len(vals) // 2])


def mean(values: Iterable[float]) -> float:
    vals: List[float] = list(values)
    if not vals:
        return 0.0
    return sum(vals) / len(vals)


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


_NON_ALNUM_RX = re.compile(r"[^a-z0-9]+")


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, collapse every non-[a-z0-9] run to one space, trim."""
    if not value:
        return ""
    return _NON_ALNUM_RX.sub(" ", value.lower()).strip()


def tokenize(value: Optional[str]) -> List[str]:
    norm = normalize_text(value)
    return norm.split() if norm else []
