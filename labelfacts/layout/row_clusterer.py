# labelfacts/layout/row_clusterer.py
"""
Row Clusterer: groups flat OCR tokens into table rows, then splits each
row into cells.

Both thresholds adapt to the token-size statistics of the input:

  row merge     : |token.y_center − row running centre| ≤ 0.6 × median height
  column split  : gap > max(2 × median gap, 1.2 × median height)

The height term in the column threshold keeps rows whose words are
packed tightly (median gap near zero) from shattering into one-word
cells. Pure and deterministic; an empty token list yields no rows.
"""

from __future__ import annotations

from typing import List, Sequence

from ..ocr_types import Cell, Row, Token
from ..ocr_utils import mean, upper_median

ROW_GAP_FACTOR = 0.6
COLUMN_GAP_FACTOR = 2.0
COLUMN_HEIGHT_FACTOR = 1.2

DEFAULT_MEDIAN_HEIGHT = 20.0
DEFAULT_MEDIAN_GAP = 10.0


def median_height(tokens: Sequence[Token]) -> float:
    # zero-height boxes count as missing heights
    return upper_median([t.height for t in tokens], DEFAULT_MEDIAN_HEIGHT) or DEFAULT_MEDIAN_HEIGHT


def row_merge_threshold(tokens: Sequence[Token]) -> float:
    med_h = median_height(tokens)
    return ROW_GAP_FACTOR * med_h


def infer_table_rows(tokens: Sequence[Token]) -> List[Row]:
    """
    Cluster tokens into rows, top-to-bottom. Each returned Row is x-sorted
    and non-empty.
    """
    if not tokens:
        return []

    threshold = row_merge_threshold(tokens)
    ordered = sorted(tokens, key=lambda t: (t.y_center, t.x_min))

    rows: List[Row] = []
    cur: List[Token] = []
    centers: List[float] = []

    for tok in ordered:
        if not cur:
            cur = [tok]
            centers = [tok.y_center]
            continue

        row_center = mean(centers)
        if abs(tok.y_center - row_center) <= threshold:
            cur.append(tok)
            centers.append(tok.y_center)
        else:
            rows.append(_close_row(cur))
            cur = [tok]
            centers = [tok.y_center]

    if cur:
        rows.append(_close_row(cur))

    return rows


def _close_row(tokens: List[Token]) -> Row:
    return Row(tokens=tuple(sorted(tokens, key=lambda t: t.x_min)))


def column_gap_threshold(row: Row) -> float:
    tokens = sorted(row.tokens, key=lambda t: t.x_min)
    gaps = [
        max(0.0, tokens[i].x_min - tokens[i - 1].x_max)
        for i in range(1, len(tokens))
    ]
    med_gap = upper_median(gaps, DEFAULT_MEDIAN_GAP)
    med_h = median_height(tokens)
    return max(COLUMN_GAP_FACTOR * med_gap, COLUMN_HEIGHT_FACTOR * med_h)


def infer_table_columns(row: Row) -> List[Cell]:
    """Split a row into cells wherever the horizontal gap exceeds the threshold."""
    if not row.tokens:
        return []

    tokens = sorted(row.tokens, key=lambda t: t.x_min)
    threshold = column_gap_threshold(row)

    cells: List[Cell] = []
    cur: List[Token] = [tokens[0]]
    for prev, tok in zip(tokens, tokens[1:]):
        gap = tok.x_min - prev.x_max
        if gap > threshold:
            cells.append(_make_cell(cur))
            cur = [tok]
        else:
            cur.append(tok)
    cells.append(_make_cell(cur))
    return cells


def _make_cell(tokens: List[Token]) -> Cell:
    return Cell(
        text=" ".join(t.text for t in tokens).strip(),
        x_min=tokens[0].x_min,
        x_max=max(t.x_max for t in tokens),
        confidence=mean(t.confidence for t in tokens),
        tokens=tuple(tokens),
    )


def rows_to_cells(rows: Sequence[Row]) -> List[List[Cell]]:
    return [infer_table_columns(r) for r in rows]
