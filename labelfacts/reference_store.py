# labelfacts/reference_store.py
"""
Reference-data store (ingredient taxonomy + persisted product rows).

Read-only sqlite adapter used by the form matcher, the UL calculator and the
root-cause diagnostics. Every id-list lookup is issued in fixed-size chunks
(default 200 ids per query), and each chunk is retried on transient sqlite
errors ("database is locked"). Reads are idempotent, so retrying a chunk is
always safe. Failures that survive the retry policy surface as
ReferenceStoreError with the sqlite exception chained.

Tables:
  ingredients               id, name, unit, rda_adult, ul_adult
  ingredient_forms          ingredient_id, form_key, form_label, audit_status, ...
  ingredient_form_aliases   alias_text, alias_norm, form_key, ingredient_id (NULL = global), ...
  product_scores            source, source_id, score_version, explain_json, computed_at
  product_ingredients       source, source_id, ingredient_id, name_raw, form_raw, amount, unit, ...

Writes belong to offline curation tooling; SCHEMA_SQL is exposed so that
tooling and tests can build a compatible database.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar, Union

from .config import DEFAULT_REFERENCE_CHUNK, Settings
from .errors import ReferenceStoreError
from .ocr_types import FormAlias, IngredientForm, IngredientMeta, ProductIngredientRow
from .retry_policy import RetryPolicy, run_with_retry

log = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ingredients (
    id          TEXT PRIMARY KEY,
    name        TEXT,
    unit        TEXT,
    rda_adult   REAL,
    ul_adult    REAL
);

CREATE TABLE IF NOT EXISTS ingredient_forms (
    id               TEXT,
    ingredient_id    TEXT NOT NULL,
    form_key         TEXT NOT NULL,
    form_label       TEXT,
    audit_status     TEXT,
    relative_factor  REAL,
    confidence       REAL,
    evidence_grade   TEXT
);

CREATE TABLE IF NOT EXISTS ingredient_form_aliases (
    alias_text     TEXT NOT NULL,
    alias_norm     TEXT,
    form_key       TEXT NOT NULL,
    ingredient_id  TEXT,
    confidence     REAL,
    audit_status   TEXT,
    source         TEXT
);

CREATE TABLE IF NOT EXISTS product_scores (
    source         TEXT NOT NULL,
    source_id      TEXT NOT NULL,
    score_version  TEXT,
    explain_json   TEXT,
    computed_at    TEXT
);

CREATE TABLE IF NOT EXISTS product_ingredients (
    source             TEXT NOT NULL,
    source_id          TEXT NOT NULL,
    ingredient_id      TEXT,
    name_raw           TEXT,
    form_raw           TEXT,
    amount             REAL,
    unit               TEXT,
    amount_normalized  REAL,
    unit_normalized    TEXT,
    unit_kind          TEXT,
    is_active          INTEGER,
    basis              TEXT
);
"""


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    for i in range(0, len(items), max(1, size)):
        yield list(items[i:i + size])


def _unique(ids: Iterable[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in ids:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def form_coverage_from_explain(explain: Any) -> Optional[float]:
    """evidence.formCoverageRatio from a stored score explanation, if numeric."""
    if isinstance(explain, str):
        try:
            explain = json.loads(explain)
        except ValueError:
            return None
    if not isinstance(explain, dict):
        return None
    evidence = explain.get("evidence")
    if not isinstance(evidence, dict):
        return None
    ratio = evidence.get("formCoverageRatio")
    if isinstance(ratio, bool) or not isinstance(ratio, (int, float)):
        return None
    return float(ratio)


class ReferenceStore:
    def __init__(
        self,
        db: Union[str, Path, sqlite3.Connection],
        *,
        chunk_size: int = DEFAULT_REFERENCE_CHUNK,
        policy: Optional[RetryPolicy] = None,
    ):
        if isinstance(db, sqlite3.Connection):
            self.conn = db
        else:
            # read-only: the core never writes reference data
            self.conn = sqlite3.connect(f"file:{Path(db)}?mode=ro", uri=True)
        self.conn.row_factory = sqlite3.Row
        self.chunk_size = chunk_size
        self.policy = policy or RetryPolicy(max_attempts=3)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReferenceStore":
        return cls(settings.require_reference_db(), chunk_size=settings.reference_chunk)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "ReferenceStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Query plumbing
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: Sequence[Any] = (), *, operation: str) -> List[sqlite3.Row]:
        def _run() -> List[sqlite3.Row]:
            return self.conn.execute(sql, tuple(params)).fetchall()

        try:
            return run_with_retry(_run, self.policy, operation)
        except sqlite3.Error as e:
            raise ReferenceStoreError(operation, e) from e

    def _query_in(
        self,
        sql_template: str,
        ids: Sequence[str],
        *,
        operation: str,
        prefix_params: Sequence[Any] = (),
    ) -> List[sqlite3.Row]:
        """Run `sql_template` (with one `{ids}` placeholder) once per id chunk."""
        rows: List[sqlite3.Row] = []
        for chunk in chunked(ids, self.chunk_size):
            marks = ",".join("?" for _ in chunk)
            rows.extend(self._query(
                sql_template.format(ids=marks),
                [*prefix_params, *chunk],
                operation=operation,
            ))
        return rows

    # ------------------------------------------------------------------
    # Taxonomy
    # ------------------------------------------------------------------

    def fetch_ingredient_meta(self, ingredient_ids: Iterable[str]) -> Dict[str, IngredientMeta]:
        rows = self._query_in(
            "SELECT id, name, unit, rda_adult, ul_adult FROM ingredients WHERE id IN ({ids})",
            _unique(ingredient_ids),
            operation="fetch ingredient meta",
        )
        return {
            r["id"]: IngredientMeta(
                id=r["id"], name=r["name"], unit=r["unit"],
                rda_adult=r["rda_adult"], ul_adult=r["ul_adult"],
            )
            for r in rows
        }

    def fetch_ingredient_forms(self, ingredient_ids: Iterable[str]) -> List[IngredientForm]:
        rows = self._query_in(
            "SELECT id, ingredient_id, form_key, form_label, audit_status, relative_factor, "
            "confidence, evidence_grade FROM ingredient_forms WHERE ingredient_id IN ({ids})",
            _unique(ingredient_ids),
            operation="fetch ingredient forms",
        )
        return [
            IngredientForm(
                ingredient_id=r["ingredient_id"],
                form_key=r["form_key"],
                form_label=r["form_label"],
                audit_status=r["audit_status"],
                id=r["id"],
                relative_factor=r["relative_factor"],
                confidence=r["confidence"],
                evidence_grade=r["evidence_grade"],
            )
            for r in rows
        ]

    def fetch_form_aliases(self, ingredient_ids: Iterable[str]) -> List[FormAlias]:
        """Global aliases first, then aliases scoped to the given ingredients."""
        columns = "alias_text, alias_norm, form_key, ingredient_id, confidence, audit_status, source"
        rows = self._query(
            f"SELECT {columns} FROM ingredient_form_aliases WHERE ingredient_id IS NULL",
            operation="fetch global aliases",
        )
        rows += self._query_in(
            f"SELECT {columns} FROM ingredient_form_aliases WHERE ingredient_id IN ({{ids}})",
            _unique(ingredient_ids),
            operation="fetch ingredient aliases",
        )
        return [
            FormAlias(
                alias_text=r["alias_text"],
                alias_norm=r["alias_norm"],
                form_key=r["form_key"],
                ingredient_id=r["ingredient_id"],
                confidence=r["confidence"],
                audit_status=r["audit_status"],
                source=r["source"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def fetch_form_coverage(
        self,
        source: str,
        source_ids: Iterable[str],
        score_version: Optional[str] = None,
    ) -> Dict[str, Optional[float]]:
        """source_id → stored form-coverage ratio (None when not recorded)."""
        version_sql = " AND score_version = ?" if score_version else ""
        prefix: List[Any] = [source] + ([score_version] if score_version else [])
        rows = self._query_in(
            "SELECT source_id, explain_json FROM product_scores "
            f"WHERE source = ?{version_sql} AND source_id IN ({{ids}})",
            _unique(source_ids),
            operation="fetch product scores",
            prefix_params=prefix,
        )
        return {r["source_id"]: form_coverage_from_explain(r["explain_json"]) for r in rows}

    def fetch_product_ingredients(self, source: str, source_ids: Iterable[str]) -> List[ProductIngredientRow]:
        rows = self._query_in(
            "SELECT source_id, ingredient_id, name_raw, form_raw, amount, unit, amount_normalized, "
            "unit_normalized, unit_kind, is_active, basis FROM product_ingredients "
            "WHERE source = ? AND source_id IN ({ids})",
            _unique(source_ids),
            operation="fetch product ingredients",
            prefix_params=[source],
        )
        return [
            ProductIngredientRow(
                source_id=r["source_id"],
                ingredient_id=r["ingredient_id"],
                name_raw=r["name_raw"],
                form_raw=r["form_raw"],
                amount=r["amount"],
                unit=r["unit"],
                amount_normalized=r["amount_normalized"],
                unit_normalized=r["unit_normalized"],
                unit_kind=r["unit_kind"],
                is_active=bool(r["is_active"]),
                basis=r["basis"] or "label_serving",
            )
            for r in rows
        ]

    def fetch_recent_source_ids(self, source: str, limit: int, score_version: Optional[str] = None) -> List[str]:
        """Most recently scored products, newest first."""
        version_sql = " AND score_version = ?" if score_version else ""
        params: List[Any] = [source] + ([score_version] if score_version else []) + [int(limit)]
        rows = self._query(
            f"SELECT source_id FROM product_scores WHERE source = ?{version_sql} "
            "ORDER BY computed_at DESC LIMIT ?",
            params,
            operation="fetch recent source ids",
        )
        return _unique(r["source_id"] for r in rows)

    def fetch_pool_source_ids(self, source: str, limit: int, score_version: Optional[str] = None) -> List[str]:
        """Sorted, de-duplicated pool of scored product ids for random sampling."""
        version_sql = " AND score_version = ?" if score_version else ""
        params: List[Any] = [source] + ([score_version] if score_version else []) + [int(limit)]
        rows = self._query(
            f"SELECT source_id FROM product_scores WHERE source = ?{version_sql} "
            "ORDER BY source_id ASC LIMIT ?",
            params,
            operation="fetch pool source ids",
        )
        return sorted(set(_unique(r["source_id"] for r in rows)))


def init_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
