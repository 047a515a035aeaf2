"""
Tests for the read-only reference store: chunked lookups, row mapping,
read-only access and retry / error wrapping on sqlite failures.

Run: python -m pytest tests/test_reference_store.py -v
"""

import pytest
import sqlite3
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from labelfacts.errors import ReferenceStoreError
from labelfacts.reference_store import ReferenceStore, chunked, form_coverage_from_explain
from labelfacts.retry_policy import RetryPolicy
from reference_fixtures import SOURCE, build_reference_db

NO_WAIT = RetryPolicy(max_attempts=3, base_delay_s=0, max_delay_s=0)


class FlakyConnection(sqlite3.Connection):
    """Fails the first `failures` execute() calls with the given error."""

    failures = 0
    error = "database is locked"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    def execute(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise sqlite3.OperationalError(self.error)
        return super().execute(*args, **kwargs)


def flaky_store(failures, error="database is locked"):
    conn = build_reference_db()
    flaky = sqlite3.connect(":memory:", factory=FlakyConnection)
    conn.backup(flaky)
    conn.close()
    flaky.failures = failures
    flaky.error = error
    return ReferenceStore(flaky, policy=NO_WAIT)


class TestChunking:
    def test_chunked(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 2)) == []

    def test_lookups_issued_per_chunk(self):
        conn = build_reference_db()
        statements = []
        conn.set_trace_callback(statements.append)
        store = ReferenceStore(conn, chunk_size=2)

        meta = store.fetch_ingredient_meta(["mg", "zn", "vd", "mg", "xx", None])

        assert sorted(meta) == ["mg", "vd", "zn"]
        assert meta["zn"].ul_adult == 40
        selects = [s for s in statements if s.lstrip().upper().startswith("SELECT")]
        assert len(selects) == 2

    def test_empty_id_list_runs_no_query(self):
        store = ReferenceStore(build_reference_db())
        assert store.fetch_ingredient_meta([]) == {}
        assert store.fetch_product_ingredients(SOURCE, []) == []


class TestRowMapping:
    def test_forms(self):
        store = ReferenceStore(build_reference_db())
        forms = store.fetch_ingredient_forms(["mg"])
        assert {f.form_key for f in forms} == {"citrate", "bisglycinate"}
        assert all(f.is_verified for f in forms)

    def test_aliases_global_first(self):
        store = ReferenceStore(build_reference_db())
        aliases = store.fetch_form_aliases(["mg"])
        assert [a.alias_norm for a in aliases] == ["magtein", "chelated"]
        assert aliases[0].is_global
        assert aliases[1].ingredient_id == "mg"

    def test_product_rows(self):
        store = ReferenceStore(build_reference_db())
        rows = store.fetch_product_ingredients(SOURCE, ["p6", "p7"])
        by_name = {(r.source_id, r.name_raw, r.is_active) for r in rows}
        assert ("p6", "Zinc", False) in by_name
        p7 = next(r for r in rows if r.source_id == "p7")
        assert p7.basis == "per_day"
        assert p7.unit is None
        p6 = next(r for r in rows if r.source_id == "p6" and r.ingredient_id == "mg")
        assert p6.basis == "label_serving"
        assert p6.is_active is True

    def test_form_coverage(self):
        store = ReferenceStore(build_reference_db())
        coverage = store.fetch_form_coverage(SOURCE, ["p1", "p4", "p5", "missing"])
        assert coverage == {"p1": 0.0, "p4": 0.5, "p5": None}

    def test_score_version_filter(self):
        store = ReferenceStore(build_reference_db())
        assert store.fetch_form_coverage(SOURCE, ["p1"], "v1") == {}
        assert store.fetch_recent_source_ids(SOURCE, 10, "v2")[0] == "p7"
        assert store.fetch_pool_source_ids(SOURCE, 3) == ["p1", "p2", "p3"]

    @pytest.mark.parametrize("explain,expected", [
        ('{"evidence": {"formCoverageRatio": 0.25}}', 0.25),
        ({"evidence": {"formCoverageRatio": 1}}, 1.0),
        ({"evidence": {"formCoverageRatio": True}}, None),
        ({"evidence": {"formCoverageRatio": "0"}}, None),
        ({"evidence": None}, None),
        ("not json", None),
        (None, None),
    ])
    def test_explain_parsing(self, explain, expected):
        assert form_coverage_from_explain(explain) == expected


class TestReadOnlyFile:
    def test_path_opens_read_only(self, tmp_path):
        db = tmp_path / "reference.db"
        build_reference_db(sqlite3.connect(db)).close()

        with ReferenceStore(db) as store:
            assert "mg" in store.fetch_ingredient_meta(["mg"])
            with pytest.raises(sqlite3.OperationalError):
                store.conn.execute("DELETE FROM ingredients")


class TestRetries:
    def test_locked_database_retried(self):
        store = flaky_store(failures=2)
        assert "mg" in store.fetch_ingredient_meta(["mg"])
        assert store.conn.calls == 3

    def test_retries_exhausted_wraps_sqlite_error(self):
        store = flaky_store(failures=10)
        with pytest.raises(ReferenceStoreError) as exc_info:
            store.fetch_ingredient_meta(["mg"])
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)
        assert exc_info.value.operation == "fetch ingredient meta"
        assert store.conn.calls == 3

    def test_non_transient_error_not_retried(self):
        store = flaky_store(failures=10, error="no such table: ingredients")
        with pytest.raises(ReferenceStoreError):
            store.fetch_ingredient_meta(["mg"])
        assert store.conn.calls == 1
