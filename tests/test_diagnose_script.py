"""
Tests for the zero-coverage diagnostics command line.

Run: python -m pytest tests/test_diagnose_script.py -v
"""

import json
import sqlite3
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))

import diagnose_zero_coverage as cli
from reference_fixtures import build_reference_db


def make_db(tmp_path):
    path = tmp_path / "reference.db"
    build_reference_db(sqlite3.connect(path)).close()
    return path


class TestReadIdFile:
    def test_list_and_object_forms(self, tmp_path):
        as_list = tmp_path / "a.json"
        as_list.write_text(json.dumps(["p1", "", 3, "p2"]), encoding="utf-8")
        as_obj = tmp_path / "b.json"
        as_obj.write_text(json.dumps({"sourceIds": ["p7"]}), encoding="utf-8")

        assert cli.read_id_file(as_list) == ["p1", "p2"]
        assert cli.read_id_file(as_obj) == ["p7"]


class TestMain:
    def test_fixed_ids_report_written(self, tmp_path, capsys):
        ids = tmp_path / "ids.json"
        ids.write_text(json.dumps(["p1", "p2", "p3", "p4"]), encoding="utf-8")
        out = tmp_path / "out" / "report.json"
        sample_out = tmp_path / "sample.json"

        code = cli.main([
            "--source", "LNHPD",
            "--source-ids-file", str(ids),
            "--source-ids-output", str(sample_out),
            "--db", str(make_db(tmp_path)),
            "--output", str(out),
        ])

        assert code == 0
        payload = json.loads(out.read_text(encoding="utf-8"))
        assert payload["source"] == "lnhpd"
        assert payload["zeroCoverageCount"] == 3
        assert json.loads(sample_out.read_text(encoding="utf-8")) == ["p1", "p2", "p3", "p4"]
        printed = json.loads(capsys.readouterr().out)
        assert printed["zeroCoverageCount"] == 3

    def test_random_sample_is_reproducible(self, tmp_path):
        db = str(make_db(tmp_path))
        outputs = []
        for name in ("a.json", "b.json"):
            out = tmp_path / name
            assert cli.main(["--random-sample", "--limit", "3", "--seed", "11", "--db", db, "--output", str(out)]) == 0
            outputs.append(json.loads(out.read_text(encoding="utf-8")))
        assert outputs[0] == outputs[1]
        assert outputs[0]["sample"]["mode"] == "random_sample"

    def test_missing_db_fails_cleanly(self, tmp_path):
        code = cli.main(["--db", str(tmp_path / "absent.db"), "--output", str(tmp_path / "x.json")])
        assert code == 1
        assert not (tmp_path / "x.json").exists()

    def test_empty_selection_fails_cleanly(self, tmp_path):
        code = cli.main(["--source", "dsld", "--db", str(make_db(tmp_path)), "--output", str(tmp_path / "x.json")])
        assert code == 1
