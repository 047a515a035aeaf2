"""
Tests for settings loading and the shared retry policy.

Run: python -m pytest tests/test_config_retry.py -v
"""

import pytest
import sqlite3
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import requests

from labelfacts.config import Settings, load_settings
from labelfacts.errors import ConfigurationError, RetryableError
from labelfacts.retry_policy import RetryPolicy, is_retryable_error, run_with_retry

NO_WAIT = RetryPolicy(max_attempts=3, base_delay_s=0, max_delay_s=0)


def http_error(status):
    resp = requests.Response()
    resp.status_code = status
    return requests.HTTPError(f"{status}", response=resp)


class TestLoadSettings:
    def test_defaults(self):
        s = load_settings({})
        assert s == Settings()
        assert s.ocr_max_retries == 1
        assert s.reference_chunk == 200
        assert s.ul_thresholds.moderate_ratio is None

    def test_values_from_env(self):
        s = load_settings({
            "TESSERACT_LANG": "eng+fra",
            "LABELFACTS_OCR_TIMEOUT_S": "2.5",
            "LABELFACTS_OCR_MAX_RETRIES": "0",
            "LABELFACTS_REFERENCE_DB": "/data/reference.db",
            "LABELFACTS_REFERENCE_CHUNK": "50",
            "LABELFACTS_UL_MODERATE_RATIO": "0.8",
        })
        assert s.tesseract_lang == "eng+fra"
        assert s.ocr_timeout_s == 2.5
        assert s.ocr_max_retries == 0
        assert str(s.reference_db) == "/data/reference.db"
        assert s.reference_chunk == 50
        assert s.ul_thresholds.moderate_ratio == 0.8
        assert s.ul_thresholds.high_ratio == 1.0

    @pytest.mark.parametrize("key,value", [
        ("LABELFACTS_OCR_TIMEOUT_S", "soon"),
        ("LABELFACTS_OCR_TIMEOUT_S", "0"),
        ("LABELFACTS_OCR_MAX_RETRIES", "-1"),
        ("LABELFACTS_REFERENCE_CHUNK", "0"),
        ("LABELFACTS_REFERENCE_CHUNK", "ten"),
        ("LABELFACTS_UL_MODERATE_RATIO", "-0.5"),
    ])
    def test_bad_values_rejected_at_load(self, key, value):
        with pytest.raises(ConfigurationError):
            load_settings({key: value})

    def test_blank_values_fall_back_to_defaults(self):
        assert load_settings({"TESSERACT_LANG": "  ", "LABELFACTS_REFERENCE_DB": ""}) == Settings()

    def test_dotenv_file(self, tmp_path, monkeypatch):
        for key in ("LABELFACTS_REFERENCE_CHUNK", "TESSERACT_LANG"):
            monkeypatch.setenv(key, "placeholder")
            monkeypatch.delenv(key)
        env_file = tmp_path / ".env"
        env_file.write_text("LABELFACTS_REFERENCE_CHUNK=25\nTESSERACT_LANG=deu\n", encoding="utf-8")

        s = load_settings(dotenv_path=env_file)
        assert s.reference_chunk == 25
        assert s.tesseract_lang == "deu"


class TestRequire:
    def test_reference_db(self, tmp_path):
        with pytest.raises(ConfigurationError):
            Settings().require_reference_db()
        with pytest.raises(ConfigurationError):
            Settings(reference_db=tmp_path / "missing.db").require_reference_db()
        db = tmp_path / "ref.db"
        db.write_bytes(b"")
        assert Settings(reference_db=db).require_reference_db() == db

    def test_tesseract(self, tmp_path):
        with pytest.raises(ConfigurationError):
            Settings(tesseract_cmd=str(tmp_path / "nope")).require_tesseract()
        binary = tmp_path / "tesseract"
        binary.write_text("#!/bin/sh\n", encoding="utf-8")
        assert Settings(tesseract_cmd=str(binary)).require_tesseract() == str(binary)


class TestRetryableErrors:
    @pytest.mark.parametrize("exc", [
        RetryableError("again"),
        TimeoutError(),
        ConnectionResetError(),
        requests.Timeout(),
        requests.ConnectionError(),
        http_error(503),
        http_error(429),
        sqlite3.OperationalError("database is locked"),
        RuntimeError("Tesseract process timed out"),
    ])
    def test_transient(self, exc):
        assert is_retryable_error(exc)

    @pytest.mark.parametrize("exc", [
        ValueError("bad"),
        http_error(404),
        sqlite3.OperationalError("no such table: x"),
        RuntimeError("tesseract is not installed"),
        sqlite3.IntegrityError("locked"),
    ])
    def test_permanent(self, exc):
        assert not is_retryable_error(exc)


class TestRunWithRetry:
    def test_succeeds_after_transient_failures(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise RetryableError("busy")
            return "ok"

        assert run_with_retry(flaky, NO_WAIT, "flaky") == "ok"
        assert len(attempts) == 3

    def test_last_error_reraised_unchanged(self):
        attempts = []

        def always_down():
            attempts.append(1)
            raise TimeoutError("still down")

        with pytest.raises(TimeoutError, match="still down"):
            run_with_retry(always_down, NO_WAIT)
        assert len(attempts) == 3

    def test_permanent_error_propagates_immediately(self):
        attempts = []

        def broken():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(broken, NO_WAIT)
        assert len(attempts) == 1

    def test_custom_predicate(self):
        attempts = []

        def fails_once():
            attempts.append(1)
            if len(attempts) == 1:
                raise KeyError("x")
            return 7

        policy = RetryPolicy(max_attempts=2, base_delay_s=0, max_delay_s=0, retry_on=lambda e: isinstance(e, KeyError))
        assert run_with_retry(fails_once, policy) == 7
