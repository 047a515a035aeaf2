# labelfacts/config.py
"""
Runtime settings, read once from the environment.

A project-root `.env` is loaded first (it never overrides variables that
are already set), so TESSERACT_CMD and the reference DB path work without
touching the shell profile.

  TESSERACT_CMD                  path to the tesseract binary (else PATH lookup)
  TESSERACT_LANG                 default "eng"
  TESSERACT_CONFIG               default "--oem 1 --psm 6"
  LABELFACTS_OCR_TIMEOUT_S       per-call OCR timeout, default 10
  LABELFACTS_OCR_MAX_RETRIES     retries after the first attempt, default 1
  LABELFACTS_REFERENCE_DB        sqlite path of the taxonomy store
  LABELFACTS_REFERENCE_CHUNK     ids per batched lookup, default 200
  LABELFACTS_UL_MODERATE_RATIO   UL fraction for the moderate tier (unset = off)

Bad values raise ConfigurationError here, never later in the pipeline.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .scoring.ul_warnings import UlThresholds

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_TESSERACT_LANG = "eng"
DEFAULT_TESSERACT_CONFIG = "--oem 1 --psm 6"
DEFAULT_OCR_TIMEOUT_S = 10.0
DEFAULT_OCR_MAX_RETRIES = 1
DEFAULT_REFERENCE_CHUNK = 200


@dataclass(frozen=True, slots=True)
class Settings:
    tesseract_cmd: Optional[str] = None
    tesseract_lang: str = DEFAULT_TESSERACT_LANG
    tesseract_config: str = DEFAULT_TESSERACT_CONFIG
    ocr_timeout_s: float = DEFAULT_OCR_TIMEOUT_S
    ocr_max_retries: int = DEFAULT_OCR_MAX_RETRIES
    reference_db: Optional[Path] = None
    reference_chunk: int = DEFAULT_REFERENCE_CHUNK
    ul_moderate_ratio: Optional[float] = None

    @property
    def ul_thresholds(self) -> UlThresholds:
        return UlThresholds(moderate_ratio=self.ul_moderate_ratio)

    def require_tesseract(self) -> str:
        cmd = self.tesseract_cmd or shutil.which("tesseract")
        if not cmd or not Path(cmd).exists():
            raise ConfigurationError(
                "tesseract binary not found; set TESSERACT_CMD or add it to PATH"
            )
        return cmd

    def require_reference_db(self) -> Path:
        if self.reference_db is None:
            raise ConfigurationError("LABELFACTS_REFERENCE_DB is not set")
        if not self.reference_db.exists():
            raise ConfigurationError(f"reference db not found: {self.reference_db}")
        return self.reference_db


def _text(env: Mapping[str, str], key: str) -> Optional[str]:
    value = (env.get(key) or "").strip()
    return value or None


def _float(env: Mapping[str, str], key: str, default: Optional[float], *, minimum: float = 0.0) -> Optional[float]:
    raw = _text(env, key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e
    if value <= minimum:
        raise ConfigurationError(f"{key} must be > {minimum:g}, got {raw!r}")
    return value


def _int(env: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw = _text(env, key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {raw!r}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None, *, dotenv_path: Optional[Path] = None) -> Settings:
    """
    Build Settings from `env` (default: os.environ after loading .env).
    Passing an explicit mapping skips the .env file entirely.
    """
    if env is None:
        load_dotenv(dotenv_path or ROOT / ".env")
        env = os.environ

    db = _text(env, "LABELFACTS_REFERENCE_DB")
    return Settings(
        tesseract_cmd=_text(env, "TESSERACT_CMD"),
        tesseract_lang=_text(env, "TESSERACT_LANG") or DEFAULT_TESSERACT_LANG,
        tesseract_config=_text(env, "TESSERACT_CONFIG") or DEFAULT_TESSERACT_CONFIG,
        ocr_timeout_s=_float(env, "LABELFACTS_OCR_TIMEOUT_S", DEFAULT_OCR_TIMEOUT_S),
        ocr_max_retries=_int(env, "LABELFACTS_OCR_MAX_RETRIES", DEFAULT_OCR_MAX_RETRIES),
        reference_db=Path(db) if db else None,
        reference_chunk=_int(env, "LABELFACTS_REFERENCE_CHUNK", DEFAULT_REFERENCE_CHUNK, minimum=1),
        ul_moderate_ratio=_float(env, "LABELFACTS_UL_MODERATE_RATIO", None),
    )
