# labelfacts/ocr_client.py
"""
OCR collaborator: image in, Tokens + full text out.

Wraps pytesseract.image_to_data (Output.DICT) and converts every word box
into a Token with confidence normalized to 0.0–1.0. Images can be given as
raw bytes, a PIL image, a local path, or an http(s) URL (fetched with
requests).

Failure contract:
  OcrEmptyResponse   engine ran but recognized no usable words
  OcrTransportError  engine/fetch failed after the retry policy gave up,
                     or failed in a way that is not worth retrying
Timeouts, connection resets and 5xx responses are retried per RetryPolicy
(one retry by default).
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytesseract
import requests
from PIL import Image
from pytesseract import Output

from .config import Settings, load_settings
from .errors import OcrEmptyResponse, OcrTransportError
from .ocr_types import BBox, OcrResult, Token
from .retry_policy import RetryPolicy, run_with_retry

log = logging.getLogger(__name__)

ImageSource = Union[bytes, str, Path, Image.Image]
OcrEngine = Callable[..., Dict[str, List[Any]]]

_URL_PREFIXES = ("http://", "https://")
_FETCH_TIMEOUT_S = 10

# Tesseract reports -1 for non-word rows (blocks, paragraphs, lines)
_NO_CONF = -1.0


def _tesseract_engine(image: Image.Image, *, lang: str, config: str, timeout: float) -> Dict[str, List[Any]]:
    return pytesseract.image_to_data(
        image, lang=lang, config=config, timeout=timeout, output_type=Output.DICT
    )


def _make_token(i: int, data: Dict[str, List[Any]]) -> Optional[Token]:
    text = str(data["text"][i] or "").strip()
    if not text:
        return None
    try:
        conf = float(data["conf"][i])
    except (TypeError, ValueError):
        conf = _NO_CONF
    if conf < 0:
        return None

    x = float(data["left"][i])
    y = float(data["top"][i])
    w = max(0.0, float(data["width"][i]))
    h = max(0.0, float(data["height"][i]))
    return Token(
        text=text,
        bbox=BBox(x_min=x, x_max=x + w, y_min=y, y_max=y + h),
        confidence=min(1.0, conf / 100.0),
    )


def _line_key(i: int, data: Dict[str, List[Any]]) -> Tuple[int, int, int]:
    def _num(key: str) -> int:
        values = data.get(key)
        return int(values[i]) if values else 0
    return _num("block_num"), _num("par_num"), _num("line_num")


def tokens_from_data(data: Dict[str, List[Any]]) -> OcrResult:
    """Convert an image_to_data dict into tokens plus line-joined full text."""
    tokens: List[Token] = []
    lines: Dict[Tuple[int, int, int], List[str]] = {}

    for i in range(len(data.get("text", []))):
        token = _make_token(i, data)
        if token is None:
            continue
        tokens.append(token)
        lines.setdefault(_line_key(i, data), []).append(token.text)

    full_text = "\n".join(" ".join(words) for words in lines.values())
    return OcrResult(tokens=tuple(tokens), full_text=full_text)


class OcrClient:
    """
    Thin adapter around the OCR engine. `engine` and `http_get` are
    injectable so callers (and tests) can swap the backend.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        engine: Optional[OcrEngine] = None,
        http_get: Callable[..., requests.Response] = requests.get,
        policy: Optional[RetryPolicy] = None,
    ):
        self.settings = settings or load_settings()
        if engine is None:
            pytesseract.pytesseract.tesseract_cmd = self.settings.require_tesseract()
            engine = _tesseract_engine
        self._engine = engine
        self._http_get = http_get
        self.policy = policy or RetryPolicy(max_attempts=self.settings.ocr_max_retries + 1)

    # ------------------------------------------------------------------
    # Image loading
    # ------------------------------------------------------------------

    def _fetch(self, url: str) -> bytes:
        def _get() -> bytes:
            resp = self._http_get(url, timeout=_FETCH_TIMEOUT_S)
            resp.raise_for_status()
            return resp.content
        return run_with_retry(_get, self.policy, f"fetch {url}")

    def load_image(self, source: ImageSource) -> Image.Image:
        if isinstance(source, Image.Image):
            return source
        if isinstance(source, str) and source.startswith(_URL_PREFIXES):
            try:
                source = self._fetch(source)
            except (requests.RequestException, OSError) as e:
                raise OcrTransportError("image fetch", e) from e
        try:
            if isinstance(source, (str, Path)):
                return Image.open(source)
            return Image.open(io.BytesIO(source))
        except OSError as e:
            # missing files and UnidentifiedImageError both land here
            raise OcrTransportError("image load", e) from e

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    def recognize(self, source: ImageSource) -> OcrResult:
        image = self.load_image(source)
        s = self.settings

        def _call() -> Dict[str, List[Any]]:
            return self._engine(
                image, lang=s.tesseract_lang, config=s.tesseract_config, timeout=s.ocr_timeout_s
            )

        try:
            data = run_with_retry(_call, self.policy, "ocr image_to_data")
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            raise OcrTransportError("ocr image_to_data", e) from e

        result = tokens_from_data(data or {})
        if not result.tokens:
            raise OcrEmptyResponse("OCR returned no words")

        log.info("ocr: %d tokens, %d chars", len(result.tokens), len(result.full_text))
        return result
