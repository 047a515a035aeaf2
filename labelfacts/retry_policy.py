# labelfacts/retry_policy.py
"""
Bounded retries for the two external collaborators (OCR engine and the
reference store).

    policy = RetryPolicy(max_attempts=2)
    run_with_retry(lambda: call(), policy, "ocr image_to_data")

Only failures that is_retryable_error() accepts are retried; anything
else propagates on the first attempt. After the last attempt the final
exception is re-raised unchanged so the caller can wrap it.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .errors import RetryableError

log = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection reset",
    "temporarily unavailable",
    "database is locked",
    "database is busy",
)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, RetryableError):
        return True
    if isinstance(exc, (TimeoutError, ConnectionResetError)):
        return True
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(exc, requests.HTTPError):
        status = exc.response.status_code if exc.response is not None else None
        return status in _RETRYABLE_STATUS
    if isinstance(exc, sqlite3.OperationalError):
        msg = str(exc).lower()
        return "locked" in msg or "busy" in msg
    if isinstance(exc, RuntimeError):
        # pytesseract reports its own subprocess timeout as RuntimeError
        msg = str(exc).lower()
        return any(m in msg for m in _TRANSIENT_MARKERS)
    return False


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 2
    base_delay_s: float = 0.5
    max_delay_s: float = 4.0
    retry_on: Callable[[BaseException], bool] = is_retryable_error


def _log_retry(description: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log.warning(
            "%s failed (attempt %d), retrying: %s",
            description, state.attempt_number, exc,
        )
    return _before_sleep


def run_with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    description: str = "operation",
) -> T:
    policy = policy or RetryPolicy()
    retrying = Retrying(
        reraise=True,
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_exponential_jitter(
            initial=policy.base_delay_s, max=policy.max_delay_s, jitter=policy.base_delay_s,
        ),
        retry=retry_if_exception(policy.retry_on),
        before_sleep=_log_retry(description),
    )
    return retrying(operation)
