# labelfacts/errors.py
"""
LabelFacts error types.

Only transport and configuration problems raise. Malformed label input is
reported as ValidationIssues on the draft, and taxonomy or UL findings are
returned as data.
"""

from __future__ import annotations

from typing import Optional


class LabelFactsError(Exception):
    """Base class for every error raised by labelfacts."""


class ConfigurationError(LabelFactsError):
    """Missing or invalid settings, raised while settings are loaded."""


class RetryableError(LabelFactsError):
    """Marks a transient failure that the retry policy may attempt again."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class TransportError(LabelFactsError):
    """
    An external call failed for good (after retries, or on a
    non-retryable failure). The original exception is kept as `cause`
    and chained as __cause__ by the raiser.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")
        self.operation = operation
        self.cause = cause


class OcrTransportError(TransportError):
    pass


class ReferenceStoreError(TransportError):
    pass


class OcrEmptyResponse(LabelFactsError):
    """The OCR engine answered but recognized no words."""
