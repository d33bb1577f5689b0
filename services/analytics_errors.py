"""
analytics_errors.py
-------------------
Custom exception hierarchy for the analytics sync engine.

Each error carries the HTTP status the API layer should answer with.
"""

from typing import Optional, Sequence


class AnalyticsSyncError(Exception):
    """Base exception for analytics sync errors."""

    http_status = 500


class InvalidIdentifier(AnalyticsSyncError):
    """Raised when an external user id is malformed. Not retryable."""

    http_status = 400

    def __init__(self, value: Optional[str], reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid external user id {value!r}: {reason}")


class Forbidden(AnalyticsSyncError):
    """Raised when the caller may not refresh the requested profile."""

    http_status = 403


class UpstreamError(AnalyticsSyncError):
    """Raised when the provider fails, times out, or returns an unusable payload.

    Retryable, but the engine never retries on its own.
    """

    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class NormalizationFailure(AnalyticsSyncError):
    """Raised when a payload holds no usable source field for a required metric."""

    http_status = 422

    def __init__(self, message: str, fields_tried: Sequence[str] = ()):
        self.fields_tried = list(fields_tried)
        super().__init__(f"{message} (tried: {', '.join(self.fields_tried) or 'none'})")


class PersistenceError(AnalyticsSyncError):
    """Raised when a store write fails. The previous row stays authoritative."""

    http_status = 500
