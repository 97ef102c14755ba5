"""
Error kinds shared by every external-call wrapper.

Wrappers around the transcript provider, the YouTube Data API, the LLM and the
conversation store convert whatever their client library raises into an
UpstreamError carrying one ErrorKind. Retry policy and HTTP mapping are then
plain lookups over that closed set.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure classes produced by upstream wrappers."""

    CONFIGURATION = "configuration"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    SAFETY_BLOCKED = "safety_blocked"
    INVALID_REQUEST = "invalid_request"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


# Machine-readable codes returned to clients in error bodies.
ERROR_CODES = {
    ErrorKind.CONFIGURATION: "CONFIGURATION_ERROR",
    ErrorKind.RATE_LIMITED: "RATE_LIMITED",
    ErrorKind.QUOTA_EXCEEDED: "QUOTA_EXCEEDED",
    ErrorKind.TRANSIENT: "UPSTREAM_UNAVAILABLE",
    ErrorKind.NOT_FOUND: "NOT_FOUND",
    ErrorKind.SAFETY_BLOCKED: "SAFETY_BLOCKED",
    ErrorKind.INVALID_REQUEST: "INVALID_REQUEST",
    ErrorKind.UNAVAILABLE: "UPSTREAM_UNAVAILABLE",
    ErrorKind.UNKNOWN: "UPSTREAM_ERROR",
}

_HTTP_STATUS = {
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.TRANSIENT: 502,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SAFETY_BLOCKED: 400,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.UNAVAILABLE: 502,
    ErrorKind.UNKNOWN: 502,
}

_RATE_KEYWORDS = ("rate limit", "rate-limit", "ratelimit", "too many requests", "429")
_TRANSIENT_KEYWORDS = ("timeout", "timed out", "network", "connection", "temporarily", "unreachable")


class UpstreamError(RuntimeError):
    """Failure reported by an external dependency, tagged with its kind."""

    def __init__(self, kind: ErrorKind, message: str, *, retry_after: Optional[float] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retry_after = retry_after

    @property
    def code(self) -> str:
        return ERROR_CODES[self.kind]

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"UpstreamError(kind={self.kind.value!r}, message={self.message!r})"


def is_retryable(kind: ErrorKind) -> bool:
    """Only rate-limit and transient network failures are worth retrying."""
    return kind in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT)


def http_status_for(kind: ErrorKind) -> int:
    return _HTTP_STATUS.get(kind, 502)


def classify_exception(error: BaseException) -> ErrorKind:
    """
    Categorize an opaque client-library exception.

    Only used inside the upstream wrappers, for libraries that do not expose a
    typed error for the condition. Everything downstream sees ErrorKind.
    """
    if isinstance(error, UpstreamError):
        return error.kind
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT

    status = getattr(error, "status_code", None) or getattr(error, "code", None)
    if status in (429, "429", "too_many_requests"):
        return ErrorKind.RATE_LIMITED

    error_type = type(error).__name__.lower()
    message = str(error).lower()
    if any(keyword in message or keyword in error_type for keyword in _RATE_KEYWORDS):
        return ErrorKind.RATE_LIMITED
    if any(keyword in message or keyword in error_type for keyword in _TRANSIENT_KEYWORDS):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN
