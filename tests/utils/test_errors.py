import asyncio

from vidchat.utils.errors import (
    ErrorKind,
    UpstreamError,
    classify_exception,
    http_status_for,
    is_retryable,
)


def test_only_rate_limit_and_transient_are_retryable():
    assert {kind for kind in ErrorKind if is_retryable(kind)} == {ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT}


def test_http_status_mapping():
    assert http_status_for(ErrorKind.CONFIGURATION) == 500
    assert http_status_for(ErrorKind.QUOTA_EXCEEDED) == 429
    assert http_status_for(ErrorKind.SAFETY_BLOCKED) == 400
    assert http_status_for(ErrorKind.NOT_FOUND) == 404


def test_classify_exception_by_type_and_text():
    assert classify_exception(asyncio.TimeoutError()) == ErrorKind.TRANSIENT
    assert classify_exception(RuntimeError("Network unreachable")) == ErrorKind.TRANSIENT
    assert classify_exception(RuntimeError("rate limit exceeded")) == ErrorKind.RATE_LIMITED
    assert classify_exception(ValueError("bad input")) == ErrorKind.UNKNOWN
    assert classify_exception(UpstreamError(ErrorKind.NOT_FOUND, "gone")) == ErrorKind.NOT_FOUND


def test_upstream_error_exposes_code_and_retryable():
    error = UpstreamError(ErrorKind.QUOTA_EXCEEDED, "quota", retry_after=30)
    assert error.code == "QUOTA_EXCEEDED"
    assert error.retryable is False
    assert error.retry_after == 30
