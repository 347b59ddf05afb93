"""Tests for tasksync.errors: error taxonomy and rate-limit delays."""

from __future__ import annotations

import httpx
import pytest

from tasksync.errors import (
    MAX_DELAY_SECONDS,
    ChecksumMismatchError,
    ConfigError,
    ErrorCategory,
    GeneratorError,
    GeneratorOutputError,
    GraphValidationError,
    InvalidArtifactError,
    TrackerError,
    classify_error,
    looks_like_rate_limit,
    rate_limit_delay,
)


class _CodedError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


def _http_status_error(status: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.test/x")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestClassifyError:
    """One case per category, plus precedence between them."""

    def test_403_rate_limit(self):
        info = classify_error(TrackerError(403, "API rate limit exceeded"))
        assert info.category == ErrorCategory.RATE_LIMIT
        assert info.retryable is True
        assert info.max_retries == 10

    def test_429(self):
        info = classify_error(TrackerError(429, "slow down"))
        assert info.type == "rate_limit"
        assert info.max_retries == 10

    def test_secondary_rate_limit_wording(self):
        info = classify_error(TrackerError(403, "You have exceeded a secondary rate limit"))
        assert info.category == ErrorCategory.RATE_LIMIT

    def test_econnreset(self):
        info = classify_error(_CodedError("read failed", "ECONNRESET"))
        assert info.category == ErrorCategory.NETWORK
        assert info.retryable is True
        assert info.max_retries == 5
        assert info.retry_delay == 1.0

    def test_errno_style_connection_error(self):
        info = classify_error(ConnectionResetError(104, "Connection reset by peer"))
        assert info.category == ErrorCategory.NETWORK

    def test_httpx_transport_error(self):
        info = classify_error(httpx.ConnectError("boom"))
        assert info.category == ErrorCategory.NETWORK

    def test_server_error_is_network(self):
        assert classify_error(TrackerError(502, "Bad Gateway")).category == ErrorCategory.NETWORK
        assert classify_error(_http_status_error(503)).category == ErrorCategory.NETWORK

    def test_422_validation(self):
        info = classify_error(TrackerError(422, "Validation Failed"))
        assert info.category == ErrorCategory.VALIDATION
        assert info.retryable is False
        assert info.max_retries == 0

    def test_404_validation(self):
        assert classify_error(TrackerError(404, "Not Found")).category == ErrorCategory.VALIDATION

    def test_local_validation_errors(self):
        for exc in (GraphValidationError("bad"), GeneratorOutputError("tasks[0].id"), ConfigError("x")):
            assert classify_error(exc).category == ErrorCategory.VALIDATION

    def test_401_authentication(self):
        info = classify_error(TrackerError(401, "Bad credentials"))
        assert info.category == ErrorCategory.AUTHENTICATION
        assert info.retryable is False

    def test_403_without_rate_limit_is_authentication(self):
        info = classify_error(TrackerError(403, "Resource not accessible by integration"))
        assert info.category == ErrorCategory.AUTHENTICATION

    def test_invalid_artifact_message(self):
        info = classify_error(Exception("Invalid artifact: abc123"))
        assert info.category == ErrorCategory.INVALID_ARTIFACT
        assert info.retryable is False

    def test_checksum_mismatch(self):
        info = classify_error(ChecksumMismatchError("aaa", "bbb"))
        assert info.category == ErrorCategory.INVALID_ARTIFACT

    def test_unknown(self):
        info = classify_error(Exception("Something went wrong"))
        assert info.category == ErrorCategory.UNKNOWN
        assert info.retryable is True
        assert info.max_retries == 3
        assert info.retry_delay == 2.0

    def test_generator_process_error_is_unknown(self):
        assert classify_error(GeneratorError("exited with code 2")).category == ErrorCategory.UNKNOWN

    def test_network_wording(self):
        assert classify_error(Exception("socket hang up")).category == ErrorCategory.NETWORK


class TestRateLimitDelay:
    def test_retry_after_header(self):
        info = classify_error(TrackerError(429, "slow", headers={"Retry-After": "7"}))
        assert info.retry_delay == 7.0

    def test_retry_after_capped(self):
        assert rate_limit_delay({"retry-after": "1000"}, 0) == MAX_DELAY_SECONDS

    def test_reset_epoch(self):
        assert rate_limit_delay({"x-ratelimit-reset": "1060"}, 0, now=1000.0) == 60.0

    def test_reset_in_past_waits_at_least_a_second(self):
        assert rate_limit_delay({"x-ratelimit-reset": "900"}, 0, now=1000.0) == 1.0

    def test_exponential_without_headers(self):
        assert rate_limit_delay({}, 0) == 1.0
        assert rate_limit_delay({}, 3) == 8.0
        assert rate_limit_delay({}, 20) == MAX_DELAY_SECONDS

    def test_headers_from_httpx_error(self):
        info = classify_error(_http_status_error(429, {"Retry-After": "3"}))
        assert info.category == ErrorCategory.RATE_LIMIT
        assert info.retry_delay == 3.0


class TestErrorTypes:
    def test_tracker_error_str(self):
        exc = TrackerError(404, "Not Found", headers={"X-Thing": "1"})
        assert str(exc) == "HTTP 404: Not Found"
        assert exc.headers == {"x-thing": "1"}

    def test_checksum_message(self):
        exc = ChecksumMismatchError("abc", "def")
        assert str(exc) == "Checksum validation failed. Expected: abc, Got: def"
        assert isinstance(exc, InvalidArtifactError)

    @pytest.mark.parametrize("text", ["API rate limit exceeded", "abuse detection mechanism", "Too Many Requests"])
    def test_looks_like_rate_limit(self, text):
        assert looks_like_rate_limit(text)

    def test_plain_text_is_not_rate_limit(self):
        assert not looks_like_rate_limit("")
        assert not looks_like_rate_limit("Not Found")
