from __future__ import annotations

import httpx
import pytest

from platform_sync.errors import (
    CircuitOpenError,
    RateLimitExceededError,
    TransientProviderError,
)
from platform_sync.resilience.classification import (
    ErrorKind,
    classify_error,
    classify_status,
    error_code,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example.test/v1/artists")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (429, ErrorKind.RATE_LIMITED),
        (401, ErrorKind.UNAUTHORIZED),
        (403, ErrorKind.FORBIDDEN),
        (404, ErrorKind.NOT_FOUND),
        (503, ErrorKind.SERVER_ERROR),
        (400, ErrorKind.UNKNOWN),
    ],
)
def test_http_status_errors_are_classified(status: int, expected: ErrorKind) -> None:
    assert classify_error(_status_error(status)) is expected


def test_classify_status_ignores_success_codes() -> None:
    assert classify_status(200) is None
    assert classify_status(None) is None


@pytest.mark.parametrize(
    "message",
    ["HTTP 429 returned", "Rate limit reached", "Too Many Requests"],
)
def test_rate_limit_messages_are_detected(message: str) -> None:
    assert classify_error(message) is ErrorKind.RATE_LIMITED
    assert classify_error(RuntimeError(message)).is_rate_limit


def test_engine_errors_map_to_their_kind() -> None:
    assert classify_error(RateLimitExceededError("spotify")) is ErrorKind.RATE_LIMITED
    assert classify_error(CircuitOpenError("spotify")) is ErrorKind.CIRCUIT_OPEN
    assert (
        classify_error(TransientProviderError("tidal", "boom", status_code=502))
        is ErrorKind.SERVER_ERROR
    )


def test_timeouts_and_transport_errors() -> None:
    request = httpx.Request("GET", "https://api.example.test")

    assert classify_error(httpx.ReadTimeout("slow", request=request)) is ErrorKind.TIMEOUT
    assert classify_error(TimeoutError()) is ErrorKind.TIMEOUT
    assert classify_error(httpx.ConnectError("refused", request=request)) is ErrorKind.SERVER_ERROR


def test_unknown_errors_and_codes() -> None:
    kind = classify_error(ValueError("unexpected payload"))

    assert kind is ErrorKind.UNKNOWN
    assert not kind.is_transient
    assert error_code(kind) == "UNKNOWN_ERROR"
    assert error_code(ErrorKind.CIRCUIT_OPEN) == "CIRCUIT_OPEN"
    assert ErrorKind.TIMEOUT.is_transient
