"""Classification of provider failures into coarse error kinds."""

from __future__ import annotations

from enum import Enum

import httpx

from platform_sync.errors import (
    CircuitOpenError,
    RateLimitExceededError,
    TransientProviderError,
)

__all__ = ["ErrorKind", "classify_error", "classify_status", "error_code"]


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"

    @property
    def is_rate_limit(self) -> bool:
        return self is ErrorKind.RATE_LIMITED

    @property
    def is_transient(self) -> bool:
        return self in {ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR, ErrorKind.TIMEOUT}


_ERROR_CODES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: "RATE_LIMITED",
    ErrorKind.UNAUTHORIZED: "UNAUTHORIZED",
    ErrorKind.FORBIDDEN: "FORBIDDEN",
    ErrorKind.NOT_FOUND: "NOT_FOUND",
    ErrorKind.SERVER_ERROR: "SERVER_ERROR",
    ErrorKind.TIMEOUT: "TIMEOUT",
    ErrorKind.CIRCUIT_OPEN: "CIRCUIT_OPEN",
    ErrorKind.UNKNOWN: "UNKNOWN_ERROR",
}

_RATE_LIMIT_TERMS = ("429", "rate limit", "rate-limit", "too many requests")
_TIMEOUT_TERMS = ("timeout", "timed out")
_SERVER_TERMS = ("500", "502", "503", "504", "internal server error", "bad gateway", "service unavailable")


def error_code(kind: ErrorKind) -> str:
    """Return the upper-case summary code for ``kind``."""

    return _ERROR_CODES[kind]


def classify_status(status_code: int | None) -> ErrorKind | None:
    if status_code is None:
        return None
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 401:
        return ErrorKind.UNAUTHORIZED
    if status_code == 403:
        return ErrorKind.FORBIDDEN
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 408:
        return ErrorKind.TIMEOUT
    if 500 <= status_code < 600:
        return ErrorKind.SERVER_ERROR
    return None


def _classify_message(message: str) -> ErrorKind:
    text = message.lower()
    if any(term in text for term in _RATE_LIMIT_TERMS):
        return ErrorKind.RATE_LIMITED
    if "circuit breaker open" in text:
        return ErrorKind.CIRCUIT_OPEN
    if "401" in text or "unauthorized" in text:
        return ErrorKind.UNAUTHORIZED
    if "403" in text or "forbidden" in text:
        return ErrorKind.FORBIDDEN
    if "404" in text or "not found" in text:
        return ErrorKind.NOT_FOUND
    if any(term in text for term in _TIMEOUT_TERMS):
        return ErrorKind.TIMEOUT
    if any(term in text for term in _SERVER_TERMS):
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def classify_error(error: BaseException | ErrorKind | str) -> ErrorKind:
    """Map an exception (or a raw message) onto an :class:`ErrorKind`."""

    if isinstance(error, ErrorKind):
        return error
    if isinstance(error, str):
        return _classify_message(error)
    if isinstance(error, RateLimitExceededError):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, CircuitOpenError):
        return ErrorKind.CIRCUIT_OPEN
    if isinstance(error, httpx.HTTPStatusError):
        kind = classify_status(error.response.status_code)
        return kind or ErrorKind.UNKNOWN
    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, TransientProviderError):
        return classify_status(error.status_code) or ErrorKind.SERVER_ERROR
    if isinstance(error, httpx.TransportError):
        return ErrorKind.SERVER_ERROR
    return _classify_message(str(error))
