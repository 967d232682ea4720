"""Error taxonomy for the sync engine."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes attached to every engine exception."""

    RATE_LIMITED = "RATE_LIMITED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    TRANSIENT_ERROR = "TRANSIENT_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    BATCH_FAILED = "BATCH_FAILED"
    STATE_STORE_ERROR = "STATE_STORE_ERROR"
    NOT_FOUND = "NOT_FOUND"


class SyncEngineError(Exception):
    """Base exception for failures raised by the sync engine."""

    __slots__ = ("message", "code", "provider", "meta")

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        provider: str | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider
        self.meta = dict(meta) if meta is not None else None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.provider is not None:
            payload["provider"] = self.provider
        if self.meta:
            payload["meta"] = dict(self.meta)
        return payload


class RateLimitExceededError(SyncEngineError):
    """Raised when a provider's request budget is exhausted."""

    def __init__(self, provider: str, *, retry_after_s: float | None = None) -> None:
        meta = {"retry_after_s": retry_after_s} if retry_after_s is not None else None
        super().__init__(
            f"Rate limit exceeded for {provider}",
            code=ErrorCode.RATE_LIMITED,
            provider=provider,
            meta=meta,
        )
        self.retry_after_s = retry_after_s


class CircuitOpenError(SyncEngineError):
    """Raised instead of calling a provider whose circuit is open."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Circuit breaker open for {provider}",
            code=ErrorCode.CIRCUIT_OPEN,
            provider=provider,
        )


class TransientProviderError(SyncEngineError):
    """Upstream 5xx or timeout class failure that may succeed when retried."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        meta = {"status_code": status_code} if status_code is not None else None
        super().__init__(
            message,
            code=ErrorCode.TRANSIENT_ERROR,
            provider=provider,
            meta=meta,
        )
        self.status_code = status_code
        self.cause = cause


class FatalConfigurationError(SyncEngineError):
    """Raised for missing workers or configuration; never retried."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message, code=ErrorCode.CONFIGURATION_ERROR, provider=provider)


class BatchExecutionError(SyncEngineError):
    """Failure of a single batch; sibling batches are unaffected."""

    def __init__(
        self,
        provider: str,
        batch_index: int,
        message: str,
        *,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.BATCH_FAILED,
            provider=provider,
            meta={"batch_index": batch_index},
        )
        self.batch_index = batch_index
        self.cause = cause


class StateStoreError(SyncEngineError):
    """Raised when the shared state backend fails or holds a corrupt document."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        meta = {"key": key} if key is not None else None
        super().__init__(message, code=ErrorCode.STATE_STORE_ERROR, meta=meta)
        self.key = key


class RunNotFoundError(SyncEngineError):
    """Raised when a run id is unknown to the orchestrator."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} not found", code=ErrorCode.NOT_FOUND, meta={"run_id": run_id})
        self.run_id = run_id


__all__ = [
    "BatchExecutionError",
    "CircuitOpenError",
    "ErrorCode",
    "FatalConfigurationError",
    "RateLimitExceededError",
    "RunNotFoundError",
    "StateStoreError",
    "SyncEngineError",
    "TransientProviderError",
]
