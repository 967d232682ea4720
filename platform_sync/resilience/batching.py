"""Batch sizing and rate/circuit gated sequential batch execution."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

import httpx

from platform_sync.config import BatchConfig
from platform_sync.errors import BatchExecutionError, CircuitOpenError
from platform_sync.logging import get_logger
from platform_sync.logging_events import log_event
from platform_sync.utils.time import SleepFunc, async_sleep, monotonic_ms
from platform_sync.workers.contracts import SyncStatus

from .classification import ErrorKind, classify_error, error_code
from .hints import RateLimitHints, hints_from_response
from .rate_limiter import RateLimiter

__all__ = [
    "BatchExecutionSummary",
    "BatchExecutor",
    "BatchPlanner",
    "BatchResult",
    "BatchStatus",
]

T = TypeVar("T")
R = TypeVar("R")

BatchExecutor = Callable[[list[T]], Awaitable[R]]

logger = get_logger(__name__)


class BatchStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_CIRCUIT_OPEN = "skipped_circuit_open"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class BatchResult(Generic[T, R]):
    """Outcome of one batch."""

    index: int
    items: list[T]
    status: BatchStatus
    result: R | None = None
    error: str | None = None
    error_code: str | None = None
    duration_ms: int = 0
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status is BatchStatus.SUCCEEDED

    @property
    def is_failure(self) -> bool:
        return self.status in {BatchStatus.FAILED, BatchStatus.SKIPPED_CIRCUIT_OPEN}


@dataclass(slots=True)
class BatchExecutionSummary:
    status: SyncStatus
    total_batches: int
    succeeded_batches: int
    failed_batches: int
    cancelled_batches: int
    succeeded_items: int
    failed_items: int
    errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Sequence[BatchResult[Any, Any]]) -> BatchExecutionSummary:
        succeeded = [result for result in results if result.succeeded]
        failed = [result for result in results if result.is_failure]
        cancelled = [result for result in results if result.status is BatchStatus.CANCELLED]
        if failed and not succeeded:
            status = SyncStatus.FAILED
        elif failed:
            status = SyncStatus.PARTIALLY_COMPLETED
        else:
            status = SyncStatus.COMPLETED
        return cls(
            status=status,
            total_batches=len(results),
            succeeded_batches=len(succeeded),
            failed_batches=len(failed),
            cancelled_batches=len(cancelled),
            succeeded_items=sum(len(result.items) for result in succeeded),
            failed_items=sum(len(result.items) for result in failed),
            errors=[
                {"batch_index": result.index, "code": result.error_code, "message": result.error}
                for result in failed
            ],
        )


def _hints_from_value(value: Any, *, now: datetime) -> RateLimitHints | None:
    if isinstance(value, httpx.Response):
        return hints_from_response(value, now=now)
    return None


def _hints_from_error(exc: Exception, *, now: datetime) -> RateLimitHints | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return hints_from_response(exc.response, now=now)
    return None


class BatchPlanner:
    """Chunks work and runs batches one after another through the rate limiter.

    Batches are never reordered or run in parallel; a failing batch is
    recorded and execution moves on to the next one.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        configs: Mapping[str, BatchConfig] | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._configs = {key.lower(): value for key, value in (configs or {}).items()}
        self._sleep = sleep or async_sleep

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def config_for(self, provider: str, operation: str) -> BatchConfig:
        key = f"{provider}_{operation}".lower()
        return self._configs.get(key) or BatchConfig.for_operation(provider, operation)

    async def get_optimal_batch_size(self, provider: str, operation: str) -> int:
        optimal = self.config_for(provider, operation).optimal_batch_size
        state = await self._rate_limiter.get_state(provider)
        if state.requests_remaining < optimal:
            return max(1, state.requests_remaining)
        return optimal

    async def create_optimal_batches(
        self,
        provider: str,
        operation: str,
        items: Sequence[T],
    ) -> list[list[T]]:
        size = await self.get_optimal_batch_size(provider, operation)
        return self.chunk(items, size)

    @staticmethod
    def chunk(items: Sequence[T], size: int) -> list[list[T]]:
        if size < 1:
            raise ValueError("batch size must be at least 1")
        return [list(items[start : start + size]) for start in range(0, len(items), size)]

    async def execute_batches(
        self,
        provider: str,
        operation: str,
        batches: Sequence[list[T]],
        executor: BatchExecutor[T, R],
        *,
        should_continue: Callable[[], bool] | None = None,
        on_batch: Callable[[BatchResult[T, R]], Awaitable[None]] | None = None,
        retry_attempts: int = 0,
    ) -> list[BatchResult[T, R]]:
        """Run ``executor`` over ``batches`` in order and return one result per batch.

        ``should_continue`` is consulted before each batch; once it returns
        ``False`` the remaining batches are reported as cancelled. A batch that
        is already running always completes. Transient failures are retried up
        to ``retry_attempts`` times with jittered exponential backoff.
        """

        config = self.config_for(provider, operation)
        results: list[BatchResult[T, R]] = []
        cancelled = False
        for index, batch in enumerate(batches):
            if not cancelled and should_continue is not None and not should_continue():
                cancelled = True
            if cancelled:
                result: BatchResult[T, R] = BatchResult(
                    index=index, items=batch, status=BatchStatus.CANCELLED
                )
            elif not await self._circuit_admits(provider):
                error = CircuitOpenError(provider)
                result = BatchResult(
                    index=index,
                    items=batch,
                    status=BatchStatus.SKIPPED_CIRCUIT_OPEN,
                    error=error.message,
                    error_code=error_code(ErrorKind.CIRCUIT_OPEN),
                )
            else:
                delay_s = config.min_delay_ms / 1000.0 if index > 0 else 0.0
                result = await self._run_batch(
                    provider,
                    index,
                    batch,
                    executor,
                    delay_s=delay_s,
                    retry_attempts=retry_attempts,
                )
            self._log_batch(provider, operation, result)
            results.append(result)
            if on_batch is not None:
                await on_batch(result)
        return results

    async def _circuit_admits(self, provider: str) -> bool:
        # An exhausted budget is waited out in _run_batch; only the breaker skips a batch.
        if await self._rate_limiter.can_proceed(provider):
            return True
        return await self._rate_limiter.breaker(provider).should_allow_request()

    async def _run_batch(
        self,
        provider: str,
        index: int,
        batch: list[T],
        executor: BatchExecutor[T, R],
        *,
        delay_s: float,
        retry_attempts: int,
    ) -> BatchResult[T, R]:
        started = monotonic_ms()
        attempt = 0
        while True:
            attempt += 1
            if attempt > 1 and not await self._rate_limiter.breaker(provider).should_allow_request():
                error = CircuitOpenError(provider)
                return BatchResult(
                    index=index,
                    items=batch,
                    status=BatchStatus.FAILED,
                    error=error.message,
                    error_code=error_code(ErrorKind.CIRCUIT_OPEN),
                    duration_ms=monotonic_ms() - started,
                    attempts=attempt - 1,
                )
            await self._rate_limiter.wait_for_rate_limit(provider)
            if attempt == 1 and delay_s > 0:
                await self._sleep(delay_s)
            try:
                value = await executor(batch)
            except Exception as exc:
                kind = classify_error(exc)
                hints = _hints_from_error(exc, now=self._rate_limiter.now())
                await self._rate_limiter.record_failure(provider, exc, hints)
                if kind.is_transient and attempt <= retry_attempts:
                    await self._rate_limiter.exponential_backoff(attempt - 1)
                    continue
                failure = BatchExecutionError(provider, index, str(exc) or type(exc).__name__, cause=exc)
                return BatchResult(
                    index=index,
                    items=batch,
                    status=BatchStatus.FAILED,
                    error=failure.message,
                    error_code=error_code(kind),
                    duration_ms=monotonic_ms() - started,
                    attempts=attempt,
                )
            await self._rate_limiter.record_success(
                provider, _hints_from_value(value, now=self._rate_limiter.now())
            )
            return BatchResult(
                index=index,
                items=batch,
                status=BatchStatus.SUCCEEDED,
                result=value,
                duration_ms=monotonic_ms() - started,
                attempts=attempt,
            )

    def _log_batch(self, provider: str, operation: str, result: BatchResult[Any, Any]) -> None:
        fields: dict[str, Any] = {
            "provider": provider,
            "operation": operation,
            "batch_index": result.index,
            "status": result.status.value,
            "size": len(result.items),
            "duration_ms": result.duration_ms,
        }
        if result.error is not None:
            fields["error"] = result.error
        log_event(logger, "batch.execute", **fields)
