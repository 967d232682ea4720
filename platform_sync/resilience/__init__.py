"""Rate limiting, circuit breaking, batching and checkpointing per provider."""

from __future__ import annotations

from .batching import (
    BatchExecutionSummary,
    BatchExecutor,
    BatchPlanner,
    BatchResult,
    BatchStatus,
)
from .checkpoints import BatchCheckpoint, CheckpointStore
from .circuit_breaker import CircuitBreaker
from .classification import ErrorKind, classify_error, error_code
from .hints import RateLimitHints, hints_from_response
from .models import (
    CircuitBreakerState,
    CircuitSnapshot,
    CircuitState,
    RateLimitSnapshot,
    RateLimitState,
)
from .rate_limiter import RateLimiter

__all__ = [
    "BatchCheckpoint",
    "BatchExecutionSummary",
    "BatchExecutor",
    "BatchPlanner",
    "BatchResult",
    "BatchStatus",
    "CheckpointStore",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitSnapshot",
    "CircuitState",
    "ErrorKind",
    "RateLimitHints",
    "RateLimitSnapshot",
    "RateLimitState",
    "RateLimiter",
    "classify_error",
    "error_code",
    "hints_from_response",
]
