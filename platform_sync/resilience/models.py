"""Persisted per-provider resilience state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

from platform_sync.config import CircuitBreakerConfig, RateLimitConfig

__all__ = [
    "CircuitBreakerState",
    "CircuitSnapshot",
    "CircuitState",
    "RateLimitSnapshot",
    "RateLimitState",
]


class RateLimitState(BaseModel):
    """Request budget of one provider for the current window."""

    provider: str
    requests_remaining: int = Field(ge=0)
    window_reset_at: datetime
    current_backoff_s: float = Field(default=0.0, ge=0.0)
    consecutive_failures: int = Field(default=0, ge=0)
    last_request_at: datetime | None = None

    @classmethod
    def fresh(cls, config: RateLimitConfig, *, now: datetime) -> RateLimitState:
        return cls(
            provider=config.provider,
            requests_remaining=config.requests_per_window,
            window_reset_at=now + timedelta(seconds=config.window_duration_s),
        )

    def refresh_window(self, config: RateLimitConfig, *, now: datetime) -> bool:
        """Restore the full budget once ``window_reset_at`` has passed."""

        if now < self.window_reset_at:
            return False
        self.requests_remaining = config.requests_per_window
        self.window_reset_at = now + timedelta(seconds=config.window_duration_s)
        return True


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerState(BaseModel):
    """Admission state machine of one provider.

    ``failure_count`` is only cleared by a success while closed or by the
    half-open to closed transition, so an open breaker always carries at
    least ``failure_threshold`` failures.
    """

    provider: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    opened_at: datetime | None = None
    last_failure_at: datetime | None = None

    def allow_request(self, config: CircuitBreakerConfig, *, now: datetime) -> bool:
        if self.state is not CircuitState.OPEN:
            return True
        if self.opened_at is not None and now - self.opened_at < timedelta(seconds=config.cooldown_s):
            return False
        self.state = CircuitState.HALF_OPEN
        self.success_count = 0
        return True

    def on_success(self, config: CircuitBreakerConfig) -> None:
        if self.state is CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= config.success_threshold:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
                self.opened_at = None
            return
        if self.state is CircuitState.CLOSED:
            self.failure_count = 0
            self.success_count += 1

    def on_failure(self, config: CircuitBreakerConfig, *, now: datetime) -> None:
        self.success_count = 0
        self.failure_count += 1
        self.last_failure_at = now
        if self.state is CircuitState.HALF_OPEN:
            self._open(now)
        elif self.state is CircuitState.CLOSED and self.failure_count >= config.failure_threshold:
            self._open(now)

    def _open(self, now: datetime) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = now


@dataclass(slots=True, frozen=True)
class CircuitSnapshot:
    provider: str
    state: CircuitState
    failure_count: int
    success_count: int
    opened_at: datetime | None

    @classmethod
    def from_state(cls, state: CircuitBreakerState) -> CircuitSnapshot:
        return cls(
            provider=state.provider,
            state=state.state,
            failure_count=state.failure_count,
            success_count=state.success_count,
            opened_at=state.opened_at,
        )


@dataclass(slots=True, frozen=True)
class RateLimitSnapshot:
    """Point-in-time view of a provider's budget for status reporting."""

    provider: str
    requests_remaining: int
    window_reset_at: datetime
    is_throttled: bool
    consecutive_failures: int
    current_backoff_s: float
