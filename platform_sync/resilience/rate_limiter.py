"""Per-provider request budgets shared through the state store."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from pydantic import ValidationError

from platform_sync.config import (
    DEFAULT_BACKOFF_MAX_EXPONENT,
    CircuitBreakerConfig,
    RateLimitConfig,
    RateLimiterPolicy,
)
from platform_sync.errors import CircuitOpenError, RateLimitExceededError
from platform_sync.logging import get_logger
from platform_sync.logging_events import log_event
from platform_sync.state.store import StateStore, make_key
from platform_sync.utils.time import SleepFunc, async_sleep, now_utc

from .circuit_breaker import CircuitBreaker
from .classification import ErrorKind, classify_error
from .hints import RateLimitHints
from .models import CircuitState, RateLimitSnapshot, RateLimitState

__all__ = ["RATE_LIMIT_KEY_NAMESPACE", "RateLimiter"]

RATE_LIMIT_KEY_NAMESPACE = "rate_limit"

logger = get_logger(__name__)


class RateLimiter:
    """Tracks request budgets and backoff per provider.

    Every provider also owns a :class:`CircuitBreaker`; successes and failures
    recorded here are forwarded to it.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        policy: RateLimiterPolicy | None = None,
        circuit_config: CircuitBreakerConfig | None = None,
        configs: Mapping[str, RateLimitConfig] | None = None,
        now_fn: Callable[[], datetime] | None = None,
        sleep: SleepFunc | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or RateLimiterPolicy()
        self._circuit_config = circuit_config or CircuitBreakerConfig()
        self._configs: dict[str, RateLimitConfig] = {}
        for config in (configs or {}).values():
            self.configure(config)
        self._now = now_fn or now_utc
        self._sleep = sleep or async_sleep
        self._rng = rng or random.Random()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def policy(self) -> RateLimiterPolicy:
        return self._policy

    def now(self) -> datetime:
        """Return the current time on the limiter's clock."""

        return self._now()

    def configure(self, config: RateLimitConfig) -> None:
        """Install ``config`` for its provider, replacing any previous profile."""

        self._configs[config.provider.lower()] = config

    def config_for(self, provider: str) -> RateLimitConfig:
        key = provider.lower()
        config = self._configs.get(key)
        if config is None:
            config = RateLimitConfig.for_provider(key)
        return config

    def breaker(self, provider: str) -> CircuitBreaker:
        key = provider.lower()
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                key,
                self._store,
                config=self._circuit_config,
                now_fn=self._now,
            )
            self._breakers[key] = breaker
        return breaker

    def _lock_for(self, provider: str) -> asyncio.Lock:
        key = provider.lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _key(self, provider: str) -> str:
        return make_key(RATE_LIMIT_KEY_NAMESPACE, provider.lower())

    async def _load(self, provider: str, config: RateLimitConfig, now: datetime) -> RateLimitState:
        raw = await self._store.get(self._key(provider))
        state: RateLimitState | None = None
        if raw is not None:
            try:
                state = RateLimitState.model_validate_json(raw)
            except ValidationError:
                logger.warning(
                    "Discarding corrupt rate limit state",
                    extra={"event": "ratelimit.state_corrupt", "provider": provider},
                )
        if state is None:
            state = RateLimitState.fresh(config, now=now)
            await self._save(state, config, now)
            return state
        if state.refresh_window(config, now=now):
            await self._save(state, config, now)
        return state

    async def _save(self, state: RateLimitState, config: RateLimitConfig, now: datetime) -> None:
        # The record must survive until a pushed-out reset time, not just one window.
        until_reset = (state.window_reset_at - now).total_seconds()
        ttl_s = max(float(config.window_duration_s), until_reset)
        await self._store.set(self._key(state.provider), state.model_dump_json(), ttl_s=ttl_s)

    async def get_state(self, provider: str) -> RateLimitState:
        config = self.config_for(provider)
        async with self._lock_for(provider):
            return await self._load(config.provider, config, self._now())

    async def can_proceed(self, provider: str) -> bool:
        """Return ``True`` when the circuit admits calls and budget remains."""

        if not await self.breaker(provider).should_allow_request():
            return False
        state = await self.get_state(provider)
        return state.requests_remaining > 0

    async def wait_for_rate_limit(self, provider: str) -> float:
        """Suspend until a request may be sent; return the wait in seconds."""

        state = await self.get_state(provider)
        now = self._now()
        wait_s = 0.0
        reason = "spacing"
        if state.requests_remaining == 0:
            wait_s = max(0.0, (state.window_reset_at - now).total_seconds())
            reason = "budget_exhausted"
        elif state.last_request_at is not None:
            spacing = timedelta(milliseconds=self._policy.min_spacing_ms)
            elapsed = now - state.last_request_at
            if elapsed < spacing:
                wait_s = (spacing - elapsed).total_seconds()
        if wait_s > 0:
            log_event(
                logger,
                "ratelimit.wait",
                provider=state.provider,
                wait_ms=int(wait_s * 1000),
                reason=reason,
            )
            await self._sleep(wait_s)
        return wait_s

    async def acquire(self, provider: str) -> None:
        """Admit a single call or fail fast instead of waiting.

        Raises :class:`CircuitOpenError` when the breaker rejects calls and
        :class:`RateLimitExceededError` when the window budget is exhausted.
        """

        if not await self.breaker(provider).should_allow_request():
            raise CircuitOpenError(provider.lower())
        state = await self.get_state(provider)
        if state.requests_remaining == 0:
            retry_after = max(0.0, (state.window_reset_at - self._now()).total_seconds())
            raise RateLimitExceededError(state.provider, retry_after_s=retry_after)

    async def record_success(
        self,
        provider: str,
        hints: RateLimitHints | None = None,
    ) -> RateLimitState:
        config = self.config_for(provider)
        async with self._lock_for(provider):
            now = self._now()
            state = await self._load(config.provider, config, now)
            if hints is not None and hints.remaining is not None:
                state.requests_remaining = max(0, hints.remaining)
            elif state.requests_remaining > 0:
                state.requests_remaining -= 1
            if hints is not None and hints.reset_at is not None:
                state.window_reset_at = hints.reset_at
            state.last_request_at = now
            state.consecutive_failures = 0
            state.current_backoff_s = 0.0
            await self._save(state, config, now)
        await self.breaker(provider).record_success()
        return state

    async def record_failure(
        self,
        provider: str,
        error: BaseException | ErrorKind | str,
        hints: RateLimitHints | None = None,
    ) -> RateLimitState:
        kind = classify_error(error)
        config = self.config_for(provider)
        async with self._lock_for(provider):
            now = self._now()
            state = await self._load(config.provider, config, now)
            state.consecutive_failures += 1
            state.current_backoff_s = min(
                config.backoff_multiplier ** state.consecutive_failures,
                float(config.max_backoff_s),
            )
            state.last_request_at = now
            if kind.is_rate_limit:
                state.requests_remaining = 0
                earliest = now + timedelta(seconds=self._policy.rate_limit_cooldown_s)
                if hints is not None and hints.retry_after_s is not None:
                    earliest = max(earliest, now + timedelta(seconds=hints.retry_after_s))
                if hints is not None and hints.reset_at is not None:
                    earliest = max(earliest, hints.reset_at)
                state.window_reset_at = max(state.window_reset_at, earliest)
            await self._save(state, config, now)
        log_event(
            logger,
            "ratelimit.failure",
            level=logging.WARNING,
            provider=config.provider,
            error_kind=kind.value,
            consecutive_failures=state.consecutive_failures,
            backoff_s=state.current_backoff_s,
        )
        await self.breaker(provider).record_failure()
        return state

    def backoff_delay(self, attempt: int, base_delay_s: float = 1.0) -> float:
        """Return a jittered exponential delay in seconds, capped by the policy ceiling."""

        ceiling = float(self._policy.backoff_ceiling_s)
        jitter_window = min(self._policy.jitter_max_ms / 1000.0, ceiling / 2)
        exponent = min(max(0, attempt), DEFAULT_BACKOFF_MAX_EXPONENT)
        base = min(max(0.0, base_delay_s) * (2**exponent), ceiling - jitter_window)
        jitter = self._rng.uniform(0.0, jitter_window)
        return base + jitter

    async def exponential_backoff(self, attempt: int, base_delay_s: float = 1.0) -> float:
        delay = self.backoff_delay(attempt, base_delay_s)
        await self._sleep(delay)
        return delay

    async def snapshot(self, provider: str) -> RateLimitSnapshot:
        state = await self.get_state(provider)
        circuit = await self.breaker(provider).snapshot()
        return RateLimitSnapshot(
            provider=state.provider,
            requests_remaining=state.requests_remaining,
            window_reset_at=state.window_reset_at,
            is_throttled=state.requests_remaining == 0 or circuit.state is CircuitState.OPEN,
            consecutive_failures=state.consecutive_failures,
            current_backoff_s=state.current_backoff_s,
        )

    async def reset(self, provider: str) -> None:
        async with self._lock_for(provider):
            await self._store.delete(self._key(provider))
        await self.breaker(provider).reset()
