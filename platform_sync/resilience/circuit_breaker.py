"""Per-provider circuit breaker persisted in the shared state store."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError

from platform_sync.config import CircuitBreakerConfig
from platform_sync.logging import get_logger
from platform_sync.logging_events import log_event
from platform_sync.state.store import StateStore, make_key
from platform_sync.utils.time import now_utc

from .models import CircuitBreakerState, CircuitSnapshot, CircuitState

__all__ = ["CIRCUIT_KEY_NAMESPACE", "CircuitBreaker"]

CIRCUIT_KEY_NAMESPACE = "circuit_breaker"

logger = get_logger(__name__)


class CircuitBreaker:
    """Failure based admission control for a single provider.

    State lives in the shared store so every replica observes the same
    breaker. Updates within this process are serialised by a lock; across
    replicas the store offers plain read-modify-write only.
    """

    def __init__(
        self,
        provider: str,
        store: StateStore,
        *,
        config: CircuitBreakerConfig | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._config = config or CircuitBreakerConfig()
        self._now = now_fn or now_utc
        self._key = make_key(CIRCUIT_KEY_NAMESPACE, provider)
        self._lock = asyncio.Lock()

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    async def _load(self) -> CircuitBreakerState:
        raw = await self._store.get(self._key)
        if raw is None:
            return CircuitBreakerState(provider=self._provider)
        try:
            return CircuitBreakerState.model_validate_json(raw)
        except ValidationError:
            logger.warning(
                "Discarding corrupt circuit breaker state",
                extra={"event": "circuit.state_corrupt", "provider": self._provider},
            )
            return CircuitBreakerState(provider=self._provider)

    async def _save(self, state: CircuitBreakerState) -> None:
        await self._store.set(self._key, state.model_dump_json(), ttl_s=self._config.state_ttl_s)

    def _log_transition(self, before: CircuitState, state: CircuitBreakerState) -> None:
        if before is state.state:
            return
        log_event(
            logger,
            "circuit.transition",
            provider=self._provider,
            from_state=before.value,
            to_state=state.state.value,
            failure_count=state.failure_count,
        )

    async def state(self) -> CircuitBreakerState:
        return await self._load()

    async def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot.from_state(await self._load())

    async def should_allow_request(self) -> bool:
        """Return whether a call may be attempted, moving Open to HalfOpen after the cooldown."""

        async with self._lock:
            state = await self._load()
            before = state.state
            allowed = state.allow_request(self._config, now=self._now())
            if state.state is not before:
                await self._save(state)
                self._log_transition(before, state)
            return allowed

    async def record_success(self) -> CircuitBreakerState:
        async with self._lock:
            state = await self._load()
            before = state.state
            state.on_success(self._config)
            await self._save(state)
            self._log_transition(before, state)
            return state

    async def record_failure(self) -> CircuitBreakerState:
        async with self._lock:
            state = await self._load()
            before = state.state
            state.on_failure(self._config, now=self._now())
            await self._save(state)
            self._log_transition(before, state)
            return state

    async def reset(self) -> None:
        async with self._lock:
            await self._store.delete(self._key)
