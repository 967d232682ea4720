from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from platform_sync.config import CircuitBreakerConfig
from platform_sync.resilience.circuit_breaker import CircuitBreaker
from platform_sync.resilience.classification import ErrorKind
from platform_sync.resilience.models import CircuitBreakerState, CircuitState
from tests.helpers import make_limiter, rate_config

CONFIG = CircuitBreakerConfig(failure_threshold=5, success_threshold=3, cooldown_s=30)
T0 = datetime(2024, 1, 1, tzinfo=UTC)


def _opened_state() -> CircuitBreakerState:
    state = CircuitBreakerState(provider="p")
    for _ in range(CONFIG.failure_threshold):
        state.on_failure(CONFIG, now=T0)
    return state


def test_closed_to_open_after_threshold_failures() -> None:
    state = CircuitBreakerState(provider="p")

    for _ in range(4):
        state.on_failure(CONFIG, now=T0)
        assert state.state is CircuitState.CLOSED

    state.on_failure(CONFIG, now=T0)

    assert state.state is CircuitState.OPEN
    assert state.opened_at == T0
    assert state.failure_count >= CONFIG.failure_threshold


def test_success_resets_failure_streak_while_closed() -> None:
    state = CircuitBreakerState(provider="p")
    for _ in range(4):
        state.on_failure(CONFIG, now=T0)

    state.on_success(CONFIG)
    for _ in range(4):
        state.on_failure(CONFIG, now=T0)

    assert state.state is CircuitState.CLOSED
    assert state.failure_count == 4


def test_open_rejects_until_cooldown_then_half_opens() -> None:
    state = _opened_state()

    assert not state.allow_request(CONFIG, now=T0 + timedelta(seconds=29))
    assert state.state is CircuitState.OPEN

    assert state.allow_request(CONFIG, now=T0 + timedelta(seconds=30))
    assert state.state is CircuitState.HALF_OPEN


def test_half_open_closes_after_success_threshold() -> None:
    state = _opened_state()
    state.allow_request(CONFIG, now=T0 + timedelta(seconds=31))

    state.on_success(CONFIG)
    state.on_success(CONFIG)
    assert state.state is CircuitState.HALF_OPEN

    state.on_success(CONFIG)
    assert state.state is CircuitState.CLOSED
    assert state.failure_count == 0
    assert state.opened_at is None


def test_half_open_reopens_on_single_failure() -> None:
    state = _opened_state()
    probe_time = T0 + timedelta(seconds=31)
    state.allow_request(CONFIG, now=probe_time)
    state.on_success(CONFIG)

    state.on_failure(CONFIG, now=probe_time)

    assert state.state is CircuitState.OPEN
    assert state.opened_at == probe_time
    assert state.success_count == 0
    assert state.failure_count >= CONFIG.failure_threshold
    assert not state.allow_request(CONFIG, now=probe_time + timedelta(seconds=1))


@pytest.mark.asyncio
async def test_breaker_persists_state_in_store(store, clock) -> None:
    breaker = CircuitBreaker("p", store, config=CONFIG, now_fn=clock.now)
    for _ in range(5):
        await breaker.record_failure()

    other = CircuitBreaker("p", store, config=CONFIG, now_fn=clock.now)

    assert not await other.should_allow_request()
    assert (await other.snapshot()).state is CircuitState.OPEN
    assert await store.ttl("circuit_breaker:p") == pytest.approx(CONFIG.state_ttl_s)


@pytest.mark.asyncio
async def test_breaker_full_cycle_through_cooldown(store, clock) -> None:
    breaker = CircuitBreaker("p", store, config=CONFIG, now_fn=clock.now)
    for _ in range(5):
        await breaker.record_failure()
    assert not await breaker.should_allow_request()

    clock.advance(30)
    assert await breaker.should_allow_request()
    assert (await breaker.state()).state is CircuitState.HALF_OPEN

    await breaker.record_failure()
    assert not await breaker.should_allow_request()

    clock.advance(30)
    assert await breaker.should_allow_request()
    for _ in range(3):
        await breaker.record_success()
    assert (await breaker.state()).state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_breaker_logs_transitions(store, clock, caplog) -> None:
    breaker = CircuitBreaker("p", store, config=CONFIG, now_fn=clock.now)

    with caplog.at_level(logging.INFO, logger="platform_sync.resilience.circuit_breaker"):
        for _ in range(5):
            await breaker.record_failure()

    transitions = [r for r in caplog.records if getattr(r, "event", "") == "circuit.transition"]
    assert len(transitions) == 1
    assert transitions[0].from_state == "closed"
    assert transitions[0].to_state == "open"
    assert transitions[0].failure_count == 5


@pytest.mark.asyncio
async def test_five_failures_block_provider_with_remaining_budget(store, clock) -> None:
    limiter = make_limiter(store, clock, rate_config("p", requests=100))

    for _ in range(5):
        await limiter.record_failure("p", ErrorKind.SERVER_ERROR)

    assert not await limiter.breaker("p").should_allow_request()
    assert not await limiter.can_proceed("p")
    assert (await limiter.get_state("p")).requests_remaining > 0

    clock.advance(CONFIG.cooldown_s)
    assert await limiter.can_proceed("p")
