"""Configuration loading for the sync engine."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

DEFAULT_MIN_SPACING_MS = 100
DEFAULT_RATE_LIMIT_COOLDOWN_S = 60
DEFAULT_BACKOFF_CEILING_S = 300
DEFAULT_JITTER_MAX_MS = 1000
DEFAULT_BACKOFF_MAX_EXPONENT = 10

DEFAULT_CIRCUIT_FAILURE_THRESHOLD = 5
DEFAULT_CIRCUIT_SUCCESS_THRESHOLD = 3
DEFAULT_CIRCUIT_COOLDOWN_S = 30
DEFAULT_CIRCUIT_STATE_TTL_S = 3600

DEFAULT_CHECKPOINT_TTL_S = 86_400

DEFAULT_PROGRESS_BUFFER = 100
DEFAULT_SEARCH_TIMEOUT_MS = 10_000
DEFAULT_RECENT_RUNS_LIMIT = 200

_STATE_STORE_BACKENDS = ("memory", "redis")

_RUNTIME_ENV_OVERRIDE: dict[str, str] | None = None


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _coerce_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bounded_int(
    value: Any,
    *,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    resolved = _coerce_int(value, default=default)
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _bounded_float(
    value: Any,
    *,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    try:
        resolved = float(value)
    except (TypeError, ValueError):
        resolved = default
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _parse_list(value: str | None) -> list[str]:
    if value is None:
        return []
    candidates = value.replace("\n", ",").split(",")
    return [item.strip() for item in candidates if item.strip()]


def _env_value(env: Mapping[str, Any], key: str) -> str | None:
    value = env.get(key)
    if value is None:
        return None
    return str(value)


@dataclass(slots=True, frozen=True)
class RateLimitConfig:
    """Static request budget of a single provider."""

    provider: str
    requests_per_window: int
    window_duration_s: int
    burst_allowance: int
    backoff_multiplier: float
    max_backoff_s: int
    daily_quota: int | None = None

    def __post_init__(self) -> None:
        if self.requests_per_window < 1:
            raise ValueError("requests_per_window must be at least 1")
        if self.window_duration_s < 1:
            raise ValueError("window_duration_s must be at least 1 second")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    @classmethod
    def for_provider(cls, provider: str) -> RateLimitConfig:
        """Return the built-in profile for ``provider`` (or the generic default)."""

        key = provider.strip().lower()
        profile = _RATE_LIMIT_PROFILES.get(key)
        if profile is None:
            return replace(_DEFAULT_RATE_LIMIT_PROFILE, provider=key)
        return profile

    @classmethod
    def from_env(cls, provider: str, env: Mapping[str, Any]) -> RateLimitConfig:
        """Apply ``RATE_LIMIT_<PROVIDER>_*`` overrides to the built-in profile."""

        base = cls.for_provider(provider)
        prefix = f"RATE_LIMIT_{base.provider.upper()}_"
        quota_raw = _env_value(env, prefix + "DAILY_QUOTA")
        daily_quota = base.daily_quota
        if quota_raw is not None:
            daily_quota = _bounded_int(quota_raw, default=base.daily_quota or 0, minimum=0) or None
        return cls(
            provider=base.provider,
            requests_per_window=_bounded_int(
                env.get(prefix + "REQUESTS"), default=base.requests_per_window, minimum=1
            ),
            window_duration_s=_bounded_int(
                env.get(prefix + "WINDOW_S"), default=base.window_duration_s, minimum=1
            ),
            burst_allowance=_bounded_int(
                env.get(prefix + "BURST"), default=base.burst_allowance, minimum=0
            ),
            backoff_multiplier=_bounded_float(
                env.get(prefix + "BACKOFF_MULTIPLIER"),
                default=base.backoff_multiplier,
                minimum=1.0,
            ),
            max_backoff_s=_bounded_int(
                env.get(prefix + "MAX_BACKOFF_S"), default=base.max_backoff_s, minimum=1
            ),
            daily_quota=daily_quota,
        )


_DEFAULT_RATE_LIMIT_PROFILE = RateLimitConfig(
    provider="default",
    requests_per_window=100,
    window_duration_s=3600,
    burst_allowance=10,
    backoff_multiplier=2.0,
    max_backoff_s=300,
)

_RATE_LIMIT_PROFILES: dict[str, RateLimitConfig] = {
    "spotify": RateLimitConfig(
        provider="spotify",
        requests_per_window=100,
        window_duration_s=60,
        burst_allowance=20,
        backoff_multiplier=1.5,
        max_backoff_s=120,
    ),
    "apple_music": RateLimitConfig(
        provider="apple_music",
        requests_per_window=1000,
        window_duration_s=3600,
        burst_allowance=50,
        backoff_multiplier=2.0,
        max_backoff_s=300,
    ),
    "tidal": RateLimitConfig(
        provider="tidal",
        requests_per_window=500,
        window_duration_s=300,
        burst_allowance=20,
        backoff_multiplier=2.0,
        max_backoff_s=300,
    ),
    "youtube_music": RateLimitConfig(
        provider="youtube_music",
        requests_per_window=100,
        window_duration_s=60,
        burst_allowance=10,
        backoff_multiplier=2.0,
        max_backoff_s=300,
        daily_quota=10_000,
    ),
    "deezer": RateLimitConfig(
        provider="deezer",
        requests_per_window=50,
        window_duration_s=5,
        burst_allowance=10,
        backoff_multiplier=2.0,
        max_backoff_s=300,
    ),
}


@dataclass(slots=True, frozen=True)
class RateLimiterPolicy:
    """Process-wide knobs of the rate limiter."""

    min_spacing_ms: int = DEFAULT_MIN_SPACING_MS
    rate_limit_cooldown_s: int = DEFAULT_RATE_LIMIT_COOLDOWN_S
    backoff_ceiling_s: int = DEFAULT_BACKOFF_CEILING_S
    jitter_max_ms: int = DEFAULT_JITTER_MAX_MS

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> RateLimiterPolicy:
        return cls(
            min_spacing_ms=_bounded_int(
                env.get("RATE_LIMIT_MIN_SPACING_MS"), default=DEFAULT_MIN_SPACING_MS, minimum=0
            ),
            rate_limit_cooldown_s=_bounded_int(
                env.get("RATE_LIMIT_COOLDOWN_S"), default=DEFAULT_RATE_LIMIT_COOLDOWN_S, minimum=1
            ),
            backoff_ceiling_s=_bounded_int(
                env.get("RATE_LIMIT_BACKOFF_CEILING_S"), default=DEFAULT_BACKOFF_CEILING_S, minimum=1
            ),
            jitter_max_ms=_bounded_int(
                env.get("RATE_LIMIT_JITTER_MAX_MS"), default=DEFAULT_JITTER_MAX_MS, minimum=1
            ),
        )


@dataclass(slots=True, frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = DEFAULT_CIRCUIT_FAILURE_THRESHOLD
    success_threshold: int = DEFAULT_CIRCUIT_SUCCESS_THRESHOLD
    cooldown_s: int = DEFAULT_CIRCUIT_COOLDOWN_S
    state_ttl_s: int = DEFAULT_CIRCUIT_STATE_TTL_S

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> CircuitBreakerConfig:
        cooldown_s = _bounded_int(
            env.get("CIRCUIT_COOLDOWN_S"), default=DEFAULT_CIRCUIT_COOLDOWN_S, minimum=1
        )
        return cls(
            failure_threshold=_bounded_int(
                env.get("CIRCUIT_FAILURE_THRESHOLD"),
                default=DEFAULT_CIRCUIT_FAILURE_THRESHOLD,
                minimum=1,
            ),
            success_threshold=_bounded_int(
                env.get("CIRCUIT_SUCCESS_THRESHOLD"),
                default=DEFAULT_CIRCUIT_SUCCESS_THRESHOLD,
                minimum=1,
            ),
            cooldown_s=cooldown_s,
            # Open records must outlive the cooldown or the breaker silently closes.
            state_ttl_s=_bounded_int(
                env.get("CIRCUIT_STATE_TTL_S"),
                default=DEFAULT_CIRCUIT_STATE_TTL_S,
                minimum=cooldown_s + 1,
            ),
        )


@dataclass(slots=True, frozen=True)
class BatchConfig:
    """Batch sizing for one provider operation."""

    optimal_batch_size: int = 20
    max_batch_size: int = 50
    min_delay_ms: int = 100

    def __post_init__(self) -> None:
        if self.optimal_batch_size < 1:
            raise ValueError("optimal_batch_size must be at least 1")
        if self.max_batch_size < self.optimal_batch_size:
            raise ValueError("max_batch_size must not be smaller than optimal_batch_size")
        if self.min_delay_ms < 0:
            raise ValueError("min_delay_ms must not be negative")

    @classmethod
    def for_operation(cls, provider: str, operation: str) -> BatchConfig:
        key = f"{provider.strip().lower()}_{operation.strip().lower()}"
        return _BATCH_PRESETS.get(key, _DEFAULT_BATCH_CONFIG)


_DEFAULT_BATCH_CONFIG = BatchConfig()

_BATCH_PRESETS: dict[str, BatchConfig] = {
    "spotify_remove_tracks": BatchConfig(optimal_batch_size=25, max_batch_size=50, min_delay_ms=200),
    "spotify_unfollow_artists": BatchConfig(
        optimal_batch_size=20, max_batch_size=50, min_delay_ms=150
    ),
    "spotify_playlist_operations": BatchConfig(
        optimal_batch_size=50, max_batch_size=100, min_delay_ms=300
    ),
}


@dataclass(slots=True, frozen=True)
class StateStoreConfig:
    backend: str = "memory"
    redis_url: str | None = None
    key_prefix: str = ""

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> StateStoreConfig:
        backend = (_env_value(env, "STATE_STORE_BACKEND") or "memory").strip().lower()
        if backend not in _STATE_STORE_BACKENDS:
            backend = "memory"
        redis_url = (_env_value(env, "REDIS_URL") or "").strip() or None
        return cls(
            backend=backend,
            redis_url=redis_url,
            key_prefix=(_env_value(env, "STATE_STORE_KEY_PREFIX") or "").strip(),
        )


@dataclass(slots=True, frozen=True)
class CheckpointConfig:
    ttl_s: int = DEFAULT_CHECKPOINT_TTL_S

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> CheckpointConfig:
        return cls(
            ttl_s=_bounded_int(env.get("CHECKPOINT_TTL_S"), default=DEFAULT_CHECKPOINT_TTL_S, minimum=1)
        )


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    progress_buffer: int = DEFAULT_PROGRESS_BUFFER
    search_timeout_ms: int = DEFAULT_SEARCH_TIMEOUT_MS
    recent_runs_limit: int = DEFAULT_RECENT_RUNS_LIMIT
    enabled_platforms: tuple[str, ...] = ()

    @classmethod
    def from_env(cls, env: Mapping[str, Any]) -> OrchestratorConfig:
        enabled = tuple(
            item.lower() for item in _parse_list(_env_value(env, "ORCHESTRATOR_ENABLED_PLATFORMS"))
        )
        return cls(
            progress_buffer=_bounded_int(
                env.get("ORCHESTRATOR_PROGRESS_BUFFER"),
                default=DEFAULT_PROGRESS_BUFFER,
                minimum=1,
                maximum=10_000,
            ),
            search_timeout_ms=_bounded_int(
                env.get("ORCHESTRATOR_SEARCH_TIMEOUT_MS"),
                default=DEFAULT_SEARCH_TIMEOUT_MS,
                minimum=100,
            ),
            recent_runs_limit=_bounded_int(
                env.get("ORCHESTRATOR_RECENT_RUNS_LIMIT"),
                default=DEFAULT_RECENT_RUNS_LIMIT,
                minimum=0,
            ),
            enabled_platforms=enabled,
        )

    def is_enabled(self, platform: str) -> bool:
        if not self.enabled_platforms:
            return True
        return platform.lower() in self.enabled_platforms


@dataclass(slots=True, frozen=True)
class SyncSettings:
    """Aggregated engine configuration."""

    rate_limiter: RateLimiterPolicy
    circuit_breaker: CircuitBreakerConfig
    state_store: StateStoreConfig
    checkpoints: CheckpointConfig
    orchestrator: OrchestratorConfig
    log_level: str = "INFO"
    debug: bool = False
    rate_limit_overrides: Mapping[str, RateLimitConfig] | None = None

    def rate_limit_for(self, provider: str) -> RateLimitConfig:
        key = provider.strip().lower()
        if self.rate_limit_overrides and key in self.rate_limit_overrides:
            return self.rate_limit_overrides[key]
        return RateLimitConfig.for_provider(key)

    @classmethod
    def defaults(cls) -> SyncSettings:
        return cls(
            rate_limiter=RateLimiterPolicy(),
            circuit_breaker=CircuitBreakerConfig(),
            state_store=StateStoreConfig(),
            checkpoints=CheckpointConfig(),
            orchestrator=OrchestratorConfig(),
        )


def get_runtime_env() -> Mapping[str, str]:
    """Return the active environment mapping (override first, then ``os.environ``)."""

    if _RUNTIME_ENV_OVERRIDE is not None:
        return _RUNTIME_ENV_OVERRIDE
    return os.environ


def override_runtime_env(runtime_env: Mapping[str, str] | None) -> None:
    """Override the runtime environment (primarily for testing)."""

    global _RUNTIME_ENV_OVERRIDE
    if runtime_env is None:
        _RUNTIME_ENV_OVERRIDE = None
    else:
        _RUNTIME_ENV_OVERRIDE = dict(runtime_env)


def load_config(env: Mapping[str, Any] | None = None) -> SyncSettings:
    """Build :class:`SyncSettings` from ``env`` or the runtime environment."""

    source = env if env is not None else get_runtime_env()
    overrides: dict[str, RateLimitConfig] = {}
    for key in source:
        if not key.startswith("RATE_LIMIT_"):
            continue
        for provider in _RATE_LIMIT_PROFILES:
            if key.startswith(f"RATE_LIMIT_{provider.upper()}_") and provider not in overrides:
                overrides[provider] = RateLimitConfig.from_env(provider, source)
    return SyncSettings(
        rate_limiter=RateLimiterPolicy.from_env(source),
        circuit_breaker=CircuitBreakerConfig.from_env(source),
        state_store=StateStoreConfig.from_env(source),
        checkpoints=CheckpointConfig.from_env(source),
        orchestrator=OrchestratorConfig.from_env(source),
        log_level=(_env_value(source, "LOG_LEVEL") or "INFO").strip().upper(),
        debug=_as_bool(_env_value(source, "SYNC_DEBUG")),
        rate_limit_overrides=overrides or None,
    )


__all__ = [
    "BatchConfig",
    "CheckpointConfig",
    "CircuitBreakerConfig",
    "OrchestratorConfig",
    "RateLimitConfig",
    "RateLimiterPolicy",
    "StateStoreConfig",
    "SyncSettings",
    "get_runtime_env",
    "load_config",
    "override_runtime_env",
]
