"""Assembly of a fully wired :class:`Orchestrator`."""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import datetime

from platform_sync.config import SyncSettings, load_config
from platform_sync.errors import FatalConfigurationError
from platform_sync.logging import configure_logging, get_logger
from platform_sync.resilience.batching import BatchPlanner
from platform_sync.resilience.checkpoints import CheckpointStore
from platform_sync.resilience.rate_limiter import RateLimiter
from platform_sync.state.store import StateStore
from platform_sync.state.store_factory import get_state_store
from platform_sync.utils.time import SleepFunc
from platform_sync.workers.contracts import PlatformWorker

from .collaborators import CredentialProvider, IdentityResolver, RunHistorySink
from .orchestrator import Orchestrator

__all__ = ["OrchestratorBuilder"]

logger = get_logger(__name__)


class OrchestratorBuilder:
    """Collects workers and collaborators, then wires the resilience stack."""

    def __init__(self) -> None:
        self._workers: list[PlatformWorker] = []
        self._settings: SyncSettings | None = None
        self._store: StateStore | None = None
        self._history_sink: RunHistorySink | None = None
        self._identity_resolver: IdentityResolver | None = None
        self._credential_provider: CredentialProvider | None = None
        self._configure_logging = False
        self._log_level: str | None = None
        self._log_file: str | None = None
        self._now_fn: Callable[[], datetime] | None = None
        self._sleep: SleepFunc | None = None
        self._rng: random.Random | None = None

    def with_worker(self, worker: PlatformWorker) -> OrchestratorBuilder:
        self._workers.append(worker)
        return self

    def with_settings(self, settings: SyncSettings) -> OrchestratorBuilder:
        self._settings = settings
        return self

    def with_state_store(self, store: StateStore) -> OrchestratorBuilder:
        self._store = store
        return self

    def with_history_sink(self, sink: RunHistorySink) -> OrchestratorBuilder:
        self._history_sink = sink
        return self

    def with_identity_resolver(self, resolver: IdentityResolver) -> OrchestratorBuilder:
        self._identity_resolver = resolver
        return self

    def with_credential_provider(self, provider: CredentialProvider) -> OrchestratorBuilder:
        self._credential_provider = provider
        return self

    def with_logging(
        self,
        level: str | None = None,
        *,
        log_file: str | None = None,
    ) -> OrchestratorBuilder:
        """Configure root logging on build; ``level`` defaults to ``settings.log_level``."""

        self._configure_logging = True
        self._log_level = level
        self._log_file = log_file
        return self

    def with_clock(
        self,
        now_fn: Callable[[], datetime],
        *,
        sleep: SleepFunc | None = None,
    ) -> OrchestratorBuilder:
        self._now_fn = now_fn
        self._sleep = sleep
        return self

    def with_rng(self, rng: random.Random) -> OrchestratorBuilder:
        self._rng = rng
        return self

    def build(self) -> Orchestrator:
        if not self._workers:
            raise FatalConfigurationError("At least one platform worker must be registered")
        settings = self._settings or load_config()
        if self._configure_logging:
            configure_logging(self._log_level or settings.log_level, self._log_file)
        store = self._store or get_state_store(settings.state_store, now_fn=self._now_fn)
        rate_limiter = RateLimiter(
            store,
            policy=settings.rate_limiter,
            circuit_config=settings.circuit_breaker,
            now_fn=self._now_fn,
            sleep=self._sleep,
            rng=self._rng,
        )
        planner = BatchPlanner(rate_limiter, sleep=self._sleep)
        checkpoints = CheckpointStore(
            store,
            ttl_s=settings.checkpoints.ttl_s,
            now_fn=self._now_fn,
        )
        orchestrator = Orchestrator(
            rate_limiter=rate_limiter,
            planner=planner,
            checkpoints=checkpoints,
            config=settings.orchestrator,
            history_sink=self._history_sink,
            identity_resolver=self._identity_resolver,
            credential_provider=self._credential_provider,
            now_fn=self._now_fn,
        )
        for worker in self._workers:
            orchestrator.register_worker(worker)
        # Operator overrides from the environment win over worker defaults.
        for override in (settings.rate_limit_overrides or {}).values():
            rate_limiter.configure(override)
        logger.info(
            "Orchestrator built",
            extra={
                "event": "orchestrator.built",
                "platforms": ",".join(platform.value for platform in orchestrator.platforms()),
            },
        )
        return orchestrator
