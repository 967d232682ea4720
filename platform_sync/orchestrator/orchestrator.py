"""Dispatch and tracking of concurrent sync and enforcement runs."""

from __future__ import annotations

import asyncio
import contextlib
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Coroutine, Mapping, Sequence
from dataclasses import replace
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID, uuid4

import httpx

from platform_sync.config import OrchestratorConfig
from platform_sync.errors import (
    FatalConfigurationError,
    RunNotFoundError,
    SyncEngineError,
)
from platform_sync.logging import get_logger
from platform_sync.resilience.batching import BatchExecutor, BatchPlanner
from platform_sync.resilience.checkpoints import BatchCheckpoint, CheckpointStore
from platform_sync.resilience.rate_limiter import RateLimiter
from platform_sync.utils.time import monotonic_ms, now_utc
from platform_sync.workers.contracts import (
    Platform,
    PlatformArtist,
    PlatformWorker,
    SyncCheckpoint,
    SyncProgress,
    SyncResult,
    SyncStatus,
    SyncType,
)
from platform_sync.workers.registry import WorkerRegistry

from . import events as orchestrator_events
from .broadcast import ProgressBroadcaster, ProgressSubscription
from .collaborators import CredentialProvider, IdentityResolver, RunHistorySink
from .jobs import BatchJob, BatchJobResult, BatchJobRunner
from .models import (
    OrchestratorStatus,
    PlatformStatus,
    SyncPriority,
    SyncRunState,
    SyncTriggerRequest,
)

__all__ = ["ARTIST_MATCH_CANDIDATES", "Orchestrator"]

T = TypeVar("T")

# Search results inspected when matching an artist by name.
ARTIST_MATCH_CANDIDATES = 5


class Orchestrator:
    """Registers platform workers and runs one concurrent job per platform.

    Cancellation is advisory: :meth:`cancel_run` flips the run's status and
    jobs observe it between batches. A provider call already in flight always
    runs to completion.
    """

    def __init__(
        self,
        *,
        rate_limiter: RateLimiter,
        planner: BatchPlanner | None = None,
        checkpoints: CheckpointStore | None = None,
        config: OrchestratorConfig | None = None,
        history_sink: RunHistorySink | None = None,
        identity_resolver: IdentityResolver | None = None,
        credential_provider: CredentialProvider | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._logger = get_logger(__name__)
        self._rate_limiter = rate_limiter
        self._planner = planner or BatchPlanner(rate_limiter)
        self._checkpoints = checkpoints
        self._config = config or OrchestratorConfig()
        self._history_sink = history_sink
        self._identity_resolver = identity_resolver
        self._credential_provider = credential_provider
        self._now = now_fn or now_utc
        self._registry = WorkerRegistry()
        self._broadcaster = ProgressBroadcaster(capacity=self._config.progress_buffer)
        self._active: dict[UUID, SyncRunState] = {}
        self._recent: OrderedDict[UUID, SyncRunState] = OrderedDict()
        self._tasks: dict[UUID, asyncio.Task[None]] = {}
        self._last_worker_run: dict[Platform, UUID] = {}

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def planner(self) -> BatchPlanner:
        return self._planner

    # Worker registry -----------------------------------------------------

    def register_worker(self, worker: PlatformWorker) -> None:
        """Insert or replace the worker for its platform and adopt its rate limits."""

        platform = Platform.parse(worker.platform())
        self._registry.register(worker)
        config = worker.rate_limit_config()
        if config.provider != platform.value:
            config = replace(config, provider=platform.value)
        self._rate_limiter.configure(config)

    def get_worker(self, platform: Platform | str) -> PlatformWorker | None:
        return self._registry.get(platform)

    def platforms(self) -> list[Platform]:
        return self._registry.platforms()

    def _resolve_worker(self, platform: Platform) -> PlatformWorker:
        if not self._config.is_enabled(platform.value):
            raise FatalConfigurationError(
                f"Platform {platform.value} is disabled by configuration",
                provider=platform.value,
            )
        return self._registry.require(platform)

    # Dispatch ------------------------------------------------------------

    async def trigger_sync(self, request: SyncTriggerRequest) -> list[UUID]:
        """Start one sync job per requested platform and return their run ids.

        Every platform is validated before anything is dispatched, so a missing
        worker fails the whole request without starting partial work.

        Requested ``artist_ids`` are recorded on each run state for reporting.
        Workers always sync their whole catalog scope.
        """

        workers: list[tuple[Platform, PlatformWorker]] = []
        for platform in request.platforms:
            worker = self._resolve_worker(platform)
            if all(existing is not platform for existing, _ in workers):
                workers.append((platform, worker))

        run_ids: list[UUID] = []
        for platform, worker in workers:
            state = self._register_run(
                platform,
                request.sync_type,
                request.priority,
                artist_ids=request.artist_ids,
            )
            self._spawn(state, self._run_sync(state, worker, request))
            run_ids.append(state.run_id)
        return run_ids

    async def trigger_enforcement(
        self,
        platform: Platform | str,
        operation: str,
        items: Sequence[Any],
        executor: BatchExecutor[Any, Any],
        *,
        batch_id: str | None = None,
        item_id: Callable[[Any], str] = str,
        priority: SyncPriority = SyncPriority.HIGH,
        retry_attempts: int = 0,
    ) -> UUID:
        """Run ``executor`` over ``items`` in checkpointed batches as a tracked run.

        Passing the ``batch_id`` of an interrupted job resumes it from its
        checkpoint.
        """

        if self._checkpoints is None:
            raise FatalConfigurationError("Enforcement jobs require a checkpoint store")
        resolved = Platform.parse(platform)
        self._resolve_worker(resolved)
        state = self._register_run(resolved, SyncType.TARGETED, priority)
        state.batch_id = batch_id or str(state.run_id)
        job: BatchJob[Any, Any] = BatchJob(
            batch_id=state.batch_id,
            provider=resolved.value,
            operation=operation,
            items=items,
            executor=executor,
            item_id=item_id,
            retry_attempts=retry_attempts,
        )
        self._spawn(state, self._run_enforcement(state, job, self._checkpoints))
        return state.run_id

    def _register_run(
        self,
        platform: Platform,
        sync_type: SyncType,
        priority: SyncPriority,
        *,
        artist_ids: tuple[str, ...] | None = None,
    ) -> SyncRunState:
        now = self._now()
        state = SyncRunState(
            run_id=uuid4(),
            platform=platform,
            sync_type=sync_type,
            status=SyncStatus.PENDING,
            started_at=now,
            updated_at=now,
            priority=priority,
            artist_ids=artist_ids,
        )
        state.progress = self._progress_for(state, items_processed=0, errors=0)
        self._active[state.run_id] = state
        return state

    def _spawn(self, state: SyncRunState, job: Coroutine[Any, Any, None]) -> None:
        state.transition(SyncStatus.RUNNING, at=self._now())
        orchestrator_events.emit_dispatch_event(
            self._logger,
            run_id=str(state.run_id),
            platform=state.platform.value,
            sync_type=state.sync_type.value,
            priority=state.priority.value,
            batch_id=state.batch_id,
        )
        task = asyncio.create_task(job, name=f"platform-sync:{state.platform.value}:{state.run_id}")
        self._tasks[state.run_id] = task
        task.add_done_callback(lambda _task, run_id=state.run_id: self._tasks.pop(run_id, None))

    async def _run_sync(
        self,
        state: SyncRunState,
        worker: PlatformWorker,
        request: SyncTriggerRequest,
    ) -> None:
        started = monotonic_ms()
        callback = self._make_progress_callback(state)
        result: SyncResult | None = None
        try:
            if request.sync_type is SyncType.FULL:
                result = await worker.sync_full(callback)
            else:
                checkpoint = await self._load_worker_checkpoint(state.platform, worker)
                state.checkpoint = checkpoint
                result = await worker.sync_incremental(checkpoint, callback)
        except asyncio.CancelledError:
            self._finish(state, SyncStatus.CANCELLED, started=started, error="task cancelled")
            await self._record_history(state, None)
            raise
        except Exception as exc:
            self._logger.exception(
                "Sync run failed",
                extra={"event": "orchestrator.run_failed", "run_id": str(state.run_id)},
            )
            self._finish(state, SyncStatus.FAILED, started=started, error=_describe(exc))
        else:
            self._last_worker_run[state.platform] = result.sync_run_id
            status = result.status if result.status.is_terminal else SyncStatus.COMPLETED
            error = "; ".join(result.errors) if status is SyncStatus.FAILED and result.errors else None
            self._finish(
                state,
                status,
                started=started,
                error=error,
                meta={"api_calls": result.api_calls, "errors": len(result.errors)},
            )
        await self._record_history(state, result)

    async def _run_enforcement(
        self,
        state: SyncRunState,
        job: BatchJob[Any, Any],
        checkpoints: CheckpointStore,
    ) -> None:
        started = monotonic_ms()
        runner = BatchJobRunner(self._planner, checkpoints)

        def _on_checkpoint(checkpoint: BatchCheckpoint) -> None:
            event = self._progress_for(
                state,
                items_processed=checkpoint.processed_items,
                errors=checkpoint.failed_items,
                total_items=checkpoint.total_items,
            )
            self._apply_progress(state, event)

        outcome: BatchJobResult | None = None
        try:
            outcome = await runner.run(
                job,
                should_continue=lambda: not self.is_cancelled(state.run_id),
                on_progress=_on_checkpoint,
            )
        except asyncio.CancelledError:
            self._finish(state, SyncStatus.CANCELLED, started=started, error="task cancelled")
            await self._record_history(state, None)
            raise
        except Exception as exc:
            self._logger.exception(
                "Enforcement run failed",
                extra={"event": "orchestrator.run_failed", "run_id": str(state.run_id)},
            )
            self._finish(state, SyncStatus.FAILED, started=started, error=_describe(exc))
        else:
            summary = outcome.summary
            error = None
            if summary.errors:
                error = str(summary.errors[-1].get("message"))
            self._finish(
                state,
                outcome.status,
                started=started,
                error=error,
                meta={
                    "batch_id": outcome.batch_id,
                    "succeeded_batches": summary.succeeded_batches,
                    "failed_batches": summary.failed_batches,
                    "cancelled_batches": summary.cancelled_batches,
                    "processed_items": outcome.checkpoint.processed_items,
                    "failed_items": outcome.checkpoint.failed_items,
                    "resumed": outcome.resumed,
                },
            )
        await self._record_history(state, None)

    async def _load_worker_checkpoint(
        self,
        platform: Platform,
        worker: PlatformWorker,
    ) -> SyncCheckpoint | None:
        previous = self._last_worker_run.get(platform)
        if previous is None:
            return None
        return await worker.get_checkpoint(previous)

    # Progress ------------------------------------------------------------

    def _progress_for(
        self,
        state: SyncRunState,
        *,
        items_processed: int,
        errors: int,
        total_items: int | None = None,
    ) -> SyncProgress:
        return SyncProgress(
            platform=state.platform,
            sync_run_id=state.run_id,
            status=state.status,
            items_processed=items_processed,
            errors=errors,
            started_at=state.started_at,
            updated_at=self._now(),
            total_items=total_items,
        )

    def _make_progress_callback(self, state: SyncRunState) -> Callable[[SyncProgress], None]:
        def _callback(progress: SyncProgress) -> None:
            self._apply_progress(state, replace(progress, sync_run_id=state.run_id))

        return _callback

    def _apply_progress(self, state: SyncRunState, progress: SyncProgress) -> None:
        if not progress.status.is_terminal:
            state.transition(progress.status, at=progress.updated_at)
        if progress.status is not state.status:
            progress = replace(progress, status=state.status)
        state.progress = progress
        state.updated_at = progress.updated_at
        self._broadcaster.publish(progress)

    def subscribe_progress(self) -> ProgressSubscription:
        """Subscribe to progress events published from now on."""

        return self._broadcaster.subscribe()

    # Completion ----------------------------------------------------------

    def _finish(
        self,
        state: SyncRunState,
        status: SyncStatus,
        *,
        started: int,
        error: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        now = self._now()
        state.transition(status, at=now)
        if state.finished_at is None:
            state.finished_at = now
        if error is not None and state.error is None:
            state.error = error
        self._active.pop(state.run_id, None)
        self._remember(state)
        last = state.progress
        final = self._progress_for(
            state,
            items_processed=last.items_processed if last else 0,
            errors=last.errors if last else 0,
            total_items=last.total_items if last else None,
        )
        state.progress = final
        self._broadcaster.publish(final)
        orchestrator_events.emit_complete_event(
            self._logger,
            run_id=str(state.run_id),
            platform=state.platform.value,
            status=state.status.value,
            duration_ms=monotonic_ms() - started,
            error=state.error,
            meta=meta,
        )

    def _remember(self, state: SyncRunState) -> None:
        limit = self._config.recent_runs_limit
        if limit <= 0:
            return
        self._recent[state.run_id] = state
        self._recent.move_to_end(state.run_id)
        while len(self._recent) > limit:
            self._recent.popitem(last=False)

    async def _record_history(self, state: SyncRunState, result: SyncResult | None) -> None:
        if self._history_sink is None:
            return
        try:
            await self._history_sink.record_run(state, result)
        except Exception:
            self._logger.exception(
                "Failed to record run history",
                extra={"event": "orchestrator.history_failed", "run_id": str(state.run_id)},
            )

    # Queries -------------------------------------------------------------

    def get_active_runs(self) -> list[SyncRunState]:
        return [replace(state) for state in self._active.values()]

    def get_run(self, run_id: UUID) -> SyncRunState | None:
        state = self._active.get(run_id) or self._recent.get(run_id)
        if state is None:
            return None
        return replace(state)

    def is_cancelled(self, run_id: UUID) -> bool:
        state = self._active.get(run_id) or self._recent.get(run_id)
        return state is not None and state.status is SyncStatus.CANCELLED

    def cancel_run(self, run_id: UUID) -> bool:
        """Mark an active run as cancelled; return ``False`` if it is unknown or finished."""

        state = self._active.get(run_id)
        if state is None:
            return False
        if not state.transition(SyncStatus.CANCELLED, at=self._now()):
            return False
        orchestrator_events.emit_cancel_event(
            self._logger,
            run_id=str(run_id),
            platform=state.platform.value,
        )
        return True

    async def wait_for_run(self, run_id: UUID, *, timeout: float | None = None) -> SyncRunState:
        """Wait until ``run_id`` has finished and return its final state."""

        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        state = self.get_run(run_id)
        if state is None:
            raise RunNotFoundError(str(run_id))
        return state

    async def health_check_all(self) -> dict[Platform, bool]:
        items = self._registry.items()
        results = await asyncio.gather(*(self._check_health(worker) for _, worker in items))
        return {platform: healthy for (platform, _), healthy in zip(items, results)}

    async def _check_health(self, worker: PlatformWorker) -> bool:
        platform = Platform.parse(worker.platform())
        started = monotonic_ms()
        try:
            healthy = bool(await worker.health_check())
        except Exception as exc:
            orchestrator_events.emit_dependency_event(
                self._logger,
                dependency=platform.value,
                operation="health_check",
                status="error",
                duration_ms=monotonic_ms() - started,
                error=_describe(exc),
            )
            return False
        return healthy

    async def get_status(self) -> OrchestratorStatus:
        health = await self.health_check_all()
        platforms: dict[Platform, PlatformStatus] = {}
        for platform in self._registry.platforms():
            current = next(
                (replace(run) for run in self._active.values() if run.platform is platform),
                None,
            )
            platforms[platform] = PlatformStatus(
                platform=platform,
                is_healthy=health.get(platform, False),
                current_run=current,
                rate_limit=await self._rate_limiter.snapshot(platform.value),
                circuit=await self._rate_limiter.breaker(platform.value).snapshot(),
            )
        return OrchestratorStatus(platforms=platforms, active_runs=len(self._active))

    async def search_artist_all_platforms(
        self,
        query: str,
        limit_per_platform: int = 10,
    ) -> dict[Platform, list[PlatformArtist]]:
        """Query every registered worker concurrently; a failing platform yields ``[]``."""

        items = self._registry.items()
        results = await asyncio.gather(
            *(
                self._call_platform(
                    platform,
                    "search_artist",
                    lambda worker=worker: worker.search_artist(query, limit_per_platform),
                )
                for platform, worker in items
            )
        )
        return {platform: list(artists or []) for (platform, _), artists in zip(items, results)}

    async def sync_artist_all_platforms(
        self,
        name: str,
        platform_ids: Mapping[Platform | str, str] | None = None,
    ) -> dict[Platform, PlatformArtist]:
        """Look up one artist on every registered platform.

        Platforms with a known id in ``platform_ids`` are fetched directly. The
        others are searched by ``name`` and the first case-insensitive exact
        name match is taken. Platforms with no match, or whose call failed, are
        left out of the result.
        """

        known = {Platform.parse(key): value for key, value in (platform_ids or {}).items()}
        items = self._registry.items()
        results = await asyncio.gather(
            *(
                self._find_artist(platform, worker, name, known.get(platform))
                for platform, worker in items
            )
        )
        return {
            platform: artist
            for (platform, _), artist in zip(items, results)
            if artist is not None
        }

    async def _find_artist(
        self,
        platform: Platform,
        worker: PlatformWorker,
        name: str,
        platform_id: str | None,
    ) -> PlatformArtist | None:
        if platform_id is not None:
            return await self._call_platform(
                platform, "get_artist", lambda: worker.get_artist(platform_id)
            )
        candidates = await self._call_platform(
            platform,
            "search_artist",
            lambda: worker.search_artist(name, ARTIST_MATCH_CANDIDATES),
        )
        wanted = name.strip().casefold()
        return next(
            (artist for artist in candidates or [] if artist.name.strip().casefold() == wanted),
            None,
        )

    async def resolve_and_add_artist(self, artist: PlatformArtist) -> str:
        """Hand ``artist`` to the identity resolver and return its canonical id."""

        if self._identity_resolver is None:
            raise FatalConfigurationError("No identity resolver configured")
        return await self._identity_resolver.resolve_and_add_artist(artist)

    async def get_client(self, platform: Platform | str) -> httpx.AsyncClient:
        """Return an authenticated HTTP client for a registered platform.

        Enforcement executors use this to reach the provider API.
        """

        if self._credential_provider is None:
            raise FatalConfigurationError("No credential provider configured")
        resolved = Platform.parse(platform)
        self._resolve_worker(resolved)
        return await self._credential_provider.get_client(resolved)

    async def _call_platform(
        self,
        platform: Platform,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T | None:
        """Run one rate-limited provider call; failures are recorded and yield ``None``."""

        started = monotonic_ms()
        timeout_s = self._config.search_timeout_ms / 1000.0
        try:
            await self._rate_limiter.acquire(platform.value)
        except SyncEngineError as exc:
            self._emit_call(platform, operation, "throttled", started, exc)
            return None
        try:
            value = await asyncio.wait_for(call(), timeout_s)
        except Exception as exc:
            await self._rate_limiter.record_failure(platform.value, exc)
            self._emit_call(platform, operation, "error", started, exc)
            return None
        await self._rate_limiter.record_success(platform.value)
        self._emit_call(platform, operation, "ok", started, None)
        return value

    def _emit_call(
        self,
        platform: Platform,
        operation: str,
        status: str,
        started: int,
        exc: BaseException | None,
    ) -> None:
        orchestrator_events.emit_dependency_event(
            self._logger,
            dependency=platform.value,
            operation=operation,
            status=status,
            duration_ms=monotonic_ms() - started,
            error=_describe(exc) if exc is not None else None,
        )

    # Lifecycle -----------------------------------------------------------

    async def shutdown(self) -> None:
        """Cancel in-flight jobs, wait for them and close progress subscriptions."""

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._broadcaster.close()


def _describe(exc: BaseException) -> str:
    message = str(exc)
    if message:
        return message
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    return type(exc).__name__
