"""Shared fakes for the platform-sync test-suite."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from platform_sync.config import (
    CircuitBreakerConfig,
    RateLimitConfig,
    RateLimiterPolicy,
)
from platform_sync.resilience.batching import BatchPlanner
from platform_sync.resilience.checkpoints import CheckpointStore
from platform_sync.resilience.rate_limiter import RateLimiter
from platform_sync.state.store import StateStore
from platform_sync.workers.contracts import (
    Platform,
    PlatformAlbum,
    PlatformArtist,
    PlatformTrack,
    ProgressCallback,
    SyncCheckpoint,
    SyncProgress,
    SyncResult,
    SyncStatus,
)


class FakeClock:
    """Deterministic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)


def make_limiter(
    store: StateStore,
    clock: FakeClock,
    *configs: RateLimitConfig,
    circuit: CircuitBreakerConfig | None = None,
    policy: RateLimiterPolicy | None = None,
    seed: int | None = 7,
) -> RateLimiter:
    return RateLimiter(
        store,
        policy=policy,
        circuit_config=circuit,
        configs={config.provider: config for config in configs},
        now_fn=clock.now,
        sleep=clock.sleep,
        rng=random.Random(seed) if seed is not None else None,
    )


def make_planner(limiter: RateLimiter, clock: FakeClock) -> BatchPlanner:
    return BatchPlanner(limiter, sleep=clock.sleep)


def make_checkpoints(store: StateStore, clock: FakeClock) -> CheckpointStore:
    return CheckpointStore(store, now_fn=clock.now)


def rate_config(
    provider: str,
    *,
    requests: int = 100,
    window_s: int = 60,
) -> RateLimitConfig:
    return RateLimitConfig(
        provider=provider,
        requests_per_window=requests,
        window_duration_s=window_s,
        burst_allowance=10,
        backoff_multiplier=2.0,
        max_backoff_s=300,
    )


class StubWorker:
    """Configurable in-memory implementation of the worker contract."""

    def __init__(
        self,
        platform: Platform,
        *,
        artists: Sequence[PlatformArtist] = (),
        healthy: bool = True,
        health_error: Exception | None = None,
        search_error: Exception | None = None,
        search_delay: float = 0.0,
        sync_error: Exception | None = None,
        result_status: SyncStatus = SyncStatus.COMPLETED,
        progress_steps: int = 0,
        block: asyncio.Event | None = None,
        requests: int = 100,
    ) -> None:
        self._platform = platform
        self._artists = list(artists)
        self._healthy = healthy
        self._health_error = health_error
        self._search_error = search_error
        self._search_delay = search_delay
        self._sync_error = sync_error
        self._result_status = result_status
        self._progress_steps = progress_steps
        self._block = block
        self._requests = requests
        self.worker_run_id: UUID = uuid4()
        self.full_calls = 0
        self.incremental_checkpoints: list[SyncCheckpoint | None] = []
        self.saved: dict[UUID, SyncCheckpoint] = {}
        self.started = asyncio.Event()

    def platform(self) -> Platform:
        return self._platform

    def rate_limit_config(self) -> RateLimitConfig:
        return rate_config(self._platform.value, requests=self._requests)

    async def health_check(self) -> bool:
        if self._health_error is not None:
            raise self._health_error
        return self._healthy

    async def search_artist(self, query: str, limit: int) -> list[PlatformArtist]:
        if self._search_delay:
            await asyncio.sleep(self._search_delay)
        if self._search_error is not None:
            raise self._search_error
        matches = [artist for artist in self._artists if query.lower() in artist.name.lower()]
        return matches[:limit]

    async def get_artist(self, artist_id: str) -> PlatformArtist | None:
        return next((a for a in self._artists if a.platform_id == artist_id), None)

    async def get_artist_top_tracks(self, artist_id: str) -> list[PlatformTrack]:
        return []

    async def get_artist_albums(self, artist_id: str) -> list[PlatformAlbum]:
        return []

    async def get_album_tracks(self, album_id: str) -> list[PlatformTrack]:
        return []

    async def get_related_artists(self, artist_id: str) -> list[PlatformArtist]:
        return []

    async def _sync(self, progress_callback: ProgressCallback) -> SyncResult:
        self.started.set()
        started_at = datetime.now(UTC)
        for step in range(1, self._progress_steps + 1):
            progress_callback(
                SyncProgress(
                    platform=self._platform,
                    sync_run_id=self.worker_run_id,
                    status=SyncStatus.RUNNING,
                    items_processed=step,
                    errors=0,
                    started_at=started_at,
                    updated_at=datetime.now(UTC),
                    total_items=self._progress_steps,
                )
            )
            await asyncio.sleep(0)
        if self._block is not None:
            await self._block.wait()
        if self._sync_error is not None:
            raise self._sync_error
        self.saved[self.worker_run_id] = SyncCheckpoint(
            platform=self._platform,
            sync_run_id=self.worker_run_id,
            offset=self._progress_steps,
            items_processed=self._progress_steps,
            updated_at=datetime.now(UTC),
        )
        return SyncResult(
            platform=self._platform,
            sync_run_id=self.worker_run_id,
            status=self._result_status,
            artists_processed=self._progress_steps,
            errors=("partial failure",) if self._result_status is not SyncStatus.COMPLETED else (),
            api_calls=self._progress_steps,
        )

    async def sync_full(self, progress_callback: ProgressCallback) -> SyncResult:
        self.full_calls += 1
        return await self._sync(progress_callback)

    async def sync_incremental(
        self,
        checkpoint: SyncCheckpoint | None,
        progress_callback: ProgressCallback,
    ) -> SyncResult:
        self.incremental_checkpoints.append(checkpoint)
        return await self._sync(progress_callback)

    async def get_checkpoint(self, run_id: UUID) -> SyncCheckpoint | None:
        return self.saved.get(run_id)

    async def save_checkpoint(self, checkpoint: SyncCheckpoint) -> None:
        self.saved[checkpoint.sync_run_id] = checkpoint


def artist(platform: Platform, platform_id: str, name: str) -> PlatformArtist:
    return PlatformArtist(platform_id=platform_id, platform=platform, name=name)
