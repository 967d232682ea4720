from __future__ import annotations

import pytest

from platform_sync.config import RateLimiterPolicy
from platform_sync.errors import FatalConfigurationError
from platform_sync.orchestrator.jobs import (
    BatchJob,
    BatchJobRunner,
    status_from_counts,
)
from platform_sync.resilience.checkpoints import CheckpointStore
from platform_sync.workers.contracts import SyncStatus
from tests.helpers import make_checkpoints, make_limiter, make_planner, rate_config


def _runner(store, clock) -> tuple[BatchJobRunner, CheckpointStore]:
    limiter = make_limiter(
        store, clock, rate_config("p"), policy=RateLimiterPolicy(min_spacing_ms=0)
    )
    checkpoints = make_checkpoints(store, clock)
    return BatchJobRunner(make_planner(limiter, clock), checkpoints), checkpoints


def test_status_from_counts() -> None:
    assert status_from_counts(10, 0) is SyncStatus.COMPLETED
    assert status_from_counts(0, 0) is SyncStatus.COMPLETED
    assert status_from_counts(0, 4) is SyncStatus.FAILED
    assert status_from_counts(6, 4) is SyncStatus.PARTIALLY_COMPLETED


@pytest.mark.asyncio
async def test_resumed_job_skips_processed_items(store, clock) -> None:
    runner, checkpoints = _runner(store, clock)
    items = [f"id-{i}" for i in range(50)]
    existing = await checkpoints.create_checkpoint("resume-1", "p", "op", len(items))
    await checkpoints.update_checkpoint(existing, 30, 0, 30, "id-29")
    seen: list[str] = []

    async def executor(batch: list[str]) -> None:
        seen.extend(batch)

    result = await runner.run(BatchJob("resume-1", "p", "op", items, executor))

    assert result.resumed
    assert seen == items[30:]
    assert result.status is SyncStatus.COMPLETED
    assert result.checkpoint.processed_items == 50
    assert result.checkpoint.current_position == 50
    assert result.checkpoint.last_successful_item_id == "id-49"


@pytest.mark.asyncio
async def test_checkpoint_total_mismatch_is_rejected(store, clock) -> None:
    runner, checkpoints = _runner(store, clock)
    await checkpoints.create_checkpoint("resume-2", "p", "op", 10)

    async def executor(batch: list[int]) -> None:
        return None

    with pytest.raises(FatalConfigurationError):
        await runner.run(BatchJob("resume-2", "p", "op", list(range(12)), executor))


@pytest.mark.asyncio
async def test_failed_batches_are_counted_and_recorded(store, clock) -> None:
    runner, checkpoints = _runner(store, clock)
    progress: list[tuple[int, int]] = []

    async def executor(batch: list[int]) -> None:
        if 25 in batch:
            raise RuntimeError("HTTP 503 service unavailable")

    result = await runner.run(
        BatchJob("job-3", "p", "op", list(range(45)), executor),
        on_progress=lambda checkpoint: progress.append(
            (checkpoint.processed_items, checkpoint.failed_items)
        ),
    )

    assert result.status is SyncStatus.PARTIALLY_COMPLETED
    assert progress == [(20, 0), (20, 20), (25, 20)]
    stored = await checkpoints.get_checkpoint("job-3")
    assert stored is not None
    assert stored.checkpoint_data["last_error_code"] == "SERVER_ERROR"
    assert stored.is_complete()


@pytest.mark.asyncio
async def test_cancelled_job_keeps_cursor_at_last_batch(store, clock) -> None:
    runner, checkpoints = _runner(store, clock)
    calls = 0

    async def executor(batch: list[int]) -> None:
        nonlocal calls
        calls += 1

    result = await runner.run(
        BatchJob("job-4", "p", "op", list(range(60)), executor),
        should_continue=lambda: calls == 0,
    )

    assert result.cancelled
    assert result.status is SyncStatus.CANCELLED
    assert result.summary.cancelled_batches == 2
    stored = await checkpoints.get_checkpoint("job-4")
    assert stored is not None
    assert stored.current_position == 20
    assert not stored.is_complete()
