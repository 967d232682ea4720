"""Checkpointed batch jobs such as enforcement actions."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from platform_sync.errors import FatalConfigurationError
from platform_sync.logging import get_logger
from platform_sync.resilience.batching import (
    BatchExecutionSummary,
    BatchExecutor,
    BatchPlanner,
    BatchResult,
    BatchStatus,
)
from platform_sync.resilience.checkpoints import BatchCheckpoint, CheckpointStore
from platform_sync.workers.contracts import SyncStatus

__all__ = ["BatchJob", "BatchJobResult", "BatchJobRunner", "status_from_counts"]

T = TypeVar("T")
R = TypeVar("R")

logger = get_logger(__name__)


def status_from_counts(processed: int, failed: int) -> SyncStatus:
    """Classify a finished job from its item counters."""

    if failed == 0:
        return SyncStatus.COMPLETED
    if processed == 0:
        return SyncStatus.FAILED
    return SyncStatus.PARTIALLY_COMPLETED


@dataclass(slots=True)
class BatchJob(Generic[T, R]):
    """Work items for one provider operation plus the executor that applies a batch."""

    batch_id: str
    provider: str
    operation: str
    items: Sequence[T]
    executor: BatchExecutor[T, R]
    item_id: Callable[[T], str] = str
    retry_attempts: int = 0


@dataclass(slots=True)
class BatchJobResult:
    batch_id: str
    status: SyncStatus
    summary: BatchExecutionSummary
    checkpoint: BatchCheckpoint
    cancelled: bool
    resumed: bool


class BatchJobRunner:
    """Run a :class:`BatchJob` to completion, checkpointing after every batch.

    A job whose checkpoint already exists resumes at ``current_position``;
    items before the cursor are never handed to the executor again.
    """

    def __init__(self, planner: BatchPlanner, checkpoints: CheckpointStore) -> None:
        self._planner = planner
        self._checkpoints = checkpoints

    async def run(
        self,
        job: BatchJob[T, R],
        *,
        should_continue: Callable[[], bool] | None = None,
        on_progress: Callable[[BatchCheckpoint], None] | None = None,
    ) -> BatchJobResult:
        checkpoint = await self._checkpoints.get_checkpoint(job.batch_id)
        resumed = checkpoint is not None
        if checkpoint is None:
            checkpoint = await self._checkpoints.create_checkpoint(
                job.batch_id, job.provider, job.operation, len(job.items)
            )
        elif checkpoint.total_items != len(job.items):
            raise FatalConfigurationError(
                f"Checkpoint {job.batch_id} covers {checkpoint.total_items} items, "
                f"job has {len(job.items)}",
                provider=job.provider,
            )
        else:
            logger.info(
                "Resuming batch job from checkpoint",
                extra={
                    "event": "batch.resume",
                    "batch_id": job.batch_id,
                    "provider": job.provider,
                    "position": checkpoint.current_position,
                },
            )

        pending = list(job.items[checkpoint.current_position :])
        batches = await self._planner.create_optimal_batches(job.provider, job.operation, pending)
        state = checkpoint

        async def _record(result: BatchResult[T, R]) -> None:
            if result.status is BatchStatus.CANCELLED:
                return
            size = len(result.items)
            processed = state.processed_items
            failed = state.failed_items
            last_item_id: str | None = None
            data: dict[str, Any] | None = None
            if result.succeeded:
                processed += size
                if result.items:
                    last_item_id = job.item_id(result.items[-1])
            else:
                failed += size
                data = {"last_error": result.error, "last_error_code": result.error_code}
            await self._checkpoints.update_checkpoint(
                state,
                processed,
                failed,
                state.current_position + size,
                last_item_id,
                data,
            )
            if on_progress is not None:
                on_progress(state)

        results = await self._planner.execute_batches(
            job.provider,
            job.operation,
            batches,
            job.executor,
            should_continue=should_continue,
            on_batch=_record,
            retry_attempts=job.retry_attempts,
        )
        summary = BatchExecutionSummary.from_results(results)
        cancelled = summary.cancelled_batches > 0
        status = (
            SyncStatus.CANCELLED
            if cancelled
            else status_from_counts(state.processed_items, state.failed_items)
        )
        return BatchJobResult(
            batch_id=job.batch_id,
            status=status,
            summary=summary,
            checkpoint=state,
            cancelled=cancelled,
            resumed=resumed,
        )
