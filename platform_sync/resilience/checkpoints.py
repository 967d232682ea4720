"""Resumable progress records for long batch jobs."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from platform_sync.config import DEFAULT_CHECKPOINT_TTL_S
from platform_sync.errors import StateStoreError
from platform_sync.logging import get_logger
from platform_sync.logging_events import log_event
from platform_sync.state.store import StateStore, make_key
from platform_sync.utils.time import now_utc

__all__ = ["CHECKPOINT_KEY_NAMESPACE", "BatchCheckpoint", "CheckpointStore"]

CHECKPOINT_KEY_NAMESPACE = "checkpoint"

logger = get_logger(__name__)


class BatchCheckpoint(BaseModel):
    """Counters and cursor of one batch job."""

    batch_id: str
    provider: str
    operation_type: str
    total_items: int = Field(ge=0)
    processed_items: int = Field(default=0, ge=0)
    failed_items: int = Field(default=0, ge=0)
    current_position: int = Field(default=0, ge=0)
    last_successful_item_id: str | None = None
    checkpoint_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_counters(self) -> BatchCheckpoint:
        if self.processed_items + self.failed_items > self.total_items:
            raise ValueError("processed_items + failed_items must not exceed total_items")
        return self

    @property
    def handled_items(self) -> int:
        return self.processed_items + self.failed_items

    def progress_percentage(self) -> float:
        if self.total_items == 0:
            return 100.0
        return 100.0 * self.handled_items / self.total_items

    def is_complete(self) -> bool:
        return self.handled_items >= self.total_items


class CheckpointStore:
    """Persists :class:`BatchCheckpoint` documents under ``checkpoint:{batch_id}``.

    A checkpoint lives for ``ttl_s`` seconds after creation. Updates keep the
    remaining lifetime instead of extending it, so finished and abandoned jobs
    both disappear on the same schedule.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        ttl_s: int = DEFAULT_CHECKPOINT_TTL_S,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        if ttl_s <= 0:
            raise ValueError("Checkpoint TTL must be positive")
        self._store = store
        self._ttl = timedelta(seconds=ttl_s)
        self._now = now_fn or now_utc

    @staticmethod
    def key(batch_id: str) -> str:
        return make_key(CHECKPOINT_KEY_NAMESPACE, batch_id)

    async def create_checkpoint(
        self,
        batch_id: str,
        provider: str,
        operation_type: str,
        total_items: int,
    ) -> BatchCheckpoint:
        now = self._now()
        checkpoint = BatchCheckpoint(
            batch_id=batch_id,
            provider=provider,
            operation_type=operation_type,
            total_items=total_items,
            created_at=now,
            updated_at=now,
        )
        await self._store.set(
            self.key(batch_id),
            checkpoint.model_dump_json(),
            ttl_s=self._ttl.total_seconds(),
        )
        return checkpoint

    async def update_checkpoint(
        self,
        checkpoint: BatchCheckpoint,
        processed: int,
        failed: int,
        position: int,
        last_item_id: str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> BatchCheckpoint:
        """Overwrite the counters and cursor of ``checkpoint`` and persist it.

        ``data`` is merged into the existing continuation data.
        """

        if processed < 0 or failed < 0 or position < 0:
            raise ValueError("checkpoint counters must not be negative")
        if processed + failed > checkpoint.total_items:
            raise ValueError("processed + failed must not exceed total_items")
        now = self._now()
        checkpoint.processed_items = processed
        checkpoint.failed_items = failed
        checkpoint.current_position = position
        if last_item_id is not None:
            checkpoint.last_successful_item_id = last_item_id
        if data:
            checkpoint.checkpoint_data.update(data)
        checkpoint.updated_at = now

        remaining = (checkpoint.created_at + self._ttl - now).total_seconds()
        if remaining <= 0:
            logger.warning(
                "Checkpoint expired before update; progress not persisted",
                extra={"event": "checkpoint.expired", "batch_id": checkpoint.batch_id},
            )
            return checkpoint
        await self._store.set(self.key(checkpoint.batch_id), checkpoint.model_dump_json(), ttl_s=remaining)
        log_event(
            logger,
            "checkpoint.update",
            batch_id=checkpoint.batch_id,
            provider=checkpoint.provider,
            processed=processed,
            failed=failed,
            position=position,
        )
        return checkpoint

    async def get_checkpoint(self, batch_id: str) -> BatchCheckpoint | None:
        raw = await self._store.get(self.key(batch_id))
        if raw is None:
            return None
        try:
            return BatchCheckpoint.model_validate_json(raw)
        except ValidationError as exc:
            raise StateStoreError(f"Corrupt checkpoint {batch_id}", key=self.key(batch_id)) from exc

    async def delete_checkpoint(self, batch_id: str) -> bool:
        return await self._store.delete(self.key(batch_id))
