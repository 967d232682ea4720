"""Run bookkeeping types exposed by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from platform_sync.resilience.models import CircuitSnapshot, RateLimitSnapshot
from platform_sync.workers.contracts import (
    Platform,
    SyncCheckpoint,
    SyncProgress,
    SyncStatus,
    SyncType,
)

__all__ = [
    "OrchestratorStatus",
    "PlatformStatus",
    "SyncPriority",
    "SyncRunState",
    "SyncTriggerRequest",
]


class SyncPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class SyncTriggerRequest:
    """Request to sync one or more platforms.

    ``artist_ids`` is informational: it is copied onto every run state it
    creates, while workers still sync their full scope.
    """

    platforms: tuple[Platform, ...]
    sync_type: SyncType = SyncType.FULL
    priority: SyncPriority = SyncPriority.NORMAL
    artist_ids: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if not self.platforms:
            raise ValueError("at least one platform must be requested")

    @classmethod
    def create(
        cls,
        platforms: list[Platform | str] | tuple[Platform | str, ...],
        *,
        sync_type: SyncType | str = SyncType.FULL,
        priority: SyncPriority | str = SyncPriority.NORMAL,
        artist_ids: list[str] | tuple[str, ...] | None = None,
    ) -> SyncTriggerRequest:
        """Build a request from loosely typed input, dropping duplicate platforms."""

        resolved: list[Platform] = []
        for candidate in platforms:
            platform = Platform.parse(candidate)
            if platform not in resolved:
                resolved.append(platform)
        return cls(
            platforms=tuple(resolved),
            sync_type=SyncType(sync_type),
            priority=SyncPriority(priority),
            artist_ids=tuple(artist_ids) if artist_ids is not None else None,
        )


@dataclass(slots=True)
class SyncRunState:
    """Live state of one dispatched job."""

    run_id: UUID
    platform: Platform
    sync_type: SyncType
    status: SyncStatus
    started_at: datetime
    updated_at: datetime
    priority: SyncPriority = SyncPriority.NORMAL
    progress: SyncProgress | None = None
    checkpoint: SyncCheckpoint | None = None
    batch_id: str | None = None
    artist_ids: tuple[str, ...] | None = None
    error: str | None = None
    finished_at: datetime | None = None

    def transition(self, status: SyncStatus, *, at: datetime) -> bool:
        """Move to ``status`` unless already terminal; return whether it changed."""

        if self.status.is_terminal or self.status is status:
            return False
        self.status = status
        self.updated_at = at
        if status.is_terminal:
            self.finished_at = at
        return True


@dataclass(slots=True, frozen=True)
class PlatformStatus:
    platform: Platform
    is_healthy: bool
    current_run: SyncRunState | None
    rate_limit: RateLimitSnapshot
    circuit: CircuitSnapshot


@dataclass(slots=True, frozen=True)
class OrchestratorStatus:
    platforms: dict[Platform, PlatformStatus] = field(default_factory=dict)
    active_runs: int = 0

    @property
    def healthy(self) -> bool:
        return all(status.is_healthy for status in self.platforms.values())
