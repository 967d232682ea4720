"""Platform worker contract and registry."""

from __future__ import annotations

from .contracts import (
    Platform,
    PlatformAlbum,
    PlatformArtist,
    PlatformTrack,
    PlatformWorker,
    ProgressCallback,
    SyncCheckpoint,
    SyncProgress,
    SyncResult,
    SyncStatus,
    SyncType,
)
from .registry import WorkerRegistry

__all__ = [
    "Platform",
    "PlatformAlbum",
    "PlatformArtist",
    "PlatformTrack",
    "PlatformWorker",
    "ProgressCallback",
    "SyncCheckpoint",
    "SyncProgress",
    "SyncResult",
    "SyncStatus",
    "SyncType",
    "WorkerRegistry",
]
