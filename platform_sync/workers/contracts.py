"""Contracts shared by platform workers and the orchestrator."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from platform_sync.config import RateLimitConfig


class Platform(str, Enum):
    SPOTIFY = "spotify"
    APPLE_MUSIC = "apple_music"
    TIDAL = "tidal"
    YOUTUBE_MUSIC = "youtube_music"
    DEEZER = "deezer"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: Platform | str) -> Platform:
        """Resolve ``value`` case-insensitively, accepting ``-`` and spaces."""

        if isinstance(value, Platform):
            return value
        normalized = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown platform: {value!r}") from None


_DISPLAY_NAMES = {
    Platform.SPOTIFY: "Spotify",
    Platform.APPLE_MUSIC: "Apple Music",
    Platform.TIDAL: "Tidal",
    Platform.YOUTUBE_MUSIC: "YouTube Music",
    Platform.DEEZER: "Deezer",
}


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    TARGETED = "targeted"


class SyncStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {
        SyncStatus.COMPLETED,
        SyncStatus.PARTIALLY_COMPLETED,
        SyncStatus.FAILED,
        SyncStatus.CANCELLED,
    }
)


@dataclass(slots=True, frozen=True)
class PlatformArtist:
    """Artist as reported by a platform catalog."""

    platform_id: str
    platform: Platform
    name: str
    genres: tuple[str, ...] = ()
    popularity: int | None = None
    image_url: str | None = None
    external_urls: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class PlatformTrack:
    platform_id: str
    platform: Platform
    title: str
    isrc: str | None = None
    duration_ms: int | None = None
    artist_ids: tuple[str, ...] = ()
    album_id: str | None = None
    release_date: str | None = None
    preview_url: str | None = None
    explicit: bool = False


@dataclass(slots=True, frozen=True)
class PlatformAlbum:
    platform_id: str
    platform: Platform
    title: str
    upc: str | None = None
    artist_ids: tuple[str, ...] = ()
    release_date: str | None = None
    album_type: str | None = None
    total_tracks: int | None = None
    image_url: str | None = None


@dataclass(slots=True, frozen=True)
class SyncCheckpoint:
    """Cursor a worker saves so an incremental sync can continue later."""

    platform: Platform
    sync_run_id: UUID
    offset: int
    items_processed: int
    updated_at: datetime
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SyncProgress:
    """Progress event broadcast while a run executes."""

    platform: Platform
    sync_run_id: UUID
    status: SyncStatus
    items_processed: int
    errors: int
    started_at: datetime
    updated_at: datetime
    total_items: int | None = None
    estimated_completion: datetime | None = None

    @property
    def progress_percentage(self) -> float | None:
        if not self.total_items:
            return None
        return min(100.0, 100.0 * self.items_processed / self.total_items)


@dataclass(slots=True, frozen=True)
class SyncResult:
    platform: Platform
    sync_run_id: UUID
    status: SyncStatus
    artists_processed: int = 0
    tracks_processed: int = 0
    albums_processed: int = 0
    new_artists: int = 0
    updated_artists: int = 0
    errors: tuple[str, ...] = ()
    duration_ms: int = 0
    api_calls: int = 0
    rate_limit_delays_ms: int = 0


ProgressCallback = Callable[[SyncProgress], None]


class PlatformWorker(Protocol):
    """Capability contract implemented once per platform."""

    def platform(self) -> Platform:
        """Return the platform served by this worker."""

    def rate_limit_config(self) -> RateLimitConfig:
        """Return the request budget the worker must stay within."""

    async def health_check(self) -> bool:
        """Return whether the platform API is reachable with valid credentials."""

    async def search_artist(self, query: str, limit: int) -> list[PlatformArtist]: ...

    async def get_artist(self, artist_id: str) -> PlatformArtist | None: ...

    async def get_artist_top_tracks(self, artist_id: str) -> list[PlatformTrack]: ...

    async def get_artist_albums(self, artist_id: str) -> list[PlatformAlbum]: ...

    async def get_album_tracks(self, album_id: str) -> list[PlatformTrack]: ...

    async def get_related_artists(self, artist_id: str) -> list[PlatformArtist]: ...

    async def sync_full(self, progress_callback: ProgressCallback) -> SyncResult:
        """Synchronise the complete catalog, reporting through ``progress_callback``."""

    async def sync_incremental(
        self,
        checkpoint: SyncCheckpoint | None,
        progress_callback: ProgressCallback,
    ) -> SyncResult:
        """Continue from ``checkpoint`` (or the beginning when ``None``)."""

    async def get_checkpoint(self, run_id: UUID) -> SyncCheckpoint | None: ...

    async def save_checkpoint(self, checkpoint: SyncCheckpoint) -> None: ...


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
]
