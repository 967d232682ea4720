"""Interfaces of services the orchestrator consumes but does not implement."""

from __future__ import annotations

from typing import Protocol

import httpx

from platform_sync.logging import get_logger
from platform_sync.logging_events import log_event
from platform_sync.workers.contracts import Platform, PlatformArtist, SyncResult

from .events import format_datetime
from .models import SyncRunState

__all__ = [
    "CredentialProvider",
    "IdentityResolver",
    "LoggingHistorySink",
    "RunHistorySink",
]


class IdentityResolver(Protocol):
    async def resolve_and_add_artist(self, artist: PlatformArtist) -> str:
        """Match ``artist`` against the canonical catalog and return its canonical id."""


class CredentialProvider(Protocol):
    async def get_client(self, platform: Platform) -> httpx.AsyncClient:
        """Return an HTTP client authenticated for ``platform``."""


class RunHistorySink(Protocol):
    async def record_run(self, state: SyncRunState, result: SyncResult | None) -> None:
        """Persist the terminal outcome of a run for later reporting."""


class LoggingHistorySink(RunHistorySink):
    """History sink that only writes a structured log line per finished run."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    async def record_run(self, state: SyncRunState, result: SyncResult | None) -> None:
        meta: dict[str, object] = {}
        if result is not None:
            meta = {
                "artists_processed": result.artists_processed,
                "tracks_processed": result.tracks_processed,
                "albums_processed": result.albums_processed,
                "api_calls": result.api_calls,
                "errors": list(result.errors),
            }
        log_event(
            self._logger,
            "orchestrator.history",
            run_id=str(state.run_id),
            platform=state.platform.value,
            sync_type=state.sync_type.value,
            status=state.status.value,
            started_at=format_datetime(state.started_at),
            finished_at=format_datetime(state.finished_at),
            error=state.error,
            meta=meta,
        )
