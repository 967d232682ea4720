"""In-memory state store for single-process deployments and tests."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock

from platform_sync.utils.time import now_utc

from .store import StateStore

__all__ = ["MemoryStateStore"]


@dataclass(slots=True)
class _Entry:
    value: str
    expires_at: datetime

    def is_expired(self, *, reference: datetime) -> bool:
        return reference >= self.expires_at


class MemoryStateStore(StateStore):
    """Thread-safe in-memory implementation of :class:`StateStore`."""

    def __init__(self, *, now_fn: Callable[[], datetime] | None = None) -> None:
        self._now = now_fn or now_utc
        self._entries: dict[str, _Entry] = {}
        self._lock = Lock()

    async def get(self, key: str) -> str | None:
        reference = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(reference=reference):
                self._entries.pop(key, None)
                return None
            return entry.value

    async def set(self, key: str, value: str, *, ttl_s: float) -> None:
        if ttl_s <= 0:
            raise ValueError("State TTL must be positive")
        reference = self._now()
        entry = _Entry(value=value, expires_at=reference + timedelta(seconds=ttl_s))
        with self._lock:
            self._purge_expired(reference=reference)
            self._entries[key] = entry

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def ttl(self, key: str) -> float | None:
        reference = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(reference=reference):
                return None
            return (entry.expires_at - reference).total_seconds()

    def purge_expired(self, *, reference: datetime | None = None) -> int:
        moment = reference or self._now()
        with self._lock:
            return self._purge_expired(reference=moment)

    def _purge_expired(self, *, reference: datetime) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(reference=reference)]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def keys(self) -> list[str]:
        with self._lock:
            self._purge_expired(reference=self._now())
            return sorted(self._entries)
