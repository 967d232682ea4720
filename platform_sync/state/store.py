"""Contract for the external key-value store holding shared engine state."""

from __future__ import annotations

from typing import Protocol

__all__ = ["StateStore", "make_key"]


def make_key(namespace: str, identifier: str) -> str:
    """Return the canonical ``namespace:identifier`` key."""

    if not namespace or not identifier:
        raise ValueError("namespace and identifier must be non-empty")
    return f"{namespace}:{identifier}"


class StateStore(Protocol):
    """Async string store with per-key expiry.

    Writes are plain read-modify-write: no compare-and-swap primitive is
    offered, so concurrent writers for the same key may lose updates.
    """

    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key`` or ``None`` if absent or expired."""

    async def set(self, key: str, value: str, *, ttl_s: float) -> None:
        """Store ``value`` under ``key`` expiring after ``ttl_s`` seconds."""

    async def delete(self, key: str) -> bool:
        """Remove ``key``; return ``True`` when something was deleted."""

    async def ttl(self, key: str) -> float | None:
        """Return the remaining lifetime of ``key`` in seconds."""
