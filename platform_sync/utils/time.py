"""Clock helpers shared by the resilience components."""

from __future__ import annotations

import asyncio
import time as _time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

__all__ = ["Clock", "SleepFunc", "async_sleep", "ensure_aware", "monotonic_ms", "now_utc"]

Clock = Callable[[], datetime]
SleepFunc = Callable[[float], Awaitable[None]]


def now_utc() -> datetime:
    """Return the current UTC time with timezone information."""

    return datetime.now(UTC)


def monotonic_ms() -> int:
    """Return a monotonic timestamp in milliseconds."""

    return _time.monotonic_ns() // 1_000_000


async def async_sleep(seconds: float) -> None:
    """Suspend the calling task for ``seconds`` (non-positive values just yield)."""

    await asyncio.sleep(max(0.0, seconds))


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
