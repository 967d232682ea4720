"""Rate-limit hints extracted from upstream responses."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime

import httpx

from platform_sync.utils.time import ensure_aware, now_utc

__all__ = ["MAX_HINT_HORIZON_S", "RateLimitHints", "hints_from_response"]

# Reset hints further out than this are treated as malformed.
MAX_HINT_HORIZON_S = 7 * 86_400


@dataclass(slots=True, frozen=True)
class RateLimitHints:
    """Budget information reported by a provider alongside a response."""

    remaining: int | None = None
    reset_at: datetime | None = None
    retry_after_s: float | None = None

    @property
    def is_empty(self) -> bool:
        return self.remaining is None and self.reset_at is None and self.retry_after_s is None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _within_horizon(seconds: float) -> bool:
    return math.isfinite(seconds) and seconds <= MAX_HINT_HORIZON_S


def _parse_retry_after(value: str | None, *, now: datetime) -> float | None:
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        seconds = float(candidate)
    except ValueError:
        try:
            moment = parsedate_to_datetime(candidate)
        except (TypeError, ValueError):
            return None
        if moment is None:
            return None
        seconds = (ensure_aware(moment) - now).total_seconds()
    if not _within_horizon(seconds):
        return None
    return max(0.0, seconds)


def _parse_reset(value: str | None, *, now: datetime) -> datetime | None:
    epoch = _parse_int(value)
    if epoch is None or epoch <= 0:
        return None
    try:
        moment = datetime.fromtimestamp(epoch, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
    if not _within_horizon((moment - now).total_seconds()):
        return None
    return moment


def hints_from_response(
    response: httpx.Response,
    *,
    now: datetime | None = None,
) -> RateLimitHints:
    """Read ``X-RateLimit-*`` and ``Retry-After`` headers from ``response``.

    Unparseable values, and reset times further away than
    ``MAX_HINT_HORIZON_S``, are ignored.
    """

    reference = now or now_utc()
    headers = response.headers
    remaining = _parse_int(headers.get("X-RateLimit-Remaining"))
    if remaining is not None and remaining < 0:
        remaining = None
    reset_at = _parse_reset(headers.get("X-RateLimit-Reset"), now=reference)
    retry_after_s = _parse_retry_after(headers.get("Retry-After"), now=reference)
    if reset_at is None and retry_after_s is not None:
        reset_at = reference + timedelta(seconds=retry_after_s)
    return RateLimitHints(remaining=remaining, reset_at=reset_at, retry_after_s=retry_after_s)
