"""Structured logging helpers for orchestrator components."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from platform_sync.logging_events import log_event


def format_datetime(value: datetime | None) -> str | None:
    """Return an ISO formatted timestamp for ``value`` if present."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.isoformat()
    return value.astimezone(UTC).isoformat()


def emit_dispatch_event(
    logger: Any,
    *,
    run_id: str,
    platform: str,
    sync_type: str,
    priority: str,
    batch_id: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "run_id": run_id,
        "platform": platform,
        "sync_type": sync_type,
        "priority": priority,
        "status": "running",
    }
    if batch_id is not None:
        payload["batch_id"] = batch_id
    _emit_event(logger, "orchestrator.dispatch", payload)


def emit_complete_event(
    logger: Any,
    *,
    run_id: str,
    platform: str,
    status: str,
    duration_ms: int,
    error: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    payload: dict[str, Any] = {
        "run_id": run_id,
        "platform": platform,
        "status": status,
        "duration_ms": duration_ms,
    }
    if error is not None:
        payload["error"] = error
    if meta:
        payload["meta"] = meta
    _emit_event(logger, "orchestrator.complete", payload)


def emit_cancel_event(logger: Any, *, run_id: str, platform: str) -> None:
    _emit_event(
        logger,
        "orchestrator.cancel",
        {"run_id": run_id, "platform": platform, "status": "cancelled"},
    )


def emit_dependency_event(
    logger: Any,
    *,
    dependency: str,
    operation: str,
    status: str,
    duration_ms: int,
    error: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "component": "orchestrator",
        "dependency": dependency,
        "operation": operation,
        "status": status,
        "duration_ms": duration_ms,
    }
    if error is not None:
        payload["error"] = error
    _emit_event(logger, "api.dependency", payload)


def _emit_event(logger: Any, event_name: str, payload: dict[str, Any]) -> None:
    log_event(logger, event_name, **payload)


__all__ = [
    "emit_cancel_event",
    "emit_complete_event",
    "emit_dependency_event",
    "emit_dispatch_event",
    "format_datetime",
]
