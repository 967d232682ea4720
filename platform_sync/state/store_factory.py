"""Factory helpers for wiring the shared state store."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from platform_sync.config import StateStoreConfig
from platform_sync.errors import FatalConfigurationError
from platform_sync.logging import get_logger

from .store import StateStore
from .store_memory import MemoryStateStore
from .store_redis import RedisStateStore

__all__ = ["get_state_store"]

logger = get_logger(__name__)


def get_state_store(
    config: StateStoreConfig,
    *,
    now_fn: Callable[[], datetime] | None = None,
) -> StateStore:
    if config.backend == "redis":
        if not config.redis_url:
            raise FatalConfigurationError("STATE_STORE_BACKEND=redis requires REDIS_URL")
        logger.info(
            "Using redis state store",
            extra={"event": "state_store.selected", "backend": "redis"},
        )
        return RedisStateStore.from_url(config.redis_url, key_prefix=config.key_prefix)
    logger.info(
        "Using in-memory state store; rate limits are not shared across processes",
        extra={"event": "state_store.selected", "backend": "memory"},
    )
    return MemoryStateStore(now_fn=now_fn)
