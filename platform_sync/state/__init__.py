"""Shared key-value state used by the resilience components."""

from __future__ import annotations

from .store import StateStore, make_key
from .store_factory import get_state_store
from .store_memory import MemoryStateStore
from .store_redis import RedisStateStore

__all__ = [
    "MemoryStateStore",
    "RedisStateStore",
    "StateStore",
    "get_state_store",
    "make_key",
]
