"""Redis backed state store shared by orchestrator replicas."""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from platform_sync.errors import StateStoreError
from platform_sync.logging import get_logger

from .store import StateStore

__all__ = ["RedisStateStore"]

logger = get_logger(__name__)


class RedisStateStore(StateStore):
    """:class:`StateStore` on top of a ``redis.asyncio`` client."""

    def __init__(self, client: aioredis.Redis, *, key_prefix: str = "") -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "", **kwargs: Any) -> RedisStateStore:
        kwargs.setdefault("decode_responses", True)
        pool = aioredis.ConnectionPool.from_url(url, **kwargs)
        return cls(aioredis.Redis(connection_pool=pool), key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(self._key(key))
        except RedisError as exc:
            raise StateStoreError(f"Failed to read state: {exc}", key=key) from exc
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def set(self, key: str, value: str, *, ttl_s: float) -> None:
        if ttl_s <= 0:
            raise ValueError("State TTL must be positive")
        try:
            await self._client.set(self._key(key), value, ex=max(1, int(round(ttl_s))))
        except RedisError as exc:
            raise StateStoreError(f"Failed to write state: {exc}", key=key) from exc

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._client.delete(self._key(key))
        except RedisError as exc:
            raise StateStoreError(f"Failed to delete state: {exc}", key=key) from exc
        return bool(removed)

    async def ttl(self, key: str) -> float | None:
        try:
            remaining = await self._client.ttl(self._key(key))
        except RedisError as exc:
            raise StateStoreError(f"Failed to read state TTL: {exc}", key=key) from exc
        # -2: missing key, -1: key without expiry
        if remaining is None or remaining == -2:
            return None
        if remaining < 0:
            return None
        return float(remaining)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning(
                "Redis state store ping failed",
                extra={"event": "state_store.ping_failed", "error": str(exc)},
            )
            return False

    async def close(self) -> None:
        await self._client.aclose()
