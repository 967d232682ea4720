"""Registry mapping platforms to their worker implementation."""

from __future__ import annotations

from collections.abc import Iterable
from threading import Lock

from platform_sync.errors import FatalConfigurationError
from platform_sync.logging import get_logger

from .contracts import Platform, PlatformWorker

__all__ = ["WorkerRegistry"]

logger = get_logger(__name__)


class WorkerRegistry:
    """Holds at most one worker per platform."""

    def __init__(self, workers: Iterable[PlatformWorker] = ()) -> None:
        self._workers: dict[Platform, PlatformWorker] = {}
        self._lock = Lock()
        for worker in workers:
            self.register(worker)

    def register(self, worker: PlatformWorker) -> bool:
        """Insert or replace the worker for its platform; return ``True`` on replace."""

        platform = Platform.parse(worker.platform())
        with self._lock:
            replaced = platform in self._workers
            self._workers[platform] = worker
        logger.info(
            "Registered platform worker",
            extra={
                "event": "worker.registered",
                "platform": platform.value,
                "replaced": replaced,
            },
        )
        return replaced

    def get(self, platform: Platform | str) -> PlatformWorker | None:
        try:
            key = Platform.parse(platform)
        except ValueError:
            return None
        with self._lock:
            return self._workers.get(key)

    def require(self, platform: Platform | str) -> PlatformWorker:
        worker = self.get(platform)
        if worker is None:
            raise FatalConfigurationError(
                f"No worker registered for platform {platform!s}",
                provider=str(getattr(platform, "value", platform)),
            )
        return worker

    def platforms(self) -> list[Platform]:
        with self._lock:
            return list(self._workers)

    def items(self) -> list[tuple[Platform, PlatformWorker]]:
        with self._lock:
            return list(self._workers.items())

    def __contains__(self, platform: object) -> bool:
        if not isinstance(platform, (Platform, str)):
            return False
        return self.get(platform) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._workers)
