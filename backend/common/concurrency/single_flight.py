import threading
from contextlib import contextmanager
from typing import Iterator

from common.core.telemetry import get_logger

logger = get_logger(__name__)


class SingleFlightGuard:
    """
    At most one in-flight run of a recurring operation.

    A run that finds the guard taken is skipped, not queued. The guard is a
    non-blocking lock acquire, so it holds across awaits in a coroutine and
    across worker threads alike.

    Usage:
        with guard.attempt() as acquired:
            if not acquired:
                return
            ...
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def attempt(self) -> Iterator[bool]:
        acquired = self.try_acquire()
        if not acquired:
            logger.debug(f"{self.name} is already running, skipping this run")
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
