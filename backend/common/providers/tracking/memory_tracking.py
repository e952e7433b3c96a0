import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from .interface import DwellTrackerInterface, KeySetInterface


class MemoryDwellTracker(DwellTrackerInterface):
    """In-process dwell tracker. One instance per owning component."""

    def __init__(self):
        self._first_seen: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def first_seen(self, key: str) -> Optional[datetime]:
        with self._lock:
            return self._first_seen.get(key)

    def start(self, key: str, seen_at: datetime) -> datetime:
        with self._lock:
            return self._first_seen.setdefault(key, seen_at)

    def stop(self, key: str) -> bool:
        with self._lock:
            return self._first_seen.pop(key, None) is not None

    def retain_only(self, keys: Iterable[str]) -> List[str]:
        keep = set(keys)
        with self._lock:
            dropped = [key for key in self._first_seen if key not in keep]
            for key in dropped:
                del self._first_seen[key]
        return dropped

    def clear(self) -> None:
        with self._lock:
            self._first_seen.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._first_seen)


class MemoryKeySet(KeySetInterface):
    """In-process key set. One instance per owning component."""

    def __init__(self):
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    def add_if_absent(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def discard(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def size(self) -> int:
        with self._lock:
            return len(self._keys)
