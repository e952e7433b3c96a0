from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional


class DwellTrackerInterface(ABC):
    """Records when a key was first seen in an undesirable state."""

    @abstractmethod
    def first_seen(self, key: str) -> Optional[datetime]:
        """Return the first-detection time for key, or None if untracked."""
        pass

    @abstractmethod
    def start(self, key: str, seen_at: datetime) -> datetime:
        """
        Start tracking key unless it is already tracked.

        Returns:
            The first-detection time in effect after the call
        """
        pass

    @abstractmethod
    def stop(self, key: str) -> bool:
        """Stop tracking key. Returns True if it was tracked."""
        pass

    @abstractmethod
    def retain_only(self, keys: Iterable[str]) -> List[str]:
        """Drop every tracked key not in keys. Returns the dropped keys."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass


class KeySetInterface(ABC):
    """Set of keys used to collapse duplicate requests."""

    @abstractmethod
    def add_if_absent(self, key: str) -> bool:
        """Add key. Returns False if it was already present."""
        pass

    @abstractmethod
    def discard(self, key: str) -> None:
        pass

    @abstractmethod
    def contains(self, key: str) -> bool:
        pass

    @abstractmethod
    def size(self) -> int:
        pass
