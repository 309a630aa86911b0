"""
In-memory local storage shared by several attached areas.

Models one origin with several open windows in a single process: every
area attached to the same MemoryOrigin sees the same data, and a write
through one area fires StorageEvents in all the others. Useful for
ephemeral caches and for exercising cross-process behaviour in tests.
"""

from __future__ import annotations

from .base import StorageArea, StorageEvent


class MemoryOrigin:
    """Shared backing data for a group of MemoryStorageArea instances."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.areas: list[MemoryStorageArea] = []

    def attach(self) -> MemoryStorageArea:
        """Open a new area (window) on this origin."""
        return MemoryStorageArea(self)

    def _broadcast(self, source: MemoryStorageArea, event: StorageEvent) -> None:
        for area in list(self.areas):
            if area is not source:
                area._dispatch(event)


class MemoryStorageArea(StorageArea):
    """Storage area backed by a MemoryOrigin."""

    def __init__(self, origin: MemoryOrigin | None = None) -> None:
        super().__init__()
        self.origin = origin or MemoryOrigin()
        self.origin.areas.append(self)

    def get_item(self, key: str) -> str | None:
        return self.origin.data.get(key)

    def set_item(self, key: str, value: str) -> None:
        old_value = self.origin.data.get(key)
        self.origin.data[key] = value
        if old_value != value:
            self.origin._broadcast(self, StorageEvent(key, value, old_value))

    def remove_item(self, key: str) -> None:
        if key not in self.origin.data:
            return
        old_value = self.origin.data.pop(key)
        self.origin._broadcast(self, StorageEvent(key, None, old_value))

    def keys(self) -> list[str]:
        return sorted(self.origin.data)

    def detach(self) -> None:
        """Close this area; it stops receiving events."""
        if self in self.origin.areas:
            self.origin.areas.remove(self)
