"""
Abstract local storage area interface.

A storage area is a synchronous string-to-string store shared by every
process of one origin, plus a "storage changed" signal. As with the
browser's storage event, the signal fires in the *other* areas attached to
the origin, never in the one that performed the write.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageEvent:
    """Another process changed a key in the shared store.

    Attributes:
        key: Raw (prefixed) storage key
        new_value: New serialized value, or None if the key was removed
        old_value: Previously observed serialized value, if known
    """

    key: str
    new_value: str | None
    old_value: str | None = None


StorageListener = Callable[[StorageEvent], None]


class StorageArea(ABC):
    """Synchronous key-value storage shared across processes."""

    def __init__(self) -> None:
        self._listeners: list[StorageListener] = []

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the stored string for a key, or None if absent."""
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a string under a key.

        Raises:
            LocalStoreError: If the write fails (e.g. disk full)
        """
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove a key. Removing an absent key is a no-op."""
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        """List stored keys."""
        ...

    async def start(self) -> None:
        """Begin delivering change signals (no-op by default)."""

    async def stop(self) -> None:
        """Stop delivering change signals (no-op by default)."""

    def add_listener(self, listener: StorageListener) -> Callable[[], None]:
        """Register a callback for changes made by other processes.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _dispatch(self, event: StorageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Storage listener failed", extra={"key": event.key})
