"""
In-process change notification bus.

Independent consumers of the same key learn about updates without polling
each other. Delivery is synchronous and keyed by exact string match; the
only wildcard is ``ALL_KEYS``, which is reserved for force-refresh
broadcasts and reaches every subscriber.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

ALL_KEYS = "*"


class ChangeKind(Enum):
    """What happened to a key."""

    CHANGED = "changed"
    FORCE_REFRESH = "force_refresh"


class ChangeSource(Enum):
    """Where a change originated."""

    LOCAL = "local"  # update() in this process
    CROSS_PROCESS = "cross_process"  # another process wrote the shared local store


@dataclass(frozen=True)
class BusEvent:
    """A notification delivered to subscribers."""

    key: str
    kind: ChangeKind = ChangeKind.CHANGED
    source: ChangeSource = ChangeSource.LOCAL
    record: Any = None  # StoredRecord for cross-process changes


Subscriber = Callable[[BusEvent], None]


class ChangeBus:
    """Process-wide publish/subscribe channel keyed by cache keys.

    Example:
        >>> bus = ChangeBus()
        >>> unsubscribe = bus.subscribe("profiles", lambda e: print(e.kind))
        >>> bus.publish("profiles")
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Register interest in a key.

        Args:
            key: Key to watch (``ALL_KEYS`` receives only broadcasts)
            callback: Called synchronously with each BusEvent

        Returns:
            Idempotent function that cancels the subscription
        """
        self._subscribers.setdefault(key, []).append(callback)
        cancelled = False

        def unsubscribe() -> None:
            nonlocal cancelled
            if cancelled:
                return
            cancelled = True
            callbacks = self._subscribers.get(key)
            if callbacks is None:
                return
            try:
                callbacks.remove(callback)
            except ValueError:
                pass
            if not callbacks:
                del self._subscribers[key]

        return unsubscribe

    def publish(
        self,
        key: str,
        kind: ChangeKind = ChangeKind.CHANGED,
        source: ChangeSource = ChangeSource.LOCAL,
        record: Any = None,
    ) -> int:
        """Notify subscribers of a key.

        A publish to ``ALL_KEYS`` is delivered to every subscriber of every
        key; it is only valid for force-refresh broadcasts. ``ALL_KEYS``
        subscribers hear a force refresh before the per-key subscribers do.

        Returns:
            Number of callbacks invoked
        """
        if key == ALL_KEYS and kind != ChangeKind.FORCE_REFRESH:
            raise ValueError("Only force-refresh events may be broadcast to all keys")

        event = BusEvent(key=key, kind=kind, source=source, record=record)

        targets: list[Subscriber] = []
        if kind == ChangeKind.FORCE_REFRESH:
            targets.extend(self._subscribers.get(ALL_KEYS, ()))
        if key == ALL_KEYS:
            for subscribed_key, callbacks in self._subscribers.items():
                if subscribed_key != ALL_KEYS:
                    targets.extend(callbacks)
        else:
            targets.extend(self._subscribers.get(key, ()))

        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Bus subscriber failed",
                    extra={"key": key, "kind": kind.value},
                )
        return len(targets)

    def subscriber_count(self, key: str | None = None) -> int:
        """Count active subscriptions for a key, or for all keys."""
        if key is not None:
            return len(self._subscribers.get(key, ()))
        return sum(len(callbacks) for callbacks in self._subscribers.values())
