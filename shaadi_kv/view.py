"""
Consumer handle bound to one key.

A view is what a screen or component holds while it displays a key: the
current value, a setter, an explicit refresh, and the loaded flag. It
re-pulls on force-refresh broadcasts and reports value changes to an
optional callback. Close it when the consumer goes away so the bus does not
accumulate dead subscriptions.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .bus import BusEvent, ChangeKind

if TYPE_CHECKING:
    from .engine import KVSyncEngine


class KVView:
    """Live handle on one cache key.

    Example:
        >>> with engine.view("profiles", [], on_change=render) as profiles:
        ...     profiles.set(lambda old: [*old, new_profile])
        ...     print(len(profiles.value), profiles.is_loaded)
    """

    def __init__(
        self,
        engine: KVSyncEngine,
        key: str,
        default: Any = None,
        on_change: Callable[[Any], None] | None = None,
    ) -> None:
        self.engine = engine
        self.key = key
        self.default = default
        self.on_change = on_change

        engine.get(key, default)
        self._unwatch: Callable[[], None] | None = engine.watch(key, self._handle_value)
        self._unsubscribe: Callable[[], None] | None = engine.bus.subscribe(
            key, self._handle_bus_event
        )

    @property
    def value(self) -> Any:
        """Current value; reading it schedules a refresh if the key is stale."""
        return self.engine.get(self.key, self.default)[0]

    @property
    def is_loaded(self) -> bool:
        return self.engine.get(self.key, self.default)[1]

    @property
    def closed(self) -> bool:
        return self._unwatch is None

    def set(self, value_or_updater: Any) -> Any:
        """Update the key (literal value or updater function)."""
        return self.engine.update(self.key, value_or_updater, default=self.default)

    async def refresh(self) -> bool:
        """Force a remote re-fetch of the key."""
        return await self.engine.refresh(self.key, force=True)

    def close(self) -> None:
        """Stop receiving notifications."""
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_value(self, value: Any) -> None:
        if self.on_change is not None:
            self.on_change(value)

    def _handle_bus_event(self, event: BusEvent) -> None:
        if event.kind == ChangeKind.FORCE_REFRESH:
            # Re-read right away so the stale gate triggers the fetch now
            self.engine.get(self.key, self.default)

    def __enter__(self) -> KVView:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"KVView(key={self.key!r}, closed={self.closed})"
