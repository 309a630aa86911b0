"""
Cross-process bridge.

Re-publishes another process's local-store writes on this process's change
bus. The bridge only ever reads the local store; the process that made the
original write has already pushed it to the remote store.
"""

from __future__ import annotations

from collections.abc import Callable

from .bus import ChangeBus, ChangeKind, ChangeSource
from .local.adapter import LocalStoreAdapter
from .local.base import StorageEvent
from .logging_utils import get_kv_logger

logger = get_kv_logger("bridge")


class CrossProcessBridge:
    """Connects a storage area's change signal to a ChangeBus.

    Example:
        >>> bridge = CrossProcessBridge(adapter, bus, origin_id="tab-1")
        >>> bridge.start()
        >>> # another process writes shaadi_partner_profiles ...
        >>> bridge.stop()
    """

    def __init__(self, adapter: LocalStoreAdapter, bus: ChangeBus, origin_id: str) -> None:
        """Initialize the bridge.

        Args:
            adapter: Local store adapter (for prefix mapping and parsing)
            bus: Bus to publish cross-process changes on
            origin_id: Writer id of this process; records carrying it are ignored
        """
        self.adapter = adapter
        self.bus = bus
        self.origin_id = origin_id
        self._remove_listener: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._remove_listener is not None

    def start(self) -> None:
        """Begin listening to the storage area."""
        if self._remove_listener is None:
            self._remove_listener = self.adapter.area.add_listener(self.handle_storage_event)

    def stop(self) -> None:
        """Stop listening to the storage area."""
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    def handle_storage_event(self, event: StorageEvent) -> bool:
        """Translate one storage event into a bus event.

        Returns:
            True if a bus event was published
        """
        key = self.adapter.cache_key(event.key)
        if key is None:
            return False

        # Removals carry no value to apply
        if event.new_value is None:
            logger.debug(f"Ignoring cross-process removal of {key!r}")
            return False

        record = self.adapter.parse(key, event.new_value)
        if record is None:
            return False

        if record.writer == self.origin_id:
            return False

        logger.debug(
            "Cross-process change received",
            extra={"key": key, "version": record.version, "writer": record.writer},
        )
        self.bus.publish(
            key,
            kind=ChangeKind.CHANGED,
            source=ChangeSource.CROSS_PROCESS,
            record=record,
        )
        return True
