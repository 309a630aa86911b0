"""
Key-value sync engine.

Makes remote-backed state synchronously available:

- Reads return the in-memory value at once (seeded from the local store)
  and schedule a background refresh when the key's last successful remote
  fetch is older than the TTL.
- Writes go to memory and the local store synchronously, are announced on
  the change bus, and are pushed to the remote store in the background.
- Writes from other processes sharing the local store arrive through the
  cross-process bridge and are applied without touching the remote store.
- If the remote store cannot be initialized, the engine keeps working as a
  pure local cache for the rest of the process lifetime.

Version stamps:
    Every local update stamps ``version + 1`` on the record it writes and
    pushes. The entry stays unconfirmed until the remote store accepts a
    push of that version. A fetched remote document that is not newer than
    the entry is discarded while the entry is unconfirmed, or when a local
    update landed while the fetch was in flight; otherwise the fetched
    value wins. Discarding on behalf of an unconfirmed entry whose push
    failed re-sends the local record.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .bridge import CrossProcessBridge
from .bus import ALL_KEYS, BusEvent, ChangeBus, ChangeKind, ChangeSource
from .config import KVSyncConfig
from .exceptions import KVSyncError
from .local.adapter import LocalStoreAdapter
from .local.file_storage import FileStorageArea
from .logging_utils import KVLoggerAdapter
from .remote.connection import RemoteConnection
from .serialization import RemoteDocument, StoredRecord

if TYPE_CHECKING:
    from .view import KVView

_logger = logging.getLogger(__name__)

Observer = Callable[[Any], None]


@dataclass
class Entry:
    """In-memory state for one key.

    Attributes:
        key: Cache key
        value: Current value (opaque to the engine)
        version: Version stamp of the current value
        last_remote_fetch_at: Clock reading of the last successful remote
            read, None if never fetched (or reset by a force refresh)
        last_failed_fetch_at: Clock reading of the last failed remote read
        loaded: A remote fetch attempt has completed at least once
        unconfirmed_version: Version of the newest local update the remote
            store has not yet accepted, None once a push of it succeeded
        seeded: The value came from a record or an update rather than a
            caller-supplied default
    """

    key: str
    value: Any = None
    version: int = 0
    last_remote_fetch_at: float | None = None
    last_failed_fetch_at: float | None = None
    loaded: bool = False
    unconfirmed_version: int | None = None
    seeded: bool = False

    fetch_task: asyncio.Task[bool] | None = field(default=None, repr=False)
    refetch_requested: bool = field(default=False, repr=False)
    push_task: asyncio.Task[None] | None = field(default=None, repr=False)
    pending_push: StoredRecord | None = field(default=None, repr=False)
    observers: list[Observer] = field(default_factory=list, repr=False)

    @property
    def push_outstanding(self) -> bool:
        return self.push_task is not None or self.pending_push is not None


class KVSyncEngine:
    """Orchestrates the in-memory, local and remote copies of every key.

    Example:
        >>> config = KVSyncConfig.from_environment()
        >>> async with KVSyncEngine.from_config(config) as engine:
        ...     profiles, loaded = engine.get("profiles", [])
        ...     engine.update("profiles", lambda old: [*(old or []), {"id": "p1"}])
    """

    def __init__(
        self,
        local: LocalStoreAdapter,
        remote: RemoteConnection | None = None,
        *,
        bus: ChangeBus | None = None,
        config: KVSyncConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the engine.

        Args:
            local: Adapter over the local durable store
            remote: Remote connection; None runs as a local-only cache
            bus: Change bus (a private one is created if omitted)
            config: Tuning values (TTL, backoff, push concurrency, origin id)
            clock: Monotonic clock used for staleness decisions
        """
        self.config = config or KVSyncConfig()
        self.local = local
        self.remote = remote or RemoteConnection()
        self.bus = bus or ChangeBus()
        self.origin_id = self.config.origin_id
        self._clock = clock

        self._entries: dict[str, Entry] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._push_slots = asyncio.Semaphore(self.config.max_concurrent_pushes)
        self._closed = False
        self.log = KVLoggerAdapter(_logger, {"origin": self.origin_id})

        self.bridge = CrossProcessBridge(local, self.bus, self.origin_id)
        self.bridge.start()
        self._unsubscribe_refresh = self.bus.subscribe(ALL_KEYS, self._on_force_refresh)

    @classmethod
    def from_config(cls, config: KVSyncConfig, bus: ChangeBus | None = None) -> KVSyncEngine:
        """Build an engine over a file-backed local store and the configured remote."""
        area = FileStorageArea(config.local_path, interval=config.watch_interval_seconds)
        local = LocalStoreAdapter(area, prefix=config.storage_prefix)
        return cls(local, RemoteConnection.from_config(config), bus=bus, config=config)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start remote initialization, the storage watcher and deferred pushes."""
        self._spawn(self.remote.ensure_available())
        await self.local.area.start()
        for entry in self._entries.values():
            if entry.pending_push is not None and entry.push_task is None:
                self._start_push(entry)

    async def flush(self) -> None:
        """Wait until every background fetch and push has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self, timeout: float | None = None) -> None:
        """Stop listening, give pending pushes a chance to land, close the remote.

        Args:
            timeout: Seconds to wait for outstanding work before cancelling it
                (defaults to the configured request timeout)
        """
        if self._closed:
            return
        self._closed = True
        self._unsubscribe_refresh()
        self.bridge.stop()
        await self.local.area.stop()

        pending = list(self._tasks)
        if pending:
            wait_for = self.config.request_timeout_seconds if timeout is None else timeout
            _, still_running = await asyncio.wait(pending, timeout=wait_for)
            for task in still_running:
                task.cancel()
            if still_running:
                self.log.warning(
                    f"Cancelled {len(still_running)} unfinished background tasks on close"
                )
                await asyncio.gather(*still_running, return_exceptions=True)

        await self.remote.close()

    async def __aenter__(self) -> KVSyncEngine:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def remote_available(self) -> bool | None:
        """True/False once remote initialization finished, None before."""
        return self.remote.available

    # =========================================================================
    # Consumer API
    # =========================================================================

    def get(self, key: str, default: Any = None) -> tuple[Any, bool]:
        """Return the current value of a key and whether it has been loaded.

        Never blocks: the value comes from memory (seeded from the local
        store, else ``default``). As a side effect a background refresh is
        scheduled if the key is stale.

        Returns:
            (value, is_loaded), where is_loaded means a remote fetch for the
            key has completed at least once in this process
        """
        entry = self._entry(key, default)
        self._maybe_refresh(entry)
        return entry.value, entry.loaded

    def update(self, key: str, value_or_updater: Any, default: Any = None) -> Any:
        """Set a key's value.

        Args:
            key: Cache key
            value_or_updater: New value, or a function from the latest value
                to the new value
            default: Seed value if the key has never been seen

        Returns:
            The new value
        """
        entry = self._entry(key, default)
        if callable(value_or_updater):
            new_value = value_or_updater(entry.value)
        else:
            new_value = value_or_updater

        entry.value = new_value
        entry.version += 1
        entry.seeded = True
        entry.unconfirmed_version = entry.version
        record = StoredRecord(value=new_value, version=entry.version, writer=self.origin_id)

        if self._persist(key, record):
            self.bus.publish(key, ChangeKind.CHANGED, ChangeSource.LOCAL)
        self._notify(entry)

        entry.pending_push = record
        self._schedule_push(entry)
        return new_value

    async def refresh(self, key: str, force: bool = False) -> bool:
        """Re-fetch a key from the remote store.

        Without ``force`` this is a no-op while the key is fresh. A refresh
        requested while one is in flight joins it; a forced one additionally
        queues a single follow-up fetch so the result is not older than the
        request.

        Returns:
            True if a remote fetch succeeded
        """
        if self._closed:
            return False

        entry = self._entry(key, None)
        if entry.fetch_task is not None:
            if force:
                entry.refetch_requested = True
            return await asyncio.shield(entry.fetch_task)

        if not force and not self._is_stale(entry):
            return False

        return await asyncio.shield(self._start_fetch(entry))

    def force_refresh_from_remote(self, key: str = ALL_KEYS) -> None:
        """Make every consumer of a key re-pull it from the remote store.

        Resets the key's fetch timestamp (every key for ``ALL_KEYS``) and
        broadcasts a force-refresh event, so the next access bypasses the
        staleness gate. Every engine on the bus, this one included, resets
        its entries when it hears the broadcast.
        """
        self.log.info("Force refresh requested", extra={"key": key})
        self.bus.publish(key, ChangeKind.FORCE_REFRESH)

    def watch(self, key: str, observer: Observer) -> Callable[[], None]:
        """Call ``observer(value)`` whenever the key's in-memory value changes.

        Returns:
            Function that removes the observer
        """
        entry = self._entry(key, None)
        entry.observers.append(observer)

        def unwatch() -> None:
            if observer in entry.observers:
                entry.observers.remove(observer)

        return unwatch

    def view(
        self,
        key: str,
        default: Any = None,
        on_change: Observer | None = None,
    ) -> KVView:
        """Open a consumer handle bound to one key."""
        from .view import KVView

        return KVView(self, key, default, on_change)

    def get_entry(self, key: str) -> Entry | None:
        """Return the Entry for a key, if it has been accessed."""
        return self._entries.get(key)

    def keys(self) -> list[str]:
        """Keys accessed in this process."""
        return list(self._entries)

    # =========================================================================
    # Entries
    # =========================================================================

    def _entry(self, key: str, default: Any) -> Entry:
        entry = self._entries.get(key)
        if entry is not None:
            if not entry.seeded and entry.value is None and default is not None:
                entry.value = default
            return entry

        record = self.local.read(key)
        if record is not None:
            entry = Entry(key=key, value=record.value, version=record.version, seeded=True)
        else:
            entry = Entry(key=key, value=default)

        self._entries[key] = entry
        self.bus.subscribe(key, self._on_bus_event)
        return entry

    def _persist(self, key: str, record: StoredRecord) -> bool:
        try:
            self.local.write(key, record)
        except KVSyncError as e:
            self.log.error(
                f"Failed to persist {key!r} to local store: {e.message}",
                extra={"key": key, **e.details},
            )
            return False
        return True

    def _notify(self, entry: Entry) -> None:
        for observer in list(entry.observers):
            try:
                observer(entry.value)
            except Exception:
                self.log.exception("Observer failed", extra={"key": entry.key})

    def _on_force_refresh(self, event: BusEvent) -> None:
        # Keyed and broadcast force refreshes both reach the ALL_KEYS subscription
        if event.key == ALL_KEYS:
            for entry in self._entries.values():
                self._reset_fetch_state(entry)
        elif event.key in self._entries:
            self._reset_fetch_state(self._entries[event.key])

    def _on_bus_event(self, event: BusEvent) -> None:
        if event.kind != ChangeKind.CHANGED:
            return
        if event.source != ChangeSource.CROSS_PROCESS or event.record is None:
            return

        entry = self._entries.get(event.key)
        if entry is None:
            return

        record: StoredRecord = event.record
        entry.value = record.value
        entry.version = record.version
        entry.seeded = True
        if entry.unconfirmed_version is not None and record.version > entry.unconfirmed_version:
            entry.unconfirmed_version = None
        self.log.debug(
            "Applied cross-process change",
            extra={"key": entry.key, "version": record.version},
        )
        self._notify(entry)

    @staticmethod
    def _reset_fetch_state(entry: Entry) -> None:
        entry.last_remote_fetch_at = None
        entry.last_failed_fetch_at = None

    # =========================================================================
    # Refresh
    # =========================================================================

    def _is_stale(self, entry: Entry) -> bool:
        now = self._clock()
        if (
            entry.last_remote_fetch_at is not None
            and now - entry.last_remote_fetch_at < self.config.ttl_seconds
        ):
            return False
        return not (
            entry.last_failed_fetch_at is not None
            and now - entry.last_failed_fetch_at < self.config.failure_backoff_seconds
        )

    def _maybe_refresh(self, entry: Entry) -> None:
        if self._closed:
            return
        if self.remote.available is False:
            entry.loaded = True
            return
        if entry.fetch_task is not None or not self._is_stale(entry):
            return
        if not _has_running_loop():
            return
        self._start_fetch(entry)

    def _start_fetch(self, entry: Entry) -> asyncio.Task[bool]:
        task = self._spawn(self._run_fetch(entry))
        entry.fetch_task = task

        def clear(done: asyncio.Task[bool]) -> None:
            if entry.fetch_task is done:
                entry.fetch_task = None

        task.add_done_callback(clear)
        return task

    async def _run_fetch(self, entry: Entry) -> bool:
        while True:
            entry.refetch_requested = False
            fetched = await self._fetch_once(entry)
            if not entry.refetch_requested:
                return fetched

    async def _fetch_once(self, entry: Entry) -> bool:
        if not await self.remote.ensure_available():
            entry.loaded = True
            return False

        store = self.remote.store
        assert store is not None
        version_at_start = entry.version

        try:
            doc = await store.get(entry.key)
        except Exception as e:
            entry.last_failed_fetch_at = self._clock()
            entry.loaded = True
            self.log.warning(
                f"Failed to load {entry.key!r} from remote: {e}",
                extra={"key": entry.key},
            )
            return False

        entry.last_remote_fetch_at = self._clock()
        entry.last_failed_fetch_at = None
        entry.loaded = True

        remote = RemoteDocument.from_dict(doc)
        if remote is None:
            self.log.debug("No remote data", extra={"key": entry.key})
            self._resend_unconfirmed(entry)
            return True

        if remote.version <= entry.version and (
            entry.unconfirmed_version is not None or entry.version != version_at_start
        ):
            self.log.debug(
                "Keeping newer local value over remote",
                extra={
                    "key": entry.key,
                    "local_version": entry.version,
                    "remote_version": remote.version,
                },
            )
            self._resend_unconfirmed(entry)
            return True

        if remote.version == entry.version and remote.data == entry.value:
            entry.seeded = True
            return True

        entry.value = remote.data
        entry.version = remote.version
        entry.seeded = True
        entry.unconfirmed_version = None
        self._persist(
            entry.key,
            StoredRecord(value=remote.data, version=remote.version, writer=self.origin_id),
        )
        self.log.debug(
            "Applied remote value",
            extra={"key": entry.key, "version": remote.version},
        )
        self._notify(entry)
        return True

    # =========================================================================
    # Push
    # =========================================================================

    def _schedule_push(self, entry: Entry) -> None:
        if self.remote.available is False:
            entry.pending_push = None
            return
        if self._closed:
            self.log.debug("Engine closed, not pushing", extra={"key": entry.key})
            return
        if entry.push_task is not None:
            # The running push picks up the newest pending record
            return
        if not _has_running_loop():
            self.log.debug(
                "No running event loop, deferring remote push",
                extra={"key": entry.key},
            )
            return
        self._start_push(entry)

    def _start_push(self, entry: Entry) -> None:
        task = self._spawn(self._run_push(entry))
        entry.push_task = task

        def clear(done: asyncio.Task[None]) -> None:
            if entry.push_task is done:
                entry.push_task = None

        task.add_done_callback(clear)

    def _resend_unconfirmed(self, entry: Entry) -> None:
        """Queue the current value again if its last push never landed."""
        if entry.unconfirmed_version is None or entry.push_outstanding:
            return
        entry.pending_push = StoredRecord(
            value=entry.value, version=entry.version, writer=self.origin_id
        )
        self.log.info(
            "Re-sending unconfirmed local value",
            extra={"key": entry.key, "version": entry.version},
        )
        self._schedule_push(entry)

    async def _run_push(self, entry: Entry) -> None:
        while entry.pending_push is not None:
            record = entry.pending_push
            entry.pending_push = None
            async with self._push_slots:
                pushed = await self._push_record(entry.key, record)
            if not pushed:
                # The next fetch re-sends the current value
                entry.pending_push = None
                return
            if (
                entry.unconfirmed_version is not None
                and record.version >= entry.unconfirmed_version
            ):
                entry.unconfirmed_version = None

    async def _push_record(self, key: str, record: StoredRecord) -> bool:
        if not await self.remote.ensure_available():
            self.log.debug("Remote unavailable, skipping push", extra={"key": key})
            return False

        store = self.remote.store
        assert store is not None
        document = RemoteDocument(data=record.value, version=record.version).to_dict()
        try:
            await store.set(key, document)
        except Exception as e:
            self.log.warning(
                f"Failed to persist {key!r} to remote: {e}",
                extra={"key": key, "version": record.version},
            )
            return False
        self.log.debug("Pushed to remote", extra={"key": key, "version": record.version})
        return True

    # =========================================================================
    # Tasks
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.log.error("Background task failed", exc_info=error)


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
