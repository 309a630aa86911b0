"""
File-backed local storage area.

Stores each key as one file in a directory, which makes the store durable
across restarts and shareable by every process pointed at the same path.

Directory structure:
    {base_path}/
      {percent-encoded key}.json

Writes are atomic (temp file + rename). The change signal is produced by
polling file stats: ``poll_changes()`` compares the directory against the
last observed snapshot and dispatches a StorageEvent per changed key; the
background watcher simply calls it every ``interval`` seconds. This
process's own writes update the snapshot, so they never come back as
events.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import quote, unquote

from ..exceptions import LocalStoreError
from .base import StorageArea, StorageEvent

logger = logging.getLogger(__name__)

_SUFFIX = ".json"
_TEMP_PREFIX = ".tmp_"


class FileStorageArea(StorageArea):
    """Directory of JSON files acting as a shared key-value store."""

    def __init__(self, base_path: Path, interval: float = 0.5) -> None:
        """Initialize the storage area.

        Args:
            base_path: Directory holding one file per key
            interval: Seconds between change polls once started
        """
        super().__init__()
        self.base_path = Path(base_path)
        self.interval = interval
        # filename -> (mtime_ns, size, content) as last seen or written here
        self._snapshot: dict[str, tuple[int, int, str | None]] = {}
        self._watch_task: asyncio.Task[None] | None = None

        self.base_path.mkdir(parents=True, exist_ok=True)
        self._snapshot = self._scan(read_content=True)

    def _path(self, key: str) -> Path:
        return self.base_path / f"{quote(key, safe='')}{_SUFFIX}"

    @staticmethod
    def _key_for(filename: str) -> str:
        return unquote(filename[: -len(_SUFFIX)])

    def get_item(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read local key {key!r}: {e}")
            return None

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.base_path,
                prefix=_TEMP_PREFIX,
                suffix=_SUFFIX,
            )
        except OSError as e:
            raise LocalStoreError("set_item", key, e) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.remove(temp_path)
            raise LocalStoreError("set_item", key, e) from e

        self._remember(path.name, value)

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LocalStoreError("remove_item", key, e) from e
        self._snapshot.pop(path.name, None)

    def keys(self) -> list[str]:
        return sorted(self._key_for(name) for name in self._scan(read_content=False))

    def _remember(self, filename: str, content: str) -> None:
        try:
            stat = (self.base_path / filename).stat()
        except OSError:
            self._snapshot.pop(filename, None)
            return
        self._snapshot[filename] = (stat.st_mtime_ns, stat.st_size, content)

    def _scan(self, read_content: bool) -> dict[str, tuple[int, int, str | None]]:
        entries: dict[str, tuple[int, int, str | None]] = {}
        try:
            iterator = os.scandir(self.base_path)
        except FileNotFoundError:
            return entries

        with iterator:
            for item in iterator:
                name = item.name
                if not name.endswith(_SUFFIX) or name.startswith(_TEMP_PREFIX):
                    continue
                try:
                    stat = item.stat()
                except FileNotFoundError:
                    continue
                content = None
                if read_content:
                    try:
                        content = Path(item.path).read_text(encoding="utf-8")
                    except (OSError, UnicodeDecodeError):
                        continue
                entries[name] = (stat.st_mtime_ns, stat.st_size, content)
        return entries

    # =========================================================================
    # Change detection
    # =========================================================================

    def poll_changes(self) -> list[StorageEvent]:
        """Detect writes made by other processes since the last poll.

        Dispatches each event to the registered listeners, in key order.

        Returns:
            The dispatched events
        """
        current = self._scan(read_content=False)
        events: list[StorageEvent] = []

        for name in sorted(current):
            mtime_ns, size, _ = current[name]
            previous = self._snapshot.get(name)
            if previous is not None and previous[0] == mtime_ns and previous[1] == size:
                continue

            try:
                content = (self.base_path / name).read_text(encoding="utf-8")
            except FileNotFoundError:
                continue
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Failed to read changed local file {name}: {e}")
                continue

            old_content = previous[2] if previous else None
            self._snapshot[name] = (mtime_ns, size, content)
            if previous is not None and old_content == content:
                continue
            events.append(StorageEvent(self._key_for(name), content, old_content))

        for name in sorted(set(self._snapshot) - set(current)):
            _, _, old_content = self._snapshot.pop(name)
            events.append(StorageEvent(self._key_for(name), None, old_content))

        for event in events:
            self._dispatch(event)
        return events

    async def start(self) -> None:
        """Start the background polling watcher."""
        if self._watch_task is not None and not self._watch_task.done():
            return
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.debug(
            "Local storage watcher started",
            extra={"path": str(self.base_path), "interval": self.interval},
        )

    async def stop(self) -> None:
        """Stop the background polling watcher."""
        task = self._watch_task
        self._watch_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _watch_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.poll_changes()
            except Exception:
                logger.exception("Local storage poll failed", extra={"path": str(self.base_path)})
