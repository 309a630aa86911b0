"""
Typed adapter over a local storage area.

Maps cache keys to prefixed storage keys and StoredRecord envelopes to
serialized strings. Corrupted records read as absent so the cache heals
itself on the next remote refresh instead of crashing its consumers.
"""

from __future__ import annotations

import logging

from ..exceptions import SerializationError
from ..serialization import StoredRecord, decode_record, encode_record
from .base import StorageArea

logger = logging.getLogger(__name__)


class LocalStoreAdapter:
    """Record-level access to the local durable store.

    Example:
        >>> adapter = LocalStoreAdapter(MemoryStorageArea(), prefix="shaadi_partner_")
        >>> adapter.write("profiles", StoredRecord(value=[], version=1))
        >>> adapter.read("profiles").value
        []
    """

    def __init__(self, area: StorageArea, prefix: str = "") -> None:
        self.area = area
        self.prefix = prefix

    def storage_key(self, key: str) -> str:
        """Prefixed key as stored in the storage area."""
        return f"{self.prefix}{key}"

    def cache_key(self, storage_key: str) -> str | None:
        """Reverse of storage_key; None for keys outside this prefix."""
        if not storage_key.startswith(self.prefix):
            return None
        return storage_key[len(self.prefix) :]

    def read(self, key: str) -> StoredRecord | None:
        """Read a record, treating missing or corrupt payloads as absent."""
        raw = self.area.get_item(self.storage_key(key))
        if raw is None:
            return None
        return self.parse(key, raw)

    def parse(self, key: str, raw: str) -> StoredRecord | None:
        """Decode a serialized record, or None if it is corrupt."""
        try:
            return decode_record(key, raw)
        except SerializationError as e:
            logger.warning(
                f"Discarding unreadable local value for {key!r}",
                extra={"key": key, "cause": e.details.get("cause")},
            )
            return None

    def write(self, key: str, record: StoredRecord) -> None:
        """Persist a record.

        Raises:
            SerializationError: If the value cannot be serialized
            LocalStoreError: If the storage area rejects the write
        """
        self.area.set_item(self.storage_key(key), encode_record(key, record))

    def remove(self, key: str) -> None:
        """Remove a record.

        Raises:
            LocalStoreError: If the storage area rejects the removal
        """
        self.area.remove_item(self.storage_key(key))

    def keys(self) -> list[str]:
        """Cache keys stored under this adapter's prefix."""
        return [k for k in (self.cache_key(s) for s in self.area.keys()) if k is not None]
