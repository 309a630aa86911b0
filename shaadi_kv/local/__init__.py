"""
Local durable store.

Synchronous key-value storage scoped to one origin and shared by every
process of that origin, plus the cross-process "storage changed" signal.
"""

from .adapter import LocalStoreAdapter
from .base import StorageArea, StorageEvent, StorageListener
from .file_storage import FileStorageArea
from .memory import MemoryOrigin, MemoryStorageArea

__all__ = [
    "StorageArea",
    "StorageEvent",
    "StorageListener",
    "FileStorageArea",
    "MemoryOrigin",
    "MemoryStorageArea",
    "LocalStoreAdapter",
]
