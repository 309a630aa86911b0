"""
Shaadi Partner KV

Key-value synchronization cache behind the matchmaking application's shared
state (profiles, users, messages, settings).

Provides:
- Synchronous reads served from memory, seeded from a durable local store
- TTL-gated background refresh from a remote document store
- Fire-and-forget remote pushes with local-first writes
- Cross-process convergence through the shared local store
- Local-only operation when the remote store is unreachable

Usage:

    >>> from shaadi_kv import KVSyncConfig, KVSyncEngine
    >>> config = KVSyncConfig.from_environment()
    >>> async with KVSyncEngine.from_config(config) as engine:
    ...     profiles, loaded = engine.get("profiles", [])
    ...     engine.update("profiles", lambda old: [*(old or []), {"id": "p1"}])
    ...     await engine.refresh("profiles", force=True)

Remote Selection:

    # KV API backend (holds the Cosmos DB key server-side)
    KVSyncConfig(remote_mode=RemoteMode.API, api_base_url="https://...")

    # Direct Cosmos DB
    KVSyncConfig(remote_mode=RemoteMode.COSMOS, cosmos_endpoint="https://...", cosmos_key="...")

    # Local-only
    KVSyncConfig(remote_mode=RemoteMode.NONE)
"""

from .bus import ALL_KEYS, BusEvent, ChangeBus, ChangeKind, ChangeSource
from .config import CosmosAuthMethod, KVSyncConfig, RemoteMode
from .engine import Entry, KVSyncEngine
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    KVSyncError,
    LocalStoreError,
    RemoteOperationError,
    RemoteUnavailableError,
    SerializationError,
)
from .local import FileStorageArea, LocalStoreAdapter, MemoryOrigin, MemoryStorageArea
from .remote import RemoteConnection, RemoteStore
from .runtime import force_refresh_from_remote, get_engine, init_engine, shutdown_engine
from .serialization import RemoteDocument, StoredRecord
from .view import KVView

__all__ = [
    # Engine
    "KVSyncEngine",
    "Entry",
    "KVView",
    # Configuration
    "KVSyncConfig",
    "RemoteMode",
    "CosmosAuthMethod",
    # Bus
    "ChangeBus",
    "BusEvent",
    "ChangeKind",
    "ChangeSource",
    "ALL_KEYS",
    # Stores
    "LocalStoreAdapter",
    "FileStorageArea",
    "MemoryOrigin",
    "MemoryStorageArea",
    "RemoteStore",
    "RemoteConnection",
    "StoredRecord",
    "RemoteDocument",
    # Runtime
    "init_engine",
    "get_engine",
    "shutdown_engine",
    "force_refresh_from_remote",
    # Exceptions
    "KVSyncError",
    "ConfigurationError",
    "SerializationError",
    "LocalStoreError",
    "RemoteUnavailableError",
    "AuthenticationError",
    "RemoteOperationError",
]

__version__ = "0.1.0"
