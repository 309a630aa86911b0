"""
Remote document store backends.

- ApiRemoteStore: KV API backend over HTTP (aiohttp)
- CosmosRemoteStore: direct Azure Cosmos DB connection (azure-cosmos)
- RemoteConnection: memoized, shared initialization with local-only fallback

The concrete backends are imported lazily by build_remote_candidates() so
the package can be used as a local-only cache.
"""

from .base import RemoteStore
from .connection import RemoteConnection, build_remote_candidates

__all__ = [
    "RemoteStore",
    "RemoteConnection",
    "build_remote_candidates",
]
