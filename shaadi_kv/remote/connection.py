"""
Memoized remote connection.

The remote handle is a single process-wide resource. Initialization runs at
most once: concurrent first accesses from different keys share the same
attempt, and the outcome (success or failure) is remembered for the rest of
the process lifetime. A failed attempt is logged once and leaves the cache
in local-only mode.
"""

from __future__ import annotations

import asyncio
import logging

from ..config import KVSyncConfig, RemoteMode
from ..exceptions import RemoteUnavailableError
from .base import RemoteStore

logger = logging.getLogger(__name__)


def build_remote_candidates(config: KVSyncConfig) -> list[RemoteStore]:
    """Create the remote stores to try, in order, for a configuration.

    AUTO tries the API backend first (when a base URL is configured), then a
    direct Cosmos DB connection (when an endpoint is configured).
    """
    candidates: list[RemoteStore] = []
    mode = config.remote_mode

    if mode in (RemoteMode.AUTO, RemoteMode.API) and config.api_base_url:
        from .api import ApiRemoteStore

        candidates.append(ApiRemoteStore(config))

    if mode in (RemoteMode.AUTO, RemoteMode.COSMOS) and config.cosmos_endpoint:
        from .cosmos import CosmosRemoteStore

        candidates.append(CosmosRemoteStore(config))

    return candidates


class RemoteConnection:
    """One-shot, shared initialization of the remote store.

    Example:
        >>> connection = RemoteConnection([ApiRemoteStore(config)])
        >>> if await connection.ensure_available():
        ...     doc = await connection.store.get("profiles")
    """

    def __init__(self, candidates: list[RemoteStore] | None = None) -> None:
        """Initialize the connection.

        Args:
            candidates: Remote stores to try in order; the first one that
                initializes becomes the active store. Empty means local-only.
        """
        self._candidates = list(candidates or [])
        self._store: RemoteStore | None = None
        self._available: bool | None = None
        self._init_task: asyncio.Task[bool] | None = None

    @classmethod
    def from_config(cls, config: KVSyncConfig) -> RemoteConnection:
        return cls(build_remote_candidates(config))

    @property
    def available(self) -> bool | None:
        """True/False once initialization finished, None before."""
        return self._available

    @property
    def store(self) -> RemoteStore | None:
        """The active remote store, if initialization succeeded."""
        return self._store

    async def ensure_available(self) -> bool:
        """Initialize on first call and return whether the remote is usable.

        Later and concurrent calls await the same attempt.
        """
        if self._available is not None:
            return self._available
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> bool:
        if not self._candidates:
            logger.info("No remote store configured, running in local-only mode")
            self._available = False
            return False

        for candidate in self._candidates:
            try:
                await candidate.initialize()
            except RemoteUnavailableError as e:
                logger.warning(
                    f"Remote store not reachable: {e.message}",
                    extra={"endpoint": candidate.endpoint, **e.details},
                )
                await self._close_quietly(candidate)
                continue
            except Exception as e:
                logger.warning(
                    f"Remote store initialization failed: {e}",
                    extra={"endpoint": candidate.endpoint},
                )
                await self._close_quietly(candidate)
                continue

            self._store = candidate
            self._available = True
            return True

        logger.warning("Remote store unavailable, falling back to local-only mode")
        self._available = False
        return False

    @staticmethod
    async def _close_quietly(store: RemoteStore) -> None:
        try:
            await store.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing {store.endpoint}: {e}")

    async def close(self) -> None:
        """Close the active store and cancel a pending initialization."""
        task = self._init_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._available is None:
            self._available = False
        if self._store is not None:
            await self._store.close()
