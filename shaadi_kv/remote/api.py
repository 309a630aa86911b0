"""
HTTP API remote store.

Talks to the KV API backend, which holds the Cosmos DB key server-side:
- GET    {base_url}/api/health     -> 200 when the backend and database are up
- GET    {base_url}/api/kv/{key}   -> 200 document, 404 if absent
- PUT    {base_url}/api/kv/{key}   -> 200 on upsert
- DELETE {base_url}/api/kv/{key}   -> 200 deleted, 404 already absent
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from ..config import KVSyncConfig
from ..exceptions import RemoteOperationError, RemoteUnavailableError
from .base import RemoteStore

logger = logging.getLogger(__name__)


class ApiRemoteStore(RemoteStore):
    """Remote store backed by the KV HTTP API."""

    def __init__(
        self,
        config: KVSyncConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Configuration with api_base_url set
            session: Optional externally managed client session
        """
        if not config.api_base_url:
            raise RemoteUnavailableError("api", RuntimeError("api_base_url not set"))
        self.config = config
        self.base_url = config.api_base_url.rstrip("/")
        self.endpoint = self.base_url
        self._session = session
        self._owns_session = session is None

    def _url(self, key: str) -> str:
        return f"{self.base_url}/api/kv/{quote(key, safe='')}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def initialize(self) -> None:
        """Probe the backend health endpoint."""
        session = self._get_session()
        try:
            async with session.get(f"{self.base_url}/api/health") as response:
                if response.status != 200:
                    raise RemoteUnavailableError(
                        self.endpoint,
                        RuntimeError(f"health check returned {response.status}"),
                    )
        except aiohttp.ClientError as e:
            raise RemoteUnavailableError(self.endpoint, e) from e
        except TimeoutError as e:
            raise RemoteUnavailableError(self.endpoint, e) from e

        logger.info("KV API backend connected", extra={"endpoint": self.endpoint})

    async def get(self, key: str) -> dict[str, Any] | None:
        session = self._get_session()
        try:
            async with session.get(self._url(key)) as response:
                if response.status == 404:
                    return None
                if response.status != 200:
                    raise RemoteOperationError(
                        "get", key, RuntimeError(f"API error: {response.status}")
                    )
                return await response.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise RemoteOperationError("get", key, e) from e

    async def set(self, key: str, document: dict[str, Any]) -> bool:
        session = self._get_session()
        try:
            async with session.put(self._url(key), json=document) as response:
                if response.status not in (200, 201, 204):
                    raise RemoteOperationError(
                        "set", key, RuntimeError(f"API error: {response.status}")
                    )
                return True
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RemoteOperationError("set", key, e) from e

    async def delete(self, key: str) -> bool:
        session = self._get_session()
        try:
            async with session.delete(self._url(key)) as response:
                if response.status in (200, 204, 404):
                    return True
                raise RemoteOperationError(
                    "delete", key, RuntimeError(f"API error: {response.status}")
                )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RemoteOperationError("delete", key, e) from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
