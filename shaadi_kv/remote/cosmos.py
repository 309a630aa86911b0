"""
Cosmos DB remote store.

Stores one item per cache key in a single container. The key is both the
item id and the partition key value, so every read and write is a point
operation.

Container schema:
{
    "id": "{key}",
    "key": "{key}",
    "data": {...},
    "version": {int},
    "updatedAt": "{iso_timestamp}"
}

Supports multiple authentication methods:
- Key-based authentication
- Azure AD via DefaultAzureCredential
- Azure Managed Identity
- Service Principal
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from ..config import CosmosAuthMethod, KVSyncConfig
from ..exceptions import AuthenticationError, RemoteOperationError, RemoteUnavailableError
from .base import RemoteStore

logger = logging.getLogger(__name__)

PARTITION_KEY_PATH = "/key"


def _get_credential(config: KVSyncConfig) -> Any:
    """Get the appropriate credential based on auth method.

    Raises:
        AuthenticationError: If credential cannot be created
    """
    endpoint = config.cosmos_endpoint or "cosmos"
    auth_method = config.cosmos_auth_method

    if auth_method == CosmosAuthMethod.KEY:
        if not config.cosmos_key:
            raise AuthenticationError(endpoint, "cosmos_key required for KEY authentication")
        return config.cosmos_key

    if auth_method == CosmosAuthMethod.DEFAULT_CREDENTIAL:
        from azure.identity.aio import DefaultAzureCredential

        return DefaultAzureCredential()

    if auth_method == CosmosAuthMethod.MANAGED_IDENTITY:
        from azure.identity.aio import ManagedIdentityCredential

        # If client_id is provided, use user-assigned managed identity
        if config.azure_client_id:
            return ManagedIdentityCredential(client_id=config.azure_client_id)
        return ManagedIdentityCredential()

    if auth_method == CosmosAuthMethod.SERVICE_PRINCIPAL:
        if not all([config.azure_tenant_id, config.azure_client_id, config.azure_client_secret]):
            raise AuthenticationError(
                endpoint,
                "azure_tenant_id, azure_client_id, and azure_client_secret "
                "required for SERVICE_PRINCIPAL authentication",
            )
        from azure.identity.aio import ClientSecretCredential

        return ClientSecretCredential(
            tenant_id=config.azure_tenant_id,
            client_id=config.azure_client_id,
            client_secret=config.azure_client_secret,
        )

    raise AuthenticationError(endpoint, f"Unsupported auth method: {auth_method}")


class CosmosRemoteStore(RemoteStore):
    """Remote store backed by an Azure Cosmos DB container."""

    def __init__(self, config: KVSyncConfig) -> None:
        """Initialize the store (no network activity until initialize()).

        Args:
            config: Configuration with cosmos_* settings
        """
        self.config = config
        self.endpoint = config.cosmos_endpoint or "cosmos"
        self._client: CosmosClient | None = None
        self._credential: Any = None
        self._container: ContainerProxy | None = None

    async def initialize(self) -> None:
        """Connect and ensure the database and container exist."""
        if self._container is not None:
            return
        if not self.config.cosmos_endpoint:
            raise RemoteUnavailableError(self.endpoint, RuntimeError("cosmos_endpoint not set"))

        self._credential = _get_credential(self.config)
        try:
            self._client = CosmosClient(self.config.cosmos_endpoint, credential=self._credential)
            database = await self._client.create_database_if_not_exists(
                id=self.config.cosmos_database
            )
            self._container = await database.create_container_if_not_exists(
                id=self.config.cosmos_container,
                partition_key=PartitionKey(path=PARTITION_KEY_PATH),
            )
            logger.info(
                "Cosmos remote store initialized",
                extra={
                    "endpoint": self.endpoint,
                    "database": self.config.cosmos_database,
                    "container": self.config.cosmos_container,
                },
            )
        except CosmosHttpResponseError as e:
            await self.close()
            if e.status_code in (401, 403):
                raise AuthenticationError(self.endpoint, str(e)) from e
            raise RemoteUnavailableError(self.endpoint, e) from e
        except Exception as e:
            await self.close()
            raise RemoteUnavailableError(self.endpoint, e) from e

    def _get_container(self) -> ContainerProxy:
        if self._container is None:
            raise RemoteOperationError(
                "get_container", cause=RuntimeError("Client not initialized")
            )
        return self._container

    async def get(self, key: str) -> dict[str, Any] | None:
        container = self._get_container()
        try:
            return await self._with_retry(
                "get", key, lambda: container.read_item(item=key, partition_key=key)
            )
        except CosmosResourceNotFoundError:
            return None

    async def set(self, key: str, document: dict[str, Any]) -> bool:
        container = self._get_container()
        body = {**document, "id": key, "key": key}
        await self._with_retry("set", key, lambda: container.upsert_item(body=body))
        return True

    async def delete(self, key: str) -> bool:
        container = self._get_container()
        try:
            await self._with_retry(
                "delete", key, lambda: container.delete_item(item=key, partition_key=key)
            )
        except CosmosResourceNotFoundError:
            pass
        return True

    async def close(self) -> None:
        """Close the Cosmos DB connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._credential is not None and hasattr(self._credential, "close"):
            await self._credential.close()
        self._credential = None
        self._container = None

    async def _with_retry(
        self,
        operation: str,
        key: str,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Execute an operation with retry logic for transient failures.

        Not-found errors propagate unchanged; other 4xx errors fail
        immediately; 429 and 5xx are retried with exponential backoff.

        Raises:
            RemoteOperationError: After max retries or on a non-retryable error
        """
        last_error: Exception | None = None

        for attempt in range(self.config.max_retries):
            try:
                return await call()
            except CosmosResourceNotFoundError:
                raise
            except CosmosHttpResponseError as e:
                if e.status_code != 429 and 400 <= (e.status_code or 0) < 500:
                    raise RemoteOperationError(operation, key, e) from e

                last_error = e
                if attempt < self.config.max_retries - 1:
                    delay = self.config.retry_delay * (2**attempt)
                    logger.debug(
                        f"Retrying Cosmos {operation} for {key!r} in {delay:.1f}s",
                        extra={"status_code": e.status_code, "attempt": attempt + 1},
                    )
                    await asyncio.sleep(delay)
            except Exception as e:
                raise RemoteOperationError(operation, key, e) from e

        raise RemoteOperationError(operation, key, last_error)
