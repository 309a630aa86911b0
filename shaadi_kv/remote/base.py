"""
Abstract remote document store interface.

Defines the contract remote backends implement. Each operation is
independently idempotent; the engine itself never retries, but backends
may retry transient failures internally.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class RemoteStore(ABC):
    """Asynchronous get/set/delete of one JSON document per key."""

    #: Human-readable location used in logs and errors
    endpoint: str = "remote"

    @abstractmethod
    async def initialize(self) -> None:
        """Open the connection and verify the store is reachable.

        Raises:
            RemoteUnavailableError: If the store cannot be reached
            AuthenticationError: If credentials are missing or rejected
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Read the document for a key.

        Returns:
            The document, or None if the key does not exist

        Raises:
            RemoteOperationError: If the read fails
        """
        ...

    @abstractmethod
    async def set(self, key: str, document: dict[str, Any]) -> bool:
        """Create or replace the document for a key.

        Returns:
            True on success

        Raises:
            RemoteOperationError: If the write fails
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete the document for a key.

        Returns:
            True if deleted or already absent

        Raises:
            RemoteOperationError: If the delete fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...
