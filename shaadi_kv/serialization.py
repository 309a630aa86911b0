"""
Payload envelopes for the local and remote stores.

Both stores hold one JSON document per key. The payload itself is opaque;
the envelope adds the version stamp used to keep an in-flight local write
from being overwritten by an older remote read.

Local record (serialized string in the local store):
    {"value": <payload>, "version": 3, "writer": "<origin id>", "updatedAt": "<iso>"}

Remote document (Cosmos item / API body):
    {"id": "<key>", "key": "<key>", "data": <payload>, "version": 3, "updatedAt": "<iso>"}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .exceptions import SerializationError

_ENVELOPE_FIELDS = {"value", "version", "writer"}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class StoredRecord:
    """A value as persisted in the local durable store."""

    value: Any
    version: int = 0
    writer: str | None = None
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "version": self.version,
            "writer": self.writer,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredRecord:
        return cls(
            value=data.get("value"),
            version=int(data.get("version") or 0),
            writer=data.get("writer"),
            updated_at=data.get("updatedAt") or "",
        )


@dataclass
class RemoteDocument:
    """A value as stored in the remote document store."""

    data: Any
    version: int = 0
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "version": self.version,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, doc: dict[str, Any] | None) -> RemoteDocument | None:
        """Parse a remote document.

        Returns None when the document carries no ``data`` field, which the
        engine treats as "no information" rather than as an empty value.
        """
        if not isinstance(doc, dict) or "data" not in doc:
            return None
        try:
            version = int(doc.get("version") or 0)
        except (TypeError, ValueError):
            version = 0
        return cls(
            data=doc["data"],
            version=version,
            updated_at=doc.get("updatedAt") or "",
        )


def encode_record(key: str, record: StoredRecord) -> str:
    """Serialize a record for the local store.

    Raises:
        SerializationError: If the payload is not JSON-serializable
    """
    try:
        return json.dumps(record.to_dict(), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(key, e) from e


def decode_record(key: str, raw: str) -> StoredRecord:
    """Parse a local store string into a record.

    A bare JSON value without the envelope (as written by older clients)
    is accepted as version 0.

    Raises:
        SerializationError: If the string is not valid JSON
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise SerializationError(key, e) from e

    if isinstance(data, dict) and "value" in data and set(data) - {"updatedAt"} <= _ENVELOPE_FIELDS:
        try:
            return StoredRecord.from_dict(data)
        except (TypeError, ValueError) as e:
            raise SerializationError(key, e) from e
    return StoredRecord(value=data, version=0, writer=None, updated_at="")
