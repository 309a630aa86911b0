"""
Custom exceptions for the key-value sync cache.

Adapters raise these so the engine can degrade consistently:
serialization problems read as "absent", remote problems read as
"no new information", local write problems are logged.
"""


class KVSyncError(Exception):
    """Base exception for all key-value sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(KVSyncError):
    """Raised when configuration values are invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid configuration for {field}: {reason}",
            {"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


class SerializationError(KVSyncError):
    """Raised when a stored payload cannot be encoded or decoded."""

    def __init__(self, key: str, cause: Exception | None = None):
        details = {"key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Serialization failed for key {key}", details)
        self.key = key
        self.cause = cause


class LocalStoreError(KVSyncError):
    """Raised when the local durable store rejects a write or remove."""

    def __init__(self, operation: str, key: str, cause: Exception | None = None):
        details = {"operation": operation, "key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Local store error during {operation}: {key}", details)
        self.operation = operation
        self.key = key
        self.cause = cause


class RemoteUnavailableError(KVSyncError):
    """Raised when the remote store cannot be reached or initialized."""

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Remote store unavailable at {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class AuthenticationError(RemoteUnavailableError):
    """Raised when credentials for the remote store are missing or rejected."""

    def __init__(self, endpoint: str, reason: str | None = None):
        super().__init__(endpoint)
        self.message = f"Authentication failed for {endpoint}"
        self.args = (self.message,)
        if reason:
            self.details["reason"] = reason
        self.reason = reason


class RemoteOperationError(KVSyncError):
    """Raised when a single remote get/set/delete fails on a healthy connection."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Remote operation {operation} failed"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause
