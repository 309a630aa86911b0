"""
Configuration for the key-value sync cache.

Configuration can be provided directly, via environment variables, or via
the ``kv`` section of a YAML settings file:

```yaml
kv:
  storage_prefix: "shaadi_partner_"
  local_path: "~/.shaadi_partner/kv"
  ttl_seconds: 30
  remote_mode: auto
  api_base_url: "https://shaadi-partner-api.azurewebsites.net"
  cosmos:
    endpoint: "https://shaadipartnerdb.documents.azure.com:443/"
    database: "shaadi-partner-db"
    container: "profiles"
    auth_method: key
  logging:
    format: json
    level: DEBUG
```

Environment Variables:
    SHAADI_KV_STORAGE_PREFIX: Prefix for local store keys
    SHAADI_KV_LOCAL_PATH: Directory for the local durable store
    SHAADI_KV_TTL_SECONDS: Staleness window for remote refreshes
    SHAADI_KV_REMOTE_MODE: auto | api | cosmos | none
    SHAADI_KV_API_BASE_URL: Base URL of the KV API backend
    COSMOS_ENDPOINT: Cosmos DB endpoint URL
    COSMOS_KEY: Cosmos DB key (if using key auth)
    COSMOS_DATABASE: Database name (default: shaadi-partner-db)
    COSMOS_CONTAINER: Container name (default: profiles)
    COSMOS_AUTH_METHOD: key | default_credential | managed_identity | service_principal
    AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET: Azure AD settings
    SHAADI_KV_LOG_FORMAT: text | json
    SHAADI_KV_LOG_LEVEL: Level name for the package logger (default: INFO)
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

DEFAULT_STORAGE_PREFIX = "shaadi_partner_"
DEFAULT_LOCAL_PATH = Path.home() / ".shaadi_partner" / "kv"
DEFAULT_TTL_SECONDS = 30.0
DEFAULT_DATABASE = "shaadi-partner-db"
DEFAULT_CONTAINER = "profiles"
LOG_FORMATS = ("text", "json")


class RemoteMode(Enum):
    """Which remote backend to use.

    AUTO: API backend if a base URL is configured, else Cosmos DB if an
        endpoint is configured, else local-only
    API: KV API backend over HTTP (holds the Cosmos key server-side)
    COSMOS: Direct Cosmos DB connection
    NONE: Local-only cache, never contacts a remote store
    """

    AUTO = "auto"
    API = "api"
    COSMOS = "cosmos"
    NONE = "none"


class CosmosAuthMethod(Enum):
    """Authentication method for Cosmos DB.

    KEY: Account key
    DEFAULT_CREDENTIAL: Azure DefaultAzureCredential
    MANAGED_IDENTITY: Azure Managed Identity explicitly
    SERVICE_PRINCIPAL: Service Principal with client_id/client_secret
    """

    KEY = "key"
    DEFAULT_CREDENTIAL = "default_credential"
    MANAGED_IDENTITY = "managed_identity"
    SERVICE_PRINCIPAL = "service_principal"


@dataclass
class KVSyncConfig:
    """Configuration for the sync engine and its stores.

    Attributes:
        storage_prefix: Prefix applied to every key in the local store
        local_path: Directory of the file-backed local store
        ttl_seconds: Minimum age of a remote fetch before a read refreshes
        failure_backoff_seconds: Minimum delay before retrying a failed fetch
        watch_interval_seconds: Poll interval for cross-process changes
        max_concurrent_pushes: Upper bound on simultaneous remote pushes
        origin_id: Identifier of this process in written records

        remote_mode: Remote backend selection
        api_base_url: Base URL of the KV API backend
        request_timeout_seconds: Total timeout for one HTTP request

        cosmos_endpoint: Cosmos DB endpoint URL
        cosmos_auth_method: Authentication method (default: KEY)
        cosmos_key: Cosmos DB key (only for KEY auth method)
        cosmos_database: Cosmos DB database name
        cosmos_container: Cosmos DB container name
        azure_tenant_id: Azure tenant ID (for SERVICE_PRINCIPAL)
        azure_client_id: Azure client/app ID (for SERVICE_PRINCIPAL/MANAGED_IDENTITY)
        azure_client_secret: Azure client secret (for SERVICE_PRINCIPAL)

        max_retries: Maximum attempts for transient remote failures
        retry_delay: Base delay between retries (seconds)

        log_format: Handler installed on the package logger by init_engine,
            text or json (default: None, leave logging to the application)
        log_level: Level name for the package logger
    """

    storage_prefix: str = DEFAULT_STORAGE_PREFIX
    local_path: Path = field(default_factory=lambda: DEFAULT_LOCAL_PATH)
    ttl_seconds: float = DEFAULT_TTL_SECONDS
    failure_backoff_seconds: float = 5.0
    watch_interval_seconds: float = 0.5
    max_concurrent_pushes: int = 8
    origin_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    remote_mode: RemoteMode = RemoteMode.AUTO
    api_base_url: str | None = None
    request_timeout_seconds: float = 10.0

    cosmos_endpoint: str | None = None
    cosmos_auth_method: CosmosAuthMethod = CosmosAuthMethod.KEY
    cosmos_key: str | None = None
    cosmos_database: str = DEFAULT_DATABASE
    cosmos_container: str = DEFAULT_CONTAINER
    azure_tenant_id: str | None = None
    azure_client_id: str | None = None
    azure_client_secret: str | None = None

    max_retries: int = 3
    retry_delay: float = 1.0

    log_format: str | None = None
    log_level: str = "INFO"

    def validate(self) -> KVSyncConfig:
        """Check value ranges.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If a value is out of range
        """
        if self.ttl_seconds < 0:
            raise ConfigurationError("ttl_seconds", "must be >= 0")
        if self.failure_backoff_seconds < 0:
            raise ConfigurationError("failure_backoff_seconds", "must be >= 0")
        if self.watch_interval_seconds <= 0:
            raise ConfigurationError("watch_interval_seconds", "must be > 0")
        if self.max_concurrent_pushes < 1:
            raise ConfigurationError("max_concurrent_pushes", "must be >= 1")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries", "must be >= 1")
        if self.remote_mode == RemoteMode.API and not self.api_base_url:
            raise ConfigurationError("api_base_url", "required when remote_mode is api")
        if self.remote_mode == RemoteMode.COSMOS and not self.cosmos_endpoint:
            raise ConfigurationError("cosmos_endpoint", "required when remote_mode is cosmos")
        if self.log_format is not None and self.log_format not in LOG_FORMATS:
            raise ConfigurationError("log_format", f"must be one of {', '.join(LOG_FORMATS)}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError("log_level", f"unknown level {self.log_level!r}")
        return self

    @classmethod
    def from_environment(cls, **overrides: Any) -> KVSyncConfig:
        """Create configuration from environment variables.

        Args:
            **overrides: Field values that take precedence over the environment

        Returns:
            KVSyncConfig populated from environment variables
        """
        values = _environment_values()
        values.update(overrides)
        return cls(**values).validate()

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> KVSyncConfig:
        """Create configuration from the ``kv`` section of a YAML file.

        Environment variables override file values; explicit overrides win
        over both. A missing file yields environment-only configuration.

        Args:
            path: Path to the YAML settings file
            **overrides: Field values that take precedence

        Returns:
            KVSyncConfig instance
        """
        values = _file_values(Path(path).expanduser())
        values.update(_environment_values())
        values.update(overrides)
        return cls(**values).validate()


def _parse_remote_mode(value: str) -> RemoteMode:
    try:
        return RemoteMode(value.lower())
    except ValueError as e:
        raise ConfigurationError("remote_mode", f"unknown mode {value!r}") from e


def _parse_auth_method(value: str) -> CosmosAuthMethod:
    try:
        return CosmosAuthMethod(value.lower())
    except ValueError:
        return CosmosAuthMethod.KEY


def _parse_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(name, f"expected a number, got {value!r}") from e


def _environment_values() -> dict[str, Any]:
    env = os.environ
    values: dict[str, Any] = {}

    if "SHAADI_KV_STORAGE_PREFIX" in env:
        values["storage_prefix"] = env["SHAADI_KV_STORAGE_PREFIX"]
    if "SHAADI_KV_LOCAL_PATH" in env:
        values["local_path"] = Path(env["SHAADI_KV_LOCAL_PATH"]).expanduser()
    if "SHAADI_KV_TTL_SECONDS" in env:
        values["ttl_seconds"] = _parse_float("ttl_seconds", env["SHAADI_KV_TTL_SECONDS"])
    if "SHAADI_KV_REMOTE_MODE" in env:
        values["remote_mode"] = _parse_remote_mode(env["SHAADI_KV_REMOTE_MODE"])
    if "SHAADI_KV_API_BASE_URL" in env:
        values["api_base_url"] = env["SHAADI_KV_API_BASE_URL"]

    if "COSMOS_ENDPOINT" in env:
        values["cosmos_endpoint"] = env["COSMOS_ENDPOINT"]
    if "COSMOS_KEY" in env:
        values["cosmos_key"] = env["COSMOS_KEY"]
    if "COSMOS_DATABASE" in env:
        values["cosmos_database"] = env["COSMOS_DATABASE"]
    if "COSMOS_CONTAINER" in env:
        values["cosmos_container"] = env["COSMOS_CONTAINER"]
    if "COSMOS_AUTH_METHOD" in env:
        values["cosmos_auth_method"] = _parse_auth_method(env["COSMOS_AUTH_METHOD"])

    for name in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET"):
        if name in env:
            values[name.lower()] = env[name]
    if "SHAADI_KV_LOG_FORMAT" in env:
        values["log_format"] = env["SHAADI_KV_LOG_FORMAT"].lower()
    if "SHAADI_KV_LOG_LEVEL" in env:
        values["log_level"] = env["SHAADI_KV_LOG_LEVEL"]

    return values


def _file_values(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(str(path), f"invalid YAML: {e}") from e

    section = data.get("kv") or {}
    if not isinstance(section, dict):
        raise ConfigurationError("kv", "section must be a mapping")

    values: dict[str, Any] = {}
    for name in ("storage_prefix", "api_base_url", "origin_id"):
        if name in section:
            values[name] = str(section[name])
    for name in (
        "ttl_seconds",
        "failure_backoff_seconds",
        "watch_interval_seconds",
        "request_timeout_seconds",
        "retry_delay",
    ):
        if name in section:
            values[name] = _parse_float(name, section[name])
    for name in ("max_concurrent_pushes", "max_retries"):
        if name in section:
            values[name] = int(section[name])
    if "local_path" in section:
        values["local_path"] = Path(section["local_path"]).expanduser()
    if "remote_mode" in section:
        values["remote_mode"] = _parse_remote_mode(str(section["remote_mode"]))

    cosmos = section.get("cosmos") or {}
    if "endpoint" in cosmos:
        values["cosmos_endpoint"] = cosmos["endpoint"]
    if "key" in cosmos:
        values["cosmos_key"] = cosmos["key"]
    if "database" in cosmos:
        values["cosmos_database"] = cosmos["database"]
    if "container" in cosmos:
        values["cosmos_container"] = cosmos["container"]
    if "auth_method" in cosmos:
        values["cosmos_auth_method"] = _parse_auth_method(str(cosmos["auth_method"]))

    log_section = section.get("logging") or {}
    if "format" in log_section:
        values["log_format"] = str(log_section["format"]).lower()
    if "level" in log_section:
        values["log_level"] = str(log_section["level"])

    return values
