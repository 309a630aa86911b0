"""
Tests for KVSyncConfig.
"""

from pathlib import Path

import pytest

from shaadi_kv.config import CosmosAuthMethod, KVSyncConfig, RemoteMode
from shaadi_kv.exceptions import ConfigurationError

ENV_VARS = [
    "SHAADI_KV_STORAGE_PREFIX",
    "SHAADI_KV_LOCAL_PATH",
    "SHAADI_KV_TTL_SECONDS",
    "SHAADI_KV_REMOTE_MODE",
    "SHAADI_KV_API_BASE_URL",
    "SHAADI_KV_LOG_FORMAT",
    "SHAADI_KV_LOG_LEVEL",
    "COSMOS_ENDPOINT",
    "COSMOS_KEY",
    "COSMOS_DATABASE",
    "COSMOS_CONTAINER",
    "COSMOS_AUTH_METHOD",
    "AZURE_TENANT_ID",
    "AZURE_CLIENT_ID",
    "AZURE_CLIENT_SECRET",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Test default configuration values."""

    def test_defaults(self) -> None:
        """Test defaults match the application's storage layout."""
        config = KVSyncConfig()

        assert config.storage_prefix == "shaadi_partner_"
        assert config.ttl_seconds == 30.0
        assert config.remote_mode == RemoteMode.AUTO
        assert config.cosmos_auth_method == CosmosAuthMethod.KEY
        assert config.cosmos_database == "shaadi-partner-db"
        assert config.cosmos_container == "profiles"
        assert config.log_format is None
        assert config.log_level == "INFO"
        assert config.local_path.parts[-2:] == (".shaadi_partner", "kv")

    def test_origin_ids_are_unique(self) -> None:
        """Test every config gets its own writer id."""
        assert KVSyncConfig().origin_id != KVSyncConfig().origin_id


class TestValidate:
    """Test range and consistency checks."""

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("ttl_seconds", -1),
            ("failure_backoff_seconds", -0.5),
            ("watch_interval_seconds", 0),
            ("max_concurrent_pushes", 0),
            ("max_retries", 0),
        ],
    )
    def test_out_of_range(self, field: str, value: float) -> None:
        """Test invalid numbers name the offending field."""
        with pytest.raises(ConfigurationError) as exc_info:
            KVSyncConfig(**{field: value}).validate()

        assert exc_info.value.field == field

    def test_api_mode_requires_url(self) -> None:
        """Test API mode without a base URL is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            KVSyncConfig(remote_mode=RemoteMode.API).validate()

        assert exc_info.value.field == "api_base_url"

    def test_cosmos_mode_requires_endpoint(self) -> None:
        """Test Cosmos mode without an endpoint is rejected."""
        with pytest.raises(ConfigurationError):
            KVSyncConfig(remote_mode=RemoteMode.COSMOS).validate()

    def test_valid_config_returns_self(self) -> None:
        """Test validate() chains."""
        config = KVSyncConfig(ttl_seconds=0)

        assert config.validate() is config

    @pytest.mark.parametrize(
        ("field", "value"),
        [("log_format", "xml"), ("log_level", "LOUD")],
    )
    def test_logging_values(self, field: str, value: str) -> None:
        """Test unknown log formats and level names are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            KVSyncConfig(**{field: value}).validate()

        assert exc_info.value.field == field

    def test_log_level_is_case_insensitive(self) -> None:
        """Test level names validate regardless of case."""
        KVSyncConfig(log_format="json", log_level="warning").validate()


class TestFromEnvironment:
    """Test environment-based configuration."""

    def test_reads_variables(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test every supported variable is picked up."""
        monkeypatch.setenv("SHAADI_KV_STORAGE_PREFIX", "test_")
        monkeypatch.setenv("SHAADI_KV_LOCAL_PATH", str(tmp_path))
        monkeypatch.setenv("SHAADI_KV_TTL_SECONDS", "12.5")
        monkeypatch.setenv("SHAADI_KV_REMOTE_MODE", "COSMOS")
        monkeypatch.setenv("COSMOS_ENDPOINT", "https://db.documents.azure.com:443/")
        monkeypatch.setenv("COSMOS_KEY", "secret")
        monkeypatch.setenv("COSMOS_DATABASE", "other-db")
        monkeypatch.setenv("COSMOS_CONTAINER", "kv")
        monkeypatch.setenv("COSMOS_AUTH_METHOD", "managed_identity")
        monkeypatch.setenv("AZURE_CLIENT_ID", "app-id")

        config = KVSyncConfig.from_environment()

        assert config.storage_prefix == "test_"
        assert config.local_path == tmp_path
        assert config.ttl_seconds == 12.5
        assert config.remote_mode == RemoteMode.COSMOS
        assert config.cosmos_endpoint == "https://db.documents.azure.com:443/"
        assert config.cosmos_key == "secret"
        assert config.cosmos_database == "other-db"
        assert config.cosmos_container == "kv"
        assert config.cosmos_auth_method == CosmosAuthMethod.MANAGED_IDENTITY
        assert config.azure_client_id == "app-id"

    def test_reads_logging_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test log format and level come from the environment."""
        monkeypatch.setenv("SHAADI_KV_LOG_FORMAT", "JSON")
        monkeypatch.setenv("SHAADI_KV_LOG_LEVEL", "debug")

        config = KVSyncConfig.from_environment()

        assert config.log_format == "json"
        assert config.log_level == "debug"

    def test_overrides_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test explicit keyword arguments beat the environment."""
        monkeypatch.setenv("SHAADI_KV_TTL_SECONDS", "12")

        config = KVSyncConfig.from_environment(ttl_seconds=1.0, origin_id="tab-1")

        assert config.ttl_seconds == 1.0
        assert config.origin_id == "tab-1"

    def test_unknown_auth_method_falls_back_to_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test an unrecognised auth method uses key auth."""
        monkeypatch.setenv("COSMOS_AUTH_METHOD", "kerberos")

        assert KVSyncConfig.from_environment().cosmos_auth_method == CosmosAuthMethod.KEY

    def test_invalid_values_raise(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test malformed numbers and modes raise ConfigurationError."""
        monkeypatch.setenv("SHAADI_KV_TTL_SECONDS", "soon")
        with pytest.raises(ConfigurationError):
            KVSyncConfig.from_environment()

        monkeypatch.setenv("SHAADI_KV_TTL_SECONDS", "5")
        monkeypatch.setenv("SHAADI_KV_REMOTE_MODE", "carrier-pigeon")
        with pytest.raises(ConfigurationError):
            KVSyncConfig.from_environment()


class TestFromFile:
    """Test YAML file configuration."""

    def test_reads_kv_section(self, tmp_path: Path) -> None:
        """Test top-level and nested cosmos settings are read."""
        settings = tmp_path / "settings.yaml"
        settings.write_text(
            """
kv:
  storage_prefix: "app_"
  ttl_seconds: 45
  max_concurrent_pushes: 2
  remote_mode: api
  api_base_url: "https://kv.example.test"
  cosmos:
    endpoint: "https://db.documents.azure.com:443/"
    database: "yaml-db"
    auth_method: default_credential
  logging:
    format: json
    level: WARNING
other:
  ignored: true
""",
            encoding="utf-8",
        )

        config = KVSyncConfig.from_file(settings)

        assert config.storage_prefix == "app_"
        assert config.ttl_seconds == 45.0
        assert config.max_concurrent_pushes == 2
        assert config.remote_mode == RemoteMode.API
        assert config.api_base_url == "https://kv.example.test"
        assert config.cosmos_endpoint == "https://db.documents.azure.com:443/"
        assert config.cosmos_database == "yaml-db"
        assert config.cosmos_auth_method == CosmosAuthMethod.DEFAULT_CREDENTIAL
        assert config.log_format == "json"
        assert config.log_level == "WARNING"

    def test_environment_beats_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test precedence: file < environment < overrides."""
        settings = tmp_path / "settings.yaml"
        settings.write_text("kv:\n  ttl_seconds: 45\n  storage_prefix: file_\n", encoding="utf-8")
        monkeypatch.setenv("SHAADI_KV_TTL_SECONDS", "60")

        config = KVSyncConfig.from_file(settings, storage_prefix="override_")

        assert config.ttl_seconds == 60.0
        assert config.storage_prefix == "override_"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        """Test a missing settings file is not an error."""
        config = KVSyncConfig.from_file(tmp_path / "absent.yaml")

        assert config.ttl_seconds == 30.0

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test unparsable YAML raises ConfigurationError."""
        settings = tmp_path / "settings.yaml"
        settings.write_text("kv: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            KVSyncConfig.from_file(settings)

    def test_kv_section_must_be_mapping(self, tmp_path: Path) -> None:
        """Test a scalar kv section is rejected."""
        settings = tmp_path / "settings.yaml"
        settings.write_text("kv: 5\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            KVSyncConfig.from_file(settings)
