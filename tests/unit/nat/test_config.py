"""Tests for configuration loading (natupnp/config.py)."""

from __future__ import annotations

import pytest

from natupnp.config import ConfigManager, LogLevel, NatUpnpConfig, load_config
from natupnp.exceptions import ConfigurationError

pytestmark = [pytest.mark.unit]


@pytest.fixture
def no_search_paths(tmp_path, monkeypatch):
    """Run with an empty cwd and home so no config file is picked up."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


class TestDefaults:
    def test_model_defaults(self):
        config = NatUpnpConfig()
        assert config.discovery_timeout_ms == 3000
        assert config.soap_timeout is None
        assert config.default_description == "nat-upnp"
        assert config.check_interval == 60.0
        assert config.logging.log_level == LogLevel.WARNING
        assert config.logging.log_file is None

    def test_no_file_found(self, no_search_paths):
        manager = ConfigManager()
        assert manager.config_file is None
        assert manager.config == NatUpnpConfig()


class TestConfigFile:
    def test_load_toml(self, tmp_path):
        path = tmp_path / "natupnp.toml"
        path.write_text(
            'discovery_timeout_ms = 5000\n'
            'default_description = "seedbox"\n'
            "\n"
            "[logging]\n"
            'log_level = "DEBUG"\n',
            encoding="utf-8",
        )

        config = load_config(path)
        assert config.discovery_timeout_ms == 5000
        assert config.default_description == "seedbox"
        assert config.logging.log_level == LogLevel.DEBUG

    def test_found_in_cwd(self, no_search_paths):
        (no_search_paths / "natupnp.toml").write_text("check_interval = 5.0\n", encoding="utf-8")
        manager = ConfigManager()
        assert manager.config_file == no_search_paths / "natupnp.toml"
        assert manager.config.check_interval == 5.0

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigManager(tmp_path / "absent.toml")

    def test_malformed_toml(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("discovery_timeout_ms = = 1\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Failed to read"):
            ConfigManager(path)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "invalid.toml"
        path.write_text("discovery_timeout_ms = 0\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            ConfigManager(path)


class TestEnvironment:
    def test_env_overrides(self, no_search_paths, monkeypatch):
        monkeypatch.setenv("NATUPNP_TIMEOUT_MS", "750")
        monkeypatch.setenv("NATUPNP_SOAP_TIMEOUT", "4.5")
        monkeypatch.setenv("NATUPNP_LOG_LEVEL", "INFO")
        monkeypatch.setenv("NATUPNP_STRUCTURED_LOGGING", "yes")

        config = ConfigManager().config
        assert config.discovery_timeout_ms == 750
        assert config.soap_timeout == 4.5
        assert config.logging.log_level == LogLevel.INFO
        assert config.logging.structured_logging is True

    def test_env_wins_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "natupnp.toml"
        path.write_text('default_description = "from-file"\n', encoding="utf-8")
        monkeypatch.setenv("NATUPNP_DESCRIPTION", "from-env")

        assert load_config(path).default_description == "from-env"

    def test_invalid_env_value(self, no_search_paths, monkeypatch):
        monkeypatch.setenv("NATUPNP_CHECK_INTERVAL", "soon")
        with pytest.raises(ConfigurationError):
            ConfigManager()
