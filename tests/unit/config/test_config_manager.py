"""Tests for configuration loading: defaults, TOML file and environment."""

from __future__ import annotations

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.config]

from swarmfetch.config.config import (
    ConfigManager,
    _parse_env_value,
    get_config,
    init_config,
    reset_config,
    set_config,
)
from swarmfetch.models import Config, DiscoveryConfig, LogLevel, NetworkConfig
from swarmfetch.utils.exceptions import ConfigurationError


class TestDefaults:
    def test_defaults(self):
        config = ConfigManager(configure_logging=False).config
        assert config.network.listen_port == 6881
        assert config.network.chunk_length == 16384
        assert config.network.chunk_timeout == 30.0
        assert config.network.metadata_timeout is None
        assert config.discovery.dht_port == 6882
        assert config.discovery.top_peers == 3
        assert config.discovery.max_listed_peers == 50
        assert config.observability.log_level is LogLevel.INFO

    def test_port_conflict_rejected(self):
        with pytest.raises(ValueError, match="DHT port"):
            Config(
                network=NetworkConfig(listen_port=7000),
                discovery=DiscoveryConfig(dht_port=7000),
            )

    def test_client_prefix_validation(self):
        with pytest.raises(ValueError):
            NetworkConfig(client_prefix="S-")


class TestConfigFile:
    def test_loads_toml(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text(
            "[network]\nlisten_port = 7001\n\n[discovery]\ntop_peers = 5\n",
            encoding="utf-8",
        )
        manager = ConfigManager(path, configure_logging=False)
        assert manager.config_file == path
        assert manager.config.network.listen_port == 7001
        assert manager.config.discovery.top_peers == 5

    def test_found_in_cwd(self, tmp_path):
        (tmp_path / "swarmfetch.toml").write_text(
            "[discovery]\ndht_port = 7002\n", encoding="utf-8"
        )
        assert ConfigManager(configure_logging=False).config.discovery.dht_port == 7002

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[network\nlisten_port = ", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Failed to load config file"):
            ConfigManager(path, configure_logging=False)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[network]\nlisten_port = 6882\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            ConfigManager(path, configure_logging=False)

    def test_export_round_trips(self, tmp_path):
        manager = ConfigManager(configure_logging=False)
        path = tmp_path / "exported.toml"
        path.write_text(manager.export(), encoding="utf-8")
        assert ConfigManager(path, configure_logging=False).config == manager.config


class TestEnvironment:
    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.toml"
        path.write_text("[network]\nlisten_port = 7001\n", encoding="utf-8")
        monkeypatch.setenv("SWARMFETCH_LISTEN_PORT", "7005")
        monkeypatch.setenv("SWARMFETCH_TOP_PEERS", "1")
        monkeypatch.setenv("SWARMFETCH_CHUNK_TIMEOUT", "2.5")
        monkeypatch.setenv("SWARMFETCH_STRUCTURED_LOGGING", "yes")
        config = ConfigManager(path, configure_logging=False).config
        assert config.network.listen_port == 7005
        assert config.discovery.top_peers == 1
        assert config.network.chunk_timeout == 2.5
        assert config.observability.structured_logging is True

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("SWARMFETCH_DHT_PORT", "not-a-port")
        with pytest.raises(ConfigurationError):
            ConfigManager(configure_logging=False)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("OFF", False),
            ("1", 1),
            ("0", 0),
            ("1.5", 1.5),
            ("DEBUG", "DEBUG"),
        ],
    )
    def test_parse_env_value(self, raw, expected):
        value = _parse_env_value(raw)
        assert value == expected
        assert type(value) is type(expected)


class TestGlobalConfig:
    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_set_and_reset(self):
        custom = Config(discovery=DiscoveryConfig(top_peers=7))
        set_config(custom)
        assert get_config() is custom
        reset_config()
        assert get_config().discovery.top_peers == 3

    def test_init_config_with_file(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text('[observability]\nlog_level = "DEBUG"\n', encoding="utf-8")
        manager = init_config(path)
        assert get_config() is manager.config
        assert get_config().observability.log_level is LogLevel.DEBUG
