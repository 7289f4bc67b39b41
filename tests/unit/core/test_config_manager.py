"""Unit tests for the Configuration Manager."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Tuple

import pytest
import yaml

from hostext.core.config_manager import ConfigManager, ConfigSchema
from hostext.utils.exceptions import ConfigurationError, ManagerInitializationError


def test_config_schema_default_values() -> None:
    """Test that ConfigSchema provides correct default values."""
    schema = ConfigSchema()

    assert schema.host["home"] == "."
    assert schema.plugins["update_urls"] == []
    assert schema.plugins["unattended"] is False
    assert schema.plugins["rebuild"] is True
    assert schema.network["retries"] == 3
    assert schema.logging["level"] == "INFO"


def test_config_schema_validation_network() -> None:
    """Test validation of transport settings."""
    schema = ConfigSchema(network={"timeout": 5, "retries": 2})
    assert schema.network["retries"] == 2

    with pytest.raises(ValueError, match="network.retries must be a positive integer"):
        ConfigSchema(network={"timeout": 5, "retries": 0})

    with pytest.raises(ValueError, match="network.timeout must be a positive number"):
        ConfigSchema(network={"timeout": "soon", "retries": 2})


def test_config_schema_update_urls_string() -> None:
    schema = ConfigSchema(plugins={"update_urls": "https://a.example/p.properties https://b.example/p.properties"})

    assert schema.plugins["update_urls"] == [
        "https://a.example/p.properties",
        "https://b.example/p.properties",
    ]


def test_config_manager_initialization(config_manager: ConfigManager) -> None:
    """Test that a YAML file is merged over the defaults."""
    assert config_manager.initialized
    assert config_manager.get("host.home") == "/opt/host"
    assert config_manager.get("host.version") == "4.1.0"
    assert config_manager.get("plugins.update_urls") == ["https://plugins.example.org/plugins.properties"]
    assert config_manager.get("plugins.rebuild") is True
    assert config_manager.get("logging.level") == "DEBUG"
    assert config_manager.get("network.timeout") == 30.0


def test_config_manager_get_missing_key(config_manager: ConfigManager) -> None:
    assert config_manager.get("host.missing") is None
    assert config_manager.get("host.missing", "fallback") == "fallback"
    assert config_manager.get("host.home.deeper", 1) == 1


def test_config_manager_json_file(tmp_path: Path) -> None:
    """Test loading configuration from a JSON file."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"host": {"home": "/srv/host", "version": "5.1.0"}}), encoding="utf-8")

    manager = ConfigManager(config_path=config_file)
    manager.initialize()

    assert manager.get("host.home") == "/srv/host"
    assert manager.get("host.version") == "5.1.0"
    assert manager.status()["loaded_from_file"] is True
    manager.shutdown()


def test_config_manager_missing_file_uses_defaults(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "absent.yaml")
    manager.initialize()

    assert manager.get("host.version") == "5.0.0"
    assert manager.status()["config_file"] is None
    manager.shutdown()


def test_config_manager_unsupported_format(tmp_path: Path) -> None:
    config_file = tmp_path / "config.ini"
    config_file.write_text("[host]\nhome=/srv\n", encoding="utf-8")

    with pytest.raises(ManagerInitializationError):
        ConfigManager(config_path=config_file).initialize()


def test_config_manager_invalid_yaml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text("host: [unclosed\n", encoding="utf-8")

    with pytest.raises(ManagerInitializationError):
        ConfigManager(config_path=config_file).initialize()


def test_config_manager_invalid_values(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump({"network": {"retries": -1}}), encoding="utf-8")

    with pytest.raises(ManagerInitializationError, match="network.retries"):
        ConfigManager(config_path=config_file).initialize()


def test_config_manager_env_vars(temp_config_file: str, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that environment variables override file values."""
    monkeypatch.setenv("HOSTEXT_PLUGINS_UNATTENDED", "true")
    monkeypatch.setenv("HOSTEXT_PLUGINS_REBUILD_COMMAND", "make war")
    monkeypatch.setenv("HOSTEXT_NETWORK_RETRIES", "5")
    monkeypatch.setenv("HOSTEXT_LOGGING_CONSOLE_LEVEL", "ERROR")

    manager = ConfigManager(config_path=temp_config_file)
    manager.initialize()

    assert manager.get("plugins.unattended") is True
    assert manager.get("plugins.rebuild_command") == "make war"
    assert manager.get("network.retries") == 5
    assert manager.get("logging.console.level") == "ERROR"
    assert manager.status()["env_vars_applied"] == 4
    manager.shutdown()


@pytest.mark.parametrize("value,expected", [
    ("yes", True),
    ("off", False),
    ("42", 42),
    ("-3", -3),
    ("2.5", 2.5),
    ("https://plugins.example.org", "https://plugins.example.org"),
])
def test_parse_env_value(value: str, expected: Any) -> None:
    assert ConfigManager._parse_env_value(value) == expected


def test_config_manager_set_and_listeners(config_manager: ConfigManager) -> None:
    """Test that valid changes notify listeners and invalid ones are refused."""
    events: List[Tuple[str, Any]] = []

    def listener(key: str, value: Any) -> None:
        events.append((key, value))

    config_manager.register_listener("network", listener)
    config_manager.set("network.retries", 7)

    assert config_manager.get("network.retries") == 7
    assert events == [("network.retries", 7)]

    with pytest.raises(ConfigurationError):
        config_manager.set("network.retries", 0)
    assert config_manager.get("network.retries") == 7

    config_manager.unregister_listener("network", listener)
    config_manager.set("network.retries", 2)
    assert len(events) == 1


def test_config_manager_listener_errors_are_logged(config_manager: ConfigManager) -> None:
    def broken(key: str, value: Any) -> None:
        raise RuntimeError("listener failed")

    config_manager.register_listener("host", broken)
    config_manager.set("host.home", "/srv/other")

    assert config_manager.get("host.home") == "/srv/other"


def test_config_manager_save(config_manager: ConfigManager, tmp_path: Path) -> None:
    target = tmp_path / "saved" / "hostext.yaml"

    config_manager.save(target)

    saved = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert saved["host"]["home"] == "/opt/host"

    with pytest.raises(ConfigurationError):
        config_manager.save(tmp_path / "hostext.toml")


def test_config_manager_access_before_initialization() -> None:
    manager = ConfigManager(config_path="unused.yaml")

    with pytest.raises(ConfigurationError):
        manager.get("host.home")
    with pytest.raises(ConfigurationError):
        manager.set("host.home", "/srv")


def test_config_manager_shutdown(config_manager: ConfigManager) -> None:
    config_manager.register_listener("host", lambda key, value: None)

    config_manager.shutdown()

    status = config_manager.status()
    assert status["initialized"] is False
    assert status["registered_listeners"] == 0
