"""Tests for configuration module."""

import json
import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from fleetlink.config import (
    Settings,
    get_settings,
    load_devices,
    load_settings_from_file,
    resolve_env_vars,
    set_settings,
)


class TestSettings:
    """Tests for Settings class."""

    def test_default_settings(self) -> None:
        """Test that default settings are valid."""
        settings = Settings()
        assert settings.log_level == "INFO"
        assert settings.log_format == "json"
        assert settings.devices_file == Path("devices.json")
        assert settings.at_command_timeout_seconds == 3.0
        assert settings.frame_idle_seconds == 0.5
        assert settings.status_concurrency == 1
        assert settings.ssh_known_hosts is None

    def test_environment_override(self) -> None:
        """Test environment variable override."""
        orig = os.environ.get("FLEETLINK_HTTP_TIMEOUT_SECONDS")
        try:
            os.environ["FLEETLINK_HTTP_TIMEOUT_SECONDS"] = "12.5"
            settings = Settings()
            assert settings.http_timeout_seconds == 12.5
        finally:
            if orig is not None:
                os.environ["FLEETLINK_HTTP_TIMEOUT_SECONDS"] = orig
            else:
                os.environ.pop("FLEETLINK_HTTP_TIMEOUT_SECONDS", None)

    def test_lowercase_log_level_accepted(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_devices_file_validation(self) -> None:
        """Test inventory extension validation."""
        Settings(devices_file="fleet.yaml")
        with pytest.raises(ValidationError, match="devices_file must be"):
            Settings(devices_file="fleet.txt")

    def test_bounds_validation(self) -> None:
        with pytest.raises(ValidationError):
            Settings(status_concurrency=0)
        with pytest.raises(ValidationError):
            Settings(http_timeout_seconds=0)

    def test_settings_singleton(self) -> None:
        custom = Settings(status_concurrency=4)
        set_settings(custom)
        assert get_settings() is custom


class TestLoadSettingsFromFile:
    """Tests for YAML/TOML settings files."""

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "fleetlink.yaml"
        path.write_text("log_level: WARNING\nstatus_concurrency: 3\n")

        settings = load_settings_from_file(path)

        assert settings.log_level == "WARNING"
        assert settings.status_concurrency == 3

    def test_toml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "fleetlink.toml"
        path.write_text('log_format = "text"\nunknown_key = 1\n')

        settings = load_settings_from_file(path)

        assert settings.log_format == "text"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings_from_file(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path: Path) -> None:
        path = tmp_path / "fleetlink.ini"
        path.write_text("[x]\n")
        with pytest.raises(ValueError, match="Unsupported config file format"):
            load_settings_from_file(path)


class TestDeviceInventory:
    """Tests for device inventory loading."""

    def test_resolve_env_vars_recursive(self) -> None:
        env = {"PW": "s3cret"}
        value = {"password": "${PW}", "nested": ["x-${PW}", "${MISSING}"], "port": 22}

        assert resolve_env_vars(value, env) == {
            "password": "s3cret",
            "nested": ["x-s3cret", ""],
            "port": 22,
        }

    def test_load_json_inventory(self, tmp_path: Path) -> None:
        path = tmp_path / "devices.json"
        path.write_text(
            json.dumps(
                {
                    "devices": [
                        {
                            "id": "sw-1",
                            "name": "Core switch",
                            "type": "Cisco",
                            "transport": ["ssh"],
                            "host": "10.0.0.2",
                            "password": "${SW_PASSWORD}",
                            "tags": ["core"],
                        },
                        {"id": "nas-1", "type": "synology", "apiUrl": "https://nas:5001"},
                    ]
                }
            )
        )

        devices = load_devices(path, environ={"SW_PASSWORD": "pw"})

        assert [d.id for d in devices] == ["sw-1", "nas-1"]
        assert devices[0].family == "cisco"
        assert devices[0].password == "pw"
        assert devices[1].api_url == "https://nas:5001"

    def test_load_yaml_bare_list(self, tmp_path: Path) -> None:
        path = tmp_path / "devices.yaml"
        path.write_text("- id: radio-1\n  type: hiflying\n  host: 10.0.0.50\n")

        devices = load_devices(path)

        assert devices[0].family == "hiflying"

    def test_missing_inventory_is_empty(self, tmp_path: Path) -> None:
        assert load_devices(tmp_path / "none.json") == []

    def test_duplicate_ids_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "devices.json"
        path.write_text(json.dumps([{"id": "a", "type": "cisco"}, {"id": "a", "type": "hp"}]))

        with pytest.raises(ValueError, match="Duplicate device id"):
            load_devices(path)

    def test_malformed_inventory(self, tmp_path: Path) -> None:
        path = tmp_path / "devices.json"
        path.write_text(json.dumps({"devices": {"id": "a"}}))

        with pytest.raises(ValueError, match="list of devices"):
            load_devices(path)
