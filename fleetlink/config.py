"""Configuration module for fleetlink.

Implements Pydantic v2 Settings for configuration management with support for:
- Environment variables (FLEETLINK_* prefix)
- YAML/TOML configuration files
- Command-line argument overrides
- Fail-fast validation at startup

Configuration priority (later overrides earlier):
1. Built-in defaults
2. Configuration file (YAML/TOML)
3. Environment variables
4. Command-line arguments

The device inventory (devices.json / devices.yaml) is loaded separately by
load_devices(), with ${VAR} interpolation from the environment.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleetlink.domain.models import DeviceDescriptor

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


class Settings(BaseSettings):
    """Application configuration with sensible defaults.

    Example:
        # Load from environment only
        settings = Settings()

        # Override specific values
        settings = Settings(http_timeout_seconds=10, status_concurrency=4)
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown fields
    )

    # ========================================
    # Application Settings
    # ========================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    log_format: Literal["json", "text"] = Field(default="json", description="Log output format")

    devices_file: Path = Field(
        default=Path("devices.json"), description="Device inventory file (JSON or YAML)"
    )

    # ========================================
    # Shell (SSH) Transport
    # ========================================

    ssh_connect_timeout_seconds: float = Field(
        default=30.0, gt=0, le=300, description="SSH login timeout"
    )

    ssh_command_timeout_seconds: float = Field(
        default=30.0, gt=0, le=3600, description="Default one-shot/interactive command timeout"
    )

    ssh_prompt_wait_seconds: float = Field(
        default=5.0,
        ge=0,
        le=60,
        description="Max wait for the initial prompt of an interactive shell",
    )

    ssh_connect_retries: int = Field(
        default=1, ge=1, le=10, description="SSH connection attempts before giving up"
    )

    ssh_known_hosts: str | None = Field(
        default=None,
        description="known_hosts file for host key checking (None disables checking)",
    )

    # ========================================
    # HTTP Transport
    # ========================================

    http_timeout_seconds: float = Field(
        default=30.0, gt=0, le=300, description="HTTP request timeout"
    )

    http_verify_ssl: bool = Field(
        default=True,
        description="Verify TLS certificates. Devices can override with extra.verify_ssl",
    )

    http_retry_attempts: int = Field(
        default=2, ge=1, le=10, description="Attempts for transient network errors"
    )

    http_retry_backoff_seconds: float = Field(
        default=0.5, ge=0, le=60, description="Exponential backoff base for retries"
    )

    # ========================================
    # Byte-Stream Framing Transport
    # ========================================

    at_command_timeout_seconds: float = Field(
        default=3.0, gt=0, le=120, description="AT command completion bound"
    )

    frame_timeout_seconds: float = Field(
        default=3.0, gt=0, le=120, description="Raw frame overall bound"
    )

    frame_idle_seconds: float = Field(
        default=0.5, gt=0, le=30, description="Silence after last chunk that ends a raw frame"
    )

    # ========================================
    # Registry
    # ========================================

    status_concurrency: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Workers for fleet-wide status collection (1 = sequential)",
    )

    # ========================================
    # Tracing
    # ========================================

    tracing_console_export: bool = Field(
        default=False, description="Export trace spans to console"
    )

    # ========================================
    # Validators
    # ========================================

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case log levels from env/CLI."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("devices_file")
    @classmethod
    def validate_devices_file(cls, v: Path) -> Path:
        """Validate inventory file extension."""
        if v.suffix.lower() not in (".json", ".yaml", ".yml"):
            raise ValueError("devices_file must be a .json, .yaml or .yml file")
        return v


# ========================================
# Global Settings Instance
# ========================================

_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set global settings instance.

    Args:
        settings: Settings instance to use globally
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Drop the global settings instance (tests)."""
    global _settings
    _settings = None


def _load_structured_file(path: Path) -> Any:
    suffix = path.suffix.lower()

    if suffix in [".yaml", ".yml"]:
        import yaml

        with open(path) as f:
            return yaml.safe_load(f)
    elif suffix == ".toml":
        import tomllib

        with open(path, "rb") as f:
            return tomllib.load(f)
    elif suffix == ".json":
        with open(path) as f:
            return json.load(f)
    raise ValueError(f"Unsupported config file format: {suffix}. Use .json, .yaml, .yml, or .toml")


def load_settings_from_file(config_file: Path | str) -> Settings:
    """Load settings from YAML or TOML configuration file.

    Args:
        config_file: Path to configuration file

    Returns:
        Settings instance loaded from file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid
    """
    config_path = Path(config_file)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    if config_path.suffix.lower() == ".json":
        raise ValueError("Settings files must be YAML or TOML")

    config_data = _load_structured_file(config_path) or {}
    if not isinstance(config_data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    return Settings(**config_data)


# ========================================
# Device Inventory
# ========================================


def resolve_env_vars(value: Any, environ: dict[str, str] | None = None) -> Any:
    """Recursively replace ${NAME} in strings with environment values.

    Missing variables resolve to an empty string.
    """
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        return _ENV_VAR_PATTERN.sub(lambda m: env.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [resolve_env_vars(item, env) for item in value]
    if isinstance(value, dict):
        return {k: resolve_env_vars(v, env) for k, v in value.items()}
    return value


def load_devices(
    devices_file: Path | str, environ: dict[str, str] | None = None
) -> list[DeviceDescriptor]:
    """Load device descriptors from a JSON or YAML inventory.

    The file holds either ``{"devices": [...]}`` or a bare list of devices.

    Args:
        devices_file: Inventory path
        environ: Environment used for ${VAR} interpolation (defaults to os.environ)

    Returns:
        Device descriptors in file order (empty if the file is missing)

    Raises:
        ValueError: On malformed inventory or duplicate device ids
    """
    path = Path(devices_file)
    if not path.exists():
        logger.warning(f"Devices file not found: {path}. Starting with no devices.")
        return []

    raw = _load_structured_file(path)
    if isinstance(raw, dict):
        raw = raw.get("devices", [])
    if not isinstance(raw, list):
        raise ValueError(f"Devices file must contain a list of devices: {path}")

    descriptors: list[DeviceDescriptor] = []
    seen: set[str] = set()
    for entry in resolve_env_vars(raw, environ):
        descriptor = DeviceDescriptor.model_validate(entry)
        if descriptor.id in seen:
            raise ValueError(f"Duplicate device id in {path}: {descriptor.id}")
        seen.add(descriptor.id)
        descriptors.append(descriptor)

    logger.info(f"Loaded {len(descriptors)} device(s) from {path}")
    return descriptors
