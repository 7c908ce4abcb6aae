"""Shared pytest fixtures.

Key goals:
- Prevent global singletons (settings, device registry) from leaking
  state across tests.
- Provide descriptor/settings factories so tests build devices without
  touching inventory files or the environment.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from fleetlink.config import Settings, reset_settings
from fleetlink.domain.models import DeviceDescriptor
from fleetlink.registry import reset_registry


@pytest.fixture(autouse=True)
def _reset_global_singletons() -> Iterator[None]:
    """Ensure global singletons do not leak between tests."""
    reset_settings()
    reset_registry()
    yield
    reset_settings()
    reset_registry()


@pytest.fixture
def settings() -> Settings:
    """Fast settings: no retries, short timeouts."""
    return Settings(
        http_retry_attempts=1,
        http_retry_backoff_seconds=0,
        ssh_connect_retries=1,
        ssh_connect_timeout_seconds=1,
        ssh_command_timeout_seconds=1,
        ssh_prompt_wait_seconds=0.2,
        at_command_timeout_seconds=1,
        frame_timeout_seconds=1,
        frame_idle_seconds=0.1,
    )


@pytest.fixture
def make_descriptor() -> Callable[..., DeviceDescriptor]:
    """Build a DeviceDescriptor with sensible defaults for a family."""

    def _make(family: str = "cisco", device_id: str = "dev-1", **fields: Any) -> DeviceDescriptor:
        fields.setdefault("host", "192.0.2.10")
        fields.setdefault("username", "admin")
        fields.setdefault("password", "secret")
        return DeviceDescriptor(id=device_id, family=family, **fields)

    return _make
