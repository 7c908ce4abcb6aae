"""Tests for the connector contract and the family factory."""

from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fleetlink.config import Settings
from fleetlink.connectors import CONNECTOR_TYPES, create_connector, supported_families
from fleetlink.connectors.base import BaseConnector
from fleetlink.connectors.cisco import CiscoConnector
from fleetlink.connectors.hiflying import HiFlyingConnector
from fleetlink.connectors.proxmox import ProxmoxConnector
from fleetlink.domain.exceptions import (
    DeviceTransportError,
    DeviceUnsupportedError,
    UnknownDeviceFamilyError,
)
from fleetlink.domain.models import (
    ConnectionState,
    DeviceDescriptor,
    StatusEnvelope,
    TransportKind,
)


class FakeConnector(BaseConnector):
    """Connector whose behaviour is scripted per test."""

    family = "fake"
    transport_kind = TransportKind.REST

    def __init__(self, *args: Any, fail_with: Exception | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.fail_with = fail_with

    async def connect(self) -> None:
        if self.fail_with:
            raise self.fail_with
        self._state = ConnectionState.CONNECTED

    async def disconnect(self) -> None:
        self._state = ConnectionState.DISCONNECTED

    async def _collect_status(self) -> StatusEnvelope:
        await self.connect()
        return self.build_status(firmware="1.0")


@pytest.fixture
def descriptor() -> DeviceDescriptor:
    return DeviceDescriptor(
        id="dev-1", name="Device One", family="fake", extra={"atPort": 48000}
    )


class TestBaseConnector:
    """Tests for BaseConnector."""

    def test_properties(self, descriptor: DeviceDescriptor, settings: Settings) -> None:
        connector = FakeConnector(descriptor, settings)

        assert connector.device_id == "dev-1"
        assert connector.name == "Device One"
        assert connector.device_family == "fake"
        assert connector.state is ConnectionState.DISCONNECTED
        assert connector.extra("at_port", "atPort") == 48000
        assert connector.extra("missing", default=7) == 7
        assert "dev-1" in repr(connector)

    @pytest.mark.asyncio
    async def test_get_status_success(
        self, descriptor: DeviceDescriptor, settings: Settings
    ) -> None:
        connector = FakeConnector(descriptor, settings)

        status = await connector.get_status()

        assert status.state is ConnectionState.CONNECTED
        assert status.firmware == "1.0"
        assert status.id == "dev-1"
        assert status.name == "Device One"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            DeviceTransportError("connection refused"),
            RuntimeError("unexpected"),
            KeyError("uptime"),
            ValueError(),
        ],
    )
    async def test_get_status_never_raises(
        self, descriptor: DeviceDescriptor, settings: Settings, error: Exception
    ) -> None:
        connector = FakeConnector(descriptor, settings, fail_with=error)

        status = await connector.get_status()

        assert status.state is ConnectionState.ERROR
        assert connector.state is ConnectionState.ERROR
        assert status.error
        assert status.id == "dev-1"

    @pytest.mark.asyncio
    async def test_get_status_error_message(
        self, descriptor: DeviceDescriptor, settings: Settings
    ) -> None:
        connector = FakeConnector(
            descriptor, settings, fail_with=DeviceTransportError("connection refused")
        )

        status = await connector.get_status()

        assert status.details["error"] == "connection refused"

    @pytest.mark.asyncio
    async def test_test_connection(self, descriptor: DeviceDescriptor, settings: Settings) -> None:
        assert await FakeConnector(descriptor, settings).test_connection() is True

        failing = FakeConnector(descriptor, settings, fail_with=RuntimeError("down"))
        assert await failing.test_connection() is False
        assert failing.state is ConnectionState.ERROR

    @pytest.mark.asyncio
    async def test_optional_operations_unsupported(
        self, descriptor: DeviceDescriptor, settings: Settings
    ) -> None:
        connector = FakeConnector(descriptor, settings)

        with pytest.raises(DeviceUnsupportedError, match="family: fake"):
            await connector.execute_command("reboot")
        with pytest.raises(DeviceUnsupportedError, match="get_config"):
            await connector.get_config()
        with pytest.raises(DeviceUnsupportedError, match="list_children"):
            await connector.list_children()


class TestCreateConnector:
    """Tests for the family factory."""

    def test_all_families_registered(self) -> None:
        assert supported_families() == sorted(
            [
                "cisco",
                "dahua-dss",
                "dahua-nvr",
                "espconnect",
                "esphome",
                "esxi",
                "fortigate",
                "hiflying",
                "hp",
                "mikrotik",
                "openstack",
                "proxmox",
                "qnap",
                "sonoff",
                "synology",
                "thingsboard",
                "tuya",
            ]
        )
        for family, cls in CONNECTOR_TYPES.items():
            assert cls.family == family

    @pytest.mark.parametrize(
        ("family", "expected"),
        [
            ("cisco", CiscoConnector),
            ("Proxmox", ProxmoxConnector),
            ("hiflying", HiFlyingConnector),
        ],
    )
    def test_dispatch_by_family(
        self, make_descriptor: Any, settings: Settings, family: str, expected: type
    ) -> None:
        connector = create_connector(make_descriptor(family), settings)

        assert type(connector) is expected
        assert connector.state is ConnectionState.DISCONNECTED

    def test_unknown_family_fails_at_construction(
        self, make_descriptor: Any, settings: Settings
    ) -> None:
        with pytest.raises(UnknownDeviceFamilyError, match="Unknown device family: toaster"):
            create_connector(make_descriptor("toaster"), settings)


class TestUnreachableFamilies:
    """Every registered family folds transport failures into its status."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("family", sorted(CONNECTOR_TYPES))
    async def test_get_status_never_raises(
        self, make_descriptor: Any, settings: Settings, family: str
    ) -> None:
        connector = create_connector(make_descriptor(family, api_key="tok"), settings)

        with (
            patch("asyncssh.connect", AsyncMock(side_effect=OSError("No route to host"))),
            patch.object(
                httpx.AsyncClient,
                "request",
                AsyncMock(side_effect=httpx.ConnectError("All connection attempts failed")),
            ),
            patch("asyncio.open_connection", AsyncMock(side_effect=OSError("Connection refused"))),
        ):
            status = await connector.get_status()

        assert status.state is ConnectionState.ERROR
        assert connector.state is ConnectionState.ERROR
        assert status.error
        assert status.id == "dev-1"
