"""Connectors for serial-to-network modules reached over raw TCP sockets."""

import logging
import time

from fleetlink.config import Settings
from fleetlink.connectors.base import BaseConnector
from fleetlink.domain.exceptions import (
    DeviceApiError,
    DeviceError,
    DeviceTimeoutError,
    DeviceTransportError,
)
from fleetlink.domain.models import (
    CommandResult,
    ConnectionState,
    DeviceDescriptor,
    TransportKind,
)
from fleetlink.infra.transports.stream import (
    DEFAULT_AT_PORT,
    DEFAULT_SERIAL_PORT,
    AtCommandChannel,
    RawByteChannel,
)

logger = logging.getLogger(__name__)


class FramedConnector(BaseConnector):
    """Connector over an AT command port and a transparent serial port.

    Ports come from descriptor.extra ("at_port", "serial_tcp_port"); every
    call opens and closes its own socket, so there is no session to hold.
    """

    transport_kind = TransportKind.SERIAL

    def __init__(self, descriptor: DeviceDescriptor, settings: Settings | None = None) -> None:
        super().__init__(descriptor, settings)
        if not descriptor.host:
            raise ValueError(f"Device {descriptor.id} needs host")
        self.at = AtCommandChannel(
            descriptor.host,
            int(self.extra("at_port", "atPort", default=DEFAULT_AT_PORT)),
            device_id=descriptor.id,
        )
        self.serial = RawByteChannel(
            descriptor.host,
            int(self.extra("serial_tcp_port", "serialTcpPort", default=DEFAULT_SERIAL_PORT)),
            device_id=descriptor.id,
        )

    async def send_at(self, command: str, timeout: float | None = None) -> str:
        """Send one AT command; see AtCommandChannel.send()."""
        if timeout is None:
            timeout = self.settings.at_command_timeout_seconds
        try:
            result = await self.at.send(command, timeout=timeout)
        except (DeviceTimeoutError, DeviceTransportError):
            self._state = ConnectionState.ERROR
            raise
        except DeviceApiError:
            # The module answered, with an error
            self._state = ConnectionState.CONNECTED
            raise
        self._state = ConnectionState.CONNECTED
        return result

    async def send_frame(
        self,
        data: str | bytes,
        timeout: float | None = None,
        idle: float | None = None,
    ) -> str:
        """Send a raw payload; see RawByteChannel.send()."""
        try:
            result = await self.serial.send(
                data,
                timeout=self.settings.frame_timeout_seconds if timeout is None else timeout,
                idle=self.settings.frame_idle_seconds if idle is None else idle,
            )
        except (DeviceTimeoutError, DeviceTransportError):
            self._state = ConnectionState.ERROR
            raise
        self._state = ConnectionState.CONNECTED
        return result

    async def connect(self) -> None:
        try:
            await self.send_at("AT")
        except DeviceError:
            self._state = ConnectionState.ERROR
            raise
        self._state = ConnectionState.CONNECTED

    async def disconnect(self) -> None:
        self._state = ConnectionState.DISCONNECTED

    async def execute_command(self, command: str) -> CommandResult:
        """Send an AT command and capture the outcome. Never raises."""
        started = time.monotonic()
        try:
            output = await self.send_at(command)
        except Exception as e:  # noqa: BLE001
            return self._command_result(command, started, error=str(e) or type(e).__name__)
        return self._command_result(command, started, output=output)
