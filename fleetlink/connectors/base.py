"""Connector contract shared by every device family.

A connector is one live adapter bound to one DeviceDescriptor. It owns the
device's ConnectionState and its transport session handles; sessions are
reused across calls and released only by disconnect() at shutdown.

Failure isolation:
- get_status() never raises; failures become an error-state envelope
- test_connection() never raises; failures become False
- execute_command()/get_config()/list_children() raise
  DeviceUnsupportedError unless the family implements them
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from fleetlink.config import Settings, get_settings
from fleetlink.domain.exceptions import DeviceUnsupportedError
from fleetlink.domain.models import (
    CommandResult,
    ConnectionState,
    DeviceDescriptor,
    StatusEnvelope,
    TransportKind,
)

logger = logging.getLogger(__name__)


class BaseConnector(ABC):
    """Base class for device connectors.

    Subclasses implement connect(), disconnect() and _collect_status();
    the remaining operations are optional capabilities.

    Example:
        connector = CiscoConnector(descriptor)
        status = await connector.get_status()
        if status.state is ConnectionState.ERROR:
            print(status.error)
    """

    family: ClassVar[str] = ""
    transport_kind: ClassVar[TransportKind]

    def __init__(self, descriptor: DeviceDescriptor, settings: Settings | None = None) -> None:
        """Initialize connector.

        Args:
            descriptor: Device description from the inventory
            settings: Application settings (default: global settings)
        """
        self._descriptor = descriptor
        self.settings = settings or get_settings()
        self._state = ConnectionState.DISCONNECTED

    @property
    def descriptor(self) -> DeviceDescriptor:
        return self._descriptor

    @property
    def device_id(self) -> str:
        return self._descriptor.id

    @property
    def name(self) -> str:
        return self._descriptor.display_name

    @property
    def device_family(self) -> str:
        return self._descriptor.family

    @property
    def state(self) -> ConnectionState:
        return self._state

    def extra(self, *keys: str, default: Any = None) -> Any:
        """First value present in descriptor.extra under any of `keys`."""
        for key in keys:
            if key in self._descriptor.extra:
                return self._descriptor.extra[key]
        return default

    @abstractmethod
    async def connect(self) -> None:
        """Establish (or verify) the device session."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the device session."""

    @abstractmethod
    async def _collect_status(self) -> StatusEnvelope:
        """Query the device and build its status envelope. May raise."""

    async def test_connection(self) -> bool:
        """Attempt to connect and report the outcome. Never raises."""
        try:
            await self.connect()
            return True
        except Exception as e:  # noqa: BLE001
            self._state = ConnectionState.ERROR
            logger.warning(
                f"Connection test failed: {self.device_id}: {e}",
                extra={"device_id": self.device_id, "device_family": self.device_family},
            )
            return False

    async def get_status(self) -> StatusEnvelope:
        """Fresh status snapshot. Never raises.

        Any failure while collecting status is folded into an envelope with
        state ERROR and the message in details["error"].
        """
        try:
            return await self._collect_status()
        except Exception as e:  # noqa: BLE001
            self._state = ConnectionState.ERROR
            message = str(e) or type(e).__name__
            logger.warning(
                f"Status collection failed: {self.device_id}: {message}",
                extra={"device_id": self.device_id, "device_family": self.device_family},
            )
            return self.build_status(details={"error": message})

    async def execute_command(self, command: str) -> CommandResult:
        raise DeviceUnsupportedError(
            f"execute_command not supported for device family: {self.device_family}",
            context={"device_id": self.device_id},
        )

    async def get_config(self, section: str | None = None) -> str:
        raise DeviceUnsupportedError(
            f"get_config not supported for device family: {self.device_family}",
            context={"device_id": self.device_id},
        )

    async def list_children(self) -> list[dict[str, Any]]:
        """Sub-entities managed by the device (nodes, VMs, IoT devices)."""
        raise DeviceUnsupportedError(
            f"list_children not supported for device family: {self.device_family}",
            context={"device_id": self.device_id},
        )

    def build_status(self, **fields: Any) -> StatusEnvelope:
        """Build a status envelope for this device.

        The envelope state defaults to the connector's current state.
        """
        fields.setdefault("state", self._state)
        return StatusEnvelope(
            id=self.device_id,
            name=self.name,
            family=self.device_family,
            **fields,
        )

    def _command_result(
        self,
        command: str,
        started: float,
        output: str = "",
        error: str | None = None,
    ) -> CommandResult:
        return CommandResult(
            success=error is None,
            device=self.device_id,
            command=command,
            output=output,
            error=error,
            execution_time_ms=round((time.monotonic() - started) * 1000, 2),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.device_id!r}, state={self._state.value})"
