"""Connectors for device families reached over an SSH command shell."""

import logging
import time
from collections.abc import Callable
from typing import ClassVar

from fleetlink.config import Settings
from fleetlink.connectors.base import BaseConnector
from fleetlink.domain.exceptions import DeviceError
from fleetlink.domain.models import (
    CommandResult,
    ConnectionState,
    DeviceDescriptor,
    TransportKind,
)
from fleetlink.infra.transports.ssh import DEFAULT_PAGING_COMMAND, ShellSession

logger = logging.getLogger(__name__)


def build_shell_session(
    descriptor: DeviceDescriptor,
    settings: Settings,
    on_close: Callable[[], None] | None = None,
) -> ShellSession:
    """Create a ShellSession from a descriptor and the SSH settings."""
    return ShellSession(
        host=descriptor.host or "",
        port=descriptor.port or 22,
        username=descriptor.username,
        password=descriptor.password,
        private_key=descriptor.extra.get("private_key") or descriptor.extra.get("privateKey"),
        connect_timeout=settings.ssh_connect_timeout_seconds,
        command_timeout=settings.ssh_command_timeout_seconds,
        prompt_wait=settings.ssh_prompt_wait_seconds,
        known_hosts=settings.ssh_known_hosts,
        connect_retries=settings.ssh_connect_retries,
        device_id=descriptor.id,
        on_close=on_close,
    )


class ShellConnector(BaseConnector):
    """Connector over one reusable SSH session.

    Families choose how commands run:
    - use_interactive_shell = False: one-shot exec channel
    - use_interactive_shell = True: PTY shell, paging disabled with
      paging_command, completion on the trailing prompt
    """

    transport_kind = TransportKind.SSH
    use_interactive_shell: ClassVar[bool] = False
    paging_command: ClassVar[str | None] = DEFAULT_PAGING_COMMAND

    def __init__(self, descriptor: DeviceDescriptor, settings: Settings | None = None) -> None:
        super().__init__(descriptor, settings)
        self.session = build_shell_session(descriptor, self.settings, self._on_session_closed)

    def _on_session_closed(self) -> None:
        if self._state is ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED

    async def connect(self) -> None:
        try:
            await self.session.connect()
        except DeviceError:
            self._state = ConnectionState.ERROR
            raise
        self._state = ConnectionState.CONNECTED

    async def disconnect(self) -> None:
        await self.session.close()
        self._state = ConnectionState.DISCONNECTED

    async def exec(self, command: str, timeout: float | None = None) -> str:
        """Run a command on a one-shot exec channel."""
        await self.connect()
        return await self.session.exec(command, timeout=timeout)

    async def shell(self, command: str, timeout: float | None = None) -> str:
        """Run a command in an interactive shell."""
        await self.connect()
        return await self.session.shell(
            command, timeout=timeout, paging_command=self.paging_command
        )

    async def run(self, command: str, timeout: float | None = None) -> str:
        """Run a command the way this family's CLI expects."""
        if self.use_interactive_shell:
            return await self.shell(command, timeout=timeout)
        return await self.exec(command, timeout=timeout)

    async def execute_command(self, command: str) -> CommandResult:
        """Run a command and capture the outcome. Never raises."""
        started = time.monotonic()
        try:
            output = await self.run(command)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                f"Command failed on {self.device_id}: {command}: {e}",
                extra={"device_id": self.device_id, "command": command},
            )
            return self._command_result(command, started, error=str(e) or type(e).__name__)
        return self._command_result(command, started, output=output.strip())
