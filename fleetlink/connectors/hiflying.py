"""Hi-Flying serial-to-network modules (HF-LPB/Elfin series).

AT commands go to the AT port (default 49000); the transparent serial
tunnel is on the serial TCP port (default 8899). When the AT port does
not answer, the module's web UI is probed over HTTP before giving up.
"""

import json
import logging
from typing import Any

import httpx

from fleetlink.connectors.framed import FramedConnector
from fleetlink.domain.exceptions import DeviceError, DeviceTransportError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

logger = logging.getLogger(__name__)

HTTP_PROBE_TIMEOUT_SECONDS = 5.0


class HiFlyingConnector(FramedConnector):
    family = "hiflying"

    async def connect(self) -> None:
        try:
            await self.send_at("AT")
            self._state = ConnectionState.CONNECTED
            return
        except DeviceError as e:
            logger.info(
                f"AT port unavailable on {self.device_id} ({e}), probing HTTP",
                extra={"device_id": self.device_id},
            )

        if await self._probe_http():
            self._state = ConnectionState.CONNECTED
            return

        self._state = ConnectionState.ERROR
        raise DeviceTransportError(
            f"Cannot connect to Hi-Flying device at {self.descriptor.host} "
            f"(AT port {self.at.port} / HTTP)",
            context={"device_id": self.device_id},
        )

    async def _probe_http(self) -> bool:
        url = self.descriptor.api_url or f"http://{self.descriptor.host}/"
        try:
            async with httpx.AsyncClient(timeout=HTTP_PROBE_TIMEOUT_SECONDS) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"HTTP probe failed: {url}: {e}", extra={"device_id": self.device_id})
            return False
        # Any non-server-error answer (including 401 from the web UI) proves reachability
        return response.status_code < 500

    async def _optional_at(self, command: str) -> str | None:
        try:
            return await self.send_at(command)
        except DeviceError:
            return None

    async def get_device_info(self) -> dict[str, Any]:
        return {
            "firmware": await self._optional_at("AT+VER"),
            "mac": await self._optional_at("AT+MAC"),
            "module_id": await self._optional_at("AT+MID"),
        }

    async def _collect_status(self) -> StatusEnvelope:
        info = await self.get_device_info()
        if all(value is None for value in info.values()):
            # Nothing answered: surface the real transport error
            await self.send_at("AT")
        return self.build_status(
            state=ConnectionState.CONNECTED,
            firmware=info["firmware"],
            model=info["module_id"],
            details={
                "mac": info["mac"],
                "at_port": self.at.port,
                "serial_tcp_port": self.serial.port,
            },
        )

    async def get_serial_config(self, port: int | None = None) -> str:
        return await self.send_at(f"AT+UART{port}" if port is not None else "AT+UART")

    async def set_serial_config(
        self,
        baud: int,
        data_bits: int = 8,
        stop_bits: int = 1,
        parity: str = "NONE",
        port: int | None = None,
    ) -> str:
        suffix = f"{port}" if port is not None else ""
        return await self.send_at(f"AT+UART{suffix}={baud},{data_bits},{stop_bits},{parity},NFC")

    async def get_network_config(self) -> dict[str, str | None]:
        return {
            "wan": await self._optional_at("AT+WANN"),
            "socket": await self._optional_at("AT+NETP"),
            "dns": await self._optional_at("AT+DNS"),
        }

    async def get_config(self, section: str | None = None) -> str:
        config: dict[str, Any] = {}
        if section in (None, "device"):
            config["device"] = await self.get_device_info()
        if section in (None, "serial"):
            try:
                config["serial"] = await self.get_serial_config()
            except DeviceError as e:
                config["serial"] = f"N/A ({e})"
        if section in (None, "network"):
            config["network"] = await self.get_network_config()
        return json.dumps(config, indent=2)

    async def reboot(self) -> str:
        try:
            return await self.send_at("AT+Z", timeout=2.0)
        except DeviceError:
            # The module drops the socket while restarting
            return "Reboot command sent (device disconnected)"
