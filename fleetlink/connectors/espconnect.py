"""ESPConnect fleet gateway: the ESPHome dashboard shape under /api."""

from typing import Any

from fleetlink.connectors.esphome import ESPHomeConnector


class ESPConnectConnector(ESPHomeConnector):
    family = "espconnect"
    devices_path = "/api/devices"

    async def send_command(self, esp_device_id: str, command: str) -> Any:
        return await self.api_request(
            f"{self.devices_path}/{esp_device_id}/command", "POST", json={"command": command}
        )

    async def ota_update(self, esp_device_id: str, firmware_url: str) -> Any:
        return await self.api_request(
            f"{self.devices_path}/{esp_device_id}/ota", "POST", json={"url": firmware_url}
        )
