"""ESPHome dashboard. Authentication is an optional bearer key."""

from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.models import ConnectionState, StatusEnvelope


class ESPHomeConnector(RestConnector):
    family = "esphome"
    default_scheme = "http"
    devices_path = "/devices"

    async def _login(self) -> None:
        api_key = self.descriptor.api_key
        if api_key:
            self._set_credential(api_key, Authorization=f"Bearer {api_key}")
        else:
            self._set_credential("")

    async def _probe(self) -> None:
        await self.api_request(self.devices_path)

    async def _collect_status(self) -> StatusEnvelope:
        devices = await self.api_request(self.devices_path)
        return self.build_status(
            state=ConnectionState.CONNECTED,
            details={"devices": len(_device_list(devices))},
        )

    async def list_children(self) -> list[dict[str, Any]]:
        devices = await self.api_request(self.devices_path)
        return [
            {
                "id": d.get("name") or d.get("id"),
                "name": d.get("friendly_name") or d.get("name"),
                "address": d.get("address"),
                "version": d.get("deployed_version") or d.get("version"),
            }
            for d in _device_list(devices)
        ]

    async def get_device_info(self, name: str) -> Any:
        return await self.api_request(f"{self.devices_path}/{name}")


def _device_list(payload: Any) -> list[dict[str, Any]]:
    """Normalise the dashboard's device listing to a flat list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        # ESPHome dashboard splits configured and importable devices
        for key in ("configured", "devices"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []
