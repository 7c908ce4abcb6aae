"""Fortinet FortiGate: REST API with a bearer API key, SSH fallback."""

from typing import Any

from fleetlink.connectors.rest import ShellFallbackConnector
from fleetlink.domain.exceptions import DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope


class FortigateConnector(ShellFallbackConnector):
    family = "fortigate"
    status_command = "get system status"

    async def _login(self) -> None:
        if not self.descriptor.api_key:
            raise DeviceAuthenticationError(
                f"FortiGate REST API requires api_key: {self.device_id}",
                context={"device_id": self.device_id},
            )
        self._set_credential(
            self.descriptor.api_key, Authorization=f"Bearer {self.descriptor.api_key}"
        )

    async def _probe(self) -> None:
        await self.api_request("/api/v2/monitor/system/status")

    async def _collect_rest_status(self) -> StatusEnvelope:
        info: dict[str, Any] = await self.api_request("/api/v2/monitor/system/status")
        result = info.get("results") or info
        return self.build_status(
            state=ConnectionState.CONNECTED,
            firmware=str(info.get("version") or result.get("version") or ""),
            model=str(result.get("model_name") or result.get("model") or ""),
            serial_number=str(info.get("serial") or result.get("serial") or ""),
            uptime=str(result.get("uptime") or ""),
            details={"hostname": result.get("hostname"), "transport": "rest"},
        )

    async def get_config(self, section: str | None = None) -> str:
        return await self.exec(f"show {section}" if section else "show full-configuration")

    async def get_firewall_policies(self, policy_id: int | None = None) -> Any:
        path = "/api/v2/cmdb/firewall/policy"
        return await self.api_request(f"{path}/{policy_id}" if policy_id else path)

    async def get_interfaces(self) -> Any:
        return await self.api_request("/api/v2/cmdb/system/interface")

    async def get_routes(self) -> Any:
        return await self.api_request("/api/v2/monitor/router/ipv4")

    async def get_vpn_status(self) -> Any:
        return await self.api_request("/api/v2/monitor/vpn/ipsec")
