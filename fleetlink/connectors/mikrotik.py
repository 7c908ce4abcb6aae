"""MikroTik RouterOS v7: REST API with basic auth, SSH fallback."""

import base64
from typing import Any

from fleetlink.connectors.rest import ShellFallbackConnector
from fleetlink.domain.models import ConnectionState, StatusEnvelope


class MikrotikConnector(ShellFallbackConnector):
    family = "mikrotik"
    status_command = "/system resource print"

    async def _login(self) -> None:
        # Static credential: nothing to exchange
        token = base64.b64encode(
            f"{self.descriptor.username or ''}:{self.descriptor.password or ''}".encode()
        ).decode("ascii")
        self._set_credential(token, Authorization=f"Basic {token}")

    async def _probe(self) -> None:
        await self.api_request("/rest/system/resource")

    async def _collect_rest_status(self) -> StatusEnvelope:
        resource: dict[str, Any] = await self.api_request("/rest/system/resource")
        return self.build_status(
            state=ConnectionState.CONNECTED,
            uptime=str(resource.get("uptime", "")),
            firmware=str(resource.get("version", "")),
            model=str(resource.get("board-name", "")),
            details={
                "cpu_load": resource.get("cpu-load"),
                "free_memory": resource.get("free-memory"),
                "total_memory": resource.get("total-memory"),
                "transport": "rest",
            },
        )

    async def get_config(self, section: str | None = None) -> str:
        command = f"/{section.strip('/')} export" if section else "/export"
        return await self.exec(command)

    async def get_interfaces(self) -> Any:
        return await self.api_request("/rest/interface")

    async def get_routes(self) -> Any:
        return await self.api_request("/rest/ip/route")

    async def get_firewall_filter(self, chain: str | None = None) -> Any:
        params = {"chain": chain} if chain else None
        return await self.api_request("/rest/ip/firewall/filter", params=params)

    async def get_dhcp_leases(self) -> Any:
        return await self.api_request("/rest/ip/dhcp-server/lease")
