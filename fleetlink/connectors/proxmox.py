"""Proxmox VE clusters.

Authenticates either with an API token (``api_key`` of the form
``user@realm!tokenid=secret``) or with a username/password ticket plus
its CSRF prevention token.
"""

import json
from typing import Any
from urllib.parse import quote

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope


class ProxmoxConnector(RestConnector):
    family = "proxmox"
    credential_headers = ("Authorization", "Cookie", "CSRFPreventionToken")

    async def _login(self) -> None:
        if self.descriptor.api_key:
            self._set_credential(
                self.descriptor.api_key,
                Authorization=f"PVEAPIToken={self.descriptor.api_key}",
            )
            return

        response = await self.http.request(
            "/api2/json/access/ticket",
            "POST",
            data={
                "username": self.descriptor.username or "",
                "password": self.descriptor.password or "",
            },
        )
        data = response.get("data") if isinstance(response, dict) else None
        if not data or "ticket" not in data:
            raise DeviceAuthenticationError(
                f"Proxmox ticket request returned no ticket: {self.device_id}",
                context={"device_id": self.device_id},
            )
        self._set_credential(
            data["ticket"],
            Cookie=f"PVEAuthCookie={data['ticket']}",
            CSRFPreventionToken=data.get("CSRFPreventionToken", ""),
        )

    async def pve_get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.api_request(f"/api2/json{path}", params=params)
        return response.get("data") if isinstance(response, dict) else response

    async def _probe(self) -> None:
        await self.pve_get("/version")

    async def _collect_status(self) -> StatusEnvelope:
        nodes: list[dict[str, Any]] = await self.pve_get("/nodes")
        online = [n for n in nodes if n.get("status") == "online"]
        return self.build_status(
            state=ConnectionState.CONNECTED,
            details={
                "nodes": len(nodes),
                "nodes_online": len(online),
                "node_names": [n.get("node") for n in nodes],
            },
        )

    async def get_config(self, section: str | None = None) -> str:
        path = f"/cluster/{section}" if section else "/nodes"
        return json.dumps(await self.pve_get(path), indent=2)

    async def list_children(self) -> list[dict[str, Any]]:
        """Nodes, VMs and containers from /cluster/resources."""
        resources: list[dict[str, Any]] = await self.pve_get("/cluster/resources")
        return [
            {
                "id": r.get("id"),
                "type": r.get("type"),
                "name": r.get("name") or r.get("node"),
                "node": r.get("node"),
                "status": r.get("status"),
            }
            for r in resources
            if r.get("type") in ("node", "qemu", "lxc")
        ]

    async def get_node_status(self, node: str) -> Any:
        return await self.pve_get(f"/nodes/{quote(node)}/status")

    async def list_vms(self, node: str) -> Any:
        return await self.pve_get(f"/nodes/{quote(node)}/qemu")

    async def list_containers(self, node: str) -> Any:
        return await self.pve_get(f"/nodes/{quote(node)}/lxc")

    async def get_storage(self, node: str) -> Any:
        return await self.pve_get(f"/nodes/{quote(node)}/storage")
