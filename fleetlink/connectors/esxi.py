"""VMware ESXi / vCenter through the vSphere Automation REST API."""

import base64
import json
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceApiError, DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

SESSION_HEADER = "vmware-api-session-id"


class ESXiConnector(RestConnector):
    family = "esxi"
    credential_headers = (SESSION_HEADER,)

    async def _login(self) -> None:
        # Basic credentials are exchanged once for a session id
        basic = base64.b64encode(
            f"{self.descriptor.username or ''}:{self.descriptor.password or ''}".encode()
        ).decode("ascii")
        session_id = await self.http.request(
            "/api/session", "POST", headers={"Authorization": f"Basic {basic}"}
        )
        if not isinstance(session_id, str) or not session_id:
            raise DeviceAuthenticationError(
                f"ESXi session request returned no session id: {self.device_id}",
                context={"device_id": self.device_id},
            )
        self._set_credential(session_id, **{SESSION_HEADER: session_id})

    async def _logout(self) -> None:
        await self.http.request("/api/session", "DELETE")

    async def get_host_info(self) -> dict[str, Any]:
        hosts: list[dict[str, Any]] = await self.api_request("/api/vcenter/host")
        if not hosts:
            raise DeviceApiError(f"No ESXi hosts found on {self.device_id}")
        detail = await self.api_request(f"/api/vcenter/host/{hosts[0]['host']}")
        return {"name": hosts[0].get("name"), **(detail if isinstance(detail, dict) else {})}

    async def _collect_status(self) -> StatusEnvelope:
        host = await self.get_host_info()
        return self.build_status(
            state=ConnectionState.CONNECTED,
            model=host.get("name"),
            firmware=(host.get("product") or {}).get("version"),
            details=host,
        )

    async def get_config(self, section: str | None = None) -> str:
        return json.dumps(await self.get_host_info(), indent=2)

    async def list_children(self) -> list[dict[str, Any]]:
        """Virtual machines."""
        vms: list[dict[str, Any]] = await self.api_request("/api/vcenter/vm")
        return [
            {
                "id": vm.get("vm"),
                "name": vm.get("name"),
                "power_state": vm.get("power_state"),
                "cpu_count": vm.get("cpu_count"),
                "memory_mib": vm.get("memory_size_MiB"),
            }
            for vm in vms
        ]

    async def get_vm_power_state(self, vm_id: str) -> str:
        power = await self.api_request(f"/api/vcenter/vm/{vm_id}/power")
        return power.get("state", "unknown")

    async def power_action(self, vm_id: str, action: str) -> None:
        """Power action: start, stop, reset or suspend."""
        await self.api_request(f"/api/vcenter/vm/{vm_id}/power", "POST", params={"action": action})

    async def list_datastores(self) -> Any:
        return await self.api_request("/api/vcenter/datastore")
