"""OpenStack clouds through Keystone v3 and the service catalog.

Password login scoped to a project returns the token in the
``X-Subject-Token`` response header and the service catalog in the body.
Compute, network, volume and image calls go to the public endpoints
listed in that catalog; the token travels in ``X-Auth-Token``.
"""

import json
import logging
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceAuthenticationError, DeviceUnsupportedError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Auth-Token"
SUBJECT_TOKEN_HEADER = "X-Subject-Token"

# Catalog service type -> endpoint name; the first match wins for volume
SERVICE_TYPES = {
    "compute": "compute",
    "network": "network",
    "volumev3": "volume",
    "volumev2": "volume",
    "block-storage": "volume",
    "image": "image",
}

SERVER_ACTIONS: dict[str, dict[str, Any]] = {
    "start": {"os-start": None},
    "stop": {"os-stop": None},
    "reboot": {"reboot": {"type": "SOFT"}},
    "hard-reboot": {"reboot": {"type": "HARD"}},
    "pause": {"pause": None},
    "unpause": {"unpause": None},
    "suspend": {"suspend": None},
    "resume": {"resume": None},
}


def parse_catalog(catalog: list[dict[str, Any]]) -> dict[str, str]:
    """Service endpoints from a Keystone catalog.

    Prefers the public interface, then internal, then whatever is listed.
    """
    endpoints: dict[str, str] = {}
    for entry in catalog:
        name = SERVICE_TYPES.get(entry.get("type", ""))
        listed = entry.get("endpoints") or []
        if not name or not listed or name in endpoints:
            continue
        by_interface = {e.get("interface"): e for e in listed}
        chosen = by_interface.get("public") or by_interface.get("internal") or listed[0]
        endpoints[name] = str(chosen["url"]).rstrip("/")
    return endpoints


class OpenStackConnector(RestConnector):
    family = "openstack"
    default_port = 5000
    credential_headers = (TOKEN_HEADER,)

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.project = str(self.extra("project", default="admin"))
        self.domain = str(self.extra("domain", default="Default"))
        self.endpoints: dict[str, str] = {}
        self.project_id: str | None = None

    async def _login(self) -> None:
        body, headers = await self.http.request_with_headers(
            "/v3/auth/tokens",
            "POST",
            json={
                "auth": {
                    "identity": {
                        "methods": ["password"],
                        "password": {
                            "user": {
                                "name": self.descriptor.username,
                                "domain": {"name": self.domain},
                                "password": self.descriptor.password,
                            }
                        },
                    },
                    "scope": {
                        "project": {"name": self.project, "domain": {"name": self.domain}}
                    },
                }
            },
        )
        token = headers.get(SUBJECT_TOKEN_HEADER)
        if not token:
            raise DeviceAuthenticationError(
                f"OpenStack auth: no {SUBJECT_TOKEN_HEADER} in response",
                context={"device_id": self.device_id},
            )
        self._set_credential(token, **{TOKEN_HEADER: token})

        token_body = body.get("token", {}) if isinstance(body, dict) else {}
        self.project_id = (token_body.get("project") or {}).get("id")
        self.endpoints = parse_catalog(token_body.get("catalog") or [])
        logger.debug(
            f"OpenStack catalog: {sorted(self.endpoints)}", extra={"device_id": self.device_id}
        )

    async def _logout(self) -> None:
        await self.http.request(
            "/v3/auth/tokens", "DELETE", headers={SUBJECT_TOKEN_HEADER: self._credential or ""}
        )

    def endpoint(self, service: str) -> str:
        """Catalog URL of a service (compute, network, volume, image).

        Raises:
            DeviceUnsupportedError: If the catalog has no such service
        """
        url = self.endpoints.get(service)
        if not url:
            raise DeviceUnsupportedError(
                f"No {service} endpoint in the OpenStack service catalog",
                context={"device_id": self.device_id},
            )
        return url

    async def service_get(self, service: str, path: str, key: str) -> Any:
        # Endpoints are only known after login
        await self.http.ensure_authenticated(self)
        response = await self.api_request(f"{self.endpoint(service)}{path}")
        return response.get(key) if isinstance(response, dict) else response

    async def _collect_status(self) -> StatusEnvelope:
        catalog = await self.api_request("/v3/auth/catalog")
        if isinstance(catalog, dict) and catalog.get("catalog"):
            self.endpoints = parse_catalog(catalog["catalog"])
        return self.build_status(
            state=ConnectionState.CONNECTED,
            details={
                "keystone_url": self.http.base_url,
                "project_id": self.project_id,
                "services": sorted(self.endpoints),
            },
        )

    async def get_config(self, section: str | None = None) -> str:
        status = await self.get_status()
        return json.dumps(status.model_dump(mode="json"), indent=2)

    async def list_children(self) -> list[dict[str, Any]]:
        """Nova servers in the scoped project."""
        return [
            {
                "id": s.get("id"),
                "name": s.get("name"),
                "status": s.get("status"),
                "flavor": (s.get("flavor") or {}).get("original_name")
                or (s.get("flavor") or {}).get("id"),
            }
            for s in await self.list_servers()
        ]

    async def list_servers(self) -> list[dict[str, Any]]:
        return await self.service_get("compute", "/servers/detail", "servers") or []

    async def get_server(self, server_id: str) -> Any:
        return await self.service_get("compute", f"/servers/{server_id}", "server")

    async def server_action(self, server_id: str, action: str) -> Any:
        """Run a Nova server action.

        Raises:
            ValueError: If the action is not one of SERVER_ACTIONS
        """
        if action not in SERVER_ACTIONS:
            raise ValueError(
                f"Unknown server action: {action}. Valid: {', '.join(SERVER_ACTIONS)}"
            )
        await self.http.ensure_authenticated(self)
        response = await self.api_request(
            f"{self.endpoint('compute')}/servers/{server_id}/action",
            "POST",
            json=SERVER_ACTIONS[action],
        )
        # Nova answers 202 with an empty body
        return response or {"accepted": True}

    async def list_flavors(self) -> Any:
        return await self.service_get("compute", "/flavors/detail", "flavors")

    async def list_hypervisors(self) -> Any:
        return await self.service_get("compute", "/os-hypervisors/detail", "hypervisors")

    async def list_images(self) -> Any:
        return await self.service_get("image", "/v2/images", "images")

    async def list_networks(self) -> Any:
        return await self.service_get("network", "/v2.0/networks", "networks")

    async def list_subnets(self) -> Any:
        return await self.service_get("network", "/v2.0/subnets", "subnets")

    async def list_routers(self) -> Any:
        return await self.service_get("network", "/v2.0/routers", "routers")

    async def list_volumes(self) -> Any:
        return await self.service_get("volume", "/volumes/detail", "volumes")

    async def list_projects(self) -> Any:
        response = await self.api_request("/v3/projects")
        return response.get("projects") if isinstance(response, dict) else response
