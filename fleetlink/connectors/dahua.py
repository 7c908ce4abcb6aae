"""Dahua NVR / DVR / IP cameras over the CGI HTTP API.

Responses are ``key=value`` lines; credentials go out as a basic auth
header on every request.
"""

import base64
import json
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.models import ConnectionState, StatusEnvelope

SYSTEM_INFO_PATH = "/cgi-bin/magicBox.cgi?action=getSystemInfo"
CONFIG_PATH = "/cgi-bin/configManager.cgi?action=getConfig&name="


def parse_key_values(text: str) -> dict[str, str]:
    """Parse Dahua CGI ``key=value`` lines."""
    result: dict[str, str] = {}
    for line in str(text).splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            result[key.strip()] = value.strip()
    return result


class DahuaNvrConnector(RestConnector):
    family = "dahua-nvr"
    default_scheme = "http"

    async def _login(self) -> None:
        token = base64.b64encode(
            f"{self.descriptor.username or ''}:{self.descriptor.password or ''}".encode()
        ).decode("ascii")
        self._set_credential(token, Authorization=f"Basic {token}")

    async def cgi_get(self, path: str) -> dict[str, str]:
        return parse_key_values(await self.api_request(path))

    async def _probe(self) -> None:
        await self.api_request(SYSTEM_INFO_PATH)

    async def _collect_status(self) -> StatusEnvelope:
        info = await self.cgi_get(SYSTEM_INFO_PATH)
        return self.build_status(
            state=ConnectionState.CONNECTED,
            model=info.get("deviceType"),
            firmware=info.get("softwareVersion"),
            serial_number=info.get("serialNumber"),
            details=info,
        )

    async def get_config(self, section: str | None = None) -> str:
        if section:
            config = await self.cgi_get(CONFIG_PATH + section)
        else:
            config = await self.cgi_get(SYSTEM_INFO_PATH)
        return json.dumps(config, indent=2)

    async def list_children(self) -> list[dict[str, Any]]:
        """Video channels from the ChannelTitle configuration."""
        titles = await self.cgi_get(CONFIG_PATH + "ChannelTitle")
        channels = []
        for key, value in titles.items():
            # table.ChannelTitle[<n>].Name=<title>
            if key.startswith("table.ChannelTitle[") and key.endswith("].Name"):
                index = key[len("table.ChannelTitle[") : -len("].Name")]
                channels.append({"id": index, "name": value, "type": "channel"})
        return channels

    async def get_storage_info(self) -> dict[str, str]:
        return await self.cgi_get("/cgi-bin/storageDevice.cgi?action=factory.getCollect")
