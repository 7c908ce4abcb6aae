"""QNAP QTS NAS over its CGI API.

Login returns a session id (``authSid``) that is passed as the ``sid``
query parameter. An expired sid is reported inside a 200 response as
``<authPassed><![CDATA[0]]></authPassed>``.
"""

import json
import re
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

_AUTH_FAILED = re.compile(r"<authPassed><!\[CDATA\[0\]\]></authPassed>")

SYSINFO_PATH = "/cgi-bin/management/manaRequest.cgi"


def cdata(tag: str, xml: str) -> str | None:
    """Value of the first <tag><![CDATA[...]]></tag> in a QTS response."""
    match = re.search(rf"<{tag}><!\[CDATA\[([^\]]*)\]\]></{tag}>", xml)
    return match.group(1) if match else None


class QnapConnector(RestConnector):
    family = "qnap"
    credential_headers = ()

    async def _login(self) -> None:
        response = await self.http.request(
            "/cgi-bin/authLogin.cgi",
            params={"user": self.descriptor.username or "", "pwd": self.descriptor.password or ""},
        )
        sid = cdata("authSid", str(response))
        if not sid:
            raise DeviceAuthenticationError(
                "QNAP authentication failed: could not extract session ID",
                context={"device_id": self.device_id},
            )
        self._set_credential(sid)

    async def _logout(self) -> None:
        await self.http.request("/cgi-bin/authLogout.cgi", params={"sid": self._credential})

    def _is_session_expired(self, status_code: int, body: Any) -> bool:
        return status_code == 401 or bool(isinstance(body, str) and _AUTH_FAILED.search(body))

    def request_params(self, method: str, path: str) -> dict[str, str]:
        return {"sid": self._credential or ""}

    async def qts_get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET with the current sid appended to the query string."""
        return await self.api_request(path, params=params)

    async def get_system_info(self) -> dict[str, Any]:
        xml = str(await self.qts_get(SYSINFO_PATH, {"subfunc": "sysinfo", "sysinfo": "1"}))
        return {
            "model": cdata("modelName", xml) or cdata("displayModelName", xml),
            "firmware": cdata("version", xml),
            "hostname": cdata("serverName", xml),
            "serial_number": cdata("serial_number", xml),
            "uptime_days": cdata("uptime_day", xml),
            "cpu_usage": cdata("cpu_usage", xml),
        }

    async def _collect_status(self) -> StatusEnvelope:
        info = await self.get_system_info()
        return self.build_status(
            state=ConnectionState.CONNECTED,
            model=info["model"],
            firmware=info["firmware"],
            serial_number=info["serial_number"],
            uptime=f"{info['uptime_days']} days" if info["uptime_days"] else None,
            details=info,
        )

    async def get_config(self, section: str | None = None) -> str:
        return json.dumps(await self.get_system_info(), indent=2)

    async def get_volumes(self) -> Any:
        return await self.qts_get(SYSINFO_PATH, {"subfunc": "smart_info", "volume": "1"})

    async def get_disks(self) -> Any:
        return await self.qts_get(SYSINFO_PATH, {"subfunc": "smart_info", "disk": "1"})

