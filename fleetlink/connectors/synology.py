"""Synology DSM NAS over the SYNO.* Web API.

Login returns a session id passed as the ``_sid`` query parameter. DSM
reports expired sessions in 200 responses with error codes 106 (session
timeout), 107 (session interrupted by duplicate login) and 119 (sid not
found).
"""

import json
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceApiError, DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

SESSION_EXPIRED_CODES = frozenset({106, 107, 119})
SESSION_NAME = "FleetLink"


def _as_json(body: Any) -> Any:
    # Older DSM releases answer with text/plain
    if isinstance(body, str):
        try:
            return json.loads(body)
        except ValueError:
            return body
    return body


def error_code(body: Any) -> int | None:
    body = _as_json(body)
    if isinstance(body, dict) and not body.get("success", True):
        return (body.get("error") or {}).get("code")
    return None


class SynologyConnector(RestConnector):
    family = "synology"
    credential_headers = ()

    async def _login(self) -> None:
        response = _as_json(
            await self.http.request(
                "/webapi/auth.cgi",
                params={
                    "api": "SYNO.API.Auth",
                    "version": "6",
                    "method": "login",
                    "account": self.descriptor.username or "",
                    "passwd": self.descriptor.password or "",
                    "session": SESSION_NAME,
                    "format": "sid",
                },
            )
        )
        sid = (response.get("data") or {}).get("sid") if isinstance(response, dict) else None
        if not sid:
            raise DeviceAuthenticationError(
                f"Synology authentication failed (error code: {error_code(response) or 'unknown'})",
                context={"device_id": self.device_id},
            )
        self._set_credential(sid)

    async def _logout(self) -> None:
        await self.http.request(
            "/webapi/auth.cgi",
            params={
                "api": "SYNO.API.Auth",
                "version": "6",
                "method": "logout",
                "session": SESSION_NAME,
                "_sid": self._credential,
            },
        )

    def _is_session_expired(self, status_code: int, body: Any) -> bool:
        return status_code == 401 or error_code(body) in SESSION_EXPIRED_CODES

    def request_params(self, method: str, path: str) -> dict[str, str]:
        return {"_sid": self._credential or ""}

    async def dsm_get(self, api: str, method: str, version: str = "1", **extra: str) -> Any:
        """Call one SYNO.* API method and return its data.

        Raises:
            DeviceApiError: If DSM reports success=false
        """
        response = _as_json(
            await self.api_request(
                "/webapi/entry.cgi",
                params={"api": api, "version": version, "method": method, **extra},
            )
        )
        code = error_code(response)
        if code is not None:
            raise DeviceApiError(
                f"Synology API error: {api} {method} (code: {code})",
                response_body=json.dumps(response),
            )
        return response.get("data") if isinstance(response, dict) else response

    async def _collect_status(self) -> StatusEnvelope:
        info: dict[str, Any] = await self.dsm_get("SYNO.DSM.Info", "getinfo", "2")
        return self.build_status(
            state=ConnectionState.CONNECTED,
            model=info.get("model"),
            firmware=info.get("version_string"),
            serial_number=info.get("serial"),
            uptime=str(info["uptime"]) if "uptime" in info else None,
            details=info,
        )

    async def get_config(self, section: str | None = None) -> str:
        return json.dumps(await self.dsm_get("SYNO.DSM.Info", "getinfo", "2"), indent=2)

    async def get_storage_info(self) -> Any:
        return await self.dsm_get("SYNO.Storage.CGI.Storage", "load_info")

    async def get_shared_folders(self) -> Any:
        return await self.dsm_get("SYNO.FileStation.List", "list_share", "2")

    async def get_utilization(self) -> Any:
        return await self.dsm_get("SYNO.Core.System.Utilization", "get")
