"""Dahua DSS Pro/Express video management platform.

Login returns a token sent back in ``X-Subject-Token``. Every API call is
a POST with a JSON body; the platform answers 200 with
``{"success": false, "code": ...}`` on failure, code 1013 meaning the
token expired.
"""

import json
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceApiError, DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

TOKEN_HEADER = "X-Subject-Token"
TOKEN_EXPIRED_CODE = "1013"


class DahuaDssConnector(RestConnector):
    family = "dahua-dss"
    credential_headers = (TOKEN_HEADER,)

    async def _login(self) -> None:
        response = await self.http.request(
            "/admin/login",
            "POST",
            json={
                "userName": self.descriptor.username,
                "password": self.descriptor.password,
                "clientType": "winpc",
            },
        )
        token = (response.get("data") or {}).get("token") if isinstance(response, dict) else None
        if not (isinstance(response, dict) and response.get("success")) or not token:
            code = response.get("code") if isinstance(response, dict) else None
            raise DeviceAuthenticationError(
                f"DSS login failed: {code or 'unknown'}", context={"device_id": self.device_id}
            )
        self._set_credential(token, **{TOKEN_HEADER: token})

    async def _logout(self) -> None:
        await self.http.request("/admin/logout", "POST", json={})

    def _is_session_expired(self, status_code: int, body: Any) -> bool:
        if status_code == 401:
            return True
        return (
            isinstance(body, dict)
            and not body.get("success", True)
            and str(body.get("code")) == TOKEN_EXPIRED_CODE
        )

    async def dss_post(self, path: str, body: dict[str, Any] | None = None) -> Any:
        """POST one DSS API call and return its ``data`` member.

        Raises:
            DeviceApiError: If the platform reports success=false
        """
        response = await self.api_request(path, "POST", json=body or {})
        if isinstance(response, dict) and not response.get("success"):
            raise DeviceApiError(
                f"DSS API error: {path} (code: {response.get('code') or 'unknown'})",
                response_body=json.dumps(response),
            )
        return response.get("data") if isinstance(response, dict) else response

    async def get_server_info(self) -> Any:
        return await self.dss_post("/admin/serverInfo/getServerInfo")

    async def _collect_status(self) -> StatusEnvelope:
        info = await self.get_server_info()
        return self.build_status(
            state=ConnectionState.CONNECTED,
            firmware=info.get("version") if isinstance(info, dict) else None,
            details=info if isinstance(info, dict) else {"server_info": info},
        )

    async def get_config(self, section: str | None = None) -> str:
        return json.dumps(await self.get_server_info(), indent=2)

    async def list_devices(self, page_num: int = 1, page_size: int = 50) -> Any:
        return await self.dss_post("/device/list", {"pageNum": page_num, "pageSize": page_size})

    async def list_children(self) -> list[dict[str, Any]]:
        """Encoders and cameras registered on the platform (first page)."""
        data = await self.list_devices()
        if isinstance(data, dict):
            data = data.get("pageData") or data.get("list") or []
        return [
            {
                "id": d.get("deviceCode"),
                "name": d.get("deviceName"),
                "ip": d.get("deviceIp"),
                "online": d.get("status"),
            }
            for d in data or []
        ]

    async def get_device_info(self, device_code: str) -> Any:
        return await self.dss_post("/device/info", {"deviceCode": device_code})

    async def list_channels(
        self, device_code: str | None = None, page_num: int = 1, page_size: int = 100
    ) -> Any:
        body: dict[str, Any] = {"pageNum": page_num, "pageSize": page_size}
        if device_code:
            body["deviceCode"] = device_code
        return await self.dss_post("/device/channel/list", body)

    async def list_alarms(
        self,
        start_time: str | None = None,
        end_time: str | None = None,
        page_num: int = 1,
        page_size: int = 50,
    ) -> Any:
        body: dict[str, Any] = {"pageNum": page_num, "pageSize": page_size}
        if start_time:
            body["startTime"] = start_time
        if end_time:
            body["endTime"] = end_time
        return await self.dss_post("/alarm/list", body)
