"""Tuya IoT cloud (OpenAPI v1.0).

Every request is HMAC-SHA256 signed over the method, body hash and path.
Access tokens carry an expiry time and are replaced proactively shortly
before it; a token the cloud already rejected comes back as code 1010 in
a 200 response.
"""

import hashlib
import hmac
import json
import time
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceApiError, DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

TOKEN_INVALID_CODE = 1010
# Refresh this many seconds before the advertised expiry
EXPIRY_MARGIN_SECONDS = 60.0


def sign_request(
    client_id: str,
    secret: str,
    method: str,
    path: str,
    timestamp: str,
    body: str = "",
    access_token: str = "",
) -> str:
    """Tuya OpenAPI request signature (upper-case hex HMAC-SHA256)."""
    content_hash = hashlib.sha256(body.encode()).hexdigest()
    string_to_sign = "\n".join([method, content_hash, "", path])
    message = client_id + access_token + timestamp + string_to_sign
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest().upper()


class TuyaConnector(RestConnector):
    family = "tuya"
    credential_headers = ()

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.client_id = str(self.extra("client_id", "clientId", default=""))
        self.client_secret = str(self.extra("client_secret", "clientSecret", default=""))
        self._expires_at = 0.0

    def has_credential(self) -> bool:
        return self._credential is not None and time.monotonic() < self._expires_at

    def _signed_headers(
        self, method: str, path: str, body: Any, access_token: str = ""
    ) -> dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        headers = {
            "client_id": self.client_id,
            "sign": sign_request(
                self.client_id,
                self.client_secret,
                method,
                path,
                timestamp,
                body if isinstance(body, str) else "",
                access_token,
            ),
            "sign_method": "HMAC-SHA256",
            "t": timestamp,
        }
        if access_token:
            headers["access_token"] = access_token
        return headers

    def request_headers(self, method: str, path: str, body: Any) -> dict[str, str]:
        return self._signed_headers(method, path, body, self._credential or "")

    async def _login(self) -> None:
        path = "/v1.0/token?grant_type=1"
        response = await self.http.request(path, headers=self._signed_headers("GET", path, ""))
        if not isinstance(response, dict) or not response.get("success"):
            message = response.get("msg") if isinstance(response, dict) else response
            raise DeviceAuthenticationError(
                f"Tuya token request failed: {message}", context={"device_id": self.device_id}
            )
        result = response["result"]
        self._credential = result["access_token"]
        self._expires_at = (
            time.monotonic() + float(result.get("expire_time", 0)) - EXPIRY_MARGIN_SECONDS
        )

    def _clear_credential(self) -> None:
        super()._clear_credential()
        self._expires_at = 0.0

    def _is_session_expired(self, status_code: int, body: Any) -> bool:
        if status_code == 401:
            return True
        return isinstance(body, dict) and body.get("code") == TOKEN_INVALID_CODE

    async def tuya_request(self, path: str, method: str = "GET", body: Any = None) -> Any:
        """Signed request returning the ``result`` member.

        Raises:
            DeviceApiError: If the cloud reports success=false
        """
        content = json.dumps(body) if body is not None else None
        response = await self.api_request(path, method, content=content)
        if not isinstance(response, dict) or not response.get("success"):
            message = response
            if isinstance(response, dict):
                message = response.get("msg", "Unknown error")
            raise DeviceApiError(f"Tuya API error: {message}", response_body=str(response))
        return response.get("result")

    async def _collect_status(self) -> StatusEnvelope:
        await self.connect()
        return self.build_status(
            state=ConnectionState.CONNECTED,
            details={"token_expires_in": max(0, int(self._expires_at - time.monotonic()))},
        )

    async def list_children(self) -> list[dict[str, Any]]:
        """Devices associated with the cloud project's users."""
        result = await self.tuya_request("/v1.0/iot-01/associated-users/devices")
        devices = result.get("devices", []) if isinstance(result, dict) else result or []
        return [
            {
                "id": d.get("id"),
                "name": d.get("name"),
                "category": d.get("category"),
                "online": d.get("online"),
            }
            for d in devices
        ]

    async def get_device_status(self, tuya_device_id: str) -> Any:
        return await self.tuya_request(f"/v1.0/devices/{tuya_device_id}/status")

    async def send_commands(self, tuya_device_id: str, commands: list[dict[str, Any]]) -> Any:
        return await self.tuya_request(
            f"/v1.0/devices/{tuya_device_id}/commands", "POST", {"commands": commands}
        )
