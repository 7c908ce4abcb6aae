"""Sonoff devices through the eWeLink cloud API v2.

The login body is signed with the app secret (``Authorization: Sign``);
afterwards the access token is sent as a bearer token. The API reports
errors in the body (``error`` != 0); 401 and 402 there mean the token
is invalid or expired.
"""

import base64
import hashlib
import hmac
import json
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceApiError, DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

TOKEN_EXPIRED_ERRORS = frozenset({401, 402})


def sign_body(app_secret: str, body: str) -> str:
    digest = hmac.new(app_secret.encode(), body.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class SonoffConnector(RestConnector):
    family = "sonoff"
    credential_headers = ("Authorization", "X-CK-Appid")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.app_id = str(self.extra("app_id", "appId", default=""))
        self.app_secret = str(self.extra("app_secret", "appSecret", default=""))
        self.country_code = str(self.extra("country_code", "countryCode", default="+1"))

    async def _login(self) -> None:
        body = json.dumps(
            {
                "email": self.descriptor.username,
                "password": self.descriptor.password,
                "countryCode": self.country_code,
            }
        )
        response = await self.http.request(
            "/v2/user/login",
            "POST",
            content=body,
            headers={
                "X-CK-Appid": self.app_id,
                "Authorization": f"Sign {sign_body(self.app_secret, body)}",
            },
        )
        if not isinstance(response, dict) or response.get("error") != 0:
            message = response
            if isinstance(response, dict):
                message = response.get("msg") or response.get("error")
            raise DeviceAuthenticationError(
                f"eWeLink auth error: {message}", context={"device_id": self.device_id}
            )
        token = response["data"]["at"]
        self._set_credential(
            token, Authorization=f"Bearer {token}", **{"X-CK-Appid": self.app_id}
        )

    def _is_session_expired(self, status_code: int, body: Any) -> bool:
        if status_code == 401:
            return True
        return isinstance(body, dict) and body.get("error") in TOKEN_EXPIRED_ERRORS

    async def ewelink_request(self, path: str, method: str = "GET", **kwargs: Any) -> Any:
        """Authenticated request returning the ``data`` member.

        Raises:
            DeviceApiError: If the body reports a non-zero error
        """
        response = await self.api_request(path, method, **kwargs)
        if isinstance(response, dict) and response.get("error", 0) != 0:
            raise DeviceApiError(
                f"eWeLink API error {response.get('error')}: {response.get('msg', '')}",
                response_body=json.dumps(response),
            )
        return response.get("data") if isinstance(response, dict) else response

    async def _collect_status(self) -> StatusEnvelope:
        await self.connect()
        return self.build_status(state=ConnectionState.CONNECTED)

    async def list_children(self) -> list[dict[str, Any]]:
        """Devices bound to the eWeLink account."""
        data = await self.ewelink_request("/v2/device/thing")
        children = []
        for thing in (data or {}).get("thingList", []):
            item = thing.get("itemData", {})
            children.append(
                {
                    "id": item.get("deviceid"),
                    "name": item.get("name"),
                    "online": item.get("online"),
                    "model": item.get("productModel"),
                }
            )
        return children

    async def get_device_status(self, sonoff_device_id: str) -> Any:
        return await self.ewelink_request(
            "/v2/device/thing/status", params={"type": 1, "id": sonoff_device_id}
        )

    async def set_switch(self, sonoff_device_id: str, state: str) -> Any:
        return await self.ewelink_request(
            "/v2/device/thing/status",
            "POST",
            json={"type": 1, "id": sonoff_device_id, "params": {"switch": state}},
        )
