"""ThingsBoard IoT platform.

JWT authentication: the access token travels in ``X-Authorization``.
When the token expires the refresh token is tried first; a full
username/password login is the fallback.
"""

import logging
from typing import Any

from fleetlink.connectors.rest import RestConnector
from fleetlink.domain.exceptions import DeviceApiError, DeviceAuthenticationError
from fleetlink.domain.models import ConnectionState, StatusEnvelope

logger = logging.getLogger(__name__)


class ThingsBoardConnector(RestConnector):
    family = "thingsboard"
    credential_headers = ("X-Authorization",)

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._refresh_token: str | None = None

    async def _login(self) -> None:
        if self._refresh_token:
            try:
                response = await self.http.request(
                    "/api/auth/token", "POST", json={"refreshToken": self._refresh_token}
                )
                self._store_tokens(response)
                return
            except (DeviceApiError, DeviceAuthenticationError) as e:
                logger.info(
                    f"Token refresh rejected, logging in again: {e.message}",
                    extra={"device_id": self.device_id},
                )
                self._refresh_token = None

        response = await self.http.request(
            "/api/auth/login",
            "POST",
            json={"username": self.descriptor.username, "password": self.descriptor.password},
        )
        self._store_tokens(response)

    def _store_tokens(self, response: Any) -> None:
        if not isinstance(response, dict) or not response.get("token"):
            raise DeviceAuthenticationError(
                f"ThingsBoard login returned no token: {self.device_id}",
                context={"device_id": self.device_id},
            )
        self._refresh_token = response.get("refreshToken")
        self._set_credential(
            response["token"], **{"X-Authorization": f"Bearer {response['token']}"}
        )

    async def disconnect(self) -> None:
        await super().disconnect()
        self._refresh_token = None

    async def _collect_status(self) -> StatusEnvelope:
        user: dict[str, Any] = await self.api_request("/api/auth/user")
        return self.build_status(
            state=ConnectionState.CONNECTED,
            details={"email": user.get("email"), "authority": user.get("authority")},
        )

    async def list_children(self) -> list[dict[str, Any]]:
        """Tenant devices (first 100)."""
        page = await self.api_request(
            "/api/tenant/devices", params={"pageSize": 100, "page": 0}
        )
        return [
            {
                "id": (device.get("id") or {}).get("id"),
                "name": device.get("name"),
                "type": device.get("type"),
            }
            for device in page.get("data", [])
        ]

    async def get_telemetry(self, entity_id: str, keys: list[str] | None = None) -> Any:
        params = {"keys": ",".join(keys)} if keys else None
        return await self.api_request(
            f"/api/plugins/telemetry/DEVICE/{entity_id}/values/timeseries", params=params
        )

    async def send_rpc(
        self, entity_id: str, method: str, params: dict[str, Any] | None = None
    ) -> Any:
        return await self.api_request(
            f"/api/rpc/twoway/{entity_id}",
            "POST",
            json={"method": method, "params": params or {}},
        )
