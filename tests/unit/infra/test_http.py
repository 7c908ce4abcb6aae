"""Tests for the HTTP session transport and its re-authentication wrapper."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fleetlink.domain.exceptions import (
    DeviceApiError,
    DeviceAuthenticationError,
    DeviceTimeoutError,
    DeviceTransportError,
)
from fleetlink.infra.transports.http import HttpAuthenticator, HttpSession


def make_session(**kwargs: Any) -> HttpSession:
    kwargs.setdefault("retry_backoff_seconds", 0)
    return HttpSession("https://device.local/", device_id="dev-1", **kwargs)


class TokenAuthenticator:
    """Test authenticator issuing token-1, token-2, ... on each login."""

    def __init__(self, expired_codes: tuple[int, ...] = (401,)) -> None:
        self.logins = 0
        self.token: str | None = None
        self.expired_codes = expired_codes

    def is_authenticated(self) -> bool:
        return self.token is not None

    async def authenticate(self) -> None:
        await asyncio.sleep(0)
        self.logins += 1
        self.token = f"token-{self.logins}"

    def invalidate(self) -> None:
        self.token = None

    def is_session_expired(self, status_code: int, body: Any) -> bool:
        if status_code in self.expired_codes:
            return True
        return isinstance(body, dict) and body.get("code") == "expired"

    def request_headers(self, method: str, path: str, body: Any) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def request_params(self, method: str, path: str) -> dict[str, str]:
        return {}


class TestHttpSession:
    """Tests for HttpSession.request()."""

    def test_initialization(self) -> None:
        session = make_session()

        assert session.base_url == "https://device.local"
        assert session.headers == {"Content-Type": "application/json"}
        assert session.credential_generation == 0

    def test_header_bag(self) -> None:
        session = make_session()
        session.set_header("X-Token", "abc")
        assert session.headers["X-Token"] == "abc"

        session.remove_header("X-Token")
        session.remove_header("X-Missing")
        assert "X-Token" not in session.headers

    @pytest.mark.asyncio
    async def test_json_response(self) -> None:
        session = make_session()
        session.set_header("X-Token", "abc")

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(200, json={"cpu": 5})
            mock_get_client.return_value = mock_client

            result = await session.request("/status", headers={"X-Extra": "1"})

        assert result == {"cpu": 5}
        kwargs = mock_client.request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "/status"
        assert kwargs["headers"]["X-Token"] == "abc"
        assert kwargs["headers"]["X-Extra"] == "1"

    @pytest.mark.asyncio
    async def test_text_response(self) -> None:
        session = make_session()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(200, text="key=value")
            mock_get_client.return_value = mock_client

            assert await session.request("/cgi-bin/info.cgi") == "key=value"

    @pytest.mark.asyncio
    async def test_form_body_drops_json_content_type(self) -> None:
        session = make_session()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(200, json={})
            mock_get_client.return_value = mock_client

            await session.request("/login", "post", data={"user": "a"})

        kwargs = mock_client.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert "Content-Type" not in kwargs["headers"]
        assert kwargs["data"] == {"user": "a"}

    @pytest.mark.asyncio
    async def test_error_status_raises_api_error(self) -> None:
        session = make_session()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(404, text="no such path")
            mock_get_client.return_value = mock_client

            with pytest.raises(DeviceApiError) as exc_info:
                await session.request("/missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.response_body == "no such path"
        assert "404" in str(exc_info.value)
        # API errors are not retried
        assert mock_client.request.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self) -> None:
        session = make_session(retry_attempts=3)

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = httpx.ReadTimeout("slow")
            mock_get_client.return_value = mock_client

            with pytest.raises(DeviceTimeoutError, match="GET /status"):
                await session.request("/status")

        assert mock_client.request.call_count == 3

    @pytest.mark.asyncio
    async def test_network_error_recovers_on_retry(self) -> None:
        session = make_session(retry_attempts=2)

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = [
                httpx.ConnectError("refused"),
                httpx.Response(200, json={"ok": True}),
            ]
            mock_get_client.return_value = mock_client

            assert await session.request("/status") == {"ok": True}

    @pytest.mark.asyncio
    async def test_network_error_raised(self) -> None:
        session = make_session(retry_attempts=1)

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = httpx.ConnectError("refused")
            mock_get_client.return_value = mock_client

            with pytest.raises(DeviceTransportError):
                await session.request("/status")

    @pytest.mark.asyncio
    async def test_response_headers_returned(self) -> None:
        session = make_session()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(
                201, json={"token": {}}, headers={"X-Subject-Token": "gAAAA"}
            )
            mock_get_client.return_value = mock_client

            body, headers = await session.request_with_headers(
                "/v3/auth/tokens", "POST", json={"auth": {}}
            )

        assert body == {"token": {}}
        assert headers["x-subject-token"] == "gAAAA"
        assert mock_client.request.call_args.kwargs["json"] == {"auth": {}}

    @pytest.mark.asyncio
    async def test_response_headers_error_status(self) -> None:
        session = make_session()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(401, text="denied")
            mock_get_client.return_value = mock_client

            with pytest.raises(DeviceApiError) as exc_info:
                await session.request_with_headers("/v3/auth/tokens", "POST")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_close_releases_client(self) -> None:
        session = make_session()
        client = await session._get_client()
        assert await session._get_client() is client

        await session.close()

        assert session._client is None
        assert client.is_closed


class TestAuthenticatedRequest:
    """Tests for lazy login and the single re-authenticate-and-retry."""

    def test_protocol(self) -> None:
        assert isinstance(TokenAuthenticator(), HttpAuthenticator)

    @pytest.mark.asyncio
    async def test_lazy_login_once(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(200, json={"ok": 1})
            mock_get_client.return_value = mock_client

            await session.authenticated_request("/a", authenticator=auth)
            await session.authenticated_request("/b", authenticator=auth)

        assert auth.logins == 1
        headers = mock_client.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_expired_credential_reauthenticates_once(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = [
                httpx.Response(401, text="expired"),
                httpx.Response(200, json={"ok": 1}),
            ]
            mock_get_client.return_value = mock_client

            result = await session.authenticated_request("/a", authenticator=auth)

        assert result == {"ok": 1}
        assert auth.logins == 2
        assert session.credential_generation == 2
        retried_headers = mock_client.request.call_args.kwargs["headers"]
        assert retried_headers["Authorization"] == "Bearer token-2"

    @pytest.mark.asyncio
    async def test_second_expiry_is_fatal(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(401, text="expired")
            mock_get_client.return_value = mock_client

            with pytest.raises(DeviceAuthenticationError, match="after re-authentication"):
                await session.authenticated_request("/a", authenticator=auth)

        # One initial login, exactly one re-auth, no third attempt
        assert auth.logins == 2
        assert mock_client.request.call_count == 2

    @pytest.mark.asyncio
    async def test_expiry_code_in_success_body(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = [
                httpx.Response(200, json={"code": "expired"}),
                httpx.Response(200, json={"result": [1, 2]}),
            ]
            mock_get_client.return_value = mock_client

            result = await session.authenticated_request("/a", authenticator=auth)

        assert result == {"result": [1, 2]}
        assert auth.logins == 2

    @pytest.mark.asyncio
    async def test_other_errors_propagate_without_reauth(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(500, text="internal")
            mock_get_client.return_value = mock_client

            with pytest.raises(DeviceApiError) as exc_info:
                await session.authenticated_request("/a", authenticator=auth)

        assert exc_info.value.status_code == 500
        assert auth.logins == 1

    @pytest.mark.asyncio
    async def test_login_api_error_becomes_auth_failure(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()
        auth.authenticate = AsyncMock(side_effect=DeviceApiError("API 403", 403, "denied"))

        with pytest.raises(DeviceAuthenticationError, match="Login failed"):
            await session.authenticated_request("/a", authenticator=auth)

    @pytest.mark.asyncio
    async def test_request_params_merged(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()
        auth.request_params = lambda method, path: {"sid": auth.token or ""}  # type: ignore

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(200, json={})
            mock_get_client.return_value = mock_client

            await session.authenticated_request("/a", authenticator=auth, params={"page": 1})

        assert mock_client.request.call_args.kwargs["params"] == {"page": 1, "sid": "token-1"}

    @pytest.mark.asyncio
    async def test_concurrent_expiry_refreshes_once(self) -> None:
        session = make_session()
        auth = TokenAuthenticator()

        async def device(**kwargs: Any) -> httpx.Response:
            await asyncio.sleep(0)
            if kwargs["headers"]["Authorization"] == "Bearer token-1":
                return httpx.Response(401, text="expired")
            return httpx.Response(200, json={"ok": 1})

        with patch.object(session, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = device
            mock_get_client.return_value = mock_client

            results = await asyncio.gather(
                session.authenticated_request("/a", authenticator=auth),
                session.authenticated_request("/b", authenticator=auth),
            )

        assert results == [{"ok": 1}, {"ok": 1}]
        assert auth.logins == 2
