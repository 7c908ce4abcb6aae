"""Connectors for device families reached over an HTTP API.

RestConnector implements the HttpAuthenticator protocol for its own
HttpSession. A family only supplies:
- _login(): the handshake that stores a credential in the header bag
  (or in self._credential for query-string session ids)
- _is_session_expired(): the expiry predicate (default: HTTP 401)
- _logout(): optional remote session invalidation

Lazy login, the single re-authenticate-and-retry and header cleanup on
disconnect are shared.
"""

import logging
import time
from abc import abstractmethod
from typing import Any, ClassVar

from fleetlink.config import Settings
from fleetlink.connectors.base import BaseConnector
from fleetlink.connectors.shell import build_shell_session
from fleetlink.domain.exceptions import (
    DeviceAuthenticationError,
    DeviceError,
    DeviceTimeoutError,
    DeviceTransportError,
)
from fleetlink.domain.models import (
    CommandResult,
    ConnectionState,
    DeviceDescriptor,
    StatusEnvelope,
    TransportKind,
)
from fleetlink.infra.transports.http import HttpSession

logger = logging.getLogger(__name__)


def build_base_url(
    descriptor: DeviceDescriptor, scheme: str = "https", port: int | None = None
) -> str:
    """API base URL: descriptor.api_url, else scheme://host[:port].

    Raises:
        ValueError: If the descriptor has neither api_url nor host
    """
    if descriptor.api_url:
        return descriptor.api_url.rstrip("/")
    if not descriptor.host:
        raise ValueError(f"Device {descriptor.id} needs api_url or host")
    if port:
        return f"{scheme}://{descriptor.host}:{port}"
    return f"{scheme}://{descriptor.host}"


class RestConnector(BaseConnector):
    """Connector over one HttpSession with a family-specific login."""

    transport_kind = TransportKind.REST
    default_scheme: ClassVar[str] = "https"
    default_port: ClassVar[int | None] = None
    credential_headers: ClassVar[tuple[str, ...]] = ("Authorization",)

    def __init__(self, descriptor: DeviceDescriptor, settings: Settings | None = None) -> None:
        super().__init__(descriptor, settings)
        verify_ssl = self.extra("verify_ssl", "verifySsl", default=self.settings.http_verify_ssl)
        self.http = HttpSession(
            base_url=build_base_url(descriptor, self.default_scheme, self.default_port),
            timeout_seconds=self.settings.http_timeout_seconds,
            verify_ssl=bool(verify_ssl),
            retry_attempts=self.settings.http_retry_attempts,
            retry_backoff_seconds=self.settings.http_retry_backoff_seconds,
            device_id=descriptor.id,
            device_family=descriptor.family,
        )
        self._credential: str | None = None

    # ========================================
    # HttpAuthenticator
    # ========================================

    def is_authenticated(self) -> bool:
        return self.has_credential()

    async def authenticate(self) -> None:
        await self._login()
        logger.info(
            f"Authenticated to {self.device_id}",
            extra={"device_id": self.device_id, "device_family": self.device_family},
        )

    def invalidate(self) -> None:
        self._clear_credential()

    def is_session_expired(self, status_code: int, body: Any) -> bool:
        return self._is_session_expired(status_code, body)

    def request_headers(self, method: str, path: str, body: Any) -> dict[str, str]:
        return {}

    def request_params(self, method: str, path: str) -> dict[str, str]:
        return {}

    # ========================================
    # Family hooks
    # ========================================

    def has_credential(self) -> bool:
        return self._credential is not None

    async def _login(self) -> None:
        """Family login handshake. Default: no authentication needed."""
        self._credential = ""

    async def _logout(self) -> None:
        """Invalidate the remote session. Default: nothing to invalidate."""

    def _clear_credential(self) -> None:
        self._credential = None
        for name in self.credential_headers:
            self.http.remove_header(name)

    def _is_session_expired(self, status_code: int, body: Any) -> bool:
        return status_code == 401

    def _set_credential(self, credential: str, **headers: str) -> None:
        """Store a credential and the headers that carry it."""
        self._credential = credential
        for name, value in headers.items():
            self.http.set_header(name, value)

    async def _probe(self) -> None:
        """Request that proves the API answers. Default: login only."""

    # ========================================
    # Connector contract
    # ========================================

    async def connect(self) -> None:
        try:
            await self.http.ensure_authenticated(self)
            await self._probe()
        except DeviceError:
            self._state = ConnectionState.ERROR
            raise
        self._state = ConnectionState.CONNECTED

    async def disconnect(self) -> None:
        """Log out best-effort; local credential state is always cleared."""
        try:
            if self.has_credential():
                await self._logout()
        except Exception as e:  # noqa: BLE001
            logger.warning(
                f"Logout failed for {self.device_id}: {e}",
                extra={"device_id": self.device_id},
            )
        finally:
            self._clear_credential()
            await self.http.close()
            self._state = ConnectionState.DISCONNECTED

    async def api_request(self, path: str, method: str = "GET", **kwargs: Any) -> Any:
        """Authenticated request; keyword arguments as HttpSession.request().

        Raises:
            DeviceAuthenticationError: If login or re-authentication fails
            DeviceApiError: On non-2xx responses
            DeviceTimeoutError: On timeout
            DeviceTransportError: On network errors
        """
        try:
            body = await self.http.authenticated_request(
                path, method, authenticator=self, **kwargs
            )
        except (DeviceAuthenticationError, DeviceTimeoutError, DeviceTransportError):
            self._state = ConnectionState.ERROR
            raise
        self._state = ConnectionState.CONNECTED
        return body


class ShellFallbackConnector(RestConnector):
    """REST API first, SSH command shell as fallback and for CLI commands.

    Status falls back to `status_command` over SSH when the API is
    unreachable; the envelope records which transport answered.
    """

    status_command: ClassVar[str] = ""

    def __init__(self, descriptor: DeviceDescriptor, settings: Settings | None = None) -> None:
        super().__init__(descriptor, settings)
        self.shell_session = build_shell_session(
            descriptor, self.settings, self._on_shell_closed
        )

    def _on_shell_closed(self) -> None:
        # A live REST session keeps the device connected.
        if self._state is ConnectionState.CONNECTED and not self.has_credential():
            self._state = ConnectionState.DISCONNECTED

    async def connect(self) -> None:
        try:
            await super().connect()
            return
        except DeviceError as rest_error:
            logger.info(
                f"REST unavailable for {self.device_id} ({rest_error}), trying SSH",
                extra={"device_id": self.device_id, "transport": "ssh"},
            )

        try:
            await self.shell_session.connect()
        except DeviceError:
            self._state = ConnectionState.ERROR
            raise
        self._state = ConnectionState.CONNECTED

    async def disconnect(self) -> None:
        try:
            await super().disconnect()
        finally:
            await self.shell_session.close()

    async def exec(self, command: str, timeout: float | None = None) -> str:
        """Run a CLI command over SSH, (re)connecting as needed."""
        try:
            output = await self.shell_session.exec(command, timeout=timeout)
        except (DeviceAuthenticationError, DeviceTimeoutError, DeviceTransportError):
            self._state = ConnectionState.ERROR
            raise
        self._state = ConnectionState.CONNECTED
        return output

    @abstractmethod
    async def _collect_rest_status(self) -> StatusEnvelope:
        """Status over the REST API; raise DeviceError to fall back to SSH."""

    async def _collect_status(self) -> StatusEnvelope:
        try:
            return await self._collect_rest_status()
        except DeviceError as rest_error:
            rest_message = str(rest_error)

        output = await self.exec(self.status_command)
        self._state = ConnectionState.CONNECTED
        return self.build_status(
            details={
                "raw": output.strip(),
                "transport": "ssh",
                "fallback_used": True,
                "rest_error": rest_message,
            },
        )

    async def execute_command(self, command: str) -> CommandResult:
        """Run a CLI command over SSH. Never raises."""
        started = time.monotonic()
        try:
            output = await self.exec(command)
        except Exception as e:  # noqa: BLE001
            return self._command_result(command, started, error=str(e) or type(e).__name__)
        return self._command_result(command, started, output=output.strip())
