"""HTTP session transport with a pluggable authentication lifecycle.

Provides async HTTP access to one device API with:
- Connection pooling and keep-alive
- A mutable header bag merged with per-call overrides
- Automatic retries with exponential backoff for transient network errors
- Error mapping to fleetlink device errors
- Lazy login, expiry detection and a single re-authenticate-and-retry

Design principles:
- Use httpx for modern async HTTP
- Header bag and credentials are private to one session (one device)
- Family code supplies only the login handshake and the expiry predicate
- Re-authentication is single-flight: callers that see the same expired
  credential trigger one login between them
- Never log credentials or sensitive data
"""

import asyncio
import logging
import time
from typing import Any, Protocol, runtime_checkable

import httpx

from fleetlink.domain.exceptions import (
    DeviceApiError,
    DeviceAuthenticationError,
    DeviceTimeoutError,
    DeviceTransportError,
)
from fleetlink.infra.observability.metrics import (
    record_device_request,
    record_reauthentication,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Content-Type": "application/json"}


@runtime_checkable
class HttpAuthenticator(Protocol):
    """Authentication lifecycle of one HTTP-backed device family."""

    def is_authenticated(self) -> bool:
        """Whether a credential is currently held."""
        ...

    async def authenticate(self) -> None:
        """Run the login handshake and store the credential."""
        ...

    def invalidate(self) -> None:
        """Drop the local credential."""
        ...

    def is_session_expired(self, status_code: int, body: Any) -> bool:
        """Whether a response signals an expired or invalid credential."""
        ...

    def request_headers(self, method: str, path: str, body: Any) -> dict[str, str]:
        """Extra headers for one attempt (e.g. request signatures)."""
        ...

    def request_params(self, method: str, path: str) -> dict[str, str]:
        """Extra query parameters for one attempt (e.g. session ids)."""
        ...


class HttpSession:
    """Async HTTP session for one device API.

    Example:
        session = HttpSession("https://nas.local:5001", verify_ssl=False)
        session.set_header("Authorization", "Bearer abc")

        info = await session.request("/webapi/entry.cgi", params={"api": "SYNO.DSM.Info"})

        await session.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        verify_ssl: bool = True,
        default_headers: dict[str, str] | None = None,
        retry_attempts: int = 2,
        retry_backoff_seconds: float = 0.5,
        device_id: str | None = None,
        device_family: str = "unknown",
    ) -> None:
        """Initialize HTTP session.

        Args:
            base_url: API base URL (e.g. "https://10.0.0.5:8006")
            timeout_seconds: Request timeout in seconds
            verify_ssl: Verify TLS certificates (False for self-signed)
            default_headers: Initial header bag (default: JSON content type)
            retry_attempts: Attempts for transient network errors
            retry_backoff_seconds: Exponential backoff base between attempts
            device_id: Device identifier for logs/metrics
            device_family: Family tag for re-authentication metrics
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout_seconds)
        self.verify_ssl = verify_ssl
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.device_id = device_id or base_url
        self.device_family = device_family
        self.limits = httpx.Limits(
            max_connections=5,
            max_keepalive_connections=3,
            keepalive_expiry=30.0,
        )

        self.headers: dict[str, str] = dict(
            DEFAULT_HEADERS if default_headers is None else default_headers
        )

        self._client: httpx.AsyncClient | None = None
        self._auth_lock = asyncio.Lock()
        self._generation = 0

    @property
    def credential_generation(self) -> int:
        """Incremented on every successful login."""
        return self._generation

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def remove_header(self, name: str) -> None:
        self.headers.pop(name, None)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                limits=self.limits,
                verify=self.verify_ssl,
                follow_redirects=False,
            )

        return self._client

    async def close(self) -> None:
        """Close HTTP client and cleanup connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _merge_headers(
        self, overrides: dict[str, str] | None, has_form_body: bool
    ) -> dict[str, str]:
        merged = dict(self.headers)
        if has_form_body and not (overrides and "Content-Type" in overrides):
            merged.pop("Content-Type", None)
        if overrides:
            merged.update(overrides)
        return merged

    async def _send(
        self,
        path: str,
        method: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        content: str | bytes | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, Any]:
        """Execute one request with retries; returns (status, decoded body)."""
        response = await self._send_response(
            path, method, json=json, params=params, content=content, data=data, headers=headers
        )
        return response.status_code, _decode_body(response)

    async def _send_response(
        self,
        path: str,
        method: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        content: str | bytes | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute one request with retries; returns the successful response."""
        client = await self._get_client()
        merged = self._merge_headers(headers, data is not None)
        method = method.upper()

        for attempt in range(self.retry_attempts):
            started = time.monotonic()
            try:
                response = await client.request(
                    method=method,
                    url=path,
                    json=json,
                    params=params,
                    content=content,
                    data=data,
                    headers=merged,
                )

            except httpx.TimeoutException as e:
                record_device_request(
                    self.device_id, "http", method, False, time.monotonic() - started
                )
                if attempt == self.retry_attempts - 1:
                    raise DeviceTimeoutError(
                        f"Request timeout after {self.timeout.read}s: {method} {path}",
                        context={"device_id": self.device_id},
                    ) from e
                delay = self.retry_backoff_seconds * 2**attempt
                logger.warning(
                    f"Timeout on attempt {attempt + 1}/{self.retry_attempts}, "
                    f"retrying in {delay}s",
                    extra={"device_id": self.device_id, "attempt": attempt + 1},
                )
                await asyncio.sleep(delay)
                continue

            except httpx.TransportError as e:
                record_device_request(
                    self.device_id, "http", method, False, time.monotonic() - started
                )
                if attempt == self.retry_attempts - 1:
                    raise DeviceTransportError(
                        f"Network error: {method} {path}: {type(e).__name__}",
                        context={"device_id": self.device_id},
                    ) from e
                delay = self.retry_backoff_seconds * 2**attempt
                logger.warning(
                    f"Network error on attempt {attempt + 1}/{self.retry_attempts}, "
                    f"retrying in {delay}s",
                    extra={"device_id": self.device_id, "attempt": attempt + 1},
                )
                await asyncio.sleep(delay)
                continue

            record_device_request(
                self.device_id,
                "http",
                method,
                response.is_success,
                time.monotonic() - started,
            )

            # Non-2xx responses are not transient
            if not response.is_success:
                raise DeviceApiError(
                    f"API {response.status_code} {response.reason_phrase}: {response.text}",
                    response.status_code,
                    response.text,
                    context={"device_id": self.device_id, "path": path},
                )

            logger.debug(
                f"{method} {path} -> {response.status_code}",
                extra={"device_id": self.device_id, "status_code": response.status_code},
            )
            return response

        # Should never reach here
        raise RuntimeError("Retry loop exited unexpectedly")

    async def request(
        self,
        path: str,
        method: str = "GET",
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        content: str | bytes | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Execute an HTTP request without authentication handling.

        Args:
            path: API path relative to base_url (or an absolute URL)
            method: HTTP method
            json: JSON request body
            params: Query parameters
            content: Raw request body
            data: Form-encoded request body
            headers: Per-call header overrides

        Returns:
            Parsed JSON when the content type says so, otherwise text

        Raises:
            DeviceApiError: On non-2xx responses (carries status and body)
            DeviceTimeoutError: On timeout after retries
            DeviceTransportError: On network errors after retries
        """
        _, body = await self._send(
            path, method, json=json, params=params, content=content, data=data, headers=headers
        )
        return body

    async def request_with_headers(
        self,
        path: str,
        method: str = "GET",
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        content: str | bytes | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any, httpx.Headers]:
        """Like request(), also returning the response headers.

        For handshakes that hand out the credential in a response header
        (e.g. ``X-Subject-Token``).
        """
        response = await self._send_response(
            path, method, json=json, params=params, content=content, data=data, headers=headers
        )
        return _decode_body(response), response.headers

    async def ensure_authenticated(self, authenticator: HttpAuthenticator) -> None:
        """Log in if no credential is held."""
        if authenticator.is_authenticated():
            return
        async with self._auth_lock:
            if authenticator.is_authenticated():
                return
            await self._login(authenticator)

    async def _refresh(self, authenticator: HttpAuthenticator, seen_generation: int) -> None:
        """Replace an expired credential, once per generation."""
        async with self._auth_lock:
            if self._generation != seen_generation and authenticator.is_authenticated():
                logger.debug(
                    "Credential already refreshed by a concurrent call",
                    extra={"device_id": self.device_id},
                )
                return
            authenticator.invalidate()
            await self._login(authenticator)
            record_reauthentication(self.device_id, self.device_family)
            logger.info(
                "Session expired, re-authenticated",
                extra={"device_id": self.device_id, "device_family": self.device_family},
            )

    async def _login(self, authenticator: HttpAuthenticator) -> None:
        try:
            await authenticator.authenticate()
        except DeviceApiError as e:
            raise DeviceAuthenticationError(
                f"Login failed: {e}", context={"device_id": self.device_id}
            ) from e
        self._generation += 1

    async def authenticated_request(
        self,
        path: str,
        method: str = "GET",
        *,
        authenticator: HttpAuthenticator,
        json: Any = None,
        params: dict[str, Any] | None = None,
        content: str | bytes | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Execute a request that needs a credential.

        Logs in lazily. When the response signals an expired credential
        (error status or an error code inside a 2xx body) the credential is
        replaced and the request retried exactly once.

        Raises:
            DeviceAuthenticationError: If login fails or the retry is also rejected
            DeviceApiError: On non-2xx responses that are not expiry signals
            DeviceTimeoutError: On timeout
            DeviceTransportError: On network errors
        """
        await self.ensure_authenticated(authenticator)
        signed_body = json if json is not None else (content if content is not None else data)

        for attempt in range(2):
            generation = self._generation
            call_headers = dict(authenticator.request_headers(method.upper(), path, signed_body))
            if headers:
                call_headers.update(headers)
            call_params = {**(params or {}), **authenticator.request_params(method.upper(), path)}

            try:
                status_code, body = await self._send(
                    path,
                    method,
                    json=json,
                    params=call_params or None,
                    content=content,
                    data=data,
                    headers=call_headers,
                )
            except DeviceApiError as e:
                if not authenticator.is_session_expired(e.status_code or 0, e.response_body):
                    raise
                expired_error: Exception | None = e
            else:
                if not authenticator.is_session_expired(status_code, body):
                    return body
                expired_error = None

            if attempt == 1:
                raise DeviceAuthenticationError(
                    f"Session rejected after re-authentication: {method.upper()} {path}",
                    context={"device_id": self.device_id},
                ) from expired_error

            await self._refresh(authenticator, generation)

        # Should never reach here
        raise RuntimeError("Retry loop exited unexpectedly")


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text
