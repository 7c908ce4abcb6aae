"""Device connector exceptions.

Strongly-typed exceptions raised by transports, connectors and the registry.
Low-level network/SSH/HTTP errors are mapped to these at the transport
boundary so callers only ever deal with one hierarchy.

Exception hierarchy:
- DeviceError (base, carries an ErrorKind)
  - DeviceTimeoutError (no completion signal within bound)
  - DeviceApiError (non-2xx HTTP response or device error code)
  - DeviceAuthenticationError (login or re-authentication failed)
  - DeviceUnsupportedError (operation not implemented for the family)
    - UnknownDeviceFamilyError (family tag has no connector)
  - DeviceNotFoundError (unknown device id)
  - DeviceTransportError (socket/session-level failure)
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Machine-readable error category shared by every DeviceError."""

    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    AUTH_FAILURE = "auth_failure"
    UNSUPPORTED = "unsupported"
    NOT_FOUND = "not_found"
    TRANSPORT_ERROR = "transport_error"


class DeviceError(Exception):
    """Base exception for all device connector errors.

    Attributes:
        kind: Error category
        message: Human-readable error message
        context: Additional context about the error (device id, command, ...)
    """

    kind: ErrorKind = ErrorKind.TRANSPORT_ERROR

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for CLI/tool responses."""
        return {"kind": self.kind.value, "message": self.message, "context": self.context}


class DeviceTimeoutError(DeviceError):
    """Raised when a command, request or frame gets no completion signal in time."""

    kind = ErrorKind.TIMEOUT


class DeviceApiError(DeviceError):
    """Raised for non-2xx HTTP responses or device-reported error codes.

    Attributes:
        status_code: HTTP status code (None for device-level codes such as AT +ERR)
        response_body: Raw response body (if available)
    """

    kind = ErrorKind.API_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status_code = status_code
        self.response_body = response_body


class DeviceAuthenticationError(DeviceError):
    """Raised when login or re-authentication fails."""

    kind = ErrorKind.AUTH_FAILURE


class DeviceUnsupportedError(DeviceError):
    """Raised when an operation is not implemented for a device family."""

    kind = ErrorKind.UNSUPPORTED


class UnknownDeviceFamilyError(DeviceUnsupportedError):
    """Raised at connector construction time for an unknown family tag."""

    pass


class DeviceNotFoundError(DeviceError):
    """Raised when a device id is not in the registry."""

    kind = ErrorKind.NOT_FOUND


class DeviceTransportError(DeviceError):
    """Raised for socket or session-level failures."""

    kind = ErrorKind.TRANSPORT_ERROR
