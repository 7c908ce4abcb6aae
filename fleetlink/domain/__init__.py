"""Domain layer: device descriptors, result envelopes and error kinds."""

from fleetlink.domain.exceptions import (
    DeviceApiError,
    DeviceAuthenticationError,
    DeviceError,
    DeviceNotFoundError,
    DeviceTimeoutError,
    DeviceTransportError,
    DeviceUnsupportedError,
    ErrorKind,
    UnknownDeviceFamilyError,
)
from fleetlink.domain.models import (
    CommandResult,
    ConnectionState,
    DeviceDescriptor,
    StatusEnvelope,
    TransportKind,
)

__all__ = [
    # Models
    "CommandResult",
    "ConnectionState",
    "DeviceDescriptor",
    "StatusEnvelope",
    "TransportKind",
    # Exceptions
    "DeviceApiError",
    "DeviceAuthenticationError",
    "DeviceError",
    "DeviceNotFoundError",
    "DeviceTimeoutError",
    "DeviceTransportError",
    "DeviceUnsupportedError",
    "ErrorKind",
    "UnknownDeviceFamilyError",
]
