"""Domain models for fleetlink.

Pydantic models for device descriptors and the uniform result envelopes
every connector produces, independent of transport.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TransportKind(str, Enum):
    """Transport a device family can be reached over."""

    SSH = "ssh"
    REST = "rest"
    SERIAL = "serial"


class ConnectionState(str, Enum):
    """Connection state owned by a connector instance."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"
    UNKNOWN = "unknown"


class DeviceDescriptor(BaseModel):
    """Static description of one managed device.

    Accepts both snake_case and the camelCase keys used by JSON inventories
    (``apiKey``, ``apiUrl``, ``serialPort``, ...). The family is read from
    ``type`` or ``family``.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(..., description="Unique device identifier")
    name: str = Field(default="", description="Human-friendly device name")
    family: str = Field(..., alias="type", description="Device family tag (e.g. 'cisco')")
    transport: list[TransportKind] = Field(
        default_factory=list, description="Supported transports, in preference order"
    )

    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    api_key: str | None = Field(default=None, repr=False)
    api_url: str | None = None
    serial_port: str | None = None
    serial_baud: int | None = None
    enable_password: str | None = Field(default=None, repr=False)
    vpn: str | None = None

    tags: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Reject empty identifiers."""
        if not v or not v.strip():
            raise ValueError("Device id must not be empty")
        return v.strip()

    @field_validator("family")
    @classmethod
    def normalize_family(cls, v: str) -> str:
        """Normalize family tag to lower case."""
        return v.strip().lower()

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def summary(self) -> dict[str, Any]:
        """Credential-free view for listings."""
        return {
            "id": self.id,
            "name": self.display_name,
            "family": self.family,
            "transport": [t.value for t in self.transport],
            "host": self.host,
            "vpn": self.vpn,
            "tags": list(self.tags),
        }


class StatusEnvelope(BaseModel):
    """Uniform status snapshot for one device. Never cached."""

    id: str
    name: str
    family: str
    state: ConnectionState
    uptime: str | None = None
    firmware: str | None = None
    model: str | None = None
    serial_number: str | None = None
    last_seen: datetime = Field(default_factory=lambda: datetime.now(UTC))
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def error(self) -> str | None:
        """Error message folded into the envelope, if any."""
        value = self.details.get("error")
        return str(value) if value is not None else None


class CommandResult(BaseModel):
    """Outcome of one execute_command call."""

    success: bool
    device: str
    command: str
    output: str = ""
    error: str | None = None
    execution_time_ms: float | None = None
