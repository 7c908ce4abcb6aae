"""Device transports: SSH shell sessions, HTTP sessions, byte-stream framing."""

from fleetlink.infra.transports.deadline import Deadline
from fleetlink.infra.transports.http import HttpAuthenticator, HttpSession
from fleetlink.infra.transports.ssh import ShellSession
from fleetlink.infra.transports.stream import AtCommandChannel, RawByteChannel

__all__ = [
    "Deadline",
    "HttpAuthenticator",
    "HttpSession",
    "ShellSession",
    "AtCommandChannel",
    "RawByteChannel",
]
