"""Byte-stream framing transport over raw TCP sockets.

Serial-to-network modules expose two sockets with no message boundaries:
- an AT command port: CRLF-terminated commands, responses end with one of
  a few terminator patterns (+ok, +ERR, bare OK/ERROR lines)
- a transparent serial port: arbitrary bytes in, arbitrary bytes out,
  a response ends after a window of silence

Each call opens its own connection, bounded by the call timeout, and
always closes it. Reads may split a response anywhere; the accumulated
buffer is re-checked after every chunk.
"""

import asyncio
import logging
import re
import time
from typing import Final

from fleetlink.domain.exceptions import (
    DeviceApiError,
    DeviceTimeoutError,
    DeviceTransportError,
)
from fleetlink.infra.observability.metrics import record_device_request
from fleetlink.infra.transports.deadline import Deadline

logger = logging.getLogger(__name__)

DEFAULT_AT_PORT: Final[int] = 49000
DEFAULT_SERIAL_PORT: Final[int] = 8899

READ_CHUNK_SIZE: Final[int] = 4096

# A response is complete once any of these has arrived. +ERR and a bare
# +ok may end the buffer without a line terminator; +ok=value may not.
AT_TERMINATORS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\+ok(?:=[^\r\n]*)?\r?\n", re.IGNORECASE),
    re.compile(r"^\+ok\Z", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\+ERR[^\r\n]*\r?\n", re.IGNORECASE),
    re.compile(r"\+ERR(?:=-?\d+)?\Z", re.IGNORECASE),
    re.compile(r"^(?:OK|ERROR)\r?\n", re.MULTILINE),
)

_OK_VALUE = re.compile(r"\+ok=(.*)", re.IGNORECASE)
_OK_BARE = re.compile(r"^\+ok$", re.IGNORECASE | re.MULTILINE)
_ERR_VALUE = re.compile(r"\+ERR(?:=(.*))?", re.IGNORECASE)
_ERROR_LINE = re.compile(r"^ERROR$", re.MULTILINE)
_HEX_PAYLOAD = re.compile(r"[0-9a-fA-F\s]+")


def is_at_response_complete(buffer: str) -> bool:
    """Check accumulated AT output for a terminator."""
    return any(pattern.search(buffer) for pattern in AT_TERMINATORS)


def parse_at_response(raw: str) -> str:
    """Extract the value of an AT response.

    Args:
        raw: Accumulated response text

    Returns:
        Value after ``+ok=``, ``"OK"`` for a bare acknowledgement,
        otherwise the trimmed text

    Raises:
        DeviceApiError: If the device answered +ERR or ERROR
    """
    trimmed = raw.strip()

    ok = _OK_VALUE.search(trimmed)
    if ok:
        return ok.group(1).strip()
    if _OK_BARE.search(trimmed):
        return "OK"

    err = _ERR_VALUE.search(trimmed)
    if err:
        message = (err.group(1) or "").strip() or trimmed
        raise DeviceApiError(f"AT error: {message}", response_body=trimmed)
    if _ERROR_LINE.search(trimmed):
        raise DeviceApiError(f"AT error: {trimmed}", response_body=trimmed)

    lines = trimmed.splitlines()
    if lines and lines[-1].strip() == "OK":
        return "\n".join(lines[:-1]).strip() or "OK"
    return trimmed


def encode_payload(data: str | bytes) -> bytes:
    """Convert a serial payload to bytes.

    Strings of hex digits containing at least one space
    (``"01 03 00 00 00 01 84 0A"``) are hex-decoded, other strings are
    UTF-8 encoded, bytes pass through.

    Raises:
        ValueError: If a hex payload has an odd number of digits
    """
    if isinstance(data, bytes | bytearray):
        return bytes(data)
    if " " in data and _HEX_PAYLOAD.fullmatch(data):
        digits = re.sub(r"\s+", "", data)
        try:
            return bytes.fromhex(digits)
        except ValueError as e:
            raise ValueError(f"Invalid hex payload: {data!r}") from e
    return data.encode("utf-8")


async def _open(
    host: str, port: int, deadline: Deadline, device_id: str
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    try:
        return await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=deadline.remaining()
        )
    except TimeoutError as e:
        raise DeviceTimeoutError(
            f"Connection timeout ({deadline.seconds}s): {host}:{port}",
            context={"device_id": device_id},
        ) from e
    except OSError as e:
        raise DeviceTransportError(
            f"Socket error: {host}:{port}: {e}", context={"device_id": device_id}
        ) from e


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"Socket close error ignored: {e}")


class AtCommandChannel:
    """Line-oriented AT command protocol on a TCP port.

    Example:
        channel = AtCommandChannel("192.168.1.50")
        firmware = await channel.send("AT+VER")
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_AT_PORT,
        device_id: str | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.device_id = device_id or host

    async def send(self, command: str, timeout: float = 3.0) -> str:
        """Send one AT command and return the parsed response.

        Args:
            command: Command text without line terminator (e.g. "AT+VER")
            timeout: Overall bound in seconds; also the completion signal
                when no terminator arrives

        Returns:
            Parsed response (see parse_at_response)

        Raises:
            DeviceTimeoutError: If nothing arrived within the timeout
            DeviceApiError: If the device answered with an error
            DeviceTransportError: On socket errors
        """
        deadline = Deadline(timeout)
        started = time.monotonic()
        success = False
        writer: asyncio.StreamWriter | None = None
        buffer = ""
        closed = False

        try:
            reader, writer = await _open(self.host, self.port, deadline, self.device_id)
            writer.write(f"{command}\r\n".encode())
            await writer.drain()

            while not is_at_response_complete(buffer):
                try:
                    chunk = await asyncio.wait_for(
                        reader.read(READ_CHUNK_SIZE), timeout=deadline.remaining()
                    )
                except TimeoutError:
                    break
                if not chunk:
                    closed = True
                    break
                buffer += chunk.decode("utf-8", errors="replace")

            if not buffer and closed:
                raise DeviceTransportError(
                    f"Connection closed by peer before reply: {command}",
                    context={"device_id": self.device_id, "command": command},
                )
            if not buffer:
                raise DeviceTimeoutError(
                    f"AT command timeout ({timeout}s): {command}",
                    context={"device_id": self.device_id, "command": command},
                )

            logger.debug(
                f"AT {command} -> {buffer.strip()!r}",
                extra={"device_id": self.device_id, "command": command},
            )
            result = parse_at_response(buffer)
            success = True
            return result

        except OSError as e:
            raise DeviceTransportError(
                f"AT command error: {command}: {e}",
                context={"device_id": self.device_id, "command": command},
            ) from e

        finally:
            if writer is not None:
                await _close(writer)
            record_device_request(
                self.device_id, "serial", "at_command", success, time.monotonic() - started
            )


class RawByteChannel:
    """Transparent serial tunnel on a TCP port.

    Responses have no terminator: reading stops after `idle` seconds of
    silence following the last chunk, or when the overall timeout expires.

    Example:
        channel = RawByteChannel("192.168.1.50")
        reply = await channel.send("01 03 00 00 00 01 84 0A")  # "01 03 02 00 2a ..."
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_SERIAL_PORT,
        device_id: str | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.device_id = device_id or host

    async def send(self, data: str | bytes, timeout: float = 3.0, idle: float = 0.5) -> str:
        """Write a payload and collect the reply.

        Args:
            data: Space-separated hex string, text or bytes
            timeout: Overall bound in seconds
            idle: Silence after the last chunk that ends the reply

        Returns:
            Received bytes as space-separated hex pairs ("" if nothing arrived)

        Raises:
            DeviceTimeoutError: If the connection cannot be opened in time
            DeviceTransportError: On socket errors
        """
        payload = encode_payload(data)
        overall = Deadline(timeout)
        started = time.monotonic()
        success = False
        writer: asyncio.StreamWriter | None = None
        received = bytearray()
        silence: Deadline | None = None

        try:
            reader, writer = await _open(self.host, self.port, overall, self.device_id)
            writer.write(payload)
            await writer.drain()

            while True:
                wait = Deadline.earliest(overall, silence)
                if wait <= 0:
                    break
                try:
                    chunk = await asyncio.wait_for(reader.read(READ_CHUNK_SIZE), timeout=wait)
                except TimeoutError:
                    break
                if not chunk:
                    break
                received.extend(chunk)
                if silence is None:
                    silence = Deadline(idle)
                else:
                    silence.restart()

            success = True
            logger.debug(
                f"Serial frame: sent {len(payload)} bytes, received {len(received)} bytes",
                extra={"device_id": self.device_id},
            )
            return received.hex(" ")

        except OSError as e:
            raise DeviceTransportError(
                f"Serial TCP error: {e}", context={"device_id": self.device_id}
            ) from e

        finally:
            if writer is not None:
                await _close(writer)
            record_device_request(
                self.device_id, "serial", "frame", success, time.monotonic() - started
            )
