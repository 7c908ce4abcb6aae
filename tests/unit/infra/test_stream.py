"""Tests for AT-command and raw byte framing over TCP.

Peers are real loopback servers so reads split across packets and
silent peers behave as on the wire.
"""

import asyncio
import socket
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import pytest

from fleetlink.domain.exceptions import DeviceApiError, DeviceTimeoutError, DeviceTransportError
from fleetlink.infra.observability.metrics import get_registry
from fleetlink.infra.transports.stream import (
    AtCommandChannel,
    RawByteChannel,
    encode_payload,
    is_at_response_complete,
    parse_at_response,
)

Handler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


@asynccontextmanager
async def serve(handler: Handler) -> AsyncIterator[int]:
    """Run a loopback TCP peer; yields its port."""

    async def wrapped(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await handler(reader, writer)
            # Hold the socket until the client hangs up
            await reader.read()
        finally:
            writer.close()

    server = await asyncio.start_server(wrapped, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()
        await server.wait_closed()


def at_peer(*replies: bytes, delay: float = 0.0) -> tuple[Handler, list[bytes]]:
    """Peer that records one command line and answers with `replies`."""
    received: list[bytes] = []

    async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        received.append(await reader.readline())
        for reply in replies:
            writer.write(reply)
            await writer.drain()
            await asyncio.sleep(delay)

    return handler, received


def closed_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestParseAtResponse:
    """Tests for AT response parsing."""

    def test_bare_ok_line(self) -> None:
        assert parse_at_response("OK\r\n") == "OK"

    def test_ok_value(self) -> None:
        assert parse_at_response("+ok=HF-LPB100 v4.1\r\n\r\n") == "HF-LPB100 v4.1"

    def test_bare_plus_ok(self) -> None:
        assert parse_at_response("+ok\r\n") == "OK"

    def test_text_before_ok(self) -> None:
        assert parse_at_response("ATI\r\nModem v2\r\nOK\r\n") == "ATI\nModem v2"

    def test_err_value(self) -> None:
        with pytest.raises(DeviceApiError, match="timeout"):
            parse_at_response("+ERR=timeout\r\n")

    def test_bare_error_line(self) -> None:
        with pytest.raises(DeviceApiError):
            parse_at_response("ERROR\r\n")

    def test_other_text_trimmed(self) -> None:
        assert parse_at_response("  hello \r\n") == "hello"

    def test_completion_needs_line_ending(self) -> None:
        assert not is_at_response_complete("+ok=1.2")
        assert is_at_response_complete("+ok=1.2\r\n")
        assert is_at_response_complete("junk\r\nOK\r\n")
        assert not is_at_response_complete("BOOK\r\n")

    def test_error_and_bare_ok_complete_at_end_of_buffer(self) -> None:
        assert is_at_response_complete("+ERR=-2")
        assert is_at_response_complete("+ERR")
        assert is_at_response_complete("+ok")
        assert not is_at_response_complete("+ok=")
        assert not is_at_response_complete("+ERR=-2 partial")


class TestEncodePayload:
    """Tests for serial payload encoding."""

    def test_hex_string_decoded(self) -> None:
        payload = encode_payload("01 03 00 00 00 01 84 0A")
        assert payload == bytes([0x01, 0x03, 0x00, 0x00, 0x00, 0x01, 0x84, 0x0A])
        assert len(payload) == 8

    def test_text_encoded(self) -> None:
        assert encode_payload("hello") == b"hello"
        assert encode_payload("0103") == b"0103"

    def test_bytes_pass_through(self) -> None:
        assert encode_payload(b"\x00\xff") == b"\x00\xff"

    def test_odd_hex_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid hex payload"):
            encode_payload("01 0")


class TestAtCommandChannel:
    """Tests for AtCommandChannel against a loopback peer."""

    @pytest.mark.asyncio
    async def test_ok_reply(self) -> None:
        handler, received = at_peer(b"OK\r\n")
        async with serve(handler) as port:
            result = await AtCommandChannel("127.0.0.1", port).send("AT", timeout=2.0)

        assert result == "OK"
        assert received == [b"AT\r\n"]

    @pytest.mark.asyncio
    async def test_reply_split_across_reads(self) -> None:
        handler, _ = at_peer(b"+o", b"k=4.0", b"3\r\n", delay=0.05)
        async with serve(handler) as port:
            result = await AtCommandChannel("127.0.0.1", port).send("AT+VER", timeout=2.0)

        assert result == "4.03"

    @pytest.mark.asyncio
    async def test_err_reply(self) -> None:
        handler, _ = at_peer(b"+ERR=timeout\r\n")
        async with serve(handler) as port:
            with pytest.raises(DeviceApiError, match="timeout"):
                await AtCommandChannel("127.0.0.1", port).send("AT+WANN", timeout=2.0)

    @pytest.mark.asyncio
    async def test_no_reply_times_out(self) -> None:
        handler, _ = at_peer()
        async with serve(handler) as port:
            started = time.monotonic()
            with pytest.raises(DeviceTimeoutError, match="AT\\+MAC"):
                await AtCommandChannel("127.0.0.1", port).send("AT+MAC", timeout=0.3)

        assert time.monotonic() - started < 2.0

    @pytest.mark.asyncio
    async def test_unterminated_reply_returned_at_deadline(self) -> None:
        handler, _ = at_peer(b"partial")
        async with serve(handler) as port:
            result = await AtCommandChannel("127.0.0.1", port).send("AT+X", timeout=0.3)

        assert result == "partial"

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        with pytest.raises(DeviceTransportError):
            await AtCommandChannel("127.0.0.1", closed_port()).send("AT", timeout=1.0)

    @pytest.mark.asyncio
    async def test_unterminated_error_fails_fast(self) -> None:
        handler, _ = at_peer(b"+ERR=-2")
        async with serve(handler) as port:
            started = time.monotonic()
            with pytest.raises(DeviceApiError, match="-2"):
                await AtCommandChannel("127.0.0.1", port).send("AT+NOPE", timeout=3.0)

        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_unterminated_bare_ok(self) -> None:
        handler, _ = at_peer(b"+ok")
        async with serve(handler) as port:
            started = time.monotonic()
            result = await AtCommandChannel("127.0.0.1", port).send("AT+Z", timeout=3.0)

        assert result == "OK"
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_peer_hangs_up_without_reply(self) -> None:
        async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            await reader.readline()
            writer.close()

        async with serve(handler) as port:
            started = time.monotonic()
            with pytest.raises(DeviceTransportError, match="closed by peer"):
                await AtCommandChannel("127.0.0.1", port).send("AT+VER", timeout=3.0)

        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_connection_refused_is_recorded(self) -> None:
        labels = {
            "device_id": "refused-at",
            "transport": "serial",
            "operation": "at_command",
            "status": "error",
        }
        before = get_registry().get_sample_value("fleetlink_device_requests_total", labels) or 0.0

        with pytest.raises(DeviceTransportError):
            await AtCommandChannel("127.0.0.1", closed_port(), device_id="refused-at").send(
                "AT", timeout=1.0
            )

        after = get_registry().get_sample_value("fleetlink_device_requests_total", labels)
        assert after == before + 1


class TestRawByteChannel:
    """Tests for RawByteChannel against a loopback peer."""

    @pytest.mark.asyncio
    async def test_hex_request_and_reply(self) -> None:
        received: list[bytes] = []

        async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            received.append(await reader.readexactly(8))
            writer.write(b"\x01\x03\x02\x00\x2a")
            await writer.drain()

        async with serve(handler) as port:
            result = await RawByteChannel("127.0.0.1", port).send(
                "01 03 00 00 00 01 84 0A", timeout=2.0, idle=0.1
            )

        assert received == [bytes.fromhex("010300000001840A")]
        assert result == "01 03 02 00 2a"

    @pytest.mark.asyncio
    async def test_chunks_joined_until_silence(self) -> None:
        async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            await reader.readexactly(2)
            for chunk in (b"\xaa", b"\xbb", b"\xcc"):
                writer.write(chunk)
                await writer.drain()
                await asyncio.sleep(0.03)

        async with serve(handler) as port:
            started = time.monotonic()
            channel = RawByteChannel("127.0.0.1", port)
            result = await channel.send(b"\x01\x02", timeout=5.0, idle=0.2)
            elapsed = time.monotonic() - started

        assert result == "aa bb cc"
        # Ended by the idle window, not the overall timeout
        assert elapsed < 2.0

    @pytest.mark.asyncio
    async def test_no_reply_is_empty(self) -> None:
        async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            await reader.readexactly(5)

        async with serve(handler) as port:
            result = await RawByteChannel("127.0.0.1", port).send("hello", timeout=0.3, idle=0.1)

        assert result == ""

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        with pytest.raises(DeviceTransportError):
            await RawByteChannel("127.0.0.1", closed_port()).send("01 02", timeout=1.0)

    @pytest.mark.asyncio
    async def test_connection_refused_is_recorded(self) -> None:
        labels = {
            "device_id": "refused-raw",
            "transport": "serial",
            "operation": "frame",
            "status": "error",
        }
        before = get_registry().get_sample_value("fleetlink_device_requests_total", labels) or 0.0

        with pytest.raises(DeviceTransportError):
            await RawByteChannel("127.0.0.1", closed_port(), device_id="refused-raw").send(
                "01 02", timeout=1.0
            )

        after = get_registry().get_sample_value("fleetlink_device_requests_total", labels)
        assert after == before + 1
