"""Shell-session transport over SSH.

Provides one authenticated, reusable SSH session per device with two
execution modes:
- exec: one-shot command channel, stdout/stderr collected separately
- shell: interactive PTY shell for CLIs without a usable exec channel,
  command completion detected by a trailing prompt character

Design principles:
- Negotiate wide algorithm lists so old embedded network OS firmware
  can still log in, filtered to what the installed asyncssh supports
- Reuse the session across calls; a lost session is cleared and the
  next call reconnects
- Every call is bounded by a timeout that names the command
- Map asyncssh errors to fleetlink device errors
"""

import asyncio
import logging
import re
import time
from collections.abc import Callable
from typing import Final

import asyncssh
from asyncssh.encryption import get_encryption_algs
from asyncssh.kex import get_kex_algs
from asyncssh.mac import get_mac_algs
from asyncssh.public_key import get_public_key_algs

from fleetlink.domain.exceptions import (
    DeviceAuthenticationError,
    DeviceTimeoutError,
    DeviceTransportError,
)
from fleetlink.infra.observability.metrics import record_device_request

logger = logging.getLogger(__name__)

# Preference order matters: modern first, legacy last
PREFERRED_KEX_ALGS: Final[tuple[str, ...]] = (
    "ecdh-sha2-nistp256",
    "ecdh-sha2-nistp384",
    "ecdh-sha2-nistp521",
    "diffie-hellman-group-exchange-sha256",
    "diffie-hellman-group14-sha256",
    "diffie-hellman-group14-sha1",
    "diffie-hellman-group1-sha1",
)

PREFERRED_ENCRYPTION_ALGS: Final[tuple[str, ...]] = (
    "aes128-ctr",
    "aes192-ctr",
    "aes256-ctr",
    "aes128-gcm@openssh.com",
    "aes256-gcm@openssh.com",
    "aes128-cbc",
    "aes256-cbc",
    "3des-cbc",
)

PREFERRED_HOST_KEY_ALGS: Final[tuple[str, ...]] = (
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "rsa-sha2-512",
    "rsa-sha2-256",
    "ssh-rsa",
)

PREFERRED_MAC_ALGS: Final[tuple[str, ...]] = (
    "hmac-sha2-256",
    "hmac-sha2-512",
    "hmac-sha1",
)

# Prompt character at the very end of the buffered output
PROMPT_PATTERN: Final[re.Pattern[str]] = re.compile(r"[#>$][ \t]*\Z")

DEFAULT_PAGING_COMMAND: Final[str] = "terminal length 0"


def _supported(preferred: tuple[str, ...], available: list[bytes]) -> list[str]:
    names = {alg.decode("ascii") for alg in available}
    return [alg for alg in preferred if alg in names]


def negotiated_algorithms() -> dict[str, list[str]]:
    """Algorithm keyword arguments for asyncssh.connect().

    Returns:
        Preferred algorithm lists restricted to those asyncssh supports
    """
    return {
        "kex_algs": _supported(PREFERRED_KEX_ALGS, get_kex_algs()),
        "encryption_algs": _supported(PREFERRED_ENCRYPTION_ALGS, get_encryption_algs()),
        "server_host_key_algs": _supported(PREFERRED_HOST_KEY_ALGS, get_public_key_algs()),
        "mac_algs": _supported(PREFERRED_MAC_ALGS, get_mac_algs()),
    }


def _to_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class _SessionClient(asyncssh.SSHClient):
    """Reports connection loss back to the owning ShellSession."""

    def __init__(
        self, on_lost: Callable[[asyncssh.SSHClientConnection | None, Exception | None], None]
    ) -> None:
        self._on_lost = on_lost
        self._conn: asyncssh.SSHClientConnection | None = None

    def connection_made(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn

    def connection_lost(self, exc: Exception | None) -> None:
        self._on_lost(self._conn, exc)


class ShellSession:
    """Async SSH session for one device, reused across calls.

    Example:
        session = ShellSession(host="10.0.0.2", username="admin", password="secret")

        version = await session.exec("show version")
        vlans = await session.shell("show vlans", paging_command="no page")

        await session.close()
    """

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: str | None = None,
        password: str | None = None,
        private_key: str | None = None,
        connect_timeout: float = 30.0,
        command_timeout: float = 30.0,
        prompt_wait: float = 5.0,
        known_hosts: str | None = None,
        connect_retries: int = 1,
        device_id: str | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        """Initialize shell session.

        Args:
            host: Device hostname or IP
            port: SSH port (default: 22)
            username: Login username
            password: Login password (optional if private_key provided)
            private_key: SSH private key in PEM format
            connect_timeout: Login timeout in seconds
            command_timeout: Default per-command timeout in seconds
            prompt_wait: Max wait for the initial interactive prompt
            known_hosts: known_hosts path (None disables host key checking)
            connect_retries: Connection attempts before giving up
            device_id: Device identifier for logs/metrics
            on_close: Called whenever the session ends
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.private_key = private_key
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.prompt_wait = prompt_wait
        self.known_hosts = known_hosts
        self.connect_retries = max(1, connect_retries)
        self.device_id = device_id or host
        self._on_close = on_close

        self._connection: asyncssh.SSHClientConnection | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    def _connection_lost(
        self, connection: asyncssh.SSHClientConnection | None, exc: Exception | None
    ) -> None:
        # Late notification for a connection already replaced
        if self._connection is not None and connection is not self._connection:
            return
        if exc is not None:
            logger.warning(
                f"SSH session lost: {self.host}: {exc}",
                extra={"device_id": self.device_id, "transport": "ssh"},
            )
        self._reset()

    def _reset(self) -> None:
        self._connection = None
        if self._on_close is not None:
            self._on_close()

    def _connect_kwargs(self) -> dict:
        kwargs: dict = {
            "port": self.port,
            "username": self.username,
            "known_hosts": self.known_hosts,
            "client_factory": lambda: _SessionClient(self._connection_lost),
            **negotiated_algorithms(),
        }
        if self.private_key:
            kwargs["client_keys"] = [asyncssh.import_private_key(self.private_key)]
        else:
            kwargs["client_keys"] = None
        if self.password:
            kwargs["password"] = self.password
        return kwargs

    async def connect(self) -> asyncssh.SSHClientConnection:
        """Get or create the SSH connection.

        Returns:
            Live SSH connection

        Raises:
            DeviceAuthenticationError: On auth failure
            DeviceTimeoutError: If login does not complete in time
            DeviceTransportError: On other connection errors
        """
        if not self.username:
            raise DeviceAuthenticationError(
                f"SSH username not configured: {self.host}", context={"device_id": self.device_id}
            )

        async with self._connect_lock:
            if self.is_connected:
                return self._connection  # type: ignore[return-value]

            for attempt in range(self.connect_retries):
                try:
                    self._connection = await asyncio.wait_for(
                        asyncssh.connect(self.host, **self._connect_kwargs()),
                        timeout=self.connect_timeout,
                    )
                    logger.info(
                        f"SSH connection established: {self.host}:{self.port}",
                        extra={"device_id": self.device_id, "transport": "ssh"},
                    )
                    return self._connection

                except asyncssh.PermissionDenied as e:
                    raise DeviceAuthenticationError(
                        f"SSH authentication failed: {self.host}",
                        context={"device_id": self.device_id},
                    ) from e

                except TimeoutError as e:
                    if attempt == self.connect_retries - 1:
                        raise DeviceTimeoutError(
                            f"SSH connection timeout after {self.connect_timeout}s: {self.host}",
                            context={"device_id": self.device_id},
                        ) from e
                    last_error: Exception = e

                except (OSError, asyncssh.Error) as e:
                    if attempt == self.connect_retries - 1:
                        raise DeviceTransportError(
                            f"SSH connection failed after {self.connect_retries} attempt(s): "
                            f"{self.host}: {e}",
                            context={"device_id": self.device_id},
                        ) from e
                    last_error = e

                delay = 2**attempt
                logger.warning(
                    f"SSH connection attempt {attempt + 1}/{self.connect_retries} failed "
                    f"({type(last_error).__name__}), retrying in {delay}s",
                    extra={"device_id": self.device_id, "attempt": attempt + 1},
                )
                await asyncio.sleep(delay)

        # Should never reach here
        raise RuntimeError("Retry loop exited unexpectedly")

    async def close(self) -> None:
        """Close the SSH connection."""
        connection = self._connection
        self._connection = None
        if connection is not None and not connection.is_closed():
            connection.close()
            await connection.wait_closed()
            logger.info(
                f"SSH connection closed: {self.host}",
                extra={"device_id": self.device_id, "transport": "ssh"},
            )

    async def exec(self, command: str, timeout: float | None = None) -> str:
        """Run a one-shot command on an exec channel.

        Args:
            command: Command text
            timeout: Seconds to wait for the channel to close (default: command_timeout)

        Returns:
            stdout if non-empty, otherwise stderr

        Raises:
            DeviceTimeoutError: If the channel does not close in time
            DeviceTransportError: On channel/session errors
        """
        timeout = self.command_timeout if timeout is None else timeout
        connection = await self.connect()
        started = time.monotonic()
        success = False

        try:
            result = await asyncio.wait_for(connection.run(command, check=False), timeout=timeout)
            stdout = _to_text(result.stdout)
            stderr = _to_text(result.stderr)
            success = True
            logger.debug(
                f"SSH command executed: {command} (output: {len(stdout or stderr)} bytes)",
                extra={"device_id": self.device_id, "command": command},
            )
            return stdout or stderr

        except TimeoutError as e:
            raise DeviceTimeoutError(
                f"Command timed out after {timeout}s: {command}",
                context={"device_id": self.device_id, "command": command},
            ) from e

        except (OSError, asyncssh.Error) as e:
            await self._discard()
            raise DeviceTransportError(
                f"SSH command execution error: {command}: {e}",
                context={"device_id": self.device_id, "command": command},
            ) from e

        finally:
            record_device_request(
                self.device_id, "ssh", "exec", success, time.monotonic() - started
            )

    async def shell(
        self,
        command: str,
        timeout: float | None = None,
        paging_command: str | None = DEFAULT_PAGING_COMMAND,
    ) -> str:
        """Run a command in an interactive shell.

        Waits for the initial prompt (at most prompt_wait seconds), disables
        paging, writes the command and returns the output captured up to the
        next trailing prompt or channel close.

        Args:
            command: Command text
            timeout: Overall bound in seconds (default: command_timeout)
            paging_command: Command that disables output paging (None to skip)

        Returns:
            Output captured after the command was written

        Raises:
            DeviceTimeoutError: If no prompt or close arrives in time
            DeviceTransportError: On channel/session errors
        """
        timeout = self.command_timeout if timeout is None else timeout
        connection = await self.connect()
        started = time.monotonic()
        success = False

        try:
            process = await connection.create_process(term_type="vt100")
        except (OSError, asyncssh.Error) as e:
            await self._discard()
            raise DeviceTransportError(
                f"SSH shell open error: {e}", context={"device_id": self.device_id}
            ) from e

        try:
            output = await asyncio.wait_for(
                self._interact(process, command, paging_command), timeout=timeout
            )
            success = True
            return output

        except TimeoutError as e:
            raise DeviceTimeoutError(
                f"Shell command timed out after {timeout}s: {command}",
                context={"device_id": self.device_id, "command": command},
            ) from e

        except (OSError, asyncssh.Error) as e:
            await self._discard()
            raise DeviceTransportError(
                f"SSH shell error: {command}: {e}",
                context={"device_id": self.device_id, "command": command},
            ) from e

        finally:
            process.close()
            record_device_request(
                self.device_id, "ssh", "shell", success, time.monotonic() - started
            )

    async def _interact(
        self,
        process: asyncssh.SSHClientProcess,
        command: str,
        paging_command: str | None,
    ) -> str:
        try:
            await asyncio.wait_for(_read_until_prompt(process.stdout), timeout=self.prompt_wait)
        except TimeoutError:
            logger.debug(
                f"No initial prompt within {self.prompt_wait}s, sending command anyway",
                extra={"device_id": self.device_id},
            )

        if paging_command:
            process.stdin.write(paging_command + "\n")
            await _read_until_prompt(process.stdout)

        process.stdin.write(command + "\n")
        return await _read_until_prompt(process.stdout)

    async def _discard(self) -> None:
        """Drop a broken connection so the next call reconnects."""
        connection = self._connection
        if connection is not None:
            connection.close()
            self._reset()


async def _read_until_prompt(stdout: asyncssh.SSHReader) -> str:
    """Accumulate output until a trailing prompt character or EOF."""
    buffer = ""
    while True:
        chunk = await stdout.read(4096)
        if not chunk:
            return buffer
        buffer += _to_text(chunk)
        if PROMPT_PATTERN.search(buffer):
            return buffer
