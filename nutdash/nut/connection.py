"""
A single asyncio session to a NUT server.

The connection only moves lines on and off the wire: command strings come
from ``protocol`` and replies are handed back undecoded. Commands are
serialized with a lock because upsd answers strictly in request order on
one stream.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from ..config import settings
from . import protocol
from .errors import NUTConnectionError, NUTError
from .models import ServerEndpoint

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"
    ERRORED = "errored"


class NUTConnection:
    """
    An asynchronous session with one NUT server.
    """

    def __init__(
        self,
        endpoint: ServerEndpoint,
        *,
        connect_timeout: Optional[float] = None,
        command_timeout: Optional[float] = None,
        read_limit: Optional[int] = None,
        on_close: Optional[Callable[["NUTConnection"], None]] = None,
    ):
        """
        Initialize the connection. Nothing is opened until ``open()``.

        Args:
            endpoint: The server to talk to.
            connect_timeout: Seconds allowed for the TCP connect.
            command_timeout: Seconds allowed for each write and each line read.
            read_limit: Longest reply line accepted, in bytes.
            on_close: Called once when the connection closes or errors.
        """
        self.endpoint = endpoint
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT
        self.command_timeout = command_timeout if command_timeout is not None else settings.COMMAND_TIMEOUT
        self.read_limit = read_limit if read_limit is not None else settings.READ_LIMIT
        self.state = ConnectionState.CONNECTING
        self._on_close = on_close
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return self.endpoint.key

    @property
    def is_ready(self) -> bool:
        """
        True while the session can take a command. An idle connection the
        server has hung up on is not ready, even before anyone reads from it.
        """
        return (
            self.state == ConnectionState.READY
            and self._writer is not None
            and not self._writer.is_closing()
            and self._reader is not None
            and not self._reader.at_eof()
        )

    def abort(self) -> None:
        """Drop the session without LOGOUT, e.g. after the server hung up."""
        self._fail()

    def __repr__(self) -> str:
        return f"<NUTConnection {self.key} {self.state.value}>"

    async def open(self) -> "NUTConnection":
        """
        Connect and, when the endpoint has credentials, authenticate.

        Raises:
            NUTConnectionError: If the server is unreachable, times out, or
                rejects the credentials.
        """
        logger.debug("Connecting to NUT server %s", self.key)
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.endpoint.host, self.endpoint.port, limit=self.read_limit),
                timeout=self.connect_timeout,
            )
        except asyncio.CancelledError:
            self._fail()
            raise
        except (asyncio.TimeoutError, OSError) as e:
            self._fail()
            raise NUTConnectionError(
                f"Failed to connect to NUT server {self.key}: {str(e) or type(e).__name__}",
                endpoint=self.key,
            ) from e

        try:
            if self.endpoint.username:
                protocol.check_ok(await self._exchange(protocol.encode_username(self.endpoint.username)))
            if self.endpoint.password:
                protocol.check_ok(await self._exchange(protocol.encode_password(self.endpoint.password)))
        except NUTConnectionError:
            raise
        except NUTError as e:
            self._fail()
            raise NUTConnectionError(
                f"Authentication with NUT server {self.key} failed: {e}",
                endpoint=self.key,
            ) from e

        self.state = ConnectionState.READY
        logger.info("Connected to NUT server %s (auth=%s)", self.key, self.endpoint.has_credentials)
        return self

    async def request(self, command: str) -> str:
        """Send a command and return its single-line reply."""
        async with self._lock:
            return await self._exchange(command)

    async def request_list(self, command: str) -> List[str]:
        """
        Send a LIST command and return every reply line up to and including
        the ``END LIST`` line. Reading stops early at an ``ERR`` line, which
        is left for the decoder to raise.
        """
        async with self._lock:
            lines = [await self._exchange(command)]
            while not (protocol.is_list_end(lines[-1]) or protocol.is_error(lines[-1])):
                lines.append(await self._guard(self._readline()))
            return lines

    async def close(self) -> None:
        """Log out and close the socket. Safe to call more than once."""
        if self.state in (ConnectionState.CLOSED, ConnectionState.ERRORED):
            return
        writer = self._writer
        self.state = ConnectionState.CLOSED
        if writer is not None and not writer.is_closing():
            try:
                writer.write(protocol.frame(protocol.encode_logout()))
                await asyncio.wait_for(writer.drain(), timeout=self.command_timeout)
            except (asyncio.TimeoutError, OSError) as e:
                logger.debug("LOGOUT to %s failed: %s", self.key, e)
            writer.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), timeout=self.command_timeout)
            except (asyncio.TimeoutError, OSError) as e:
                logger.debug("Closing %s did not complete cleanly: %s", self.key, e)
        logger.info("Closed connection to NUT server %s", self.key)
        self._notify_closed()

    async def _exchange(self, command: str) -> str:
        if self._writer is None or self._writer.is_closing():
            self._fail()
            raise NUTConnectionError(f"Connection to {self.key} is not open", endpoint=self.key)
        logger.debug("%s <- %s", self.key, command.split(" ")[0] if command.startswith("PASSWORD") else command)
        self._writer.write(protocol.frame(command))
        await self._guard(self._writer.drain())
        return await self._guard(self._readline())

    async def _readline(self) -> str:
        raw = await self._reader.readline()
        if not raw:
            raise EOFError("connection closed by server")
        return raw.decode(protocol.ENCODING, errors="replace").rstrip("\r\n")

    async def _guard(self, awaitable):
        """Apply the command timeout and turn socket failures into NUTConnectionError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.command_timeout)
        except asyncio.TimeoutError as e:
            self._fail()
            raise NUTConnectionError(
                f"Timed out after {self.command_timeout}s waiting for NUT server {self.key}",
                endpoint=self.key,
            ) from e
        except (OSError, EOFError) as e:
            self._fail()
            raise NUTConnectionError(f"Lost connection to NUT server {self.key}: {e}", endpoint=self.key) from e
        except (ValueError, asyncio.LimitOverrunError) as e:
            # The rest of the overlong line is still unread; later replies would be misaligned.
            self._fail()
            raise NUTConnectionError(
                f"Reply line from NUT server {self.key} exceeds {self.read_limit} bytes: {e}",
                endpoint=self.key,
            ) from e
        except asyncio.CancelledError:
            # The stream may hold a half-read reply; it cannot be reused.
            self._fail()
            raise

    def _fail(self) -> None:
        if self.state in (ConnectionState.CLOSED, ConnectionState.ERRORED):
            return
        self.state = ConnectionState.ERRORED
        if self._writer is not None:
            self._writer.close()
        logger.warning("Connection to NUT server %s errored", self.key)
        self._notify_closed()

    def _notify_closed(self) -> None:
        callback, self._on_close = self._on_close, None
        if callback is not None:
            callback(self)
