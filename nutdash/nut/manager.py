"""
Connection Manager

Owns the one cached connection per NUT server (``host:port``). Connections
are opened lazily on first use, reused while they stay ready, and dropped
from the cache as soon as they close or error so the next ``acquire``
opens a fresh one. There is no background health check.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from .connection import NUTConnection
from .models import ServerEndpoint

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[..., NUTConnection]


class NUTConnectionManager:
    """
    Caches NUT connections by endpoint key.

    Concurrent ``acquire`` calls for an endpoint that is still connecting
    share the same in-flight connect instead of opening a second socket.
    """

    def __init__(
        self,
        connection_factory: Optional[ConnectionFactory] = None,
        *,
        connect_timeout: Optional[float] = None,
        command_timeout: Optional[float] = None,
    ):
        """
        Args:
            connection_factory: Builds an unopened connection; called as
                ``factory(endpoint, on_close=callback)``. Defaults to NUTConnection.
            connect_timeout: Passed to connections built by the default factory.
            command_timeout: Passed to connections built by the default factory.
        """
        self._connections: Dict[str, NUTConnection] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._connect_timeout = connect_timeout
        self._command_timeout = command_timeout
        self._factory = connection_factory or self._default_factory

    def _default_factory(self, endpoint: ServerEndpoint, *, on_close) -> NUTConnection:
        return NUTConnection(
            endpoint,
            connect_timeout=self._connect_timeout,
            command_timeout=self._command_timeout,
            on_close=on_close,
        )

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, key: str) -> bool:
        return key in self._connections

    def get_cached(self, endpoint: ServerEndpoint) -> Optional[NUTConnection]:
        """The cached connection if it is still ready. A stale one is dropped."""
        cached = self._connections.get(endpoint.key)
        if cached is None or cached.is_ready:
            return cached
        logger.info("Cached connection for %s is no longer ready (%s), dropping it", endpoint.key, cached.state.value)
        self.evict(cached)
        cached.abort()
        return None

    async def acquire(self, endpoint: ServerEndpoint) -> NUTConnection:
        """
        Return a ready connection for the endpoint, opening one if needed.

        Raises:
            NUTConnectionError: If the connection or handshake fails.
        """
        key = endpoint.key
        cached = self.get_cached(endpoint)
        if cached is not None:
            return cached

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._open(endpoint))
            self._pending[key] = pending
            pending.add_done_callback(lambda fut, key=key: self._clear_pending(key, fut))
        else:
            logger.debug("Joining in-flight connect to %s", key)

        # One caller being cancelled must not abort the connect the others wait on.
        return await asyncio.shield(pending)

    async def _open(self, endpoint: ServerEndpoint) -> NUTConnection:
        connection = self._factory(endpoint, on_close=self.evict)
        await connection.open()
        self._connections[endpoint.key] = connection
        return connection

    def _clear_pending(self, key: str, fut: asyncio.Future) -> None:
        if self._pending.get(key) is fut:
            del self._pending[key]
        if not fut.cancelled():
            # Mark the exception retrieved when every waiter has gone away.
            fut.exception()

    def evict(self, connection: NUTConnection) -> None:
        """Drop a connection from the cache if it is the cached one for its key."""
        if self._connections.get(connection.key) is connection:
            del self._connections[connection.key]
            logger.info("Evicted connection to NUT server %s", connection.key)

    async def close_all(self) -> None:
        """
        Closes all cached connections.
        """
        for fut in list(self._pending.values()):
            fut.cancel()
        for connection in list(self._connections.values()):
            try:
                await connection.close()
            except Exception:
                # Log error but continue trying to close others
                logger.exception("Error closing connection to %s", connection.key)
        self._connections.clear()
