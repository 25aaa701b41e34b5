"""
Variable fetching for a single UPS device.

Issues ``LIST VAR`` over an acquired connection and decodes the reply. A
busy server is retried a bounded number of times; busy, protocol and
server errors then degrade to an empty variable set so one bad device
never aborts its siblings. Socket failures are not swallowed here: they
surface as NUTConnectionError after the connection has already evicted
itself from the manager.
"""

import logging
from typing import List, Optional

from ..config import settings
from ..utils.retry import async_retry
from . import protocol
from .connection import NUTConnection
from .errors import NUTProtocolError, NUTServerError, NUTTransientBusyError
from .protocol import RawVariableSet

logger = logging.getLogger(__name__)


class VariableFetcher:
    """
    Fetches device lists and device variables from an open connection.

    The fetcher never opens or closes connections.
    """

    def __init__(self, attempts: Optional[int] = None, delay: Optional[float] = None):
        """
        Args:
            attempts: Total tries for a busy server, including the first.
            delay: Fixed pause in seconds between tries.
        """
        self.attempts = attempts if attempts is not None else settings.FETCH_RETRY_ATTEMPTS
        self.delay = delay if delay is not None else settings.FETCH_RETRY_DELAY
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        self._fetch_with_retry = async_retry(
            retries=self.attempts - 1,
            delay=self.delay,
            backoff=1.0,
            jitter=0.0,
            catch_exceptions=NUTTransientBusyError,
        )(self._fetch_once)

    async def list_devices(self, connection: NUTConnection) -> List[str]:
        """
        List the device names served by the connection's server.

        Raises:
            NUTConnectionError: On socket failure.
            NUTServerError, NUTProtocolError: On an unusable reply.
        """
        lines = await connection.request_list(protocol.encode_list_ups())
        devices = protocol.decode_device_list(lines)
        logger.info("NUT list_ups ok on %s: %d devices", connection.key, len(devices))
        return devices

    async def _fetch_once(self, connection: NUTConnection, device_name: str) -> RawVariableSet:
        lines = await connection.request_list(protocol.encode_list_vars(device_name))
        return protocol.decode_variable_list(lines, device_name)

    async def fetch_variables(self, connection: NUTConnection, device_name: str) -> RawVariableSet:
        """
        Get all variables of one device.

        Returns:
            The variable mapping, or an empty mapping when the server stayed
            busy or answered with an error or malformed reply.

        Raises:
            NUTConnectionError: On socket failure.
        """
        try:
            variables = await self._fetch_with_retry(connection, device_name)
        except NUTTransientBusyError as e:
            logger.warning(
                "NUT server %s still busy for '%s' after %d attempts, returning no variables",
                connection.key, device_name, self.attempts,
                extra={"nut_server": connection.key, "ups_name": device_name,
                       "reason": "busy", "attempts": self.attempts, "error": str(e)},
            )
            return {}
        except (NUTProtocolError, NUTServerError) as e:
            logger.warning(
                "Failed to read variables for '%s' from %s, returning no variables: %s",
                device_name, connection.key, e,
                extra={"nut_server": connection.key, "ups_name": device_name,
                       "reason": type(e).__name__, "error": str(e)},
            )
            return {}

        logger.debug("NUT get_vars ok for '%s' (%d vars)", device_name, len(variables))
        return variables
