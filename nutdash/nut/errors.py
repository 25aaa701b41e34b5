"""
Exceptions raised by the NUT client layer.
"""

from typing import Optional

# Error text some NUT stacks return while a previous exchange with the
# driver is still in flight. Matched case-sensitively as a substring.
TRANSIENT_BUSY_TOKEN = "Other communication still running"


class NUTError(Exception):
    """Base exception for NUT client errors."""
    pass


class NUTConnectionError(NUTError, ConnectionError):
    """
    Socket or handshake failure for one endpoint.

    Attributes:
        endpoint: The ``host:port`` key of the endpoint that failed.
    """

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message)
        self.endpoint = endpoint


class NUTProtocolError(NUTError):
    """Malformed or unparsable response from an otherwise live connection."""
    pass


class NUTServerError(NUTError):
    """
    An ``ERR <code> [detail]`` reply from the server.

    Attributes:
        code: The NUT error code, e.g. ``UNKNOWN-UPS``.
        detail: Any text following the code.
    """

    def __init__(self, code: str, detail: str = ""):
        self.code = code
        self.detail = detail
        message = f"{code} {detail}".strip()
        super().__init__(message)


class NUTTransientBusyError(NUTServerError):
    """The server reported that another communication is still running."""
    pass
