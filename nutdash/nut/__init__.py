"""
NUT protocol client and polling layer for nutdash.

Opens and caches connections to NUT servers, reads device variables and
turns them into per-device snapshots across every configured server.
"""

from nutdash.nut.aggregator import DeviceAggregator
from nutdash.nut.connection import ConnectionState, NUTConnection
from nutdash.nut.errors import (
    NUTConnectionError,
    NUTError,
    NUTProtocolError,
    NUTServerError,
    NUTTransientBusyError,
)
from nutdash.nut.fetcher import VariableFetcher
from nutdash.nut.manager import NUTConnectionManager
from nutdash.nut.models import DeviceSnapshot, PollResult, ServerEndpoint, ServerSnapshot
from nutdash.nut.poller import MultiServerPoller

__all__ = [
    "ConnectionState",
    "DeviceAggregator",
    "DeviceSnapshot",
    "MultiServerPoller",
    "NUTConnection",
    "NUTConnectionError",
    "NUTConnectionManager",
    "NUTError",
    "NUTProtocolError",
    "NUTServerError",
    "NUTTransientBusyError",
    "PollResult",
    "ServerEndpoint",
    "ServerSnapshot",
    "VariableFetcher",
]
