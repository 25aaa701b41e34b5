"""
Per-server aggregation of UPS device snapshots.
"""

import asyncio
import logging
from typing import List, Optional

from ..config import settings
from .errors import NUTError
from .fetcher import VariableFetcher
from .manager import NUTConnectionManager
from .mapping import build_snapshot, error_snapshot
from .models import DeviceSnapshot, ServerEndpoint

logger = logging.getLogger(__name__)


class DeviceAggregator:
    """
    Produces one DeviceSnapshot per device listed by a NUT server.
    """

    def __init__(
        self,
        manager: NUTConnectionManager,
        fetcher: Optional[VariableFetcher] = None,
        concurrency: Optional[int] = None,
    ):
        self.manager = manager
        self.fetcher = fetcher or VariableFetcher()
        self.concurrency = concurrency or settings.DEVICE_CONCURRENCY

    async def aggregate_server(self, endpoint: ServerEndpoint) -> List[DeviceSnapshot]:
        """
        Snapshot every device on one server.

        The result has exactly one entry per listed device, in listing order.
        If the server cannot be reached or its device list cannot be read, the
        result is empty.
        """
        try:
            connection = await self.manager.acquire(endpoint)
            device_names = await self.fetcher.list_devices(connection)
        except NUTError as e:
            logger.warning(
                "Skipping NUT server %s: %s", endpoint.key, e,
                extra={"nut_server": endpoint.key, "reason": type(e).__name__, "error": str(e)},
            )
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def snapshot(device_name: str) -> DeviceSnapshot:
            async with semaphore:
                return await self._snapshot_device(endpoint, connection, device_name)

        # gather keeps input order regardless of completion order
        return list(await asyncio.gather(*(snapshot(name) for name in device_names)))

    async def _snapshot_device(self, endpoint: ServerEndpoint, connection, device_name: str) -> DeviceSnapshot:
        try:
            variables = await self.fetcher.fetch_variables(connection, device_name)
            return build_snapshot(device_name, variables)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Error getting data for UPS '%s' on %s: %s", device_name, endpoint.key, e,
                exc_info=not isinstance(e, NUTError),
                extra={"nut_server": endpoint.key, "ups_name": device_name,
                       "reason": type(e).__name__, "error": str(e)},
            )
            return error_snapshot(device_name, str(e) or type(e).__name__)
