"""
Multi-server polling for NUT integration.

This module contains the MultiServerPoller class, the single entry point
the HTTP layer calls to read every configured NUT server at once. It is
pull-based: nothing here runs on a timer.
"""

import asyncio
import logging
import time
from typing import Iterable, List, Optional

from .aggregator import DeviceAggregator
from .fetcher import VariableFetcher
from .manager import NUTConnectionManager
from .models import DeviceSnapshot, PollResult, ServerEndpoint, ServerSnapshot

logger = logging.getLogger(__name__)


class MultiServerPoller:
    """
    Polls all configured NUT servers concurrently and merges the results.
    """

    def __init__(
        self,
        manager: NUTConnectionManager,
        aggregator: Optional[DeviceAggregator] = None,
        fetcher: Optional[VariableFetcher] = None,
    ):
        """
        Initialize the poller.

        Args:
            manager: The process-wide connection manager.
            aggregator: Per-server aggregator; built from ``manager`` and
                ``fetcher`` when omitted.
            fetcher: Variable fetcher for the default aggregator.
        """
        self.manager = manager
        self.aggregator = aggregator or DeviceAggregator(manager, fetcher=fetcher)

    async def poll_all(self, endpoints: Iterable[ServerEndpoint]) -> PollResult:
        """
        Poll every endpoint and return the merged snapshots.

        A server that fails contributes no entries; it never affects the
        others. Entries are grouped by server in the order of ``endpoints``.
        """
        endpoints = list(endpoints)
        if not endpoints:
            logger.info("No NUT servers configured, nothing to poll")
            return PollResult()

        started = time.monotonic()
        results = await asyncio.gather(
            *(self._poll_server(endpoint) for endpoint in endpoints)
        )

        entries: List[ServerSnapshot] = []
        for endpoint, snapshots in zip(endpoints, results):
            entries.extend(
                ServerSnapshot(server_id=endpoint.id, server=endpoint.key, device=snapshot)
                for snapshot in snapshots
            )

        logger.info(
            "Polled %d NUT server(s): %d device(s) in %.0fms",
            len(endpoints), len(entries), (time.monotonic() - started) * 1000,
        )
        return PollResult(entries=entries)

    async def _poll_server(self, endpoint: ServerEndpoint) -> List[DeviceSnapshot]:
        try:
            return await self.aggregator.aggregate_server(endpoint)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                "Unexpected error polling NUT server %s", endpoint.key,
                extra={"nut_server": endpoint.key, "reason": type(e).__name__, "error": str(e)},
            )
            return []
