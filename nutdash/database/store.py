"""
Record store used by the HTTP layer.

Reads NUT server configuration and registered UPS devices, and appends
battery charge history. The polling core never writes through this.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

import anyio
from sqlalchemy import delete, func, select

from nutdash.config import settings
from nutdash.nut.models import ServerEndpoint

from .connection import get_db_session
from .models import BatteryHistory, NUTServer, UPSSystem, utcnow

logger = logging.getLogger(__name__)


class RecordStore:
    """
    SQLAlchemy-backed store for servers, registered devices and history.
    """

    def __init__(
        self,
        session_factory=get_db_session,
        min_interval: Optional[timedelta] = None,
        retention: Optional[timedelta] = None,
    ):
        self._session = session_factory
        self.min_interval = min_interval or timedelta(seconds=settings.HISTORY_MIN_INTERVAL_SECONDS)
        self.retention = retention or timedelta(days=settings.HISTORY_RETENTION_DAYS)

    async def list_endpoints(self) -> List[ServerEndpoint]:
        async with self._session() as session:
            result = await anyio.to_thread.run_sync(session.execute, select(NUTServer).order_by(NUTServer.id))
            servers = await anyio.to_thread.run_sync(result.scalars().all)
        return [server.to_endpoint() for server in servers]

    async def get_endpoint(self, server_id: int) -> Optional[ServerEndpoint]:
        async with self._session() as session:
            server = await anyio.to_thread.run_sync(session.get, NUTServer, server_id)
        return server.to_endpoint() if server else None

    async def list_registered_devices(self) -> List[UPSSystem]:
        async with self._session() as session:
            result = await anyio.to_thread.run_sync(session.execute, select(UPSSystem).order_by(UPSSystem.id))
            return await anyio.to_thread.run_sync(result.scalars().all)

    async def record_battery_history(
        self,
        points: Iterable[Tuple[int, Optional[float]]],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Append battery charge points and purge expired history.

        Args:
            points: ``(ups_id, charge_percent)`` pairs. Points with no charge
                are ignored.
            now: Current time, naive UTC. Defaults to the wall clock.

        Returns:
            The number of points written. A UPS whose last point is younger
            than ``min_interval`` is skipped.
        """
        now = now or utcnow()
        points = [(ups_id, charge) for ups_id, charge in points if ups_id is not None and charge is not None]

        def _record(session) -> int:
            last_by_ups = dict(
                session.execute(
                    select(BatteryHistory.ups_id, func.max(BatteryHistory.timestamp))
                    .group_by(BatteryHistory.ups_id)
                ).all()
            )
            written = 0
            for ups_id, charge in points:
                last = last_by_ups.get(ups_id)
                if last is not None and now - last < self.min_interval:
                    continue
                session.add(BatteryHistory(ups_id=ups_id, charge_percent=float(charge), timestamp=now))
                last_by_ups[ups_id] = now
                written += 1
            purged = session.execute(
                delete(BatteryHistory).where(BatteryHistory.timestamp < now - self.retention)
            ).rowcount
            if purged:
                logger.info("Cleaned up %d old battery history records", purged)
            return written

        async with self._session() as session:
            written = await anyio.to_thread.run_sync(_record, session)
        if written:
            logger.info("Recorded battery history for %d UPS systems", written)
        return written

    async def battery_history(self, ups_id: int, since: Optional[datetime] = None) -> List[BatteryHistory]:
        query = select(BatteryHistory).where(BatteryHistory.ups_id == ups_id)
        if since is not None:
            query = query.where(BatteryHistory.timestamp >= since)
        query = query.order_by(BatteryHistory.timestamp)
        async with self._session() as session:
            result = await anyio.to_thread.run_sync(session.execute, query)
            return await anyio.to_thread.run_sync(result.scalars().all)


def endpoints_from_settings() -> List[ServerEndpoint]:
    """Endpoints from NUTDASH_SERVERS, numbered from 1 when no id is given."""
    endpoints = []
    for index, entry in enumerate(settings.SERVERS, start=1):
        data = {"port": settings.NUT_PORT, "id": index, **entry}
        endpoints.append(ServerEndpoint.model_validate(data))
    return endpoints
