"""
Event detection for NUT integration.

This module provides logic for detecting power-related events based on
changes in UPS status between two poll results, and for handing those
changes to a notification sink.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from .mapping import STATUS_ERROR, STATUS_UNKNOWN
from .models import PollResult

logger = logging.getLogger(__name__)

EVENT_MAINS_LOST = "MAINS_LOST"
EVENT_MAINS_RETURNED = "MAINS_RETURNED"
EVENT_LOW_BATTERY = "LOW_BATTERY"


def detect_events(previous_status: Optional[str], current_status: Optional[str]) -> List[str]:
    """
    Detects power-related events by comparing two raw NUT status strings.

    Args:
        previous_status: The previous status, e.g. ``OL CHRG``. Can be None.
        current_status: The current status.

    Returns:
        A list of event type strings that have occurred.
    """
    if previous_status is None or current_status is None:
        return []

    events: List[str] = []
    prev_statuses = set(previous_status.split())
    current_statuses = set(current_status.split())

    # OL = Online, OB = On Battery, LB = Low Battery

    # Mains power lost
    if "OL" in prev_statuses and "OB" in current_statuses:
        events.append(EVENT_MAINS_LOST)

    # Mains power returned
    if "OB" in prev_statuses and "OL" in current_statuses:
        events.append(EVENT_MAINS_RETURNED)

    # Low battery condition
    if "LB" not in prev_statuses and "LB" in current_statuses:
        events.append(EVENT_LOW_BATTERY)

    return events


@dataclass(frozen=True)
class StatusChangeEvent:
    server_id: Optional[int]
    server: str
    ups_name: str
    display_name: str
    previous_status: str
    status: str
    previous_label: str
    label: str
    events: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationSink(Protocol):
    """Receives status changes, e.g. a Discord/Slack/email dispatcher."""

    async def notify(self, event: StatusChangeEvent) -> None:
        ...


class StatusTracker:
    """
    Remembers the last status of every device and reports changes.

    The first time a device is seen nothing is reported. Readings with
    status Unknown or Error are not treated as a status and are skipped.
    """

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink
        self._previous: Dict[Tuple[Optional[int], str], Tuple[str, str]] = {}

    def previous_status(self, server_id: Optional[int], ups_name: str) -> Optional[str]:
        previous = self._previous.get((server_id, ups_name))
        return previous[0] if previous else None

    async def observe(self, result: PollResult) -> List[StatusChangeEvent]:
        changes: List[StatusChangeEvent] = []
        for entry in result.entries:
            device = entry.device
            if device.status in (STATUS_UNKNOWN, STATUS_ERROR):
                continue
            key = (entry.server_id, device.name)
            previous = self._previous.get(key)
            self._previous[key] = (device.status, device.status_label)
            if previous is None:
                logger.info("First status for UPS '%s' on %s: %s", device.name, entry.server, device.status)
                continue
            if previous[0] == device.status:
                continue

            change = StatusChangeEvent(
                server_id=entry.server_id,
                server=entry.server,
                ups_name=device.name,
                display_name=device.display_name,
                previous_status=previous[0],
                status=device.status,
                previous_label=previous[1],
                label=device.status_label,
                events=detect_events(previous[0], device.status),
            )
            logger.warning(
                "UPS '%s' on %s status changed from '%s' to '%s'",
                device.name, entry.server, previous[0], device.status,
                extra={"nut_server": entry.server, "ups_name": device.name, "events": change.events},
            )
            changes.append(change)

        if self.sink is not None:
            for change in changes:
                try:
                    await self.sink.notify(change)
                except Exception:
                    logger.exception("Failed to deliver status change for UPS '%s'", change.ups_name)
        return changes
