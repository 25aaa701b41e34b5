"""
Tests for status change detection.
"""

import logging
from unittest.mock import AsyncMock

import pytest

from nutdash.nut.events import (
    EVENT_LOW_BATTERY,
    EVENT_MAINS_LOST,
    EVENT_MAINS_RETURNED,
    StatusTracker,
    detect_events,
)
from nutdash.nut.mapping import build_snapshot, error_snapshot, unknown_snapshot
from nutdash.nut.models import PollResult, ServerSnapshot


def poll(*devices, server_id=1):
    return PollResult(
        entries=[ServerSnapshot(server_id=server_id, server="nut.local:3493", device=d) for d in devices]
    )


def reading(name, status):
    return build_snapshot(name, {"ups.status": status})


@pytest.mark.parametrize(
    "previous,current,expected",
    [
        ("OL", "OB DISCHRG", [EVENT_MAINS_LOST]),
        ("OB", "OL CHRG", [EVENT_MAINS_RETURNED]),
        ("OB DISCHRG", "OB LB", [EVENT_LOW_BATTERY]),
        ("OL", "OB LB", [EVENT_MAINS_LOST, EVENT_LOW_BATTERY]),
        ("OL", "OL CHRG", []),
        ("OB LB", "OB LB", []),
        (None, "OB", []),
        ("OL", None, []),
    ],
)
def test_detect_events(previous, current, expected):
    assert detect_events(previous, current) == expected


@pytest.mark.asyncio
async def test_first_sighting_reports_nothing():
    tracker = StatusTracker()
    assert await tracker.observe(poll(reading("ups1", "OL"))) == []
    assert tracker.previous_status(1, "ups1") == "OL"


@pytest.mark.asyncio
async def test_status_change_is_reported():
    sink = AsyncMock()
    tracker = StatusTracker(sink=sink)
    await tracker.observe(poll(reading("ups1", "OL")))

    [change] = await tracker.observe(poll(reading("ups1", "OB DISCHRG")))

    assert change.ups_name == "ups1"
    assert change.server_id == 1
    assert (change.previous_status, change.status) == ("OL", "OB DISCHRG")
    assert (change.previous_label, change.label) == ("Online", "On Battery")
    assert change.events == [EVENT_MAINS_LOST]
    sink.notify.assert_awaited_once_with(change)


@pytest.mark.asyncio
async def test_unchanged_status_reports_nothing():
    tracker = StatusTracker()
    await tracker.observe(poll(reading("ups1", "OL")))
    assert await tracker.observe(poll(reading("ups1", "OL"))) == []


@pytest.mark.asyncio
async def test_unknown_and_error_readings_are_skipped():
    tracker = StatusTracker()
    await tracker.observe(poll(reading("ups1", "OL")))

    assert await tracker.observe(poll(unknown_snapshot("ups1"))) == []
    assert await tracker.observe(poll(error_snapshot("ups1", "Lost connection"))) == []
    assert tracker.previous_status(1, "ups1") == "OL"

    # A blip through Error does not hide the real change.
    [change] = await tracker.observe(poll(reading("ups1", "OB")))
    assert change.previous_status == "OL"


@pytest.mark.asyncio
async def test_devices_are_tracked_per_server():
    tracker = StatusTracker()
    await tracker.observe(poll(reading("ups1", "OL"), server_id=1))
    assert await tracker.observe(poll(reading("ups1", "OB"), server_id=2)) == []
    assert tracker.previous_status(1, "ups1") == "OL"
    assert tracker.previous_status(2, "ups1") == "OB"


@pytest.mark.asyncio
async def test_sink_failure_is_logged(caplog):
    sink = AsyncMock()
    sink.notify.side_effect = RuntimeError("webhook down")
    tracker = StatusTracker(sink=sink)
    await tracker.observe(poll(reading("ups1", "OL")))

    with caplog.at_level(logging.ERROR, logger="nutdash.nut.events"):
        changes = await tracker.observe(poll(reading("ups1", "OB")))

    assert len(changes) == 1
    assert "Failed to deliver status change" in caplog.text
