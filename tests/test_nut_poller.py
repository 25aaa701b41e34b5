"""
Tests for MultiServerPoller.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from nutdash.nut.aggregator import DeviceAggregator
from nutdash.nut.connection import NUTConnection
from nutdash.nut.fetcher import VariableFetcher
from nutdash.nut.manager import NUTConnectionManager
from nutdash.nut.mapping import build_snapshot
from nutdash.nut.models import PollResult, ServerEndpoint
from nutdash.nut.poller import MultiServerPoller

A = ServerEndpoint(id=1, host="a.local")
B = ServerEndpoint(id=2, host="b.local", port=3494)


def make_poller(by_host):
    async def aggregate(endpoint):
        value = by_host[endpoint.host]
        if isinstance(value, Exception):
            raise value
        return [build_snapshot(name, {"ups.status": "OL"}) for name in value]

    aggregator = MagicMock(spec=DeviceAggregator)
    aggregator.aggregate_server = AsyncMock(side_effect=aggregate)
    return MultiServerPoller(MagicMock(spec=NUTConnectionManager), aggregator=aggregator)


@pytest.mark.asyncio
async def test_no_endpoints_gives_empty_result():
    poller = make_poller({})
    result = await poller.poll_all([])
    assert isinstance(result, PollResult)
    assert len(result) == 0
    poller.aggregator.aggregate_server.assert_not_awaited()


@pytest.mark.asyncio
async def test_entries_grouped_by_server_in_endpoint_order():
    poller = make_poller({"a.local": ["x", "y"], "b.local": ["z"]})
    result = await poller.poll_all([B, A])

    assert [(e.server, e.device.name) for e in result.entries] == [
        ("b.local:3494", "z"),
        ("a.local:3493", "x"),
        ("a.local:3493", "y"),
    ]
    assert [e.server_id for e in result.entries] == [2, 1, 1]
    assert [d.name for d in result.for_server("a.local:3493")] == ["x", "y"]
    assert result.find(2, "z").name == "z"
    assert result.find(1, "z") is None


@pytest.mark.asyncio
async def test_failing_server_is_isolated():
    poller = make_poller({"a.local": RuntimeError("boom"), "b.local": ["z"]})
    result = await poller.poll_all([A, B])

    assert [e.device.name for e in result.entries] == ["z"]


@pytest.mark.asyncio
async def test_unreachable_and_healthy_server(nut_server, unused_endpoint):
    manager = NUTConnectionManager(connect_timeout=2)
    poller = MultiServerPoller(manager, fetcher=VariableFetcher(attempts=3, delay=0))
    try:
        result = await poller.poll_all([unused_endpoint, nut_server.endpoint])
    finally:
        await manager.close_all()

    assert {e.server for e in result.entries} == {nut_server.endpoint.key}
    assert [e.device.name for e in result.entries] == ["ups1", "ups2"]
    assert result.find(1, "ups2").display_name == "Rack B"
    assert result.find(1, "ups2").status_label == "On Battery"


@pytest.mark.asyncio
async def test_connections_are_reused_across_polls(nut_server):
    manager = NUTConnectionManager()
    poller = MultiServerPoller(manager, fetcher=VariableFetcher(attempts=3, delay=0))
    try:
        first = await poller.poll_all([nut_server.endpoint])
        second = await poller.poll_all([nut_server.endpoint])
    finally:
        await manager.close_all()

    assert len(first) == len(second) == 2
    assert nut_server.connections == 1


@pytest.mark.asyncio
async def test_poll_after_server_hangup_returns_every_device(nut_server):
    manager = NUTConnectionManager()
    poller = MultiServerPoller(manager, fetcher=VariableFetcher(attempts=3, delay=0))
    try:
        assert len(await poller.poll_all([nut_server.endpoint])) == 2
        await nut_server.drop_clients()
        result = await poller.poll_all([nut_server.endpoint])
    finally:
        await manager.close_all()

    assert [e.device.name for e in result.entries] == ["ups1", "ups2"]
    assert all(e.device.status != "Error" for e in result.entries)
    assert nut_server.connections == 2


@pytest.mark.asyncio
async def test_overlong_reply_does_not_poison_next_poll(nut_server):
    nut_server.devices["ups1"]["ups.description"] = "x" * 5000
    manager = NUTConnectionManager(
        lambda endpoint, *, on_close: NUTConnection(endpoint, read_limit=1024, on_close=on_close)
    )
    poller = MultiServerPoller(
        manager,
        aggregator=DeviceAggregator(manager, fetcher=VariableFetcher(attempts=3, delay=0), concurrency=1),
    )
    try:
        first = await poller.poll_all([nut_server.endpoint])
        assert first.find(1, "ups1").status == "Error"
        assert nut_server.endpoint.key not in manager

        del nut_server.devices["ups1"]["ups.description"]
        second = await poller.poll_all([nut_server.endpoint])
    finally:
        await manager.close_all()

    assert [e.device.name for e in second.entries] == ["ups1", "ups2"]
    assert second.find(1, "ups1").status == "OL"
    assert second.find(1, "ups2").status == "OB DISCHRG"
