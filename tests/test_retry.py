from unittest.mock import AsyncMock, patch

import pytest

from nutdash.utils.retry import async_retry, backoff_delays


@pytest.mark.asyncio
async def test_returns_first_success():
    func = AsyncMock(side_effect=[ValueError("a"), "ok"])
    func.__name__ = "func"
    wrapped = async_retry(retries=2, delay=0, jitter=0)(func)

    assert await wrapped() == "ok"
    assert func.await_count == 2


@pytest.mark.asyncio
async def test_reraises_after_all_attempts():
    func = AsyncMock(side_effect=ValueError("nope"))
    func.__name__ = "func"
    wrapped = async_retry(retries=2, delay=0, jitter=0)(func)

    with pytest.raises(ValueError, match="nope"):
        await wrapped()
    assert func.await_count == 3


@pytest.mark.asyncio
async def test_only_retries_selected_exceptions():
    func = AsyncMock(side_effect=KeyError("other"))
    func.__name__ = "func"
    wrapped = async_retry(retries=5, delay=0, catch_exceptions=ValueError)(func)

    with pytest.raises(KeyError):
        await wrapped()
    assert func.await_count == 1


@pytest.mark.asyncio
async def test_fixed_delay_without_backoff():
    func = AsyncMock(side_effect=[ValueError(), ValueError(), "ok"])
    func.__name__ = "func"
    wrapped = async_retry(retries=2, delay=0.5, backoff=1.0, jitter=0)(func)

    with patch("nutdash.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await wrapped() == "ok"
    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 0.5]


@pytest.mark.asyncio
async def test_backoff_is_capped():
    func = AsyncMock(side_effect=[ValueError()] * 4 + ["ok"])
    func.__name__ = "func"
    wrapped = async_retry(retries=4, delay=1.0, backoff=3.0, max_delay=5.0, jitter=0)(func)

    with patch("nutdash.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        await wrapped()
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 3.0, 5.0, 5.0]


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        async_retry(retries=-1)


def test_backoff_delays_with_jitter_stay_in_range():
    delays = list(backoff_delays(3, 1.0, backoff=2.0, max_delay=10.0, jitter=0.5))
    assert len(delays) == 3
    for delay, base in zip(delays, [1.0, 2.0, 4.0]):
        assert base * 0.5 <= delay <= base * 1.5
