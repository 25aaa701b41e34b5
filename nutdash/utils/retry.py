import asyncio
import logging
import random
from functools import wraps
from typing import Any, Callable, Coroutine, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

AsyncFunc = Callable[..., Coroutine[Any, Any, T]]


def backoff_delays(
    retries: int,
    delay: float,
    backoff: float = 2.0,
    max_delay: float = 10.0,
    jitter: float = 0.0,
) -> Iterator[float]:
    """Yield the pause before each of ``retries`` retries."""
    current = delay
    for _ in range(retries):
        spread = current * jitter * random.uniform(-1.0, 1.0) if jitter else 0.0
        yield max(0.0, current + spread)
        current = min(current * backoff, max_delay)


def async_retry(
    retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: float = 10.0,
    jitter: float = 0.1,
    catch_exceptions: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> Callable[[AsyncFunc], AsyncFunc]:
    """
    Retry an async function on selected exceptions.

    The wrapped function runs at most ``retries + 1`` times; after the last
    failure the exception is re-raised unchanged. Exceptions outside
    ``catch_exceptions`` are never retried.

    Args:
        retries: Retries after the first attempt.
        delay: Pause before the first retry, in seconds.
        backoff: Delay multiplier per retry. 1.0 gives a fixed delay.
        max_delay: Upper bound for the delay.
        jitter: Random spread as a fraction of the delay. 0 disables it.
        catch_exceptions: The exception type(s) that trigger a retry.
    """
    if retries < 0:
        raise ValueError("retries must be >= 0")

    def decorator(func: AsyncFunc) -> AsyncFunc:
        name = getattr(func, "__name__", repr(func))

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            pauses = backoff_delays(retries, delay, backoff, max_delay, jitter)
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except catch_exceptions as e:
                    pause = next(pauses, None)
                    if pause is None:
                        logger.warning("'%s' gave up after %d attempt(s): %s", name, attempt, e)
                        raise
                    logger.info(
                        "'%s' attempt %d/%d failed, retrying in %.2fs: %s",
                        name, attempt, retries + 1, pause, e,
                    )
                    await asyncio.sleep(pause)
                    attempt += 1

        return wrapper

    return decorator
