import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from utils.errors import NetworkTimeout
from utils.logger import get_logger

_logger = get_logger(__name__)

T = TypeVar("T")


async def with_timeout(aw: Awaitable[T], timeout: float, what: str = "request") -> T:
    """
    Race `aw` against `timeout` seconds.

    On expiry the pending call is abandoned and NetworkTimeout is raised; the
    remote side may still complete, so callers must treat this as "unknown".
    """
    try:
        return await asyncio.wait_for(aw, timeout)
    except asyncio.TimeoutError as exc:
        raise NetworkTimeout(f"{what} timed out after {timeout:g}s") from exc


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    retry_on: Tuple[Type[BaseException], ...],
    retries: int = 2,
    delay: float = 0.4,
    timeout: float = 60.0,
    what: str = "request",
    give_up_on: Tuple[Type[BaseException], ...] = (),
) -> T:
    """
    Call `fn` with a timeout, retrying up to `retries` more times on the
    given errors. Waits `delay * attempt` between attempts.

    Errors in `give_up_on` are raised at once, even when they are also
    covered by `retry_on`. Only for idempotent reads; the last attempt
    raises whatever it fails with.
    """
    retry_on = tuple(retry_on) + (NetworkTimeout,)
    give_up_on = tuple(give_up_on)
    for attempt in range(retries):
        try:
            return await with_timeout(fn(), timeout, what)
        except give_up_on:
            raise
        except retry_on as exc:
            _logger.warning(f"{what} failed ({exc}), retry {attempt + 1}/{retries}")
            await asyncio.sleep(delay * (attempt + 1))
    return await with_timeout(fn(), timeout, what)
