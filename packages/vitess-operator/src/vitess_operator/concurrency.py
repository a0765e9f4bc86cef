"""
Structured fan-out helpers.

Replication decisions often need the same RPC sent to every tablet in a
shard. These helpers run such calls concurrently inside a TaskGroup (or
gather) so that no call outlives the caller:

- fan_out: run every call under a shared deadline, collect all outcomes
- all_succeed: run every call, cancel the rest on the first failure
- any_true: run every predicate, cancel the rest on the first True
"""

import asyncio
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")


async def fan_out(
    items: dict[K, V],
    call: Callable[[V], Awaitable[T]],
    timeout: float,
) -> dict[K, T | BaseException]:
    """
    Call `call` for every item concurrently and wait for all of them.

    Every call shares one deadline. Calls still running at the deadline are
    cancelled and reported as TimeoutError, so stragglers are excluded
    rather than awaited.

    Args:
        items: Inputs keyed by an identifier (e.g. tablet alias).
        call: Coroutine function applied to each input.
        timeout: Shared deadline in seconds.

    Returns:
        Outcome per key: the call's return value or the exception it raised.
    """
    deadline = asyncio.get_running_loop().time() + timeout

    async def one(value: V) -> T:
        async with asyncio.timeout_at(deadline):
            return await call(value)

    outcomes = await asyncio.gather(
        *(one(value) for value in items.values()), return_exceptions=True
    )
    return dict(zip(items.keys(), outcomes))


async def all_succeed(calls: list[Coroutine[Any, Any, None]], timeout: float) -> None:
    """
    Run every call concurrently and require all of them to succeed.

    The first failure cancels the remaining calls and is re-raised.

    Raises:
        TimeoutError: If the calls did not finish within timeout.
        Exception: The first exception raised by any call.
    """
    try:
        async with asyncio.timeout(timeout):
            async with asyncio.TaskGroup() as tg:
                for call in calls:
                    tg.create_task(call)
    except* Exception as eg:
        raise eg.exceptions[0] from None


async def any_true(calls: list[Awaitable[bool]], timeout: float) -> bool:
    """
    Run every predicate concurrently and report whether any returned True.

    Returns as soon as one predicate returns True, cancelling the others.
    Predicates that raise or time out count as False.
    """
    if not calls:
        return False
    tasks = [asyncio.ensure_future(call) for call in calls]
    try:
        async with asyncio.timeout(timeout):
            for next_done in asyncio.as_completed(tasks):
                try:
                    if await next_done:
                        return True
                except Exception:
                    continue
    except TimeoutError:
        pass
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    return False
