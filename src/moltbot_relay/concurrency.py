"""Concurrency primitives: single-flight deduplication and bounded polling.

SingleFlight guarantees that concurrent callers asking for the same key
share one in-flight execution. poll_until is the fixed-interval,
fixed-attempt wait used wherever the sandbox offers no readiness
notification: it returns the last observed value on exhaustion instead
of raising.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class SingleFlight:
    """Deduplicates concurrent calls to the same function with the same key.

    Only one call per key is in flight at a time. Callers arriving while
    it runs wait for its outcome (result or exception) instead of starting
    their own. A waiter being cancelled does not cancel the shared call.

    Example:
        sf = SingleFlight()

        async def ensure_started() -> Process:
            return await sf.do("gateway", start_and_wait)
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Future[Any]] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    def in_flight(self, key: str) -> bool:
        """Whether a call for ``key`` is currently running."""
        return key in self._in_flight

    async def do(
        self,
        key: str,
        func: Callable[[], Awaitable[T]],
    ) -> T:
        """Execute function, deduplicating concurrent calls.

        Args:
            key: Unique key for this operation
            func: Async function to execute

        Returns:
            Result from func (may be from another caller)
        """
        async with self._lock:
            future = self._in_flight.get(key)
            if future is None:
                future = asyncio.get_running_loop().create_future()
                self._in_flight[key] = future

                task = asyncio.create_task(self._execute(key, func, future))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

        return await asyncio.shield(future)

    async def _execute(
        self,
        key: str,
        func: Callable[[], Awaitable[T]],
        future: asyncio.Future[T],
    ) -> None:
        try:
            result = await func()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            async with self._lock:
                if self._in_flight.get(key) is future:
                    del self._in_flight[key]


@dataclass
class PollResult(Generic[T]):
    """Outcome of a bounded poll."""

    value: T
    attempts: int
    satisfied: bool


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    done: Callable[[T], bool],
    *,
    initial: T,
    interval_seconds: float,
    max_attempts: int,
) -> PollResult[T]:
    """Re-read a value at a fixed interval until ``done`` holds.

    The initial value is checked first; no fetch happens if it already
    satisfies ``done``. On exhaustion the last observed value is returned
    with ``satisfied=False``; callers decide what that means.

    Args:
        fetch: Async function returning a fresh value
        done: Predicate ending the wait
        initial: Value observed before polling starts
        interval_seconds: Sleep between fetches
        max_attempts: Maximum number of fetches

    Returns:
        PollResult with the last value and the number of fetches made
    """
    value = initial
    attempts = 0
    while not done(value) and attempts < max_attempts:
        await asyncio.sleep(interval_seconds)
        value = await fetch()
        attempts += 1
    return PollResult(value=value, attempts=attempts, satisfied=done(value))
