"""
Single Flight - Collapse concurrent identical calls within one process.

The first caller for a key runs the computation; callers arriving while it
is in flight await the same future and receive the same result or
exception. The key is released as soon as the computation settles, so the
next call after that recomputes.
"""

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

T = TypeVar("T")


class SingleFlight:
    """
    Per-key in-flight call deduplication.

    Usage:
        flights = SingleFlight()
        plan = await flights.do((tenant_id, cache_key), generate_plan)
    """

    def __init__(self) -> None:
        self._calls: dict[Hashable, asyncio.Future[Any]] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn for key, or join the call already running for key."""
        while True:
            existing = self._calls.get(key)
            if existing is None:
                return await self._lead(key, fn)

            try:
                # Shield so a cancelled follower does not cancel the leader's future
                return await asyncio.shield(existing)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if existing.cancelled() and task is not None and not task.cancelling():
                    # Leader was cancelled, not us: take over
                    continue
                raise

    async def _lead(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._calls[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unobserved failure is not reported by the loop
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            # Any other BaseException still releases the followers
            if not future.done():
                future.cancel()
            self._calls.pop(key, None)


# Process-wide instance used by the response cache
single_flight = SingleFlight()
