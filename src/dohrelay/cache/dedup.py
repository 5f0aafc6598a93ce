"""In-flight request coalescing for identical cache misses."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger("dohrelay.dedup")


class DedupCoordinator(Generic[T]):
    """Run at most one producer per key at a time and share its outcome.

    Brief:
      The first caller for a key starts ``producer()`` as a task and registers
      it; later callers for the same key await that task instead of starting
      their own. The task deregisters itself in its own ``finally`` block, so
      the key is free again before any waiter sees the result. Every waiter
      observes the same value or the same exception.

    Notes:
      - Bound to a single event loop. Lookup and registration happen with no
        ``await`` between them, which makes them atomic for other tasks.
      - Waiters await through asyncio.shield(); cancelling one waiter (for
        example a client disconnect) never cancels the shared fetch.
    """

    def __init__(self) -> None:
        self._in_flight: Dict[str, "asyncio.Task[T]"] = {}

    def __len__(self) -> int:
        return len(self._in_flight)

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def _run(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        try:
            return await producer()
        finally:
            self._in_flight.pop(key, None)

    @staticmethod
    def _consume_exception(task: "asyncio.Task[T]") -> None:
        # Mark the exception as retrieved when every waiter has gone away.
        if not task.cancelled():
            task.exception()

    async def dedupe(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        """
        Brief: Return the result of the single in-flight producer for ``key``.

        Inputs:
        - key: cache key identifying the fetch
        - producer: zero-argument coroutine function performing the fetch

        Outputs:
        - The producer's result; its exception is re-raised to every waiter.

        Example:
            >>> async def main():
            ...     d = DedupCoordinator()
            ...     async def fetch():
            ...         return b"answer"
            ...     return await d.dedupe("k", fetch)
            >>> asyncio.run(main())
            b'answer'
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, producer))
            task.add_done_callback(self._consume_exception)
            self._in_flight[key] = task
        else:
            logger.debug("Joining in-flight fetch for %s", key)
        return await asyncio.shield(task)
