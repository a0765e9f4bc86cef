"""
Rate-limited, de-duplicating work queue.

Keys (ObjectKeys) are queued for reconciliation with these guarantees:
- a key is queued at most once, however many times it's added
- a key is handed to at most one worker at a time; adding it while it's
  being processed queues it again for after done() is called
- add_after schedules an add, keeping the soonest of several schedules
- failures are retried with per-key exponential backoff until forget()

This mirrors the work queue discipline controllers are usually built on,
using asyncio primitives in place of threads.
"""

import asyncio
from collections import deque
from typing import Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)

BASE_BACKOFF = 0.005
MAX_BACKOFF = 1000.0


class ShutDownError(Exception):
    """Raised by WorkQueue.get() once the queue has been shut down."""


class WorkQueue(Generic[K]):
    """
    Work queue of keys awaiting reconciliation.

    Example:
        queue = WorkQueue()
        queue.add(key)
        key = await queue.get()
        try:
            ...
        finally:
            queue.done(key)
    """

    def __init__(self, base_backoff: float = BASE_BACKOFF, max_backoff: float = MAX_BACKOFF) -> None:
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._waiting: dict[K, tuple[float, asyncio.TimerHandle]] = {}
        self._failures: dict[K, int] = {}
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    def add(self, key: K) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            # Re-queued by done().
            return
        self._queue.append(key)
        self._wakeup.set()

    def add_after(self, key: K, delay: float) -> None:
        """Add key after delay seconds. An earlier pending schedule wins."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        pending = self._waiting.get(key)
        if pending is not None:
            if pending[0] <= when:
                return
            pending[1].cancel()
        handle = loop.call_at(when, self._fire, key)
        self._waiting[key] = (when, handle)

    def add_rate_limited(self, key: K) -> None:
        """Add key after its exponential failure backoff."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_backoff * (2**failures), self.max_backoff)
        self.add_after(key, delay)

    def forget(self, key: K) -> None:
        """Reset key's failure backoff."""
        self._failures.pop(key, None)

    def num_requeues(self, key: K) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> K:
        """
        Wait for the next key and mark it as processing.

        Raises:
            ShutDownError: If the queue was shut down.
        """
        while not self._queue and not self._shutting_down:
            self._wakeup.clear()
            await self._wakeup.wait()
        if self._shutting_down:
            raise ShutDownError("work queue is shut down")
        key = self._queue.popleft()
        self._dirty.discard(key)
        self._processing.add(key)
        if self._queue:
            # Another worker may be waiting for the rest.
            self._wakeup.set()
        return key

    def done(self, key: K) -> None:
        """Mark key as processed, re-queueing it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._wakeup.set()

    def shut_down(self) -> None:
        """Stop handing out keys and wake every waiting worker."""
        self._shutting_down = True
        for _, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._wakeup.set()

    def _fire(self, key: K) -> None:
        self._waiting.pop(key, None)
        self.add(key)
