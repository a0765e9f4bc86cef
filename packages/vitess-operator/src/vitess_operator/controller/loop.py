"""
ControllerLoop: level-triggered reconcile daemon.

This module runs a reconcile function over a work queue:
- Store watches enqueue the keys affected by each change notification
- Up to max_concurrent workers reconcile different keys concurrently
- The work queue guarantees one in-flight reconcile per key
- Results become requeues: after a delay, with backoff, or not at all
- Graceful shutdown on SIGINT/SIGTERM; in-flight reconciles finish first

Shutdown is coordinated through one asyncio.Event; signal handlers are
registered inside run() so they bind to the running loop.
"""

import asyncio
import functools
import logging
import signal
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from vitess_operator.controller.queue import ShutDownError, WorkQueue
from vitess_operator.errors import ProgrammingError
from vitess_operator.results import Result
from vitess_protocols import Object, ObjectKey, ObjectStoreProtocol

logger = logging.getLogger(__name__)

ReconcileFunc = Callable[[ObjectKey], Awaitable[Result]]

WATCH_RETRY_DELAY = 5.0


def own_key(obj: Object) -> list[ObjectKey]:
    """Map a changed object to itself."""
    return [obj.key]


@dataclass
class Watch:
    """
    A store watch feeding the work queue.

    Attributes:
        kind: Kind to watch.
        namespace: Namespace to watch ("" for all).
        selector: Optional label selector.
        map_keys: Maps a changed object to the keys to reconcile.
    """

    kind: str
    namespace: str = ""
    selector: dict[str, str] | None = None
    map_keys: Callable[[Object], list[ObjectKey]] = field(default=own_key)


class ControllerLoop:
    """
    Runs reconcile for queued keys until shutdown.

    Example:
        controller = ShardReplicationController(store, pool, backend, recorder)
        loop = ControllerLoop(
            name="vitessshard-replication",
            reconcile=controller.reconcile,
            store=store,
            watches=[Watch(kind="VitessShard", namespace="default")],
            max_concurrent=10,
        )
        await loop.run()  # Runs until SIGINT/SIGTERM
    """

    def __init__(
        self,
        name: str,
        reconcile: ReconcileFunc,
        store: ObjectStoreProtocol,
        watches: list[Watch],
        queue: WorkQueue | None = None,
        max_concurrent: int = 10,
        handle_signals: bool = True,
    ) -> None:
        """
        Initialize the loop.

        Args:
            name: Controller name, used in logs.
            reconcile: Coroutine function reconciling one key.
            store: Object store to watch.
            watches: Watches that enqueue keys.
            queue: Work queue; a new one is created if omitted.
            max_concurrent: Number of concurrent workers (default 10).
            handle_signals: Install SIGINT/SIGTERM handlers in run().
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.name = name
        self.reconcile = reconcile
        self.store = store
        self.watches = watches
        self.queue: WorkQueue = queue if queue is not None else WorkQueue()
        self.max_concurrent = max_concurrent
        self.handle_signals = handle_signals
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        """
        Run workers and watches until shutdown.

        Registers SIGINT and SIGTERM handlers for graceful shutdown.
        """
        if self.handle_signals:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))

        logger.info("%s starting (workers: %d)", self.name, self.max_concurrent)

        async with asyncio.TaskGroup() as tg:
            watch_tasks = [tg.create_task(self._run_watch(w)) for w in self.watches]
            for _ in range(self.max_concurrent):
                tg.create_task(self._worker())

            await self._shutdown.wait()
            self.queue.shut_down()
            for task in watch_tasks:
                task.cancel()

        logger.info("%s stopped", self.name)

    def stop(self) -> None:
        """Request shutdown; in-flight reconciles complete first."""
        self._shutdown.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self.stop()

    async def _worker(self) -> None:
        while True:
            try:
                await self.process_next()
            except ShutDownError:
                return

    async def process_next(self) -> None:
        """
        Reconcile the next queued key and requeue it as its result asks.

        Raises:
            ShutDownError: If the queue was shut down.
        """
        key = await self.queue.get()
        try:
            try:
                result = await self.reconcile(key)
            except ProgrammingError:
                logger.exception("%s: programming error reconciling %s; not retrying", self.name, key)
                self.queue.forget(key)
                return
            except Exception as err:
                logger.warning("%s: reconcile of %s failed: %s", self.name, key, err)
                self.queue.add_rate_limited(key)
                return
            self._handle_result(key, result)
        finally:
            self.queue.done(key)

    def _handle_result(self, key: ObjectKey, result: Result) -> None:
        if result.error is not None:
            if isinstance(result.error, ProgrammingError):
                logger.error("%s: programming error reconciling %s: %s", self.name, key, result.error)
                self.queue.forget(key)
                return
            logger.warning("%s: reconcile of %s failed: %s", self.name, key, result.error)
            self.queue.add_rate_limited(key)
            return
        if result.requeue_after > 0:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
            return
        if result.requeue:
            self.queue.add_rate_limited(key)
            return
        self.queue.forget(key)

    async def _run_watch(self, watch: Watch) -> None:
        """Feed the queue from one watch, re-establishing it when it ends or fails."""
        while not self._shutdown.is_set():
            try:
                async for event in self.store.watch(watch.kind, watch.namespace, watch.selector):
                    for key in watch.map_keys(event.object):
                        self.queue.add(key)
            except Exception as err:
                logger.warning("%s: watch on %s failed: %s", self.name, watch.kind, err)

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=WATCH_RETRY_DELAY)
            except asyncio.TimeoutError:
                pass
