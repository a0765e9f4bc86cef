"""
Pooled connections to Vitess topology servers.

Many shards (often of many clusters) talk to the same global topology
server. ConnPool keeps at most one connection per set of ConnParams and
shares it between every caller:

- open() returns a Conn borrowing a reference; callers must close() it
- the first open() for a key starts a background connect that later
  callers share; a failed attempt is evicted so the next caller retries
- every open() served from cache also triggers a rate-limited liveness
  probe in the background; connections that fail it are retired
- gc() closes connections idle past their TTL, and retired connections
  once their last borrower closes them

Locking has two levels. A map lock serializes all bookkeeping. A
shared/exclusive gate keeps gc() from closing a connection while open() is
handing it out: open() holds it shared, and gc() takes it exclusively only
when it actually has something to close.

Example:
    pool = ConnPool(opener=backend.open)
    async with await pool.open(shard.spec.global_lockserver.conn_params()) as conn:
        info = await conn.topo.get_shard("commerce", "-80")
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from vitess_operator import metrics
from vitess_protocols import ConnParams, NoNodeError, TopoServerProtocol

logger = logging.getLogger(__name__)

IDLE_TTL = 60.0
GC_INTERVAL = 10.0
CONNECT_TIMEOUT = 1.0
LIVENESS_CHECK_PERIOD = 10.0
LIVENESS_CHECK_TIMEOUT = 5.0

Opener = Callable[[ConnParams], Awaitable[TopoServerProtocol]]


class SharedExclusiveLock:
    """
    Reader/writer lock for asyncio tasks.

    A waiting writer blocks new readers, so a steady stream of readers
    cannot starve it.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class _PooledConn:
    """One cached connection attempt and its bookkeeping."""

    params: ConnParams
    connect: "asyncio.Task[TopoServerProtocol]"
    last_opened: float
    last_checked: float
    ref_count: int = 0
    closed: bool = field(default=False)

    def failed(self) -> bool:
        """Whether the connect attempt finished unsuccessfully. Does not wait."""
        if not self.connect.done():
            return False
        return self.connect.cancelled() or self.connect.exception() is not None

    def succeeded(self) -> bool:
        """Whether the connect attempt finished successfully. Does not wait."""
        if not self.connect.done() or self.connect.cancelled():
            return False
        return self.connect.exception() is None

    @property
    def server(self) -> TopoServerProtocol:
        return self.connect.result()


class Conn:
    """
    A borrowed reference to a pooled topology connection.

    close() releases the reference; it is idempotent. Conn is also an async
    context manager that closes on exit. Never close conn.topo directly.
    """

    def __init__(self, pooled: _PooledConn) -> None:
        self._pooled = pooled
        self._released = False

    @property
    def topo(self) -> TopoServerProtocol:
        return self._pooled.server

    @property
    def params(self) -> ConnParams:
        return self._pooled.params

    def close(self) -> None:
        if self._released:
            return
        self._released = True
        self._pooled.ref_count -= 1

    async def __aenter__(self) -> "Conn":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


def _consume_result(task: asyncio.Task) -> None:
    # Failed attempts are reported through open(); mark the exception as
    # retrieved even if no caller ever waited on it.
    if not task.cancelled():
        task.exception()


class ConnPool:
    """
    Shared, reference-counted topology connections keyed by ConnParams.

    Attributes:
        idle_ttl: Seconds an unreferenced connection is kept open.
        gc_interval: Seconds between run_gc() sweeps.
        connect_timeout: Seconds open() waits for a connect attempt.
            The attempt itself keeps going in the background.
        liveness_check_period: Minimum seconds between liveness probes of
            one connection.
        liveness_check_timeout: Seconds before a probe counts as failed.
    """

    def __init__(
        self,
        opener: Opener,
        idle_ttl: float = IDLE_TTL,
        gc_interval: float = GC_INTERVAL,
        connect_timeout: float = CONNECT_TIMEOUT,
        liveness_check_period: float = LIVENESS_CHECK_PERIOD,
        liveness_check_timeout: float = LIVENESS_CHECK_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._opener = opener
        self.idle_ttl = idle_ttl
        self.gc_interval = gc_interval
        self.connect_timeout = connect_timeout
        self.liveness_check_period = liveness_check_period
        self.liveness_check_timeout = liveness_check_timeout
        self._clock = clock

        self._conns: dict[ConnParams, _PooledConn] = {}
        self._dead: list[_PooledConn] = []
        self._map_lock = asyncio.Lock()
        self._gate = SharedExclusiveLock()
        self._checks: set[asyncio.Task] = set()

    async def open(self, params: ConnParams) -> Conn:
        """
        Borrow a connection for params, connecting if needed.

        Raises:
            TimeoutError: If the connect attempt didn't finish in time.
                It continues in the background; retry later.
            Exception: Whatever the connect attempt failed with.
        """
        start = time.perf_counter()
        try:
            # Held shared so gc() can't close the connection under us.
            async with self._gate.shared():
                pooled = await self._get(params)
                return await self._borrow(pooled)
        finally:
            metrics.TOPO_OPEN_LATENCY.observe(time.perf_counter() - start)

    async def _get(self, params: ConnParams) -> _PooledConn:
        async with self._map_lock:
            pooled = self._conns.get(params)
            if pooled is not None:
                if pooled.failed():
                    del self._conns[params]
                    pooled = None
                elif pooled.succeeded():
                    metrics.TOPO_CACHE_HITS.inc()
                    task = asyncio.create_task(self._check_conn(params))
                    self._checks.add(task)
                    task.add_done_callback(self._checks.discard)

            if pooled is None:
                metrics.TOPO_CACHE_MISSES.inc()
                now = self._clock()
                connect = asyncio.create_task(self._connect(params))
                connect.add_done_callback(_consume_result)
                pooled = _PooledConn(
                    params=params, connect=connect, last_opened=now, last_checked=now
                )
                self._conns[params] = pooled
            return pooled

    async def _borrow(self, pooled: _PooledConn) -> Conn:
        pooled.ref_count += 1
        pooled.last_opened = self._clock()
        try:
            async with asyncio.timeout(self.connect_timeout):
                await asyncio.shield(pooled.connect)
        except BaseException:
            # The caller gets no Conn to close, so release the reference here.
            pooled.ref_count -= 1
            raise
        return Conn(pooled)

    async def _connect(self, params: ConnParams) -> TopoServerProtocol:
        logger.info("connecting to Vitess topology server %s", params)
        start = time.perf_counter()
        try:
            server = await self._opener(params)
        except Exception as err:
            logger.warning("failed to connect to Vitess topology server %s: %s", params, err)
            metrics.TOPO_CONNECT_ERRORS.inc()
            raise
        finally:
            metrics.TOPO_CONNECT_LATENCY.observe(time.perf_counter() - start)
        logger.info("connected to Vitess topology server %s", params)
        metrics.TOPO_CONNECT_SUCCESSES.inc()
        return server

    def _should_check(self, pooled: _PooledConn) -> bool:
        now = self._clock()
        if now - pooled.last_checked >= self.liveness_check_period:
            pooled.last_checked = now
            return True
        return False

    async def _check_conn(self, params: ConnParams) -> None:
        async with self._map_lock:
            pooled = self._conns.get(params)
        if pooled is None or not pooled.succeeded() or not self._should_check(pooled):
            return

        # Hold a reference for the duration of the probe so gc() leaves the
        # connection open without blocking new open() calls.
        pooled.ref_count += 1
        try:
            async with asyncio.timeout(self.liveness_check_timeout):
                await pooled.server.get_cell_info_names()
        except NoNodeError:
            pass
        except Exception as err:
            logger.info(
                "cached connection to Vitess topology server %s failed liveness check: %s",
                params,
                err,
            )
            metrics.TOPO_CHECK_ERRORS.inc()
            await self._retire(params, pooled)
            return
        finally:
            pooled.ref_count -= 1
        metrics.TOPO_CHECK_SUCCESSES.inc()

    async def _retire(self, params: ConnParams, pooled: _PooledConn) -> None:
        async with self._map_lock:
            if self._conns.get(params) is not pooled:
                # Already removed or replaced.
                return
            del self._conns[params]
            self._dead.append(pooled)

    def _idle(self, pooled: _PooledConn, now: float) -> bool:
        return pooled.ref_count <= 0 and now - pooled.last_opened > self.idle_ttl

    async def gc(self) -> None:
        """
        Sweep the pool once.

        Drops failed connect attempts, closes connections idle past the TTL,
        and closes retired connections whose references have drained.
        Retired connections still in use stay on the dead list.
        """
        async with self._map_lock:
            for params, pooled in list(self._conns.items()):
                if pooled.failed():
                    del self._conns[params]
            now = self._clock()
            needs_close = any(
                pooled.succeeded() and self._idle(pooled, now)
                for pooled in self._conns.values()
            ) or any(pooled.ref_count <= 0 for pooled in self._dead)

        if needs_close:
            # Exclusive: nobody can take a new reference while we close.
            async with self._gate.exclusive():
                async with self._map_lock:
                    await self._close_idle()
                    await self._close_dead()

        async with self._map_lock:
            metrics.set_conn_gauges(
                active=len(self._conns),
                active_refs=sum(p.ref_count for p in self._conns.values()),
                dead=len(self._dead),
                dead_refs=sum(p.ref_count for p in self._dead),
            )

    async def _close_idle(self) -> None:
        now = self._clock()
        for params, pooled in list(self._conns.items()):
            if pooled.failed():
                del self._conns[params]
            elif pooled.succeeded() and self._idle(pooled, now):
                logger.info(
                    "closing connection to Vitess topology server %s due to idle TTL", params
                )
                metrics.TOPO_DISCONNECTS.labels(reason="idle").inc()
                del self._conns[params]
                await self._close(pooled)

    async def _close_dead(self) -> None:
        still_used = []
        for pooled in self._dead:
            if pooled.ref_count <= 0:
                logger.info(
                    "closing connection to Vitess topology server %s "
                    "due to liveness check failure",
                    pooled.params,
                )
                metrics.TOPO_DISCONNECTS.labels(reason="dead").inc()
                await self._close(pooled)
            else:
                logger.warning(
                    "connection to Vitess topology server %s failed liveness check "
                    "but is still in use",
                    pooled.params,
                )
                still_used.append(pooled)
        self._dead = still_used

    async def _close(self, pooled: _PooledConn) -> None:
        if pooled.closed:
            return
        pooled.closed = True
        try:
            await pooled.server.close()
        except Exception as err:
            logger.warning("error closing topology connection %s: %s", pooled.params, err)

    async def run_gc(self, shutdown: asyncio.Event) -> None:
        """Sweep every gc_interval seconds until shutdown is set."""
        while not shutdown.is_set():
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self.gc_interval)
            except asyncio.TimeoutError:
                pass  # Normal sweep interval
            await self.gc()

    async def close_all(self) -> None:
        """Close every connection regardless of references. Used at shutdown."""
        for task in list(self._checks):
            task.cancel()
        await asyncio.gather(*self._checks, return_exceptions=True)

        async with self._gate.exclusive():
            async with self._map_lock:
                pooled_conns = list(self._conns.values()) + self._dead
                self._conns.clear()
                self._dead = []
                for pooled in pooled_conns:
                    if not pooled.connect.done():
                        pooled.connect.cancel()
                    elif pooled.succeeded():
                        await self._close(pooled)

    def __len__(self) -> int:
        return len(self._conns)
