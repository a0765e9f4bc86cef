"""Tests for ControllerLoop."""

import asyncio

import pytest

from vitess_fakes import FakeObjectStore, make_pod, make_shard
from vitess_operator.controller import loop as loop_module
from vitess_operator.controller.loop import ControllerLoop, Watch
from vitess_operator.errors import ProgrammingError
from vitess_operator.results import Result
from vitess_protocols import ObjectKey

KEY = ObjectKey("default", "example-commerce-x-x")


def _loop(reconcile, store=None, watches=None, **kwargs) -> ControllerLoop:
    return ControllerLoop(
        name="test",
        reconcile=reconcile,
        store=store or FakeObjectStore(),
        watches=watches or [],
        handle_signals=False,
        **kwargs,
    )


class TestProcessNext:
    """Tests for how reconcile results turn into requeues."""

    @pytest.mark.asyncio
    async def test_success_forgets_backoff(self):
        async def reconcile(key):
            return Result()

        loop = _loop(reconcile)
        loop.queue.add_rate_limited(KEY)
        loop.queue.add(KEY)

        await loop.process_next()

        assert loop.queue.num_requeues(KEY) == 0

    @pytest.mark.asyncio
    async def test_error_result_is_retried_with_backoff(self):
        async def reconcile(key):
            return Result(error=RuntimeError("transient"))

        loop = _loop(reconcile)
        loop.queue.add(KEY)

        await loop.process_next()

        assert loop.queue.num_requeues(KEY) == 1

    @pytest.mark.asyncio
    async def test_raised_exception_is_retried_with_backoff(self):
        async def reconcile(key):
            raise ConnectionResetError("apiserver went away")

        loop = _loop(reconcile)
        loop.queue.add(KEY)

        await loop.process_next()

        assert loop.queue.num_requeues(KEY) == 1

    @pytest.mark.asyncio
    async def test_programming_error_is_not_retried(self):
        async def reconcile(key):
            raise ProgrammingError("impossible state")

        loop = _loop(reconcile)
        loop.queue.add(KEY)

        await loop.process_next()
        await asyncio.sleep(0.02)

        assert loop.queue.num_requeues(KEY) == 0
        assert len(loop.queue) == 0

    @pytest.mark.asyncio
    async def test_requeue_after(self):
        async def reconcile(key):
            return Result(requeue_after=0.01)

        loop = _loop(reconcile)
        loop.queue.add(KEY)

        await loop.process_next()

        assert await asyncio.wait_for(loop.queue.get(), timeout=1.0) == KEY

    def test_requires_a_worker(self):
        async def reconcile(key):
            return Result()

        with pytest.raises(ValueError):
            _loop(reconcile, max_concurrent=0)


class TestRun:
    """Tests for ControllerLoop.run()."""

    @pytest.mark.asyncio
    async def test_watch_feeds_reconcile(self):
        store = FakeObjectStore()
        shard = store.add(make_shard())
        seen = []

        async def reconcile(key):
            seen.append(key)
            loop.stop()
            return Result()

        loop = _loop(reconcile, store=store, watches=[Watch(kind="VitessShard")])

        await asyncio.wait_for(loop.run(), timeout=2.0)

        assert seen == [shard.key]

    @pytest.mark.asyncio
    async def test_map_keys(self):
        store = FakeObjectStore()
        store.add(make_pod("zone1-0000000101"))
        seen = []

        async def reconcile(key):
            seen.append(key)
            loop.stop()
            return Result()

        watch = Watch(kind="Pod", map_keys=lambda obj: [KEY])
        loop = _loop(reconcile, store=store, watches=[watch])

        await asyncio.wait_for(loop.run(), timeout=2.0)

        assert seen == [KEY]

    @pytest.mark.asyncio
    async def test_failed_watch_is_restarted(self, monkeypatch):
        monkeypatch.setattr(loop_module, "WATCH_RETRY_DELAY", 0.01)
        store = FakeObjectStore()
        store.add(make_shard())
        store.fail_lists = RuntimeError("apiserver unavailable")
        seen = []

        async def reconcile(key):
            seen.append(key)
            loop.stop()
            return Result()

        loop = _loop(reconcile, store=store, watches=[Watch(kind="VitessShard")])

        async def recover():
            await asyncio.sleep(0.05)
            store.fail_lists = None

        await asyncio.wait_for(asyncio.gather(loop.run(), recover()), timeout=2.0)

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_in_flight_reconcile_finishes_on_stop(self):
        store = FakeObjectStore()
        store.add(make_shard())
        started = asyncio.Event()
        finished = []

        async def reconcile(key):
            started.set()
            await asyncio.sleep(0.02)
            finished.append(key)
            return Result()

        loop = _loop(reconcile, store=store, watches=[Watch(kind="VitessShard")])

        async def stop_when_started():
            await started.wait()
            loop.stop()

        await asyncio.wait_for(asyncio.gather(loop.run(), stop_when_started()), timeout=2.0)

        assert len(finished) == 1
