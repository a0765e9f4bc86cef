"""Tests for the work queue, periodic resync and result merging."""

import asyncio
import random

import pytest

from vitess_operator.controller.queue import ShutDownError, WorkQueue
from vitess_operator.controller.resync import Resync
from vitess_operator.results import Result, ResultBuilder


class TestWorkQueue:
    """Tests for WorkQueue."""

    @pytest.mark.asyncio
    async def test_deduplicates(self):
        queue = WorkQueue()
        queue.add("a")
        queue.add("a")
        queue.add("b")

        assert len(queue) == 2
        assert await queue.get() == "a"
        assert await queue.get() == "b"

    @pytest.mark.asyncio
    async def test_key_added_while_processing_waits_for_done(self):
        """A key is never handed to two workers at once."""
        queue = WorkQueue()
        queue.add("a")
        key = await queue.get()

        queue.add("a")
        assert len(queue) == 0

        queue.done(key)
        assert len(queue) == 1
        assert await queue.get() == "a"

    @pytest.mark.asyncio
    async def test_done_without_readd_does_not_requeue(self):
        queue = WorkQueue()
        queue.add("a")
        queue.done(await queue.get())
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_get_waits_for_add(self):
        queue = WorkQueue()
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not getter.done()

        queue.add("a")

        assert await asyncio.wait_for(getter, timeout=1.0) == "a"

    @pytest.mark.asyncio
    async def test_add_after(self):
        queue = WorkQueue()
        queue.add_after("a", 0.01)
        assert len(queue) == 0

        assert await asyncio.wait_for(queue.get(), timeout=1.0) == "a"

    @pytest.mark.asyncio
    async def test_earlier_schedule_wins(self):
        queue = WorkQueue()
        queue.add_after("a", 60.0)
        queue.add_after("a", 0.01)
        queue.add_after("a", 30.0)

        assert await asyncio.wait_for(queue.get(), timeout=1.0) == "a"

    @pytest.mark.asyncio
    async def test_rate_limited_backoff_grows(self):
        queue = WorkQueue(base_backoff=0.001, max_backoff=0.004)
        for _ in range(5):
            queue.add_rate_limited("a")
        assert queue.num_requeues("a") == 5

        queue.forget("a")
        assert queue.num_requeues("a") == 0

    @pytest.mark.asyncio
    async def test_shut_down_wakes_waiters(self):
        queue = WorkQueue()
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)

        queue.shut_down()

        with pytest.raises(ShutDownError):
            await asyncio.wait_for(getter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_adds_after_shut_down_are_ignored(self):
        queue = WorkQueue()
        queue.shut_down()
        queue.add("a")
        queue.add_after("b", 0.01)
        assert len(queue) == 0


class TestResync:
    """Tests for Resync."""

    def test_delay_is_jittered_within_bounds(self):
        resync = Resync(WorkQueue(), period=40.0, rng=random.Random(7))
        delays = [resync.next_delay() for _ in range(100)]
        assert all(30.0 <= d <= 50.0 for d in delays)
        assert len(set(delays)) > 1

    @pytest.mark.asyncio
    async def test_enqueue_schedules_key(self):
        queue = WorkQueue()
        resync = Resync(queue, period=0.01, jitter=0.0)

        resync.enqueue("a")

        assert await asyncio.wait_for(queue.get(), timeout=1.0) == "a"

    @pytest.mark.asyncio
    async def test_disabled(self):
        queue = WorkQueue()
        Resync(queue, period=0).enqueue("a")
        await asyncio.sleep(0.01)
        assert len(queue) == 0


class TestResultBuilder:
    """Tests for ResultBuilder merging."""

    def test_first_error_wins(self):
        first = RuntimeError("first")
        builder = ResultBuilder()
        builder.error(first)
        builder.error(RuntimeError("second"))
        assert builder.result().error is first

    def test_soonest_requeue_wins(self):
        builder = ResultBuilder()
        builder.requeue_after(30.0)
        builder.requeue_after(5.0)
        builder.requeue_after(10.0)
        assert builder.result().requeue_after == 5.0

    def test_merge(self):
        err = ValueError("bad")
        builder = ResultBuilder()
        builder.merge(Result(requeue_after=10.0))
        builder.merge(Result(requeue=True, error=err))
        builder.merge(Result(requeue_after=3.0, error=RuntimeError("later")))

        result = builder.result()

        assert result == Result(requeue=True, requeue_after=3.0, error=err)

    def test_result_is_a_snapshot(self):
        builder = ResultBuilder()
        snapshot = builder.result()
        builder.requeue()
        assert snapshot.requeue is False
