"""Tests for the structured fan-out helpers."""

import asyncio

import pytest

from vitess_operator.concurrency import all_succeed, any_true, fan_out


class TestFanOut:
    @pytest.mark.asyncio
    async def test_collects_values_and_errors(self):
        async def call(value):
            if value < 0:
                raise ValueError(f"negative: {value}")
            return value * 2

        outcomes = await fan_out({"a": 1, "b": -1, "c": 3}, call, timeout=1.0)

        assert outcomes["a"] == 2
        assert isinstance(outcomes["b"], ValueError)
        assert outcomes["c"] == 6

    @pytest.mark.asyncio
    async def test_stragglers_time_out(self):
        async def call(delay):
            await asyncio.sleep(delay)
            return delay

        outcomes = await fan_out({"fast": 0, "slow": 10}, call, timeout=0.05)

        assert outcomes["fast"] == 0
        assert isinstance(outcomes["slow"], TimeoutError)

    @pytest.mark.asyncio
    async def test_empty(self):
        async def call(value):
            return value

        assert await fan_out({}, call, timeout=1.0) == {}


class TestAllSucceed:
    @pytest.mark.asyncio
    async def test_all_pass(self):
        done = []

        async def ok(name):
            done.append(name)

        await all_succeed([ok("a"), ok("b")], timeout=1.0)

        assert sorted(done) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_first_failure_is_raised_and_cancels_the_rest(self):
        cancelled = asyncio.Event()

        async def fail():
            raise ValueError("tablet ahead of primary")

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ValueError, match="tablet ahead of primary"):
            await all_succeed([slow(), fail()], timeout=1.0)
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(TimeoutError):
            await all_succeed([asyncio.sleep(10)], timeout=0.01)


class TestAnyTrue:
    @pytest.mark.asyncio
    async def test_true_short_circuits(self):
        async def value(result, delay=0.0):
            await asyncio.sleep(delay)
            return result

        assert await any_true([value(False), value(True), value(False, delay=10)], timeout=1.0)

    @pytest.mark.asyncio
    async def test_errors_count_as_false(self):
        async def fail():
            raise ConnectionResetError("tablet unreachable")

        async def no():
            return False

        assert await any_true([fail(), no()], timeout=1.0) is False

    @pytest.mark.asyncio
    async def test_timeout_is_false(self):
        async def slow():
            await asyncio.sleep(10)
            return True

        assert await any_true([slow()], timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await any_true([], timeout=1.0) is False
