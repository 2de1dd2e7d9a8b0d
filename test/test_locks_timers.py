"""
Tests for the per-call lock table and the delayed action scheduler.
"""

import asyncio
import logging

import pytest

from broadcaster.calls.locks import KeyedLock
from broadcaster.calls.timers import DelayedActionScheduler
from conftest import RecordingSleep


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("call-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_contend(self) -> None:
        locks = KeyedLock()

        async with locks.hold("call-1"):
            async with locks.hold("call-2"):
                assert len(locks) == 2

    @pytest.mark.asyncio
    async def test_idle_keys_are_dropped(self) -> None:
        locks = KeyedLock()

        async with locks.hold("call-1"):
            assert "call-1" in locks

        assert "call-1" not in locks
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_discard_keeps_held_key(self) -> None:
        locks = KeyedLock()

        async with locks.hold("call-1"):
            locks.discard("call-1")
            assert "call-1" in locks


class TestDelayedActionScheduler:
    @pytest.mark.asyncio
    async def test_runs_after_delay(self) -> None:
        sleep = RecordingSleep()
        scheduler = DelayedActionScheduler(sleep=sleep)
        ran: list[str] = []

        async def action() -> None:
            ran.append("hangup")

        scheduler.schedule(4.5, action, name="hangup:call-1")
        await scheduler.drain()

        assert ran == ["hangup"]
        assert sleep.delays == [4.5]
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_negative_delay_is_clamped(self) -> None:
        sleep = RecordingSleep()
        scheduler = DelayedActionScheduler(sleep=sleep)

        async def action() -> None:
            return None

        scheduler.schedule(-3, action, name="noop")
        await scheduler.drain()

        assert sleep.delays == [0.0]

    @pytest.mark.asyncio
    async def test_failing_action_is_logged(self, caplog) -> None:
        scheduler = DelayedActionScheduler(sleep=RecordingSleep())

        async def action() -> None:
            raise RuntimeError("provider down")

        with caplog.at_level(logging.ERROR, logger="broadcaster.calls.timers"):
            scheduler.schedule(0, action, name="hangup:call-1")
            await scheduler.drain()

        assert "Delayed action failed" in caplog.text

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending(self) -> None:
        scheduler = DelayedActionScheduler()
        ran: list[str] = []

        async def action() -> None:
            ran.append("late")

        task = scheduler.schedule(60, action, name="late")
        await scheduler.shutdown()

        assert task.cancelled()
        assert ran == []
        assert scheduler.pending == 0
