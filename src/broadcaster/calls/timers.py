"""
Delayed call actions (hangups after speak, goodbye, exhausted gathers).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from broadcaster.shared.logging import get_logger

logger = get_logger(__name__)


class DelayedActionScheduler:
    """Runs coroutines after a delay as tracked asyncio tasks."""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._sleep = sleep
        self._tasks: set[asyncio.Task[None]] = set()

    def schedule(
        self,
        delay_seconds: float,
        action: Callable[[], Awaitable[None]],
        *,
        name: str,
    ) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(max(0.0, delay_seconds), action, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        delay_seconds: float,
        action: Callable[[], Awaitable[None]],
        name: str,
    ) -> None:
        await self._sleep(delay_seconds)
        try:
            await action()
        except Exception:
            logger.exception("Delayed action failed", extra={"action": name})

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled action to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every pending action."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
