"""Periodic in-process worker running the retry sweep and retention purge.

The sweep itself is stateless (every due record is claimed in storage),
so any number of processes may run a sweeper against the same Qdrant.

Usage::

    sweeper = RetrySweeper(
        interval_seconds=30.0,
        tasks=[
            SweepTask(name="retry_sweep", fn=service.sweep_task),
            SweepTask(name="retention_purge", fn=service.purge_task),
        ],
    )
    await sweeper.start()
    ...
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from deskhook.logging import get_logger
from deskhook.models import utcnow

logger = get_logger(__name__)

# Receives the current UTC time, returns an optional summary to log
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class SweepTask:
    """A named periodic task executed by :class:`RetrySweeper`."""

    name: str
    fn: TaskFn


@dataclass
class RetrySweeper:
    """Runs its tasks every ``interval_seconds`` until stopped.

    A failing task is logged and the others still run; the loop itself
    only ends on cancellation.
    """

    interval_seconds: float = 30.0
    tasks: Sequence[SweepTask] = field(default_factory=list)
    clock: Callable[[], datetime] = utcnow
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run_once(self) -> dict[str, str | None]:
        """Run every task once and return their summaries by name."""
        now = self.clock()
        summaries: dict[str, str | None] = {}
        for task in self.tasks:
            try:
                summary = await task.fn(now)
            except Exception:
                logger.exception("Sweep task failed", task=task.name)
                summaries[task.name] = None
                continue
            summaries[task.name] = summary
            if summary:
                logger.info("Sweep task completed", task=task.name, summary=summary)
        return summaries

    async def _loop(self) -> None:
        logger.info(
            "Retry sweeper started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
        except asyncio.CancelledError:
            logger.info("Retry sweeper stopped")
            raise
