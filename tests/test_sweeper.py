"""Tests for the periodic retry sweeper."""

import asyncio
from datetime import datetime

from deskhook.webhooks import RetrySweeper, SweepTask
from helpers import T0, FakeClock


class RecordingTask:
    def __init__(self, summary: str | None = "done", error: Exception | None = None) -> None:
        self.summary = summary
        self.error = error
        self.calls: list[datetime] = []

    async def __call__(self, now: datetime) -> str | None:
        self.calls.append(now)
        if self.error is not None:
            raise self.error
        return self.summary


class TestRunOnce:
    async def test_runs_every_task_with_clock_time(self):
        sweep, purge = RecordingTask("processed=2"), RecordingTask(None)
        sweeper = RetrySweeper(
            tasks=[SweepTask("retry_sweep", sweep), SweepTask("retention_purge", purge)],
            clock=FakeClock(),
        )

        summaries = await sweeper.run_once()

        assert summaries == {"retry_sweep": "processed=2", "retention_purge": None}
        assert sweep.calls == [T0]
        assert purge.calls == [T0]

    async def test_failing_task_does_not_stop_others(self):
        broken, purge = RecordingTask(error=RuntimeError("boom")), RecordingTask("deleted=3")
        sweeper = RetrySweeper(
            tasks=[SweepTask("retry_sweep", broken), SweepTask("retention_purge", purge)]
        )

        summaries = await sweeper.run_once()

        assert summaries == {"retry_sweep": None, "retention_purge": "deleted=3"}
        assert len(purge.calls) == 1


class TestLifecycle:
    async def test_loop_runs_until_stopped(self):
        task = RecordingTask()
        sweeper = RetrySweeper(interval_seconds=0.01, tasks=[SweepTask("retry_sweep", task)])

        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert not sweeper.running
        assert len(task.calls) >= 2
        calls = len(task.calls)
        await asyncio.sleep(0.05)
        assert len(task.calls) == calls

    async def test_loop_survives_task_errors(self):
        task = RecordingTask(error=ValueError("bad"))
        sweeper = RetrySweeper(interval_seconds=0.01, tasks=[SweepTask("retry_sweep", task)])

        await sweeper.start()
        await asyncio.sleep(0.1)
        assert sweeper.running
        await sweeper.stop()

        assert len(task.calls) >= 2

    async def test_start_is_idempotent(self):
        sweeper = RetrySweeper(interval_seconds=10)
        await sweeper.start()
        first = sweeper._task
        await sweeper.start()

        assert sweeper._task is first
        await sweeper.stop()

    async def test_stop_without_start(self):
        sweeper = RetrySweeper()
        await sweeper.stop()
        assert not sweeper.running
