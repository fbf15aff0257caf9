"""Tests for the bounded background job runner."""

import asyncio

import pytest

from drivecast.modules.transcoding.runner import JobRunner


class TestJobRunner:

    @pytest.mark.asyncio
    async def test_submit_returns_before_job_runs(self):
        runner = JobRunner(1)
        started = asyncio.Event()

        async def job():
            started.set()

        runner.submit(job())
        assert not started.is_set()
        await runner.drain()
        assert started.is_set()

    @pytest.mark.asyncio
    async def test_concurrency_is_capped(self):
        runner = JobRunner(2)
        running = 0
        peak = 0

        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for _ in range(6):
            runner.submit(job())
        await runner.drain()

        assert peak == 2
        assert runner.active == 0
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_failing_job_does_not_affect_others(self):
        runner = JobRunner(2)
        finished = []

        async def bad():
            raise RuntimeError("boom")

        async def good():
            finished.append(True)

        runner.submit(bad())
        runner.submit(good())
        await runner.drain()

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_drain_cancels_after_timeout(self):
        runner = JobRunner(1)
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def queued():
            pass

        runner.submit(slow())
        runner.submit(queued())
        await runner.drain(timeout=0.05)

        assert cancelled.is_set()
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_queued_job_cancel_runs_callback(self):
        """A job cancelled before it gets a slot SHALL run its on_cancel callback instead."""
        runner = JobRunner(1)
        ran = []
        cancelled = []

        async def slow():
            await asyncio.sleep(10)

        async def queued():
            ran.append("queued")

        async def on_cancel():
            cancelled.append("queued")

        runner.submit(slow())
        runner.submit(queued(), on_cancel=on_cancel)
        await asyncio.sleep(0)
        await runner.drain(timeout=0.05)

        assert ran == []
        assert cancelled == ["queued"]
        assert runner.pending == 0

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            JobRunner(0)
