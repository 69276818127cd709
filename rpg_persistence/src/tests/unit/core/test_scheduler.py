"""
Unit tests for recurring background jobs.
"""

import asyncio

import pytest

from rpg_persistence.src.core.scheduler import RecurringJob


class TestRecurringJob:
    @pytest.mark.asyncio
    async def test_runs_repeatedly_until_stopped(self):
        calls = []

        async def action():
            calls.append(1)

        job = RecurringJob("tick", 0.01, action)
        job.start()
        await asyncio.sleep(0.1)
        await job.stop()
        count = len(calls)
        await asyncio.sleep(0.05)

        assert count >= 2
        assert len(calls) == count
        assert not job.running

    @pytest.mark.asyncio
    async def test_restart_replaces_previous_task(self):
        """Starting twice leaves exactly one timer running."""
        calls = []

        async def action():
            calls.append(1)

        job = RecurringJob("tick", 0.05, action)
        job.start()
        first_task = job._task
        job.start()
        await asyncio.sleep(0.01)

        assert first_task.cancelled()
        assert job._task is not first_task
        assert job.running

        await asyncio.sleep(0.07)
        await job.stop()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_failing_action_keeps_timer_alive(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first run fails")

        job = RecurringJob("flaky", 0.01, flaky)
        job.start()
        await asyncio.sleep(0.1)
        await job.stop()

        assert len(calls) >= 2
        assert job.runs >= 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        job = RecurringJob("idle", 1.0, lambda: None)

        await job.stop()

        assert not job.running

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            RecurringJob("bad", 0, lambda: None)
