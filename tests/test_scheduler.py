"""
Tests for the APScheduler-backed delayed task scheduler.
"""

import asyncio
import logging

import pytest

from pigeon.utils.scheduler import DelayedTaskScheduler


@pytest.fixture
def scheduler():
    return DelayedTaskScheduler()


class TestDelayedTaskScheduler:

    @pytest.mark.asyncio
    async def test_runs_after_delay(self, scheduler):
        calls = []

        async def job(value):
            calls.append(value)

        job_handle = scheduler.schedule(0.05, job, "warning", name="security-warning-9912345678")
        assert calls == []
        assert scheduler.running
        assert scheduler.pending_count == 1
        assert job_handle.name == "security-warning-9912345678"

        await asyncio.sleep(0.3)

        assert calls == ["warning"]
        assert scheduler.pending_count == 0
        await scheduler.shutdown(timeout=0)

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, scheduler, caplog):
        async def job():
            raise RuntimeError("gateway down")

        with caplog.at_level(logging.ERROR, logger="pigeon.utils.scheduler"):
            scheduler.schedule(0, job, name="warning")
            await asyncio.sleep(0.2)

        assert scheduler.pending_count == 0
        assert any("gateway down" in record.getMessage() for record in caplog.records)
        await scheduler.shutdown(timeout=0)

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_due_jobs(self, scheduler):
        calls = []

        async def job():
            calls.append("sent")

        scheduler.schedule(0.05, job)
        await scheduler.shutdown(timeout=1.0)

        assert calls == ["sent"]
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_shutdown_drops_slow_jobs(self, scheduler):
        calls = []

        async def job():
            calls.append("sent")

        scheduler.schedule(60, job)
        await scheduler.shutdown(timeout=0.01)

        assert calls == []
        assert scheduler.pending_count == 0
        assert not scheduler.running

    def test_schedule_without_loop(self):
        scheduler = DelayedTaskScheduler()

        async def job():
            pass

        assert scheduler.schedule(0, job) is None
        assert not scheduler.running
