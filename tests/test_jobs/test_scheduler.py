"""Tests for the job scheduler.

Verifies:
- Startup run and interval ticks
- Skip-if-busy (ticks dropped, not queued)
- Per-run timeout and failure isolation (Idle-with-LastError)
- Graceful shutdown: cancellation, grace period, report
"""

from __future__ import annotations

import asyncio

import pytest

from defi_worker.core.enums import JobTrigger
from defi_worker.jobs.scheduler import JobScheduler
from tests.fakes import SlowJob

LONG_INTERVAL = 3600.0


class QuickJob:
    def __init__(self, name: str = "quick", error: Exception | None = None):
        self.name = name
        self.error = error
        self.runs = 0

    async def run(self) -> int:
        self.runs += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.runs


def _scheduler(**kwargs) -> JobScheduler:
    kwargs.setdefault("shutdown_grace_seconds", 1.0)
    return JobScheduler(**kwargs)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------
def test_register_validates():
    scheduler = _scheduler()
    scheduler.register(QuickJob("a"), 60)
    with pytest.raises(ValueError):
        scheduler.register(QuickJob("a"), 60)
    with pytest.raises(ValueError):
        scheduler.register(QuickJob("b"), 0)
    assert scheduler.job_names == ["a"]


def test_trigger_unknown_job_raises():
    with pytest.raises(KeyError):
        _scheduler().trigger("missing")


# ---------------------------------------------------------------------------
# Startup and ticks
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_startup_runs_every_job_once():
    a, b = QuickJob("a"), QuickJob("b")
    scheduler = _scheduler()
    scheduler.register(a, LONG_INTERVAL)
    scheduler.register(b, LONG_INTERVAL)

    await scheduler.start()
    await scheduler.wait_idle()

    assert (a.runs, b.runs) == (1, 1)
    state = scheduler.state("a")
    assert state.running is False
    assert state.last_error is None
    assert state.last_run.trigger == JobTrigger.STARTUP
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_run_on_startup_can_be_disabled():
    job = QuickJob()
    scheduler = _scheduler()
    scheduler.register(job, LONG_INTERVAL, run_on_startup=False)

    await scheduler.start()
    await asyncio.sleep(0.01)

    assert job.runs == 0
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_interval_ticks_run_the_job():
    job = QuickJob()
    scheduler = _scheduler()
    scheduler.register(job, 0.1, run_on_startup=False)

    await scheduler.start()
    await asyncio.sleep(0.45)
    await scheduler.shutdown()

    assert job.runs >= 2
    assert scheduler.state("quick").last_run.trigger == JobTrigger.INTERVAL


@pytest.mark.asyncio
async def test_register_after_start_is_rejected():
    scheduler = _scheduler()
    await scheduler.start()
    with pytest.raises(RuntimeError):
        scheduler.register(QuickJob(), 60)
    await scheduler.shutdown()


# ---------------------------------------------------------------------------
# Skip-if-busy
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_tick_while_running_is_dropped():
    job = SlowJob()
    scheduler = _scheduler()
    scheduler.register(job, LONG_INTERVAL)

    await scheduler.start()
    await job.started.wait()

    assert scheduler.trigger("slow", JobTrigger.INTERVAL) is False
    assert scheduler.trigger("slow", JobTrigger.INTERVAL) is False
    assert scheduler.state("slow").skipped_ticks == 2

    job.release.set()
    await scheduler.wait_idle()
    assert job.runs == 1
    assert scheduler.state("slow").running is False

    assert scheduler.trigger("slow") is True
    await scheduler.wait_idle()
    assert job.runs == 2
    await scheduler.shutdown()


# ---------------------------------------------------------------------------
# Timeout and failure isolation
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_run_exceeding_timeout_ends_with_last_error():
    job = SlowJob()
    scheduler = _scheduler(job_timeout_seconds=0.05)
    scheduler.register(job, LONG_INTERVAL)

    await scheduler.start()
    await scheduler.wait_idle()

    state = scheduler.state("slow")
    assert state.running is False
    assert state.last_error.startswith("TimeoutError")
    assert state.last_run.error == state.last_error
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_failing_job_does_not_affect_others():
    bad = QuickJob("bad", error=RuntimeError("boom"))
    good = QuickJob("good")
    scheduler = _scheduler()
    scheduler.register(bad, LONG_INTERVAL)
    scheduler.register(good, LONG_INTERVAL)

    await scheduler.start()
    await scheduler.wait_idle()

    assert scheduler.state("bad").last_error == "RuntimeError: boom"
    assert scheduler.state("good").last_error is None

    # The next run starts from scratch and a success clears the error
    bad.error = None
    assert scheduler.trigger("bad") is True
    await scheduler.wait_idle()
    assert scheduler.state("bad").last_error is None
    assert scheduler.state("bad").runs == 2
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_run_once_runs_all_jobs_manually():
    a, b = QuickJob("a"), QuickJob("b", error=ValueError("bad data"))
    scheduler = _scheduler()
    scheduler.register(a, LONG_INTERVAL)
    scheduler.register(b, LONG_INTERVAL)

    states = await scheduler.run_once()

    assert states["a"].last_run.trigger == JobTrigger.MANUAL
    assert states["a"].last_error is None
    assert states["b"].last_error == "ValueError: bad data"
    await scheduler.shutdown()


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_run():
    job = SlowJob()
    scheduler = _scheduler()
    scheduler.register(job, LONG_INTERVAL)

    await scheduler.start()
    await job.started.wait()
    report = await asyncio.wait_for(scheduler.shutdown(), timeout=2.0)

    assert report.finished == ("slow",)
    assert report.timed_out == ()
    state = scheduler.state("slow")
    assert state.running is False
    assert "Cancelled" in state.last_error


@pytest.mark.asyncio
async def test_shutdown_reports_runs_outliving_grace_period():
    job = SlowJob("stubborn", ignore_cancel=True)
    scheduler = _scheduler(shutdown_grace_seconds=0.1)
    scheduler.register(job, LONG_INTERVAL)

    await scheduler.start()
    await job.started.wait()
    report = await asyncio.wait_for(scheduler.shutdown(), timeout=2.0)

    assert report.timed_out == ("stubborn",)
    assert report.finished == ()

    job.release.set()
    await asyncio.wait_for(scheduler.wait_idle(), timeout=2.0)


@pytest.mark.asyncio
async def test_no_runs_after_shutdown():
    job = QuickJob()
    scheduler = _scheduler()
    scheduler.register(job, LONG_INTERVAL, run_on_startup=False)
    await scheduler.start()

    report = await scheduler.shutdown()

    assert report.finished == ()
    assert scheduler.trigger("quick") is False
    assert job.runs == 0
