"""Job scheduler -- recurring ticks, startup run, per-job timeout, shutdown.

Ticks come from an APScheduler ``AsyncIOScheduler`` with one interval
trigger per job. Each tick calls :meth:`JobScheduler.trigger`, which starts
the run as its own asyncio task unless the job is still running, in which
case the tick is dropped (skip-if-busy, no queueing).

Per job state: Idle -> Running -> Idle, or Idle with ``last_error`` set
when the run failed, timed out or was cancelled.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from defi_worker.core.enums import JobTrigger
from defi_worker.core.types import JobRun, JobState
from defi_worker.core.utils.logging_config import get_logger


class Job(Protocol):
    name: str

    async def run(self) -> Any:
        ...


@dataclass(frozen=True)
class ShutdownReport:
    finished: tuple[str, ...] = ()
    timed_out: tuple[str, ...] = ()


@dataclass
class _Registration:
    job: Job
    interval_seconds: float
    run_on_startup: bool
    state: JobState = field(default_factory=JobState)
    task: asyncio.Task[None] | None = None


class JobScheduler:
    """Runs registered jobs on fixed intervals with skip-if-busy semantics.

    Args:
        job_timeout_seconds: Upper bound on a single run.
        shutdown_grace_seconds: How long shutdown waits for cancelled runs.
        scheduler: APScheduler instance providing the interval ticks.
        clock: Returns the current UTC time for run records.
        log: Optional bound logger.
    """

    def __init__(
        self,
        *,
        job_timeout_seconds: float = 300.0,
        shutdown_grace_seconds: float = 30.0,
        scheduler: AsyncIOScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        self.job_timeout_seconds = job_timeout_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._jobs: dict[str, _Registration] = {}
        self._started = False
        self._shutting_down = False
        self.log = log or get_logger("scheduler")

    def register(
        self, job: Job, interval_seconds: float, *, run_on_startup: bool = True
    ) -> None:
        """Register *job* to run every *interval_seconds*.

        Raises:
            ValueError: If the interval is not positive or the name is taken.
            RuntimeError: If the scheduler has already started.
        """
        if self._started:
            raise RuntimeError("cannot register jobs after the scheduler started")
        if interval_seconds <= 0:
            raise ValueError(f"interval must be positive, got {interval_seconds}")
        if job.name in self._jobs:
            raise ValueError(f"job {job.name!r} already registered")
        self._jobs[job.name] = _Registration(job, interval_seconds, run_on_startup)

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def state(self, name: str) -> JobState:
        return self._jobs[name].state

    async def start(self) -> None:
        """Install the interval ticks and launch the startup runs."""
        if self._started:
            return
        self._started = True
        for name, reg in self._jobs.items():
            self._scheduler.add_job(
                self._on_tick,
                IntervalTrigger(seconds=reg.interval_seconds),
                args=[name],
                id=name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self._scheduler.start()
        self.log.info("scheduler_started", jobs=self.job_names)

        for name, reg in self._jobs.items():
            if reg.run_on_startup:
                self.trigger(name, JobTrigger.STARTUP)

    async def _on_tick(self, name: str) -> None:
        self.trigger(name, JobTrigger.INTERVAL)

    def trigger(self, name: str, trigger: JobTrigger = JobTrigger.MANUAL) -> bool:
        """Start a run of *name* now unless it is already running.

        Must be called from the event loop thread.

        Returns:
            True if a run was started, False if the request was dropped.

        Raises:
            KeyError: If no job with that name is registered.
        """
        reg = self._jobs[name]
        if self._shutting_down:
            self.log.info("job_trigger_ignored_shutdown", job=name, trigger=trigger.value)
            return False
        if reg.state.running:
            reg.state.skipped_ticks += 1
            self.log.warning(
                "job_tick_skipped",
                job=name,
                trigger=trigger.value,
                skipped_ticks=reg.state.skipped_ticks,
            )
            return False

        reg.state.running = True
        reg.task = asyncio.get_running_loop().create_task(
            self._run(reg, trigger), name=f"job-{name}"
        )
        return True

    async def run_once(self) -> dict[str, JobState]:
        """Run every registered job once, concurrently, and wait for all of them."""
        for name in self._jobs:
            self.trigger(name, JobTrigger.MANUAL)
        await self.wait_idle()
        return {name: reg.state for name, reg in self._jobs.items()}

    async def wait_idle(self) -> None:
        """Wait until no run is in flight."""
        tasks = [reg.task for reg in self._jobs.values() if reg.task is not None]
        if tasks:
            await asyncio.wait(tasks)

    async def _run(self, reg: _Registration, trigger: JobTrigger) -> None:
        name = reg.job.name
        run = JobRun(job_name=name, trigger=trigger, started_at=self._clock())
        started = time.monotonic()
        self.log.info("job_started", job=name, trigger=trigger.value)
        try:
            result = await asyncio.wait_for(reg.job.run(), timeout=self.job_timeout_seconds)
        except asyncio.CancelledError:
            run.error = "CancelledError: run cancelled"
            self.log.warning("job_cancelled", job=name)
            raise
        except TimeoutError:
            run.error = f"TimeoutError: run exceeded {self.job_timeout_seconds}s"
            self.log.error("job_timed_out", job=name, timeout=self.job_timeout_seconds)
        except Exception as exc:
            run.error = f"{type(exc).__name__}: {exc}"
            self.log.error("job_failed", job=name, error=run.error, exc_info=True)
        else:
            self.log.info("job_completed", job=name, result=result)
        finally:
            run.duration_seconds = time.monotonic() - started
            reg.state.running = False
            reg.state.runs += 1
            reg.state.last_run = run
            reg.state.last_error = run.error
            reg.task = None
            self.log.debug(
                "job_run_recorded",
                job=name,
                trigger=trigger.value,
                duration=round(run.duration_seconds, 3),
                error=run.error,
            )

    async def shutdown(self) -> ShutdownReport:
        """Stop ticks, cancel in-flight runs and wait up to the grace period.

        Runs that do not finish within the grace period are reported as
        timed out; this is logged, not raised.
        """
        self._shutting_down = True
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        in_flight = {
            name: reg.task
            for name, reg in self._jobs.items()
            if reg.task is not None and not reg.task.done()
        }
        for task in in_flight.values():
            task.cancel()

        done: set[asyncio.Task[None]] = set()
        if in_flight:
            done, _ = await asyncio.wait(
                in_flight.values(), timeout=self.shutdown_grace_seconds
            )

        report = ShutdownReport(
            finished=tuple(n for n, t in in_flight.items() if t in done),
            timed_out=tuple(n for n, t in in_flight.items() if t not in done),
        )
        if report.timed_out:
            self.log.error(
                "shutdown_grace_exceeded",
                timed_out=list(report.timed_out),
                grace=self.shutdown_grace_seconds,
            )
        self.log.info("scheduler_stopped", finished=list(report.finished))
        return report
