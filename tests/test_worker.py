"""Tests for the worker entry point wiring and CLI."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from defi_worker import worker as worker_module
from defi_worker.connectors.coingecko import CoinGeckoConnector
from defi_worker.connectors.defillama import DefiLlamaConnector
from defi_worker.core.config import Settings
from defi_worker.jobs.alert_evaluator import AlertEvaluatorJob
from defi_worker.jobs.price_refresh import PriceRefreshJob
from defi_worker.jobs.scheduler import JobScheduler
from defi_worker.notifications.dispatcher import NotificationDispatcher
from defi_worker.worker import Worker, build_worker, parse_args, run_worker


def test_parse_args_defaults():
    args = parse_args([])
    assert args.log_level is None
    assert args.once is False


def test_parse_args_flags():
    args = parse_args(["--once", "--log-level", "DEBUG"])
    assert args.once is True
    assert args.log_level == "DEBUG"


@pytest.mark.asyncio
async def test_build_worker_wires_components():
    settings = Settings(
        _env_file=None,
        coingecko_api_key="cg",
        coingecko_rate_limit_per_minute=30,
        defillama_api_key_header="x-llama",
        price_batch_size=20,
        alert_cooldown_minutes=15,
    )
    worker = build_worker(settings)
    try:
        assert worker.scheduler.job_names == ["price_refresh", "alert_evaluation"]
        assert worker.coingecko.limiter.capacity == 30
        assert worker.coingecko.api_key == "cg"
        assert worker.defillama.API_KEY_HEADER == "x-llama"
        assert worker.coingecko.limiter is not worker.defillama.limiter

        price_job = worker.scheduler._jobs["price_refresh"].job
        alert_job = worker.scheduler._jobs["alert_evaluation"].job
        assert isinstance(price_job, PriceRefreshJob)
        assert price_job.batch_size == 20
        assert isinstance(alert_job, AlertEvaluatorJob)
        assert alert_job.cooldown.total_seconds() == 15 * 60
    finally:
        await worker.engine.dispose()


class _Job:
    def __init__(self, name: str, error: Exception | None = None):
        self.name = name
        self.error = error
        self.runs = 0

    async def run(self) -> None:
        self.runs += 1
        if self.error is not None:
            raise self.error


def _fake_worker(jobs: list[_Job]) -> Worker:
    scheduler = JobScheduler(shutdown_grace_seconds=1.0)
    for job in jobs:
        scheduler.register(job, 3600)
    return Worker(
        engine=AsyncMock(),
        coingecko=CoinGeckoConnector(),
        defillama=DefiLlamaConnector(),
        dispatcher=NotificationDispatcher(),
        scheduler=scheduler,
    )


@pytest.mark.asyncio
async def test_run_worker_until_stop_event(monkeypatch):
    job = _Job("price_refresh")
    fake = _fake_worker([job])
    monkeypatch.setattr(worker_module, "build_worker", lambda settings: fake)

    stop = asyncio.Event()
    asyncio.get_running_loop().call_later(0.1, stop.set)
    code = await asyncio.wait_for(
        run_worker(Settings(_env_file=None), stop_event=stop), timeout=5.0
    )

    assert code == 0
    assert job.runs == 1
    fake.engine.dispose.assert_awaited_once()
    assert fake.coingecko.limiter.stopped


@pytest.mark.asyncio
async def test_run_worker_once_reports_failures(monkeypatch):
    ok, bad = _Job("price_refresh"), _Job("alert_evaluation", error=RuntimeError("db down"))
    monkeypatch.setattr(worker_module, "build_worker", lambda settings: _fake_worker([ok, bad]))

    code = await run_worker(Settings(_env_file=None), once=True)

    assert code == 1
    assert (ok.runs, bad.runs) == (1, 1)
