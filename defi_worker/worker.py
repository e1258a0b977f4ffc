"""Worker process entry point.

Wires settings, logging, the database engine, repositories, connectors,
the notification dispatcher, both jobs and the scheduler, then runs until
SIGINT/SIGTERM and shuts everything down in reverse order.

Usage::

    defi-worker                       # run until interrupted
    defi-worker --once                # run each job once and exit
    defi-worker --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine

from defi_worker.connectors.coingecko import CoinGeckoConnector
from defi_worker.connectors.defillama import DefiLlamaConnector
from defi_worker.core.config import Settings
from defi_worker.core.database import create_engine_from_settings, create_session_factory
from defi_worker.core.utils.logging_config import configure_logging, get_logger
from defi_worker.jobs.alert_evaluator import AlertEvaluatorJob, default_resolvers
from defi_worker.jobs.price_refresh import PoolFilter, PriceRefreshJob
from defi_worker.jobs.scheduler import JobScheduler
from defi_worker.notifications.dispatcher import NotificationDispatcher
from defi_worker.repositories.sql import (
    SqlAlertRepository,
    SqlTokenRepository,
    SqlYieldPoolRepository,
)

log = get_logger("worker")


@dataclass
class Worker:
    """Everything the running process owns."""

    engine: AsyncEngine
    coingecko: CoinGeckoConnector
    defillama: DefiLlamaConnector
    dispatcher: NotificationDispatcher
    scheduler: JobScheduler

    async def __aenter__(self) -> "Worker":
        await self.coingecko.__aenter__()
        await self.defillama.__aenter__()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.coingecko.aclose()
        await self.defillama.aclose()
        await self.dispatcher.aclose()
        await self.engine.dispose()


def build_worker(settings: Settings) -> Worker:
    """Construct all components from *settings* without starting anything."""
    engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(engine)

    tokens = SqlTokenRepository(session_factory)
    pools = SqlYieldPoolRepository(session_factory)
    alerts = SqlAlertRepository(session_factory)

    coingecko = CoinGeckoConnector(
        base_url=settings.coingecko_base_url,
        api_key=settings.coingecko_api_key,
        rate_limit_per_minute=settings.coingecko_rate_limit_per_minute,
        max_retries=settings.http_max_retries,
        timeout_seconds=settings.http_timeout_seconds,
    )
    defillama = DefiLlamaConnector(
        base_url=settings.defillama_base_url,
        api_key=settings.defillama_api_key,
        api_key_header=settings.defillama_api_key_header,
        rate_limit_per_minute=settings.defillama_rate_limit_per_minute,
        max_retries=settings.http_max_retries,
        timeout_seconds=settings.http_timeout_seconds,
    )
    dispatcher = NotificationDispatcher.from_settings(settings)

    price_job = PriceRefreshJob(
        price_source=coingecko,
        pool_source=defillama,
        tokens=tokens,
        pools=pools,
        batch_size=settings.price_batch_size,
        pool_filter=PoolFilter.from_settings(settings),
    )
    alert_job = AlertEvaluatorJob(
        alerts=alerts,
        notifier=dispatcher,
        resolvers=default_resolvers(tokens, pools),
        cooldown=timedelta(minutes=settings.alert_cooldown_minutes),
    )

    scheduler = JobScheduler(
        job_timeout_seconds=settings.job_timeout_seconds,
        shutdown_grace_seconds=settings.shutdown_grace_seconds,
    )
    scheduler.register(price_job, settings.price_refresh_interval_minutes * 60)
    scheduler.register(alert_job, settings.alert_evaluation_interval_minutes * 60)

    return Worker(
        engine=engine,
        coingecko=coingecko,
        defillama=defillama,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set *stop_event* on SIGINT/SIGTERM where the loop supports it."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            log.warning("signal_handler_unsupported", signal=sig.name)


async def run_worker(
    settings: Settings | None = None,
    *,
    once: bool = False,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Run the worker until *stop_event* is set (or once, with ``once=True``).

    Returns:
        Exit code: 0 on a clean shutdown, 1 if a job failed in ``once`` mode
        or a run outlived the shutdown grace period.
    """
    settings = settings or Settings()
    worker = build_worker(settings)

    async with worker:
        if once:
            states = await worker.scheduler.run_once()
            failed = {name: s.last_error for name, s in states.items() if s.last_error}
            for name, error in failed.items():
                log.error("job_failed_once", job=name, error=error)
            await worker.scheduler.shutdown()
            return 1 if failed else 0

        if stop_event is None:
            stop_event = asyncio.Event()
            install_signal_handlers(stop_event)

        await worker.scheduler.start()
        log.info("worker_running", jobs=worker.scheduler.job_names)
        await stop_event.wait()

        log.info("worker_stopping")
        report = await worker.scheduler.shutdown()

    log.info("worker_stopped", timed_out=list(report.timed_out))
    return 1 if report.timed_out else 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Parsed namespace with ``log_level`` and ``once`` attributes.
    """
    parser = argparse.ArgumentParser(
        description="Run the DeFi portfolio background worker.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  defi-worker\n"
            "  defi-worker --once\n"
            "  defi-worker --log-level DEBUG\n"
        ),
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Minimum log level (default: LOG_LEVEL setting)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run every job once and exit instead of scheduling",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the worker CLI.

    Returns:
        Exit code: 0 on success, 1 on failure.
    """
    args = parse_args(argv)
    settings = Settings()
    configure_logging(args.log_level or settings.log_level, force=True)

    try:
        return asyncio.run(run_worker(settings, once=args.once))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
