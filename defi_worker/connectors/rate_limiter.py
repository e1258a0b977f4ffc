"""Token-bucket rate limiter shared by all calls of one connector.

The bucket starts full and a background task adds one token every
``refill_interval / capacity`` seconds, never above ``capacity``. Waiters are
parked on an ``asyncio.Condition`` and woken by the refill task.

Usage::

    limiter = TokenBucketRateLimiter(capacity=50, refill_interval=60.0)
    await limiter.acquire()
    ...
    limiter.stop()

Deadlines are imposed by the caller with ``asyncio.timeout`` or
``asyncio.wait_for``; cancelling the waiting task raises
``asyncio.CancelledError`` out of ``acquire()``.
"""

from __future__ import annotations

import asyncio

import structlog

from defi_worker.core.utils.logging_config import get_logger


class TokenBucketRateLimiter:
    """Async token bucket.

    Args:
        capacity: Maximum number of tokens (burst size). Must be positive.
        refill_interval: Seconds needed to refill the whole bucket.
        log: Optional bound logger.

    Raises:
        ValueError: If ``capacity`` or ``refill_interval`` is not positive.
    """

    def __init__(
        self,
        capacity: int,
        refill_interval: float,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if refill_interval <= 0:
            raise ValueError(f"refill_interval must be positive, got {refill_interval}")
        self._capacity = capacity
        self._available = capacity
        self._tick = refill_interval / capacity
        self._cond = asyncio.Condition()
        self._refill_task: asyncio.Task[None] | None = None
        self._stopped = False
        self.log = log or get_logger("rate_limiter")

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        return self._available

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def acquire(self) -> None:
        """Take one token, waiting for a refill if the bucket is empty.

        Raises:
            asyncio.CancelledError: If the calling task is cancelled while
                waiting, or was already cancelled on entry.
        """
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            raise asyncio.CancelledError()

        self._ensure_refill_task()
        async with self._cond:
            while self._available <= 0:
                await self._cond.wait()
            self._available -= 1

    def stop(self) -> None:
        """Stop refilling. Remaining tokens can still be acquired."""
        self._stopped = True
        if self._refill_task is not None:
            self._refill_task.cancel()
            self._refill_task = None

    # ---------------------------------------------------------------------------
    # Refill
    # ---------------------------------------------------------------------------
    def _ensure_refill_task(self) -> None:
        if self._stopped or self._refill_task is not None:
            return
        self._refill_task = asyncio.get_running_loop().create_task(
            self._refill_loop(), name="rate-limiter-refill"
        )

    async def _refill_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick)
            await self._refill_once()

    async def _refill_once(self) -> None:
        async with self._cond:
            if self._available < self._capacity:
                self._available += 1
                self._cond.notify()
