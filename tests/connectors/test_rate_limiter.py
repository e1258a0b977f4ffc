"""Tests for the token-bucket rate limiter.

Verifies:
- Construction validation and initial full bucket
- Never exceeding capacity nor going negative
- Blocking until refill, background refill task
- Cancellation and deadlines, including after stop()
"""

from __future__ import annotations

import asyncio

import pytest

from defi_worker.connectors.rate_limiter import TokenBucketRateLimiter


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        TokenBucketRateLimiter(capacity=0, refill_interval=60.0)
    with pytest.raises(ValueError):
        TokenBucketRateLimiter(capacity=-3, refill_interval=60.0)


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        TokenBucketRateLimiter(capacity=5, refill_interval=0)


def test_starts_full():
    limiter = TokenBucketRateLimiter(capacity=50, refill_interval=60.0)
    assert limiter.capacity == 50
    assert limiter.available == 50


@pytest.mark.asyncio
async def test_burst_up_to_capacity_without_waiting():
    limiter = TokenBucketRateLimiter(capacity=3, refill_interval=3600.0)
    try:
        for _ in range(3):
            await asyncio.wait_for(limiter.acquire(), timeout=0.5)
        assert limiter.available == 0
    finally:
        limiter.stop()


@pytest.mark.asyncio
async def test_refill_never_exceeds_capacity():
    limiter = TokenBucketRateLimiter(capacity=2, refill_interval=3600.0)
    await limiter.acquire()
    for _ in range(10):
        await limiter._refill_once()
    assert limiter.available == 2
    limiter.stop()


@pytest.mark.asyncio
async def test_waiter_wakes_on_refill():
    limiter = TokenBucketRateLimiter(capacity=1, refill_interval=3600.0)
    await limiter.acquire()

    waiter = asyncio.create_task(limiter.acquire())
    await _settle()
    assert not waiter.done()

    await limiter._refill_once()
    await asyncio.wait_for(waiter, timeout=1.0)
    assert limiter.available == 0
    limiter.stop()


@pytest.mark.asyncio
async def test_background_refill_task_adds_tokens():
    # capacity 2 over 0.1s -> one token every 50ms
    limiter = TokenBucketRateLimiter(capacity=2, refill_interval=0.1)
    try:
        await limiter.acquire()
        await limiter.acquire()
        await asyncio.wait_for(limiter.acquire(), timeout=2.0)
        assert 0 <= limiter.available <= limiter.capacity
    finally:
        limiter.stop()


@pytest.mark.asyncio
async def test_cancelled_waiter_raises_and_keeps_count():
    limiter = TokenBucketRateLimiter(capacity=1, refill_interval=3600.0)
    await limiter.acquire()

    waiter = asyncio.create_task(limiter.acquire())
    await _settle()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert limiter.available == 0
    await limiter._refill_once()
    assert limiter.available == 1
    limiter.stop()


@pytest.mark.asyncio
async def test_already_cancelled_caller_does_not_take_a_token():
    limiter = TokenBucketRateLimiter(capacity=2, refill_interval=3600.0)

    async def caller() -> None:
        asyncio.current_task().cancel()
        await limiter.acquire()

    task = asyncio.create_task(caller())
    with pytest.raises(asyncio.CancelledError):
        await task
    assert limiter.available == 2
    limiter.stop()


@pytest.mark.asyncio
async def test_deadline_expires_while_empty():
    limiter = TokenBucketRateLimiter(capacity=1, refill_interval=3600.0)
    await limiter.acquire()
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(limiter.acquire(), timeout=0.05)
    assert limiter.available == 0
    limiter.stop()


@pytest.mark.asyncio
async def test_acquire_after_stop_uses_remaining_then_honours_deadline():
    limiter = TokenBucketRateLimiter(capacity=2, refill_interval=0.01)
    limiter.stop()
    assert limiter.stopped

    await asyncio.wait_for(limiter.acquire(), timeout=0.5)
    await asyncio.wait_for(limiter.acquire(), timeout=0.5)
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(limiter.acquire(), timeout=0.1)
    assert limiter.available == 0


@pytest.mark.asyncio
async def test_concurrent_callers_never_overdraw():
    limiter = TokenBucketRateLimiter(capacity=3, refill_interval=3600.0)
    tasks = [asyncio.create_task(limiter.acquire()) for _ in range(5)]
    await _settle()

    assert sum(t.done() for t in tasks) == 3
    assert limiter.available == 0

    for t in tasks:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    assert limiter.available == 0
    limiter.stop()
