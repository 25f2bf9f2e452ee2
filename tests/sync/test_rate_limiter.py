from __future__ import annotations

import asyncio

import pytest

from fleetsync.core.exceptions import LimiterClearedError
from fleetsync.sync.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock that only moves when the limiter sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


async def settle(rounds: int = 100) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _limiter(clock: FakeClock, **kwargs) -> RateLimiter:
    kwargs.setdefault("operation_delay", 2.0)
    return RateLimiter(clock=clock, sleep=clock.sleep, poll_interval=1.0, **kwargs)


def test_burst_admits_exactly_max_operations():
    clock = FakeClock()
    limiter = _limiter(clock)

    results = [limiter.is_allowed("tenant-1", "location_update", 3, 60.0) for _ in range(5)]

    assert results == [True, True, True, False, False]

    clock.now = 60.0
    assert limiter.is_allowed("tenant-1", "location_update", 3, 60.0) is True


def test_keys_are_tracked_independently():
    clock = FakeClock()
    limiter = _limiter(clock)

    assert limiter.is_allowed("tenant-1", "location_update", 1, 60.0)
    assert not limiter.is_allowed("tenant-1", "location_update", 1, 60.0)
    assert limiter.is_allowed("tenant-1", "maintenance", 1, 60.0)
    assert limiter.is_allowed("tenant-2", "location_update", 1, 60.0)


def test_narrow_window_does_not_discard_wide_window_history():
    clock = FakeClock()
    limiter = _limiter(clock)

    assert limiter.is_allowed("tenant-1", "location_update", 2, 60.0)
    clock.now = 10.0
    # The short window only sees nothing recent and admits.
    assert limiter.is_allowed("tenant-1", "location_update", 1, 6.0)
    clock.now = 20.0
    # Both earlier admissions still count toward the 60 second budget.
    assert not limiter.is_allowed("tenant-1", "location_update", 2, 60.0)


@pytest.mark.asyncio
async def test_wait_for_allowance_polls_until_window_frees():
    clock = FakeClock()
    limiter = _limiter(clock)
    assert limiter.is_allowed("tenant-1", "op", 1, 6.0)

    allowed = await limiter.wait_for_allowance("tenant-1", "op", 1, 6.0, max_wait=30.0)

    assert allowed is True
    assert clock.now == 6.0
    assert set(clock.sleeps) == {1.0}


@pytest.mark.asyncio
async def test_wait_for_allowance_times_out():
    clock = FakeClock()
    limiter = _limiter(clock)
    assert limiter.is_allowed("tenant-1", "op", 1, 60.0)

    allowed = await limiter.wait_for_allowance("tenant-1", "op", 1, 60.0, max_wait=3.0)

    assert allowed is False
    assert clock.now == 3.0


@pytest.mark.asyncio
async def test_queue_drains_by_priority_then_enqueue_order():
    clock = FakeClock()
    limiter = _limiter(clock)
    order: list[str] = []

    futures = [
        limiter.queue_operation("tenant-1", "op", lambda: order.append("first-low"), priority=1),
        limiter.queue_operation("tenant-1", "op", lambda: order.append("high"), priority=2),
        limiter.queue_operation("tenant-1", "op", lambda: order.append("second-low"), priority=1),
    ]
    await asyncio.gather(*futures)

    assert order == ["high", "first-low", "second-low"]


@pytest.mark.asyncio
async def test_queued_coroutine_result_is_delivered():
    clock = FakeClock()
    limiter = _limiter(clock)

    async def job() -> str:
        return "done"

    result = await limiter.queue_operation("tenant-1", "op", job)

    assert result == "done"


@pytest.mark.asyncio
async def test_failing_operation_does_not_stop_the_drain():
    clock = FakeClock()
    limiter = _limiter(clock)

    def boom() -> None:
        raise ValueError("boom")

    failing = limiter.queue_operation("tenant-1", "op", boom)
    succeeding = limiter.queue_operation("tenant-1", "op", lambda: 42)

    with pytest.raises(ValueError):
        await failing
    assert await succeeding == 42


@pytest.mark.asyncio
async def test_one_worker_per_key():
    clock = FakeClock()
    limiter = _limiter(clock)

    first = limiter.queue_operation("tenant-1", "op", lambda: 1)
    second = limiter.queue_operation("tenant-1", "op", lambda: 2)

    assert limiter.is_draining("tenant-1", "op")
    assert limiter.get_stats()["processing_queues"] == 1

    assert await asyncio.gather(first, second) == [1, 2]
    await settle()
    assert not limiter.is_draining("tenant-1", "op")


@pytest.mark.asyncio
async def test_denied_item_is_parked_and_resumed_by_next_enqueue():
    clock = FakeClock()
    limiter = _limiter(clock)
    ran: list[str] = []
    assert limiter.is_allowed("tenant-1", "op", 1, 60.0)

    parked = limiter.queue_operation(
        "tenant-1", "op", lambda: ran.append("parked"), max_operations=1, window=60.0, max_wait=3.0
    )
    await settle()

    assert not parked.done()
    assert not limiter.is_draining("tenant-1", "op")
    assert limiter.pending("tenant-1", "op") == 1

    clock.now += 60.0
    later = limiter.queue_operation(
        "tenant-1", "op", lambda: ran.append("later"), max_operations=1, window=60.0, max_wait=120.0
    )
    await asyncio.gather(parked, later)

    assert ran == ["parked", "later"]


@pytest.mark.asyncio
async def test_clear_scope_fails_pending_operations():
    clock = FakeClock()
    limiter = _limiter(clock)
    assert limiter.is_allowed("tenant-1", "op", 1, 60.0)

    pending = limiter.queue_operation(
        "tenant-1", "op", lambda: None, max_operations=1, window=60.0, max_wait=30.0
    )
    other = limiter.queue_operation("tenant-2", "op", lambda: "kept")
    await settle(5)

    limiter.clear_scope("tenant-1")

    with pytest.raises(LimiterClearedError):
        await pending
    assert await other == "kept"
    assert "tenant-1" not in limiter.get_stats()["limits"]


def test_worker_closed_after_its_loop_is_gone_releases_key():
    limiter = RateLimiter(poll_interval=60.0)
    loop = asyncio.new_event_loop()

    async def start_waiting_worker() -> asyncio.Task:
        assert limiter.is_allowed("tenant-1", "op", 1, 600.0)
        limiter.queue_operation(
            "tenant-1", "op", lambda: None, max_operations=1, window=600.0, max_wait=600.0
        )
        await asyncio.sleep(0)
        return limiter._workers[("tenant-1", "op")]

    worker = loop.run_until_complete(start_waiting_worker())
    loop.close()

    worker.get_coro().close()

    assert not limiter.is_draining("tenant-1", "op")


@pytest.mark.asyncio
async def test_get_stats_reports_counts_per_scope():
    clock = FakeClock()
    limiter = _limiter(clock)
    limiter.is_allowed("tenant-1", "location_update", 10, 60.0)
    limiter.is_allowed("tenant-1", "location_update", 10, 60.0)
    limiter.is_allowed("tenant-2", "maintenance", 10, 60.0)

    stats = limiter.get_stats()

    assert stats["active_limits"] == 2
    assert stats["limits"] == {
        "tenant-1": {"location_update": 2},
        "tenant-2": {"maintenance": 1},
    }
    assert stats["active_queues"] == 0
