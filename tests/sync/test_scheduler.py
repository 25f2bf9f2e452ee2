from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from fleetsync.core.config import SyncSettings
from fleetsync.sync.rate_limiter import RateLimiter
from fleetsync.sync.scheduler import RefreshScheduler, group_users_by_tenant


def _user(user_id: str, tenant_id: str | None) -> SimpleNamespace:
    return SimpleNamespace(id=user_id, tenant_id=tenant_id)


class FakeLimiter:
    def __init__(self, budget: int = 100) -> None:
        self.budget = budget
        self.checks: list[tuple[str, str, int, float]] = []
        self.queued: list[dict] = []

    def is_allowed(self, scope, operation, max_operations, window):
        self.checks.append((scope, operation, max_operations, window))
        if self.budget <= 0:
            return False
        self.budget -= 1
        return True

    def queue_operation(self, scope, operation, fn, **kwargs):
        self.queued.append({"scope": scope, "operation": operation, "fn": fn, **kwargs})
        future = asyncio.get_running_loop().create_future()
        future.set_result(None)
        return future


class FakeRepository:
    def __init__(self, users) -> None:
        self.users = users
        self.limits: list[int] = []

    def list_active_users(self, limit=100):
        self.limits.append(limit)
        return list(self.users)


class FakeOrchestrator:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def update_asset_locations(self, user_id, trigger="scheduled_location_update"):
        self.calls.append(("location", user_id))
        return trigger

    async def update_maintenance_alerts(self, user_id):
        self.calls.append(("maintenance", user_id))
        return 0


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


def test_users_are_grouped_by_tenant_in_order():
    users = [_user("u1", "t1"), _user("u2", None), _user("u3", "t1"), _user("u4", "t2")]

    groups = group_users_by_tenant(users)

    assert list(groups) == ["t1", "default", "t2"]
    assert [user.id for user in groups["t1"]] == ["u1", "u3"]
    assert [user.id for user in groups["default"]] == ["u2"]


@pytest.mark.asyncio
async def test_location_updates_are_queued_per_tenant_with_low_priority():
    users = [_user("u1", "t1"), _user("u2", "t2"), _user("u3", "t1")]
    limiter = FakeLimiter()
    repository = FakeRepository(users)
    orchestrator = FakeOrchestrator()
    sleep = RecordingSleep()
    scheduler = RefreshScheduler(orchestrator, repository, limiter, SyncSettings(), sleep=sleep)

    queued = await scheduler.run_location_updates()

    assert queued == 3
    assert repository.limits == [100]
    assert [(item["scope"], item["priority"]) for item in limiter.queued] == [("t1", 1), ("t1", 1), ("t2", 1)]
    assert all(item["max_operations"] == 1 and item["window"] == 6.0 for item in limiter.queued)
    assert limiter.checks[0] == ("t1", "location_update", 10, 60.0)
    assert sleep.calls == [1.0, 1.0, 1.0]

    await limiter.queued[0]["fn"]()
    assert orchestrator.calls == [("location", "u1")]


@pytest.mark.asyncio
async def test_maintenance_runs_at_higher_priority():
    limiter = FakeLimiter()
    orchestrator = FakeOrchestrator()
    scheduler = RefreshScheduler(
        orchestrator, FakeRepository([_user("u1", "t1")]), limiter, SyncSettings(), sleep=RecordingSleep()
    )

    assert await scheduler.run_maintenance() == 1
    assert limiter.queued[0]["operation"] == "maintenance"
    assert limiter.queued[0]["priority"] == 2

    await limiter.queued[0]["fn"]()
    assert orchestrator.calls == [("maintenance", "u1")]


@pytest.mark.asyncio
async def test_users_over_tenant_budget_are_skipped():
    limiter = FakeLimiter(budget=1)
    scheduler = RefreshScheduler(
        FakeOrchestrator(),
        FakeRepository([_user("u1", "t1"), _user("u2", "t1")]),
        limiter,
        SyncSettings(),
        sleep=RecordingSleep(),
    )

    assert await scheduler.run_location_updates() == 1
    assert [item["fn"].args for item in limiter.queued] == [("u1",)]


@pytest.mark.asyncio
async def test_queued_jobs_run_one_at_a_time_through_the_real_limiter():
    class Clock:
        now = 0.0

        def __call__(self) -> float:
            return self.now

        async def sleep(self, seconds: float) -> None:
            self.now += seconds
            await asyncio.sleep(0)

    clock = Clock()
    settings = SyncSettings()
    limiter = RateLimiter(clock=clock, sleep=clock.sleep, poll_interval=1.0, operation_delay=2.0, max_wait=30.0)
    ran: list[tuple[str, float]] = []

    async def job(user_id: str) -> None:
        ran.append((user_id, clock.now))

    scheduler = RefreshScheduler(FakeOrchestrator(), FakeRepository([]), limiter, settings, sleep=RecordingSleep())
    queued = await scheduler.process_tenant(
        "t1", [_user("u1", "t1"), _user("u2", "t1")], "location_update", 1, job
    )
    for _ in range(200):
        if len(ran) == 2:
            break
        await asyncio.sleep(0)

    assert queued == 2
    assert [user_id for user_id, _ in ran] == ["u1", "u2"]
    assert ran[1][1] - ran[0][1] >= settings.queue_window


@pytest.mark.asyncio
async def test_periodic_loop_survives_failing_job_and_stops_cleanly():
    ticks: list[str] = []

    async def tick(seconds: float) -> None:
        await asyncio.sleep(0)

    scheduler = RefreshScheduler(
        FakeOrchestrator(), FakeRepository([]), FakeLimiter(), SyncSettings(), sleep=tick
    )

    async def flaky() -> int:
        ticks.append("run")
        raise RuntimeError("boom")

    scheduler.run_location_updates = flaky
    scheduler.start()
    for _ in range(10):
        await asyncio.sleep(0)

    assert scheduler.running
    assert len(ticks) >= 2

    await scheduler.stop()
    assert not scheduler.running
