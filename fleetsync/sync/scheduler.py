"""Fixed-interval background jobs: hourly location refresh, daily maintenance."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Optional

from fleetsync.core.config import SyncSettings
from fleetsync.logging import run_context
from fleetsync.storage.repository import EntityRepository

from .orchestrator import SyncOrchestrator
from .rate_limiter import RateLimiter

logger = logging.getLogger("fleetsync.scheduler")

DEFAULT_TENANT = "default"


def group_users_by_tenant(users: Iterable[Any]) -> dict[str, list[Any]]:
    """Bucket users by tenant id, keeping the incoming order within each tenant."""
    groups: dict[str, list[Any]] = {}
    for user in users:
        tenant_id = getattr(user, "tenant_id", None) or DEFAULT_TENANT
        groups.setdefault(tenant_id, []).append(user)
    return groups


class RefreshScheduler:
    """Runs the periodic jobs.

    Work for each tenant is pre-checked against a coarse tenant budget and then
    queued on the rate limiter, so a large tenant is throttled on its own key
    instead of delaying everyone else.

    Usage:
        scheduler = RefreshScheduler(orchestrator, repository, limiter)
        scheduler.start()
        # ... later ...
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        repository: EntityRepository,
        limiter: RateLimiter,
        settings: SyncSettings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._orchestrator = orchestrator
        self._repository = repository
        self._limiter = limiter
        self._settings = settings or SyncSettings()
        self._sleep = sleep
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._run_every(self._settings.location_interval, self.run_location_updates, "location"),
                name="scheduler:location",
            ),
            asyncio.create_task(
                self._run_every(self._settings.maintenance_interval, self.run_maintenance, "maintenance"),
                name="scheduler:maintenance",
            ),
        ]
        logger.info(
            "Scheduler started",
            extra={
                "event": "scheduler_start",
                "location_interval": self._settings.location_interval,
                "maintenance_interval": self._settings.maintenance_interval,
            },
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped", extra={"event": "scheduler_stop"})

    async def _run_every(self, interval: float, job: Callable[[], Awaitable[Any]], name: str) -> None:
        while True:
            await self._sleep(interval)
            try:
                await job()
            except Exception:
                logger.exception("Scheduled job failed", extra={"event": "scheduler_error", "job": name})

    async def run_location_updates(self) -> int:
        """Queue a location refresh for every active user. Returns the number queued."""
        return await self._fan_out(
            "location_update",
            self._settings.location_priority,
            lambda user_id: self._orchestrator.update_asset_locations(user_id, "scheduled_location_update"),
        )

    async def run_maintenance(self) -> int:
        return await self._fan_out(
            "maintenance",
            self._settings.maintenance_priority,
            self._orchestrator.update_maintenance_alerts,
        )

    async def _fan_out(
        self,
        operation: str,
        priority: int,
        job: Callable[[str], Awaitable[Any]],
    ) -> int:
        queued = 0
        with run_context(f"scheduler-{operation}"):
            users = self._repository.list_active_users(self._settings.active_user_limit)
            for tenant_id, tenant_users in group_users_by_tenant(users).items():
                try:
                    queued += await self.process_tenant(tenant_id, tenant_users, operation, priority, job)
                except Exception:
                    logger.exception(
                        "Tenant processing failed",
                        extra={"event": "tenant_error", "tenant_id": tenant_id, "operation": operation},
                    )
        return queued

    async def process_tenant(
        self,
        tenant_id: str,
        users: list[Any],
        operation: str,
        priority: int,
        job: Callable[[str], Awaitable[Any]],
    ) -> int:
        settings = self._settings
        queued = 0
        for user in users:
            try:
                if not self._limiter.is_allowed(
                    tenant_id, operation, settings.tenant_max_operations, settings.tenant_window
                ):
                    logger.debug(
                        "Tenant over budget, skipping user",
                        extra={"tenant_id": tenant_id, "user_id": user.id, "operation": operation},
                    )
                    continue

                future = self._limiter.queue_operation(
                    tenant_id,
                    operation,
                    functools.partial(job, user.id),
                    max_operations=settings.queue_max_operations,
                    window=settings.queue_window,
                    max_wait=settings.max_wait,
                    priority=priority,
                )
                future.add_done_callback(
                    functools.partial(self._log_outcome, tenant_id, operation, user.id)
                )
                queued += 1
                await self._sleep(settings.between_users)
            except Exception:
                logger.exception(
                    "Failed to queue user",
                    extra={"tenant_id": tenant_id, "user_id": user.id, "operation": operation},
                )
        return queued

    @staticmethod
    def _log_outcome(tenant_id: str, operation: str, user_id: str, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        exc: Optional[BaseException] = future.exception()
        if exc is not None:
            logger.error(
                "Queued operation failed",
                extra={"tenant_id": tenant_id, "user_id": user_id, "operation": operation},
                exc_info=exc,
            )


__all__ = ["RefreshScheduler", "group_users_by_tenant"]
