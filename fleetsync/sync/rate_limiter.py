"""Sliding-window admission control with per-key priority queues.

Keys are ``(scope, operation)`` pairs, typically ``(tenant_id, "location_update")``.
Each key owns a list of admission timestamps and a queue of pending operations;
exactly one drain task runs per key at a time.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from fleetsync.core.exceptions import LimiterClearedError

logger = logging.getLogger("fleetsync.rate_limiter")

Key = tuple[str, str]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class _QueueItem:
    priority: int
    enqueued_at: float
    seq: int
    fn: Callable[[], Any]
    future: asyncio.Future
    max_operations: int
    window: float
    max_wait: float

    @property
    def sort_key(self) -> tuple[int, float, int]:
        return (-self.priority, self.enqueued_at, self.seq)


@dataclass
class _KeyState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    admissions: list[float] = field(default_factory=list)
    horizon: float = 0.0
    queue: list[_QueueItem] = field(default_factory=list)


class RateLimiter:
    """Per-key sliding-window limiter and serialized priority queue."""

    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        poll_interval: float = 1.0,
        operation_delay: float = 2.0,
        max_wait: float = 30.0,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._poll_interval = poll_interval
        self._operation_delay = operation_delay
        self._max_wait = max_wait
        self._registry_lock = threading.Lock()
        self._states: dict[Key, _KeyState] = {}
        self._active: set[Key] = set()
        self._workers: dict[Key, asyncio.Task] = {}
        self._seq = itertools.count()

    def _state(self, key: Key) -> _KeyState:
        with self._registry_lock:
            state = self._states.get(key)
            if state is None:
                state = _KeyState()
                self._states[key] = state
            return state

    def is_allowed(
        self,
        scope: str,
        operation: str,
        max_operations: int = 10,
        window: float = 60.0,
    ) -> bool:
        """Admit one operation if fewer than ``max_operations`` ran within ``window`` seconds."""
        state = self._state((scope, operation))
        with state.lock:
            now = self._clock()
            # A key may be checked with several windows (tenant pre-check and queue
            # spacing); keep history for the widest one.
            state.horizon = max(state.horizon, window)
            state.admissions[:] = [ts for ts in state.admissions if now - ts < state.horizon]
            recent = sum(1 for ts in state.admissions if now - ts < window)
            if recent < max_operations:
                state.admissions.append(now)
                return True
            return False

    async def wait_for_allowance(
        self,
        scope: str,
        operation: str,
        max_operations: int = 10,
        window: float = 60.0,
        max_wait: float | None = None,
    ) -> bool:
        """Poll :meth:`is_allowed` until admitted or ``max_wait`` seconds elapse."""
        budget = self._max_wait if max_wait is None else max_wait
        started = self._clock()
        while self._clock() - started < budget:
            if self.is_allowed(scope, operation, max_operations, window):
                return True
            await self._sleep(self._poll_interval)

        logger.warning(
            "Rate limit wait exceeded",
            extra={"event": "rate_limit_timeout", "scope": scope, "operation": operation},
        )
        return False

    def queue_operation(
        self,
        scope: str,
        operation: str,
        fn: Callable[[], Any],
        *,
        max_operations: int = 10,
        window: float = 60.0,
        max_wait: float | None = None,
        priority: int = 0,
    ) -> asyncio.Future:
        """Enqueue ``fn`` and return a future settled when it eventually runs.

        Must be called from a running event loop. Higher ``priority`` runs first;
        equal priorities run in enqueue order.
        """
        key = (scope, operation)
        loop = asyncio.get_running_loop()
        item = _QueueItem(
            priority=priority,
            enqueued_at=self._clock(),
            seq=next(self._seq),
            fn=fn,
            future=loop.create_future(),
            max_operations=max_operations,
            window=window,
            max_wait=self._max_wait if max_wait is None else max_wait,
        )

        state = self._state(key)
        with state.lock:
            state.queue.append(item)
            state.queue.sort(key=lambda queued: queued.sort_key)

        self._ensure_worker(key)
        return item.future

    def _ensure_worker(self, key: Key) -> None:
        with self._registry_lock:
            if key in self._active:
                return
            self._active.add(key)
            self._workers[key] = asyncio.create_task(
                self._drain(key), name=f"drain:{key[0]}:{key[1]}"
            )

    def _pop(self, state: _KeyState) -> _QueueItem | None:
        with state.lock:
            while state.queue:
                item = state.queue.pop(0)
                if not item.future.done():
                    return item
            return None

    async def _drain(self, key: Key) -> None:
        scope, operation = key
        state = self._state(key)
        task = asyncio.current_task()
        try:
            while True:
                item = self._pop(state)
                if item is None:
                    break

                try:
                    allowed = await self.wait_for_allowance(
                        scope, operation, item.max_operations, item.window, item.max_wait
                    )
                    if allowed:
                        await self._run_item(item)
                except asyncio.CancelledError:
                    # A popped item is no longer on the queue, so clearing cannot reach it.
                    if not item.future.done():
                        item.future.set_exception(LimiterClearedError("Queue drain cancelled"))
                    raise

                if not allowed:
                    # Parked until the next queue_operation call on this key restarts the drain.
                    with state.lock:
                        state.queue.append(item)
                    logger.info(
                        "Queue drain paused",
                        extra={
                            "event": "queue_paused",
                            "scope": scope,
                            "operation": operation,
                            "pending": len(state.queue),
                        },
                    )
                    break

                await self._sleep(self._operation_delay)
        finally:
            with self._registry_lock:
                if self._workers.get(key) is task:
                    self._workers.pop(key, None)
                    self._active.discard(key)

    async def _run_item(self, item: _QueueItem) -> None:
        try:
            result = item.fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(result)

    def is_draining(self, scope: str, operation: str) -> bool:
        return (scope, operation) in self._active

    def pending(self, scope: str, operation: str) -> int:
        state = self._states.get((scope, operation))
        return len(state.queue) if state else 0

    def get_stats(self) -> dict[str, Any]:
        """Return window counts and queue depths grouped by scope then operation."""
        limits: dict[str, dict[str, int]] = {}
        queues: dict[str, dict[str, int]] = {}
        with self._registry_lock:
            items = list(self._states.items())
            processing = len(self._active)
        for (scope, operation), state in items:
            with state.lock:
                limits.setdefault(scope, {})[operation] = len(state.admissions)
                queues.setdefault(scope, {})[operation] = len(state.queue)
        return {
            "active_limits": len(items),
            "active_queues": sum(1 for _, state in items if state.queue),
            "processing_queues": processing,
            "limits": limits,
            "queues": queues,
        }

    def clear_scope(self, scope: str) -> None:
        """Drop window and queue state for ``scope``, failing its pending operations."""
        with self._registry_lock:
            keys = [key for key in self._states if key[0] == scope]
        for key in keys:
            self._discard(key, "Scope cleared from rate limiter")
        logger.info("Cleared rate limiting data", extra={"scope": scope})

    def clear(self) -> None:
        with self._registry_lock:
            keys = list(self._states)
        for key in keys:
            self._discard(key, "Rate limiter cleared")
        logger.info("Rate limiter cleared")

    def _discard(self, key: Key, reason: str) -> None:
        with self._registry_lock:
            state = self._states.pop(key, None)
            self._active.discard(key)
            worker = self._workers.pop(key, None)
        if worker is not None and not worker.done():
            worker.cancel()
        if state is None:
            return
        with state.lock:
            pending, state.queue = state.queue, []
        for item in pending:
            if not item.future.done():
                item.future.set_exception(LimiterClearedError(reason))


__all__ = ["RateLimiter"]
