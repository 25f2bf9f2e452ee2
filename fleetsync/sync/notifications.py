"""In-process notification hub feeding per-user Server-Sent Event streams."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("fleetsync.notifications")

KEEPALIVE_SECONDS = 15.0


class NotificationHub:
    """Delivers events to every open stream of a user.

    Delivery is fire-and-forget: events for users without a stream are
    dropped, and a slow stream loses its oldest queued event first.
    """

    def __init__(self, max_queue: int = 100) -> None:
        self._max_queue = max_queue
        self._lock = threading.Lock()
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def connect(self, user_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        with self._lock:
            self._subscribers.setdefault(user_id, set()).add(queue)
        logger.info("Stream connected", extra={"event": "sse_connect", "user_id": user_id})
        return queue

    def disconnect(self, user_id: str, queue: asyncio.Queue) -> None:
        with self._lock:
            queues = self._subscribers.get(user_id)
            if queues is None:
                return
            queues.discard(queue)
            if not queues:
                del self._subscribers[user_id]
        logger.info("Stream disconnected", extra={"event": "sse_disconnect", "user_id": user_id})

    def has_connection(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._subscribers.get(user_id))

    def connection_count(self) -> int:
        with self._lock:
            return sum(len(queues) for queues in self._subscribers.values())

    def notify(self, user_id: str, event: dict[str, Any]) -> None:
        payload = dict(event)
        payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        with self._lock:
            queues = list(self._subscribers.get(user_id, ()))
        for queue in queues:
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.debug("Dropping notification", extra={"user_id": user_id})

    async def stream(self, user_id: str, keepalive: float = KEEPALIVE_SECONDS) -> AsyncIterator[str]:
        """Yield SSE frames for ``user_id`` until the consumer goes away."""
        queue = self.connect(user_id)
        try:
            hello = {
                "type": "connection_established",
                "message": "SSE connection established",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            yield format_sse(hello)
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(event)
        finally:
            self.disconnect(user_id, queue)


def format_sse(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=True, default=str)}\n\n"


__all__ = ["NotificationHub", "format_sse"]
