"""Persisted sync telemetry: provider tests, sync runs, refresh failures."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select

from fleetsync.logging import get_request_id
from fleetsync.storage.database import session_scope
from fleetsync.storage.models import SyncEvent

logger = logging.getLogger("fleetsync.events")

_EVENTS_ENABLED = os.getenv("EVENTS_ENABLED", "true").lower() in {"1", "true", "yes"}


_RETENTION_DAYS = 7


def _current_retention_cutoff() -> datetime:
    now_utc = datetime.now(timezone.utc)
    start_of_today = datetime(now_utc.year, now_utc.month, now_utc.day, tzinfo=timezone.utc)
    return start_of_today - timedelta(days=_RETENTION_DAYS - 1)


def _prune_old_events(session) -> None:
    session.execute(delete(SyncEvent).where(SyncEvent.ts < _current_retention_cutoff()))


def record_event(
    kind: str,
    level: str,
    *,
    message: str | None = None,
    request_id: str | None = None,
    meta: Dict[str, Any] | None = None,
    provider_id: str | None = None,
    tenant_id: str | None = None,
    user_id: str | None = None,
) -> None:
    """Persist a high-value event for the admin view. Never raises."""
    if not _EVENTS_ENABLED:
        return

    event = SyncEvent(
        ts=datetime.now(timezone.utc),
        level=level.upper(),
        kind=kind,
        request_id=request_id or get_request_id(),
        provider_id=provider_id,
        tenant_id=tenant_id,
        user_id=user_id,
        message=message[:512] if message else message,
        meta=json.dumps(meta, ensure_ascii=True, default=str) if meta else None,
    )

    try:
        with session_scope() as session:
            session.add(event)
            _prune_old_events(session)
    except Exception:
        logger.exception(
            "Failed to record event", extra={"event": "event_persist_error", "kind": kind}
        )


def list_recent_events(
    limit: int = 50,
    *,
    kind: str | None = None,
    provider_id: str | None = None,
) -> List[Dict[str, Any]]:
    """Return retained events, newest first, optionally filtered."""
    if not _EVENTS_ENABLED:
        return []

    with session_scope() as session:
        _prune_old_events(session)

        stmt = select(SyncEvent).where(SyncEvent.ts >= _current_retention_cutoff())
        if kind:
            stmt = stmt.where(SyncEvent.kind == kind)
        if provider_id:
            stmt = stmt.where(SyncEvent.provider_id == provider_id)
        rows = session.scalars(stmt.order_by(SyncEvent.ts.desc(), SyncEvent.id.desc()).limit(limit)).all()

    events: List[Dict[str, Any]] = []
    for row in rows:
        meta_value: Optional[Dict[str, Any] | str]
        if row.meta:
            try:
                meta_value = json.loads(row.meta)
            except json.JSONDecodeError:
                meta_value = row.meta
        else:
            meta_value = None

        events.append(
            {
                "id": row.id,
                "timestamp": row.ts.isoformat() if row.ts else None,
                "level": row.level,
                "kind": row.kind,
                "request_id": row.request_id,
                "provider_id": row.provider_id,
                "tenant_id": row.tenant_id,
                "user_id": row.user_id,
                "message": row.message,
                "meta": meta_value,
            }
        )
    return events


__all__ = ["list_recent_events", "record_event"]
