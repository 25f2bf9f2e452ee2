"""Vendor API call log storage."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select

from fleetsync.logging import get_request_id

from .database import session_scope
from .models import ProviderLog

logger = logging.getLogger("fleetsync.provider_logs")

# Vendor payloads can be large; bodies beyond this are stored truncated.
MAX_BODY_CHARS = 20000


def _start_of_today() -> datetime:
    now = datetime.now(timezone.utc)
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


def _encode(payload: Any) -> str | None:
    if payload is None:
        return None
    try:
        encoded = json.dumps(payload, ensure_ascii=True, default=str)
    except (TypeError, ValueError):
        logger.debug("Unable to encode payload for provider log", exc_info=True)
        return None
    if len(encoded) > MAX_BODY_CHARS:
        return json.dumps({"truncated": True, "preview": encoded[:MAX_BODY_CHARS]})
    return encoded


def _decode(serialized: str | None) -> Any:
    if not serialized:
        return None
    try:
        return json.loads(serialized)
    except json.JSONDecodeError:
        return serialized


def record_provider_log(
    provider_id: str,
    *,
    request_body: Any,
    response_body: Any,
    request_id: str | None = None,
) -> None:
    """Persist one vendor call; entries from before today are dropped on write.

    Storage failures are logged and swallowed so a broken log table never
    fails a sync.
    """

    entry = ProviderLog(
        provider_id=provider_id,
        request_id=request_id or get_request_id(),
        request_body=_encode(request_body),
        response_body=_encode(response_body),
    )

    try:
        with session_scope() as session:
            session.execute(delete(ProviderLog).where(ProviderLog.created_at < _start_of_today()))
            session.add(entry)
    except Exception:
        logger.exception("Failed to persist provider log", extra={"provider_id": provider_id})


def list_provider_logs(provider_id: str, limit: int = 100) -> list[dict[str, Any]]:
    with session_scope() as session:
        stmt = (
            select(ProviderLog)
            .where(ProviderLog.provider_id == provider_id)
            .where(ProviderLog.created_at >= _start_of_today())
            .order_by(ProviderLog.created_at.desc(), ProviderLog.id.desc())
            .limit(limit)
        )
        rows = session.scalars(stmt).all()

    return [
        {
            "id": row.id,
            "created_at": row.created_at.isoformat() if row.created_at else None,
            "request_id": row.request_id,
            "request": _decode(row.request_body),
            "response": _decode(row.response_body),
        }
        for row in rows
    ]


__all__ = ["list_provider_logs", "record_provider_log"]
