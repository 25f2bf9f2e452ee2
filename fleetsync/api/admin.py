"""Admin/status endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import cast

from fastapi import APIRouter

from fleetsync.runtime import limiter, notifications, repository, scheduler
from fleetsync.telemetry.events import list_recent_events

router = APIRouter(prefix="/admin")


@router.get("/providers")
def list_providers() -> dict:
    data = []
    for provider in repository.list_providers():
        last_sync = cast(datetime | None, provider.last_sync)
        data.append(
            {
                "id": provider.id,
                "name": provider.name,
                "type": provider.type,
                "tenant_id": provider.tenant_id,
                "company_id": provider.company_id,
                "status": provider.status,
                "trailer_count": provider.trailer_count,
                "last_sync": last_sync.isoformat() if last_sync else None,
                "error_message": provider.error_message,
                "has_credentials": bool(provider.credentials_encrypted),
            }
        )
    return {"providers": data}


@router.get("/events")
def list_events(limit: int = 25, kind: str | None = None, provider_id: str | None = None) -> dict:
    limit_value = max(1, min(limit, 100))
    return {"events": list_recent_events(limit=limit_value, kind=kind, provider_id=provider_id)}


@router.get("/rate-limits")
def rate_limit_stats() -> dict:
    return {
        "rate_limits": limiter.get_stats(),
        "scheduler_running": scheduler.running,
        "sse_connections": notifications.connection_count(),
    }


@router.delete("/rate-limits/{scope}")
async def clear_rate_limits(scope: str) -> dict:
    limiter.clear_scope(scope)
    return {"status": "ok"}
