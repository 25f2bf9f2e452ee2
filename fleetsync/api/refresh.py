"""Manual location refresh, status and notification stream."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import StreamingResponse

from fleetsync.core.exceptions import UserNotFoundError
from fleetsync.runtime import notifications, orchestrator

router = APIRouter(prefix="/refresh")

UserId = Annotated[str, Header(alias="x-user-id", description="Caller's user id")]


@router.post("/manual")
async def manual_refresh(user_id: UserId) -> dict:
    try:
        return await orchestrator.refresh_locations(user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/status")
def refresh_status(user_id: UserId) -> dict:
    return orchestrator.get_refresh_status(user_id)


@router.get("/stream")
async def refresh_stream(user_id: UserId) -> StreamingResponse:
    return StreamingResponse(
        notifications.stream(user_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
