"""Provider connection test, full sync and call log endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from fleetsync.core.exceptions import ProviderAuthError, ProviderError, ProviderNotFoundError
from fleetsync.runtime import orchestrator, repository
from fleetsync.storage.provider_logs import list_provider_logs

router = APIRouter(prefix="/providers")


@router.post("/{provider_id}/test")
async def test_provider(provider_id: str) -> dict:
    try:
        result = await orchestrator.test_provider(provider_id)
    except ProviderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return result.model_dump()


@router.post("/{provider_id}/sync")
async def sync_provider(provider_id: str):
    try:
        result = await orchestrator.sync_provider(provider_id)
    except ProviderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except ProviderAuthError as exc:
        return JSONResponse(
            status_code=401,
            content={
                "error": {
                    "message": exc.message,
                    "type": "provider_auth_error",
                    "code": "provider_auth_failed",
                }
            },
        )
    except ProviderError as exc:
        return JSONResponse(
            status_code=502,
            content={
                "error": {
                    "message": f"Provider '{exc.provider_id}' sync failed: {exc.message}",
                    "type": "provider_error",
                    "code": "provider_unavailable",
                }
            },
        )
    return result.to_dict()


@router.get("/{provider_id}/logs")
def provider_logs(provider_id: str, limit: int = 50) -> dict:
    if repository.get_provider(provider_id) is None:
        raise HTTPException(status_code=404, detail="GPS provider not found")
    return {"logs": list_provider_logs(provider_id, limit=max(1, min(limit, 200)))}
