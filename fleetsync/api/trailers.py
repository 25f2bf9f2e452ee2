"""Operator location corrections."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from fleetsync.core.constants import LocationSource
from fleetsync.core.exceptions import AssetNotFoundError, DataError
from fleetsync.runtime import geocoder, repository
from fleetsync.sync.conflict import LocationUpdate, apply_location_update, clear_manual_override

router = APIRouter(prefix="/trailers")


class ManualLocationRequest(BaseModel):
    latitude: float
    longitude: float
    address: str | None = None
    notes: str | None = None


@router.put("/{trailer_id}/location")
async def set_manual_location(trailer_id: int, payload: ManualLocationRequest) -> dict:
    update = LocationUpdate(
        latitude=payload.latitude,
        longitude=payload.longitude,
        address=payload.address,
        source=LocationSource.MANUAL,
        notes=payload.notes,
    )
    try:
        result = await apply_location_update(repository, geocoder, trailer_id, update)
    except AssetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DataError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"applied": result.applied, "reason": result.reason, "address": result.address}


@router.delete("/{trailer_id}/location/override")
def clear_override(trailer_id: int) -> dict:
    try:
        clear_manual_override(repository, trailer_id)
    except AssetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "ok"}
