"""Location conflict resolution between GPS feeds and manual corrections.

Rules, in order:

* a stored manual location is never overwritten by GPS;
* GPS over GPS is accepted only when the incoming observation is strictly newer
  (accepted when either timestamp is unknown);
* manual input is always accepted.

Acceptance and material change are separate checks: an accepted GPS sample whose
coordinates moved less than :data:`COORDINATE_EPSILON` degrees is not written and
does not trigger reverse geocoding.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Protocol

from fleetsync.core.constants import LOCATION_UNAVAILABLE, LocationSource
from fleetsync.core.exceptions import AssetNotFoundError, DataError

logger = logging.getLogger("fleetsync.conflict")

COORDINATE_EPSILON = 0.00001


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class StoredLocation:
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    source: LocationSource = LocationSource.GPS
    updated_at: datetime | None = None
    manual_override: bool = False
    notes: str | None = None

    @classmethod
    def from_asset(cls, asset: Any) -> "StoredLocation":
        raw_source = getattr(asset, "location_source", None) or LocationSource.GPS.value
        return cls(
            latitude=getattr(asset, "last_latitude", None),
            longitude=getattr(asset, "last_longitude", None),
            address=getattr(asset, "last_address", None),
            source=LocationSource(raw_source),
            updated_at=as_utc(getattr(asset, "location_updated_at", None)),
            manual_override=bool(getattr(asset, "manual_location_override", False)),
            notes=getattr(asset, "manual_location_notes", None),
        )


@dataclass(frozen=True)
class LocationUpdate:
    latitude: float | None
    longitude: float | None
    address: str | None = None
    source: LocationSource = LocationSource.GPS
    observed_at: datetime | None = None
    notes: str | None = None


@dataclass(frozen=True)
class LocationUpdateResult:
    applied: bool
    reason: str
    address: str | None = None

    @property
    def skipped(self) -> bool:
        return not self.applied


class AddressLookup(Protocol):
    async def reverse_geocode(self, latitude: float, longitude: float) -> str: ...


class LocationStore(Protocol):
    def get_asset(self, asset_id: int) -> Any: ...

    def write_location(self, asset_id: int, changes: dict[str, Any]) -> None: ...


def should_accept(current: StoredLocation, incoming: LocationUpdate) -> bool:
    """Decide whether ``incoming`` may overwrite the stored location."""
    if current.source is LocationSource.MANUAL and incoming.source is LocationSource.GPS:
        return False

    if current.source is LocationSource.GPS and incoming.source is LocationSource.GPS:
        stored_at = as_utc(current.updated_at)
        observed_at = as_utc(incoming.observed_at)
        if stored_at is None or observed_at is None:
            return True
        return observed_at > stored_at

    # Operator input always lands, over GPS or over an earlier manual entry.
    return incoming.source is LocationSource.MANUAL


def coordinates_changed(current: StoredLocation, incoming: LocationUpdate) -> bool:
    if current.latitude is None or current.longitude is None:
        return True
    if incoming.latitude is None or incoming.longitude is None:
        return False
    lat_changed = abs(float(current.latitude) - float(incoming.latitude)) > COORDINATE_EPSILON
    lng_changed = abs(float(current.longitude) - float(incoming.longitude)) > COORDINATE_EPSILON
    return lat_changed or lng_changed


def validate_coordinates(latitude: Any, longitude: Any) -> tuple[float, float]:
    """Return the pair as floats, raising :class:`DataError` when unusable."""
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError) as exc:
        raise DataError(f"Malformed coordinates: {latitude!r}, {longitude!r}") from exc
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise DataError(f"Non-finite coordinates: {latitude!r}, {longitude!r}")
    return lat, lng


def _in_range(latitude: float, longitude: float) -> bool:
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


async def resolve_address(
    lookup: AddressLookup | None,
    latitude: float,
    longitude: float,
    fallback: str | None = None,
) -> str:
    """Reverse-geocode a moved location, never raising.

    Out-of-range coordinates, a missing lookup, or a failed lookup yield
    ``fallback`` or :data:`LOCATION_UNAVAILABLE`.
    """
    default = fallback or LOCATION_UNAVAILABLE
    if lookup is None or not _in_range(latitude, longitude):
        return default
    try:
        address = await lookup.reverse_geocode(latitude, longitude)
    except Exception:
        logger.warning(
            "Reverse geocoding failed",
            extra={"latitude": latitude, "longitude": longitude},
            exc_info=True,
        )
        return default
    if not address or address == LOCATION_UNAVAILABLE:
        return default
    return address


def build_location_changes(
    current: StoredLocation,
    incoming: LocationUpdate,
    address: str | None,
    now: datetime,
) -> dict[str, Any]:
    """Column values for an accepted location update."""
    observed_at = as_utc(incoming.observed_at) or now
    changes: dict[str, Any] = {
        "last_latitude": incoming.latitude,
        "last_longitude": incoming.longitude,
        "last_address": address,
        "location_source": incoming.source.value,
        "location_updated_at": observed_at,
        "updated_at": now,
    }
    if incoming.source is LocationSource.GPS:
        changes["last_gps_update"] = observed_at
        changes["last_sync"] = now
        if current.source is LocationSource.MANUAL or current.manual_override:
            changes["manual_location_override"] = False
            changes["manual_location_notes"] = None
    else:
        changes["manual_location_override"] = True
        changes["manual_location_notes"] = incoming.notes
    return changes


async def apply_location_update(
    store: LocationStore,
    lookup: AddressLookup | None,
    asset_id: int,
    update: LocationUpdate,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> LocationUpdateResult:
    """Run one incoming sample through conflict resolution and persist it if it wins."""
    asset = store.get_asset(asset_id)
    if asset is None:
        raise AssetNotFoundError(asset_id)

    latitude, longitude = validate_coordinates(update.latitude, update.longitude)
    update = replace(update, latitude=latitude, longitude=longitude)

    current = StoredLocation.from_asset(asset)
    if not should_accept(current, update):
        return LocationUpdateResult(applied=False, reason="conflict")

    changed = coordinates_changed(current, update)
    if not changed and update.source is LocationSource.GPS:
        return LocationUpdateResult(applied=False, reason="unchanged")

    if changed:
        address = await resolve_address(lookup, latitude, longitude, fallback=update.address)
    else:
        address = update.address or current.address

    changes = build_location_changes(current, update, address, clock())
    store.write_location(asset_id, changes)
    logger.debug(
        "Location updated",
        extra={"asset_id": asset_id, "source": update.source.value, "moved": changed},
    )
    return LocationUpdateResult(applied=True, reason=f"{update.source.value}_update", address=address)


def clear_manual_override(
    store: LocationStore,
    asset_id: int,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """Hand an asset back to the GPS feed without moving its pin."""
    if store.get_asset(asset_id) is None:
        raise AssetNotFoundError(asset_id)
    store.write_location(
        asset_id,
        {
            "location_source": LocationSource.GPS.value,
            "manual_location_override": False,
            "manual_location_notes": None,
            "updated_at": clock(),
        },
    )


__all__ = [
    "COORDINATE_EPSILON",
    "LocationUpdate",
    "LocationUpdateResult",
    "StoredLocation",
    "apply_location_update",
    "build_location_changes",
    "clear_manual_override",
    "coordinates_changed",
    "resolve_address",
    "should_accept",
    "validate_coordinates",
]
