"""GPS vendor adapter interface and normalized record types."""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from fleetsync.core.config import VendorModel
from fleetsync.core.constants import GpsStatus, TrailerStatus

_TRAILER_PREFIX = re.compile(r"^trailer\s+", re.IGNORECASE)

_STATUS_MAP = {
    "moving": TrailerStatus.DISPATCHED,
    "driving": TrailerStatus.DISPATCHED,
    "active": TrailerStatus.DISPATCHED,
    "in transit": TrailerStatus.DISPATCHED,
    "stopped": TrailerStatus.AVAILABLE,
    "idle": TrailerStatus.AVAILABLE,
    "parked": TrailerStatus.AVAILABLE,
    "offline": TrailerStatus.DISCONNECTED,
}

_INACTIVE_MARKERS = (
    "inactive",
    "disabled",
    "offline",
    "maintenance",
    "out_of_service",
    "decommissioned",
)


class AssetRecord(BaseModel):
    """One trailer as reported by a vendor, after normalization."""

    id: str
    unit_number: str | None = None
    original_id: str | None = None
    vin: str | None = None
    make: str | None = None
    model: str | None = None
    year: int | None = None
    plate: str | None = None
    status: str = TrailerStatus.AVAILABLE.value
    gps_status: str = GpsStatus.CONNECTED.value
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    last_update: datetime | None = None
    provider_id: str | None = None
    company_id: str | None = None
    tenant_id: str | None = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class LocationSample(BaseModel):
    """Position-only view of an :class:`AssetRecord` used by refreshes."""

    id: str
    original_id: str | None = None
    vin: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    timestamp: datetime | None = None
    company_id: str | None = None

    @classmethod
    def from_record(cls, record: AssetRecord) -> "LocationSample":
        return cls(
            id=record.id,
            original_id=record.original_id,
            vin=record.vin,
            latitude=record.latitude,
            longitude=record.longitude,
            address=record.address,
            timestamp=record.last_update,
            company_id=record.company_id,
        )


class ConnectionTestResult(BaseModel):
    success: bool
    trailer_count: int = 0
    error: str | None = None
    message: str | None = None


def clean_unit_number(unit_number: str | None) -> str | None:
    """Strip a leading ``TRAILER`` label from vendor unit names."""
    if not unit_number:
        return unit_number
    cleaned = _TRAILER_PREFIX.sub("", unit_number).strip()
    return cleaned or unit_number


def unit_number_for(record: AssetRecord) -> str:
    """The tenant-unique unit number a record is stored under."""
    return clean_unit_number(record.unit_number or record.original_id or record.id) or record.id


def map_status(vendor_status: str | None) -> str:
    if not vendor_status:
        return TrailerStatus.AVAILABLE.value
    return _STATUS_MAP.get(vendor_status.strip().lower(), TrailerStatus.AVAILABLE).value


def is_asset_active(asset: dict[str, Any]) -> bool:
    name = str(asset.get("name") or asset.get("assetName") or "").lower()
    asset_id = str(asset.get("id") or asset.get("assetId") or "").lower()
    if any(marker in name or marker in asset_id for marker in _INACTIVE_MARKERS):
        return False
    status = str(asset.get("status") or "").lower()
    return status not in _INACTIVE_MARKERS


def to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def has_valid_position(record: AssetRecord) -> bool:
    """Vendors report 0/0 for units that have never had a fix."""
    return (
        record.latitude is not None
        and record.longitude is not None
        and record.latitude != 0
        and record.longitude != 0
    )


class ProviderAdapter:
    """Abstract GPS vendor adapter."""

    vendor_type: str

    def __init__(self, config: VendorModel) -> None:
        self._config = config

    def validate_credentials(self, credentials: dict[str, Any]) -> bool:
        raise NotImplementedError

    async def fetch_data(
        self, credentials: dict[str, Any], provider_id: str | None = None
    ) -> list[AssetRecord]:
        """Return the vendor's active trailers that have a usable position.

        ``provider_id`` names the configured provider record for error
        attribution and call logging; it defaults to the vendor type.
        """
        raise NotImplementedError
