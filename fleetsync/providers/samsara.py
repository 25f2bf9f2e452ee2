"""Samsara fleet API adapter."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fleetsync.core.exceptions import CredentialError, ProviderError

from .base import AssetRecord, ProviderAdapter, clean_unit_number, has_valid_position, to_float
from .utils import fetch_json

logger = logging.getLogger("fleetsync.providers.samsara")


class SamsaraProvider(ProviderAdapter):
    vendor_type = "samsara"

    def validate_credentials(self, credentials: dict[str, Any]) -> bool:
        return bool(credentials.get("apiToken"))

    async def fetch_data(
        self, credentials: dict[str, Any], provider_id: str | None = None
    ) -> list[AssetRecord]:
        owner = provider_id or self.vendor_type
        if not self.validate_credentials(credentials):
            raise CredentialError(owner, message="Missing Samsara credentials: API token required")

        base_url = str(credentials.get("apiUrl") or self._config.base_url).rstrip("/")
        data = await fetch_json(
            owner,
            f"{base_url}/v1/fleet/vehicles",
            headers={
                "Authorization": f"Bearer {credentials['apiToken']}",
                "Content-Type": "application/json",
            },
            timeout=self._config.timeout,
            unauthorized_message="Invalid API token",
            forbidden_message="Access denied - check API token permissions",
        )
        if not isinstance(data, dict):
            raise ProviderError(owner, message="Unexpected response format")

        vehicles = data.get("data") or []
        return self.process_vehicles(vehicles)

    def process_vehicles(self, vehicles: list[dict[str, Any]]) -> list[AssetRecord]:
        records: list[AssetRecord] = []
        for vehicle in vehicles:
            vehicle_type = str(vehicle.get("vehicleType") or "").lower()
            name = str(vehicle.get("name") or "")
            if vehicle_type != "trailer" and "trailer" not in name.lower():
                continue
            try:
                record = self._to_record(vehicle)
            except (AttributeError, KeyError, TypeError, ValueError):
                logger.warning(
                    "Skipping malformed Samsara vehicle",
                    extra={"vehicle_id": vehicle.get("id")},
                    exc_info=True,
                )
                continue
            if has_valid_position(record):
                records.append(record)
        return records

    def _to_record(self, vehicle: dict[str, Any]) -> AssetRecord:
        vehicle_id = str(vehicle.get("id") or vehicle.get("name"))
        location = vehicle.get("location") or vehicle.get("lastLocation") or {}
        timestamp = location.get("time") or (vehicle.get("lastLocation") or {}).get("timestamp")
        original_id = str(vehicle.get("name") or vehicle_id)
        year = vehicle.get("year")

        return AssetRecord(
            id=f"samsara_{vehicle_id}",
            original_id=original_id,
            unit_number=clean_unit_number(original_id),
            vin=vehicle.get("vin") or None,
            make=vehicle.get("make") or None,
            model=vehicle.get("model") or None,
            year=int(year) if year else None,
            plate=vehicle.get("licensePlate") or vehicle.get("plate") or None,
            latitude=to_float(location.get("latitude")),
            longitude=to_float(location.get("longitude")),
            address=location.get("reverseGeo", {}).get("formattedLocation")
            if isinstance(location.get("reverseGeo"), dict)
            else location.get("address"),
            last_update=datetime.fromisoformat(timestamp.replace("Z", "+00:00")) if timestamp else None,
        )
