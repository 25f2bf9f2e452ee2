"""Spireon NSpire asset API adapter."""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from typing import Any

from fleetsync.core.exceptions import CredentialError, ProviderError

from .base import (
    AssetRecord,
    ProviderAdapter,
    clean_unit_number,
    has_valid_position,
    is_asset_active,
    map_status,
    to_float,
)
from .utils import fetch_json

logger = logging.getLogger("fleetsync.providers.spireon")

_REQUIRED = ("apiKey", "username", "password", "nspireId")


class SpireonProvider(ProviderAdapter):
    vendor_type = "spireon"

    def validate_credentials(self, credentials: dict[str, Any]) -> bool:
        return all(credentials.get(field) for field in _REQUIRED)

    async def fetch_data(
        self, credentials: dict[str, Any], provider_id: str | None = None
    ) -> list[AssetRecord]:
        owner = provider_id or self.vendor_type
        missing = [field for field in _REQUIRED if not credentials.get(field)]
        if missing:
            raise CredentialError(
                owner, message=f"Missing required Spireon credentials: {', '.join(missing)}"
            )

        basic = base64.b64encode(
            f"{credentials['username']}:{credentials['password']}".encode("utf-8")
        ).decode("ascii")
        base_url = str(credentials.get("baseURL") or self._config.base_url).rstrip("/")
        data = await fetch_json(
            owner,
            f"{base_url}/assets",
            headers={
                "Authorization": f"Basic {basic}",
                "X-Nspire-AppToken": str(credentials["apiKey"]),
                "Accept": "application/json",
            },
            timeout=self._config.timeout,
            unauthorized_message="Invalid credentials - check username, password, and API key",
            forbidden_message="Access denied - check API permissions and Nspire ID",
        )

        if isinstance(data, dict):
            assets = data.get("content") or []
        elif isinstance(data, list):
            assets = data
        else:
            raise ProviderError(owner, message="Unexpected response format")
        return self.process_assets(assets, account=str(credentials.get("providerName") or "Spireon"))

    def process_assets(self, assets: list[dict[str, Any]], account: str = "Spireon") -> list[AssetRecord]:
        prefix = account.replace(" ", "")
        records: list[AssetRecord] = []
        for asset in assets:
            if not is_asset_active(asset):
                logger.debug("Skipping inactive Spireon asset", extra={"asset_id": asset.get("id")})
                continue
            try:
                record = self._to_record(asset, prefix)
            except (AttributeError, KeyError, TypeError, ValueError):
                logger.warning(
                    "Skipping malformed Spireon asset",
                    extra={"asset_id": asset.get("id")},
                    exc_info=True,
                )
                continue
            if has_valid_position(record):
                records.append(record)
        return records

    def _to_record(self, asset: dict[str, Any], prefix: str) -> AssetRecord:
        location = asset.get("lastLocation") or {}
        address = location.get("address")
        reported = asset.get("locationLastReported") or asset.get("lastUpdated")
        instrumentation = asset.get("instrumentationRef") or {}
        original_id = str(asset.get("name") or asset.get("id"))
        year = asset.get("year")

        return AssetRecord(
            id=str(instrumentation.get("deviceId") or f"{prefix}-{asset.get('id')}"),
            original_id=original_id,
            unit_number=clean_unit_number(original_id),
            vin=asset.get("vin") or None,
            make=asset.get("make") or None,
            model=asset.get("model") or None,
            year=int(year) if year else None,
            plate=asset.get("plate") or asset.get("licensePlate") or asset.get("registration"),
            status=map_status(asset.get("status")),
            latitude=to_float(location.get("lat")),
            longitude=to_float(location.get("lng")),
            address=(
                f"{address.get('city')}, {address.get('stateOrProvince')}"
                if isinstance(address, dict)
                else None
            ),
            last_update=datetime.fromisoformat(reported.replace("Z", "+00:00")) if reported else None,
        )
