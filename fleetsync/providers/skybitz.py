"""SkyBitz XML position feed adapter."""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

from fleetsync.core.constants import LOCATION_UNAVAILABLE, TrailerStatus
from fleetsync.core.exceptions import CredentialError, ProviderError

from .base import AssetRecord, ProviderAdapter, has_valid_position, to_float
from .utils import fetch_text

logger = logging.getLogger("fleetsync.providers.skybitz")

API_VERSION = "2.67"
KMH_TO_MPH = 0.621371
MOVING_MPH = 5.0

_STATE = re.compile(r"^[A-Z]{2}$")


def _is_state(value: str | None) -> bool:
    return bool(value) and value != "US" and bool(_STATE.match(value))


def city_state_from_string(address: str | None) -> str:
    """Reduce a free-form street address to ``"City, ST"``."""
    if not address or not address.strip():
        return LOCATION_UNAVAILABLE
    cleaned = address.strip()

    if "," in cleaned:
        parts = [part.strip() for part in cleaned.split(",")]
        city = state = None
        if len(parts) >= 4:
            city, state = parts[-3], parts[-2]
        elif len(parts) == 3 and parts[2] == "US":
            city, state = parts[0], parts[1]
        elif len(parts) == 3:
            city, state = parts[1], parts[2].split(" ")[0]
        elif len(parts) == 2:
            city, state = parts
        if _is_state(state):
            return f"{city}, {state}"

    words = cleaned.split(" ")
    if len(words) >= 2 and _is_state(words[-1]):
        return f"{' '.join(words[:-1])}, {words[-1]}"
    return LOCATION_UNAVAILABLE


def _text(element: ET.Element | None, tag: str) -> str | None:
    if element is None:
        return None
    value = element.findtext(tag)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _address(gls: ET.Element) -> str | None:
    for tag in ("address", "location"):
        node = gls.find(tag)
        if node is None:
            continue
        if len(node):
            city, state = _text(node, "city"), _text(node, "state")
            return f"{city}, {state}" if city and state else LOCATION_UNAVAILABLE
        return city_state_from_string(node.text)
    return None


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("/", "-").replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class SkyBitzProvider(ProviderAdapter):
    vendor_type = "skybitz"

    def validate_credentials(self, credentials: dict[str, Any]) -> bool:
        return bool(credentials.get("username") and credentials.get("password"))

    async def fetch_data(
        self, credentials: dict[str, Any], provider_id: str | None = None
    ) -> list[AssetRecord]:
        owner = provider_id or self.vendor_type
        if not self.validate_credentials(credentials):
            raise CredentialError(
                owner, message="Missing SkyBitz credentials: username and password required"
            )

        base_url = str(credentials.get("baseURL") or self._config.base_url).rstrip("/")
        query = {
            "customer": credentials["username"],
            "password": credentials["password"],
            "assetid": "ALL",
            "version": API_VERSION,
        }
        body = await fetch_text(
            owner,
            f"{base_url}/QueryPositions?{urlencode(query)}",
            log_url=f"{base_url}/QueryPositions?{urlencode({**query, 'password': '***'})}",
            headers={"User-Agent": "fleetsync/1.0"},
            timeout=self._config.timeout,
            unauthorized_message="Invalid SkyBitz username or password",
        )

        try:
            root = ET.fromstring(body)
        except ET.ParseError as exc:
            raise ProviderError(owner, message="Unexpected response format") from exc

        error_code = _text(root, "e")
        if error_code and error_code != "0":
            raise ProviderError(owner, message=f"SkyBitz API Error Code: {error_code}")

        return self.process_positions(root.findall("gls"))

    def process_positions(self, positions: list[ET.Element]) -> list[AssetRecord]:
        records: list[AssetRecord] = []
        for gls in positions:
            try:
                record = self._to_record(gls)
            except (AttributeError, TypeError, ValueError):
                logger.warning(
                    "Skipping malformed SkyBitz position",
                    extra={"mtsn": _text(gls, "mtsn")},
                    exc_info=True,
                )
                continue
            if record is not None and has_valid_position(record):
                records.append(record)
        return records

    def _to_record(self, gls: ET.Element) -> AssetRecord | None:
        asset = gls.find("asset")
        asset_id = _text(asset, "assetid")
        device_id = _text(gls, "mtsn")
        if not (asset_id or device_id):
            return None

        speed_mph = (to_float(_text(gls, "speed")) or 0.0) * KMH_TO_MPH
        year = _text(asset, "year")

        return AssetRecord(
            id=f"skybitz_{device_id or asset_id}",
            original_id=asset_id or device_id,
            unit_number=asset_id or device_id,
            vin=_text(asset, "vin"),
            make=_text(asset, "assettype") or _text(asset, "make"),
            model=_text(gls, "devicetype") or _text(asset, "model"),
            year=int(year) if year else None,
            plate=(
                _text(asset, "licenseplate")
                or _text(asset, "plate")
                or _text(gls, "licenseplate")
                or _text(gls, "plate")
            ),
            status=(TrailerStatus.DISPATCHED if speed_mph > MOVING_MPH else TrailerStatus.AVAILABLE).value,
            latitude=to_float(_text(gls, "latitude")),
            longitude=to_float(_text(gls, "longitude")),
            address=_address(gls),
            last_update=_parse_time(_text(gls, "time")),
        )
