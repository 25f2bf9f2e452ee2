"""Shared status vocabularies."""

from __future__ import annotations

from enum import Enum

LOCATION_UNAVAILABLE = "Location unavailable"


class LocationSource(str, Enum):
    GPS = "gps"
    MANUAL = "manual"


class ProviderStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class GpsStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNKNOWN = "unknown"


class TrailerStatus(str, Enum):
    AVAILABLE = "available"
    DISPATCHED = "dispatched"
    DISCONNECTED = "disconnected"
