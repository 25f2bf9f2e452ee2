"""Application configuration loading utilities."""

from __future__ import annotations

import os
import pathlib
from functools import lru_cache
from typing import List

import yaml
from pydantic import BaseModel, Field

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR.parent / "config" / "fleetsync.yaml"


class VendorModel(BaseModel):
    type: str
    name: str
    base_url: str
    timeout: float = Field(default=30.0)


class GeocodingModel(BaseModel):
    base_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    timeout: float = Field(default=10.0)


class SyncSettings(BaseModel):
    """Timing knobs and rate-limit caps for the sync engine (seconds)."""

    between_providers: float = 2.0
    between_users: float = 1.0
    between_operations: float = 2.0
    location_interval: float = 60 * 60
    maintenance_interval: float = 24 * 60 * 60
    poll_interval: float = 1.0
    max_wait: float = 30.0
    tenant_max_operations: int = 10
    tenant_window: float = 60.0
    queue_max_operations: int = 1
    queue_window: float = 6.0
    location_priority: int = 1
    maintenance_priority: int = 2
    active_user_limit: int = 100
    test_attempts: int = 2
    test_backoff: float = 2.0


class AppConfig(BaseModel):
    sync: SyncSettings = Field(default_factory=SyncSettings)
    vendors: List[VendorModel] = Field(default_factory=list)
    geocoding: GeocodingModel = Field(default_factory=GeocodingModel)

    def vendor(self, vendor_type: str) -> VendorModel | None:
        wanted = vendor_type.lower()
        return next((v for v in self.vendors if v.type == wanted), None)


@lru_cache(maxsize=1)
def load_config(path: pathlib.Path | None = None) -> AppConfig:
    """Load sync and vendor configuration from YAML."""
    config_path = path or pathlib.Path(os.getenv("FLEETSYNC_CONFIG", str(DEFAULT_CONFIG_PATH)))
    raw = yaml.safe_load(config_path.read_text()) or {}
    return AppConfig(**raw)
