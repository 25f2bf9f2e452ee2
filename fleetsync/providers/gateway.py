"""Uniform access to GPS vendors: adapter lookup, credentials, test retry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fleetsync.core.config import AppConfig, load_config
from fleetsync.core.crypto import CredentialCipher
from fleetsync.core.exceptions import (
    CredentialError,
    ProviderAuthError,
    ProviderError,
    UnsupportedProviderError,
)
from fleetsync.storage.models import GpsProvider

from .base import AssetRecord, ConnectionTestResult, LocationSample, ProviderAdapter
from .samsara import SamsaraProvider
from .skybitz import SkyBitzProvider
from .spireon import SpireonProvider

logger = logging.getLogger("fleetsync.gateway")


class ProviderGateway:
    """Routes provider records to the adapter for their vendor type."""

    _adapter_map: dict[str, type[ProviderAdapter]] = {
        "samsara": SamsaraProvider,
        "skybitz": SkyBitzProvider,
        "spireon": SpireonProvider,
    }

    def __init__(
        self,
        config: AppConfig | None = None,
        cipher: CredentialCipher | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config or load_config()
        self._cipher = cipher or CredentialCipher()
        self._sleep = sleep
        self._instances: dict[str, ProviderAdapter] = {}

    def supported_types(self) -> list[str]:
        return sorted(self._adapter_map)

    def get_adapter(self, vendor_type: str) -> ProviderAdapter:
        key = (vendor_type or "").lower()
        if key not in self._instances:
            adapter_cls = self._adapter_map.get(key)
            vendor = self._config.vendor(key)
            if adapter_cls is None or vendor is None:
                raise UnsupportedProviderError(vendor_type)
            self._instances[key] = adapter_cls(vendor)
        return self._instances[key]

    def decrypt_credentials(self, provider: GpsProvider) -> dict[str, Any]:
        if not provider.credentials_encrypted:
            raise CredentialError(provider.id, message="No credentials stored")
        try:
            credentials = self._cipher.decrypt(provider.credentials_encrypted)
        except ValueError as exc:
            raise CredentialError(provider.id) from exc
        credentials.setdefault("providerName", provider.name)
        return credentials

    async def test_connection(
        self,
        vendor_type: str,
        credentials: dict[str, Any],
        *,
        provider_id: str | None = None,
    ) -> ConnectionTestResult:
        """Try the vendor with ``credentials``; never raises.

        Transient failures are retried ``test_attempts`` times with a fixed
        backoff. Authentication failures are reported immediately.
        """
        attempts = max(1, self._config.sync.test_attempts)
        backoff = self._config.sync.test_backoff
        owner = provider_id or vendor_type

        try:
            adapter = self.get_adapter(vendor_type)
        except UnsupportedProviderError as exc:
            return ConnectionTestResult(success=False, error=exc.message)

        last_error: ProviderError | None = None
        for attempt in range(1, attempts + 1):
            try:
                records = await adapter.fetch_data(credentials, owner)
            except (ProviderAuthError, CredentialError) as exc:
                logger.warning(
                    "Provider rejected credentials",
                    extra={"event": "provider_test_auth", "provider_id": owner, "error_message": exc.message},
                )
                return ConnectionTestResult(success=False, error=exc.message)
            except ProviderError as exc:
                last_error = exc
                logger.warning(
                    "Provider test attempt failed",
                    extra={
                        "event": "provider_test_retry",
                        "provider_id": owner,
                        "attempt": attempt,
                        "error_message": exc.message,
                    },
                )
                if attempt < attempts:
                    await self._sleep(backoff)
                continue
            except Exception as exc:
                logger.exception(
                    "Provider test failed unexpectedly",
                    extra={"event": "provider_test_error", "provider_id": owner},
                )
                return ConnectionTestResult(success=False, error=f"Unexpected error: {exc}")

            count = len(records)
            return ConnectionTestResult(
                success=True,
                trailer_count=count,
                message=f"Successfully connected! Found {count} trailers.",
            )

        reason = last_error.message if last_error else "Unknown error"
        return ConnectionTestResult(
            success=False,
            error=f"Connection failed after {attempts} attempts: {reason}",
        )

    async def fetch_full_data(self, provider: GpsProvider) -> list[AssetRecord]:
        """Fetch every trailer for ``provider``, stamped with its ownership ids."""
        adapter = self.get_adapter(provider.type)
        credentials = self.decrypt_credentials(provider)
        records = await adapter.fetch_data(credentials, provider.id)
        return [
            record.model_copy(
                update={
                    "provider_id": provider.id,
                    "company_id": provider.company_id,
                    "tenant_id": provider.tenant_id,
                }
            )
            for record in records
        ]

    async def fetch_locations_only(self, provider: GpsProvider) -> list[LocationSample]:
        records = await self.fetch_full_data(provider)
        return [LocationSample.from_record(record) for record in records]


__all__ = ["ProviderGateway"]
