"""Provider test, full sync and location refresh.

Three operations run against configured GPS providers:

* **test** checks credentials and records the provider's connection status;
* **sync** reconciles the vendor's trailer list with local records, creating,
  updating and marking stale trailers disconnected;
* **refresh** moves existing trailers only, one user at a time, and reports
  progress to the user's notification stream.

Failures at the per-asset, per-provider and per-user boundaries are logged
and counted; they never abort the surrounding loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from fleetsync.core.config import SyncSettings
from fleetsync.core.constants import GpsStatus, LocationSource, ProviderStatus
from fleetsync.core.exceptions import (
    AssetNotFoundError,
    CredentialError,
    DataError,
    ProviderNotFoundError,
    UserNotFoundError,
)
from fleetsync.logging import run_context
from fleetsync.providers.base import AssetRecord, ConnectionTestResult, LocationSample, unit_number_for
from fleetsync.providers.gateway import ProviderGateway
from fleetsync.storage.models import GpsProvider, Trailer
from fleetsync.storage.repository import EntityRepository
from fleetsync.telemetry.events import record_event

from .conflict import AddressLookup, LocationUpdate, apply_location_update, utcnow
from .maintenance import compute_inspection_alerts
from .notifications import NotificationHub

logger = logging.getLogger("fleetsync.orchestrator")


@dataclass
class SyncResult:
    provider_id: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    disconnected: int = 0
    total_fetched: int = 0
    duration: float = 0.0
    message: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["success"] = self.success
        return payload


@dataclass
class RefreshResult:
    user_id: str
    trigger: str
    in_progress: bool = False
    providers: int = 0
    trailers_processed: int = 0
    locations_updated: int = 0
    skipped: int = 0
    duration: float = 0.0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncOrchestrator:
    def __init__(
        self,
        repository: EntityRepository,
        gateway: ProviderGateway,
        geocoder: AddressLookup | None = None,
        notifications: NotificationHub | None = None,
        *,
        settings: SyncSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository
        self._gateway = gateway
        self._geocoder = geocoder
        self._notifications = notifications
        self._settings = settings or SyncSettings()
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic
        self._guard_lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._last_refresh: dict[str, datetime] = {}
        self._tasks: set[asyncio.Task] = set()

    # -- test ---------------------------------------------------------------

    async def test_provider(
        self, provider_id: str, provider: GpsProvider | None = None
    ) -> ConnectionTestResult:
        """Check a provider's credentials and store the resulting status.

        Asset records are never touched.
        """
        provider = provider or self._require_provider(provider_id)

        try:
            credentials = self._gateway.decrypt_credentials(provider)
        except CredentialError as exc:
            result = ConnectionTestResult(success=False, error=exc.message)
        else:
            result = await self._gateway.test_connection(
                provider.type, credentials, provider_id=provider.id
            )

        if result.success:
            self._repository.update_provider_status(
                provider.id,
                ProviderStatus.CONNECTED.value,
                trailer_count=result.trailer_count,
            )
        else:
            self._repository.update_provider_status(
                provider.id,
                ProviderStatus.DISCONNECTED.value,
                error_message=result.error,
                trailer_count=0,
            )

        logger.info(
            "Provider tested",
            extra={"event": "provider_test", "provider_id": provider.id, "success": result.success},
        )
        record_event(
            "provider_test",
            "INFO" if result.success else "WARNING",
            message=result.message or result.error,
            provider_id=provider.id,
            tenant_id=provider.tenant_id,
            meta={"trailer_count": result.trailer_count},
        )
        return result

    # -- sync ---------------------------------------------------------------

    async def sync_provider(
        self, provider_id: str, provider: GpsProvider | None = None
    ) -> SyncResult:
        """Reconcile the provider's full trailer list with local records.

        A failed fetch marks the provider disconnected and re-raises.
        """
        provider = provider or self._require_provider(provider_id)
        started = self._monotonic()

        with run_context("sync"):
            try:
                records = await self._gateway.fetch_full_data(provider)
            except Exception as exc:
                message = getattr(exc, "message", None) or str(exc)
                logger.error(
                    "Provider sync failed",
                    extra={"event": "provider_sync_error", "provider_id": provider.id, "error_message": message},
                )
                self._repository.update_provider_status(
                    provider.id,
                    ProviderStatus.DISCONNECTED.value,
                    error_message=message,
                    trailer_count=0,
                )
                record_event(
                    "provider_sync_error",
                    "ERROR",
                    message=message,
                    provider_id=provider.id,
                    tenant_id=provider.tenant_id,
                )
                raise

            if not records:
                self._repository.update_provider_status(
                    provider.id,
                    ProviderStatus.DISCONNECTED.value,
                    error_message="No trailers found",
                    trailer_count=0,
                )
                logger.warning(
                    "No trailers found for provider",
                    extra={"event": "provider_sync_empty", "provider_id": provider.id},
                )
                return SyncResult(provider_id=provider.id, message="No trailers found")

            try:
                result = await self._reconcile(provider, records)
            except Exception as exc:
                logger.exception(
                    "Provider reconciliation failed",
                    extra={"event": "provider_sync_error", "provider_id": provider.id},
                )
                self._repository.update_provider_status(
                    provider.id, ProviderStatus.ERROR.value, error_message=str(exc)
                )
                raise

            result.duration = self._monotonic() - started
            self._repository.update_provider_status(
                provider.id,
                ProviderStatus.CONNECTED.value,
                trailer_count=len(records),
            )
            logger.info(
                "Provider synced",
                extra={
                    "event": "provider_sync",
                    "provider_id": provider.id,
                    "created": result.created,
                    "updated": result.updated,
                    "disconnected": result.disconnected,
                    "skipped": result.skipped,
                },
            )
            record_event(
                "provider_sync",
                "INFO" if result.success else "WARNING",
                message=f"Created {result.created}, updated {result.updated}",
                provider_id=provider.id,
                tenant_id=provider.tenant_id,
                meta=result.to_dict(),
            )
            return result

    async def _reconcile(self, provider: GpsProvider, records: list[AssetRecord]) -> SyncResult:
        result = SyncResult(provider_id=provider.id, total_fetched=len(records))
        known = self._repository.list_assets_for_company(provider.company_id, provider_id=provider.id)
        touched: set[int] = set()

        for record in records:
            try:
                existing = self._match_asset(provider, record)
                if existing is None:
                    outcome = self._repository.create_asset(record)
                    if not outcome.is_duplicate:
                        result.created += 1
                        touched.add(outcome.asset.id)
                        continue
                    existing = outcome.asset
                await self._update_asset(existing, record)
                result.updated += 1
                touched.add(existing.id)
            except Exception as exc:
                logger.exception(
                    "Failed to store trailer",
                    extra={"event": "trailer_sync_error", "provider_id": provider.id, "device_id": record.id},
                )
                result.skipped += 1
                result.errors.append(f"{record.id}: {exc}")

        for asset in known:
            if asset.id in touched:
                continue
            try:
                self._repository.mark_asset_disconnected(asset.id)
                result.disconnected += 1
            except Exception:
                logger.exception(
                    "Failed to mark trailer disconnected",
                    extra={"provider_id": provider.id, "trailer_id": asset.id},
                )
        return result

    def _match_asset(self, provider: GpsProvider, record: AssetRecord) -> Trailer | None:
        # Vendors disagree on which identifier is stable, so try each in turn.
        asset = self._repository.find_asset_by_device_id(record.id, provider.company_id)
        if asset is None and record.vin:
            asset = self._repository.find_asset_by_device_id(record.vin, provider.company_id)
        if asset is None:
            asset = self._repository.find_asset_by_unit_number_in_tenant(
                unit_number_for(record), provider.tenant_id
            )
        return asset

    async def _update_asset(self, asset: Trailer, record: AssetRecord) -> None:
        if record.has_location:
            try:
                await apply_location_update(
                    self._repository,
                    self._geocoder,
                    asset.id,
                    LocationUpdate(
                        latitude=record.latitude,
                        longitude=record.longitude,
                        address=record.address,
                        source=LocationSource.GPS,
                        observed_at=record.last_update,
                    ),
                    clock=self._clock,
                )
            except DataError:
                logger.warning(
                    "Ignoring malformed location",
                    extra={"trailer_id": asset.id, "device_id": record.id},
                )

        fields = {
            "vin": record.vin,
            "make": record.make,
            "model": record.model,
            "year": record.year,
            "plate": record.plate,
            "status": record.status,
            "provider_id": record.provider_id,
            "external_id": record.id,
        }
        fields = {key: value for key, value in fields.items() if value is not None}
        fields["gps_status"] = GpsStatus.CONNECTED.value
        fields["last_sync"] = self._clock()
        self._repository.update_asset(asset.id, fields)

    # -- refresh ------------------------------------------------------------

    def _claim(self, user_id: str) -> bool:
        with self._guard_lock:
            if user_id in self._in_flight:
                return False
            self._in_flight.add(user_id)
            return True

    def _release(self, user_id: str) -> None:
        with self._guard_lock:
            self._in_flight.discard(user_id)

    def is_refreshing(self, user_id: str) -> bool:
        with self._guard_lock:
            return user_id in self._in_flight

    async def refresh_locations(self, user_id: str) -> dict[str, Any]:
        """Start a background location refresh and return immediately.

        The run's outcome is delivered through the user's notification stream.
        """
        if not self._claim(user_id):
            return {
                "success": True,
                "message": "Location refresh already in progress",
                "in_progress": True,
            }

        try:
            if self._repository.get_user(user_id) is None:
                raise UserNotFoundError(user_id)
            companies = self._repository.list_user_companies(user_id)
            providers = self._repository.list_user_providers(user_id)
            task = asyncio.create_task(
                self._refresh_claimed(user_id, "manual_refresh"),
                name=f"refresh:{user_id}",
            )
        except BaseException:
            self._release(user_id)
            raise

        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_refresh_done(user_id, done))
        return {
            "success": True,
            "message": "Location refresh started",
            "in_progress": False,
            "stats": {"companies": len(companies), "providers": len(providers)},
        }

    def _on_refresh_done(self, user_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            # A task cancelled before it started never reached its finally block.
            self._release(user_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Location refresh task crashed",
                extra={"event": "refresh_error", "user_id": user_id},
                exc_info=exc,
            )
            self._notify(user_id, "error", error=str(exc))

    async def update_asset_locations(
        self, user_id: str, trigger: str = "scheduled_location_update"
    ) -> RefreshResult:
        """Refresh every provider of ``user_id`` unless a run is already in flight."""
        if not self._claim(user_id):
            logger.debug("Refresh already running", extra={"user_id": user_id})
            return RefreshResult(user_id=user_id, trigger=trigger, in_progress=True)
        return await self._refresh_claimed(user_id, trigger)

    async def _refresh_claimed(self, user_id: str, trigger: str) -> RefreshResult:
        started = self._monotonic()
        result = RefreshResult(user_id=user_id, trigger=trigger)
        try:
            with run_context("refresh"):
                self._notify(user_id, "start", message=f"Starting {trigger} location refresh...")
                providers = self._repository.list_user_providers(user_id)
                result.providers = len(providers)

                for provider in providers:
                    try:
                        await self._sleep(self._settings.between_providers)
                        samples = await self._gateway.fetch_locations_only(provider)
                        processed, updated, skipped = await self._apply_samples(provider, samples)
                    except Exception as exc:
                        logger.exception(
                            "Location refresh failed for provider",
                            extra={"event": "provider_refresh_error", "provider_id": provider.id},
                        )
                        result.errors.append(f"{provider.name}: {getattr(exc, 'message', None) or exc}")
                        continue

                    result.trailers_processed += processed
                    result.locations_updated += updated
                    result.skipped += skipped
                    self._notify(
                        user_id,
                        "progress",
                        provider_id=provider.id,
                        provider=provider.name,
                        processed=processed,
                        updated=updated,
                    )

                result.duration = self._monotonic() - started
                self._last_refresh[user_id] = self._clock()
                self._notify(
                    user_id,
                    "complete",
                    message="Location refresh completed successfully",
                    stats={
                        "trailersProcessed": result.trailers_processed,
                        "locationsUpdated": result.locations_updated,
                        "duration": result.duration,
                    },
                )
                logger.info(
                    "Location refresh completed",
                    extra={"event": "refresh_complete", **result.to_dict()},
                )
        except Exception as exc:
            logger.exception("Location refresh failed", extra={"event": "refresh_error", "user_id": user_id})
            result.errors.append(str(exc))
            self._notify(user_id, "error", error=str(exc))
            record_event("refresh_error", "ERROR", message=str(exc), user_id=user_id)
        finally:
            self._release(user_id)
        return result

    async def _apply_samples(
        self, provider: GpsProvider, samples: list[LocationSample]
    ) -> tuple[int, int, int]:
        updated = skipped = 0
        for sample in samples:
            asset = self._repository.find_asset_by_device_id(sample.id, provider.company_id)
            if asset is None and sample.vin:
                asset = self._repository.find_asset_by_device_id(sample.vin, provider.company_id)
            if asset is None:
                # Refresh never creates trailers; a full sync picks these up.
                skipped += 1
                continue

            try:
                outcome = await apply_location_update(
                    self._repository,
                    self._geocoder,
                    asset.id,
                    LocationUpdate(
                        latitude=sample.latitude,
                        longitude=sample.longitude,
                        address=sample.address,
                        source=LocationSource.GPS,
                        observed_at=sample.timestamp,
                    ),
                    clock=self._clock,
                )
            except (DataError, AssetNotFoundError) as exc:
                logger.warning(
                    "Skipping location sample",
                    extra={"provider_id": provider.id, "device_id": sample.id, "reason": str(exc)},
                )
                skipped += 1
                continue
            except Exception:
                logger.exception(
                    "Failed to apply location sample",
                    extra={"provider_id": provider.id, "device_id": sample.id},
                )
                skipped += 1
                continue

            if outcome.applied:
                updated += 1
        return len(samples), updated, skipped

    def get_refresh_status(self, user_id: str) -> dict[str, Any]:
        last = self._last_refresh.get(user_id)
        return {
            "in_progress": self.is_refreshing(user_id),
            "last_refresh": last.isoformat() if last else None,
            "active_connections": bool(self._notifications and self._notifications.has_connection(user_id)),
        }

    # -- maintenance --------------------------------------------------------

    async def update_maintenance_alerts(self, user_id: str) -> int:
        """Recompute inspection alerts for every trailer the user can see."""
        today = self._clock().date()
        total = 0
        for company in self._repository.list_user_companies(user_id):
            try:
                assets = self._repository.list_assets_for_company(company.id)
            except Exception:
                logger.exception("Failed to load trailers", extra={"company_id": company.id})
                continue
            for asset in assets:
                try:
                    alerts = compute_inspection_alerts(asset, today)
                    self._repository.replace_open_alerts(asset.id, alerts)
                except Exception:
                    logger.exception("Failed to update maintenance alerts", extra={"trailer_id": asset.id})
                    continue
                total += len(alerts)
        logger.debug("Maintenance alerts updated", extra={"user_id": user_id, "alerts": total})
        return total

    # -- helpers ------------------------------------------------------------

    def _require_provider(self, provider_id: str) -> GpsProvider:
        provider = self._repository.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def _notify(self, user_id: str, event_type: str, **fields: Any) -> None:
        if self._notifications is None:
            return
        self._notifications.notify(
            user_id, {"type": event_type, "operation": "location_refresh", **fields}
        )


__all__ = ["RefreshResult", "SyncOrchestrator", "SyncResult"]
