"""Entity repository used by the sync engine.

The engine only reads entities and proposes mutations through the calls
below; table lifecycle stays with :mod:`fleetsync.storage.database`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from fleetsync.core.constants import GpsStatus, LocationSource
from fleetsync.providers.base import AssetRecord, unit_number_for

from .database import session_scope
from .models import Company, GpsProvider, MaintenanceAlert, Trailer, User, UserCompany

logger = logging.getLogger("fleetsync.repository")

# Columns a provider sync may overwrite outside of conflict resolution.
ASSET_FIELDS = frozenset(
    {"vin", "make", "model", "year", "plate", "status", "gps_status", "provider_id", "external_id", "last_sync"}
)

LOCATION_FIELDS = frozenset(
    {
        "last_latitude",
        "last_longitude",
        "last_address",
        "location_source",
        "location_updated_at",
        "last_gps_update",
        "last_sync",
        "manual_location_override",
        "manual_location_notes",
        "updated_at",
    }
)


class WriteStatus(str, Enum):
    OK = "ok"
    DUPLICATE_KEY = "duplicate_key"


@dataclass(frozen=True)
class WriteResult:
    """Outcome of an insert: the new row, or the row that already owns the key."""

    status: WriteStatus
    asset: Trailer

    @classmethod
    def ok(cls, asset: Trailer) -> "WriteResult":
        return cls(WriteStatus.OK, asset)

    @classmethod
    def duplicate(cls, existing: Trailer) -> "WriteResult":
        return cls(WriteStatus.DUPLICATE_KEY, existing)

    @property
    def is_duplicate(self) -> bool:
        return self.status is WriteStatus.DUPLICATE_KEY


class EntityRepository(Protocol):
    def get_user(self, user_id: str) -> User | None: ...

    def list_active_users(self, limit: int = 100) -> list[User]: ...

    def list_user_companies(self, user_id: str) -> list[Company]: ...

    def list_user_providers(self, user_id: str) -> list[GpsProvider]: ...

    def get_provider(self, provider_id: str) -> GpsProvider | None: ...

    def get_asset(self, asset_id: int) -> Trailer | None: ...

    def find_asset_by_device_id(self, device_id: str, company_id: str) -> Trailer | None: ...

    def find_asset_by_unit_number_in_tenant(self, unit_number: str, tenant_id: str) -> Trailer | None: ...

    def list_assets_for_company(self, company_id: str, provider_id: str | None = None) -> list[Trailer]: ...

    def create_asset(self, record: AssetRecord) -> WriteResult: ...

    def update_asset(self, asset_id: int, fields: dict[str, Any]) -> None: ...

    def write_location(self, asset_id: int, changes: dict[str, Any]) -> None: ...

    def mark_asset_disconnected(self, asset_id: int) -> None: ...

    def update_provider_status(
        self,
        provider_id: str,
        status: str,
        *,
        error_message: str | None = None,
        trailer_count: int | None = None,
        last_sync: datetime | None = None,
    ) -> None: ...

    def replace_open_alerts(self, asset_id: int, alerts: Sequence[dict[str, Any]]) -> None: ...


class SqlAlchemyRepository:
    """:class:`EntityRepository` over the service database."""

    def get_user(self, user_id: str) -> User | None:
        with session_scope() as session:
            return session.get(User, user_id)

    def list_active_users(self, limit: int = 100) -> list[User]:
        with session_scope() as session:
            stmt = select(User).where(User.is_active.is_(True)).order_by(User.id).limit(limit)
            return list(session.scalars(stmt).all())

    def list_user_companies(self, user_id: str) -> list[Company]:
        with session_scope() as session:
            stmt = (
                select(Company)
                .join(UserCompany, UserCompany.company_id == Company.id)
                .where(UserCompany.user_id == user_id)
                .order_by(Company.name)
            )
            return list(session.scalars(stmt).all())

    def list_user_providers(self, user_id: str) -> list[GpsProvider]:
        with session_scope() as session:
            company_ids = select(UserCompany.company_id).where(UserCompany.user_id == user_id)
            stmt = (
                select(GpsProvider)
                .where(GpsProvider.company_id.in_(company_ids))
                .order_by(GpsProvider.company_id, GpsProvider.name)
            )
            return list(session.scalars(stmt).all())

    def list_providers(self) -> list[GpsProvider]:
        with session_scope() as session:
            return list(session.scalars(select(GpsProvider).order_by(GpsProvider.name)).all())

    def get_provider(self, provider_id: str) -> GpsProvider | None:
        with session_scope() as session:
            return session.get(GpsProvider, provider_id)

    def get_asset(self, asset_id: int) -> Trailer | None:
        with session_scope() as session:
            return session.get(Trailer, asset_id)

    def find_asset_by_device_id(self, device_id: str, company_id: str) -> Trailer | None:
        """Match a vendor identifier against unit number, VIN or external id."""
        if not device_id:
            return None
        with session_scope() as session:
            stmt = (
                select(Trailer)
                .where(Trailer.company_id == company_id)
                .where(
                    or_(
                        Trailer.external_id == device_id,
                        Trailer.unit_number == device_id,
                        Trailer.vin == device_id,
                    )
                )
                .order_by(Trailer.id)
                .limit(1)
            )
            return session.scalar(stmt)

    def find_asset_by_unit_number_in_tenant(self, unit_number: str, tenant_id: str) -> Trailer | None:
        if not unit_number:
            return None
        with session_scope() as session:
            stmt = select(Trailer).where(
                Trailer.tenant_id == tenant_id, Trailer.unit_number == unit_number
            )
            return session.scalar(stmt)

    def list_assets_for_company(self, company_id: str, provider_id: str | None = None) -> list[Trailer]:
        with session_scope() as session:
            stmt = select(Trailer).where(Trailer.company_id == company_id)
            if provider_id is not None:
                stmt = stmt.where(Trailer.provider_id == provider_id)
            return list(session.scalars(stmt.order_by(Trailer.id)).all())

    def create_asset(self, record: AssetRecord) -> WriteResult:
        """Insert a trailer for ``record``.

        The tenant unit-number key is checked first; a concurrent insert that
        still trips the unique constraint is reported as a duplicate of the
        row that won.
        """
        unit_number = unit_number_for(record)
        existing = self.find_asset_by_unit_number_in_tenant(unit_number, record.tenant_id)
        if existing is not None:
            return WriteResult.duplicate(existing)

        now = datetime.now(timezone.utc)
        trailer = Trailer(
            tenant_id=record.tenant_id,
            company_id=record.company_id,
            provider_id=record.provider_id,
            external_id=record.id,
            unit_number=unit_number,
            vin=record.vin,
            make=record.make,
            model=record.model,
            year=record.year,
            plate=record.plate,
            status=record.status,
            gps_status=record.gps_status,
            last_latitude=record.latitude,
            last_longitude=record.longitude,
            last_address=record.address,
            location_source=LocationSource.GPS.value,
            location_updated_at=record.last_update or now,
            last_gps_update=record.last_update or now,
            last_sync=now,
            manual_location_override=False,
        )
        try:
            with session_scope() as session:
                session.add(trailer)
        except IntegrityError:
            existing = self.find_asset_by_unit_number_in_tenant(unit_number, record.tenant_id)
            if existing is None:
                raise
            logger.info(
                "Unit number claimed concurrently",
                extra={"event": "duplicate_unit_number", "unit_number": unit_number},
            )
            return WriteResult.duplicate(existing)
        return WriteResult.ok(trailer)

    def update_asset(self, asset_id: int, fields: dict[str, Any]) -> None:
        values = {key: value for key, value in fields.items() if key in ASSET_FIELDS}
        if not values:
            return
        values["updated_at"] = datetime.now(timezone.utc)
        with session_scope() as session:
            session.execute(update(Trailer).where(Trailer.id == asset_id).values(**values))

    def write_location(self, asset_id: int, changes: dict[str, Any]) -> None:
        unknown = set(changes) - LOCATION_FIELDS
        if unknown:
            raise ValueError(f"Not location fields: {sorted(unknown)}")
        with session_scope() as session:
            session.execute(update(Trailer).where(Trailer.id == asset_id).values(**changes))

    def mark_asset_disconnected(self, asset_id: int) -> None:
        with session_scope() as session:
            session.execute(
                update(Trailer)
                .where(Trailer.id == asset_id)
                .values(gps_status=GpsStatus.DISCONNECTED.value, updated_at=datetime.now(timezone.utc))
            )

    def update_provider_status(
        self,
        provider_id: str,
        status: str,
        *,
        error_message: str | None = None,
        trailer_count: int | None = None,
        last_sync: datetime | None = None,
    ) -> None:
        values: dict[str, Any] = {
            "status": status,
            "error_message": error_message,
            "last_sync": last_sync or datetime.now(timezone.utc),
        }
        if trailer_count is not None:
            values["trailer_count"] = trailer_count
        with session_scope() as session:
            session.execute(update(GpsProvider).where(GpsProvider.id == provider_id).values(**values))

    def replace_open_alerts(self, asset_id: int, alerts: Sequence[dict[str, Any]]) -> None:
        with session_scope() as session:
            session.execute(
                delete(MaintenanceAlert).where(
                    MaintenanceAlert.trailer_id == asset_id,
                    MaintenanceAlert.is_resolved.is_(False),
                )
            )
            for alert in alerts:
                session.add(MaintenanceAlert(trailer_id=asset_id, **alert))

    def list_open_alerts(self, asset_id: int) -> list[MaintenanceAlert]:
        with session_scope() as session:
            stmt = (
                select(MaintenanceAlert)
                .where(MaintenanceAlert.trailer_id == asset_id, MaintenanceAlert.is_resolved.is_(False))
                .order_by(MaintenanceAlert.id)
            )
            return list(session.scalars(stmt).all())


__all__ = ["EntityRepository", "SqlAlchemyRepository", "WriteResult", "WriteStatus"]
