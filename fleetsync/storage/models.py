"""ORM models for fleet entities, sync telemetry and vendor call logs."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=True)
    email = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)


class UserCompany(Base):
    __tablename__ = "user_companies"
    __table_args__ = (UniqueConstraint("user_id", "company_id", name="uq_user_companies"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    company_id = Column(String(64), ForeignKey("companies.id"), nullable=False)


class GpsProvider(Base):
    __tablename__ = "gps_providers"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    company_id = Column(String(64), ForeignKey("companies.id"), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    credentials_encrypted = Column(Text)
    status = Column(String(16), nullable=False, default="disconnected")
    last_sync = Column(DateTime(timezone=True))
    error_message = Column(String(512))
    trailer_count = Column(Integer, nullable=False, default=0)


class Trailer(Base):
    __tablename__ = "trailers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "unit_number", name="uq_trailers_tenant_unit_number"),
        Index("ix_trailers_company", "company_id"),
        Index("ix_trailers_external_id", "external_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    company_id = Column(String(64), ForeignKey("companies.id"), nullable=False)
    provider_id = Column(String(64))
    external_id = Column(String(128))
    unit_number = Column(String(64), nullable=False)
    vin = Column(String(64))
    make = Column(String(64))
    model = Column(String(64))
    year = Column(Integer)
    plate = Column(String(32))
    status = Column(String(16), nullable=False, default="available")
    gps_status = Column(String(16), nullable=False, default="disconnected")

    last_latitude = Column(Float)
    last_longitude = Column(Float)
    last_address = Column(String(512))
    location_source = Column(String(16), nullable=False, default="gps")
    location_updated_at = Column(DateTime(timezone=True))
    last_gps_update = Column(DateTime(timezone=True))
    last_sync = Column(DateTime(timezone=True))
    manual_location_override = Column(Boolean, nullable=False, default=False)
    manual_location_notes = Column(Text)

    last_annual_inspection = Column(Date)
    next_annual_inspection_due = Column(Date)
    last_midtrip_inspection = Column(Date)
    next_midtrip_inspection_due = Column(Date)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class MaintenanceAlert(Base):
    __tablename__ = "maintenance_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trailer_id = Column(Integer, ForeignKey("trailers.id"), nullable=False)
    type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(String(512))
    due_date = Column(Date)
    is_resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SyncEvent(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    level = Column(String(16), nullable=False)
    kind = Column(String(64), nullable=False)
    request_id = Column(String(64))
    provider_id = Column(String(64))
    tenant_id = Column(String(64))
    user_id = Column(String(64))
    message = Column(String(512))
    meta = Column(Text)

    __table_args__ = (
        Index("ix_events_ts", "ts"),
        Index("ix_events_kind_ts", "kind", "ts"),
    )


class ProviderLog(Base):
    __tablename__ = "provider_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    provider_id = Column(String(64), nullable=False)
    request_id = Column(String(64))
    request_body = Column(Text)
    response_body = Column(Text)

    __table_args__ = (Index("ix_provider_logs_provider_created", "provider_id", "created_at"),)
