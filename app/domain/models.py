from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, String, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from app.domain.permissions import Role
from app.domain.state_machine import (
    AssignmentDecision,
    AssignmentRequestStatus,
    VoucherAction,
    VoucherState,
)

AuditScalar = str | int | float | bool | None


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLogEntry(SQLModel, table=True):
    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_resource", "resource_type", "resource_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str = Field(index=True)
    resource_type: str = Field(index=True)
    resource_id: str = Field(index=True)
    details: dict[str, AuditScalar] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    ip_address: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class MileageSource(StrEnum):
    PLACEHOLDER = "placeholder"
    LOOKUP = "lookup"
    MANUAL = "manual"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    role: Role = Field(sa_column=Column(String(32), nullable=False, index=True))
    position: str | None = None
    assigned_supervisor_id: str | None = Field(default=None, foreign_key="users.id", index=True)
    fls_supervisor_id: str | None = Field(default=None, foreign_key="users.id", index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Trip(SQLModel, table=True):
    __tablename__ = "trips"
    __table_args__ = (
        Index("ix_trips_owner_date", "owner_id", "trip_date"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    owner_id: str = Field(foreign_key="users.id", index=True)
    trip_date: date = Field(index=True)
    from_location: str | None = None
    to_location: str | None = None
    purpose: str | None = None
    miles_calculated: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    mileage_source: MileageSource = Field(
        default=MileageSource.PLACEHOLDER,
        sa_column=Column(String(16), nullable=False),
    )
    lodging_cost: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    meals_cost: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    other_expenses: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Voucher(SQLModel, table=True):
    __tablename__ = "vouchers"
    __table_args__ = (
        UniqueConstraint("owner_id", "month", "year", name="uq_vouchers_owner_period"),
        Index("ix_vouchers_status", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    owner_id: str = Field(foreign_key="users.id", index=True)
    month: int
    year: int
    status: VoucherState = Field(
        default=VoucherState.DRAFT,
        sa_column=Column(String(32), nullable=False),
    )
    total_miles: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_lodging: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_meals: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_other: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    # Frozen at submission; null while the voucher is a draft.
    mileage_rate: Decimal | None = Field(default=None, max_digits=6, decimal_places=4)
    version: int = Field(default=1)
    submitted_at: datetime | None = None
    supervisor_id: str | None = Field(default=None, foreign_key="users.id")
    supervisor_approved_at: datetime | None = None
    fleet_manager_id: str | None = Field(default=None, foreign_key="users.id")
    fleet_approved_at: datetime | None = None
    rejected_by: str | None = Field(default=None, foreign_key="users.id")
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class VoucherTrip(SQLModel, table=True):
    __tablename__ = "voucher_trips"

    voucher_id: str = Field(foreign_key="vouchers.id", primary_key=True)
    trip_id: str = Field(foreign_key="trips.id", primary_key=True, index=True)


class MileageRate(SQLModel, table=True):
    __tablename__ = "mileage_rates"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    rate: Decimal = Field(max_digits=6, decimal_places=4)
    effective_from: date = Field(index=True)
    effective_to: date | None = Field(default=None, index=True)
    notes: str | None = None
    created_by: str | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AssignmentRequest(SQLModel, table=True):
    __tablename__ = "assignment_requests"
    __table_args__ = (
        Index(
            "uq_assignment_requests_pending_inspector",
            "inspector_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_assignment_requests_status", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    inspector_id: str = Field(foreign_key="users.id", index=True)
    requesting_supervisor_id: str = Field(foreign_key="users.id", index=True)
    status: AssignmentRequestStatus = Field(
        default=AssignmentRequestStatus.PENDING,
        sa_column=Column(String(16), nullable=False),
    )
    reason: str
    notes: str | None = None
    cancel_reason: str | None = None
    version: int = Field(default=1)
    requested_at: datetime = Field(default_factory=now_utc, index=True)
    processed_by: str | None = Field(default=None, foreign_key="users.id")
    processed_at: datetime | None = None


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class DevLoginRequest(BaseModel):
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserCreate(BaseModel):
    username: str
    password: str
    role: Role
    position: str | None = None
    assigned_supervisor_id: str | None = None
    fls_supervisor_id: str | None = None
    is_active: bool = True


class UserProfileUpdate(BaseModel):
    position: str | None = None
    fls_supervisor_id: str | None = None
    password: str | None = None


class UserRead(ORMReadModel):
    id: str
    username: str
    role: Role
    position: str | None
    assigned_supervisor_id: str | None
    fls_supervisor_id: str | None
    is_active: bool
    created_at: datetime


class TripCreate(BaseModel):
    trip_date: date
    from_location: str | None = None
    to_location: str | None = None
    purpose: str | None = None
    miles_calculated: Decimal | None = PydanticField(default=None, ge=0)
    lodging_cost: Decimal = PydanticField(default=Decimal("0"), ge=0)
    meals_cost: Decimal = PydanticField(default=Decimal("0"), ge=0)
    other_expenses: Decimal = PydanticField(default=Decimal("0"), ge=0)


class TripUpdate(BaseModel):
    trip_date: date | None = None
    from_location: str | None = None
    to_location: str | None = None
    purpose: str | None = None
    miles_calculated: Decimal | None = PydanticField(default=None, ge=0)
    lodging_cost: Decimal | None = PydanticField(default=None, ge=0)
    meals_cost: Decimal | None = PydanticField(default=None, ge=0)
    other_expenses: Decimal | None = PydanticField(default=None, ge=0)


class TripMileageUpdate(BaseModel):
    miles: Decimal = PydanticField(ge=0)
    source: MileageSource = MileageSource.LOOKUP


class MileageLookupRequest(BaseModel):
    avoid_tolls: bool = False


class TripRead(ORMReadModel):
    id: str
    owner_id: str
    trip_date: date
    from_location: str | None
    to_location: str | None
    purpose: str | None
    miles_calculated: Decimal
    mileage_source: MileageSource
    lodging_cost: Decimal
    meals_cost: Decimal
    other_expenses: Decimal
    created_at: datetime
    updated_at: datetime


class VoucherCreate(BaseModel):
    month: int
    year: int


class VoucherRejectRequest(BaseModel):
    reason: str


class VoucherRead(ORMReadModel):
    id: str
    owner_id: str
    month: int
    year: int
    status: VoucherState
    trip_count: int = 0
    total_miles: Decimal
    total_lodging: Decimal
    total_meals: Decimal
    total_other: Decimal
    total_amount: Decimal
    mileage_rate: Decimal | None
    mileage_amount: Decimal = Decimal("0")
    version: int
    submitted_at: datetime | None
    supervisor_id: str | None
    supervisor_approved_at: datetime | None
    fleet_manager_id: str | None
    fleet_approved_at: datetime | None
    rejected_by: str | None
    rejected_at: datetime | None
    rejection_reason: str | None
    allowed_actions: list[VoucherAction] = PydanticField(default_factory=list)
    created_at: datetime
    updated_at: datetime


class AssignmentRequestCreate(BaseModel):
    inspector_id: str
    reason: str


class AssignmentProcessRequest(BaseModel):
    decision: AssignmentDecision
    notes: str | None = None


class AssignmentCancelRequest(BaseModel):
    reason: str | None = None


class AssignmentRequestRead(ORMReadModel):
    id: str
    inspector_id: str
    requesting_supervisor_id: str
    status: AssignmentRequestStatus
    reason: str
    notes: str | None
    cancel_reason: str | None
    requested_at: datetime
    processed_by: str | None
    processed_at: datetime | None


class AssignmentRead(BaseModel):
    inspector_id: str
    assigned_supervisor_id: str | None
    assigned: bool
    pending_request_id: str | None = None


class AuditLogRead(ORMReadModel):
    id: int
    actor_id: str | None
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, AuditScalar]
    ip_address: str | None
    created_at: datetime


class AuditLogPage(BaseModel):
    items: list[AuditLogRead]
    total: int
    limit: int
    offset: int


class AuditCount(BaseModel):
    key: str
    count: int


class AuditStatsRead(BaseModel):
    total: int
    by_action: list[AuditCount]
    by_resource_type: list[AuditCount]


class MileageRateCreate(BaseModel):
    rate: Decimal
    effective_from: date
    effective_to: date | None = None
    notes: str | None = None


class MileageRateRead(ORMReadModel):
    id: str
    rate: Decimal
    effective_from: date
    effective_to: date | None
    notes: str | None
    created_by: str | None
    created_at: datetime


class MileageRateEffectiveRead(BaseModel):
    on_date: date
    rate: Decimal
