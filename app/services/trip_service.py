from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlmodel import Session, col, select

from app.adapters.base import MileageAdapter, MileageLookupError
from app.domain.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.domain.models import MileageSource, Trip, TripCreate, TripUpdate, now_utc
from app.domain.permissions import ALL_VOUCHER_VIEWER_ROLES, Actor, Role
from app.domain.state_machine import VoucherState
from app.domain.totals import period_range, to_cents
from app.infra.audit import AuditRecorder
from app.infra.db import get_engine
from app.services.assignment_service import AssignmentDirectory
from app.services.voucher_service import VoucherService, validate_year

logger = logging.getLogger("app.services.trips")

AUDITED_TRIP_FIELDS = (
    "trip_date",
    "from_location",
    "to_location",
    "purpose",
    "miles_calculated",
    "lodging_cost",
    "meals_cost",
    "other_expenses",
)


class TripService:
    def __init__(self) -> None:
        self._audit = AuditRecorder()
        self._vouchers = VoucherService()
        self._directory = AssignmentDirectory()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_trip(self, session: Session, trip_id: str) -> Trip:
        trip = session.get(Trip, trip_id)
        if trip is None:
            raise NotFoundError("trip not found", trip_id=trip_id)
        return trip

    def _get_owned_trip(self, session: Session, actor: Actor, trip_id: str) -> Trip:
        trip = self._get_trip(session, trip_id)
        if trip.owner_id != actor.user_id:
            raise PermissionDeniedError("only the trip owner may change this trip", trip_id=trip_id)
        return trip

    def _ensure_period_open(self, session: Session, owner_id: str, trip_date: date) -> None:
        voucher = self._vouchers.period_voucher(session, owner_id, trip_date.month, trip_date.year)
        if voucher is not None and VoucherState(voucher.status) != VoucherState.DRAFT:
            raise ValidationError(
                "the voucher for this period is no longer a draft",
                field="trip_date",
                voucher_id=voucher.id,
                current_state=VoucherState(voucher.status),
            )

    def _ensure_mutable(self, session: Session, trip: Trip) -> None:
        frozen_in = self._vouchers.frozen_voucher_id(session, trip.id)
        if frozen_in is not None:
            raise ConflictError("trip is part of a submitted voucher", trip_id=trip.id, voucher_id=frozen_in)
        voucher = self._vouchers.period_voucher(session, trip.owner_id, trip.trip_date.month, trip.trip_date.year)
        if voucher is not None and VoucherState(voucher.status) != VoucherState.DRAFT:
            raise ConflictError(
                "the voucher for this trip's period is no longer a draft",
                trip_id=trip.id,
                voucher_id=voucher.id,
                current_state=VoucherState(voucher.status),
            )

    def _refresh_periods(self, session: Session, owner_id: str, *days: date) -> None:
        seen: set[tuple[int, int]] = set()
        for day in days:
            if (day.month, day.year) in seen:
                continue
            seen.add((day.month, day.year))
            self._vouchers.refresh_draft_totals(session, owner_id, day)

    def _can_view(self, session: Session, actor: Actor, trip: Trip) -> bool:
        if trip.owner_id == actor.user_id or actor.role in ALL_VOUCHER_VIEWER_ROLES:
            return True
        return actor.role == Role.SUPERVISOR and self._directory.supervisor_of(session, trip.owner_id) == actor.user_id

    def add_trip(self, actor: Actor, payload: TripCreate) -> Trip:
        with self._session() as session:
            self._directory.get_user(session, actor.user_id)
            self._ensure_period_open(session, actor.user_id, payload.trip_date)
            if payload.miles_calculated is None:
                miles = Decimal("0")
                source = MileageSource.PLACEHOLDER
            else:
                miles = to_cents(payload.miles_calculated)
                source = MileageSource.MANUAL
            trip = Trip(
                owner_id=actor.user_id,
                trip_date=payload.trip_date,
                from_location=payload.from_location,
                to_location=payload.to_location,
                purpose=payload.purpose,
                miles_calculated=miles,
                mileage_source=source,
                lodging_cost=to_cents(payload.lodging_cost),
                meals_cost=to_cents(payload.meals_cost),
                other_expenses=to_cents(payload.other_expenses),
            )
            session.add(trip)
            session.flush()
            self._refresh_periods(session, actor.user_id, trip.trip_date)
            self._audit.append(
                session,
                actor=actor,
                action="trip.create",
                resource_type="trip",
                resource_id=trip.id,
                details={
                    "trip_date": trip.trip_date,
                    "miles_calculated": trip.miles_calculated,
                    "mileage_source": source,
                    "lodging_cost": trip.lodging_cost,
                    "meals_cost": trip.meals_cost,
                    "other_expenses": trip.other_expenses,
                },
            )
            session.commit()
        logger.info("trip_created", extra={"trip_id": trip.id, "owner_id": actor.user_id})
        return trip

    def edit_trip(self, actor: Actor, trip_id: str, payload: TripUpdate) -> Trip:
        changes = payload.model_dump(exclude_unset=True)
        with self._session() as session:
            trip = self._get_owned_trip(session, actor, trip_id)
            self._ensure_mutable(session, trip)
            previous_date = trip.trip_date
            new_date = changes.get("trip_date")
            if new_date is not None and (new_date.month, new_date.year) != (previous_date.month, previous_date.year):
                self._ensure_period_open(session, trip.owner_id, new_date)

            details: dict[str, Any] = {}
            for field_name, value in changes.items():
                if value is None and field_name in {"trip_date", "lodging_cost", "meals_cost", "other_expenses"}:
                    continue
                if isinstance(value, Decimal):
                    value = to_cents(value)
                if getattr(trip, field_name) != value:
                    details[field_name] = value
                setattr(trip, field_name, value)
            if "miles_calculated" in details:
                if trip.miles_calculated is None:
                    trip.miles_calculated = Decimal("0")
                    trip.mileage_source = MileageSource.PLACEHOLDER
                else:
                    trip.mileage_source = MileageSource.MANUAL
            trip.updated_at = now_utc()
            session.add(trip)
            session.flush()
            self._refresh_periods(session, trip.owner_id, previous_date, trip.trip_date)
            self._audit.append(
                session,
                actor=actor,
                action="trip.update",
                resource_type="trip",
                resource_id=trip.id,
                details={"changed_fields": ",".join(sorted(details)), **details},
            )
            session.commit()
        logger.info("trip_updated", extra={"trip_id": trip.id, "changed_fields": sorted(details)})
        return trip

    def delete_trip(self, actor: Actor, trip_id: str) -> None:
        with self._session() as session:
            trip = self._get_owned_trip(session, actor, trip_id)
            self._ensure_mutable(session, trip)
            details = {
                "trip_date": trip.trip_date,
                "miles_calculated": trip.miles_calculated,
                "lodging_cost": trip.lodging_cost,
                "meals_cost": trip.meals_cost,
                "other_expenses": trip.other_expenses,
            }
            trip_date = trip.trip_date
            session.delete(trip)
            session.flush()
            self._refresh_periods(session, actor.user_id, trip_date)
            self._audit.append(
                session,
                actor=actor,
                action="trip.delete",
                resource_type="trip",
                resource_id=trip_id,
                details=details,
            )
            session.commit()
        logger.info("trip_deleted", extra={"trip_id": trip_id, "owner_id": actor.user_id})

    def apply_mileage(
        self,
        actor: Actor,
        trip_id: str,
        miles: Decimal,
        source: MileageSource = MileageSource.LOOKUP,
    ) -> Trip:
        if miles < 0:
            raise ValidationError("miles must not be negative", field="miles")
        with self._session() as session:
            trip = self._get_owned_trip(session, actor, trip_id)
            self._ensure_mutable(session, trip)
            previous_miles = trip.miles_calculated
            trip.miles_calculated = to_cents(miles)
            trip.mileage_source = source
            trip.updated_at = now_utc()
            session.add(trip)
            session.flush()
            self._refresh_periods(session, trip.owner_id, trip.trip_date)
            self._audit.append(
                session,
                actor=actor,
                action="trip.mileage",
                resource_type="trip",
                resource_id=trip.id,
                details={
                    "previous_miles": previous_miles,
                    "miles_calculated": trip.miles_calculated,
                    "mileage_source": source,
                },
            )
            session.commit()
        logger.info(
            "trip_mileage_applied",
            extra={"trip_id": trip.id, "miles": str(trip.miles_calculated), "source": str(source)},
        )
        return trip

    def lookup_mileage(
        self,
        actor: Actor,
        trip_id: str,
        adapter: MileageAdapter,
        *,
        avoid_tolls: bool = False,
    ) -> Trip:
        with self._session() as session:
            trip = self._get_owned_trip(session, actor, trip_id)
            self._ensure_mutable(session, trip)
            origin, destination = trip.from_location, trip.to_location
        if not origin or not destination:
            raise ValidationError("trip needs both a start and an end location", field="to_location")
        try:
            quote = adapter.quote(origin, destination, avoid_tolls=avoid_tolls)
        except MileageLookupError as exc:
            raise ExternalServiceError(str(exc), trip_id=trip_id) from exc
        return self.apply_mileage(actor, trip_id, quote.miles, MileageSource.LOOKUP)

    def get_trip(self, actor: Actor, trip_id: str) -> Trip:
        with self._session() as session:
            trip = self._get_trip(session, trip_id)
            if not self._can_view(session, actor, trip):
                raise NotFoundError("trip not found", trip_id=trip_id)
            return trip

    def list_trips(self, actor: Actor, month: int | None = None, year: int | None = None) -> list[Trip]:
        if month is not None and year is None:
            raise ValidationError("month requires a year", field="year")
        if year is not None:
            validate_year(year)
        statement = select(Trip).where(Trip.owner_id == actor.user_id)
        if month is not None and year is not None:
            if not 1 <= month <= 12:
                raise ValidationError("month must be between 1 and 12", field="month")
            first_day, last_day = period_range(month, year)
            statement = statement.where(Trip.trip_date >= first_day).where(Trip.trip_date <= last_day)
        elif year is not None:
            statement = statement.where(Trip.trip_date >= date(year, 1, 1)).where(Trip.trip_date <= date(year, 12, 31))
        statement = statement.order_by(col(Trip.trip_date), col(Trip.created_at))
        with self._session() as session:
            return list(session.exec(statement).all())
