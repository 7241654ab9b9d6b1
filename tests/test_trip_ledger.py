from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.adapters.base import MileageLookupError, MileageQuote
from app.adapters.fake_adapter import FakeMileageAdapter
from app.domain.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.domain.models import AuditLogEntry, MileageSource, TripCreate, TripUpdate, Voucher, VoucherCreate
from app.services.approval_service import ApprovalService
from app.services.trip_service import TripService
from app.services.voucher_service import VoucherService
from tests.factories import People


class BrokenMileageAdapter:
    name = "broken"

    def quote(self, origin: str, destination: str, *, avoid_tolls: bool = False) -> MileageQuote:
        raise MileageLookupError("route service timed out")


def _stored_voucher(engine: Engine, voucher_id: str) -> Voucher:
    with Session(engine) as session:
        voucher = session.get(Voucher, voucher_id)
        assert voucher is not None
        return voucher


def test_trip_without_miles_gets_placeholder(engine: Engine, people: People) -> None:
    trip = TripService().add_trip(
        people.inspector,
        TripCreate(trip_date=date(2026, 2, 3), from_location="Depot", to_location="Mill 7"),
    )

    assert trip.miles_calculated == Decimal("0")
    assert trip.mileage_source == MileageSource.PLACEHOLDER
    assert trip.owner_id == people.inspector.user_id

    with Session(engine) as session:
        entry = session.exec(select(AuditLogEntry).where(AuditLogEntry.resource_id == trip.id)).one()
    assert entry.action == "trip.create"
    assert entry.details["mileage_source"] == "placeholder"


def test_trip_changes_refresh_draft_totals(engine: Engine, people: People) -> None:
    trips = TripService()
    voucher = VoucherService().create_voucher(people.inspector, VoucherCreate(month=2, year=2026))
    assert voucher.total_amount == Decimal("0")

    trip = trips.add_trip(
        people.inspector,
        TripCreate(trip_date=date(2026, 2, 9), miles_calculated=Decimal("100"), meals_cost=Decimal("12.25")),
    )
    stored = _stored_voucher(engine, voucher.id)
    assert stored.total_miles == Decimal("100")
    assert stored.total_amount == Decimal("79.25")
    assert stored.version == voucher.version + 1

    trips.edit_trip(people.inspector, trip.id, TripUpdate(miles_calculated=Decimal("10")))
    assert _stored_voucher(engine, voucher.id).total_amount == Decimal("18.95")

    trips.delete_trip(people.inspector, trip.id)
    assert _stored_voucher(engine, voucher.id).total_amount == Decimal("0")
    with pytest.raises(NotFoundError):
        trips.get_trip(people.inspector, trip.id)


def test_only_owner_changes_trip(engine: Engine, people: People) -> None:
    trips = TripService()
    trip = trips.add_trip(people.inspector, TripCreate(trip_date=date(2026, 2, 3)))

    with pytest.raises(PermissionDeniedError):
        trips.edit_trip(people.supervisor, trip.id, TripUpdate(purpose="audit"))
    with pytest.raises(PermissionDeniedError):
        trips.delete_trip(people.admin, trip.id)

    assert trips.get_trip(people.supervisor, trip.id).id == trip.id
    with pytest.raises(NotFoundError):
        trips.get_trip(people.other_supervisor, trip.id)


def test_submitted_period_is_frozen(engine: Engine, people: People) -> None:
    trips = TripService()
    frozen = trips.add_trip(
        people.inspector,
        TripCreate(trip_date=date(2026, 1, 15), miles_calculated=Decimal("50"), lodging_cost=Decimal("10")),
    )
    open_trip = trips.add_trip(people.inspector, TripCreate(trip_date=date(2026, 2, 2), miles_calculated=Decimal("8")))
    voucher = VoucherService().create_voucher(people.inspector, VoucherCreate(month=1, year=2026))
    ApprovalService().submit(people.inspector, voucher.id)

    with pytest.raises(ConflictError) as exc_info:
        trips.edit_trip(people.inspector, frozen.id, TripUpdate(lodging_cost=Decimal("99")))
    assert exc_info.value.context["voucher_id"] == voucher.id
    with pytest.raises(ConflictError):
        trips.delete_trip(people.inspector, frozen.id)
    with pytest.raises(ConflictError):
        trips.apply_mileage(people.inspector, frozen.id, Decimal("75"))

    with pytest.raises(ValidationError) as add_info:
        trips.add_trip(people.inspector, TripCreate(trip_date=date(2026, 1, 20)))
    assert add_info.value.context["field"] == "trip_date"
    with pytest.raises(ValidationError):
        trips.edit_trip(people.inspector, open_trip.id, TripUpdate(trip_date=date(2026, 1, 28)))

    submitted = VoucherService().get_voucher(people.inspector, voucher.id)
    assert submitted.total_amount == Decimal("43.50")
    assert submitted.trip_count == 1


def test_apply_mileage_records_source(engine: Engine, people: People) -> None:
    trips = TripService()
    trip = trips.add_trip(people.inspector, TripCreate(trip_date=date(2026, 3, 4)))

    updated = trips.apply_mileage(people.inspector, trip.id, Decimal("31.456"))
    assert updated.miles_calculated == Decimal("31.46")
    assert updated.mileage_source == MileageSource.LOOKUP

    with pytest.raises(ValidationError):
        trips.apply_mileage(people.inspector, trip.id, Decimal("-1"))


def test_lookup_mileage_uses_adapter(engine: Engine, people: People) -> None:
    trips = TripService()
    trip = trips.add_trip(
        people.inspector,
        TripCreate(trip_date=date(2026, 3, 4), from_location="Depot", to_location="Mill 7"),
    )
    adapter = FakeMileageAdapter()
    expected = adapter.quote("Depot", "Mill 7").miles

    updated = trips.lookup_mileage(people.inspector, trip.id, adapter)
    assert updated.miles_calculated == expected
    assert updated.mileage_source == MileageSource.LOOKUP


def test_lookup_mileage_failures(engine: Engine, people: People) -> None:
    trips = TripService()
    missing_end = trips.add_trip(people.inspector, TripCreate(trip_date=date(2026, 3, 4), from_location="Depot"))
    with pytest.raises(ValidationError):
        trips.lookup_mileage(people.inspector, missing_end.id, FakeMileageAdapter())

    routed = trips.add_trip(
        people.inspector,
        TripCreate(trip_date=date(2026, 3, 5), from_location="Depot", to_location="Mill 7"),
    )
    with pytest.raises(ExternalServiceError):
        trips.lookup_mileage(people.inspector, routed.id, BrokenMileageAdapter())
    assert trips.get_trip(people.inspector, routed.id).mileage_source == MileageSource.PLACEHOLDER


def test_list_trips_by_period(engine: Engine, people: People) -> None:
    trips = TripService()
    trips.add_trip(people.inspector, TripCreate(trip_date=date(2026, 1, 31)))
    trips.add_trip(people.inspector, TripCreate(trip_date=date(2026, 2, 1)))
    trips.add_trip(people.supervisor, TripCreate(trip_date=date(2026, 2, 5)))

    february = trips.list_trips(people.inspector, month=2, year=2026)
    assert [trip.trip_date for trip in february] == [date(2026, 2, 1)]
    assert len(trips.list_trips(people.inspector, year=2026)) == 2
    with pytest.raises(ValidationError):
        trips.list_trips(people.inspector, month=0, year=2026)


def test_list_trips_rejects_unusable_periods(engine: Engine, people: People) -> None:
    trips = TripService()
    for year in (0, 1999, 10000):
        with pytest.raises(ValidationError) as exc_info:
            trips.list_trips(people.inspector, year=year)
        assert exc_info.value.context["field"] == "year"
    with pytest.raises(ValidationError) as exc_info:
        trips.list_trips(people.inspector, month=3)
    assert exc_info.value.context["field"] == "year"
