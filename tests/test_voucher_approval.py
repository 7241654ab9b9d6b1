from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.domain.models import (
    AssignmentProcessRequest,
    AssignmentRequestCreate,
    AuditLogEntry,
    TripCreate,
    Voucher,
    VoucherCreate,
    VoucherRead,
    VoucherTrip,
)
from app.domain.permissions import Role
from app.domain.state_machine import AssignmentDecision, VoucherAction, VoucherState
from app.infra.audit import AuditRecorder
from app.services.approval_service import ApprovalService
from app.services.assignment_service import AssignmentService
from app.services.trip_service import TripService
from app.services.voucher_service import VoucherService
from tests.factories import People, add_user


def _voucher_actions(engine: Engine, voucher_id: str) -> list[str]:
    with Session(engine) as session:
        entries = session.exec(
            select(AuditLogEntry)
            .where(AuditLogEntry.resource_type == "voucher")
            .where(AuditLogEntry.resource_id == voucher_id)
            .order_by(col(AuditLogEntry.id))
        ).all()
        return [entry.action for entry in entries]


def _audit_count(engine: Engine) -> int:
    with Session(engine) as session:
        return len(session.exec(select(AuditLogEntry)).all())


def _stored_status(engine: Engine, voucher_id: str) -> str:
    with Session(engine) as session:
        voucher = session.get(Voucher, voucher_id)
        assert voucher is not None
        return voucher.status


def _january_voucher(people: People) -> VoucherRead:
    TripService().add_trip(
        people.inspector,
        TripCreate(
            trip_date=date(2026, 1, 15),
            from_location="Plant 12",
            to_location="Plant 40",
            miles_calculated=Decimal("50"),
            lodging_cost=Decimal("10"),
        ),
    )
    return VoucherService().create_voucher(people.inspector, VoucherCreate(month=1, year=2026))


def _submitted_voucher(people: People) -> VoucherRead:
    voucher = _january_voucher(people)
    return ApprovalService().submit(people.inspector, voucher.id)


def test_voucher_totals_from_logged_trip(engine: Engine, people: People) -> None:
    voucher = _january_voucher(people)

    assert voucher.status == VoucherState.DRAFT
    assert voucher.trip_count == 1
    assert voucher.total_miles == Decimal("50")
    assert voucher.total_amount == Decimal("43.50")
    assert voucher.allowed_actions == [VoucherAction.SUBMIT, VoucherAction.DELETE]


def test_submit_freezes_trips_and_blocks_second_voucher(engine: Engine, people: People) -> None:
    draft = _january_voucher(people)
    submitted = ApprovalService().submit(people.inspector, draft.id)

    assert submitted.status == VoucherState.SUBMITTED
    assert submitted.mileage_rate == Decimal("0.67")
    assert submitted.submitted_at is not None
    assert submitted.version == draft.version + 1

    with Session(engine) as session:
        links = session.exec(select(VoucherTrip).where(VoucherTrip.voucher_id == draft.id)).all()
    assert len(links) == 1

    with pytest.raises(ConflictError) as exc_info:
        VoucherService().create_voucher(people.inspector, VoucherCreate(month=1, year=2026))
    assert exc_info.value.context["voucher_id"] == draft.id


def test_full_approval_writes_exactly_four_voucher_entries(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)
    service = ApprovalService()

    supervisor_approved = service.approve_supervisor(people.supervisor, voucher.id)
    assert supervisor_approved.status == VoucherState.SUPERVISOR_APPROVED
    assert supervisor_approved.supervisor_id == people.supervisor.user_id

    approved = service.approve_fleet(people.fleet, voucher.id)
    assert approved.status == VoucherState.APPROVED
    assert approved.fleet_manager_id == people.fleet.user_id
    assert approved.allowed_actions == []

    assert _voucher_actions(engine, voucher.id) == [
        "voucher.create",
        "voucher.submit",
        "voucher.supervisor_approve",
        "voucher.fleet_approve",
    ]


def test_unassigned_supervisor_cannot_approve(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)
    before = _audit_count(engine)

    with pytest.raises(PermissionDeniedError):
        ApprovalService().approve_supervisor(people.other_supervisor, voucher.id)

    assert _stored_status(engine, voucher.id) == VoucherState.SUBMITTED
    assert _audit_count(engine) == before


def test_fleet_manager_cannot_take_supervisor_step(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)

    with pytest.raises(PermissionDeniedError):
        ApprovalService().approve_supervisor(people.fleet, voucher.id)
    with pytest.raises(ValidationError):
        ApprovalService().approve_fleet(people.fleet, voucher.id)


def test_rejected_voucher_is_terminal(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)
    service = ApprovalService()

    rejected = service.reject(people.supervisor, voucher.id, "receipts missing")
    assert rejected.status == VoucherState.REJECTED
    assert rejected.rejection_reason == "receipts missing"
    assert rejected.rejected_by == people.supervisor.user_id

    attempts = [
        lambda: service.approve_supervisor(people.supervisor, voucher.id),
        lambda: service.approve_fleet(people.fleet, voucher.id),
        lambda: service.submit(people.inspector, voucher.id),
        lambda: service.reject(people.supervisor, voucher.id, "again"),
        lambda: service.delete(people.inspector, voucher.id),
    ]
    for attempt in attempts:
        with pytest.raises(ValidationError) as exc_info:
            attempt()
        assert exc_info.value.context["current_state"] == VoucherState.REJECTED

    assert _voucher_actions(engine, voucher.id)[-1] == "voucher.reject"


def test_reject_requires_reason(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)
    before = _audit_count(engine)

    with pytest.raises(ValidationError) as exc_info:
        ApprovalService().reject(people.supervisor, voucher.id, "   ")
    assert exc_info.value.context["field"] == "reason"
    assert _stored_status(engine, voucher.id) == VoucherState.SUBMITTED
    assert _audit_count(engine) == before


def test_fleet_rejection_records_stage(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)
    service = ApprovalService()
    service.approve_supervisor(people.supervisor, voucher.id)

    with pytest.raises(PermissionDeniedError):
        service.reject(people.supervisor, voucher.id, "over budget")
    rejected = service.reject(people.fleet, voucher.id, "over budget")
    assert rejected.status == VoucherState.REJECTED

    with Session(engine) as session:
        entry = session.exec(
            select(AuditLogEntry)
            .where(AuditLogEntry.resource_id == voucher.id)
            .where(AuditLogEntry.action == "voucher.reject")
        ).one()
    assert entry.details["rejected_stage"] == "SupervisorApproved"
    assert entry.details["from_state"] == "SupervisorApproved"
    assert entry.actor_id == people.fleet.user_id
    assert entry.ip_address == "10.0.0.1"


def test_submit_requires_position_and_trips(engine: Engine, people: People) -> None:
    no_position = add_user(engine, "inspector-np", Role.INSPECTOR, assigned_supervisor_id=people.supervisor.user_id)
    TripService().add_trip(no_position, TripCreate(trip_date=date(2026, 3, 2), miles_calculated=Decimal("5")))
    voucher = VoucherService().create_voucher(no_position, VoucherCreate(month=3, year=2026))
    with pytest.raises(ValidationError) as exc_info:
        ApprovalService().submit(no_position, voucher.id)
    assert exc_info.value.context["field"] == "position"

    empty = VoucherService().create_voucher(people.inspector, VoucherCreate(month=4, year=2026))
    with pytest.raises(ValidationError) as exc_info:
        ApprovalService().submit(people.inspector, empty.id)
    assert exc_info.value.context["field"] == "trips"
    assert _stored_status(engine, empty.id) == VoucherState.DRAFT


def test_only_owner_submits_and_deletes(engine: Engine, people: People) -> None:
    voucher = _january_voucher(people)
    with pytest.raises(PermissionDeniedError):
        ApprovalService().submit(people.supervisor, voucher.id)
    with pytest.raises(PermissionDeniedError):
        ApprovalService().delete(people.admin, voucher.id)

    ApprovalService().delete(people.inspector, voucher.id)
    with pytest.raises(NotFoundError):
        VoucherService().get_voucher(people.inspector, voucher.id)
    assert _voucher_actions(engine, voucher.id) == ["voucher.create", "voucher.delete"]


def test_audit_failure_rolls_back_transition(engine: Engine, people: People, monkeypatch: pytest.MonkeyPatch) -> None:
    voucher = _january_voucher(people)
    before = _audit_count(engine)

    def failing_append(self, session, **kwargs):  # type: ignore[no-untyped-def]
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(AuditRecorder, "append", failing_append)
    with pytest.raises(RuntimeError):
        ApprovalService().submit(people.inspector, voucher.id)

    assert _stored_status(engine, voucher.id) == VoucherState.DRAFT
    assert _audit_count(engine) == before
    with Session(engine) as session:
        assert session.exec(select(VoucherTrip)).all() == []


def test_stale_snapshot_loses_compare_and_set(engine: Engine, people: People, monkeypatch: pytest.MonkeyPatch) -> None:
    voucher = _submitted_voucher(people)
    original_get_for_update = VoucherService.get_for_update
    raced = {"done": False}

    def racing_get_for_update(self, session, voucher_id):  # type: ignore[no-untyped-def]
        locked = original_get_for_update(self, session, voucher_id)
        if not raced["done"]:
            raced["done"] = True
            ApprovalService().reject(people.supervisor, voucher_id, "duplicate claim")
        return locked

    monkeypatch.setattr(VoucherService, "get_for_update", racing_get_for_update)
    with pytest.raises(ConflictError):
        ApprovalService().approve_supervisor(people.supervisor, voucher.id)

    assert _stored_status(engine, voucher.id) == VoucherState.REJECTED
    actions = _voucher_actions(engine, voucher.id)
    assert actions.count("voucher.reject") == 1
    assert "voucher.supervisor_approve" not in actions


def test_guard_reads_current_assignment(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)
    assignments = AssignmentService()
    request = assignments.request_assignment(
        people.other_supervisor,
        AssignmentRequestCreate(inspector_id=people.inspector.user_id, reason="coverage"),
    )
    assignments.process_request(people.fls, request.id, AssignmentProcessRequest(decision=AssignmentDecision.APPROVE))

    with pytest.raises(PermissionDeniedError):
        ApprovalService().approve_supervisor(people.supervisor, voucher.id)
    approved = ApprovalService().approve_supervisor(people.other_supervisor, voucher.id)
    assert approved.status == VoucherState.SUPERVISOR_APPROVED


def test_visibility_and_pending_queues(engine: Engine, people: People) -> None:
    voucher = _submitted_voucher(people)
    vouchers = VoucherService()

    assert [item.id for item in vouchers.pending_for(people.supervisor)] == [voucher.id]
    assert vouchers.pending_for(people.other_supervisor) == []
    assert vouchers.pending_for(people.fleet) == []
    with pytest.raises(NotFoundError):
        vouchers.get_voucher(people.other_supervisor, voucher.id)

    ApprovalService().approve_supervisor(people.supervisor, voucher.id)
    assert [item.id for item in vouchers.pending_for(people.fleet)] == [voucher.id]
    assert vouchers.pending_for(people.supervisor) == []
    assert [item.id for item in vouchers.list_vouchers(people.admin)] == [voucher.id]
    assert [item.id for item in vouchers.list_vouchers(people.inspector, VoucherState.SUPERVISOR_APPROVED)] == [
        voucher.id
    ]


def test_create_voucher_validates_period(engine: Engine, people: People) -> None:
    with pytest.raises(ValidationError) as exc_info:
        VoucherService().create_voucher(people.inspector, VoucherCreate(month=13, year=2026))
    assert exc_info.value.context["field"] == "month"
    with pytest.raises(ValidationError):
        VoucherService().create_voucher(people.inspector, VoucherCreate(month=1, year=1999))
