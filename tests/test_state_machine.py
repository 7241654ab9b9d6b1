from __future__ import annotations

from app.domain.permissions import Actor, Role, guard_allows
from app.domain.state_machine import (
    TERMINAL_VOUCHER_STATES,
    VOUCHER_TRANSITIONS,
    ApprovalGuard,
    AssignmentRequestStatus,
    VoucherAction,
    VoucherState,
    allowed_voucher_actions,
    can_assignment_transition,
    can_voucher_transition,
    resolve_voucher_transition,
)


def test_forward_path_is_the_only_non_rejecting_route() -> None:
    assert can_voucher_transition(VoucherState.DRAFT, VoucherState.SUBMITTED)
    assert can_voucher_transition(VoucherState.SUBMITTED, VoucherState.SUPERVISOR_APPROVED)
    assert can_voucher_transition(VoucherState.SUPERVISOR_APPROVED, VoucherState.APPROVED)

    assert not can_voucher_transition(VoucherState.DRAFT, VoucherState.SUPERVISOR_APPROVED)
    assert not can_voucher_transition(VoucherState.DRAFT, VoucherState.APPROVED)
    assert not can_voucher_transition(VoucherState.SUBMITTED, VoucherState.APPROVED)
    assert not can_voucher_transition(VoucherState.SUPERVISOR_APPROVED, VoucherState.SUBMITTED)


def test_rejected_reachable_only_from_review_states() -> None:
    sources = {
        state
        for (state, _action), transition in VOUCHER_TRANSITIONS.items()
        if transition.target == VoucherState.REJECTED
    }
    assert sources == {VoucherState.SUBMITTED, VoucherState.SUPERVISOR_APPROVED}


def test_terminal_states_have_no_actions() -> None:
    for state in TERMINAL_VOUCHER_STATES:
        assert allowed_voucher_actions(state) == []
    assert TERMINAL_VOUCHER_STATES == {VoucherState.APPROVED, VoucherState.REJECTED}


def test_reject_guard_depends_on_stage() -> None:
    supervisor_stage = resolve_voucher_transition(VoucherState.SUBMITTED, VoucherAction.REJECT)
    fleet_stage = resolve_voucher_transition(VoucherState.SUPERVISOR_APPROVED, VoucherAction.REJECT)
    assert supervisor_stage is not None and supervisor_stage.guard == ApprovalGuard.ASSIGNED_SUPERVISOR
    assert fleet_stage is not None and fleet_stage.guard == ApprovalGuard.FLEET


def test_delete_only_from_draft() -> None:
    transition = resolve_voucher_transition(VoucherState.DRAFT, VoucherAction.DELETE)
    assert transition is not None
    assert transition.target is None
    assert transition.audit_action == "voucher.delete"
    for state in VoucherState:
        if state != VoucherState.DRAFT:
            assert resolve_voucher_transition(state, VoucherAction.DELETE) is None


def test_unknown_pairs_resolve_to_none() -> None:
    assert resolve_voucher_transition(VoucherState.DRAFT, VoucherAction.APPROVE_FLEET) is None
    assert resolve_voucher_transition(VoucherState.APPROVED, VoucherAction.REJECT) is None
    assert resolve_voucher_transition(VoucherState.REJECTED, VoucherAction.SUBMIT) is None


def test_guards() -> None:
    owner = Actor(user_id="owner", role=Role.INSPECTOR)
    supervisor = Actor(user_id="sup", role=Role.SUPERVISOR)
    fleet = Actor(user_id="fleet", role=Role.FLEET_MANAGER)
    admin = Actor(user_id="admin", role=Role.ADMIN)

    assert guard_allows(ApprovalGuard.OWNER, owner, owner_id="owner", assigned_supervisor_id="sup")
    assert not guard_allows(ApprovalGuard.OWNER, supervisor, owner_id="owner", assigned_supervisor_id="sup")
    assert guard_allows(ApprovalGuard.ASSIGNED_SUPERVISOR, supervisor, owner_id="owner", assigned_supervisor_id="sup")
    assert not guard_allows(ApprovalGuard.ASSIGNED_SUPERVISOR, supervisor, owner_id="owner", assigned_supervisor_id=None)
    assert not guard_allows(ApprovalGuard.ASSIGNED_SUPERVISOR, admin, owner_id="owner", assigned_supervisor_id="sup")
    assert guard_allows(ApprovalGuard.FLEET, fleet, owner_id="owner", assigned_supervisor_id="sup")
    assert guard_allows(ApprovalGuard.FLEET, admin, owner_id="owner", assigned_supervisor_id="sup")
    assert not guard_allows(ApprovalGuard.FLEET, supervisor, owner_id="owner", assigned_supervisor_id="sup")


def test_assignment_request_transitions() -> None:
    pending = AssignmentRequestStatus.PENDING
    for target in (
        AssignmentRequestStatus.APPROVED,
        AssignmentRequestStatus.REJECTED,
        AssignmentRequestStatus.CANCELLED,
    ):
        assert can_assignment_transition(pending, target)
        assert not can_assignment_transition(target, pending)
    assert not can_assignment_transition(AssignmentRequestStatus.APPROVED, AssignmentRequestStatus.REJECTED)
