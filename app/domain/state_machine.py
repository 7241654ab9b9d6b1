from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class VoucherState(StrEnum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    SUPERVISOR_APPROVED = "SupervisorApproved"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class VoucherAction(StrEnum):
    SUBMIT = "submit"
    APPROVE_SUPERVISOR = "approve_supervisor"
    APPROVE_FLEET = "approve_fleet"
    REJECT = "reject"
    DELETE = "delete"


class ApprovalGuard(StrEnum):
    OWNER = "owner"
    ASSIGNED_SUPERVISOR = "assigned_supervisor"
    FLEET = "fleet"


@dataclass(frozen=True)
class VoucherTransition:
    guard: ApprovalGuard
    # None means the voucher is removed rather than moved to another state.
    target: VoucherState | None
    audit_action: str


VOUCHER_TRANSITIONS: dict[tuple[VoucherState, VoucherAction], VoucherTransition] = {
    (VoucherState.DRAFT, VoucherAction.SUBMIT): VoucherTransition(
        guard=ApprovalGuard.OWNER,
        target=VoucherState.SUBMITTED,
        audit_action="voucher.submit",
    ),
    (VoucherState.SUBMITTED, VoucherAction.APPROVE_SUPERVISOR): VoucherTransition(
        guard=ApprovalGuard.ASSIGNED_SUPERVISOR,
        target=VoucherState.SUPERVISOR_APPROVED,
        audit_action="voucher.supervisor_approve",
    ),
    (VoucherState.SUPERVISOR_APPROVED, VoucherAction.APPROVE_FLEET): VoucherTransition(
        guard=ApprovalGuard.FLEET,
        target=VoucherState.APPROVED,
        audit_action="voucher.fleet_approve",
    ),
    (VoucherState.SUBMITTED, VoucherAction.REJECT): VoucherTransition(
        guard=ApprovalGuard.ASSIGNED_SUPERVISOR,
        target=VoucherState.REJECTED,
        audit_action="voucher.reject",
    ),
    (VoucherState.SUPERVISOR_APPROVED, VoucherAction.REJECT): VoucherTransition(
        guard=ApprovalGuard.FLEET,
        target=VoucherState.REJECTED,
        audit_action="voucher.reject",
    ),
    (VoucherState.DRAFT, VoucherAction.DELETE): VoucherTransition(
        guard=ApprovalGuard.OWNER,
        target=None,
        audit_action="voucher.delete",
    ),
}

TERMINAL_VOUCHER_STATES: frozenset[VoucherState] = frozenset({VoucherState.APPROVED, VoucherState.REJECTED})


def resolve_voucher_transition(source: VoucherState, action: VoucherAction) -> VoucherTransition | None:
    return VOUCHER_TRANSITIONS.get((VoucherState(source), action))


def allowed_voucher_actions(source: VoucherState) -> list[VoucherAction]:
    return [action for (state, action) in VOUCHER_TRANSITIONS if state == source]


def can_voucher_transition(source: VoucherState, target: VoucherState) -> bool:
    return any(
        state == source and transition.target == target
        for (state, _action), transition in VOUCHER_TRANSITIONS.items()
    )


class AssignmentRequestStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class AssignmentDecision(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"


ASSIGNMENT_ALLOWED_TRANSITIONS: dict[AssignmentRequestStatus, set[AssignmentRequestStatus]] = {
    AssignmentRequestStatus.PENDING: {
        AssignmentRequestStatus.APPROVED,
        AssignmentRequestStatus.REJECTED,
        AssignmentRequestStatus.CANCELLED,
    },
    AssignmentRequestStatus.APPROVED: set(),
    AssignmentRequestStatus.REJECTED: set(),
    AssignmentRequestStatus.CANCELLED: set(),
}


def can_assignment_transition(source: AssignmentRequestStatus, target: AssignmentRequestStatus) -> bool:
    return target in ASSIGNMENT_ALLOWED_TRANSITIONS.get(AssignmentRequestStatus(source), set())
