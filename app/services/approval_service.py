from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa
from sqlmodel import Session, col

from app.domain.errors import ConflictError, PermissionDeniedError, ValidationError
from app.domain.models import Voucher, VoucherRead, VoucherTrip, now_utc
from app.domain.permissions import Actor, describe_guard, guard_allows
from app.domain.state_machine import (
    VoucherAction,
    VoucherState,
    VoucherTransition,
    allowed_voucher_actions,
    resolve_voucher_transition,
)
from app.domain.totals import recompute_totals
from app.infra.audit import AuditRecorder
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.assignment_service import AssignmentDirectory
from app.services.voucher_service import VoucherService

logger = logging.getLogger("app.services.approvals")

TRANSITION_EVENTS: dict[VoucherAction, str] = {
    VoucherAction.SUBMIT: "voucher.submitted",
    VoucherAction.APPROVE_SUPERVISOR: "voucher.supervisor_approved",
    VoucherAction.APPROVE_FLEET: "voucher.approved",
    VoucherAction.REJECT: "voucher.rejected",
}


@dataclass
class TransitionPlan:
    values: dict[str, Any] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)


Preparer = Callable[[Session, Voucher, Actor, str | None], TransitionPlan]


class ApprovalService:
    """Drives vouchers through the approval lifecycle.

    Every action runs the same steps inside one transaction: lock the
    voucher, look up the (state, action) entry, evaluate its guard, check the
    action's preconditions, compare-and-set on (id, status, version), append
    one audit entry and commit. Events are published after the commit.
    """

    def __init__(self) -> None:
        self._audit = AuditRecorder()
        self._vouchers = VoucherService()
        self._directory = AssignmentDirectory()
        self._preparers: dict[VoucherAction, Preparer] = {
            VoucherAction.SUBMIT: self._prepare_submit,
            VoucherAction.APPROVE_SUPERVISOR: self._prepare_supervisor_approval,
            VoucherAction.APPROVE_FLEET: self._prepare_fleet_approval,
            VoucherAction.REJECT: self._prepare_rejection,
            VoucherAction.DELETE: self._prepare_deletion,
        }

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def submit(self, actor: Actor, voucher_id: str) -> VoucherRead:
        self._run(actor, voucher_id, VoucherAction.SUBMIT)
        return self._vouchers.get_voucher(actor, voucher_id)

    def approve_supervisor(self, actor: Actor, voucher_id: str) -> VoucherRead:
        self._run(actor, voucher_id, VoucherAction.APPROVE_SUPERVISOR)
        return self._vouchers.get_voucher(actor, voucher_id)

    def approve_fleet(self, actor: Actor, voucher_id: str) -> VoucherRead:
        self._run(actor, voucher_id, VoucherAction.APPROVE_FLEET)
        return self._vouchers.get_voucher(actor, voucher_id)

    def reject(self, actor: Actor, voucher_id: str, reason: str | None) -> VoucherRead:
        self._run(actor, voucher_id, VoucherAction.REJECT, reason=reason)
        return self._vouchers.get_voucher(actor, voucher_id)

    def delete(self, actor: Actor, voucher_id: str) -> None:
        self._run(actor, voucher_id, VoucherAction.DELETE)

    def _run(
        self,
        actor: Actor,
        voucher_id: str,
        action: VoucherAction,
        *,
        reason: str | None = None,
    ) -> None:
        with self._session() as session:
            voucher = self._vouchers.get_for_update(session, voucher_id)
            state = VoucherState(voucher.status)
            transition = self._resolve(voucher, state, action)

            assigned_supervisor_id = self._directory.supervisor_of(session, voucher.owner_id)
            if not guard_allows(
                transition.guard,
                actor,
                owner_id=voucher.owner_id,
                assigned_supervisor_id=assigned_supervisor_id,
            ):
                logger.warning(
                    "voucher_transition_denied",
                    extra={
                        "voucher_id": voucher.id,
                        "action": action.value,
                        "current_state": state.value,
                        "actor_id": actor.user_id,
                        "actor_role": actor.role.value,
                    },
                )
                raise PermissionDeniedError(
                    f"{describe_guard(transition.guard)} may {action.value} this voucher",
                    voucher_id=voucher.id,
                    current_state=state,
                    action=action,
                )

            plan = self._preparers[action](session, voucher, actor, reason)
            plan.details.setdefault("from_state", state)
            plan.details.setdefault("to_state", transition.target)
            event_payload = {
                "voucher_id": voucher.id,
                "owner_id": voucher.owner_id,
                "month": voucher.month,
                "year": voucher.year,
                "status": transition.target.value if transition.target else None,
                "assigned_supervisor_id": assigned_supervisor_id,
                "total_amount": str(plan.values.get("total_amount", voucher.total_amount)),
                "rejection_reason": plan.values.get("rejection_reason"),
            }
            if transition.target is None:
                self._compare_and_delete(session, voucher, state)
            else:
                self._compare_and_set(session, voucher, state, {"status": transition.target.value, **plan.values})
            self._audit.append(
                session,
                actor=actor,
                action=transition.audit_action,
                resource_type="voucher",
                resource_id=voucher.id,
                details=plan.details,
            )
            session.commit()

        logger.info(
            "voucher_transition",
            extra={
                "voucher_id": voucher_id,
                "action": action.value,
                "from_state": state.value,
                "to_state": transition.target.value if transition.target else None,
                "actor_id": actor.user_id,
            },
        )
        event_type = TRANSITION_EVENTS.get(action)
        if event_type is not None:
            event_bus.publish_dict(event_type, event_payload, actor_id=actor.user_id)

    def _resolve(
        self,
        voucher: Voucher,
        state: VoucherState,
        action: VoucherAction,
    ) -> VoucherTransition:
        transition = resolve_voucher_transition(state, action)
        if transition is None:
            logger.warning(
                "voucher_transition_invalid",
                extra={"voucher_id": voucher.id, "action": action.value, "current_state": state.value},
            )
            raise ValidationError(
                f"cannot {action.value} a voucher in state {state.value}",
                voucher_id=voucher.id,
                current_state=state,
                action=action,
                allowed_actions=[item.value for item in allowed_voucher_actions(state)],
            )
        return transition

    def _compare_and_set(
        self,
        session: Session,
        voucher: Voucher,
        expected_state: VoucherState,
        values: dict[str, Any],
    ) -> None:
        result = session.execute(
            sa.update(Voucher)
            .where(col(Voucher.id) == voucher.id)
            .where(col(Voucher.status) == expected_state.value)
            .where(col(Voucher.version) == voucher.version)
            .values(**values, version=voucher.version + 1, updated_at=now_utc())
        )
        if result.rowcount != 1:
            self._raise_conflict(voucher, expected_state)

    def _compare_and_delete(self, session: Session, voucher: Voucher, expected_state: VoucherState) -> None:
        result = session.execute(
            sa.delete(Voucher)
            .where(col(Voucher.id) == voucher.id)
            .where(col(Voucher.status) == expected_state.value)
            .where(col(Voucher.version) == voucher.version)
        )
        if result.rowcount != 1:
            self._raise_conflict(voucher, expected_state)

    def _raise_conflict(self, voucher: Voucher, expected_state: VoucherState) -> None:
        logger.warning(
            "voucher_transition_conflict",
            extra={"voucher_id": voucher.id, "expected_state": expected_state.value, "expected_version": voucher.version},
        )
        raise ConflictError(
            "voucher was changed by a concurrent request",
            voucher_id=voucher.id,
            expected_state=expected_state,
            expected_version=voucher.version,
        )

    def _prepare_submit(self, session: Session, voucher: Voucher, actor: Actor, _reason: str | None) -> TransitionPlan:
        owner = self._vouchers.owner_of(session, voucher)
        if not (owner.position or "").strip():
            raise ValidationError("set your position on your profile before submitting", field="position")
        trips = self._vouchers.period_trips(session, voucher.owner_id, voucher.month, voucher.year)
        if not trips:
            raise ValidationError("a voucher needs at least one trip to be submitted", field="trips")

        rate = self._vouchers.rate_for_period(session, voucher.month, voucher.year)
        totals = recompute_totals(trips, rate)
        for trip in trips:
            session.add(VoucherTrip(voucher_id=voucher.id, trip_id=trip.id))
        session.flush()
        return TransitionPlan(
            values={
                "submitted_at": now_utc(),
                "mileage_rate": rate,
                "total_miles": totals.total_miles,
                "total_lodging": totals.total_lodging,
                "total_meals": totals.total_meals,
                "total_other": totals.total_other,
                "total_amount": totals.total_amount,
            },
            details={
                "position": owner.position,
                "trip_count": totals.trip_count,
                "mileage_rate": rate,
                "total_miles": totals.total_miles,
                "total_amount": totals.total_amount,
            },
        )

    def _prepare_supervisor_approval(
        self, session: Session, voucher: Voucher, actor: Actor, _reason: str | None
    ) -> TransitionPlan:
        return TransitionPlan(
            values={"supervisor_id": actor.user_id, "supervisor_approved_at": now_utc()},
            details={"owner_id": voucher.owner_id, "total_amount": voucher.total_amount},
        )

    def _prepare_fleet_approval(
        self, session: Session, voucher: Voucher, actor: Actor, _reason: str | None
    ) -> TransitionPlan:
        return TransitionPlan(
            values={"fleet_manager_id": actor.user_id, "fleet_approved_at": now_utc()},
            details={
                "owner_id": voucher.owner_id,
                "supervisor_id": voucher.supervisor_id,
                "total_amount": voucher.total_amount,
            },
        )

    def _prepare_rejection(self, session: Session, voucher: Voucher, actor: Actor, reason: str | None) -> TransitionPlan:
        cleaned = (reason or "").strip()
        if not cleaned:
            raise ValidationError("a rejection reason is required", field="reason")
        rejected_at = now_utc()
        return TransitionPlan(
            values={"rejection_reason": cleaned, "rejected_by": actor.user_id, "rejected_at": rejected_at},
            details={
                "reason": cleaned,
                "rejected_by": actor.user_id,
                "rejected_at": rejected_at,
                "rejected_stage": VoucherState(voucher.status),
            },
        )

    def _prepare_deletion(self, session: Session, voucher: Voucher, actor: Actor, _reason: str | None) -> TransitionPlan:
        return TransitionPlan(details={"month": voucher.month, "year": voucher.year, "total_amount": voucher.total_amount})
