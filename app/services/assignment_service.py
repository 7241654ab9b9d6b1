from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.domain.models import (
    AssignmentCancelRequest,
    AssignmentProcessRequest,
    AssignmentRead,
    AssignmentRequest,
    AssignmentRequestCreate,
    User,
    now_utc,
)
from app.domain.permissions import Actor, Role
from app.domain.state_machine import (
    AssignmentDecision,
    AssignmentRequestStatus,
    can_assignment_transition,
)
from app.infra.audit import AuditRecorder
from app.infra.db import get_engine
from app.infra.events import event_bus

logger = logging.getLogger("app.services.assignments")


class AssignmentDirectory:
    """Inspector → supervisor mapping, stored on the user rows.

    Reads are done inside the caller's session so that approval guards see
    the mapping as of the transaction that uses it.
    """

    def get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found", user_id=user_id)
        return user

    def supervisor_of(self, session: Session, inspector_id: str) -> str | None:
        return self.get_user(session, inspector_id).assigned_supervisor_id

    def inspectors_of(self, session: Session, supervisor_id: str) -> list[str]:
        statement = select(User.id).where(User.assigned_supervisor_id == supervisor_id)
        return list(session.exec(statement).all())

    def reassign(
        self,
        session: Session,
        inspector_id: str,
        *,
        expected_supervisor_id: str | None,
        new_supervisor_id: str,
    ) -> None:
        if expected_supervisor_id is None:
            current_matches = col(User.assigned_supervisor_id).is_(None)
        else:
            current_matches = col(User.assigned_supervisor_id) == expected_supervisor_id
        result = session.execute(
            sa.update(User)
            .where(col(User.id) == inspector_id)
            .where(current_matches)
            .values(assigned_supervisor_id=new_supervisor_id, updated_at=now_utc())
        )
        if result.rowcount != 1:
            raise ConflictError(
                "inspector assignment changed concurrently",
                inspector_id=inspector_id,
                expected_supervisor_id=expected_supervisor_id,
            )


class AssignmentService:
    def __init__(self) -> None:
        self._audit = AuditRecorder()
        self._directory = AssignmentDirectory()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _pending_request(self, session: Session, inspector_id: str) -> AssignmentRequest | None:
        statement = (
            select(AssignmentRequest)
            .where(AssignmentRequest.inspector_id == inspector_id)
            .where(AssignmentRequest.status == AssignmentRequestStatus.PENDING.value)
        )
        return session.exec(statement).first()

    def _get_request_for_update(self, session: Session, request_id: str) -> AssignmentRequest:
        request = session.exec(
            select(AssignmentRequest).where(AssignmentRequest.id == request_id).with_for_update()
        ).first()
        if request is None:
            raise NotFoundError("assignment request not found", request_id=request_id)
        return request

    def _resolve(
        self,
        session: Session,
        request: AssignmentRequest,
        target: AssignmentRequestStatus,
        actor: Actor,
        **values: object,
    ) -> None:
        current = AssignmentRequestStatus(request.status)
        if not can_assignment_transition(current, target):
            raise ValidationError(
                f"assignment request is {current}, not pending",
                request_id=request.id,
                current_state=current,
            )
        result = session.execute(
            sa.update(AssignmentRequest)
            .where(col(AssignmentRequest.id) == request.id)
            .where(col(AssignmentRequest.status) == current.value)
            .where(col(AssignmentRequest.version) == request.version)
            .values(
                status=target.value,
                version=request.version + 1,
                processed_by=actor.user_id,
                processed_at=now_utc(),
                **values,
            )
        )
        if result.rowcount != 1:
            logger.warning(
                "assignment_request_conflict",
                extra={"request_id": request.id, "expected_state": current.value, "actor_id": actor.user_id},
            )
            raise ConflictError(
                "assignment request was modified concurrently",
                request_id=request.id,
                expected_state=current,
            )

    def _escalation_ids(self, session: Session, request: AssignmentRequest) -> set[str]:
        """FLS supervisors allowed to decide `request`.

        The inspector's own FLS supervisor when one is recorded. An
        unassigned inspector often has none, and then the FLS tier above the
        requesting supervisor decides.
        """
        inspector = self._directory.get_user(session, request.inspector_id)
        if inspector.fls_supervisor_id:
            return {inspector.fls_supervisor_id}
        requester = self._directory.get_user(session, request.requesting_supervisor_id)
        return {requester.fls_supervisor_id} if requester.fls_supervisor_id else set()

    def get_assignment(self, inspector_id: str) -> AssignmentRead:
        with self._session() as session:
            inspector = self._directory.get_user(session, inspector_id)
            pending = self._pending_request(session, inspector_id)
            return AssignmentRead(
                inspector_id=inspector.id,
                assigned_supervisor_id=inspector.assigned_supervisor_id,
                assigned=inspector.assigned_supervisor_id is not None,
                pending_request_id=pending.id if pending is not None else None,
            )

    def get_request(self, actor: Actor, request_id: str) -> AssignmentRequest:
        with self._session() as session:
            request = session.get(AssignmentRequest, request_id)
            if request is None:
                raise NotFoundError("assignment request not found", request_id=request_id)
            visible = (
                actor.role == Role.ADMIN
                or request.requesting_supervisor_id == actor.user_id
                or actor.user_id in self._escalation_ids(session, request)
            )
            if not visible:
                raise NotFoundError("assignment request not found", request_id=request_id)
            return request

    def list_requests(self, actor: Actor, status: AssignmentRequestStatus | None = None) -> list[AssignmentRequest]:
        with self._session() as session:
            requester = aliased(User)
            inspector = aliased(User)
            statement = (
                select(AssignmentRequest)
                .join(requester, requester.id == AssignmentRequest.requesting_supervisor_id)
                .join(inspector, inspector.id == AssignmentRequest.inspector_id)
            )
            if actor.role != Role.ADMIN:
                statement = statement.where(
                    sa.or_(
                        col(AssignmentRequest.requesting_supervisor_id) == actor.user_id,
                        inspector.fls_supervisor_id == actor.user_id,
                        sa.and_(
                            inspector.fls_supervisor_id.is_(None),
                            requester.fls_supervisor_id == actor.user_id,
                        ),
                    )
                )
            if status is not None:
                statement = statement.where(AssignmentRequest.status == status.value)
            statement = statement.order_by(col(AssignmentRequest.requested_at).desc())
            return list(session.exec(statement).all())

    def request_assignment(self, actor: Actor, payload: AssignmentRequestCreate) -> AssignmentRequest:
        if actor.role != Role.SUPERVISOR:
            raise PermissionDeniedError("only supervisors may request an assignment", actor_id=actor.user_id)
        reason = payload.reason.strip()
        if not reason:
            raise ValidationError("a reason is required", field="reason")

        with self._session() as session:
            inspector = self._directory.get_user(session, payload.inspector_id)
            if inspector.role != Role.INSPECTOR:
                raise ValidationError("assignments can only be requested for inspectors", field="inspector_id")
            if inspector.assigned_supervisor_id == actor.user_id:
                raise ValidationError(
                    "inspector is already assigned to the requesting supervisor",
                    field="inspector_id",
                    inspector_id=inspector.id,
                )
            pending = self._pending_request(session, inspector.id)
            if pending is not None:
                raise ConflictError(
                    "a pending assignment request already exists for this inspector",
                    inspector_id=inspector.id,
                    conflicting_request_id=pending.id,
                )

            request = AssignmentRequest(
                inspector_id=inspector.id,
                requesting_supervisor_id=actor.user_id,
                status=AssignmentRequestStatus.PENDING,
                reason=reason,
            )
            session.add(request)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    "a pending assignment request already exists for this inspector",
                    inspector_id=inspector.id,
                ) from exc
            self._audit.append(
                session,
                actor=actor,
                action="assignment_request.create",
                resource_type="assignment_request",
                resource_id=request.id,
                details={
                    "inspector_id": inspector.id,
                    "current_supervisor_id": inspector.assigned_supervisor_id,
                    "reason": reason,
                },
            )
            session.commit()
            session.refresh(request)
            escalation_id = (
                inspector.fls_supervisor_id or self._directory.get_user(session, actor.user_id).fls_supervisor_id
            )

        logger.info(
            "assignment_requested",
            extra={"request_id": request.id, "inspector_id": request.inspector_id, "actor_id": actor.user_id},
        )
        event_bus.publish_dict(
            "assignment.requested",
            {
                "request_id": request.id,
                "inspector_id": request.inspector_id,
                "requesting_supervisor_id": actor.user_id,
                "fls_supervisor_id": escalation_id,
            },
            actor_id=actor.user_id,
        )
        return request

    def process_request(self, actor: Actor, request_id: str, payload: AssignmentProcessRequest) -> AssignmentRequest:
        with self._session() as session:
            request = self._get_request_for_update(session, request_id)
            inspector = self._directory.get_user(session, request.inspector_id)
            if actor.user_id not in self._escalation_ids(session, request):
                logger.warning(
                    "assignment_process_denied",
                    extra={"request_id": request.id, "actor_id": actor.user_id},
                )
                raise PermissionDeniedError(
                    "only the FLS supervisor for this assignment may process this request",
                    request_id=request.id,
                )

            previous_supervisor_id = inspector.assigned_supervisor_id
            if payload.decision == AssignmentDecision.APPROVE:
                self._resolve(session, request, AssignmentRequestStatus.APPROVED, actor, notes=payload.notes)
                self._directory.reassign(
                    session,
                    inspector.id,
                    expected_supervisor_id=previous_supervisor_id,
                    new_supervisor_id=request.requesting_supervisor_id,
                )
                action = "assignment_request.approve"
                details = {
                    "inspector_id": inspector.id,
                    "previous_supervisor_id": previous_supervisor_id,
                    "new_supervisor_id": request.requesting_supervisor_id,
                    "notes": payload.notes,
                }
            else:
                self._resolve(session, request, AssignmentRequestStatus.REJECTED, actor, notes=payload.notes)
                action = "assignment_request.reject"
                details = {
                    "inspector_id": inspector.id,
                    "requesting_supervisor_id": request.requesting_supervisor_id,
                    "notes": payload.notes,
                }

            self._audit.append(
                session,
                actor=actor,
                action=action,
                resource_type="assignment_request",
                resource_id=request.id,
                details=details,
            )
            session.commit()

        resolved = self.get_request(actor, request_id)
        logger.info(
            "assignment_request_processed",
            extra={"request_id": request_id, "decision": payload.decision.value, "actor_id": actor.user_id},
        )
        event_bus.publish_dict(
            f"assignment.{resolved.status}",
            {
                "request_id": resolved.id,
                "inspector_id": resolved.inspector_id,
                "requesting_supervisor_id": resolved.requesting_supervisor_id,
                "previous_supervisor_id": previous_supervisor_id,
            },
            actor_id=actor.user_id,
        )
        return resolved

    def cancel_request(self, actor: Actor, request_id: str, payload: AssignmentCancelRequest) -> AssignmentRequest:
        with self._session() as session:
            request = self._get_request_for_update(session, request_id)
            if request.requesting_supervisor_id != actor.user_id:
                raise PermissionDeniedError(
                    "only the requesting supervisor may cancel this request",
                    request_id=request.id,
                )
            self._resolve(
                session,
                request,
                AssignmentRequestStatus.CANCELLED,
                actor,
                cancel_reason=payload.reason,
            )
            self._audit.append(
                session,
                actor=actor,
                action="assignment_request.cancel",
                resource_type="assignment_request",
                resource_id=request.id,
                details={"inspector_id": request.inspector_id, "reason": payload.reason},
            )
            session.commit()

        logger.info("assignment_request_cancelled", extra={"request_id": request_id, "actor_id": actor.user_id})
        return self.get_request(actor, request_id)
