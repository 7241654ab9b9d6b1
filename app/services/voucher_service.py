from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, NotFoundError, ValidationError
from app.domain.models import Trip, User, Voucher, VoucherCreate, VoucherRead, VoucherTrip, now_utc
from app.domain.permissions import ALL_VOUCHER_VIEWER_ROLES, Actor, Role, guard_allows
from app.domain.state_machine import VoucherState, allowed_voucher_actions, resolve_voucher_transition
from app.domain.totals import VoucherTotals, period_range, recompute_totals
from app.infra.audit import AuditRecorder
from app.infra.db import get_engine
from app.services.assignment_service import AssignmentDirectory
from app.services.mileage_rate_service import MileageRateService

logger = logging.getLogger("app.services.vouchers")

MIN_VOUCHER_YEAR = 2000
MAX_VOUCHER_YEAR = 2100


def validate_year(year: int) -> None:
    if not MIN_VOUCHER_YEAR <= year <= MAX_VOUCHER_YEAR:
        raise ValidationError(
            f"year must be between {MIN_VOUCHER_YEAR} and {MAX_VOUCHER_YEAR}",
            field="year",
        )


class VoucherService:
    """Voucher lookup, visibility and totals aggregation."""

    def __init__(self) -> None:
        self._audit = AuditRecorder()
        self._rates = MileageRateService()
        self._directory = AssignmentDirectory()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def get_for_update(self, session: Session, voucher_id: str) -> Voucher:
        voucher = session.exec(select(Voucher).where(Voucher.id == voucher_id).with_for_update()).first()
        if voucher is None:
            raise NotFoundError("voucher not found", voucher_id=voucher_id)
        return voucher

    def period_voucher(self, session: Session, owner_id: str, month: int, year: int) -> Voucher | None:
        statement = (
            select(Voucher)
            .where(Voucher.owner_id == owner_id)
            .where(Voucher.month == month)
            .where(Voucher.year == year)
        )
        return session.exec(statement).first()

    def period_trips(self, session: Session, owner_id: str, month: int, year: int) -> list[Trip]:
        first_day, last_day = period_range(month, year)
        statement = (
            select(Trip)
            .where(Trip.owner_id == owner_id)
            .where(Trip.trip_date >= first_day)
            .where(Trip.trip_date <= last_day)
            .order_by(col(Trip.trip_date), col(Trip.created_at))
        )
        return list(session.exec(statement).all())

    def linked_trips(self, session: Session, voucher: Voucher) -> list[Trip]:
        if VoucherState(voucher.status) == VoucherState.DRAFT:
            return self.period_trips(session, voucher.owner_id, voucher.month, voucher.year)
        statement = (
            select(Trip)
            .join(VoucherTrip, col(VoucherTrip.trip_id) == col(Trip.id))
            .where(VoucherTrip.voucher_id == voucher.id)
            .order_by(col(Trip.trip_date), col(Trip.created_at))
        )
        return list(session.exec(statement).all())

    def frozen_voucher_id(self, session: Session, trip_id: str) -> str | None:
        link = session.exec(select(VoucherTrip).where(VoucherTrip.trip_id == trip_id)).first()
        return link.voucher_id if link is not None else None

    def rate_for_period(self, session: Session, month: int, year: int) -> Decimal:
        first_day, _ = period_range(month, year)
        return self._rates.rate_for(session, first_day)

    def totals_for(self, session: Session, voucher: Voucher) -> VoucherTotals:
        rate: Decimal
        if voucher.mileage_rate is not None and VoucherState(voucher.status) != VoucherState.DRAFT:
            rate = voucher.mileage_rate
        else:
            rate = self.rate_for_period(session, voucher.month, voucher.year)
        return recompute_totals(self.linked_trips(session, voucher), rate)

    def refresh_draft_totals(self, session: Session, owner_id: str, trip_date: date) -> Voucher | None:
        """Recompute the stored totals of the Draft voucher covering `trip_date`.

        The update is a compare-and-set on status and version: if the voucher
        left Draft after the caller checked it, the caller's trip change is
        refused with a ConflictError instead of slipping into a frozen voucher.
        """
        voucher = self.period_voucher(session, owner_id, trip_date.month, trip_date.year)
        if voucher is None:
            return None
        if VoucherState(voucher.status) != VoucherState.DRAFT:
            raise ConflictError(
                "voucher for this period is no longer a draft",
                voucher_id=voucher.id,
                current_state=VoucherState(voucher.status),
            )
        totals = self.totals_for(session, voucher)
        result = session.execute(
            sa.update(Voucher)
            .where(col(Voucher.id) == voucher.id)
            .where(col(Voucher.status) == VoucherState.DRAFT.value)
            .where(col(Voucher.version) == voucher.version)
            .values(
                total_miles=totals.total_miles,
                total_lodging=totals.total_lodging,
                total_meals=totals.total_meals,
                total_other=totals.total_other,
                total_amount=totals.total_amount,
                version=voucher.version + 1,
                updated_at=now_utc(),
            )
        )
        if result.rowcount != 1:
            raise ConflictError(
                "voucher was modified concurrently",
                voucher_id=voucher.id,
                expected_state=VoucherState.DRAFT,
            )
        return voucher

    def _is_visible(self, session: Session, actor: Actor, voucher: Voucher) -> bool:
        if actor.role in ALL_VOUCHER_VIEWER_ROLES or voucher.owner_id == actor.user_id:
            return True
        if actor.role != Role.SUPERVISOR:
            return False
        if voucher.supervisor_id == actor.user_id:
            return True
        return self._directory.supervisor_of(session, voucher.owner_id) == actor.user_id

    def _visible_statement(self, session: Session, actor: Actor):  # type: ignore[no-untyped-def]
        statement = select(Voucher)
        if actor.role in ALL_VOUCHER_VIEWER_ROLES:
            return statement
        if actor.role == Role.SUPERVISOR:
            owners = [actor.user_id, *self._directory.inspectors_of(session, actor.user_id)]
            return statement.where(
                sa.or_(col(Voucher.owner_id).in_(owners), col(Voucher.supervisor_id) == actor.user_id)
            )
        return statement.where(Voucher.owner_id == actor.user_id)

    def to_read(self, session: Session, actor: Actor, voucher: Voucher) -> VoucherRead:
        totals = self.totals_for(session, voucher)
        state = VoucherState(voucher.status)
        assigned_supervisor_id = self._directory.supervisor_of(session, voucher.owner_id)
        actions = []
        for action in allowed_voucher_actions(state):
            transition = resolve_voucher_transition(state, action)
            if transition is not None and guard_allows(
                transition.guard,
                actor,
                owner_id=voucher.owner_id,
                assigned_supervisor_id=assigned_supervisor_id,
            ):
                actions.append(action)
        read = VoucherRead.model_validate(voucher)
        return read.model_copy(
            update={
                "status": state,
                "trip_count": totals.trip_count,
                "total_miles": totals.total_miles,
                "total_lodging": totals.total_lodging,
                "total_meals": totals.total_meals,
                "total_other": totals.total_other,
                "total_amount": totals.total_amount,
                "mileage_amount": totals.mileage_amount,
                "allowed_actions": actions,
            }
        )

    def create_voucher(self, actor: Actor, payload: VoucherCreate) -> VoucherRead:
        if not 1 <= payload.month <= 12:
            raise ValidationError("month must be between 1 and 12", field="month")
        validate_year(payload.year)

        with self._session() as session:
            self._directory.get_user(session, actor.user_id)
            existing = self.period_voucher(session, actor.user_id, payload.month, payload.year)
            if existing is not None:
                raise ConflictError(
                    "a voucher already exists for this period",
                    voucher_id=existing.id,
                    month=payload.month,
                    year=payload.year,
                )
            rate = self.rate_for_period(session, payload.month, payload.year)
            totals = recompute_totals(
                self.period_trips(session, actor.user_id, payload.month, payload.year),
                rate,
            )
            voucher = Voucher(
                owner_id=actor.user_id,
                month=payload.month,
                year=payload.year,
                status=VoucherState.DRAFT,
                total_miles=totals.total_miles,
                total_lodging=totals.total_lodging,
                total_meals=totals.total_meals,
                total_other=totals.total_other,
                total_amount=totals.total_amount,
            )
            session.add(voucher)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    "a voucher already exists for this period",
                    month=payload.month,
                    year=payload.year,
                ) from exc
            self._audit.append(
                session,
                actor=actor,
                action="voucher.create",
                resource_type="voucher",
                resource_id=voucher.id,
                details={
                    "month": payload.month,
                    "year": payload.year,
                    "trip_count": totals.trip_count,
                    "total_miles": totals.total_miles,
                    "total_amount": totals.total_amount,
                },
            )
            session.commit()
            logger.info(
                "voucher_created",
                extra={"voucher_id": voucher.id, "owner_id": actor.user_id, "month": payload.month, "year": payload.year},
            )
            return self.to_read(session, actor, voucher)

    def get_voucher(self, actor: Actor, voucher_id: str) -> VoucherRead:
        with self._session() as session:
            voucher = session.get(Voucher, voucher_id)
            if voucher is None or not self._is_visible(session, actor, voucher):
                raise NotFoundError("voucher not found", voucher_id=voucher_id)
            return self.to_read(session, actor, voucher)

    def list_vouchers(self, actor: Actor, status: VoucherState | None = None) -> list[VoucherRead]:
        with self._session() as session:
            statement = self._visible_statement(session, actor)
            if status is not None:
                statement = statement.where(Voucher.status == status.value)
            statement = statement.order_by(col(Voucher.year).desc(), col(Voucher.month).desc())
            return [self.to_read(session, actor, voucher) for voucher in session.exec(statement).all()]

    def pending_for(self, actor: Actor) -> list[VoucherRead]:
        with self._session() as session:
            if actor.role in ALL_VOUCHER_VIEWER_ROLES:
                statement = select(Voucher).where(Voucher.status == VoucherState.SUPERVISOR_APPROVED.value)
            elif actor.role == Role.SUPERVISOR:
                inspectors = self._directory.inspectors_of(session, actor.user_id)
                if not inspectors:
                    return []
                statement = (
                    select(Voucher)
                    .where(Voucher.status == VoucherState.SUBMITTED.value)
                    .where(col(Voucher.owner_id).in_(inspectors))
                )
            else:
                return []
            statement = statement.order_by(col(Voucher.submitted_at))
            return [self.to_read(session, actor, voucher) for voucher in session.exec(statement).all()]

    def owner_of(self, session: Session, voucher: Voucher) -> User:
        return self._directory.get_user(session, voucher.owner_id)
