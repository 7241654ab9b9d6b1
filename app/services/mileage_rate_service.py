from __future__ import annotations

import logging
import os
from datetime import date
from decimal import Decimal

from sqlalchemy import or_
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, PermissionDeniedError, ValidationError
from app.domain.models import MileageRate, MileageRateCreate
from app.domain.permissions import RATE_MANAGER_ROLES, Actor
from app.infra.audit import AuditRecorder
from app.infra.db import get_engine

logger = logging.getLogger("app.services.mileage_rates")

DEFAULT_MILEAGE_RATE = Decimal(os.getenv("DEFAULT_MILEAGE_RATE", "0.67"))
MAX_MILEAGE_RATE = Decimal("10")


class MileageRateService:
    def __init__(self) -> None:
        self._audit = AuditRecorder()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def rate_for(self, session: Session, on_date: date) -> Decimal:
        statement = (
            select(MileageRate)
            .where(MileageRate.effective_from <= on_date)
            .where(or_(col(MileageRate.effective_to).is_(None), col(MileageRate.effective_to) >= on_date))
            .order_by(col(MileageRate.effective_from).desc())
        )
        rate = session.exec(statement).first()
        if rate is None:
            return DEFAULT_MILEAGE_RATE
        return Decimal(str(rate.rate))

    def effective_rate(self, on_date: date) -> Decimal:
        with self._session() as session:
            return self.rate_for(session, on_date)

    def list_rates(self) -> list[MileageRate]:
        with self._session() as session:
            return list(session.exec(select(MileageRate).order_by(col(MileageRate.effective_from).desc())).all())

    def _find_overlap(self, session: Session, effective_from: date, effective_to: date | None) -> MileageRate | None:
        statement = select(MileageRate).where(
            or_(col(MileageRate.effective_to).is_(None), col(MileageRate.effective_to) >= effective_from)
        )
        if effective_to is not None:
            statement = statement.where(MileageRate.effective_from <= effective_to)
        return session.exec(statement).first()

    def create_rate(self, actor: Actor, payload: MileageRateCreate) -> MileageRate:
        if actor.role not in RATE_MANAGER_ROLES:
            raise PermissionDeniedError("only fleet managers and admins may set mileage rates", actor_id=actor.user_id)
        if payload.rate <= 0 or payload.rate > MAX_MILEAGE_RATE:
            raise ValidationError(f"rate must be greater than 0 and at most {MAX_MILEAGE_RATE}", field="rate")
        if payload.effective_to is not None and payload.effective_to < payload.effective_from:
            raise ValidationError("effective_to must not precede effective_from", field="effective_to")

        with self._session() as session:
            overlap = self._find_overlap(session, payload.effective_from, payload.effective_to)
            if overlap is not None:
                raise ConflictError("mileage rate overlaps an existing range", conflicting_id=overlap.id)
            rate = MileageRate(
                rate=payload.rate,
                effective_from=payload.effective_from,
                effective_to=payload.effective_to,
                notes=payload.notes,
                created_by=actor.user_id,
            )
            session.add(rate)
            session.flush()
            self._audit.append(
                session,
                actor=actor,
                action="mileage_rate.create",
                resource_type="mileage_rate",
                resource_id=rate.id,
                details={
                    "rate": payload.rate,
                    "effective_from": payload.effective_from,
                    "effective_to": payload.effective_to,
                },
            )
            session.commit()
            session.refresh(rate)
        logger.info("mileage_rate_created", extra={"rate_id": rate.id, "rate": str(rate.rate)})
        return rate
