from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlmodel import Session, col, select

from app.domain.models import AuditCount, AuditLogEntry, AuditLogPage, AuditLogRead, AuditStatsRead
from app.domain.permissions import Actor, Role
from app.infra.db import get_engine

MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class AuditFilters:
    actor_id: str | None = None
    action: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class AuditService:
    """Read side of the audit trail."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _scoped(self, statement, actor: Actor, filters: AuditFilters):  # type: ignore[no-untyped-def]
        if actor.role == Role.INSPECTOR:
            statement = statement.where(AuditLogEntry.actor_id == actor.user_id)
        return self._filtered(statement, filters)

    def _filtered(self, statement, filters: AuditFilters):  # type: ignore[no-untyped-def]
        if filters.actor_id:
            statement = statement.where(AuditLogEntry.actor_id == filters.actor_id)
        if filters.action:
            statement = statement.where(AuditLogEntry.action == filters.action)
        if filters.resource_type:
            statement = statement.where(AuditLogEntry.resource_type == filters.resource_type)
        if filters.resource_id:
            statement = statement.where(AuditLogEntry.resource_id == filters.resource_id)
        if filters.date_from is not None:
            statement = statement.where(AuditLogEntry.created_at >= filters.date_from)
        if filters.date_to is not None:
            statement = statement.where(AuditLogEntry.created_at <= filters.date_to)
        return statement

    def query(
        self,
        actor: Actor,
        filters: AuditFilters | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> AuditLogPage:
        filters = filters or AuditFilters()
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        with self._session() as session:
            total = session.exec(self._scoped(select(func.count()).select_from(AuditLogEntry), actor, filters)).one()
            rows = session.exec(
                self._scoped(select(AuditLogEntry), actor, filters)
                .order_by(col(AuditLogEntry.id).desc())
                .offset(offset)
                .limit(limit)
            ).all()
        return AuditLogPage(
            items=[AuditLogRead.model_validate(row) for row in rows],
            total=int(total),
            limit=limit,
            offset=offset,
        )

    def history(self, resource_type: str, resource_id: str) -> list[AuditLogRead]:
        """Full trail of one resource; callers check the resource is visible first."""
        filters = AuditFilters(resource_type=resource_type, resource_id=resource_id)
        with self._session() as session:
            rows = session.exec(
                self._filtered(select(AuditLogEntry), filters).order_by(col(AuditLogEntry.id))
            ).all()
        return [AuditLogRead.model_validate(row) for row in rows]

    def _counts(self, session: Session, actor: Actor, column) -> list[AuditCount]:  # type: ignore[no-untyped-def]
        statement = self._scoped(select(column, func.count()).group_by(column), actor, AuditFilters())
        rows = session.exec(statement.order_by(func.count().desc(), column)).all()
        return [AuditCount(key=key, count=count) for key, count in rows]

    def stats(self, actor: Actor) -> AuditStatsRead:
        with self._session() as session:
            total = session.exec(self._scoped(select(func.count()).select_from(AuditLogEntry), actor, AuditFilters())).one()
            return AuditStatsRead(
                total=int(total),
                by_action=self._counts(session, actor, col(AuditLogEntry.action)),
                by_resource_type=self._counts(session, actor, col(AuditLogEntry.resource_type)),
            )
