from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session as OrmSession
from sqlmodel import Session

from app.domain.errors import ImmutableRecordError
from app.domain.models import AuditLogEntry, AuditScalar
from app.domain.permissions import Actor

logger = logging.getLogger("app.audit")


def normalize_detail_value(value: Any) -> AuditScalar:
    if isinstance(value, Enum):
        return normalize_detail_value(value.value)
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


def normalize_details(details: dict[str, Any] | None) -> dict[str, AuditScalar]:
    return {str(key): normalize_detail_value(value) for key, value in (details or {}).items()}


class AuditRecorder:
    """Appends audit entries inside the caller's transaction.

    The entry is flushed immediately so that a failing write surfaces before
    the caller commits, and the whole business change is rolled back with it.
    """

    def append(
        self,
        session: Session,
        *,
        actor: Actor | None,
        action: str,
        resource_type: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
    ) -> int:
        entry = AuditLogEntry(
            actor_id=actor.user_id if actor is not None else None,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=normalize_details(details),
            ip_address=actor.ip_address if actor is not None else None,
        )
        session.add(entry)
        session.flush()
        if entry.id is None:
            raise RuntimeError("audit entry was not assigned an id")
        logger.debug(
            "audit_entry_staged",
            extra={"audit_id": entry.id, "action": action, "resource_type": resource_type, "resource_id": resource_id},
        )
        return entry.id


def _block_audit_update(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": "AuditLogEntry", "entity_id": target.id, "operation": "UPDATE"},
    )
    raise ImmutableRecordError("audit entries cannot be modified", audit_id=target.id)


def _block_audit_delete(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": "AuditLogEntry", "entity_id": target.id, "operation": "DELETE"},
    )
    raise ImmutableRecordError("audit entries cannot be deleted", audit_id=target.id)


def _targets_audit_log(orm_execute_state) -> bool:  # type: ignore[no-untyped-def]
    mapper = orm_execute_state.bind_mapper
    if mapper is not None:
        return mapper.class_ is AuditLogEntry
    table = getattr(orm_execute_state.statement, "table", None)
    return getattr(table, "name", None) == AuditLogEntry.__tablename__


def _block_bulk_audit_mutation(orm_execute_state) -> None:  # type: ignore[no-untyped-def]
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    if not _targets_audit_log(orm_execute_state):
        return
    operation = "UPDATE" if orm_execute_state.is_update else "DELETE"
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": "AuditLogEntry", "operation": f"BULK {operation}"},
    )
    raise ImmutableRecordError("audit entries are append-only", operation=operation.lower())


def register_immutability_listeners() -> None:
    if event.contains(AuditLogEntry, "before_update", _block_audit_update):
        return
    event.listen(AuditLogEntry, "before_update", _block_audit_update)
    event.listen(AuditLogEntry, "before_delete", _block_audit_delete)
    event.listen(OrmSession, "do_orm_execute", _block_bulk_audit_mutation)


register_immutability_listeners()
