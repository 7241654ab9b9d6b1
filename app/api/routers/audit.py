from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_actor
from app.domain.models import AuditLogPage, AuditStatsRead
from app.domain.permissions import Actor
from app.services.audit_service import MAX_PAGE_SIZE, AuditFilters, AuditService

router = APIRouter()


def get_audit_service() -> AuditService:
    return AuditService()


CurrentActor = Annotated[Actor, Depends(get_actor)]
Service = Annotated[AuditService, Depends(get_audit_service)]


@router.get("/logs", response_model=AuditLogPage)
def list_audit_logs(
    actor: CurrentActor,
    service: Service,
    actor_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AuditLogPage:
    filters = AuditFilters(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        date_from=date_from,
        date_to=date_to,
    )
    return service.query(actor, filters, limit=limit, offset=offset)


@router.get("/stats", response_model=AuditStatsRead)
def audit_stats(actor: CurrentActor, service: Service) -> AuditStatsRead:
    return service.stats(actor)
