from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_actor
from app.api.errors import raise_http_error
from app.domain.errors import ReimbursementError
from app.domain.models import (
    AssignmentCancelRequest,
    AssignmentProcessRequest,
    AssignmentRead,
    AssignmentRequestCreate,
    AssignmentRequestRead,
)
from app.domain.permissions import Actor
from app.domain.state_machine import AssignmentRequestStatus
from app.services.assignment_service import AssignmentService

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


CurrentActor = Annotated[Actor, Depends(get_actor)]
Service = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post("/requests", response_model=AssignmentRequestRead, status_code=status.HTTP_201_CREATED)
def create_request(payload: AssignmentRequestCreate, actor: CurrentActor, service: Service) -> AssignmentRequestRead:
    try:
        return AssignmentRequestRead.model_validate(service.request_assignment(actor, payload))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.get("/requests", response_model=list[AssignmentRequestRead])
def list_requests(
    actor: CurrentActor,
    service: Service,
    status_filter: Annotated[AssignmentRequestStatus | None, Query(alias="status")] = None,
) -> list[AssignmentRequestRead]:
    return [AssignmentRequestRead.model_validate(item) for item in service.list_requests(actor, status_filter)]


@router.get("/requests/{request_id}", response_model=AssignmentRequestRead)
def get_request(request_id: str, actor: CurrentActor, service: Service) -> AssignmentRequestRead:
    try:
        return AssignmentRequestRead.model_validate(service.get_request(actor, request_id))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.post("/requests/{request_id}/process", response_model=AssignmentRequestRead)
def process_request(
    request_id: str,
    payload: AssignmentProcessRequest,
    actor: CurrentActor,
    service: Service,
) -> AssignmentRequestRead:
    try:
        return AssignmentRequestRead.model_validate(service.process_request(actor, request_id, payload))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.post("/requests/{request_id}/cancel", response_model=AssignmentRequestRead)
def cancel_request(
    request_id: str,
    actor: CurrentActor,
    service: Service,
    payload: AssignmentCancelRequest | None = None,
) -> AssignmentRequestRead:
    try:
        return AssignmentRequestRead.model_validate(
            service.cancel_request(actor, request_id, payload or AssignmentCancelRequest())
        )
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.get("/{inspector_id}", response_model=AssignmentRead)
def get_assignment(inspector_id: str, _actor: CurrentActor, service: Service) -> AssignmentRead:
    try:
        return service.get_assignment(inspector_id)
    except ReimbursementError as exc:
        raise_http_error(exc)
