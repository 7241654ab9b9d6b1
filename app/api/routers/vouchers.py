from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_actor
from app.api.errors import raise_http_error
from app.domain.errors import ReimbursementError
from app.domain.models import AuditLogRead, VoucherCreate, VoucherRead, VoucherRejectRequest
from app.domain.permissions import Actor
from app.domain.state_machine import VoucherState
from app.services.approval_service import ApprovalService
from app.services.audit_service import AuditService
from app.services.voucher_service import VoucherService

router = APIRouter()


def get_voucher_service() -> VoucherService:
    return VoucherService()


def get_approval_service() -> ApprovalService:
    return ApprovalService()


def get_audit_service() -> AuditService:
    return AuditService()


CurrentActor = Annotated[Actor, Depends(get_actor)]
Vouchers = Annotated[VoucherService, Depends(get_voucher_service)]
Approvals = Annotated[ApprovalService, Depends(get_approval_service)]
Audit = Annotated[AuditService, Depends(get_audit_service)]


@router.post("", response_model=VoucherRead, status_code=status.HTTP_201_CREATED)
def create_voucher(payload: VoucherCreate, actor: CurrentActor, vouchers: Vouchers) -> VoucherRead:
    try:
        return vouchers.create_voucher(actor, payload)
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.get("", response_model=list[VoucherRead])
def list_vouchers(
    actor: CurrentActor,
    vouchers: Vouchers,
    status_filter: Annotated[VoucherState | None, Query(alias="status")] = None,
) -> list[VoucherRead]:
    return vouchers.list_vouchers(actor, status_filter)


@router.get("/pending", response_model=list[VoucherRead])
def pending_vouchers(actor: CurrentActor, vouchers: Vouchers) -> list[VoucherRead]:
    return vouchers.pending_for(actor)


@router.get("/{voucher_id}", response_model=VoucherRead)
def get_voucher(voucher_id: str, actor: CurrentActor, vouchers: Vouchers) -> VoucherRead:
    try:
        return vouchers.get_voucher(actor, voucher_id)
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.get("/{voucher_id}/history", response_model=list[AuditLogRead])
def voucher_history(voucher_id: str, actor: CurrentActor, vouchers: Vouchers, audit: Audit) -> list[AuditLogRead]:
    try:
        vouchers.get_voucher(actor, voucher_id)
    except ReimbursementError as exc:
        raise_http_error(exc)
    return audit.history("voucher", voucher_id)


@router.delete("/{voucher_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_voucher(voucher_id: str, actor: CurrentActor, approvals: Approvals) -> Response:
    try:
        approvals.delete(actor, voucher_id)
    except ReimbursementError as exc:
        raise_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{voucher_id}/submit", response_model=VoucherRead)
def submit_voucher(voucher_id: str, actor: CurrentActor, approvals: Approvals) -> VoucherRead:
    try:
        return approvals.submit(actor, voucher_id)
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.post("/{voucher_id}/approve-supervisor", response_model=VoucherRead)
def approve_supervisor(voucher_id: str, actor: CurrentActor, approvals: Approvals) -> VoucherRead:
    try:
        return approvals.approve_supervisor(actor, voucher_id)
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.post("/{voucher_id}/approve-fleet", response_model=VoucherRead)
def approve_fleet(voucher_id: str, actor: CurrentActor, approvals: Approvals) -> VoucherRead:
    try:
        return approvals.approve_fleet(actor, voucher_id)
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.post("/{voucher_id}/reject", response_model=VoucherRead)
def reject_voucher(
    voucher_id: str,
    payload: VoucherRejectRequest,
    actor: CurrentActor,
    approvals: Approvals,
) -> VoucherRead:
    try:
        return approvals.reject(actor, voucher_id, payload.reason)
    except ReimbursementError as exc:
        raise_http_error(exc)
