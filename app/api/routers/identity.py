from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_actor, require_role
from app.api.errors import raise_http_error
from app.domain.errors import ReimbursementError
from app.domain.models import (
    BootstrapAdminRequest,
    DevLoginRequest,
    TokenResponse,
    UserCreate,
    UserProfileUpdate,
    UserRead,
)
from app.domain.permissions import Actor, Role
from app.infra.auth import JWT_EXPIRES_MIN, create_access_token
from app.services.identity_service import AuthError, IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


CurrentActor = Annotated[Actor, Depends(get_actor)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: ReimbursementError) -> None:
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.to_detail()) from exc
    raise_http_error(exc)


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> UserRead:
    try:
        user = service.bootstrap_admin(payload)
        return UserRead.model_validate(user)
    except ReimbursementError as exc:
        _handle_identity_error(exc)
        raise


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user = service.dev_login(payload.username, payload.password)
    except ReimbursementError as exc:
        _handle_identity_error(exc)
        raise
    token = create_access_token(user_id=user.id, role=user.role)
    return TokenResponse(access_token=token, expires_in=JWT_EXPIRES_MIN * 60)


@router.get("/me", response_model=UserRead)
def me(actor: CurrentActor, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(actor.user_id))
    except ReimbursementError as exc:
        _handle_identity_error(exc)
        raise


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    actor: Annotated[Actor, Depends(require_role(Role.ADMIN))],
    service: Service,
) -> UserRead:
    try:
        return UserRead.model_validate(service.create_user(actor, payload))
    except ReimbursementError as exc:
        _handle_identity_error(exc)
        raise


@router.get("/users", response_model=list[UserRead])
def list_users(actor: CurrentActor, service: Service, role: Role | None = None) -> list[UserRead]:
    try:
        return [UserRead.model_validate(item) for item in service.list_users(actor, role)]
    except ReimbursementError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/users/{user_id}", response_model=UserRead)
def update_user(user_id: str, payload: UserProfileUpdate, actor: CurrentActor, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.update_profile(actor, user_id, payload))
    except ReimbursementError as exc:
        _handle_identity_error(exc)
        raise
