from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ReimbursementError,
    ValidationError,
)
from app.domain.models import BootstrapAdminRequest, User, UserCreate, UserProfileUpdate, now_utc
from app.domain.permissions import Actor, Role
from app.infra.audit import AuditRecorder
from app.infra.auth import hash_password, verify_password
from app.infra.db import get_engine

logger = logging.getLogger("app.services.identity")


class AuthError(ReimbursementError):
    pass


class IdentityService:
    def __init__(self) -> None:
        self._audit = AuditRecorder()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _ensure_role(self, session: Session, user_id: str | None, role: Role, field: str) -> None:
        if user_id is None:
            return
        user = session.get(User, user_id)
        if user is None:
            raise ValidationError(f"{field} refers to an unknown user", field=field)
        if user.role != role:
            raise ValidationError(f"{field} must refer to a {role.value}", field=field)

    def count_users(self) -> int:
        with self._session() as session:
            return int(session.exec(select(func.count()).select_from(User)).one())

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            if session.exec(select(User)).first() is not None:
                raise ConflictError("system already initialized")
            user = User(
                username=payload.username,
                password_hash=hash_password(payload.password),
                role=Role.ADMIN,
            )
            session.add(user)
            session.flush()
            self._audit.append(
                session,
                actor=Actor(user_id=user.id, role=Role.ADMIN),
                action="user.bootstrap",
                resource_type="user",
                resource_id=user.id,
                details={"username": user.username, "role": Role.ADMIN},
            )
            session.commit()
        logger.info("admin_bootstrapped", extra={"user_id": user.id})
        return user

    def create_user(self, actor: Actor, payload: UserCreate) -> User:
        if actor.role != Role.ADMIN:
            raise PermissionDeniedError("only admins may create users", actor_id=actor.user_id)
        if not payload.username.strip() or not payload.password:
            raise ValidationError("username and password are required", field="username")
        with self._session() as session:
            self._ensure_role(session, payload.assigned_supervisor_id, Role.SUPERVISOR, "assigned_supervisor_id")
            self._ensure_role(session, payload.fls_supervisor_id, Role.SUPERVISOR, "fls_supervisor_id")
            user = User(
                username=payload.username.strip(),
                password_hash=hash_password(payload.password),
                role=payload.role,
                position=payload.position,
                assigned_supervisor_id=payload.assigned_supervisor_id,
                fls_supervisor_id=payload.fls_supervisor_id,
                is_active=payload.is_active,
            )
            session.add(user)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists", field="username") from exc
            self._audit.append(
                session,
                actor=actor,
                action="user.create",
                resource_type="user",
                resource_id=user.id,
                details={
                    "username": user.username,
                    "role": payload.role,
                    "position": payload.position,
                    "assigned_supervisor_id": payload.assigned_supervisor_id,
                    "fls_supervisor_id": payload.fls_supervisor_id,
                },
            )
            session.commit()
        logger.info("user_created", extra={"user_id": user.id, "role": payload.role.value, "actor_id": actor.user_id})
        return user

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found", user_id=user_id)
            return user

    def list_users(self, actor: Actor, role: Role | None = None) -> list[User]:
        if actor.role == Role.INSPECTOR:
            raise PermissionDeniedError("inspectors may not list users", actor_id=actor.user_id)
        with self._session() as session:
            statement = select(User)
            if role is not None:
                statement = statement.where(User.role == role.value)
            return list(session.exec(statement.order_by(col(User.username))).all())

    def update_profile(self, actor: Actor, user_id: str, payload: UserProfileUpdate) -> User:
        is_admin = actor.role == Role.ADMIN
        if actor.user_id != user_id and not is_admin:
            raise PermissionDeniedError("you may only update your own profile", user_id=user_id)
        changes = payload.model_dump(exclude_unset=True)
        if "fls_supervisor_id" in changes and not is_admin:
            raise PermissionDeniedError("only admins may set the FLS supervisor", field="fls_supervisor_id")

        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found", user_id=user_id)
            details: dict[str, object] = {}
            if "position" in changes:
                position = (changes["position"] or "").strip() or None
                user.position = position
                details["position"] = position
            if "fls_supervisor_id" in changes:
                self._ensure_role(session, changes["fls_supervisor_id"], Role.SUPERVISOR, "fls_supervisor_id")
                user.fls_supervisor_id = changes["fls_supervisor_id"]
                details["fls_supervisor_id"] = changes["fls_supervisor_id"]
            if changes.get("password"):
                user.password_hash = hash_password(changes["password"])
                details["password_changed"] = True
            user.updated_at = now_utc()
            session.add(user)
            session.flush()
            self._audit.append(
                session,
                actor=actor,
                action="user.update",
                resource_type="user",
                resource_id=user.id,
                details=details,
            )
            session.commit()
        return user

    def dev_login(self, username: str, password: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if not verify_password(password, user.password_hash):
                raise AuthError("invalid credentials")
            return user
