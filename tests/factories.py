from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.domain.models import User
from app.domain.permissions import Actor, Role
from app.infra.auth import hash_password


def add_user(
    engine: Engine,
    username: str,
    role: Role,
    *,
    position: str | None = None,
    assigned_supervisor_id: str | None = None,
    fls_supervisor_id: str | None = None,
) -> Actor:
    with Session(engine) as session:
        user = User(
            username=username,
            password_hash=hash_password("secret"),
            role=role,
            position=position,
            assigned_supervisor_id=assigned_supervisor_id,
            fls_supervisor_id=fls_supervisor_id,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return Actor(user_id=user.id, role=role, ip_address="10.0.0.1")


@dataclass
class People:
    fls: Actor
    supervisor: Actor
    other_supervisor: Actor
    fleet: Actor
    admin: Actor
    inspector: Actor
