from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from app.domain.state_machine import ApprovalGuard


class Role(StrEnum):
    INSPECTOR = "inspector"
    SUPERVISOR = "supervisor"
    FLEET_MANAGER = "fleet_manager"
    ADMIN = "admin"


FLEET_ROLES: frozenset[Role] = frozenset({Role.FLEET_MANAGER, Role.ADMIN})
RATE_MANAGER_ROLES: frozenset[Role] = frozenset({Role.FLEET_MANAGER, Role.ADMIN})
ALL_VOUCHER_VIEWER_ROLES: frozenset[Role] = frozenset({Role.FLEET_MANAGER, Role.ADMIN})


@dataclass(frozen=True)
class Actor:
    """Identity and role of the caller, as supplied by the identity provider."""

    user_id: str
    role: Role
    ip_address: str | None = None


def is_fleet_role(role: str) -> bool:
    return role in FLEET_ROLES


def guard_allows(
    guard: ApprovalGuard,
    actor: Actor,
    *,
    owner_id: str,
    assigned_supervisor_id: str | None,
) -> bool:
    if guard == ApprovalGuard.OWNER:
        return actor.user_id == owner_id
    if guard == ApprovalGuard.ASSIGNED_SUPERVISOR:
        return assigned_supervisor_id is not None and actor.user_id == assigned_supervisor_id
    if guard == ApprovalGuard.FLEET:
        return is_fleet_role(actor.role)
    return False


def describe_guard(guard: ApprovalGuard) -> str:
    if guard == ApprovalGuard.OWNER:
        return "only the voucher owner"
    if guard == ApprovalGuard.ASSIGNED_SUPERVISOR:
        return "only the owner's assigned supervisor"
    return "only a fleet manager or admin"
