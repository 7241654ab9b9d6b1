from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.domain.permissions import Actor, Role
from app.infra.auth import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/dev-login")


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client is not None else None


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
        Role(claims["role"])
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    request.state.claims = claims
    return claims


def get_actor(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> Actor:
    return Actor(user_id=claims["sub"], role=Role(claims["role"]), ip_address=client_ip(request))


def require_role(*roles: Role) -> Callable[[Actor], Actor]:
    expected = set(roles)

    def _checker(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
        if actor.role not in expected:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(sorted(role.value for role in expected))}",
            )
        return actor

    return _checker
