"""Auth dependencies — JWT validation, role enforcement."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt

from hrflow.auth.session import Actor
from hrflow.common.constants import UserRole
from hrflow.common.exceptions import ForbiddenException, UnauthorizedException
from hrflow.config import settings


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise UnauthorizedException("Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(request: Request) -> Actor:
    """Validate the JWT and return the Actor it was issued to."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise UnauthorizedException("Token has expired.")
    except JWTError:
        raise UnauthorizedException("Invalid token.")

    if payload.get("type") != "access" or not payload.get("sub"):
        raise UnauthorizedException("Invalid token type.")

    try:
        role = UserRole(payload.get("role", UserRole.employee.value))
    except ValueError:
        raise UnauthorizedException("Invalid token role.")

    actor = Actor(id=str(payload["sub"]), role=role, organization_id=payload.get("org"))
    request.state.actor = actor
    return actor


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise ForbiddenException(
                detail=f"Role '{actor.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return actor

    return _check
