"""Session provider — who is acting, and with which bearer credential.

The workflow core only reads the session. The API client is the one place
that calls ``invalidate()``, when the server answers 401.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from jose import JWTError, jwt

from hrflow.common.constants import APPROVER_ROLES, UserRole
from hrflow.common.dates import utcnow
from hrflow.common.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated user: identity, role, and organization scope."""

    id: str
    role: UserRole
    organization_id: Optional[str] = None

    @property
    def is_approver(self) -> bool:
        return self.role in APPROVER_ROLES


class SessionProvider(abc.ABC):
    """Supplies the current actor and bearer token to the API client."""

    @abc.abstractmethod
    def current_actor(self) -> Actor:
        """The signed-in actor. Raises UnauthorizedException when signed out."""

    @abc.abstractmethod
    def bearer_token(self) -> Optional[str]:
        """Token to send as ``Authorization: Bearer``; None when signed out."""

    @abc.abstractmethod
    def is_valid(self) -> bool:
        """False once the credential is missing, expired, or invalidated."""

    @abc.abstractmethod
    def invalidate(self) -> None:
        """Forget the credential (logout)."""


class TokenSession(SessionProvider):
    """Session holding a JWT and the actor it was issued to.

    Args:
        token: Bearer token.
        actor: Actor the token belongs to.
        expires_at: When the token stops being usable; None means never.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        token: str,
        actor: Actor,
        *,
        expires_at: Optional[datetime] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._token: Optional[str] = token
        self._actor = actor
        self._expires_at = expires_at
        self._clock = clock

    @classmethod
    def from_token(cls, token: str, *, clock: Callable[[], datetime] = utcnow) -> "TokenSession":
        """Build a session from the claims of an access token (sub, role, org, exp).

        The signature is not checked here; the server verifies it on every call.
        """
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise UnauthorizedException("Malformed access token.") from exc

        try:
            role = UserRole(claims.get("role", UserRole.employee.value))
        except ValueError as exc:
            raise UnauthorizedException(f"Unknown role '{claims.get('role')}'.") from exc

        if not claims.get("sub"):
            raise UnauthorizedException("Malformed access token.")

        exp = claims.get("exp")
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None
        actor = Actor(id=str(claims["sub"]), role=role, organization_id=claims.get("org"))
        return cls(token, actor, expires_at=expires_at, clock=clock)

    def current_actor(self) -> Actor:
        if not self.is_valid():
            raise UnauthorizedException()
        return self._actor

    def bearer_token(self) -> Optional[str]:
        return self._token if self.is_valid() else None

    def is_valid(self) -> bool:
        if self._token is None:
            return False
        if self._expires_at is not None and self._clock() >= self._expires_at:
            return False
        return True

    def invalidate(self) -> None:
        if self._token is not None:
            logger.info("Session for %s invalidated", self._actor.id)
        self._token = None
