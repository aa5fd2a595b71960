"""Token minting for the reference API.

There is no login endpoint; tokens are issued by whoever embeds the API
(and by the test suite) through ``create_access_token``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt

from hrflow.auth.session import Actor
from hrflow.config import settings


def create_access_token(actor: Actor, expires_minutes: Optional[int] = None) -> str:
    """Sign an access token carrying the actor's id, role, and organization."""
    now = datetime.now(timezone.utc)
    minutes = settings.JWT_EXPIRY_MINUTES if expires_minutes is None else expires_minutes
    payload = {
        "sub": str(actor.id),
        "role": actor.role.value,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    if actor.organization_id is not None:
        payload["org"] = str(actor.organization_id)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
