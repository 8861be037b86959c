"""
Acting user, as asserted by the upstream gateway.

Authentication happens before requests reach this service; the gateway
forwards the user id and role in ``X-User-Id`` / ``X-User-Role``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Header, HTTPException


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing identity headers")
    return Actor(user_id=x_user_id, role=x_user_role.strip().lower())


def require_role(*roles: str) -> Callable[..., Actor]:
    """Dependency factory: the actor must hold one of ``roles``."""

    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{actor.role}' may not perform this action",
            )
        return actor

    return dependency
