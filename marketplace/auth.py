"""Actor resolution for FastAPI routes.

Sessions are handled by the upstream auth layer, which forwards the signed-in
user's id in the ``X-Actor-Id`` header. Here we only resolve that id to a
user and enforce the role each route requires.
"""

import uuid
from collections.abc import Awaitable, Callable

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import get_db
from marketplace.models.user import User, UserRole


class AuthenticatedUser:
    """Container for the resolved actor."""

    def __init__(self, user_id: uuid.UUID, user: User) -> None:
        self.user_id = user_id
        self.user = user

    @property
    def role(self) -> UserRole:
        return self.user.role


async def current_user(
    x_actor_id: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header")
    try:
        user_id = uuid.UUID(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Malformed X-Actor-Id header")

    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown actor")
    return AuthenticatedUser(user_id=user_id, user=user)


def require_role(*roles: UserRole) -> Callable[..., Awaitable[AuthenticatedUser]]:
    """Dependency factory: only the given roles may call the route."""

    async def _check(auth: AuthenticatedUser = Depends(current_user)) -> AuthenticatedUser:
        if auth.role not in roles:
            allowed = ", ".join(r.value for r in roles)
            raise HTTPException(status_code=403, detail=f"Only {allowed} users can perform this action")
        return auth

    return _check
