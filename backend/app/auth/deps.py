"""Caller identity for the picker task API.

Identity is established upstream: the gateway authenticates the caller
and forwards their user id in ``X-User-Id``. Here we only load that user
and check what they may do.
"""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User, UserRole


async def get_current_user(
    x_user_id: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing X-User-Id header")

    user = await db.get(User, x_user_id)
    if user is None or not user.is_active:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unknown or deactivated user")
    return user


async def get_current_work_center(user: User = Depends(get_current_user)) -> str:
    """Work center id of the caller; 403 for users not stationed anywhere."""
    if not user.work_center_id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "User is not assigned to a work center")
    return user.work_center_id


def require_role(*roles: UserRole):
    """Build a dependency that admits only the given roles.

        @router.post("/generate")
        async def generate(user: User = Depends(require_role(UserRole.SUPERVISOR))):
    """
    allowed = ", ".join(role.value for role in roles)

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status.HTTP_403_FORBIDDEN, f"Requires role: {allowed}")
        return user

    return _check
