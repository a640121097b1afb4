"""FastAPI dependencies for authentication, authorization, and context."""

import logging
from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ADMIN_ROLES, User, UserRole
from .config import get_settings
from .database import get_session
from .exceptions import ForbiddenError, UnauthorizedError
from .security import decode_token

logger = logging.getLogger(__name__)
settings = get_settings()

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Represents the authenticated user context."""

    def __init__(self, user: User):
        self.user = user

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def is_admin(self) -> bool:
        return self.user.role in ADMIN_ROLES

    @property
    def is_representative(self) -> bool:
        return self.user.role == UserRole.REPRESENTATIVE


async def get_current_user(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user.

    The token is read from the ``Authorization: Bearer`` header, falling
    back to the auth cookie.
    """
    token = credentials.credentials if credentials else request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise UnauthorizedError("Not authenticated")

    payload = decode_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired token")

    result = await session.execute(select(User).where(User.id == payload.user_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        logger.warning(f"Token for unknown or inactive user {payload.sub}")
        raise UnauthorizedError("User not found")

    return CurrentUser(user=user)


def require_roles(*roles: UserRole) -> Callable[..., CurrentUser]:
    """Build a dependency that only admits the given roles."""
    allowed = set(roles)

    def dependency(
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if current_user.role not in allowed:
            raise ForbiddenError("You do not have permission to perform this action")
        return current_user

    return dependency


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
AdminDep = Annotated[CurrentUser, Depends(require_roles(*ADMIN_ROLES))]
StaffDep = Annotated[
    CurrentUser,
    Depends(require_roles(UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.REPRESENTATIVE)),
]
RepresentativeDep = Annotated[CurrentUser, Depends(require_roles(UserRole.REPRESENTATIVE))]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
