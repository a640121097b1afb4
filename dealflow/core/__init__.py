"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    create_session_factory,
    engine,
    get_session,
    init_db,
)
from .dependencies import (
    AdminDep,
    CurrentUser,
    CurrentUserDep,
    RepresentativeDep,
    SessionDep,
    StaffDep,
    get_current_user,
    require_roles,
)
from .exceptions import (
    BadRequestError,
    DealflowError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "create_session_factory",
    "get_session",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "require_roles",
    "CurrentUserDep",
    "AdminDep",
    "StaffDep",
    "RepresentativeDep",
    "SessionDep",
    # Errors
    "DealflowError",
    "NotFoundError",
    "BadRequestError",
    "ForbiddenError",
    "UnauthorizedError",
    # Security
    "create_access_token",
    "decode_token",
]
