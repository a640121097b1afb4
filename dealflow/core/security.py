"""Security utilities: access token creation and verification."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt
from pydantic import BaseModel, ValidationError

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # User ID
    role: str
    email: str | None = None
    exp: datetime
    iat: datetime
    type: str = "access"

    @property
    def user_id(self) -> UUID:
        return UUID(self.sub)


def create_access_token(
    user_id: UUID,
    role: str,
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token.

    Login is handled elsewhere; this is used by the seed script and tests.
    """
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user_id),
        "role": getattr(role, "value", role),
        "email": email,
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate an access token. Returns None when invalid."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        decoded = TokenPayload(**payload)
        UUID(decoded.sub)
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired access token")
        return None
    except (jwt.InvalidTokenError, ValidationError, ValueError):
        return None

    if decoded.type != "access":
        return None
    return decoded
