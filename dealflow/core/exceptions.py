"""Domain exceptions raised by services and translated to HTTP responses."""

from fastapi import status


class DealflowError(Exception):
    """Base exception for domain operations."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DealflowError):
    """Referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class BadRequestError(DealflowError):
    """Operation not allowed in the current state, or invalid input."""

    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(DealflowError):
    """Caller is authenticated but not allowed to do this."""

    status_code = status.HTTP_403_FORBIDDEN


class UnauthorizedError(DealflowError):
    """Missing or invalid credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
