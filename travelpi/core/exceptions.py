"""
Application error taxonomy

Every error carries the HTTP status it maps to and a short machine code.
The handlers registered in main.py render them as
{"error": <message>, "code": <code>}.
"""
from typing import Any, Optional

from fastapi import status


class AppError(Exception):
    """Base class for errors that are safe to show to the caller"""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "You do not have permission"):
        super().__init__(message)


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class ConflictError(AppError):
    """Already processed, already refunded, double payment"""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "CONFLICT_ERROR"


class RateLimitExceededError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_ERROR"

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Too many requests", details={"retryAfter": retry_after})
        self.retry_after = retry_after


class UpstreamServiceError(AppError):
    """The payment provider failed; the message stays generic"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "UPSTREAM_ERROR"
