"""
auth/errors.py -- Typed failures raised by the auth core and the route layer.

Every failure carries a fixed HTTP status and a stable machine-readable code.
Nothing in auth/ or cache/ builds HTTP responses; api/main.py owns the single
translator that turns a ServiceError into the JSON error envelope.

Layer rule: stdlib only.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for failures that map to an HTTP response."""

    status_code: int = 500
    error_code: str = "server_error"
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class BadRequestError(ServiceError):
    status_code = 400
    error_code = "bad_request"
    default_message = "Bad request."


class AuthenticationError(ServiceError):
    """The caller could not be identified (401)."""

    status_code = 401
    error_code = "unauthorized"
    default_message = "Not authorized to access this route."


class InvalidTokenError(AuthenticationError):
    error_code = "invalid_token"
    default_message = "Invalid token."


class TokenExpiredError(AuthenticationError):
    error_code = "token_expired"
    default_message = "Token has expired."


class RefreshTokenNotFoundError(AuthenticationError):
    """Signature is fine, but the token is no longer in the identity's history."""

    error_code = "refresh_token_not_found"
    default_message = "Refresh token not recognised."


class AccountSuspendedError(AuthenticationError):
    error_code = "account_suspended"
    default_message = "Your account has been suspended. Please contact support."


class ForbiddenError(ServiceError):
    status_code = 403
    error_code = "forbidden"
    default_message = "You do not have permission to perform this action."


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"
    default_message = "Data not found."


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"
    default_message = "Conflict."


class ServerError(ServiceError):
    pass
