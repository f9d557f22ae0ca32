"""
api/errors.py -- Maps the core error taxonomy onto HTTP responses.

Every IdentityError raised out of a route handler reaches
identity_error_handler(), which looks up (status, code, message) by walking the
exception's MRO against ERROR_RESPONSES. The most specific entry wins, so
PrincipalNotFound picks its own row before falling back to AuthenticationError.

Security notes:
  PrincipalNotFound and InvalidCredential share one response so a caller cannot
  tell a missing email from a wrong password.
  StorageError responses carry a fixed message. The chained SQLAlchemy error
  goes to the server log only.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from core import errors

logger = logging.getLogger("identityrbac.api.errors")

# exception class -> (status, code, fixed message or None to use str(exc))
ERROR_RESPONSES: dict[type[errors.IdentityError], tuple[int, str, str | None]] = {
    errors.PrincipalNotFound: (401, "authentication_failed", "Invalid email or password."),
    errors.InvalidCredential: (401, "authentication_failed", "Invalid email or password."),
    errors.TokenError: (401, "unauthenticated", "Authentication required."),
    errors.SessionRevoked: (401, "unauthenticated", "Session is no longer active."),
    errors.AuthenticationError: (401, "unauthenticated", "Authentication required."),
    errors.Unauthorized: (403, "forbidden", "You do not have permission to perform this action."),
    errors.AlreadyRegistered: (409, "already_registered", "An account already exists for this email."),
    errors.AlreadyInvited: (409, "already_invited", "An open invitation already exists for this email."),
    errors.AlreadyExists: (409, "conflict", None),
    errors.InvitationNotFound: (404, "invitation_not_found", "No open invitation for this email."),
    errors.NotFound: (404, "not_found", None),
    errors.RoleNotActive: (422, "role_not_active", None),
    errors.PasswordMismatch: (400, "password_mismatch", "Old password does not match."),
    errors.PasswordTooLong: (422, "password_too_long", "Password must be at most 72 bytes."),
    errors.NotificationError: (502, "notification_failed", "The invitation email could not be delivered."),
    errors.OperationCancelled: (503, "operation_cancelled", "The request did not complete in time."),
    errors.StorageError: (500, "storage_error", "A storage error occurred."),
}

_FALLBACK = (500, "internal_error", "An unexpected error occurred.")


def describe(exc: errors.IdentityError) -> tuple[int, str, str]:
    """Return (status, code, message) for a domain error."""
    for cls in type(exc).__mro__:
        if cls in ERROR_RESPONSES:
            status, code, message = ERROR_RESPONSES[cls]
            return status, code, message if message is not None else str(exc)
    return _FALLBACK


def error_response(status: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(exclude_none=True),
        headers=headers,
    )


async def identity_error_handler(request: Request, exc: errors.IdentityError) -> JSONResponse:
    status, code, message = describe(exc)
    if status >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, type(exc).__name__)
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    response = error_response(status, code, message, headers=headers)
    if status == 401:
        response.headers["Cache-Control"] = "no-store"
    return response
