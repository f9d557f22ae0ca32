"""
core/errors.py -- Error taxonomy for the identity and access-control core.

Every domain failure is a subclass of IdentityError so the HTTP layer can map
the whole family with a single exception handler (api/errors.py). The classes
carry no HTTP knowledge -- status codes live in the api/ layer.

Security notes:
  PrincipalNotFound and InvalidCredential are distinct here for logging only.
  The API boundary collapses both into one "authentication failed" response so
  callers cannot enumerate registered emails.

  StorageError messages never include SQL parameters, password hashes, or
  token material. The original SQLAlchemy exception is chained via __cause__
  for server-side logs.

Layer rule: core/ is the kernel. This module imports nothing from the project.
"""


class IdentityError(Exception):
    """Base class for every error raised by the identity core."""

    code = "identity_error"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthenticationError(IdentityError):
    """The caller could not be authenticated."""

    code = "unauthenticated"


class PrincipalNotFound(AuthenticationError):
    code = "principal_not_found"


class InvalidCredential(AuthenticationError):
    code = "invalid_credential"


class TokenError(AuthenticationError):
    """Base for token verification failures. All are terminal for the request."""

    code = "invalid_token"


class TokenExpired(TokenError):
    code = "token_expired"


class TokenKindMismatch(TokenError):
    """A correctly signed, unexpired token of the wrong kind."""

    code = "token_kind_mismatch"


class TokenSignatureInvalid(TokenError):
    """Bad signature, malformed token, or a claim set missing required fields."""

    code = "token_signature_invalid"


class SessionRevoked(AuthenticationError):
    """The session a refresh token is bound to was deactivated or reclaimed."""

    code = "session_revoked"


class Unauthenticated(AuthenticationError):
    """No verified principal is attached to the request."""

    code = "unauthenticated"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class Unauthorized(IdentityError):
    """The principal lacks every permission the operation accepts."""

    code = "unauthorized"


# ---------------------------------------------------------------------------
# Onboarding and account rules
# ---------------------------------------------------------------------------


class AlreadyRegistered(IdentityError):
    code = "already_registered"


class AlreadyInvited(IdentityError):
    code = "already_invited"


class InvitationNotFound(IdentityError):
    code = "invitation_not_found"


class RoleNotActive(IdentityError):
    code = "role_not_active"

    def __init__(self, role_id: int) -> None:
        super().__init__(f"role {role_id} is not active")
        self.role_id = role_id


class PasswordMismatch(IdentityError):
    code = "password_mismatch"


class PasswordTooLong(IdentityError):
    """bcrypt accepts at most 72 bytes of input."""

    code = "password_too_long"


class NotFound(IdentityError):
    code = "not_found"


class AlreadyExists(IdentityError):
    code = "already_exists"


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class StorageError(IdentityError):
    """Wraps any repository failure."""

    code = "storage_error"


class DuplicateRecord(StorageError):
    """A uniqueness constraint rejected an insert."""

    code = "duplicate_record"


class NotificationError(IdentityError):
    """The mail collaborator failed to deliver a message."""

    code = "notification_failed"


class OperationCancelled(IdentityError):
    """The caller's deadline passed or the caller cancelled the operation."""

    code = "operation_cancelled"
