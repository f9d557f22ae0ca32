"""
auth/models.py -- Domain dataclasses for identity and access-control entities.

Pattern: Data class (pure data container, zero logic). Stores build these from
rows; services and routes pass them around. Timestamps are timezone-aware UTC
datetimes -- the store owns the conversion to and from its string columns.

Layer rule: no imports from api/, mail/, or the project outside the stdlib.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TokenKind(str, Enum):
    """The type tag embedded in every token as the token_type claim."""

    ACCESS = "access"
    REFRESH = "refresh"
    EMAIL_INVITATION = "email_invitation"


class OnboardingStatus(str, Enum):
    INVITED = "invited"
    COMPLETED = "COMPLETED"


@dataclass
class User:
    """An authenticated principal.

    hashed_password is a bcrypt digest. It is never returned by the API and
    never written to logs.
    """

    email: str
    hashed_password: str
    id: int | None = None
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Role:
    name: str
    description: str = ""
    id: int | None = None
    is_active: bool = True  # soft state: deactivated roles grant nothing
    created_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Permission:
    """A named capability. name is always "<resource>.<action>"."""

    name: str
    resource: str
    action: str
    description: str = ""
    id: int | None = None
    created_by: int | None = None
    created_at: datetime | None = None


@dataclass
class UserSession:
    """Server-side record of one successful login, keyed by jti."""

    user_id: int
    jti: str
    expires_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class OnboardingProcess:
    """Tracks an invited-but-not-yet-registered email.

    Expiry is never stored as a status; it is computed by comparing
    expired_at with the current time on read.
    """

    email: str
    role_ids: list[int]
    expired_at: datetime
    status: OnboardingStatus = OnboardingStatus.INVITED
    completed: bool = False
    created_by: int | None = None
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class UserWithRoles:
    user: User
    roles: list[Role] = field(default_factory=list)


@dataclass
class RoleWithPermissions:
    role: Role
    permissions: list[Permission] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Transient values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientMeta:
    """Optional client details recorded on the session row."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class SessionClaims:
    """Verified payload of an access or refresh token."""

    principal_id: int
    session_id: str
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class InvitationClaims:
    """Verified payload of an email-invitation token."""

    email: str
    role_ids: list[int]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthenticatedRequest:
    """A request whose access token has been verified.

    Passed explicitly down the call chain; nothing reads the principal id
    from ambient request state.
    """

    principal_id: int
    session_id: str


@dataclass(frozen=True)
class RegistrationFields:
    password: str
    first_name: str = ""
    last_name: str = ""
