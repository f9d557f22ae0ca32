"""
API request and response models for the identity-rbac REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator

from auth.models import Permission, Role, RoleWithPermissions, User, UserSession, UserWithRoles

# bcrypt only reads the first 72 bytes of a password, so the limit is in
# UTF-8 bytes, not characters.
PASSWORD_MAX_BYTES = 72
PASSWORD_MIN_LENGTH = 6
_NAME_PATTERN = r"^[a-z][a-z0-9_-]*$"

# Passwords are taken verbatim. Only names are stripped.
PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes")
    return value


Password = Annotated[str, AfterValidator(_check_password_bytes)]


# ---------------------------------------------------------------------------
# Session requests / responses
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/login."""

    email: EmailStr
    password: Password = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class TokenPairResponse(BaseModel):
    """Response for a successful login or OAuth callback."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/token/refresh."""

    refresh_token: str = Field(min_length=1)


class AccessTokenResponse(BaseModel):
    """Response for POST /api/v1/token/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class PermissionsResponse(BaseModel):
    """Response for GET /api/v1/users/permissions."""

    model_config = ConfigDict(frozen=True)

    permissions: list[str]


class SessionResponse(BaseModel):
    """One open session of the caller, for GET /api/v1/users/sessions."""

    model_config = ConfigDict(frozen=True)

    id: int
    current: bool
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: datetime

    @classmethod
    def from_domain(cls, session: UserSession, current_jti: str) -> "SessionResponse":
        return cls(
            id=session.id,
            current=session.jti == current_jti,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


# ---------------------------------------------------------------------------
# Onboarding requests
# ---------------------------------------------------------------------------


class InviteRequest(BaseModel):
    """Request body for POST /api/v1/users/invite."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    user_name: str = Field(default="", max_length=255)
    role_ids: list[int] = Field(min_length=1, max_length=50)

    @field_validator("role_ids")
    @classmethod
    def dedupe_role_ids(cls, values: list[int]) -> list[int]:
        """Deduplicate while preserving order."""
        return list(dict.fromkeys(values))


class ResendInviteRequest(BaseModel):
    """Request body for POST /api/v1/users/invite/resend."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    user_name: str = Field(default="", max_length=255)


class InvitationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    role_ids: list[int]
    expired_at: datetime


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/register.

    Email and roles come from the invitation token, never from the body.
    """

    first_name: PersonName
    last_name: PersonName
    password: Password = Field(min_length=PASSWORD_MIN_LENGTH)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/users/reset-password."""

    old_password: Password = Field(min_length=1)
    new_password: Password = Field(min_length=PASSWORD_MIN_LENGTH)


# ---------------------------------------------------------------------------
# Role / permission administration
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    permission_ids: list[int] = Field(default_factory=list, max_length=200)


class RolePatch(BaseModel):
    """Request body for PATCH /api/v1/roles/{role_id}."""

    is_active: bool


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}."""

    is_active: bool


class PermissionCreate(BaseModel):
    """Request body for POST /api/v1/permissions. The name is "<resource>.<action>"."""

    model_config = ConfigDict(str_strip_whitespace=True)

    resource: str = Field(min_length=1, max_length=50, pattern=_NAME_PATTERN)
    action: str = Field(min_length=1, max_length=50, pattern=_NAME_PATTERN)
    description: str = Field(default="", max_length=500)


class AssignRoleRequest(BaseModel):
    """Request body for POST /api/v1/users/assign-role."""

    user_id: int = Field(gt=0)
    role_id: int = Field(gt=0)


class AssignPermissionRequest(BaseModel):
    """Request body for POST /api/v1/roles/assign-permission."""

    role_id: int = Field(gt=0)
    permission_id: int = Field(gt=0)


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    resource: str
    action: str
    description: str

    @classmethod
    def from_domain(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            name=permission.name,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
        )


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    is_active: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            is_active=role.is_active,
            created_at=role.created_at,
        )


class RoleWithPermissionsResponse(RoleResponse):
    permissions: list[PermissionResponse] = Field(default_factory=list)

    @classmethod
    def from_aggregate(cls, item: RoleWithPermissions) -> "RoleWithPermissionsResponse":
        base = RoleResponse.from_domain(item.role)
        return cls(
            **base.model_dump(),
            permissions=[PermissionResponse.from_domain(p) for p in item.permissions],
        )


class UserResponse(BaseModel):
    """Public view of a principal. The password hash never leaves the service."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    is_active: bool
    created_at: Optional[datetime] = None
    roles: list[RoleResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, user: User, roles: list[Role] | None = None) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            created_at=user.created_at,
            roles=[RoleResponse.from_domain(r) for r in roles or []],
        )

    @classmethod
    def from_aggregate(cls, item: UserWithRoles) -> "UserResponse":
        return cls.from_domain(item.user, item.roles)


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
