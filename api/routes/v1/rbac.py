"""
api/routes/v1/rbac.py -- Role, permission, and user administration endpoints.

Routes (required permissions are any-of):
  POST  /api/v1/roles                    -- role.create
  GET   /api/v1/roles                    -- role.view | role.assign
  PATCH /api/v1/roles/{role_id}          -- role.update (activate / deactivate)
  GET   /api/v1/roles/permissions        -- role.view
  POST  /api/v1/roles/assign-permission  -- permission.assign
  GET   /api/v1/permissions              -- permission.view | role.assign
  POST  /api/v1/permissions              -- permission.create
  POST  /api/v1/users/assign-role        -- role.assign
  GET   /api/v1/users                    -- user.view
  PATCH /api/v1/users/{user_id}          -- user.update (activate / deactivate)

Deactivating a role revokes every permission it grants on the next request;
role edges are kept so reactivation restores them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    AssignPermissionRequest,
    AssignRoleRequest,
    MessageResponse,
    PermissionCreate,
    PermissionResponse,
    RoleCreate,
    RolePatch,
    RoleResponse,
    RoleWithPermissionsResponse,
    UserPatch,
    UserResponse,
)
from auth.constants import (
    PERMISSION_ASSIGN,
    PERMISSION_CREATE,
    PERMISSION_VIEW,
    ROLE_ASSIGN,
    ROLE_CREATE,
    ROLE_UPDATE,
    ROLE_VIEW,
    USER_UPDATE,
    USER_VIEW,
)
from auth.deadline import Deadline
from auth.dependencies import request_deadline, require_permissions
from auth.models import AuthenticatedRequest

router = APIRouter()


def _substring_filter():
    """A fresh Query per route; FastAPI binds the parameter name to the object."""
    return Query(default="", max_length=100, description="Case-insensitive substring filter.")


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    auth: AuthenticatedRequest = Depends(require_permissions(ROLE_CREATE)),
    deadline: Deadline = Depends(request_deadline),
) -> RoleResponse:
    """Create a role, optionally with its initial permissions, in one transaction."""
    role = request.app.state.rbac.create_role(
        body.name,
        body.description,
        created_by=auth.principal_id,
        permission_ids=body.permission_ids,
        deadline=deadline,
    )
    return RoleResponse.from_domain(role)


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    name: str = _substring_filter(),
    auth: AuthenticatedRequest = Depends(require_permissions(ROLE_VIEW, ROLE_ASSIGN)),
) -> list[RoleResponse]:
    return [RoleResponse.from_domain(r) for r in request.app.state.rbac.list_roles(name)]


@router.get("/roles/permissions", response_model=list[RoleWithPermissionsResponse])
def list_roles_with_permissions(
    request: Request,
    name: str = _substring_filter(),
    auth: AuthenticatedRequest = Depends(require_permissions(ROLE_VIEW)),
) -> list[RoleWithPermissionsResponse]:
    return [
        RoleWithPermissionsResponse.from_aggregate(item)
        for item in request.app.state.rbac.list_roles_with_permissions(name)
    ]


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RolePatch,
    auth: AuthenticatedRequest = Depends(require_permissions(ROLE_UPDATE)),
) -> RoleResponse:
    return RoleResponse.from_domain(request.app.state.rbac.set_role_active(role_id, body.is_active))


@router.post("/roles/assign-permission", response_model=MessageResponse, status_code=201)
def assign_permission(
    request: Request,
    body: AssignPermissionRequest,
    auth: AuthenticatedRequest = Depends(require_permissions(PERMISSION_ASSIGN)),
) -> MessageResponse:
    request.app.state.rbac.assign_permission(body.role_id, body.permission_id, granted_by=auth.principal_id)
    return MessageResponse(message="Permission granted to role.")


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(
    request: Request,
    name: str = _substring_filter(),
    auth: AuthenticatedRequest = Depends(require_permissions(PERMISSION_VIEW, ROLE_ASSIGN)),
) -> list[PermissionResponse]:
    return [PermissionResponse.from_domain(p) for p in request.app.state.rbac.list_permissions(name)]


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(
    request: Request,
    body: PermissionCreate,
    auth: AuthenticatedRequest = Depends(require_permissions(PERMISSION_CREATE)),
) -> PermissionResponse:
    """Create a permission named "<resource>.<action>"."""
    permission = request.app.state.rbac.create_permission(
        body.resource, body.action, body.description, created_by=auth.principal_id
    )
    return PermissionResponse.from_domain(permission)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.post("/users/assign-role", response_model=MessageResponse, status_code=201)
def assign_role(
    request: Request,
    body: AssignRoleRequest,
    auth: AuthenticatedRequest = Depends(require_permissions(ROLE_ASSIGN)),
) -> MessageResponse:
    request.app.state.rbac.assign_role(body.user_id, body.role_id, granted_by=auth.principal_id)
    return MessageResponse(message="Role assigned to user.")


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    email: str = _substring_filter(),
    auth: AuthenticatedRequest = Depends(require_permissions(USER_VIEW)),
) -> list[UserResponse]:
    """List principals (max 50) with their roles."""
    return [UserResponse.from_aggregate(item) for item in request.app.state.rbac.list_users(email)]


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    auth: AuthenticatedRequest = Depends(require_permissions(USER_UPDATE)),
) -> UserResponse:
    """Activate or deactivate a principal. Deactivation also closes its sessions."""
    return UserResponse.from_domain(request.app.state.rbac.set_user_active(user_id, body.is_active))
