"""
auth/bootstrap.py -- First-run data: built-in permissions, the Super Admin role,
and the first administrator account.

Both functions are idempotent so `main.py seed` and `main.py add-user` can be
re-run safely against an existing database.
"""

from __future__ import annotations

import logging

from auth.constants import BUILTIN_PERMISSIONS, SUPER_ADMIN_ROLE
from auth.models import Role, User
from auth.service import RbacService
from core.errors import AlreadyRegistered

logger = logging.getLogger("identityrbac.auth.bootstrap")


def seed_permissions(service: RbacService) -> Role:
    """Create every built-in permission and a Super Admin role that holds them all."""
    existing = {p.name for p in service.list_permissions()}
    for resource, action, description in BUILTIN_PERMISSIONS:
        if f"{resource}.{action}" in existing:
            continue
        service.create_permission(resource, action, description)
        logger.info("Seeded permission %s.%s", resource, action)

    permission_ids = [p.id for p in service.list_permissions()]
    role = service.repos.roles.find_by_name(SUPER_ADMIN_ROLE)
    if role is None:
        return service.create_role(
            SUPER_ADMIN_ROLE,
            "Super Admin role with all permissions",
            created_by=None,
            permission_ids=permission_ids,
        )

    granted = {
        p.id
        for rp in service.list_roles_with_permissions(SUPER_ADMIN_ROLE)
        if rp.role.id == role.id
        for p in rp.permissions
    }
    for permission_id in permission_ids:
        if permission_id not in granted:
            service.assign_permission(role.id, permission_id, granted_by=None)
    return role


def create_super_admin(service: RbacService, email: str, password: str) -> User:
    """Create an active account holding the Super Admin role.

    Raises AlreadyRegistered if an active account already uses the email.
    """
    if service.repos.principals.find_by_email(email) is not None:
        raise AlreadyRegistered("an active account already uses this email")
    role = seed_permissions(service)
    hashed = service.hasher.hash(password)
    with service.db.transaction() as conn:
        user_id = service.repos.principals.insert(User(email=email, hashed_password=hashed), conn=conn)
        service.repos.assignments.insert_many(user_id, [role.id], granted_by=None, conn=conn)
    logger.info("Super admin created (user_id=%s)", user_id)
    return service.repos.principals.find_by_id(user_id)
