"""
auth/constants.py -- Built-in permission names and role names.

Naming scheme: every permission is "<resource>.<action>". Routes declare the
permissions they accept from this module; the CLI `seed` command creates one
Permission row per entry in BUILTIN_PERMISSIONS.
"""

USER_CREATE = "user.create"
USER_UPDATE = "user.update"
USER_DELETE = "user.delete"
USER_VIEW = "user.view"

ROLE_CREATE = "role.create"
ROLE_UPDATE = "role.update"
ROLE_DELETE = "role.delete"
ROLE_VIEW = "role.view"
ROLE_ASSIGN = "role.assign"

PERMISSION_CREATE = "permission.create"
PERMISSION_VIEW = "permission.view"
PERMISSION_ASSIGN = "permission.assign"

# (resource, action, description)
BUILTIN_PERMISSIONS: list[tuple[str, str, str]] = [
    ("user", "create", "User creation access"),
    ("user", "update", "User update access"),
    ("user", "delete", "User delete access"),
    ("user", "view", "User view access"),
    ("role", "create", "Role creation access"),
    ("role", "update", "Role update access"),
    ("role", "delete", "Role delete access"),
    ("role", "view", "Role view access"),
    ("role", "assign", "Role assign access"),
    ("permission", "create", "Permission creation access"),
    ("permission", "view", "Permission view access"),
    ("permission", "assign", "Permission assign access"),
]

SUPER_ADMIN_ROLE = "Super Admin"
