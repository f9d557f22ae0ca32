"""
auth/permissions.py -- Permission resolution and the request-time authorization gate.

PermissionResolver turns a principal id into the set of permission names its
active roles grant. AuthorizationGate compares that set against the permissions
an operation declares, with ANY-OF semantics: holding one of the required
permissions is enough. An operation that needs an AND of two permissions
declares two gates.

The gate fails closed. A missing principal is Unauthenticated; a resolver or
storage failure is Unauthorized, never a pass.

Layer rule: no imports from api/ or mail/. FastAPI glue lives in
auth/dependencies.py.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.deadline import Deadline, check
from auth.models import AuthenticatedRequest
from auth.store import PermissionStore
from core.errors import IdentityError, Unauthenticated, Unauthorized

logger = logging.getLogger("identityrbac.auth.permissions")


class PermissionResolver:
    def __init__(self, permissions: PermissionStore) -> None:
        self._permissions = permissions

    def resolve(self, principal_id: int, deadline: Deadline | None = None) -> frozenset[str]:
        """Return every permission name reachable from the principal. Order is irrelevant."""
        check(deadline, "permission resolution")
        return frozenset(self._permissions.resolve_for_user(principal_id))


def has_any_permission(granted: Iterable[str], required: Iterable[str]) -> bool:
    """Any-of check. An empty requirement never passes."""
    return not frozenset(granted).isdisjoint(required)


class AuthorizationGate:
    """Request-time permission check.

    Usage:
        gate = AuthorizationGate(resolver)
        gate.authorize(auth_request, {"role.create"})
    """

    def __init__(self, resolver: PermissionResolver) -> None:
        self._resolver = resolver

    def authorize(
        self,
        auth: AuthenticatedRequest | None,
        required: Iterable[str],
        deadline: Deadline | None = None,
    ) -> AuthenticatedRequest:
        """Return auth unchanged if the principal holds at least one required permission.

        Raises Unauthenticated when no verified principal is present and
        Unauthorized on any other failure.
        """
        if auth is None:
            raise Unauthenticated("no authenticated principal on the request")

        required = frozenset(required)
        try:
            granted = self._resolver.resolve(auth.principal_id, deadline=deadline)
        except IdentityError as exc:
            logger.error(
                "Permission resolution failed, denying access (user_id=%s, error=%s)",
                auth.principal_id,
                exc.code,
            )
            raise Unauthorized("permission lookup failed") from exc

        if has_any_permission(granted, required):
            return auth

        logger.info(
            "Access denied (user_id=%s, required_any_of=%s)",
            auth.principal_id,
            sorted(required),
        )
        raise Unauthorized("principal lacks the required permission")
