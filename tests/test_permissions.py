"""
tests/test_permissions.py -- Permission resolution and the authorization gate.

Coverage:
  - Resolution is the deduplicated union over the principal's active roles
  - Deactivating a role removes its permissions; reactivating restores them
  - Any-of semantics; an empty requirement never passes
  - The gate fails closed on a missing principal and on resolver errors
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from auth.deadline import Deadline
from auth.models import AuthenticatedRequest
from auth.permissions import AuthorizationGate, PermissionResolver, has_any_permission
from auth.service import RbacService
from core.errors import OperationCancelled, StorageError, Unauthenticated, Unauthorized
from tests.conftest import make_role, make_user


class TestResolution:
    def test_union_of_roles_is_deduplicated(self, service: RbacService) -> None:
        viewer = make_role(service, "viewer", ["user.view", "role.view"])
        editor = make_role(service, "editor", ["role.view", "role.update"])
        user = make_user(service, "alice@example.com", role_ids=[viewer.id, editor.id])

        assert service.get_permissions(user.id) == ["role.update", "role.view", "user.view"]

    def test_principal_without_roles_has_nothing(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com")
        assert service.get_permissions(user.id) == []

    def test_inactive_role_grants_nothing(self, service: RbacService) -> None:
        active = make_role(service, "viewer", ["user.view"])
        retired = make_role(service, "admin", ["user.create"], is_active=False)
        user = make_user(service, "alice@example.com", role_ids=[active.id, retired.id])

        assert service.get_permissions(user.id) == ["user.view"]

        service.set_role_active(retired.id, True)
        assert service.get_permissions(user.id) == ["user.create", "user.view"]

    def test_resolution_honours_deadline(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com")
        deadline = Deadline()
        deadline.cancel()
        with pytest.raises(OperationCancelled):
            service.get_permissions(user.id, deadline=deadline)


class TestHasAnyPermission:
    @pytest.mark.parametrize(
        "granted,required,expected",
        [
            ({"a", "b"}, {"b", "c"}, True),
            ({"a"}, {"b"}, False),
            ({"a"}, set(), False),
            (set(), {"a"}, False),
        ],
    )
    def test_any_of(self, granted: set, required: set, expected: bool) -> None:
        assert has_any_permission(granted, required) is expected


class TestAuthorizationGate:
    def test_missing_principal_is_unauthenticated(self, service: RbacService) -> None:
        with pytest.raises(Unauthenticated):
            service.authorize(None, {"role.view"})

    def test_one_of_several_is_enough(self, service: RbacService) -> None:
        role = make_role(service, "assigner", ["role.assign"])
        user = make_user(service, "alice@example.com", role_ids=[role.id])
        auth = AuthenticatedRequest(principal_id=user.id, session_id="s")

        assert service.authorize(auth, {"role.view", "role.assign"}) is auth

    def test_no_overlap_is_unauthorized(self, service: RbacService) -> None:
        role = make_role(service, "viewer", ["user.view"])
        user = make_user(service, "alice@example.com", role_ids=[role.id])
        with pytest.raises(Unauthorized):
            service.authorize(AuthenticatedRequest(user.id, "s"), {"role.create"})

    def test_resolver_failure_denies(self) -> None:
        store = MagicMock()
        store.resolve_for_user.side_effect = StorageError("db down")
        gate = AuthorizationGate(PermissionResolver(store))
        with pytest.raises(Unauthorized):
            gate.authorize(AuthenticatedRequest(1, "s"), {"role.view"})

    def test_cancelled_resolution_denies(self, service: RbacService) -> None:
        role = make_role(service, "viewer", ["user.view"])
        user = make_user(service, "alice@example.com", role_ids=[role.id])
        deadline = Deadline()
        deadline.cancel()
        with pytest.raises(Unauthorized):
            service.authorize(AuthenticatedRequest(user.id, "s"), {"user.view"}, deadline=deadline)
