"""
tests/test_store.py -- Repository behaviour against an in-memory SQLite database.

Coverage:
  - Email is unique among active principals only
  - Transactions roll every write back on error
  - Duplicate edges and names surface as DuplicateRecord
  - mark_completed() succeeds once per record
  - Session purge honours the cutoff; deactivation is idempotent
  - Aggregate listings (users with roles, roles with permissions) and LIKE filters
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.models import OnboardingProcess, Permission, Role, User, UserSession
from auth.service import Repositories
from auth.store import Database
from core.errors import DuplicateRecord

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def repos(db: Database) -> Repositories:
    return Repositories.for_database(db)


def _user(email: str, active: bool = True) -> User:
    return User(email=email, hashed_password="$2b$04$placeholder", is_active=active)


def _permission(resource: str, action: str) -> Permission:
    return Permission(name=f"{resource}.{action}", resource=resource, action=action)


class TestDatabase:
    def test_ping(self, db: Database) -> None:
        assert db.ping() is True

    def test_create_schema_is_idempotent(self, db: Database) -> None:
        db.create_schema()
        db.create_schema()

    def test_transaction_rolls_back(self, db: Database, repos: Repositories) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                repos.principals.insert(_user("a@example.com"), conn=conn)
                raise RuntimeError("abort")
        assert repos.principals.find_by_email("a@example.com") is None


class TestPrincipalStore:
    def test_active_email_is_unique(self, repos: Repositories) -> None:
        repos.principals.insert(_user("a@example.com"))
        with pytest.raises(DuplicateRecord):
            repos.principals.insert(_user("a@example.com"))

    def test_inactive_email_can_be_reused(self, repos: Repositories) -> None:
        old_id = repos.principals.insert(_user("a@example.com"))
        repos.principals.set_active(old_id, False)
        new_id = repos.principals.insert(_user("a@example.com"))

        assert new_id != old_id
        assert repos.principals.find_by_email("a@example.com").id == new_id
        assert repos.principals.find_by_id(old_id).is_active is False

    def test_find_by_email_ignores_inactive(self, repos: Repositories) -> None:
        user_id = repos.principals.insert(_user("a@example.com", active=False))
        assert repos.principals.find_by_email("a@example.com") is None
        assert repos.principals.find_by_id(user_id) is not None

    def test_update_password_hash(self, repos: Repositories) -> None:
        user_id = repos.principals.insert(_user("a@example.com"))
        assert repos.principals.update_password_hash(user_id, "new-hash") is True
        assert repos.principals.find_by_id(user_id).hashed_password == "new-hash"
        assert repos.principals.update_password_hash(999, "x") is False

    def test_list_with_roles(self, repos: Repositories) -> None:
        alice = repos.principals.insert(_user("alice@example.com"))
        repos.principals.insert(_user("bob@example.com"))
        admin = repos.roles.insert(Role(name="admin"))
        viewer = repos.roles.insert(Role(name="viewer"))
        repos.assignments.insert_many(alice, [viewer, admin], granted_by=None)

        listed = repos.principals.list_with_roles()
        assert [u.user.email for u in listed] == ["bob@example.com", "alice@example.com"]
        assert [r.name for r in listed[1].roles] == ["admin", "viewer"]
        assert listed[0].roles == []

        filtered = repos.principals.list_with_roles("ali")
        assert [u.user.email for u in filtered] == ["alice@example.com"]

    def test_like_filter_escapes_wildcards(self, repos: Repositories) -> None:
        repos.principals.insert(_user("a_b@example.com"))
        repos.principals.insert(_user("axb@example.com"))
        assert [u.user.email for u in repos.principals.list_with_roles("a_b")] == ["a_b@example.com"]


class TestRolesAndPermissions:
    def test_role_name_unique(self, repos: Repositories) -> None:
        repos.roles.insert(Role(name="admin"))
        with pytest.raises(DuplicateRecord):
            repos.roles.insert(Role(name="admin"))

    def test_find_active(self, repos: Repositories) -> None:
        repos.roles.insert(Role(name="live"))
        repos.roles.insert(Role(name="retired", is_active=False))
        assert [r.name for r in repos.roles.find_active()] == ["live"]
        assert [r.name for r in repos.roles.list()] == ["live", "retired"]

    def test_set_active_missing_role(self, repos: Repositories) -> None:
        assert repos.roles.set_active(404, False) is False

    def test_duplicate_edges(self, repos: Repositories) -> None:
        user_id = repos.principals.insert(_user("a@example.com"))
        role_id = repos.roles.insert(Role(name="admin"))
        perm_id = repos.permissions.insert(_permission("user", "view"))
        repos.assignments.insert_many(user_id, [role_id], granted_by=None)
        repos.role_permissions.insert_many(role_id, [perm_id], granted_by=None)
        with pytest.raises(DuplicateRecord):
            repos.assignments.insert_many(user_id, [role_id], granted_by=None)
        with pytest.raises(DuplicateRecord):
            repos.role_permissions.insert_many(role_id, [perm_id], granted_by=None)

    def test_list_with_permissions_groups_by_role(self, repos: Repositories) -> None:
        admin = repos.roles.insert(Role(name="admin", description="all"))
        repos.roles.insert(Role(name="empty"))
        view = repos.permissions.insert(_permission("user", "view"))
        create = repos.permissions.insert(_permission("user", "create"))
        repos.role_permissions.insert_many(admin, [view, create], granted_by=None)

        listed = repos.roles.list_with_permissions()
        assert [item.role.name for item in listed] == ["admin", "empty"]
        assert listed[0].role.description == "all"
        assert [p.name for p in listed[0].permissions] == ["user.create", "user.view"]
        assert listed[1].permissions == []

    def test_search_permissions(self, repos: Repositories) -> None:
        repos.permissions.insert(_permission("user", "view"))
        repos.permissions.insert(_permission("role", "view"))
        assert [p.name for p in repos.permissions.search("role")] == ["role.view"]
        assert len(repos.permissions.search()) == 2


class TestOnboardingStore:
    def _record(self, email: str = "a@example.com") -> OnboardingProcess:
        return OnboardingProcess(id="rec-1", email=email, role_ids=[3, 1], expired_at=NOW + timedelta(days=1))

    def test_round_trip(self, repos: Repositories) -> None:
        repos.onboarding.insert(self._record())
        stored = repos.onboarding.find_by_email("a@example.com")
        assert stored.role_ids == [3, 1]
        assert stored.expired_at == NOW + timedelta(days=1)
        assert stored.completed is False

    def test_one_record_per_email(self, repos: Repositories) -> None:
        repos.onboarding.insert(self._record())
        with pytest.raises(DuplicateRecord):
            repos.onboarding.insert(OnboardingProcess(id="rec-2", email="a@example.com", role_ids=[], expired_at=NOW))

    def test_mark_completed_once(self, repos: Repositories) -> None:
        repos.onboarding.insert(self._record())
        assert repos.onboarding.mark_completed("a@example.com") is True
        assert repos.onboarding.mark_completed("a@example.com") is False
        assert repos.onboarding.mark_completed("missing@example.com") is False

    def test_delete_stale_expired(self, repos: Repositories) -> None:
        repos.onboarding.insert(self._record())
        assert repos.onboarding.delete_stale("rec-1", NOW) is False
        assert repos.onboarding.delete_stale("rec-1", NOW + timedelta(days=1)) is True
        assert repos.onboarding.find_by_email("a@example.com") is None

    def test_delete_stale_completed(self, repos: Repositories) -> None:
        repos.onboarding.insert(self._record())
        repos.onboarding.mark_completed("a@example.com")
        assert repos.onboarding.delete_stale("rec-1", NOW) is True

    def test_delete_stale_leaves_a_replacement(self, repos: Repositories) -> None:
        repos.onboarding.insert(OnboardingProcess(id="rec-2", email="a@example.com", role_ids=[1], expired_at=NOW + timedelta(days=1)))
        assert repos.onboarding.delete_stale("rec-1", NOW + timedelta(days=2)) is False
        assert repos.onboarding.find_by_email("a@example.com").id == "rec-2"


class TestSessionStore:
    def _session(self, user_id: int, jti: str, expires_at: datetime) -> UserSession:
        return UserSession(user_id=user_id, jti=jti, expires_at=expires_at)

    def test_jti_unique(self, repos: Repositories) -> None:
        repos.sessions.insert(self._session(1, "j1", NOW))
        with pytest.raises(DuplicateRecord):
            repos.sessions.insert(self._session(1, "j1", NOW))

    def test_deactivate(self, repos: Repositories) -> None:
        repos.sessions.insert(self._session(1, "j1", NOW))
        assert repos.sessions.deactivate("j1") is True
        assert repos.sessions.deactivate("j1") is False
        assert repos.sessions.find_by_jti("j1").is_active is False

    def test_deactivate_all_for_user(self, repos: Repositories) -> None:
        repos.sessions.insert(self._session(1, "j1", NOW))
        repos.sessions.insert(self._session(1, "j2", NOW))
        repos.sessions.insert(self._session(2, "j3", NOW))
        assert repos.sessions.deactivate_all_for_user(1) == 2
        assert [s.jti for s in repos.sessions.list_active_for_user(2)] == ["j3"]

    def test_purge_cutoff(self, repos: Repositories) -> None:
        repos.sessions.insert(self._session(1, "old", NOW - timedelta(days=10)))
        repos.sessions.insert(self._session(1, "fresh", NOW - timedelta(hours=1)))
        assert repos.sessions.purge_expired(NOW - timedelta(days=7)) == 1
        assert repos.sessions.find_by_jti("old") is None
        assert repos.sessions.find_by_jti("fresh") is not None
