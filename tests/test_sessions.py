"""
tests/test_sessions.py -- Login, refresh, logout, and purge through RbacService.

Coverage:
  - Login returns a verifiable token pair bound to a persisted session
  - Missing email and wrong password fail distinctly; both spend bcrypt work
  - Deactivated principals cannot log in and lose every open session
  - Refresh mints an access token on the same session until logout
  - Purge keeps sessions whose refresh tokens can still be presented
  - A cancelled login persists nothing
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from auth.deadline import Deadline
from auth.models import AuthenticatedRequest, ClientMeta
from auth.service import RbacService
from core.errors import (
    AlreadyExists,
    InvalidCredential,
    NotFound,
    OperationCancelled,
    PrincipalNotFound,
    SessionRevoked,
    StorageError,
    TokenExpired,
    TokenKindMismatch,
)
from tests.conftest import FrozenClock, make_user


class TestLogin:
    def test_login_opens_session(self, service: RbacService, clock: FrozenClock) -> None:
        user = make_user(service, "alice@example.com", "password123")
        pair = service.login(
            "alice@example.com", "password123", ClientMeta(ip_address="10.0.0.1", user_agent="pytest")
        )

        access = service.tokens.verify_access(pair.access_token)
        refresh = service.tokens.verify_refresh(pair.refresh_token)
        assert access.principal_id == refresh.principal_id == user.id
        assert access.session_id == refresh.session_id

        session = service.repos.sessions.find_by_jti(access.session_id)
        assert session is not None
        assert session.user_id == user.id
        assert session.is_active
        assert session.ip_address == "10.0.0.1"
        assert session.user_agent == "pytest"
        assert session.expires_at == clock() + service.tokens.access_ttl

    def test_each_login_is_a_new_session(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        first = service.login("alice@example.com", "password123")
        second = service.login("alice@example.com", "password123")
        assert first.access_token != second.access_token
        assert len(service.list_sessions(user.id)) == 2

    def test_unknown_email_spends_bcrypt_work(self, service: RbacService) -> None:
        with patch.object(service.hasher, "dummy_verify") as dummy:
            with pytest.raises(PrincipalNotFound):
                service.login("ghost@example.com", "password123")
        dummy.assert_called_once_with("password123")

    def test_wrong_password(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        with pytest.raises(InvalidCredential):
            service.login("alice@example.com", "wrong-password")
        assert service.list_sessions(user.id) == []

    def test_inactive_principal_cannot_login(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        service.set_user_active(user.id, False)
        with pytest.raises(PrincipalNotFound):
            service.login("alice@example.com", "password123")

    def test_cancelled_login_persists_nothing(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        deadline = Deadline()
        deadline.cancel()
        with pytest.raises(OperationCancelled):
            service.login("alice@example.com", "password123", deadline=deadline)
        assert service.list_sessions(user.id) == []

    def test_session_write_failure_returns_no_tokens(self, service: RbacService) -> None:
        make_user(service, "alice@example.com", "password123")
        with patch.object(service.repos.sessions, "insert", side_effect=StorageError("down")):
            with pytest.raises(StorageError):
                service.login("alice@example.com", "password123")

    def test_oauth_login_requires_existing_principal(self, service: RbacService) -> None:
        with pytest.raises(PrincipalNotFound):
            service.oauth_login("nobody@example.com")
        user = make_user(service, "alice@example.com")
        pair = service.oauth_login("alice@example.com")
        assert service.tokens.verify_access(pair.access_token).principal_id == user.id


class TestRefresh:
    def test_refresh_keeps_session(self, service: RbacService) -> None:
        make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        access = service.get_access_token_from_refresh(pair.refresh_token)
        original = service.tokens.verify_access(pair.access_token)
        renewed = service.tokens.verify_access(access)
        assert (renewed.principal_id, renewed.session_id) == (original.principal_id, original.session_id)

    def test_refresh_outlives_access_token(self, service: RbacService, clock: FrozenClock) -> None:
        make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        clock.advance(hours=2)
        with pytest.raises(TokenExpired):
            service.authenticate(pair.access_token)
        access = service.get_access_token_from_refresh(pair.refresh_token)
        assert service.authenticate(access).session_id == service.tokens.verify_refresh(pair.refresh_token).session_id

    def test_refresh_after_logout_rejected(self, service: RbacService) -> None:
        make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        auth = service.authenticate(pair.access_token)
        assert service.logout(auth) is True
        with pytest.raises(SessionRevoked):
            service.get_access_token_from_refresh(pair.refresh_token)

    def test_refresh_for_unknown_session_rejected(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com")
        forged = service.tokens.issue_refresh(user.id, "never-opened")
        with pytest.raises(SessionRevoked):
            service.get_access_token_from_refresh(forged)

    def test_refresh_bound_to_session_owner(self, service: RbacService) -> None:
        make_user(service, "alice@example.com", "password123")
        mallory = make_user(service, "mallory@example.com")
        pair = service.login("alice@example.com", "password123")
        session_id = service.tokens.verify_refresh(pair.refresh_token).session_id
        with pytest.raises(SessionRevoked):
            service.get_access_token_from_refresh(service.tokens.issue_refresh(mallory.id, session_id))

    def test_access_token_is_not_a_refresh_token(self, service: RbacService) -> None:
        make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        with pytest.raises(TokenKindMismatch):
            service.get_access_token_from_refresh(pair.access_token)

    def test_access_token_stays_valid_after_logout(self, service: RbacService) -> None:
        make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        auth = service.authenticate(pair.access_token)
        service.logout(auth)
        assert service.authenticate(pair.access_token) == auth


class TestLogoutAndPurge:
    def test_logout_everywhere(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        service.login("alice@example.com", "password123")
        service.login("alice@example.com", "password123")
        assert service.logout_everywhere(user.id) == 2
        assert service.list_sessions(user.id) == []

    def test_logout_twice_reports_nothing_changed(self, service: RbacService) -> None:
        make_user(service, "alice@example.com", "password123")
        auth = service.authenticate(service.login("alice@example.com", "password123").access_token)
        assert service.logout(auth) is True
        assert service.logout(auth) is False

    def test_purge_keeps_refreshable_sessions(self, service: RbacService, clock: FrozenClock) -> None:
        make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        clock.advance(days=1)
        assert service.purge_expired_sessions() == 0
        assert service.get_access_token_from_refresh(pair.refresh_token)

    def test_purge_reclaims_dead_sessions(self, service: RbacService, clock: FrozenClock) -> None:
        make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        session_id = service.tokens.verify_refresh(pair.refresh_token).session_id
        clock.advance(days=7)
        clock.advance(minutes=16)
        assert service.purge_expired_sessions() == 1
        assert service.repos.sessions.find_by_jti(session_id) is None

    def test_authenticate_returns_explicit_request(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        auth = service.authenticate(pair.access_token)
        assert isinstance(auth, AuthenticatedRequest)
        assert auth.principal_id == user.id


class TestUserActivation:
    def test_deactivation_closes_sessions(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        pair = service.login("alice@example.com", "password123")
        service.login("alice@example.com", "password123")

        updated = service.set_user_active(user.id, False)
        assert updated.is_active is False
        assert service.list_sessions(user.id) == []
        with pytest.raises(SessionRevoked):
            service.get_access_token_from_refresh(pair.refresh_token)

    def test_reactivation_restores_login(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        service.set_user_active(user.id, False)
        assert service.set_user_active(user.id, True).is_active is True
        assert service.login("alice@example.com", "password123").access_token

    def test_reactivation_blocked_when_email_reused(self, service: RbacService) -> None:
        old = make_user(service, "alice@example.com", "password123")
        service.set_user_active(old.id, False)
        make_user(service, "alice@example.com", "password456")
        with pytest.raises(AlreadyExists):
            service.set_user_active(old.id, True)
        assert service.repos.principals.find_by_id(old.id).is_active is False

    def test_unknown_user(self, service: RbacService) -> None:
        with pytest.raises(NotFound):
            service.set_user_active(404, False)

    def test_sessions_newest_first(self, service: RbacService) -> None:
        user = make_user(service, "alice@example.com", "password123")
        first = service.authenticate(service.login("alice@example.com", "password123").access_token)
        second = service.authenticate(service.login("alice@example.com", "password123").access_token)
        assert [s.jti for s in service.list_sessions(user.id)] == [second.session_id, first.session_id]
