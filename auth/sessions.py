"""
auth/sessions.py -- Password login, session recording, and refresh-token exchange.

Login never returns a token without a persisted session: the session row is
written after both tokens are signed, and a storage failure there aborts the
login with StorageError.

Refresh consults the session store. A refresh token whose session was
deactivated (logout) or reclaimed is rejected with SessionRevoked, so logging
out really ends the ability to mint new access tokens.

The sweep keeps a session row until every refresh token bound to it has
expired: rows are reclaimed once expires_at is older than the refresh TTL.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from auth.deadline import Deadline, check
from auth.hashing import PasswordHasher
from auth.models import AuthenticatedRequest, ClientMeta, TokenPair, User, UserSession
from auth.store import PrincipalStore, SessionStore
from auth.tokens import TokenService, utcnow
from core.errors import InvalidCredential, PrincipalNotFound, SessionRevoked

logger = logging.getLogger("identityrbac.auth.sessions")


class SessionManager:
    def __init__(
        self,
        principals: PrincipalStore,
        sessions: SessionStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._principals = principals
        self._sessions = sessions
        self._hasher = hasher
        self._tokens = tokens
        self._clock = clock

    def login(
        self,
        email: str,
        password: str,
        client: ClientMeta = ClientMeta(),
        deadline: Deadline | None = None,
    ) -> TokenPair:
        """Authenticate with email and password and open a new session.

        Always runs bcrypt, whether or not the email exists, so response time
        does not reveal registered emails. PrincipalNotFound and
        InvalidCredential are distinct for logs only.
        """
        check(deadline, "login")
        user = self._principals.find_by_email(email)
        if user is None:
            self._hasher.dummy_verify(password)
            logger.info("Login failed: no active principal for the supplied email")
            raise PrincipalNotFound("no active principal with that email")
        if not self._hasher.verify(user.hashed_password, password):
            logger.info("Login failed: invalid password (user_id=%s)", user.id)
            raise InvalidCredential("password does not match")
        return self._open_session(user, client, deadline)

    def login_verified(
        self,
        email: str,
        client: ClientMeta = ClientMeta(),
        deadline: Deadline | None = None,
    ) -> TokenPair:
        """Open a session for an identity already verified elsewhere (OAuth callback)."""
        check(deadline, "login")
        user = self._principals.find_by_email(email)
        if user is None:
            logger.info("External login failed: no active principal for the verified email")
            raise PrincipalNotFound("no active principal with that email")
        return self._open_session(user, client, deadline)

    def _open_session(self, user: User, client: ClientMeta, deadline: Deadline | None) -> TokenPair:
        session_id = str(uuid.uuid4())
        pair = TokenPair(
            access_token=self._tokens.issue_access(user.id, session_id),
            refresh_token=self._tokens.issue_refresh(user.id, session_id),
        )
        check(deadline, "login")
        self._sessions.insert(
            UserSession(
                user_id=user.id,
                jti=session_id,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                expires_at=self._clock() + self._tokens.access_ttl,
            )
        )
        logger.info("Session opened (user_id=%s, jti=%s)", user.id, session_id)
        return pair

    def refresh(self, refresh_token: str, deadline: Deadline | None = None) -> str:
        """Exchange a refresh token for a new access token on the same session."""
        claims = self._tokens.verify_refresh(refresh_token)
        check(deadline, "token refresh")
        session = self._sessions.find_by_jti(claims.session_id)
        if session is None or not session.is_active or session.user_id != claims.principal_id:
            logger.info("Refresh rejected: session revoked (jti=%s)", claims.session_id)
            raise SessionRevoked("session is no longer active")
        return self._tokens.refresh_access(refresh_token)

    def logout(self, auth: AuthenticatedRequest, deadline: Deadline | None = None) -> bool:
        check(deadline, "logout")
        deactivated = self._sessions.deactivate(auth.session_id)
        logger.info("Session closed (user_id=%s, jti=%s)", auth.principal_id, auth.session_id)
        return deactivated

    def logout_everywhere(self, principal_id: int, deadline: Deadline | None = None) -> int:
        check(deadline, "logout")
        count = self._sessions.deactivate_all_for_user(principal_id)
        logger.info("All sessions closed (user_id=%s, count=%d)", principal_id, count)
        return count

    def active_sessions(self, principal_id: int, deadline: Deadline | None = None) -> list[UserSession]:
        check(deadline, "list sessions")
        return self._sessions.list_active_for_user(principal_id)

    def purge_expired(self) -> int:
        """Reclaim sessions that no live token can reference any more."""
        removed = self._sessions.purge_expired(self._clock() - self._tokens.refresh_ttl)
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed
