"""
auth/service.py -- RbacService, the facade callers use.

Pattern: Facade. Composes the token service, session manager, permission
resolver, authorization gate, and onboarding state machine behind the
operations the API and CLI need. Administrative role/permission operations
live here too because they are thin validations around repository writes.

build_service() is the one place the object graph is assembled from Settings.
Nothing below it reads configuration on its own.

Layer rule: no imports from api/ or mail/. The notifier is injected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from auth.deadline import Deadline, check
from auth.hashing import PasswordHasher
from auth.models import (
    AuthenticatedRequest,
    ClientMeta,
    OnboardingProcess,
    Permission,
    RegistrationFields,
    Role,
    RoleWithPermissions,
    TokenPair,
    User,
    UserSession,
    UserWithRoles,
)
from auth.onboarding import Notifier, OnboardingStateMachine
from auth.permissions import AuthorizationGate, PermissionResolver
from auth.sessions import SessionManager
from auth.store import (
    Database,
    OnboardingStore,
    PermissionStore,
    PrincipalStore,
    RoleAssignmentStore,
    RolePermissionStore,
    RoleStore,
    SessionStore,
)
from auth.tokens import TokenService, utcnow
from core.errors import AlreadyExists, DuplicateRecord, NotFound

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("identityrbac.auth.service")


@dataclass
class Repositories:
    principals: PrincipalStore
    roles: RoleStore
    permissions: PermissionStore
    assignments: RoleAssignmentStore
    role_permissions: RolePermissionStore
    onboarding: OnboardingStore
    sessions: SessionStore

    @classmethod
    def for_database(cls, db: Database) -> Repositories:
        return cls(
            principals=PrincipalStore(db),
            roles=RoleStore(db),
            permissions=PermissionStore(db),
            assignments=RoleAssignmentStore(db),
            role_permissions=RolePermissionStore(db),
            onboarding=OnboardingStore(db),
            sessions=SessionStore(db),
        )


class RbacService:
    """Login, refresh, invite, register, reset-password, and permission queries."""

    def __init__(
        self,
        db: Database,
        repos: Repositories,
        hasher: PasswordHasher,
        tokens: TokenService,
        notifier: Notifier,
        invitation_url: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.repos = repos
        self.hasher = hasher
        self.tokens = tokens
        self.sessions = SessionManager(repos.principals, repos.sessions, hasher, tokens, clock=clock)
        self.resolver = PermissionResolver(repos.permissions)
        self.gate = AuthorizationGate(self.resolver)
        self.onboarding = OnboardingStateMachine(
            db,
            repos.principals,
            repos.roles,
            repos.assignments,
            repos.onboarding,
            hasher,
            tokens,
            notifier,
            invitation_url=invitation_url,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(
        self, email: str, password: str, client: ClientMeta = ClientMeta(), deadline: Deadline | None = None
    ) -> TokenPair:
        return self.sessions.login(email, password, client, deadline=deadline)

    def oauth_login(self, email: str, client: ClientMeta = ClientMeta(), deadline: Deadline | None = None) -> TokenPair:
        """Open a session for an email the OAuth provider has verified."""
        return self.sessions.login_verified(email, client, deadline=deadline)

    def get_access_token_from_refresh(self, refresh_token: str, deadline: Deadline | None = None) -> str:
        return self.sessions.refresh(refresh_token, deadline=deadline)

    def authenticate(self, access_token: str) -> AuthenticatedRequest:
        """Verify an access token and return the explicit authenticated-request value."""
        claims = self.tokens.verify_access(access_token)
        return AuthenticatedRequest(principal_id=claims.principal_id, session_id=claims.session_id)

    def logout(self, auth: AuthenticatedRequest, deadline: Deadline | None = None) -> bool:
        return self.sessions.logout(auth, deadline=deadline)

    def logout_everywhere(self, principal_id: int, deadline: Deadline | None = None) -> int:
        """Deactivate every session the principal holds. Returns how many were open."""
        return self.sessions.logout_everywhere(principal_id, deadline=deadline)

    def list_sessions(self, principal_id: int, deadline: Deadline | None = None) -> list[UserSession]:
        return self.sessions.active_sessions(principal_id, deadline=deadline)

    def purge_expired_sessions(self) -> int:
        return self.sessions.purge_expired()

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------

    def invite(
        self,
        inviter_id: int,
        email: str,
        role_ids: list[int],
        user_name: str = "",
        deadline: Deadline | None = None,
    ) -> OnboardingProcess:
        return self.onboarding.invite(inviter_id, email, role_ids, user_name=user_name, deadline=deadline)

    def resend_invitation(self, email: str, user_name: str = "", deadline: Deadline | None = None) -> OnboardingProcess:
        return self.onboarding.resend_invitation(email, user_name=user_name, deadline=deadline)

    def register(
        self, email: str, role_ids: list[int], fields: RegistrationFields, deadline: Deadline | None = None
    ) -> User:
        return self.onboarding.register(email, role_ids, fields, deadline=deadline)

    def reset_password(
        self, principal_id: int, old_password: str, new_password: str, deadline: Deadline | None = None
    ) -> None:
        self.onboarding.reset_password(principal_id, old_password, new_password, deadline=deadline)

    # ------------------------------------------------------------------
    # Permission queries
    # ------------------------------------------------------------------

    def get_permissions(self, principal_id: int, deadline: Deadline | None = None) -> list[str]:
        return sorted(self.resolver.resolve(principal_id, deadline=deadline))

    def authorize(
        self, auth: AuthenticatedRequest | None, required: set[str], deadline: Deadline | None = None
    ) -> AuthenticatedRequest:
        return self.gate.authorize(auth, required, deadline=deadline)

    # ------------------------------------------------------------------
    # Role and permission administration
    # ------------------------------------------------------------------

    def create_role(
        self,
        name: str,
        description: str,
        created_by: int | None,
        permission_ids: list[int] | None = None,
        deadline: Deadline | None = None,
    ) -> Role:
        """Create a role, optionally with permissions, as one atomic unit.

        Every permission id is validated before the transaction opens.
        """
        permission_ids = sorted(set(permission_ids or []))
        for permission_id in permission_ids:
            check(deadline, "create role")
            if self.repos.permissions.find_by_id(permission_id) is None:
                raise NotFound(f"permission {permission_id} does not exist")
        check(deadline, "create role")
        try:
            with self.db.transaction() as conn:
                role_id = self.repos.roles.insert(
                    Role(name=name, description=description, created_by=created_by), conn=conn
                )
                self.repos.role_permissions.insert_many(role_id, permission_ids, granted_by=created_by, conn=conn)
        except DuplicateRecord as exc:
            raise AlreadyExists(f"role {name!r} already exists") from exc
        logger.info("Role created (role_id=%s, created_by=%s)", role_id, created_by)
        return self.repos.roles.find_by_id(role_id)

    def set_role_active(self, role_id: int, is_active: bool) -> Role:
        if not self.repos.roles.set_active(role_id, is_active):
            raise NotFound(f"role {role_id} does not exist")
        logger.info("Role %s (role_id=%s)", "activated" if is_active else "deactivated", role_id)
        return self.repos.roles.find_by_id(role_id)

    def list_roles(self, name_filter: str = "") -> list[Role]:
        return self.repos.roles.list(name_filter)

    def list_roles_with_permissions(self, name_filter: str = "") -> list[RoleWithPermissions]:
        return self.repos.roles.list_with_permissions(name_filter)

    def create_permission(
        self, resource: str, action: str, description: str = "", created_by: int | None = None
    ) -> Permission:
        """Create a permission named "<resource>.<action>"."""
        permission = Permission(
            name=f"{resource}.{action}",
            resource=resource,
            action=action,
            description=description,
            created_by=created_by,
        )
        try:
            permission.id = self.repos.permissions.insert(permission)
        except DuplicateRecord as exc:
            raise AlreadyExists(f"permission {permission.name!r} already exists") from exc
        return self.repos.permissions.find_by_id(permission.id)

    def list_permissions(self, name_filter: str = "") -> list[Permission]:
        return self.repos.permissions.search(name_filter)

    def assign_role(self, user_id: int, role_id: int, granted_by: int) -> None:
        if self.repos.principals.find_by_id(user_id) is None:
            raise NotFound(f"user {user_id} does not exist")
        if self.repos.roles.find_by_id(role_id) is None:
            raise NotFound(f"role {role_id} does not exist")
        try:
            self.repos.assignments.insert_many(user_id, [role_id], granted_by=granted_by)
        except DuplicateRecord as exc:
            raise AlreadyExists("role already assigned to user") from exc
        logger.info("Role assigned (user_id=%s, role_id=%s, granted_by=%s)", user_id, role_id, granted_by)

    def assign_permission(self, role_id: int, permission_id: int, granted_by: int) -> None:
        if self.repos.roles.find_by_id(role_id) is None:
            raise NotFound(f"role {role_id} does not exist")
        if self.repos.permissions.find_by_id(permission_id) is None:
            raise NotFound(f"permission {permission_id} does not exist")
        try:
            self.repos.role_permissions.insert_many(role_id, [permission_id], granted_by=granted_by)
        except DuplicateRecord as exc:
            raise AlreadyExists("permission already granted to role") from exc
        logger.info(
            "Permission granted (role_id=%s, permission_id=%s, granted_by=%s)", role_id, permission_id, granted_by
        )

    def list_users(self, email_filter: str = "") -> list[UserWithRoles]:
        return self.repos.principals.list_with_roles(email_filter)

    def set_user_active(self, user_id: int, is_active: bool) -> User:
        """Activate or deactivate a principal.

        Deactivation closes every session in the same transaction, so no
        refresh token outlives the account. Reactivation fails with
        AlreadyExists when another active principal has taken the email.
        """
        try:
            with self.db.transaction() as conn:
                if not self.repos.principals.set_active(user_id, is_active, conn=conn):
                    raise NotFound(f"user {user_id} does not exist")
                closed = 0 if is_active else self.repos.sessions.deactivate_all_for_user(user_id, conn=conn)
        except DuplicateRecord as exc:
            raise AlreadyExists("another active account already uses this email") from exc
        logger.info(
            "User %s (user_id=%s, sessions_closed=%d)", "activated" if is_active else "deactivated", user_id, closed
        )
        return self.repos.principals.find_by_id(user_id)


def build_service(settings: Settings, db: Database, notifier: Notifier) -> RbacService:
    """Assemble the service graph from an explicit Settings object."""
    return RbacService(
        db=db,
        repos=Repositories.for_database(db),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        tokens=TokenService.from_settings(settings),
        notifier=notifier,
        invitation_url=settings.invitation_url,
    )
