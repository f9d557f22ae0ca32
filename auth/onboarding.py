"""
auth/onboarding.py -- Invite -> register -> activate state machine.

States:   (none) --invite--> invited --register--> COMPLETED
Expiry is not a stored state. An invited record whose expired_at has passed is
treated as absent by register() and may be replaced by a new invite().

Ordering guarantees:
  invite()    The onboarding row commits BEFORE the invitation token is signed
              and mailed. If the mail transport fails the invitation still
              exists and resend_invitation() can deliver it later.
  register()  Every role id is checked for existence and activity before any
              write. The principal insert, the role edges, and the COMPLETED
              mark are one transaction; a duplicate email or a lost completion
              race rolls all three back and surfaces AlreadyRegistered.

Password hashing happens outside the transaction so no database lock is held
across bcrypt.

Layer rule: no imports from api/ or mail/. The mail collaborator is any object
with a send(to, template_name, data) method.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Protocol
from urllib.parse import urlencode

from auth.deadline import Deadline, check
from auth.hashing import PasswordHasher
from auth.models import OnboardingProcess, OnboardingStatus, RegistrationFields, User
from auth.store import Database, OnboardingStore, PrincipalStore, RoleAssignmentStore, RoleStore
from auth.tokens import TokenService, utcnow
from core.errors import (
    AlreadyInvited,
    AlreadyRegistered,
    DuplicateRecord,
    InvitationNotFound,
    NotFound,
    NotificationError,
    PasswordMismatch,
    RoleNotActive,
)

logger = logging.getLogger("identityrbac.auth.onboarding")

INVITATION_TEMPLATE = "email_invitation"


class Notifier(Protocol):
    def send(self, to: str, template_name: str, data: dict) -> None: ...


def is_open(record: OnboardingProcess, now: datetime) -> bool:
    """True while an invitation can still be redeemed."""
    return record.status == OnboardingStatus.INVITED and not record.completed and now < record.expired_at


class OnboardingStateMachine:
    def __init__(
        self,
        db: Database,
        principals: PrincipalStore,
        roles: RoleStore,
        assignments: RoleAssignmentStore,
        onboarding: OnboardingStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        notifier: Notifier,
        invitation_url: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._principals = principals
        self._roles = roles
        self._assignments = assignments
        self._onboarding = onboarding
        self._hasher = hasher
        self._tokens = tokens
        self._notifier = notifier
        self._invitation_url = invitation_url
        self._clock = clock

    # ------------------------------------------------------------------
    # Invite
    # ------------------------------------------------------------------

    def invite(
        self,
        inviter_id: int,
        email: str,
        role_ids: list[int],
        user_name: str = "",
        deadline: Deadline | None = None,
    ) -> OnboardingProcess:
        """Create an invitation for email and mail its token.

        Raises AlreadyRegistered, RoleNotActive, AlreadyInvited, or
        NotificationError (the invitation row survives a mail failure).
        """
        check(deadline, "invite")
        if self._principals.find_by_email(email) is not None:
            raise AlreadyRegistered("an active account already uses this email")

        role_ids = sorted(set(role_ids))
        self._require_active_roles(role_ids, deadline)

        now = self._clock()
        record = OnboardingProcess(
            id=str(uuid.uuid4()),
            email=email,
            role_ids=role_ids,
            expired_at=now + self._tokens.invitation_ttl,
            created_by=inviter_id,
        )
        try:
            with self._db.transaction() as conn:
                existing = self._onboarding.find_by_email(email, conn=conn)
                if existing is not None:
                    if is_open(existing, now):
                        raise AlreadyInvited("an unexpired invitation already exists for this email")
                    # Expired, or completed for an account that is no longer active.
                    # Only that exact row goes; a replacement from a concurrent
                    # invite is live and must survive.
                    if not self._onboarding.delete_stale(existing.id, now, conn=conn):
                        raise AlreadyInvited("an unexpired invitation already exists for this email")
                self._onboarding.insert(record, conn=conn)
                check(deadline, "invite")
        except DuplicateRecord as exc:
            # A concurrent invite for the same email committed first.
            raise AlreadyInvited("an unexpired invitation already exists for this email") from exc

        logger.info("Invitation created (invited_by=%s, invitation_id=%s)", inviter_id, record.id)
        self._send_invitation(record, user_name)
        return record

    def resend_invitation(
        self, email: str, user_name: str = "", deadline: Deadline | None = None
    ) -> OnboardingProcess:
        """Mail a fresh token for an existing, unexpired invitation."""
        check(deadline, "resend invitation")
        record = self._onboarding.find_by_email(email)
        if record is None or not is_open(record, self._clock()):
            raise InvitationNotFound("no open invitation for this email")
        self._send_invitation(record, user_name)
        return record

    def _send_invitation(self, record: OnboardingProcess, user_name: str) -> None:
        token = self._tokens.issue_invitation(record.email, record.role_ids)
        link = f"{self._invitation_url}?{urlencode({'token': token})}"
        try:
            self._notifier.send(
                record.email,
                INVITATION_TEMPLATE,
                {
                    "user_name": user_name or record.email,
                    "email": record.email,
                    "token": token,
                    "invitation_url": link,
                    "expires_at": record.expired_at.strftime("%Y-%m-%d %H:%M UTC"),
                },
            )
        except NotificationError:
            logger.error("Invitation mail failed; invitation kept for resend (invitation_id=%s)", record.id)
            raise

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        role_ids: list[int],
        fields: RegistrationFields,
        deadline: Deadline | None = None,
    ) -> User:
        """Turn an open invitation into an active account with its roles.

        email and role_ids come from a verified invitation token. The stored
        invitation's role ids are authoritative.
        """
        check(deadline, "register")
        if self._principals.find_by_email(email) is not None:
            raise AlreadyRegistered("an active account already uses this email")

        record = self._onboarding.find_by_email(email)
        if record is None or not is_open(record, self._clock()):
            logger.info("Registration without an open invitation")
            raise InvitationNotFound("no open invitation for this email")
        if sorted(set(role_ids)) != sorted(set(record.role_ids)):
            logger.warning("Invitation token roles differ from stored invitation (invitation_id=%s)", record.id)

        self._require_active_roles(record.role_ids, deadline)
        hashed = self._hasher.hash(fields.password)

        check(deadline, "register")
        try:
            with self._db.transaction() as conn:
                user_id = self._principals.insert(
                    User(
                        email=email,
                        hashed_password=hashed,
                        first_name=fields.first_name,
                        last_name=fields.last_name,
                    ),
                    conn=conn,
                )
                self._assignments.insert_many(user_id, record.role_ids, granted_by=record.created_by, conn=conn)
                if not self._onboarding.mark_completed(email, conn=conn):
                    raise AlreadyRegistered("invitation was completed by a concurrent registration")
                check(deadline, "register")
        except DuplicateRecord as exc:
            raise AlreadyRegistered("an active account already uses this email") from exc

        logger.info("Registration completed (user_id=%s, roles=%s)", user_id, record.role_ids)
        user = self._principals.find_by_id(user_id)
        if user is None:
            raise NotFound("registered user not found after commit")
        return user

    def _require_active_roles(self, role_ids: list[int], deadline: Deadline | None) -> None:
        """Check every role id before anything is written. Missing counts as inactive."""
        for role_id in role_ids:
            check(deadline, "role validation")
            role = self._roles.find_by_id(role_id)
            if role is None or not role.is_active:
                logger.info("Role not active (role_id=%s)", role_id)
                raise RoleNotActive(role_id)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def reset_password(
        self,
        principal_id: int,
        old_password: str,
        new_password: str,
        deadline: Deadline | None = None,
    ) -> None:
        """Replace the password hash after verifying the current password.

        Existing sessions are left untouched.
        """
        check(deadline, "reset password")
        user = self._principals.find_by_id(principal_id)
        if user is None or not user.is_active:
            raise NotFound("user not found")
        if not self._hasher.verify(user.hashed_password, old_password):
            logger.info("Password reset rejected: old password mismatch (user_id=%s)", principal_id)
            raise PasswordMismatch("old password does not match")
        new_hash = self._hasher.hash(new_password)
        check(deadline, "reset password")
        self._principals.update_password_hash(principal_id, new_hash)
        logger.info("Password updated (user_id=%s)", principal_id)
