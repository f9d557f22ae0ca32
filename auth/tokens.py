"""
auth/tokens.py -- Signed, typed, time-bounded tokens (python-jose, HS256).

Three token kinds share one signing key but are never interchangeable:

  access            id + jti, short TTL, presented on every request
  refresh           id + jti, long TTL, only exchanged for a new access token
  email_invitation  email + role_ids, medium TTL, presented once at registration

Every token carries a token_type claim. verify() checks, in order:
  1. signature and structure  -> TokenSignatureInvalid
  2. now < exp                -> TokenExpired
  3. token_type == expected   -> TokenKindMismatch

Step 3 is a security boundary: an invitation token must never pass as an
access token even though its signature is valid and it has not expired.

Expiry is checked against the service clock (not python-jose's wall clock) so
issuing and verifying always agree on "now".

Layer rule: no imports from api/ or mail/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from jose import JWTError, jwt

from auth.models import InvitationClaims, SessionClaims, TokenKind
from core.errors import TokenExpired, TokenKindMismatch, TokenSignatureInvalid

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("identityrbac.auth.tokens")

_ALGORITHM = "HS256"

_SESSION_CLAIMS = ("id", "jti")
_INVITATION_CLAIMS = ("email", "role_ids")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Stateless signer/verifier for access, refresh, and invitation tokens.

    Usage:
        tokens = TokenService.from_settings(settings)
        access = tokens.issue_access(user.id, session_id)
        claims = tokens.verify_access(access)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        invitation_ttl: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.invitation_ttl = invitation_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = utcnow) -> TokenService:
        return cls(
            secret_key=settings.secret_key,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(minutes=settings.refresh_token_ttl_minutes),
            invitation_ttl=timedelta(minutes=settings.email_invitation_ttl_minutes),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_access(self, principal_id: int, session_id: str) -> str:
        return self._encode(TokenKind.ACCESS, self.access_ttl, {"id": principal_id, "jti": session_id})

    def issue_refresh(self, principal_id: int, session_id: str) -> str:
        return self._encode(TokenKind.REFRESH, self.refresh_ttl, {"id": principal_id, "jti": session_id})

    def issue_invitation(self, email: str, role_ids: list[int]) -> str:
        return self._encode(
            TokenKind.EMAIL_INVITATION,
            self.invitation_ttl,
            {"email": email, "role_ids": list(role_ids)},
        )

    def _encode(self, kind: TokenKind, ttl: timedelta, payload: dict) -> str:
        now = self._clock()
        claims = {
            **payload,
            "token_type": kind.value,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret_key, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_kind: TokenKind) -> dict:
        """Verify signature, expiry, and kind. Returns the raw claim dict.

        Raises TokenSignatureInvalid, TokenExpired, or TokenKindMismatch. The
        token itself is never included in exception messages or logs.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            raise TokenSignatureInvalid("token signature or structure is invalid") from exc

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise TokenSignatureInvalid("token has no expiry")
        if self._clock().timestamp() >= exp:
            raise TokenExpired("token has expired")

        kind = claims.get("token_type")
        if kind != expected_kind.value:
            logger.warning("Token kind mismatch (got=%s, required=%s)", kind, expected_kind.value)
            raise TokenKindMismatch(f"expected a {expected_kind.value} token")
        return claims

    def verify_access(self, token: str) -> SessionClaims:
        return self._session_claims(self.verify(token, TokenKind.ACCESS), TokenKind.ACCESS)

    def verify_refresh(self, token: str) -> SessionClaims:
        return self._session_claims(self.verify(token, TokenKind.REFRESH), TokenKind.REFRESH)

    def verify_invitation(self, token: str) -> InvitationClaims:
        claims = self.verify(token, TokenKind.EMAIL_INVITATION)
        _require(claims, _INVITATION_CLAIMS)
        role_ids = claims["role_ids"]
        if not isinstance(claims["email"], str) or not isinstance(role_ids, list):
            raise TokenSignatureInvalid("invitation token payload is malformed")
        return InvitationClaims(
            email=claims["email"],
            role_ids=[int(r) for r in role_ids],
            issued_at=_from_ts(claims.get("iat", 0)),
            expires_at=_from_ts(claims["exp"]),
        )

    def refresh_access(self, refresh_token: str) -> str:
        """Exchange a refresh token for a new access token bound to the same session.

        Does not rotate the refresh token. Session-level revocation is checked
        by SessionManager.refresh(), which wraps this call.
        """
        claims = self.verify_refresh(refresh_token)
        return self.issue_access(claims.principal_id, claims.session_id)

    @staticmethod
    def _session_claims(claims: dict, kind: TokenKind) -> SessionClaims:
        _require(claims, _SESSION_CLAIMS)
        try:
            principal_id = int(claims["id"])
        except (TypeError, ValueError) as exc:
            raise TokenSignatureInvalid("token payload is malformed") from exc
        return SessionClaims(
            principal_id=principal_id,
            session_id=str(claims["jti"]),
            kind=kind,
            issued_at=_from_ts(claims.get("iat", 0)),
            expires_at=_from_ts(claims["exp"]),
        )


def _require(claims: dict, names: tuple[str, ...]) -> None:
    missing = [n for n in names if n not in claims]
    if missing:
        raise TokenSignatureInvalid(f"token is missing claims: {', '.join(missing)}")


def _from_ts(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)
