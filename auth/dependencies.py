"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Every protected route receives an explicit AuthenticatedRequest value instead
of reading identity from ambient request state:

  get_authenticated_request()  Authorization: Bearer <access token> -> AuthenticatedRequest.
                               Raises HTTP 401 on a missing, malformed, expired,
                               tampered, or wrong-kind token.
  require_permissions(*names)  Dependency factory. Authenticates, then passes the
                               request if the caller holds ANY of the names.
                               Raises HTTP 403 otherwise.
  get_invitation_claims()      Authorization: Bearer <email_invitation token> for
                               POST /register. Access and refresh tokens are rejected.
  request_deadline()           A Deadline bounded by REQUEST_TIMEOUT_SECONDS.

The access-token check is stateless: a token stays valid until it expires even
after logout. Logout ends the session's ability to refresh.

Layer rule: no imports from api/ or mail/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request

from auth.deadline import Deadline
from auth.models import AuthenticatedRequest, InvitationClaims
from auth.service import RbacService
from core.errors import TokenError, Unauthenticated, Unauthorized

logger = logging.getLogger("identityrbac.auth.dependencies")

_UNAUTHENTICATED = {"code": "unauthenticated", "message": "Authentication required."}
_FORBIDDEN = {"code": "forbidden", "message": "You do not have permission to perform this action."}


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail=_UNAUTHENTICATED, headers={"WWW-Authenticate": "Bearer"})
    return token.strip()


def get_rbac(request: Request) -> RbacService:
    return request.app.state.rbac


def request_deadline(request: Request) -> Deadline:
    return Deadline(timeout=request.app.state.settings.request_timeout_seconds)


def get_authenticated_request(request: Request) -> AuthenticatedRequest:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(auth: AuthenticatedRequest = Depends(get_authenticated_request)): ...
    """
    token = _bearer_token(request)
    try:
        return get_rbac(request).authenticate(token)
    except TokenError as exc:
        logger.info("Access token rejected (%s)", exc.code)
        raise HTTPException(
            status_code=401, detail=_UNAUTHENTICATED, headers={"WWW-Authenticate": "Bearer"}
        ) from exc


def get_invitation_claims(request: Request) -> InvitationClaims:
    """Require a valid email_invitation token. Raises HTTP 401 otherwise."""
    token = _bearer_token(request)
    try:
        return get_rbac(request).tokens.verify_invitation(token)
    except TokenError as exc:
        logger.info("Invitation token rejected (%s)", exc.code)
        raise HTTPException(
            status_code=401, detail=_UNAUTHENTICATED, headers={"WWW-Authenticate": "Bearer"}
        ) from exc


def require_permissions(*names: str) -> Callable[..., AuthenticatedRequest]:
    """Build a dependency that passes when the caller holds any of names.

    Use as a FastAPI dependency:
        @router.get("/roles")
        def route(auth: AuthenticatedRequest = Depends(require_permissions("role.view", "role.assign"))): ...
    """
    required = frozenset(names)

    def dependency(
        request: Request,
        auth: AuthenticatedRequest = Depends(get_authenticated_request),
        deadline: Deadline = Depends(request_deadline),
    ) -> AuthenticatedRequest:
        try:
            return get_rbac(request).authorize(auth, set(required), deadline=deadline)
        except Unauthenticated as exc:
            raise HTTPException(status_code=401, detail=_UNAUTHENTICATED) from exc
        except Unauthorized as exc:
            raise HTTPException(status_code=403, detail=_FORBIDDEN) from exc

    return dependency
