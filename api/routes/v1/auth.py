"""
api/routes/v1/auth.py -- Session, onboarding, and OAuth REST endpoints.

Routes:
  POST /api/v1/login                      -- password login; returns access + refresh tokens
  POST /api/v1/token/refresh              -- exchange a refresh token for a new access token
  POST /api/v1/logout                     -- deactivate the caller's session (requires auth)
  POST /api/v1/logout/all                 -- deactivate every session of the caller (requires auth)
  POST /api/v1/register                   -- redeem an invitation (Bearer email_invitation token)
  GET  /api/v1/users/permissions          -- caller's permission names (requires auth)
  GET  /api/v1/users/sessions             -- caller's open sessions (requires auth)
  POST /api/v1/users/reset-password       -- change own password (requires auth)
  POST /api/v1/users/invite               -- invite a new user (user.create)
  POST /api/v1/users/invite/resend        -- re-mail an open invitation (user.create)
  GET  /api/v1/auth/{provider}/login      -- OAuth redirect to provider
  GET  /api/v1/auth/{provider}/callback   -- OAuth callback; returns tokens

Security:
  Wrong email and wrong password produce the same 401 "authentication_failed".
  Cache-Control: no-store on every response that carries token material.
  Register takes email and roles from the signed invitation token, never the body.

Handlers are plain def (not async) so bcrypt and database calls run in the
threadpool instead of blocking the event loop. The OAuth handlers are async
because Authlib's Starlette client is.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    AccessTokenResponse,
    InvitationResponse,
    InviteRequest,
    LoginRequest,
    MessageResponse,
    PermissionsResponse,
    RefreshRequest,
    RegisterRequest,
    ResendInviteRequest,
    ResetPasswordRequest,
    SessionResponse,
    TokenPairResponse,
    UserResponse,
)
from auth.constants import USER_CREATE
from auth.deadline import Deadline
from auth.dependencies import (
    get_authenticated_request,
    get_invitation_claims,
    request_deadline,
    require_permissions,
)
from auth.models import AuthenticatedRequest, ClientMeta, InvitationClaims, RegistrationFields, TokenPair
from auth.oauth import get_enabled_providers, get_oauth_user_info
from auth.service import RbacService

logger = logging.getLogger("identityrbac.api.auth")

# Auth policy:
# - POST /login, /token/refresh:          public
# - POST /register:                       invitation token (get_invitation_claims)
# - GET  /auth/{provider}/*:              public
# - POST /logout, /logout/all, GET /users/permissions, /users/sessions,
#   POST /users/reset-password:           requires auth (get_authenticated_request)
# - POST /users/invite, /users/invite/resend: requires user.create
router = APIRouter()


def _client_meta(request: Request) -> ClientMeta:
    return ClientMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def _token_pair_response(rbac: RbacService, pair: TokenPair, response: Response) -> TokenPairResponse:
    response.headers["Cache-Control"] = "no-store"
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=int(rbac.tokens.access_ttl.total_seconds()),
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/login", response_model=TokenPairResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    deadline: Deadline = Depends(request_deadline),
) -> TokenPairResponse:
    """Authenticate with email and password; open a session."""
    rbac: RbacService = request.app.state.rbac
    pair = rbac.login(body.email, body.password, _client_meta(request), deadline=deadline)
    return _token_pair_response(rbac, pair, response)


@router.post("/token/refresh", response_model=AccessTokenResponse)
def refresh_token(
    request: Request,
    response: Response,
    body: RefreshRequest,
    deadline: Deadline = Depends(request_deadline),
) -> AccessTokenResponse:
    """Mint a new access token bound to the same session. The session must still be active."""
    rbac: RbacService = request.app.state.rbac
    access_token = rbac.get_access_token_from_refresh(body.refresh_token, deadline=deadline)
    response.headers["Cache-Control"] = "no-store"
    return AccessTokenResponse(
        access_token=access_token,
        token_type="bearer",  # noqa: S106 # nosec B106
        expires_in=int(rbac.tokens.access_ttl.total_seconds()),
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    auth: AuthenticatedRequest = Depends(get_authenticated_request),
    deadline: Deadline = Depends(request_deadline),
) -> MessageResponse:
    """End the caller's session. Outstanding refresh tokens stop working."""
    request.app.state.rbac.logout(auth, deadline=deadline)
    return MessageResponse(message="Logged out.")


@router.post("/logout/all", response_model=MessageResponse)
def logout_all(
    request: Request,
    auth: AuthenticatedRequest = Depends(get_authenticated_request),
    deadline: Deadline = Depends(request_deadline),
) -> MessageResponse:
    """End every session the caller holds, including this one."""
    closed = request.app.state.rbac.logout_everywhere(auth.principal_id, deadline=deadline)
    return MessageResponse(message=f"Logged out of {closed} session(s).")


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------


@router.post("/register", response_model=UserResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    claims: InvitationClaims = Depends(get_invitation_claims),
    deadline: Deadline = Depends(request_deadline),
) -> UserResponse:
    """Redeem an invitation and create the account with the invited roles."""
    rbac: RbacService = request.app.state.rbac
    user = rbac.register(
        claims.email,
        list(claims.role_ids),
        RegistrationFields(password=body.password, first_name=body.first_name, last_name=body.last_name),
        deadline=deadline,
    )
    roles = [rbac.repos.roles.find_by_id(rid) for rid in rbac.repos.assignments.role_ids_for_user(user.id)]
    return UserResponse.from_domain(user, [r for r in roles if r is not None])


@router.post("/users/invite", response_model=InvitationResponse, status_code=201)
def invite_user(
    request: Request,
    body: InviteRequest,
    auth: AuthenticatedRequest = Depends(require_permissions(USER_CREATE)),
    deadline: Deadline = Depends(request_deadline),
) -> InvitationResponse:
    """Create an invitation and email the registration link.

    A 502 means the invitation was stored but the mail failed; call
    /users/invite/resend to retry delivery.
    """
    record = request.app.state.rbac.invite(
        auth.principal_id, body.email, body.role_ids, user_name=body.user_name, deadline=deadline
    )
    return InvitationResponse(email=record.email, role_ids=record.role_ids, expired_at=record.expired_at)


@router.post("/users/invite/resend", response_model=InvitationResponse)
def resend_invitation(
    request: Request,
    body: ResendInviteRequest,
    auth: AuthenticatedRequest = Depends(require_permissions(USER_CREATE)),
    deadline: Deadline = Depends(request_deadline),
) -> InvitationResponse:
    record = request.app.state.rbac.resend_invitation(body.email, user_name=body.user_name, deadline=deadline)
    return InvitationResponse(email=record.email, role_ids=record.role_ids, expired_at=record.expired_at)


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.get("/users/permissions", response_model=PermissionsResponse)
def my_permissions(
    request: Request,
    auth: AuthenticatedRequest = Depends(get_authenticated_request),
    deadline: Deadline = Depends(request_deadline),
) -> PermissionsResponse:
    """Return every permission name the caller's active roles grant."""
    return PermissionsResponse(permissions=request.app.state.rbac.get_permissions(auth.principal_id, deadline=deadline))


@router.get("/users/sessions", response_model=list[SessionResponse])
def my_sessions(
    request: Request,
    auth: AuthenticatedRequest = Depends(get_authenticated_request),
    deadline: Deadline = Depends(request_deadline),
) -> list[SessionResponse]:
    """List the caller's open sessions, newest first."""
    sessions = request.app.state.rbac.list_sessions(auth.principal_id, deadline=deadline)
    return [SessionResponse.from_domain(s, auth.session_id) for s in sessions]


@router.post("/users/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    auth: AuthenticatedRequest = Depends(get_authenticated_request),
    deadline: Deadline = Depends(request_deadline),
) -> MessageResponse:
    request.app.state.rbac.reset_password(auth.principal_id, body.old_password, body.new_password, deadline=deadline)
    return MessageResponse(message="Password updated.")


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


def _require_provider(request: Request, provider: str) -> None:
    """Reject provider names that are not configured before touching the registry."""
    if provider not in get_enabled_providers(request.app.state.settings):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Unknown OAuth provider."},
        )


@router.get("/auth/{provider}/login")
async def oauth_login(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page."""
    _require_provider(request, provider)
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/{provider}/callback", response_model=TokenPairResponse, name="oauth_callback")
async def oauth_callback(request: Request, response: Response, provider: str) -> TokenPairResponse:
    """Exchange the authorization code and open a session for the verified email.

    Only existing active accounts can sign in; OAuth never creates principals.
    """
    _require_provider(request, provider)
    client = request.app.state.oauth.create_client(provider)
    failed = HTTPException(
        status_code=401,
        detail={"code": "authentication_failed", "message": "OAuth authentication failed."},
    )

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("OAuth token exchange failed for provider %r: %s", provider, exc.error)
        raise failed from exc

    try:
        email, _subject = get_oauth_user_info(provider, token)
    except ValueError as exc:
        logger.warning("OAuth login rejected: unverified or missing email from %r", provider)
        raise failed from exc

    rbac: RbacService = request.app.state.rbac
    pair = rbac.oauth_login(email, _client_meta(request))
    return _token_pair_response(rbac, pair, response)
