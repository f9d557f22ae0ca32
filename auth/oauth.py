"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

build_oauth(settings) creates the registry at API assembly time. Only providers
with both client ID and secret configured get registered; get_enabled_providers()
reports the same set so routes can reject unknown provider names before
redirecting.

Security notes:
  Email verification is mandatory. get_oauth_user_info() raises ValueError
  if the provider does not confirm the email is verified. An unverified
  email could belong to an attacker who added a victim's address without
  confirming it.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

  OAuth never provisions accounts. A verified email must already belong to an
  active principal (created through invite/register or the CLI).

Supported providers:
  google -- Authorization code flow; OIDC discovery.
  oidc   -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)

Layer rule: no imports from api/ or mail/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import Settings

logger = logging.getLogger("identityrbac.auth.oauth")

_GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_oauth(settings: Settings) -> OAuth:
    """Register every configured provider on a fresh Authlib registry."""
    oauth = OAuth()

    # Google -- OIDC discovery
    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url=_GOOGLE_DISCOVERY_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    # Generic OIDC -- Okta, Azure AD, Keycloak, Authentik, etc.
    if settings.oidc_client_id and settings.oidc_client_secret and settings.oidc_discovery_url:
        oauth.register(
            name="oidc",
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            server_metadata_url=settings.oidc_discovery_url,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Generic OIDC provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[str]:
    """Return the names of every configured provider."""
    providers: list[str] = []
    if settings.google_client_id and settings.google_client_secret:
        providers.append("google")
    if settings.oidc_client_id and settings.oidc_client_secret and settings.oidc_discovery_url:
        providers.append("oidc")
    return providers


def get_oauth_user_info(provider: str, token: dict) -> tuple[str, str]:
    """Extract (email, subject_id) from a Google/OIDC token response.

    Both Google and generic OIDC providers return an id_token whose claims
    include email, email_verified, and sub (subject ID). Authlib parses them
    into token["userinfo"].

    The email claim is only accepted when email_verified is True. Some OIDC
    providers omit email_verified entirely; that is treated as unverified.

    Raises:
        ValueError: If a verified email cannot be confirmed.
    """
    if provider not in ("google", "oidc"):
        raise ValueError(f"Unknown OAuth provider: {provider!r}")

    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if userinfo.get("email_verified") is not True:
        raise ValueError(
            f"{provider} OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return email, subject_id
