"""
auth/oauth.py -- Authlib OAuth provider configuration and profile extraction.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Two client registrations exist per provider:
  google / github                -- browser sign-in (/api/auth/signin/{provider})
  google_mobile / github_mobile  -- mobile app sign-in (/api/mobile-*-start),
                                    separate OAuth apps whose redirect URIs
                                    point at /api/mobile-*-auth

Security notes:
  [H1] Email verification is mandatory. get_oauth_user_info() raises ValueError
       if the provider does not confirm the email is verified. An unverified
       email from GitHub could belong to an attacker who added a victim's
       address without confirming it -- and since identities are matched by
       email, that would hand over the victim's vault.

  Browser flow: the OAuth state parameter (CSRF protection) is handled by
  authlib via Starlette SessionMiddleware.

  Mobile flow: the state parameter carries the app redirect target
  (e.g. nopassmobile://redirect). The routes validate it against the allowed
  mobile schemes both before redirecting to the provider and on the callback.

  Outbound calls use Settings.oauth_timeout_seconds via client_kwargs so a
  hung provider cannot pin a worker indefinitely.

Layer rule: no imports from api/ or vault/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import PROVIDER_GITHUB, PROVIDER_GOOGLE, FederatedProfile
from core.config import get_settings

logger = logging.getLogger("nopass.auth.oauth")

_GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"
_GITHUB_ENDPOINTS = {
    "access_token_url": "https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
    "authorize_url": "https://github.com/login/oauth/authorize",
    "api_base_url": "https://api.github.com/",
}

# Mobile registrations map back to the provider tag stored on the identity.
_BASE_PROVIDER = {
    "google": PROVIDER_GOOGLE,
    "google_mobile": PROVIDER_GOOGLE,
    "github": PROVIDER_GITHUB,
    "github_mobile": PROVIDER_GITHUB,
}

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()


def _register_google(name: str, client_id: str, client_secret: str) -> None:
    oauth.register(
        name=name,
        client_id=client_id,
        client_secret=client_secret,
        server_metadata_url=_GOOGLE_METADATA_URL,
        client_kwargs={"scope": "openid email profile", "timeout": _cfg.oauth_timeout_seconds},
    )
    logger.info("Google OAuth provider registered (%s)", name)


def _register_github(name: str, client_id: str, client_secret: str) -> None:
    oauth.register(
        name=name,
        client_id=client_id,
        client_secret=client_secret,
        client_kwargs={"scope": "read:user user:email", "timeout": _cfg.oauth_timeout_seconds},
        **_GITHUB_ENDPOINTS,
    )
    logger.info("GitHub OAuth provider registered (%s)", name)


if _cfg.google_client_id and _cfg.google_client_secret:
    _register_google("google", _cfg.google_client_id, _cfg.google_client_secret)

if _cfg.github_client_id and _cfg.github_client_secret:
    _register_github("github", _cfg.github_client_id, _cfg.github_client_secret)

if _cfg.google_mobile_client_id and _cfg.google_mobile_client_secret:
    _register_google("google_mobile", _cfg.google_mobile_client_id, _cfg.google_mobile_client_secret)

if _cfg.github_mobile_client_id and _cfg.github_mobile_client_secret:
    _register_github("github_mobile", _cfg.github_mobile_client_id, _cfg.github_mobile_client_secret)


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured browser sign-in provider."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    return providers


def mobile_provider_enabled(provider: str) -> bool:
    """Return True if the mobile OAuth app for provider ("google"/"github") is configured."""
    cfg = get_settings()
    if provider == "google":
        return bool(cfg.google_mobile_client_id and cfg.google_mobile_client_secret)
    if provider == "github":
        return bool(cfg.github_mobile_client_id and cfg.github_mobile_client_secret)
    return False


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_user_info(client, registration: str, token: dict) -> FederatedProfile:
    """Extract a verified FederatedProfile from a provider token response.

    Args:
        client:       The authlib OAuth client for this registration.
        registration: "google", "github", "google_mobile" or "github_mobile".
        token:        The token dict returned by authlib after code exchange.

    Raises:
        ValueError: If a verified email cannot be confirmed.
    """
    provider = _BASE_PROVIDER.get(registration)
    if provider == PROVIDER_GITHUB:
        return await _get_github_user_info(client, token)
    if provider == PROVIDER_GOOGLE:
        return await _get_google_user_info(client, token)
    raise ValueError(f"Unknown OAuth provider: {registration!r}")


async def _get_github_user_info(client, token: dict) -> FederatedProfile:
    """Extract the profile from a GitHub token.

    GitHub does not include the email in the access token. Two API calls are
    required:
      1. GET /user -- numeric user ID, display name, avatar.
      2. GET /user/emails -- to find the primary verified email.

    [H1] Only the email where both primary=true AND verified=true is accepted,
    even when /user exposes a public email (public emails are not guaranteed
    to be verified).
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    emails = emails_resp.json()

    email: str | None = None
    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )

    return FederatedProfile(
        provider=PROVIDER_GITHUB,
        email=email,
        subject=str(profile["id"]),
        name=profile.get("name") or None,
        image=profile.get("avatar_url") or None,
    )


async def _get_google_user_info(client, token: dict) -> FederatedProfile:
    """Extract the profile from a Google token.

    The browser flow (authorize_access_token) parses the id_token into
    token["userinfo"]. The mobile flow only exchanges the code, so the
    userinfo endpoint is queried instead.

    [H1] The email claim is only accepted when email_verified is True.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        userinfo = await client.userinfo(token=token)
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return FederatedProfile(
        provider=PROVIDER_GOOGLE,
        email=email,
        subject=str(subject),
        name=userinfo.get("name") or None,
        image=userinfo.get("picture") or None,
    )
