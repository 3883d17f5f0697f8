"""
api/routes/auth.py -- Account and browser sign-in endpoints.

Routes:
  POST /api/register                   -- create a local identity (201)
  POST /api/login                      -- verify local credentials; no session
  GET  /api/user                       -- own profile (session)
  POST /api/auth/callback/credentials  -- credential sign-in; sets session cookie
  GET  /api/auth/signin/{provider}     -- start Google/GitHub sign-in
  GET  /api/auth/callback/{provider}   -- provider callback; sets session cookie
  GET  /api/auth/session               -- current session identity, if any
  POST /api/auth/signout               -- clears the session cookie
  GET  /api/auth/providers             -- configured sign-in providers (public)
  POST /api/auth/forgot-password       -- email a single-use reset link
  POST /api/auth/reset-password        -- set a new password with a reset token

Security:
  [H2] Login, credential sign-in and forgot-password are rate-limited per IP.
  [C1] authenticate_identity() provides timing equalization -- use it, never inline.
  [C2] Every post-sign-in redirect goes through resolve_redirect().
  [M5] Cache-Control: no-store on every response that carries a token or cookie.
  [H1] Federated sign-in only accepts provider-verified emails (auth/oauth.py).
"""

import logging
from datetime import datetime, timedelta, timezone

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    IdentityOut,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
)
from auth.dependencies import AuthMethod, require_session_identity, resolve_caller
from auth.models import PROVIDER_CREDENTIALS, Identity
from auth.oauth import get_enabled_providers, get_oauth_user_info
from auth.redirects import resolve_redirect
from auth.store import IdentityStore
from auth.tokens import (
    LOGIN_BAD_PASSWORD,
    LOGIN_NO_PASSWORD,
    LOGIN_NOT_FOUND,
    authenticate_identity,
    clear_session_cookie,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    issue_token,
    set_session_cookie,
)
from core.config import get_settings
from core.mailer import Mailer, MailerError

logger = logging.getLogger("nopass.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/register, /api/login, /api/auth/*:  public (they establish identity)
# - GET  /api/auth/session:                       soft -- returns authenticated=false
# - GET  /api/user:                               requires session (require_session_identity)
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}
_CALLBACK_SESSION_KEY = "callback_url"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def login_failure(failure: str, mobile: bool = False) -> HTTPException:
    """Map an authenticate_identity() failure kind to an HTTP error.

    The distinct messages are kept for existing clients. With
    UNIFY_LOGIN_ERRORS=true every kind collapses into one bad_credentials
    response so the API no longer reveals which emails are registered.
    """
    if _settings.unify_login_errors:
        status, code, message = 401, "bad_credentials", "Invalid email or password."
    elif failure == LOGIN_NOT_FOUND:
        status, code, message = 404, "user_not_found", "User not found"
    elif failure == LOGIN_NO_PASSWORD and mobile:
        status, code, message = 400, "bad_request", "This account does not use password login"
    elif failure == LOGIN_NO_PASSWORD:
        status, code, message = 401, "bad_credentials", "User registered via OAuth. Use social login."
    elif failure == LOGIN_BAD_PASSWORD:
        status, code, message = 401, "bad_credentials", "Invalid password"
    else:
        status, code, message = 401, "bad_credentials", "Invalid email or password."
    return HTTPException(status_code=status, detail={"code": code, "message": message}, headers=_NO_STORE)


def _login_redirect() -> RedirectResponse:
    base = _settings.app_base_url.rstrip("/")
    return RedirectResponse(f"{base}/login?error=oauth_failed", status_code=302)


def _session_token(identity: Identity) -> str:
    return issue_token(identity.id, identity.email, timedelta(seconds=_settings.session_expire_seconds))


# ---------------------------------------------------------------------------
# Registration and local credentials
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201, response_model=AuthResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a local identity with a bcrypt-hashed password.

    The existence check gives the friendly error; the UNIQUE constraint on
    email catches the race where two registrations pass the check together.
    """
    store: IdentityStore = request.app.state.identity_store
    exists = HTTPException(status_code=400, detail={"code": "user_exists", "message": "User already exists"})
    if store.get_by_email(body.email) is not None:
        raise exists

    try:
        identity_id = store.create_identity(
            Identity(
                email=body.email,
                name=body.name,
                hashed_password=hash_password(body.password),
                provider=PROVIDER_CREDENTIALS,
            )
        )
    except IntegrityError:
        raise exists from None

    identity = store.get_by_id(identity_id)
    logger.info("Identity registered (id=%s)", identity_id)
    return JSONResponse(
        status_code=201,
        content=AuthResponse(
            message="User registered successfully",
            user=IdentityOut.from_identity(identity),
        ).model_dump(),
    )


@router.post("/login", response_model=AuthResponse)
@limiter.limit(LOGIN_LIMIT)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Verify an email/password pair without creating a session.

    Uses authenticate_identity() which includes timing equalization [C1].
    """
    outcome = authenticate_identity(request.app.state.identity_store, body.email, body.password)
    if outcome.identity is None:
        raise login_failure(outcome.failure)

    return JSONResponse(
        content=AuthResponse(
            message="Login successful",
            user=IdentityOut.from_identity(outcome.identity),
        ).model_dump(),
        headers=_NO_STORE,
    )


@router.post("/auth/callback/credentials", response_model=AuthResponse)
@limiter.limit(LOGIN_LIMIT)  # [H2]
def credentials_sign_in(request: Request, body: LoginRequest) -> JSONResponse:
    """Sign in with email and password and start a browser session.

    On success the session token is set as an httpOnly cookie and the
    validated post-sign-in URL is returned for the front end to navigate to.
    """
    outcome = authenticate_identity(request.app.state.identity_store, body.email, body.password)
    if outcome.identity is None:
        raise login_failure(outcome.failure)

    identity = outcome.identity
    resp = JSONResponse(
        content=AuthResponse(
            user=IdentityOut.from_identity(identity),
            url=resolve_redirect(body.callback_url, _settings.app_base_url),  # [C2]
        ).model_dump(),
        headers=_NO_STORE,
    )
    set_session_cookie(resp, _session_token(identity))
    logger.info("Credential sign-in (id=%s)", identity.id)
    return resp


@router.get("/user")
def current_user(identity: Identity = Depends(require_session_identity)) -> dict:
    """Return the signed-in identity's profile.

    last_login falls back to updated_at, then created_at, for identities that
    have never completed a sign-in that stamps it.
    """
    out = IdentityOut.from_identity(identity).model_dump()
    out["last_login"] = identity.last_login or identity.updated_at or identity.created_at
    return {"success": True, "user": out}


# ---------------------------------------------------------------------------
# Browser federated sign-in
#
# Route registration order: /auth/signin/{provider} and /auth/callback/{provider}
# are registered after /auth/callback/credentials so the literal path wins.
# ---------------------------------------------------------------------------


@router.get("/auth/signin/{provider}")
async def oauth_sign_in(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page.

    Validates the provider name against the enabled provider list before
    redirecting, and remembers the validated callbackUrl in the signed
    session for the callback.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _login_redirect()

    request.session[_CALLBACK_SESSION_KEY] = resolve_redirect(
        request.query_params.get("callbackUrl"), _settings.app_base_url
    )
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback and start a browser session.

    Flow:
      1. Exchange the authorization code (authlib checks state via the session).
      2. Extract the profile -- raises ValueError if the email is unverified [H1].
      3. Create or refresh the identity by email (idempotent upsert).
      4. Issue the session token, set the cookie, redirect to the stored URL.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return _login_redirect()

    client = request.app.state.oauth.create_client(provider)
    store: IdentityStore = request.app.state.identity_store

    try:
        token = await client.authorize_access_token(request)
    except (OAuthError, httpx.HTTPError):
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _login_redirect()

    try:
        profile = await get_oauth_user_info(client, provider, token)
    except (ValueError, httpx.HTTPError):
        logger.warning("OAuth sign-in rejected: unverified or missing email from %r", provider)
        return _login_redirect()

    identity, created = await run_in_threadpool(store.upsert_federated, profile)
    logger.info("Federated sign-in via %s (id=%s, created=%s)", provider, identity.id, created)

    next_url = resolve_redirect(request.session.pop(_CALLBACK_SESSION_KEY, None), _settings.app_base_url)
    resp = RedirectResponse(next_url, status_code=302)
    set_session_cookie(resp, _session_token(identity))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/session", response_model=SessionResponse)
def session(request: Request) -> SessionResponse:
    """Return the identity behind the session cookie, or authenticated=false."""
    identity = resolve_caller(request, (AuthMethod.SESSION,))
    if identity is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=IdentityOut.from_identity(identity))


@router.post("/auth/signout", response_model=MessageResponse)
def sign_out(request: Request) -> JSONResponse:
    """Clear the session cookie. Needs no prior authentication."""
    request.session.pop(_CALLBACK_SESSION_KEY, None)
    resp = JSONResponse(content=MessageResponse(message="Signed out.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured browser sign-in providers.

    Public endpoint -- the login page calls this to decide which provider
    buttons to render. Returns an empty list if no OAuth env vars are set.
    """
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(LOGIN_LIMIT)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Issue a reset token and email the link.

    Only the SHA-256 digest of the token is stored; the raw token exists only
    in the emailed link. Issuing a new token replaces any previous one.
    """
    store: IdentityStore = request.app.state.identity_store
    mailer: Mailer = request.app.state.mailer

    identity = store.get_by_email(body.email)
    if identity is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "user_not_found", "message": "No account found with this email"},
        )

    raw_token, digest = generate_reset_token()
    expires = datetime.now(timezone.utc) + timedelta(seconds=_settings.reset_token_expire_seconds)
    store.set_reset_token(identity.id, digest, expires.isoformat())

    reset_link = f"{_settings.app_base_url.rstrip('/')}/reset-password?token={raw_token}"
    try:
        mailer.send_reset_email(identity.email, reset_link)
    except MailerError:
        logger.exception("Password reset email could not be sent (id=%s)", identity.id)
        raise HTTPException(
            status_code=500,
            detail={"code": "mail_failed", "message": "Something went wrong. Try again later."},
        ) from None

    logger.info("Password reset issued (id=%s)", identity.id)
    return MessageResponse(message="Password reset link sent! Check your email.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password for the holder of an unexpired reset token.

    The token is single use: the store clears it in the same update that
    writes the new hash.
    """
    store: IdentityStore = request.app.state.identity_store
    identity = store.consume_reset_token(hash_reset_token(body.token), hash_password(body.password))
    if identity is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_request", "message": "Invalid or expired token."},
        )
    logger.info("Password reset completed (id=%s)", identity.id)
    return MessageResponse(message="Password reset successful. You can now login.")
