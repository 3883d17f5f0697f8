"""
api/routes/mobile.py -- Endpoints used by the NoPass mobile app.

Routes:
  POST /api/mobile-login         -- email/password -> 7-day bearer token
  GET  /api/mobile-google-start  -- redirect to Google with state=<app target>
  GET  /api/mobile-github-start  -- redirect to GitHub with state=<app target>
  GET  /api/mobile-google-auth   -- Google callback -> <app target>?token=<jwt>
  GET  /api/mobile-github-auth   -- GitHub callback -> <app target>?token=<jwt>
  GET  /api/mobile-me            -- caller identity (bearer or session)
  POST /api/mobile-validate      -- says whether a bearer token is still good

The mobile OAuth flow does not use the Starlette session: the app opens the
start URL in a system browser and receives the token through a deep link. The
OAuth state parameter therefore carries the deep link target itself. It is
validated against ALLOWED_MOBILE_SCHEMES on the way out and again on the
callback, so a crafted callback cannot send a freshly minted token to a web
origin.

Security:
  [H2] /mobile-login is rate-limited per IP.
  [C1] authenticate_identity() provides timing equalization.
  [H1] Federated sign-in only accepts provider-verified emails.
"""

import logging
from datetime import timedelta
from urllib.parse import quote

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import LOGIN_LIMIT, limiter
from api.models import AuthResponse, IdentityOut, LoginRequest
from api.routes.auth import login_failure
from auth.dependencies import bearer_token, require_identity
from auth.models import Identity
from auth.oauth import get_oauth_user_info, mobile_provider_enabled
from auth.redirects import is_allowed_app_target
from auth.store import IdentityStore, normalize_email
from auth.tokens import TokenExpiredError, TokenInvalidError, authenticate_identity, issue_token, verify_token
from core.config import get_settings

logger = logging.getLogger("nopass.api.mobile")

_settings = get_settings()

# Auth policy:
# - POST /api/mobile-login, GET /api/mobile-*-start, GET /api/mobile-*-auth: public
# - GET  /api/mobile-me:        bearer or session (require_identity)
# - POST /api/mobile-validate:  bearer header, inspected directly so expiry is reported
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}

# Extra authorization parameters per provider. Google only returns a refresh
# token on the consent screen.
_AUTHORIZE_PARAMS = {
    "google": {"access_type": "offline", "prompt": "consent", "include_granted_scopes": "true"},
    "github": {},
}


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "bad_request", "message": message})


def _callback_uri(provider: str) -> str:
    return f"{_settings.mobile_base_url}/api/mobile-{provider}-auth"


def _app_redirect(target: str, token: str) -> str:
    separator = "&" if "?" in target else "?"
    return f"{target}{separator}token={quote(token, safe='')}"


# ---------------------------------------------------------------------------
# Password login
# ---------------------------------------------------------------------------


@router.post("/mobile-login", response_model=AuthResponse)
@limiter.limit(LOGIN_LIMIT)  # [H2]
def mobile_login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange email and password for a bearer token (Settings.mobile_token_expire_seconds)."""
    outcome = authenticate_identity(request.app.state.identity_store, body.email, body.password)
    if outcome.identity is None:
        raise login_failure(outcome.failure, mobile=True)

    identity = outcome.identity
    token = issue_token(identity.id, identity.email, timedelta(seconds=_settings.mobile_token_expire_seconds))
    logger.info("Mobile login (id=%s)", identity.id)
    return JSONResponse(
        content=AuthResponse(user=IdentityOut.from_identity(identity), token=token).model_dump(),
        headers=_NO_STORE,
    )


# ---------------------------------------------------------------------------
# Federated login
# ---------------------------------------------------------------------------


async def _mobile_start(request: Request, provider: str) -> RedirectResponse:
    target = request.query_params.get("next") or _settings.mobile_redirect_default
    if not is_allowed_app_target(target, _settings.mobile_scheme_list):
        logger.warning("Mobile %s sign-in refused: redirect target outside allowed schemes", provider)
        raise _bad_request("Invalid redirect target")
    if not mobile_provider_enabled(provider):
        raise _bad_request(f"{provider} sign-in is not configured")

    client = request.app.state.oauth.create_client(f"{provider}_mobile")
    rv = await client.create_authorization_url(
        _callback_uri(provider),
        state=target,
        **_AUTHORIZE_PARAMS[provider],
    )
    return RedirectResponse(rv["url"], status_code=302)


async def _mobile_callback(request: Request, provider: str) -> RedirectResponse:
    """Finish a mobile federated sign-in.

    Flow:
      1. Revalidate the state (app target) against the allowed schemes.
      2. Exchange the code for a provider token.
      3. Extract the verified profile [H1] and upsert the identity by email.
      4. Issue a bearer token (Settings.federated_token_expire_seconds) and
         redirect to <target>?token=<jwt>.
    """
    target = request.query_params.get("state") or _settings.mobile_redirect_default
    if not is_allowed_app_target(target, _settings.mobile_scheme_list):
        logger.warning("Mobile %s callback refused: state outside allowed schemes", provider)
        raise _bad_request("Invalid redirect target")
    code = request.query_params.get("code")
    if not code:
        raise _bad_request("Missing code")
    if not mobile_provider_enabled(provider):
        raise _bad_request(f"{provider} sign-in is not configured")

    registration = f"{provider}_mobile"
    client = request.app.state.oauth.create_client(registration)
    store: IdentityStore = request.app.state.identity_store

    try:
        provider_token = await client.fetch_access_token(redirect_uri=_callback_uri(provider), code=code)
    except (OAuthError, httpx.HTTPError):
        logger.exception("Mobile OAuth token exchange failed for provider %r", provider)
        raise _bad_request(f"{provider} token exchange failed") from None

    try:
        profile = await get_oauth_user_info(client, registration, provider_token)
    except (ValueError, httpx.HTTPError):
        logger.warning("Mobile OAuth sign-in rejected: unverified or missing email from %r", provider)
        raise _bad_request(f"{provider} email not found or not verified") from None

    identity, created = await run_in_threadpool(store.upsert_federated, profile)
    token = issue_token(identity.id, identity.email, timedelta(seconds=_settings.federated_token_expire_seconds))
    logger.info("Mobile federated sign-in via %s (id=%s, created=%s)", provider, identity.id, created)

    resp = RedirectResponse(_app_redirect(target, token), status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/mobile-google-start")
async def mobile_google_start(request: Request) -> RedirectResponse:
    return await _mobile_start(request, "google")


@router.get("/mobile-github-start")
async def mobile_github_start(request: Request) -> RedirectResponse:
    return await _mobile_start(request, "github")


@router.get("/mobile-google-auth")
async def mobile_google_auth(request: Request) -> RedirectResponse:
    return await _mobile_callback(request, "google")


@router.get("/mobile-github-auth")
async def mobile_github_auth(request: Request) -> RedirectResponse:
    return await _mobile_callback(request, "github")


# ---------------------------------------------------------------------------
# Token introspection
# ---------------------------------------------------------------------------


@router.get("/mobile-me", response_model=AuthResponse)
def mobile_me(identity: Identity = Depends(require_identity)) -> AuthResponse:
    """Return the caller. Accepts the bearer header or the browser session cookie."""
    return AuthResponse(user=IdentityOut.from_identity(identity))


@router.post("/mobile-validate", response_model=AuthResponse)
def mobile_validate(request: Request) -> AuthResponse:
    """Tell the app whether its stored token is still usable.

    An expired token and an otherwise invalid one get different codes so the
    app can choose between a silent re-login and signing the user out.
    """
    token = bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "Missing token"})

    try:
        claims = verify_token(token)
    except TokenExpiredError:
        raise HTTPException(status_code=401, detail={"code": "token_expired", "message": "Token expired"}) from None
    except TokenInvalidError:
        raise HTTPException(status_code=401, detail={"code": "token_invalid", "message": "Invalid token"}) from None

    store: IdentityStore = request.app.state.identity_store
    identity = store.get_by_id(claims.identity_id)
    if identity is None:
        raise HTTPException(status_code=404, detail={"code": "user_not_found", "message": "User not found"})
    if identity.email != normalize_email(claims.email):
        raise HTTPException(status_code=401, detail={"code": "token_invalid", "message": "Invalid token"})
    return AuthResponse(message="Token valid", user=IdentityOut.from_identity(identity))
