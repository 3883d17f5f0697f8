"""
auth/dependencies.py -- FastAPI Depends() helpers for caller resolution.

Two per-request credentials are recognized:
  1. Session cookie ("session_token") -- set by the browser sign-in flows
     (credentials or Google/GitHub callback).
  2. Authorization: Bearer <token> header -- issued to the mobile app by
     /mobile-login and the mobile OAuth callbacks.

Both are JWTs with the same claim set. resolve_caller() is the single entry
point: whichever credential is accepted, the result is one canonical Identity
loaded from the store (or None). Business logic never reads cookies or
headers itself.

Per request the resolution moves through:
    unauthenticated -> resolving -> authenticated
    unauthenticated -> rejected
A token that verifies but names a deleted identity, or whose email claim no
longer matches the stored email, is rejected.

require_session_identity / require_bearer_identity / require_identity wrap
resolve_caller() and raise HTTP 401 when the caller is unauthenticated.

Layer rule: no imports from api/ or vault/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from enum import Enum

from fastapi import HTTPException, Request

from auth.models import Identity
from auth.store import IdentityStore, normalize_email
from auth.tokens import SESSION_COOKIE, decode_token


class AuthMethod(str, Enum):
    SESSION = "session"
    BEARER = "bearer"


ANY_METHOD = (AuthMethod.SESSION, AuthMethod.BEARER)


def bearer_token(request: Request) -> str | None:
    """Return the raw token from an Authorization: Bearer header, if present."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def _credential(request: Request, method: AuthMethod) -> str | None:
    if method is AuthMethod.SESSION:
        return request.cookies.get(SESSION_COOKIE) or None
    return bearer_token(request)


def resolve_caller(request: Request, methods: tuple[AuthMethod, ...] = ANY_METHOD) -> Identity | None:
    """Resolve the request to an Identity using the allowed methods, in order.

    Returns None on any failure. Never raises -- callers that need a hard 401
    use the require_* dependencies.
    """
    store: IdentityStore = request.app.state.identity_store
    for method in methods:
        token = _credential(request, method)
        if not token:
            continue
        claims = decode_token(token)
        if claims is None:
            continue
        identity = store.get_by_id(claims.identity_id)
        if identity is not None and identity.email == normalize_email(claims.email):
            return identity
    return None


def _require(request: Request, methods: tuple[AuthMethod, ...]) -> Identity:
    identity = resolve_caller(request, methods)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Unauthorized"},
        )
    return identity


def require_session_identity(request: Request) -> Identity:
    """Browser routes: session cookie only.

    Use as a FastAPI dependency:
        @router.get("/password")
        def route(identity: Identity = Depends(require_session_identity)): ...
    """
    return _require(request, (AuthMethod.SESSION,))


def require_bearer_identity(request: Request) -> Identity:
    """Mobile routes: Authorization: Bearer header only."""
    return _require(request, (AuthMethod.BEARER,))


def require_identity(request: Request) -> Identity:
    """Either credential; the bearer header wins when both are present."""
    return _require(request, (AuthMethod.BEARER, AuthMethod.SESSION))
