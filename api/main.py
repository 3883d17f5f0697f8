"""
api/main.py -- FastAPI application entry point for NoPass.

Serves the vault API consumed by the web front end and the mobile app.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. origin_gatekeeper     -- answers preflights, blocks untrusted origins,
                              adds CORS + security headers (api/origin.py)
  2. log_requests          -- method, path, status and latency per request
  3. SessionMiddleware     -- signed cookie holding the OAuth state and the
                              pending callbackUrl between redirect and callback
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Starlette makes the most recently added middleware the outermost, so the
add_middleware() calls below appear in reverse of the list above.

Lifespan builds the stores, the field cipher and the mailer on startup and
closes the stores on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.origin import OriginDecision, OriginPolicy, classify_request, preflight_headers, response_headers
from api.routes.auth import router as auth_router
from api.routes.mobile import router as mobile_router
from api.routes.vault import router as vault_router
from auth.oauth import oauth as oauth_client
from auth.store import IdentityStore
from core.config import get_settings
from core.crypto import DecryptionError, FieldCipher
from core.database import ping
from core.mailer import Mailer
from vault.service import VaultService
from vault.store import VaultStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("nopass.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    The cipher is built once from ENCRYPTION_KEY here and handed to the vault
    service. Nothing else reads the key.
    """
    logger.info("NoPass API starting up")
    app.state.identity_store = IdentityStore(_settings.database_url)
    app.state.vault_store = VaultStore(_settings.database_url)
    app.state.cipher = FieldCipher.from_hex(_settings.encryption_key)
    app.state.vault = VaultService(app.state.vault_store, app.state.cipher)
    app.state.mailer = Mailer(_settings)
    app.state.oauth = oauth_client
    logger.info(
        "Stores initialized (identities=%d, mail_configured=%s, strict_origin_check=%s)",
        app.state.identity_store.count(),
        app.state.mailer.configured,
        app.state.origin_policy.strict,
    )

    yield

    app.state.vault_store.close()
    app.state.identity_store.close()
    logger.info("NoPass API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="NoPass API",
    description="Personal vault for encrypted passwords and payment cards.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if _settings.debug else None,
    redoc_url=None,
    openapi_url="/api/openapi.json" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack (registered innermost first, see module docstring)
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.trusted_host_list)

app.add_middleware(SlowAPIMiddleware)

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback. This is the standard
# CSRF protection mechanism for the OAuth 2.0 authorization code flow.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    same_site="lax",
    https_only=_settings.secure_cookies,
    max_age=600,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# Immutable origin policy. Tests replace it to exercise strict/fail-open modes.
app.state.origin_policy = OriginPolicy.from_settings(_settings)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. We capture wall-clock time
# before and after call_next so we can report latency on every response.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Origin gatekeeper middleware
#
# Registered last so it is the outermost layer: a blocked request never
# reaches session handling, rate limiting, or a route handler.
# ---------------------------------------------------------------------------


def _internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


def _is_https(request: Request) -> bool:
    forwarded = request.headers.get("X-Forwarded-Proto", "")
    if forwarded:
        return forwarded.split(",")[0].strip().lower() == "https"
    return request.url.scheme == "https"


@app.middleware("http")
async def origin_gatekeeper(request: Request, call_next):
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    policy: OriginPolicy = request.app.state.origin_policy
    origin = request.headers.get("Origin")
    decision = classify_request(origin, request.method, policy)

    if decision is OriginDecision.PREFLIGHT:
        return Response(status_code=204, headers=preflight_headers(origin, policy))

    if decision is OriginDecision.BLOCKED:
        logger.warning("Blocked request from untrusted origin %r: %s %s", origin, request.method, request.url.path)
        return JSONResponse(
            status_code=403,
            content=ErrorResponse(
                error=ErrorDetail(code="origin_blocked", message="Origin not allowed.")
            ).model_dump(),
        )

    try:
        response = await call_next(request)
    except Exception:
        # Unhandled errors would otherwise reach ServerErrorMiddleware, outside
        # this layer, and leave the 500 without CORS or security headers.
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        response = _internal_error_response()
    for name, value in response_headers(origin, policy, _is_https(request)).items():
        response.headers[name] = value
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(vault_router, prefix="/api", tags=["Vault"])
app.include_router(mobile_router, prefix="/api", tags=["Mobile"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with field-level detail when the body or query params fail validation.

    Submitted values are left out of the detail: a rejected password must not
    be echoed back or logged.
    """
    fields = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")} for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code": ..., "message": ...}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        content = {"success": False, "error": exc.detail}
    else:
        content = ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump()
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(DecryptionError)
async def decryption_error_handler(request: Request, exc: DecryptionError) -> JSONResponse:
    """A stored envelope failed authentication or could not be parsed.

    Logged without the envelope itself. The client gets the same body as any
    other internal failure and never a partially decrypted record.
    """
    logger.error("Decryption failed on %s %s: %s", request.method, request.url.path, exc)
    return _internal_error_response()


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _internal_error_response()


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and database reachability."""
    db_ok = ping(request.app.state.identity_store.db_url)
    body = HealthResponse(
        status="ok" if db_ok else "degraded",
        version=API_VERSION,
        components={"database": "ok" if db_ok else "unavailable"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
