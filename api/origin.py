"""
api/origin.py -- Origin gatekeeper: trust decision and CORS/security headers.

The decision is a pure function of (Origin header, method, policy) so it can
be tested without an HTTP stack. api/main.py wires it into an HTTP middleware
that runs for every /api/ request before routing.

Trust rules (is_trusted_origin):
  - no Origin header: trusted. Non-browser clients (the mobile app, curl,
    server-to-server) do not send one, and browsers always do on cross-origin
    requests.
  - exact match against ALLOWED_ORIGINS: trusted. No suffix or substring
    matching, so "https://app.example.com.evil.io" never passes.
  - starts with an allowed mobile scheme (exp://, nopassmobile://): trusted.
  - loopback / private-network markers (localhost, 127.0.0.1, 192.168.):
    trusted only in development mode (DEBUG=true). This only changes an
    outcome when STRICT_ORIGIN_CHECK=true is set alongside DEBUG, so a local
    front end or a LAN test device passes while foreign origins are blocked.
    With strict checking off every origin is allowed and echoed anyway.

Classification (classify_request):
  OPTIONS             -> PREFLIGHT (always answered, never reaches a handler)
  trusted origin      -> ALLOWED
  untrusted + strict  -> BLOCKED
  untrusted + !strict -> ALLOWED (fail-open; development only)

STRICT_ORIGIN_CHECK defaults to "not DEBUG" in core/config.py, so production
deployments block unless explicitly configured otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.config import Settings

ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization, X-Requested-With, Accept"
PREFLIGHT_MAX_AGE = "86400"
HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"

DEV_ORIGIN_MARKERS = ("localhost", "127.0.0.1", "192.168.")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}


class OriginDecision(str, Enum):
    PREFLIGHT = "preflight"
    ALLOWED = "allowed"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class OriginPolicy:
    """Immutable origin configuration, built once at startup."""

    allowed_origins: tuple[str, ...] = ()
    mobile_schemes: tuple[str, ...] = ()
    strict: bool = True
    hsts: bool = False
    development: bool = False
    dev_markers: tuple[str, ...] = DEV_ORIGIN_MARKERS

    @classmethod
    def from_settings(cls, settings: Settings) -> OriginPolicy:
        return cls(
            allowed_origins=tuple(o.rstrip("/") for o in settings.allowed_origin_list),
            mobile_schemes=tuple(settings.mobile_scheme_list),
            strict=bool(settings.strict_origin_check),
            hsts=not settings.debug,
            development=settings.debug,
        )


def is_trusted_origin(origin: Optional[str], policy: OriginPolicy) -> bool:
    if not origin:
        return True
    if origin in policy.allowed_origins:
        return True
    if any(origin.startswith(scheme) for scheme in policy.mobile_schemes):
        return True
    if policy.development and any(marker in origin for marker in policy.dev_markers):
        return True
    return False


def classify_request(origin: Optional[str], method: str, policy: OriginPolicy) -> OriginDecision:
    """Decide how the gatekeeper treats one request."""
    if method.upper() == "OPTIONS":
        return OriginDecision.PREFLIGHT
    if is_trusted_origin(origin, policy):
        return OriginDecision.ALLOWED
    if not policy.strict:
        return OriginDecision.ALLOWED
    return OriginDecision.BLOCKED


def allow_origin_value(origin: Optional[str], policy: OriginPolicy) -> str:
    """Value for Access-Control-Allow-Origin.

    "*" when the request carried no Origin, the origin itself when it is
    trusted (or checking is not strict), and "null" otherwise.
    """
    if not origin:
        return "*"
    if is_trusted_origin(origin, policy) or not policy.strict:
        return origin
    return "null"


def cors_headers(origin: Optional[str], policy: OriginPolicy) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": allow_origin_value(origin, policy),
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
        "Access-Control-Allow-Credentials": "true",
        "Vary": "Origin",
    }


def preflight_headers(origin: Optional[str], policy: OriginPolicy) -> dict[str, str]:
    headers = cors_headers(origin, policy)
    headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
    return headers


def response_headers(origin: Optional[str], policy: OriginPolicy, is_https: bool) -> dict[str, str]:
    """Headers added to every ALLOWED response.

    Strict-Transport-Security is only sent in production over HTTPS; sending
    it over plain HTTP is ignored by browsers and would pin localhost to TLS
    in development.
    """
    headers = cors_headers(origin, policy)
    headers.update(SECURITY_HEADERS)
    if policy.hsts and is_https:
        headers["Strict-Transport-Security"] = HSTS_VALUE
    return headers
