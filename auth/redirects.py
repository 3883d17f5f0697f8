"""
auth/redirects.py -- Post-sign-in redirect target validation.

resolve_redirect() decides where the browser goes after a sign-in completes.
Rules, in order:
  1. Relative path ("/vault") -> resolved against the application base URL.
     Protocol-relative "//host/..." is NOT relative -- it names another host.
  2. Absolute URL on the application's own origin -> accepted, except paths
     under /api/auth/ which are sent to the application root instead. Landing
     back on a sign-in callback would loop the browser through the auth
     subsystem.
  3. Anything else (other origin, unparseable) -> application root.

Layer rule: no imports from api/ or vault/.
"""

from __future__ import annotations

from urllib.parse import urlsplit

AUTH_PATH_PREFIX = "/api/auth/"


def _origin(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()


def resolve_redirect(url: str | None, base_url: str) -> str:
    """Return a safe absolute redirect target for url. [C2]"""
    base = base_url.rstrip("/")
    if not url:
        return base

    if url.startswith("/") and not url.startswith("//"):
        return f"{base}{url}"

    try:
        dest = urlsplit(url)
    except ValueError:
        return base
    if not dest.scheme or not dest.netloc:
        return base
    if (dest.scheme.lower(), dest.netloc.lower()) != _origin(base):
        return base
    if dest.path.startswith(AUTH_PATH_PREFIX):
        return base
    return url


def is_allowed_app_target(target: str, mobile_schemes: list[str]) -> bool:
    """Return True if target is a deep link into the mobile app.

    Used for the mobile OAuth state parameter: the issued token is appended to
    this URL, so it must never point at a web origin.
    """
    return any(target.startswith(scheme) for scheme in mobile_schemes)
