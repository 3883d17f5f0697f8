"""
auth/tokens.py -- JWT, password hashing, and reset-token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub/id (identity id), email, iat and exp. The same claim set is used
       for mobile bearer tokens and for the browser session cookie; only the
       transport differs. verify_token() raises TokenExpiredError when the
       signature is valid but exp has passed and TokenInvalidError for every
       other failure, so /mobile-validate can tell the client which one it was.

  Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
       offline brute force expensive; checkpw does the comparison so we never
       compare hash bytes ourselves. The _DUMMY_HASH constant enables timing
       equalization in authenticate_identity() so response time does not
       reveal whether an account exists [C1].

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 digest is persisted; a database leak does not yield usable
       reset links. A fast hash is fine here because the input is random,
       not a human-chosen password.

Layer rule: no imports from api/ or vault/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Identity, TokenClaims
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import IdentityStore

logger = logging.getLogger("nopass.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "session_token"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------

# bcrypt only looks at the first 72 bytes and bcrypt>=4.1 rejects longer
# input outright. The API models enforce this limit on every password field.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = 0) -> str:
    """Return a bcrypt hash of the given plaintext password.

    rounds defaults to Settings.bcrypt_rounds (12).
    """
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("nopass_timing_dummy")


# ---------------------------------------------------------------------------
# JWT issue / verify
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for bearer/session token failures."""


class TokenExpiredError(TokenError):
    """Signature is valid but the token is past its exp claim."""


class TokenInvalidError(TokenError):
    """Bad signature, malformed token, or missing claims."""


def issue_token(identity_id: int, email: str, ttl: timedelta) -> str:
    """Encode a signed JWT for an identity that expires after ttl.

    Mobile password login uses a 7-day ttl, mobile Google/GitHub login a
    30-day ttl, and the browser session cookie Settings.session_expire_seconds.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(identity_id),
        "id": identity_id,
        "email": email,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_token(token: str) -> TokenClaims:
    """Verify a JWT and return its claims.

    Raises:
        TokenExpiredError: signature verified, clock is past exp.
        TokenInvalidError: anything else (signature, format, claims).
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token expired") from exc
    except JWTError as exc:
        raise TokenInvalidError("Invalid token") from exc

    try:
        return TokenClaims(
            identity_id=int(payload["id"]),
            email=str(payload["email"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalidError("Invalid token") from exc


def decode_token(token: str) -> TokenClaims | None:
    """Soft variant of verify_token(): returns None on any failure."""
    try:
        return verify_token(token)
    except TokenError:
        return None


# ---------------------------------------------------------------------------
# Local credential authentication (constant-time) [C1]
# ---------------------------------------------------------------------------

LOGIN_NOT_FOUND = "not_found"
LOGIN_NO_PASSWORD = "no_password"
LOGIN_BAD_PASSWORD = "bad_password"


@dataclass
class LoginOutcome:
    """Result of authenticate_identity(). Exactly one field is set."""

    identity: Identity | None = None
    failure: str | None = None


def authenticate_identity(store: IdentityStore, email: str, password: str) -> LoginOutcome:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the account exists or has a password:
    - Unknown email / federated-only account: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    The failure kind is reported to the caller; whether it is shown to the
    client is the route's decision (Settings.unify_login_errors).
    On success last_login is refreshed and the updated identity returned.
    """
    identity = store.get_by_email(email)
    if identity is None or identity.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return LoginOutcome(failure=LOGIN_NOT_FOUND if identity is None else LOGIN_NO_PASSWORD)
    if not verify_password(password, identity.hashed_password):
        return LoginOutcome(failure=LOGIN_BAD_PASSWORD)
    store.touch_last_login(identity.id)
    return LoginOutcome(identity=store.get_by_id(identity.id))


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_reset_token() -> tuple[str, str]:
    """Return (raw_token, sha256_digest). Only the digest is ever stored."""
    raw = secrets.token_hex(32)
    return raw, hash_reset_token(raw)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_expire_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
