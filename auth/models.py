"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in vault/models.py -- dataclasses own domain shape; stores and routes do the
work.

Layer rule: no imports from api/ or vault/.
"""

from __future__ import annotations

from dataclasses import dataclass

PROVIDER_CREDENTIALS = "credentials"
PROVIDER_GOOGLE = "google"
PROVIDER_GITHUB = "github"


@dataclass
class Identity:
    """One human user of the vault.

    email is the canonical key: unique, lower-cased and trimmed by the store.
    Every secret record references its owner by this email.

    hashed_password is None for federated identities created by a Google or
    GitHub sign-in. Such an identity can still gain a password later through
    the reset flow; provider keeps the tag of the original sign-up.

    reset_token_hash holds SHA-256(raw reset token); the raw token only ever
    exists in the emailed link. Both reset fields are cleared after a
    successful reset.
    """

    email: str
    provider: str = PROVIDER_CREDENTIALS
    id: int | None = None
    name: str | None = None
    hashed_password: str | None = None
    image: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None
    reset_token_hash: str | None = None
    reset_token_expires: str | None = None


@dataclass
class FederatedProfile:
    """Normalized profile returned by a Google or GitHub sign-in.

    email is always a provider-verified address (see auth/oauth.py [H1]).
    """

    provider: str
    email: str
    subject: str
    name: str | None = None
    image: str | None = None


@dataclass
class TokenClaims:
    """Verified claim set of a bearer or session token."""

    identity_id: int
    email: str
    issued_at: int
    expires_at: int
