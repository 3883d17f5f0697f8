"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper (same as vault/store.py).
IdentityStore is the repository; _row_to_identity is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email is the natural key. It is normalized (strip + lower) on every write
  and every lookup so "A@X.com " and "a@x.com" are the same account, and the
  UNIQUE constraint on the normalized column makes duplicates impossible.

  upsert_federated() is idempotent: a second sign-in with the same verified
  email only refreshes last_login. When two first sign-ins race, the loser
  hits the UNIQUE constraint and falls back to the row the winner created.

Layer rule: no imports from api/ or vault/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import FederatedProfile, Identity
from core.database import dispose_engine, get_engine

logger = logging.getLogger("nopass.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("name", String(255)),
    Column("hashed_password", Text),  # NULL for federated-only identities
    Column("provider", String(30), nullable=False, server_default="credentials"),
    Column("image", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("reset_token_hash", String(64), index=True),
    Column("reset_token_expires", String(32)),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity entities.

    Usage:
        store = IdentityStore("sqlite:///nopass.db")
        store.create_identity(Identity(email="a@x.com", hashed_password=hash_password("secret")))
        identity = store.get_by_email("A@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self.engine: Engine = get_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_identity(self, identity: Identity) -> int:
        """Insert a new identity and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        POST /register catches it as the "User already exists" signal for
        the race where two registrations pass the existence check together.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _identities.insert().values(
                    email=normalize_email(identity.email),
                    name=identity.name,
                    hashed_password=identity.hashed_password,
                    provider=identity.provider,
                    image=identity.image,
                    created_at=now,
                    updated_at=now,
                    last_login=identity.last_login,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _identities.select().where(_identities.c.email == normalize_email(email))
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, identity_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_identities)).scalar()
        return result or 0

    def touch_last_login(self, identity_id: int) -> None:
        """Stamp the current UTC timestamp as last_login.

        Called on every successful authentication: local credentials (web
        and mobile) and every federated sign-in.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _identities.update().where(_identities.c.id == identity_id).values(last_login=now, updated_at=now)
            )
            conn.commit()

    def upsert_federated(self, profile: FederatedProfile) -> tuple[Identity, bool]:
        """Create or refresh the identity for a verified federated sign-in.

        Returns (identity, created). An existing identity -- whatever provider
        it was created with -- only gets last_login refreshed; its name and
        avatar are never overwritten.
        """
        existing = self.get_by_email(profile.email)
        if existing is not None:
            self.touch_last_login(existing.id)
            return self.get_by_id(existing.id), False

        try:
            new_id = self.create_identity(
                Identity(
                    email=profile.email,
                    name=profile.name or normalize_email(profile.email),
                    provider=profile.provider,
                    image=profile.image or "",
                    last_login=_now_iso(),
                )
            )
        except IntegrityError:
            # A concurrent first sign-in created the row between our lookup and insert.
            logger.info("Concurrent federated sign-in detected; reusing existing identity")
            existing = self.get_by_email(profile.email)
            if existing is None:
                raise
            self.touch_last_login(existing.id)
            return self.get_by_id(existing.id), False
        logger.info("Identity created via %s sign-in (id=%s)", profile.provider, new_id)
        return self.get_by_id(new_id), True

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def set_reset_token(self, identity_id: int, token_hash: str, expires_at: str) -> None:
        """Store the digest of a freshly issued reset token, replacing any previous one."""
        with self.engine.connect() as conn:
            conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(reset_token_hash=token_hash, reset_token_expires=expires_at, updated_at=_now_iso())
            )
            conn.commit()

    def consume_reset_token(self, token_hash: str, new_hashed_password: str) -> Identity | None:
        """Set a new password for the holder of an unexpired reset token.

        The token fields are cleared in the same UPDATE that sets the
        password, and the WHERE clause repeats the hash + expiry check, so a
        token can be used at most once even under concurrent submissions.

        Returns the updated identity, or None if the token is unknown or expired.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            row = conn.execute(
                _identities.select().where(
                    (_identities.c.reset_token_hash == token_hash) & (_identities.c.reset_token_expires > now)
                )
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _identities.update()
                .where((_identities.c.id == row.id) & (_identities.c.reset_token_hash == token_hash))
                .values(
                    hashed_password=new_hashed_password,
                    reset_token_hash=None,
                    reset_token_expires=None,
                    updated_at=now,
                )
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(row.id)

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        provider=row.provider,
        image=row.image,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
        reset_token_hash=row.reset_token_hash,
        reset_token_expires=row.reset_token_expires,
    )
