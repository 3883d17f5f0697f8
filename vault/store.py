"""
vault/store.py -- SQLAlchemy-backed persistence layer for vault records.

Uses SQLAlchemy Core (not ORM) so the dataclasses in vault/models.py remain the
authoritative domain representation.

Pattern: Repository + Data Mapper. VaultStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Ownership: every method takes the authenticated Identity as an explicit
argument and filters on its email. There is no method that reads, updates or
deletes a record by id alone, so a record owned by one identity can never be
reached through another identity's request. Update and delete report a miss
(None / False) identically for "does not exist" and "belongs to someone else".

The store only ever sees ciphertext envelopes for secret fields. Encryption
happens in vault/service.py before a record gets here.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = VaultStore("sqlite:///nopass.db")
    entry_id = store.create_password(entry)
    entries = store.list_passwords(identity, limit=100)
    store.delete_password(identity, entry_id)
    store.close()
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import Identity
from core.database import dispose_engine, get_engine
from vault.models import CardEntry, PasswordEntry

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_passwords = Table(
    "password_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("website", String(2048), nullable=False),
    Column("username", String(512), nullable=False),
    Column("password_encrypted", Text, nullable=False),
    Column("notes", Text),
    Column("owner_email", String(320), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_cards = Table(
    "card_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cardholder_name", String(255), nullable=False),
    Column("card_number_encrypted", Text, nullable=False),
    Column("card_number_last4", String(4), nullable=False),
    Column("expiry_date", String(16), nullable=False),
    Column("cvv_encrypted", Text, nullable=False),
    Column("notes", Text),
    Column("owner_email", String(320), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _owner(identity: Identity) -> str:
    if not identity.email:
        raise ValueError("An authenticated identity with an email is required.")
    return identity.email


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VaultStore:
    """Repository for PasswordEntry and CardEntry records."""

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self.engine: Engine = get_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def create_password(self, identity: Identity, entry: PasswordEntry) -> int:
        """Insert a password entry owned by identity and return its new ID.

        entry.owner_email is ignored; the owner always comes from identity.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _passwords.insert().values(
                    website=entry.website,
                    username=entry.username,
                    password_encrypted=entry.password_encrypted,
                    notes=entry.notes,
                    owner_email=_owner(identity),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_password(self, identity: Identity, entry_id: int) -> Optional[PasswordEntry]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _passwords.select().where(
                    (_passwords.c.id == entry_id) & (_passwords.c.owner_email == _owner(identity))
                )
            ).fetchone()
        return _row_to_password(row) if row is not None else None

    def list_passwords(self, identity: Identity, limit: Optional[int] = None) -> list[PasswordEntry]:
        """Return the identity's password entries, newest first."""
        query = (
            _passwords.select()
            .where(_passwords.c.owner_email == _owner(identity))
            .order_by(_passwords.c.created_at.desc(), _passwords.c.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_password(r) for r in rows]

    def count_passwords(self, identity: Identity) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_passwords).where(_passwords.c.owner_email == _owner(identity))
            ).scalar()
        return result or 0

    def update_password(self, identity: Identity, entry_id: int, entry: PasswordEntry) -> Optional[PasswordEntry]:
        """Replace the mutable fields of an owned entry.

        Returns the updated entry, or None when no record matches (id, owner).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _passwords.update()
                .where((_passwords.c.id == entry_id) & (_passwords.c.owner_email == _owner(identity)))
                .values(
                    website=entry.website,
                    username=entry.username,
                    password_encrypted=entry.password_encrypted,
                    notes=entry.notes,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_password(identity, entry_id)

    def delete_password(self, identity: Identity, entry_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _passwords.delete().where(
                    (_passwords.c.id == entry_id) & (_passwords.c.owner_email == _owner(identity))
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def create_card(self, identity: Identity, entry: CardEntry) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _cards.insert().values(
                    cardholder_name=entry.cardholder_name,
                    card_number_encrypted=entry.card_number_encrypted,
                    card_number_last4=entry.card_number_last4,
                    expiry_date=entry.expiry_date,
                    cvv_encrypted=entry.cvv_encrypted,
                    notes=entry.notes,
                    owner_email=_owner(identity),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_card(self, identity: Identity, entry_id: int) -> Optional[CardEntry]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _cards.select().where((_cards.c.id == entry_id) & (_cards.c.owner_email == _owner(identity)))
            ).fetchone()
        return _row_to_card(row) if row is not None else None

    def list_cards(self, identity: Identity, limit: Optional[int] = None) -> list[CardEntry]:
        query = (
            _cards.select()
            .where(_cards.c.owner_email == _owner(identity))
            .order_by(_cards.c.created_at.desc(), _cards.c.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_card(r) for r in rows]

    def count_cards(self, identity: Identity) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_cards).where(_cards.c.owner_email == _owner(identity))
            ).scalar()
        return result or 0

    def update_card(self, identity: Identity, entry_id: int, entry: CardEntry) -> Optional[CardEntry]:
        with self.engine.connect() as conn:
            result = conn.execute(
                _cards.update()
                .where((_cards.c.id == entry_id) & (_cards.c.owner_email == _owner(identity)))
                .values(
                    cardholder_name=entry.cardholder_name,
                    card_number_encrypted=entry.card_number_encrypted,
                    card_number_last4=entry.card_number_last4,
                    expiry_date=entry.expiry_date,
                    cvv_encrypted=entry.cvv_encrypted,
                    notes=entry.notes,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_card(identity, entry_id)

    def delete_card(self, identity: Identity, entry_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _cards.delete().where((_cards.c.id == entry_id) & (_cards.c.owner_email == _owner(identity)))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_password(row) -> PasswordEntry:
    return PasswordEntry(
        id=row.id,
        website=row.website,
        username=row.username,
        password_encrypted=row.password_encrypted,
        notes=row.notes,
        owner_email=row.owner_email,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_card(row) -> CardEntry:
    return CardEntry(
        id=row.id,
        cardholder_name=row.cardholder_name,
        card_number_encrypted=row.card_number_encrypted,
        card_number_last4=row.card_number_last4,
        expiry_date=row.expiry_date,
        cvv_encrypted=row.cvv_encrypted,
        notes=row.notes,
        owner_email=row.owner_email,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
