"""
vault/service.py -- Record access control: encryption at the store boundary.

VaultService sits between the route handlers and VaultStore:
  - on write, secret fields (saved password, card number, CVV) are encrypted
    with the FieldCipher and only the envelope is handed to the store;
  - on read, envelopes are decrypted for the owning identity only;
  - counts never decrypt anything.

Every method takes the authenticated Identity explicitly. The service never
accepts an owner email from request data.

A DecryptionError on read propagates to the caller. api/main.py turns it into
a generic 500; plaintext is never partially returned.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.models import Identity
from core.crypto import FieldCipher
from vault.models import CardEntry, CardFields, PasswordEntry, PasswordFields
from vault.store import VaultStore

logger = logging.getLogger("nopass.vault")

# The browser password list has always been capped; mobile lists are not.
BROWSER_PASSWORD_LIMIT = 100


def last4_digits(card_number: str) -> str:
    """Return the last four digits of a card number, ignoring spaces and dashes."""
    digits = "".join(ch for ch in card_number if ch.isdigit())
    return digits[-4:]


class VaultService:
    """Encrypting facade over VaultStore.

    Read methods return plain dicts keyed the way the API serializes them,
    with secret fields already decrypted.
    """

    def __init__(self, store: VaultStore, cipher: FieldCipher) -> None:
        self.store = store
        self.cipher = cipher

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def _seal_password(self, identity: Identity, fields: PasswordFields) -> PasswordEntry:
        return PasswordEntry(
            website=fields.website,
            username=fields.username,
            password_encrypted=self.cipher.encrypt(fields.password),
            notes=fields.notes,
            owner_email=identity.email,
        )

    def _open_password(self, entry: PasswordEntry) -> dict:
        return {
            "id": entry.id,
            "website": entry.website,
            "username": entry.username,
            "password": self.cipher.decrypt(entry.password_encrypted),
            "notes": entry.notes,
            "created_at": entry.created_at,
            "updated_at": entry.updated_at,
        }

    def add_password(self, identity: Identity, fields: PasswordFields) -> dict:
        entry_id = self.store.create_password(identity, self._seal_password(identity, fields))
        logger.info("Password entry %s created", entry_id)
        return self._open_password(self.store.get_password(identity, entry_id))

    def list_passwords(self, identity: Identity, limit: Optional[int] = None) -> list[dict]:
        return [self._open_password(e) for e in self.store.list_passwords(identity, limit=limit)]

    def count_passwords(self, identity: Identity) -> int:
        return self.store.count_passwords(identity)

    def update_password(self, identity: Identity, entry_id: int, fields: PasswordFields) -> Optional[dict]:
        updated = self.store.update_password(identity, entry_id, self._seal_password(identity, fields))
        return self._open_password(updated) if updated is not None else None

    def delete_password(self, identity: Identity, entry_id: int) -> bool:
        return self.store.delete_password(identity, entry_id)

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def _seal_card(self, identity: Identity, fields: CardFields) -> CardEntry:
        return CardEntry(
            cardholder_name=fields.cardholder_name,
            card_number_encrypted=self.cipher.encrypt(fields.card_number),
            card_number_last4=last4_digits(fields.card_number),
            expiry_date=fields.expiry_date,
            cvv_encrypted=self.cipher.encrypt(fields.cvv),
            notes=fields.notes,
            owner_email=identity.email,
        )

    def _open_card(self, entry: CardEntry) -> dict:
        return {
            "id": entry.id,
            "cardholder_name": entry.cardholder_name,
            "card_number": self.cipher.decrypt(entry.card_number_encrypted),
            "card_number_last4": entry.card_number_last4,
            "expiry_date": entry.expiry_date,
            "cvv": self.cipher.decrypt(entry.cvv_encrypted),
            "notes": entry.notes,
            "created_at": entry.created_at,
            "updated_at": entry.updated_at,
        }

    def add_card(self, identity: Identity, fields: CardFields) -> dict:
        entry_id = self.store.create_card(identity, self._seal_card(identity, fields))
        logger.info("Card entry %s created", entry_id)
        return self._open_card(self.store.get_card(identity, entry_id))

    def list_cards(self, identity: Identity) -> list[dict]:
        return [self._open_card(e) for e in self.store.list_cards(identity)]

    def count_cards(self, identity: Identity) -> int:
        return self.store.count_cards(identity)

    def update_card(self, identity: Identity, entry_id: int, fields: CardFields) -> Optional[dict]:
        updated = self.store.update_card(identity, entry_id, self._seal_card(identity, fields))
        return self._open_card(updated) if updated is not None else None

    def delete_card(self, identity: Identity, entry_id: int) -> bool:
        return self.store.delete_card(identity, entry_id)
