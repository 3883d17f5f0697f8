"""
vault/models.py -- Domain dataclasses for vault records.

These are pure data containers with zero logic. Encryption and owner
filtering live in vault/service.py and vault/store.py.

The *_encrypted fields always hold a core.crypto envelope
(hex(nonce):hex(ciphertext):hex(tag)), never plaintext.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class PasswordEntry:
    """A saved website login.

    owner_email is set from the authenticated identity at creation and never
    changes afterwards. id is None before the record is written to the database.
    """

    website: str
    username: str
    password_encrypted: str
    owner_email: str
    notes: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class CardEntry:
    """A saved payment card.

    card_number_last4 is stored in clear so lists can show a masked number
    without decrypting anything.
    """

    cardholder_name: str
    card_number_encrypted: str
    card_number_last4: str
    expiry_date: str
    cvv_encrypted: str
    owner_email: str
    notes: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class PasswordFields:
    """Plaintext password-entry input, as accepted from the owner."""

    website: str
    username: str
    password: str
    notes: Optional[str] = None


@dataclass
class CardFields:
    """Plaintext card input, as accepted from the owner."""

    cardholder_name: str
    card_number: str
    expiry_date: str
    cvv: str
    notes: Optional[str] = None
