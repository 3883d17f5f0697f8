"""
core/crypto.py -- Field-level encryption for stored secrets.

Every secret field (saved passwords, card numbers, CVVs) is encrypted with
AES-256-GCM before it reaches the store and decrypted only on the way out to
its owner.

Envelope wire format (shared with every client that reads stored records):

    hex(nonce):hex(ciphertext):hex(tag)

  nonce       12 random bytes, fresh for every encrypt() call
  ciphertext  same length as the UTF-8 plaintext
  tag         16-byte GCM authentication tag

The cryptography library's AESGCM returns ciphertext||tag as one buffer; we
split the last 16 bytes off so the segment order matches the format above.

Security design decisions:
  Authenticated encryption: a tampered nonce, ciphertext or tag fails the GCM
      check and raises DecryptionError. There is no code path that returns
      plaintext without a verified tag.

  Key handling: the 256-bit key is supplied once at startup (ENCRYPTION_KEY,
      64 hex chars) and held by a FieldCipher instance on app.state. It is
      never read ad hoc from the environment.

  No key versioning: envelopes carry no key id. Rotating ENCRYPTION_KEY makes
      every existing envelope undecryptable until the records are re-encrypted
      with the new key.

Layer rule: core/ is the kernel. No imports from api/, auth/, or vault/.
"""

from __future__ import annotations

import binascii
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32
ENVELOPE_SEPARATOR = ":"


class DecryptionError(Exception):
    """Raised when an envelope is malformed or fails authentication.

    The message never includes key material or partial plaintext.
    """


def generate_key() -> str:
    """Return a fresh random 256-bit key as 64 hex characters."""
    return secrets.token_hex(KEY_BYTES)


class FieldCipher:
    """AES-256-GCM encryptor for single text fields.

    Usage:
        cipher = FieldCipher.from_hex(settings.encryption_key)
        envelope = cipher.encrypt("hunter2")
        cipher.decrypt(envelope)  # "hunter2"
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            raise ValueError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}.")
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str) -> FieldCipher:
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as exc:
            raise ValueError("Encryption key must be hex encoded.") from exc
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext and return the nonce:ciphertext:tag envelope."""
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return ENVELOPE_SEPARATOR.join((nonce.hex(), ciphertext.hex(), tag.hex()))

    def decrypt(self, envelope: str) -> str:
        """Verify and decrypt an envelope produced by encrypt().

        Raises DecryptionError if the envelope is malformed, the tag does not
        verify, or the key does not match the one used for encryption.
        """
        parts = envelope.split(ENVELOPE_SEPARATOR)
        if len(parts) != 3:
            raise DecryptionError("Malformed envelope: expected nonce:ciphertext:tag.")
        try:
            nonce, ciphertext, tag = (binascii.unhexlify(p) for p in parts)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Malformed envelope: segments must be hex.") from exc
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionError("Malformed envelope: bad nonce or tag length.")
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionError("Authentication failed: envelope was tampered with or key is wrong.") from exc
        return plaintext.decode("utf-8")
