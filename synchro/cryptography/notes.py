# synchro/cryptography/notes.py
"""
Synchro Secure Notes

Authenticated encryption of short per-event notes exchanged after a match.

Envelope Format:
    nonce_hex ":" ciphertext_hex

    - nonce: 12 bytes, fresh from the OS CSPRNG on every call
    - ciphertext: AEAD output, 16-byte tag appended

Suites:
    - 0x01: AES-256-GCM (default)
    - 0x02: ChaCha20-Poly1305

    Both use a 256-bit key and a 96-bit nonce. Both parties must use the
    same suite; the envelope does not carry it.

Usage:
    channel = SecureNoteChannel(shared_secret)
    env = channel.encrypt("See you at the afterparty")
    text = channel.decrypt(env)
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .common import (
    ENVELOPE_SEPARATOR,
    NONCE_BYTES,
    SECRET_BYTES,
    TAG_BYTES,
    AuthenticationFailed,
    MalformedEnvelope,
)


# =============================================================================
# Suite Definitions
# =============================================================================

@dataclass(frozen=True)
class NoteSuite:
    """AEAD parameter suite for notes."""
    id: int
    name: str
    key_size: int
    nonce_size: int
    tag_size: int
    factory: Callable[[bytes], object]


NOTE_SUITES: Dict[int, NoteSuite] = {
    0x01: NoteSuite(
        id=0x01,
        name="AES-256-GCM",
        key_size=SECRET_BYTES,
        nonce_size=NONCE_BYTES,
        tag_size=TAG_BYTES,
        factory=AESGCM,
    ),
    0x02: NoteSuite(
        id=0x02,
        name="ChaCha20-Poly1305",
        key_size=SECRET_BYTES,
        nonce_size=NONCE_BYTES,
        tag_size=TAG_BYTES,
        factory=ChaCha20Poly1305,
    ),
}

DEFAULT_NOTE_SUITE_ID = 0x01


def get_note_suite(suite_id: int) -> NoteSuite:
    """
    Get note suite by ID.

    Raises:
        ValueError: If suite_id is unknown
    """
    if suite_id not in NOTE_SUITES:
        raise ValueError(
            f"Unknown note suite: 0x{suite_id:02x}. Valid: {list(NOTE_SUITES.keys())}"
        )
    return NOTE_SUITES[suite_id]


# =============================================================================
# Envelope Codec
# =============================================================================

def pack_envelope(nonce: bytes, ciphertext: bytes) -> str:
    return nonce.hex() + ENVELOPE_SEPARATOR + ciphertext.hex()


def unpack_envelope(envelope: str, nonce_size: int = NONCE_BYTES,
                    tag_size: int = TAG_BYTES) -> tuple:
    """
    Split an envelope into (nonce, ciphertext).

    Raises:
        MalformedEnvelope: Missing separator, bad hex, or bad lengths
    """
    if not isinstance(envelope, str):
        raise MalformedEnvelope(f"Envelope must be str, got {type(envelope).__name__}")

    parts = envelope.split(ENVELOPE_SEPARATOR)
    if len(parts) != 2:
        raise MalformedEnvelope(f"Expected nonce{ENVELOPE_SEPARATOR}ciphertext")

    try:
        nonce = bytes.fromhex(parts[0])
        ciphertext = bytes.fromhex(parts[1])
    except ValueError as e:
        raise MalformedEnvelope(f"Envelope is not hex: {e}") from e

    if len(nonce) != nonce_size:
        raise MalformedEnvelope(f"Nonce must be {nonce_size}B, got {len(nonce)}B")
    if len(ciphertext) < tag_size:
        raise MalformedEnvelope(f"Ciphertext shorter than {tag_size}B tag")

    return nonce, ciphertext


# =============================================================================
# Secure Note Channel
# =============================================================================

class SecureNoteChannel:
    """AEAD channel bound to one session key."""

    def __init__(self, key: bytes, suite_id: int = DEFAULT_NOTE_SUITE_ID):
        """
        Args:
            key: 32-byte shared secret
            suite_id: Note suite (0x01 AES-256-GCM, 0x02 ChaCha20-Poly1305)
        """
        self._suite = get_note_suite(suite_id)
        if len(key) != self._suite.key_size:
            raise ValueError(f"Key must be {self._suite.key_size}B, got {len(key)}B")
        self._aead = self._suite.factory(key)

    @property
    def suite(self) -> NoteSuite:
        return self._suite

    def encrypt(self, plaintext: str, aad: Optional[bytes] = None) -> str:
        """Encrypt a note under a fresh random nonce."""
        nonce = secrets.token_bytes(self._suite.nonce_size)
        ciphertext = self._aead.encrypt(nonce, plaintext.encode("utf-8"), aad)
        return pack_envelope(nonce, ciphertext)

    def decrypt(self, envelope: str, aad: Optional[bytes] = None) -> str:
        """
        Decrypt a note envelope.

        Raises:
            MalformedEnvelope: If the envelope cannot be parsed
            AuthenticationFailed: If the tag does not verify
        """
        nonce, ciphertext = unpack_envelope(
            envelope, self._suite.nonce_size, self._suite.tag_size
        )
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, aad)
        except InvalidTag as e:
            raise AuthenticationFailed("Note authentication failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEnvelope("Note plaintext is not UTF-8") from e

    def __repr__(self) -> str:
        return f"SecureNoteChannel(suite={self._suite.name})"


# =============================================================================
# Functional API
# =============================================================================

def encrypt(plaintext: str, key: bytes, aad: Optional[bytes] = None,
            suite_id: int = DEFAULT_NOTE_SUITE_ID) -> str:
    """Encrypt a note: nonce_hex:ciphertext_hex."""
    return SecureNoteChannel(key, suite_id).encrypt(plaintext, aad)


def decrypt(envelope: str, key: bytes, aad: Optional[bytes] = None,
            suite_id: int = DEFAULT_NOTE_SUITE_ID) -> str:
    """Decrypt a note envelope produced by encrypt()."""
    return SecureNoteChannel(key, suite_id).decrypt(envelope, aad)
