# synchro/cryptography/common.py
"""
Synchro Common Components

Shared constants, hashing helpers, and the exception taxonomy used by
every cryptographic module of the matching core.

Encoding Conventions:
  - Curve points: SEC1 compressed (0x02/0x03 || x), 33 bytes, lowercase hex
  - Scalars: 32 bytes, big-endian, unsigned
  - Shared secrets and note keys: 32 bytes
"""

from __future__ import annotations

import hashlib
from typing import Union


# =============================================================================
# Constants
# =============================================================================

SCALAR_BYTES: int = 32
SECRET_BYTES: int = 32
POINT_BYTES: int = 33          # SEC1 compressed
COORD_BYTES: int = 32

NONCE_BYTES: int = 12          # 96-bit AEAD nonce
TAG_BYTES: int = 16

ENVELOPE_SEPARATOR: str = ":"


# =============================================================================
# Exceptions
# =============================================================================

class SynchroError(Exception):
    """Base exception for all synchro errors."""
    pass


class InvalidPeerKey(SynchroError):
    """Peer public key does not decode to a valid curve point."""
    pass


class InvalidPoint(SynchroError):
    """Blinded value does not decode to a valid curve point."""
    pass


class AuthenticationFailed(SynchroError):
    """AEAD tag verification failed (tampering, wrong key, corruption)."""
    pass


class MalformedEnvelope(SynchroError):
    """Note envelope is not nonce_hex:ciphertext_hex."""
    pass


# =============================================================================
# Utility Functions
# =============================================================================

def _sha256(*chunks: bytes) -> bytes:
    """Compute SHA-256 hash of concatenated inputs."""
    h = hashlib.sha256()
    for c in chunks:
        h.update(c)
    return h.digest()


def _int_from_bytes(b: bytes) -> int:
    """Convert bytes to integer (big-endian, unsigned)."""
    return int.from_bytes(b, "big", signed=False)


def _int_to_bytes(value: int, length: int = SCALAR_BYTES) -> bytes:
    """Convert integer to fixed-length big-endian bytes."""
    return value.to_bytes(length, "big", signed=False)


def _clean_hex(value: str) -> str:
    """Strip whitespace and an optional 0x prefix from a hex string."""
    value = value.strip()
    if value[:2].lower() == "0x":
        value = value[2:]
    return value


def _as_bytes(value: Union[bytes, bytearray, str]) -> bytes:
    """
    Accept raw bytes or a hex string.

    Raises:
        ValueError: If value is a string that is not valid hex
        TypeError: If value is neither bytes nor str
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes.fromhex(_clean_hex(value))
    raise TypeError(f"Expected bytes or hex str, got {type(value).__name__}")
