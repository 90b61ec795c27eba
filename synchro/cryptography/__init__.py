# synchro/cryptography/__init__.py
"""
Synchro Cryptography Module

Primitives for private calendar matching:
  - keys:     ephemeral secp256k1 keypairs, ECDH session secret
  - curve:    affine point type, scalar multiplication
  - blinding: identifier -> point mapping, commutative blinding, intersection
  - notes:    AEAD note envelopes (AES-256-GCM / ChaCha20-Poly1305)
"""

from .common import (
    # Constants
    SCALAR_BYTES,
    SECRET_BYTES,
    POINT_BYTES,
    NONCE_BYTES,
    TAG_BYTES,
    ENVELOPE_SEPARATOR,
    # Exceptions
    SynchroError,
    InvalidPeerKey,
    InvalidPoint,
    AuthenticationFailed,
    MalformedEnvelope,
)

from .curve import (
    CurvePoint,
    GENERATOR,
    base_multiply,
    multiply,
    is_on_curve,
)

from .keys import (
    KeyPair,
    generate_keypair,
    derive_public_point,
    derive_shared_secret,
)

from .blinding import (
    map_to_point,
    blind,
    blind_identifier,
    blind_set,
    reblind_set,
    encode_point,
    decode_point,
    encode_points,
    decode_points,
    matched_positions,
)

from .notes import (
    NoteSuite,
    NOTE_SUITES,
    DEFAULT_NOTE_SUITE_ID,
    get_note_suite,
    SecureNoteChannel,
)

__all__ = [
    "SCALAR_BYTES",
    "SECRET_BYTES",
    "POINT_BYTES",
    "NONCE_BYTES",
    "TAG_BYTES",
    "ENVELOPE_SEPARATOR",
    "SynchroError",
    "InvalidPeerKey",
    "InvalidPoint",
    "AuthenticationFailed",
    "MalformedEnvelope",
    "CurvePoint",
    "GENERATOR",
    "base_multiply",
    "multiply",
    "is_on_curve",
    "KeyPair",
    "generate_keypair",
    "derive_public_point",
    "derive_shared_secret",
    "map_to_point",
    "blind",
    "blind_identifier",
    "blind_set",
    "reblind_set",
    "encode_point",
    "decode_point",
    "encode_points",
    "decode_points",
    "matched_positions",
    "NoteSuite",
    "NOTE_SUITES",
    "DEFAULT_NOTE_SUITE_ID",
    "get_note_suite",
    "SecureNoteChannel",
]
