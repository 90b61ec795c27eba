# synchro/cryptography/keys.py
"""
Synchro Key Agreement

Ephemeral secp256k1 keypairs and ECDH shared-secret derivation for one
matching session. The same private scalar is also the party's PSI
blinding scalar.

Derivation:
    shared_point  = own_private_scalar * peer_public_point
    shared_secret = SHA-256(x(shared_point))          # 32B AEAD key

Usage:
    alice = generate_keypair()
    bob = generate_keypair()

    k_a = derive_shared_secret(bob.public_point, alice.private_scalar)
    k_b = derive_shared_secret(alice.public_point, bob.private_scalar)
    assert k_a == k_b
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .common import (
    POINT_BYTES,
    SCALAR_BYTES,
    InvalidPeerKey,
    _as_bytes,
    _int_to_bytes,
    _sha256,
)
from .curve import CURVE, scalar_from_bytes


# =============================================================================
# Key Pair
# =============================================================================

@dataclass(frozen=True)
class KeyPair:
    """Session keypair."""
    private_scalar: bytes = field(repr=False)   # 32B - never transmitted
    public_point: bytes                         # 33B compressed

    @property
    def public_hex(self) -> str:
        """Compressed public point as hex, as carried in JOIN/STEP_1."""
        return self.public_point.hex()

    @property
    def scalar(self) -> int:
        return scalar_from_bytes(self.private_scalar)


def generate_keypair() -> KeyPair:
    """
    Generate a fresh keypair.

    The scalar is drawn uniformly from [1, n-1] by OpenSSL's CSPRNG.
    """
    private_key = ec.generate_private_key(CURVE)
    d = private_key.private_numbers().private_value
    return KeyPair(
        private_scalar=_int_to_bytes(d, SCALAR_BYTES),
        public_point=_encode_public_key(private_key.public_key()),
    )


def derive_public_point(private_scalar: bytes) -> bytes:
    """Compute the compressed public point d*G for a 32-byte scalar."""
    d = scalar_from_bytes(private_scalar)
    return _encode_public_key(ec.derive_private_key(d, CURVE).public_key())


# =============================================================================
# Shared Secret
# =============================================================================

def derive_shared_secret(
    peer_public_point: Union[bytes, str],
    own_private_scalar: bytes,
) -> bytes:
    """
    Derive the 32-byte session key shared with a peer.

    Args:
        peer_public_point: Peer's compressed point (bytes or hex, 0x optional)
        own_private_scalar: Own 32-byte private scalar

    Returns:
        SHA-256 of the ECDH x-coordinate

    Raises:
        InvalidPeerKey: If the peer encoding is not a valid curve point
    """
    peer_key = load_peer_key(peer_public_point)
    d = scalar_from_bytes(own_private_scalar)
    private_key = ec.derive_private_key(d, CURVE)
    shared_x = private_key.exchange(ec.ECDH(), peer_key)
    return _sha256(shared_x)


def load_peer_key(peer_public_point: Union[bytes, str]) -> ec.EllipticCurvePublicKey:
    """
    Decode and validate a peer public point.

    Raises:
        InvalidPeerKey: On non-hex input, wrong length, infinity or off-curve
    """
    if not peer_public_point:
        raise InvalidPeerKey("Peer public key is empty")
    try:
        data = _as_bytes(peer_public_point)
    except (TypeError, ValueError) as e:
        raise InvalidPeerKey(f"Peer public key is not hex: {e}") from e

    if len(data) != POINT_BYTES:
        raise InvalidPeerKey(f"Peer public key must be {POINT_BYTES}B, got {len(data)}B")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, data)
    except ValueError as e:
        raise InvalidPeerKey(f"Peer public key is not a curve point: {e}") from e


def _encode_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.CompressedPoint,
    )
