# synchro/cryptography/curve.py
"""
Synchro Curve Arithmetic (secp256k1)

Affine point type plus the one operation `cryptography` does not expose:
multiplication of an arbitrary point by a scalar. Base-point
multiplication, point decoding and on-curve validation are delegated to
OpenSSL through `cryptography`.

Curve:
    y^2 = x^3 + 7  over GF(p)
    p = 2^256 - 2^32 - 977
    n = group order (prime, cofactor 1)

Internal Representation:
    Scalar multiplication runs in Jacobian coordinates (X, Y, Z) with
    x = X/Z^2, y = Y/Z^3, so only one field inversion is needed per
    multiplication. Z == 0 denotes the point at infinity.

Usage:
    from synchro.cryptography.curve import CurvePoint, base_multiply, multiply

    P = base_multiply(5)
    Q = multiply(P, 7)
    assert Q == base_multiply(35)
    wire = Q.to_bytes()            # 33B compressed
    assert CurvePoint.from_bytes(wire) == Q
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric import ec

from .common import (
    COORD_BYTES,
    POINT_BYTES,
    InvalidPoint,
    _int_from_bytes,
    _int_to_bytes,
)


# =============================================================================
# Domain Parameters
# =============================================================================

CURVE = ec.SECP256K1()

P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
B = 7

GX = 0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798
GY = 0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8

_Jacobian = Tuple[int, int, int]
_INFINITY: _Jacobian = (1, 1, 0)


# =============================================================================
# Point Type
# =============================================================================

@dataclass(frozen=True)
class CurvePoint:
    """Affine secp256k1 point (never the point at infinity)."""
    x: int
    y: int

    def to_bytes(self) -> bytes:
        """33-byte SEC1 compressed encoding."""
        prefix = b"\x03" if self.y & 1 else b"\x02"
        return prefix + _int_to_bytes(self.x, COORD_BYTES)

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> CurvePoint:
        """
        Decode a compressed point.

        Raises:
            InvalidPoint: Wrong length/prefix, x not on the curve, or infinity
        """
        if len(data) != POINT_BYTES or data[0] not in (2, 3):
            raise InvalidPoint(
                f"Expected {POINT_BYTES}B compressed point, got {len(data)}B"
            )
        try:
            public_key = ec.EllipticCurvePublicKey.from_encoded_point(CURVE, data)
        except ValueError as e:
            raise InvalidPoint(f"Point not on curve: {e}") from e
        numbers = public_key.public_numbers()
        return cls(numbers.x, numbers.y)

    @classmethod
    def from_hex(cls, value: str) -> CurvePoint:
        if not isinstance(value, str):
            raise InvalidPoint(f"Expected hex string, got {type(value).__name__}")
        try:
            data = bytes.fromhex(value)
        except ValueError as e:
            raise InvalidPoint(f"Point encoding is not hex: {value[:16]!r}") from e
        return cls.from_bytes(data)

    def __repr__(self) -> str:
        return f"CurvePoint({self.to_hex()[:18]}...)"


GENERATOR = CurvePoint(GX, GY)


# =============================================================================
# Scalar Helpers
# =============================================================================

def scalar_from_bytes(data: bytes) -> int:
    """
    Interpret 32 bytes as a scalar in [1, n-1].

    Raises:
        ValueError: If the value is zero or not below the group order
    """
    k = _int_from_bytes(data)
    if not 0 < k < N:
        raise ValueError("Scalar out of range [1, n-1]")
    return k


def is_valid_scalar(k: int) -> bool:
    return 0 < k < N


# =============================================================================
# Jacobian Arithmetic
# =============================================================================

def _to_jacobian(point: CurvePoint) -> _Jacobian:
    return (point.x, point.y, 1)


def _from_jacobian(jp: _Jacobian) -> CurvePoint:
    X, Y, Z = jp
    if Z == 0:
        raise InvalidPoint("Result is the point at infinity")
    z_inv = pow(Z, -1, P)
    z_inv2 = (z_inv * z_inv) % P
    return CurvePoint((X * z_inv2) % P, (Y * z_inv2 * z_inv) % P)


def _jacobian_double(jp: _Jacobian) -> _Jacobian:
    X, Y, Z = jp
    if Z == 0 or Y == 0:
        return _INFINITY
    YY = (Y * Y) % P
    S = (4 * X * YY) % P
    M = (3 * X * X) % P                     # a = 0
    X3 = (M * M - 2 * S) % P
    Y3 = (M * (S - X3) - 8 * YY * YY) % P
    Z3 = (2 * Y * Z) % P
    return (X3, Y3, Z3)


def _jacobian_add(p1: _Jacobian, p2: _Jacobian) -> _Jacobian:
    X1, Y1, Z1 = p1
    X2, Y2, Z2 = p2
    if Z1 == 0:
        return p2
    if Z2 == 0:
        return p1

    Z1Z1 = (Z1 * Z1) % P
    Z2Z2 = (Z2 * Z2) % P
    U1 = (X1 * Z2Z2) % P
    U2 = (X2 * Z1Z1) % P
    S1 = (Y1 * Z2 * Z2Z2) % P
    S2 = (Y2 * Z1 * Z1Z1) % P

    if U1 == U2:
        if S1 != S2:
            return _INFINITY
        return _jacobian_double(p1)

    H = (U2 - U1) % P
    R = (S2 - S1) % P
    HH = (H * H) % P
    HHH = (H * HH) % P
    U1HH = (U1 * HH) % P

    X3 = (R * R - HHH - 2 * U1HH) % P
    Y3 = (R * (U1HH - X3) - S1 * HHH) % P
    Z3 = (H * Z1 * Z2) % P
    return (X3, Y3, Z3)


# =============================================================================
# Scalar Multiplication
# =============================================================================

def multiply(point: CurvePoint, k: int) -> CurvePoint:
    """
    Compute k * point.

    Args:
        point: Affine point on secp256k1
        k: Scalar in [1, n-1]

    Raises:
        ValueError: If k is out of range
    """
    if not is_valid_scalar(k):
        raise ValueError("Scalar out of range [1, n-1]")

    result = _INFINITY
    addend = _to_jacobian(point)
    while k:
        if k & 1:
            result = _jacobian_add(result, addend)
        addend = _jacobian_double(addend)
        k >>= 1
    return _from_jacobian(result)


def base_multiply(k: int) -> CurvePoint:
    """Compute k * G through OpenSSL."""
    if not is_valid_scalar(k):
        raise ValueError("Scalar out of range [1, n-1]")
    numbers = ec.derive_private_key(k, CURVE).public_key().public_numbers()
    return CurvePoint(numbers.x, numbers.y)


def is_on_curve(point: CurvePoint) -> bool:
    if not (0 <= point.x < P and 0 <= point.y < P):
        return False
    return (point.y * point.y - point.x ** 3 - B) % P == 0
