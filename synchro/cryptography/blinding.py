# synchro/cryptography/blinding.py
"""
Synchro Blinding Engine

Commutative blinding of event identifiers for two-party Private Set
Intersection (PSI).

Protocol Math:
    H(x)          = G * (SHA-256(x) mod n)
    first blind   : a * H(x)
    second blind  : b * (a * H(x)) == a * (b * H(x))

    Two parties holding the same identifier x end up with the same
    double-blinded point, which is the only thing compared.

Positional Invariant:
    blind_set() and reblind_set() preserve order. The value at position i
    always belongs to element i of the caller's own list; matches are
    recovered by index, never from the point itself.

Security Note:
    H(x) has a known discrete log (the hash), so anyone who can guess x
    can test it against a disclosed blinded value without knowing a
    blinding scalar. Only high-entropy identifiers (random event UIDs)
    keep this construction private. See DESIGN.md.

Usage:
    from synchro.cryptography.blinding import blind_identifier, blind, encode_point

    a_x = blind_identifier("evt-123@lu.ma", alice_scalar)
    ab_x = blind(a_x, bob_scalar)
    wire = encode_point(ab_x)
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Set

from .common import InvalidPoint, _sha256, _int_from_bytes
from .curve import N, CurvePoint, base_multiply, multiply


# =============================================================================
# Constants
# =============================================================================

COUNTER_SEPARATOR = ":"


# =============================================================================
# Mapping
# =============================================================================

def hash_to_scalar(identifier: str) -> int:
    """
    Hash an identifier to a non-zero scalar.

    A reduced hash of zero is retried as "identifier:1", "identifier:2", ...
    """
    count = 0
    while True:
        msg = identifier if count == 0 else f"{identifier}{COUNTER_SEPARATOR}{count}"
        k = _int_from_bytes(_sha256(msg.encode("utf-8"))) % N
        if k != 0:
            return k
        count += 1


def map_to_point(identifier: str) -> CurvePoint:
    """Deterministically map an identifier to a curve point."""
    return base_multiply(hash_to_scalar(identifier))


# =============================================================================
# Blinding
# =============================================================================

def blind(point: CurvePoint, scalar: int) -> CurvePoint:
    """Blind a point (first or second blinding)."""
    return multiply(point, scalar)


def blind_identifier(identifier: str, scalar: int) -> CurvePoint:
    """First-blind an identifier: scalar * H(identifier)."""
    return blind(map_to_point(identifier), scalar)


def blind_set(identifiers: Iterable[str], scalar: int) -> List[CurvePoint]:
    """First-blind identifiers, preserving order."""
    return [blind_identifier(uid, scalar) for uid in identifiers]


def reblind_set(points: Iterable[CurvePoint], scalar: int) -> List[CurvePoint]:
    """Second-blind peer values, preserving order."""
    return [blind(point, scalar) for point in points]


# =============================================================================
# Encoding
# =============================================================================

def encode_point(point: CurvePoint) -> str:
    """Compressed hex encoding for transport."""
    return point.to_hex()


def decode_point(value: str) -> CurvePoint:
    """
    Decode a compressed hex point.

    Raises:
        InvalidPoint: If the encoding is not a valid curve point
    """
    return CurvePoint.from_hex(value)


def encode_points(points: Iterable[CurvePoint]) -> List[str]:
    return [encode_point(p) for p in points]


def decode_points(values: Sequence[str]) -> List[CurvePoint]:
    """
    Decode a list of hex points, preserving order.

    Raises:
        InvalidPoint: If values is not a list, or any element fails to decode
    """
    if not isinstance(values, (list, tuple)):
        raise InvalidPoint(f"Expected list of points, got {type(values).__name__}")
    points = []
    for i, value in enumerate(values):
        try:
            points.append(decode_point(value))
        except InvalidPoint as e:
            raise InvalidPoint(f"Blinded value #{i}: {e}") from e
    return points


# =============================================================================
# Intersection
# =============================================================================

def matched_positions(
    candidates: Sequence[CurvePoint],
    reference: Iterable[CurvePoint],
) -> List[int]:
    """
    Indices of candidates that are exactly equal to a reference point.

    Args:
        candidates: Double-blinded values aligned to the caller's own events
        reference: Double-blinded values derived from the peer's events

    Returns:
        Sorted positions into candidates
    """
    ref: Set[CurvePoint] = set(reference)
    return [i for i, point in enumerate(candidates) if point in ref]
