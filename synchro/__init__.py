# synchro/__init__.py
"""
Synchro: Private Calendar Matching

Two parties learn which calendar events they both attend, and nothing
else, then exchange encrypted notes on those events through an untrusted
store-and-forward relay.

- Blinded-point Private Set Intersection over secp256k1
- Ephemeral ECDH per session (SHA-256 of the shared x-coordinate)
- AEAD notes (AES-256-GCM, ChaCha20-Poly1305)
- Replay-tolerant handshake state machine
- Async relay polling (in-memory or HTTP)

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │  synchro                                                │
    │  ├── cryptography/     # Primitives                     │
    │  │   ├── keys.py       # KeyPair, ECDH shared secret    │
    │  │   ├── curve.py      # secp256k1 point arithmetic     │
    │  │   ├── blinding.py   # map_to_point, blind, intersect │
    │  │   └── notes.py      # SecureNoteChannel (AEAD)       │
    │  │                                                      │
    │  ├── protocols/        # Matching handshake             │
    │  │   ├── messages.py   # JOIN, STEP_1..3, NOTE          │
    │  │   ├── events.py     # CalendarEvent                  │
    │  │   └── session.py    # MatchingSession state machine  │
    │  │                                                      │
    │  ├── transport/        # Relay access                   │
    │  │   ├── relay.py      # Memory / HTTP relays           │
    │  │   └── client.py     # MatchingClient + poller        │
    │  │                                                      │
    │  └── config.py         # SessionConfig                  │
    └─────────────────────────────────────────────────────────┘
"""

__version__ = "0.1.0"

from .config import SessionConfig, DEFAULT_CONFIG

from .cryptography import (
    SynchroError,
    InvalidPeerKey,
    InvalidPoint,
    AuthenticationFailed,
    MalformedEnvelope,
    KeyPair,
    generate_keypair,
    derive_public_point,
    derive_shared_secret,
    map_to_point,
    blind,
    blind_identifier,
    SecureNoteChannel,
)

from .protocols import (
    CalendarEvent,
    Message,
    MessageType,
    Role,
    MalformedMessage,
    MatchingSession,
    SessionView,
    SessionState,
    StateError,
    HandshakeError,
)

from .transport import (
    MessageTransport,
    MemoryRelay,
    MemoryTransport,
    HTTPRelayTransport,
    SessionNotFound,
    TransportFailure,
    MatchingClient,
)

__all__ = [
    "__version__",
    "SessionConfig",
    "DEFAULT_CONFIG",
    "SynchroError",
    "InvalidPeerKey",
    "InvalidPoint",
    "AuthenticationFailed",
    "MalformedEnvelope",
    "KeyPair",
    "generate_keypair",
    "derive_public_point",
    "derive_shared_secret",
    "map_to_point",
    "blind",
    "blind_identifier",
    "SecureNoteChannel",
    "CalendarEvent",
    "Message",
    "MessageType",
    "Role",
    "MalformedMessage",
    "MatchingSession",
    "SessionView",
    "SessionState",
    "StateError",
    "HandshakeError",
    "MessageTransport",
    "MemoryRelay",
    "MemoryTransport",
    "HTTPRelayTransport",
    "SessionNotFound",
    "TransportFailure",
    "MatchingClient",
]
