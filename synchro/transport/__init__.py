# synchro/transport/__init__.py
"""
Synchro Transport Layer

Relay access and the polling runner for matching sessions.

Modules:
    relay:  MessageTransport contract, MemoryRelay, HTTPRelayTransport
    client: MatchingClient (session + poller)

Usage:
    from synchro.transport import MatchingClient, HTTPRelayTransport

    transport = HTTPRelayTransport("https://synchro.example/api/signal")
    client = MatchingClient(events, transport)
    session_id = await client.create()
"""

from .relay import (
    MessageTransport,
    MemoryRelay,
    MemoryTransport,
    HTTPRelayTransport,
    TransportError,
    SessionNotFound,
    TransportFailure,
)

from .client import (
    MatchingClient,
    SessionPoller,
)

__all__ = [
    "MessageTransport",
    "MemoryRelay",
    "MemoryTransport",
    "HTTPRelayTransport",
    "TransportError",
    "SessionNotFound",
    "TransportFailure",
    "MatchingClient",
    "SessionPoller",
]
