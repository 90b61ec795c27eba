# synchro/protocols/__init__.py
"""
Synchro Protocols

Matching handshake and note routing on top of synchro.cryptography.

Modules:
    messages: Relay message format (JOIN, STEP_1..3, NOTE)
    events:   CalendarEvent value
    session:  MatchingSession state machine
"""

from .events import CalendarEvent

from .messages import (
    Message,
    MessageType,
    Role,
    MalformedMessage,
)

from .session import (
    MatchingSession,
    SessionView,
    SessionState,
    SessionError,
    StateError,
    HandshakeError,
)

__all__ = [
    "CalendarEvent",
    "Message",
    "MessageType",
    "Role",
    "MalformedMessage",
    "MatchingSession",
    "SessionView",
    "SessionState",
    "SessionError",
    "StateError",
    "HandshakeError",
]
