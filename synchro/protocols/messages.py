# synchro/protocols/messages.py
"""
Synchro Protocol Messages

Relay message format for the matching handshake and post-match notes.

Wire Shape (JSON):
    {"type": "JOIN" | "STEP_1" | "STEP_2" | "STEP_3" | "NOTE",
     "sender": "INITIATOR" | "JOINER",
     "payload": {...}}

Payloads:
    JOIN    {"publicKey": hex}
    STEP_1  {"blinded": [hex, ...], "publicKey": hex}
    STEP_2  {"doubleBlinded": [hex, ...], "blinded": [hex, ...]}
    STEP_3  {"doubleBlinded": [hex, ...]}
    NOTE    {"uid": str, "encrypted": "nonce_hex:ciphertext_hex"}

    Point arrays are positionally aligned to the sender's (STEP_1, STEP_2
    "blinded") or receiver's (STEP_2 "doubleBlinded", STEP_3) event order.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping

from ..cryptography.common import SynchroError


# =============================================================================
# Exceptions
# =============================================================================

class MalformedMessage(SynchroError):
    """Relay message does not have the expected envelope shape."""
    pass


# =============================================================================
# Enums
# =============================================================================

class MessageType(Enum):
    """Relay message types."""
    JOIN = "JOIN"
    STEP_1 = "STEP_1"
    STEP_2 = "STEP_2"
    STEP_3 = "STEP_3"
    NOTE = "NOTE"

    @property
    def is_handshake(self) -> bool:
        return self is not MessageType.NOTE


class Role(Enum):
    """Session roles."""
    INITIATOR = "INITIATOR"
    JOINER = "JOINER"

    @property
    def peer(self) -> Role:
        return Role.JOINER if self is Role.INITIATOR else Role.INITIATOR


# Payload field names
FIELD_PUBLIC_KEY = "publicKey"
FIELD_BLINDED = "blinded"
FIELD_DOUBLE_BLINDED = "doubleBlinded"
FIELD_UID = "uid"
FIELD_ENCRYPTED = "encrypted"


# =============================================================================
# Message
# =============================================================================

@dataclass(frozen=True)
class Message:
    """Immutable relay message."""
    type: MessageType
    sender: Role
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "sender": self.sender.value,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Message:
        """
        Parse a relay message.

        Raises:
            MalformedMessage: Unknown type/sender or non-object payload
        """
        if not isinstance(data, Mapping):
            raise MalformedMessage(f"Message must be an object, got {type(data).__name__}")
        try:
            msg_type = MessageType(data.get("type"))
        except ValueError:
            raise MalformedMessage(f"Unknown message type: {data.get('type')!r}")
        try:
            sender = Role(data.get("sender"))
        except ValueError:
            raise MalformedMessage(f"Unknown sender: {data.get('sender')!r}")

        payload = data.get("payload", {})
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise MalformedMessage(f"Payload must be an object, got {type(payload).__name__}")
        return cls(type=msg_type, sender=sender, payload=dict(payload))

    @classmethod
    def from_json(cls, json_str: str) -> Message:
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise MalformedMessage(f"Invalid JSON: {e}") from e
        return cls.from_dict(data)

    def __repr__(self) -> str:
        return f"Message({self.type.value} from {self.sender.value})"


# =============================================================================
# Builders
# =============================================================================

def join_message(sender: Role, public_key: str) -> Message:
    return Message(MessageType.JOIN, sender, {FIELD_PUBLIC_KEY: public_key})


def step1_message(sender: Role, blinded: List[str], public_key: str) -> Message:
    return Message(MessageType.STEP_1, sender, {
        FIELD_BLINDED: blinded,
        FIELD_PUBLIC_KEY: public_key,
    })


def step2_message(sender: Role, double_blinded: List[str], blinded: List[str]) -> Message:
    return Message(MessageType.STEP_2, sender, {
        FIELD_DOUBLE_BLINDED: double_blinded,
        FIELD_BLINDED: blinded,
    })


def step3_message(sender: Role, double_blinded: List[str]) -> Message:
    return Message(MessageType.STEP_3, sender, {FIELD_DOUBLE_BLINDED: double_blinded})


def note_message(sender: Role, uid: str, encrypted: str) -> Message:
    return Message(MessageType.NOTE, sender, {
        FIELD_UID: uid,
        FIELD_ENCRYPTED: encrypted,
    })


# =============================================================================
# Batch Helpers
# =============================================================================

def split_batch(messages: List[Message]):
    """
    Split a poll batch into (last handshake message or None, notes).

    Only the most recent handshake message can drive a transition; every
    note is kept, in arrival order.
    """
    handshake = None
    notes = []
    for msg in messages:
        if msg.type.is_handshake:
            handshake = msg
        else:
            notes.append(msg)
    return handshake, notes
