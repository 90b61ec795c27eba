# synchro/protocols/session.py
"""
Synchro Matching Session

Protocol state machine for two-party private calendar matching over a
store-and-forward relay.

Session Lifecycle:
    1. create(session_id) - Initiator opens a room, waits for a peer
    2. join(session_id)   - Joiner enters the room, returns JOIN
    3. handle_batch(msgs) - Either side feeds polled messages, gets replies
    4. compose_note(...)  - After RESULTS, encrypt a note on a matched event
       record_note(...)   - Commit it locally once delivered
    5. reset()            - Discard everything, fresh keypair

State Machine:
    IDLE -> CREATED -> EXCHANGING -> COMPUTING -> RESULTS     (initiator)
    IDLE -> EXCHANGING -> COMPUTING -> RESULTS                (joiner)
    any handshake state -> ABORTED                            (fatal error)

Handshake:
    Initiator (a)                               Joiner (b)
                      <-- JOIN {pk_b}
    STEP_1 {a*H(x_i), pk_a} -->
                      <-- STEP_2 {b*a*H(x_i), b*H(y_j)}
    STEP_3 {a*b*H(y_j)} -->
    matches: i where b*a*H(x_i) in {a*b*H(y_j)}
                                                matches: j where a*b*H(y_j)
                                                         in {b*a*H(x_i)}

Replay Handling:
    The relay may redeliver or reorder. Only the last handshake message of
    a batch is considered, and only if it is the one the session expects
    next; anything else is ignored. Every NOTE of a batch is processed
    once the session has RESULTS.

Usage:
    alice = MatchingSession(alice_events)
    bob = MatchingSession(bob_events)

    alice.create("room-1")
    out = [bob.join("room-1")]
    out = alice.handle_batch(out)       # -> [STEP_1]
    out = bob.handle_batch(out)         # -> [STEP_2]
    out = alice.handle_batch(out)       # -> [STEP_3], alice has RESULTS
    bob.handle_batch(out)               # bob has RESULTS
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..cryptography.blinding import (
    blind_set,
    decode_points,
    encode_points,
    matched_positions,
    reblind_set,
)
from ..cryptography.common import (
    AuthenticationFailed,
    InvalidPeerKey,
    InvalidPoint,
    MalformedEnvelope,
    SynchroError,
)
from ..cryptography.curve import CurvePoint
from ..cryptography.keys import KeyPair, derive_shared_secret, generate_keypair
from ..cryptography.notes import DEFAULT_NOTE_SUITE_ID, SecureNoteChannel
from .events import CalendarEvent
from .messages import (
    FIELD_BLINDED,
    FIELD_DOUBLE_BLINDED,
    FIELD_ENCRYPTED,
    FIELD_PUBLIC_KEY,
    FIELD_UID,
    Message,
    MessageType,
    Role,
    join_message,
    note_message,
    split_batch,
    step1_message,
    step2_message,
    step3_message,
)

logger = logging.getLogger("synchro.session")


# =============================================================================
# Exceptions
# =============================================================================

class SessionError(SynchroError):
    """Base exception for session errors."""
    pass


class StateError(SessionError):
    """Invalid state for operation."""
    pass


class HandshakeError(SessionError):
    """Handshake message violates the positional contract."""
    pass


# =============================================================================
# Session State
# =============================================================================

class SessionState(Enum):
    """Session state machine."""
    IDLE = auto()         # No room yet
    CREATED = auto()      # Initiator: room open, waiting for JOIN
    EXCHANGING = auto()   # Handshake in progress
    COMPUTING = auto()    # Intersection being computed
    RESULTS = auto()      # Matches known, notes may flow
    ABORTED = auto()      # Handshake failed, no result


@dataclass
class Session:
    """
    Mutable session record. Owned by MatchingSession; never handed out.
    """
    keypair: KeyPair
    events: Tuple[CalendarEvent, ...]
    session_id: Optional[str] = None
    role: Optional[Role] = None
    state: SessionState = SessionState.IDLE
    shared_secret: Optional[bytes] = None
    local_blinded: List[CurvePoint] = field(default_factory=list)
    double_blinded_a: Optional[List[CurvePoint]] = None   # initiator's values, both scalars
    double_blinded_b: Optional[List[CurvePoint]] = None   # joiner's values, both scalars
    matches: List[CalendarEvent] = field(default_factory=list)
    notes: Dict[str, str] = field(default_factory=dict)
    error: Optional[SynchroError] = None


@dataclass(frozen=True)
class SessionView:
    """Read-only snapshot of a session for presentation code."""
    session_id: Optional[str]
    role: Optional[Role]
    state: SessionState
    public_key: str
    has_shared_secret: bool
    matches: Tuple[CalendarEvent, ...]
    notes: Mapping[str, str]
    error: Optional[SynchroError]

    @property
    def is_finished(self) -> bool:
        return self.state in (SessionState.RESULTS, SessionState.ABORTED)


# =============================================================================
# Matching Session
# =============================================================================

class MatchingSession:
    """
    PSI handshake and note routing for one party.

    Not thread-safe: callers serialize handle_batch/compose_note/reset.
    """

    def __init__(
        self,
        events: Iterable[CalendarEvent],
        note_suite_id: int = DEFAULT_NOTE_SUITE_ID,
    ):
        """
        Args:
            events: Local calendar events; order defines blinded positions
            note_suite_id: AEAD suite for notes (must match the peer)
        """
        self._events = tuple(events)
        self._note_suite_id = note_suite_id
        self._session = self._fresh_session()

    def _fresh_session(self) -> Session:
        return Session(keypair=generate_keypair(), events=self._events)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def role(self) -> Optional[Role]:
        return self._session.role

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id

    @property
    def public_key(self) -> str:
        """Own compressed public point (hex)."""
        return self._session.keypair.public_hex

    @property
    def events(self) -> Tuple[CalendarEvent, ...]:
        return self._events

    @property
    def view(self) -> SessionView:
        s = self._session
        return SessionView(
            session_id=s.session_id,
            role=s.role,
            state=s.state,
            public_key=s.keypair.public_hex,
            has_shared_secret=s.shared_secret is not None,
            matches=tuple(s.matches),
            notes=MappingProxyType(dict(s.notes)),
            error=s.error,
        )

    # =========================================================================
    # Local Actions
    # =========================================================================

    def create(self, session_id: str) -> None:
        """
        Open a room as INITIATOR.

        Raises:
            StateError: If not IDLE
        """
        self._require_idle("create")
        if not session_id:
            raise ValueError("session_id must be non-empty")
        s = self._session
        s.session_id = session_id
        s.role = Role.INITIATOR
        s.state = SessionState.CREATED
        logger.info(f"Session created: {session_id}")

    def join(self, session_id: str) -> Message:
        """
        Enter a room as JOINER.

        Returns:
            JOIN message carrying own public key

        Raises:
            StateError: If not IDLE
        """
        self._require_idle("join")
        if not session_id:
            raise ValueError("session_id must be non-empty")
        s = self._session
        s.session_id = session_id
        s.role = Role.JOINER
        s.state = SessionState.EXCHANGING
        logger.info(f"Joined session: {session_id}")
        return join_message(Role.JOINER, s.keypair.public_hex)

    def compose_note(self, uid: str, text: str) -> Message:
        """
        Encrypt a note for the peer.

        The note is not recorded locally; call record_note() once the
        message has been delivered.

        Raises:
            StateError: If not in RESULTS or no shared secret was derived
        """
        s = self._session
        if s.state != SessionState.RESULTS:
            raise StateError(f"Cannot send note in state {s.state.name}")
        if s.shared_secret is None:
            raise StateError("No shared secret; notes are unavailable")

        encrypted = self._note_channel().encrypt(text)
        return note_message(s.role, uid, encrypted)

    def record_note(self, uid: str, text: str) -> None:
        """
        Record a delivered note in the local note map.

        Raises:
            StateError: If not in RESULTS
        """
        if self._session.state != SessionState.RESULTS:
            raise StateError(f"Cannot record note in state {self._session.state.name}")
        self._session.notes[uid] = text

    def abort(self, error: SynchroError) -> None:
        """
        Fail the session with an error raised outside the handshake.

        An unfinished handshake moves to ABORTED. After RESULTS the
        matches are kept and only the error is recorded.
        """
        s = self._session
        if s.state in (SessionState.IDLE, SessionState.ABORTED):
            return
        if s.state == SessionState.RESULTS:
            logger.error(f"Session {s.session_id} failed after results: {error}")
            s.error = error
            return
        self._abort(error)

    def reset(self) -> None:
        """Discard all session state and start over with a fresh keypair."""
        old_id = self._session.session_id
        self._session = self._fresh_session()
        if old_id is not None:
            logger.info(f"Session reset: {old_id}")

    def _require_idle(self, action: str) -> None:
        if self._session.state != SessionState.IDLE:
            raise StateError(f"Cannot {action} in state {self._session.state.name}")

    # =========================================================================
    # Message Handling
    # =========================================================================

    def handle_batch(self, messages: Sequence[Message]) -> List[Message]:
        """
        Apply one poll batch.

        Args:
            messages: Relay messages in arrival order (own echoes allowed)

        Returns:
            Messages to send to the peer

        Raises:
            InvalidPoint: Undecodable blinded value; session is ABORTED
            HandshakeError: Positional length mismatch; session is ABORTED
        """
        s = self._session
        if s.role is None or s.state in (SessionState.IDLE, SessionState.ABORTED):
            return []

        relevant = [m for m in messages if m.sender != s.role]
        if not relevant:
            return []

        handshake, notes = split_batch(relevant)
        outgoing: List[Message] = []

        if handshake is not None:
            outgoing.extend(self._handle_handshake(handshake))

        if notes:
            if self._session.state == SessionState.RESULTS:
                for msg in notes:
                    self._on_note(msg)
            else:
                logger.debug(
                    f"Dropping {len(notes)} NOTE(s) received in state "
                    f"{self._session.state.name}"
                )

        return outgoing

    def _expected(self) -> Optional[MessageType]:
        """Handshake message type the session is waiting for, if any."""
        s = self._session
        if s.role is Role.INITIATOR:
            if s.state == SessionState.CREATED:
                return MessageType.JOIN
            if s.state == SessionState.EXCHANGING:
                return MessageType.STEP_2
        elif s.role is Role.JOINER and s.state == SessionState.EXCHANGING:
            if s.double_blinded_a is None:
                return MessageType.STEP_1
            return MessageType.STEP_3
        return None

    def _handle_handshake(self, msg: Message) -> List[Message]:
        expected = self._expected()
        if msg.type != expected:
            logger.debug(
                f"Ignoring {msg.type.value} in state {self._session.state.name} "
                f"(expecting {expected.value if expected else 'nothing'})"
            )
            return []

        handler = {
            MessageType.JOIN: self._on_join,
            MessageType.STEP_1: self._on_step1,
            MessageType.STEP_2: self._on_step2,
            MessageType.STEP_3: self._on_step3,
        }[msg.type]

        try:
            return handler(msg)
        except (InvalidPoint, HandshakeError) as e:
            self._abort(e)
            raise

    # =========================================================================
    # Handshake: Initiator
    # =========================================================================

    def _on_join(self, msg: Message) -> List[Message]:
        s = self._session
        logger.info("Peer joined, starting handshake")
        self._derive_secret(msg.payload, "JOIN")

        s.local_blinded = blind_set(self._uids(), s.keypair.scalar)
        s.state = SessionState.EXCHANGING
        logger.info(f"Sending STEP_1 with {len(s.local_blinded)} blinded values")
        return [step1_message(
            Role.INITIATOR,
            encode_points(s.local_blinded),
            s.keypair.public_hex,
        )]

    def _on_step2(self, msg: Message) -> List[Message]:
        s = self._session
        double_a = decode_points(msg.payload.get(FIELD_DOUBLE_BLINDED))
        blinded_b = decode_points(msg.payload.get(FIELD_BLINDED))
        if len(double_a) != len(self._events):
            raise HandshakeError(
                f"STEP_2 carries {len(double_a)} double-blinded values "
                f"for {len(self._events)} local events"
            )

        s.state = SessionState.COMPUTING
        s.double_blinded_a = double_a
        s.double_blinded_b = reblind_set(blinded_b, s.keypair.scalar)
        self._record_matches(matched_positions(double_a, s.double_blinded_b))

        return [step3_message(Role.INITIATOR, encode_points(s.double_blinded_b))]

    # =========================================================================
    # Handshake: Joiner
    # =========================================================================

    def _on_step1(self, msg: Message) -> List[Message]:
        s = self._session
        blinded_a = decode_points(msg.payload.get(FIELD_BLINDED))
        self._derive_secret(msg.payload, "STEP_1")

        s.double_blinded_a = reblind_set(blinded_a, s.keypair.scalar)
        s.local_blinded = blind_set(self._uids(), s.keypair.scalar)
        logger.info(
            f"Sending STEP_2 with {len(s.double_blinded_a)} double-blinded "
            f"and {len(s.local_blinded)} blinded values"
        )
        return [step2_message(
            Role.JOINER,
            encode_points(s.double_blinded_a),
            encode_points(s.local_blinded),
        )]

    def _on_step3(self, msg: Message) -> List[Message]:
        s = self._session
        double_b = decode_points(msg.payload.get(FIELD_DOUBLE_BLINDED))
        if len(double_b) != len(self._events):
            raise HandshakeError(
                f"STEP_3 carries {len(double_b)} double-blinded values "
                f"for {len(self._events)} local events"
            )

        s.state = SessionState.COMPUTING
        s.double_blinded_b = double_b
        self._record_matches(matched_positions(double_b, s.double_blinded_a))
        return []

    # =========================================================================
    # Helpers
    # =========================================================================

    def _uids(self) -> List[str]:
        return [event.uid for event in self._events]

    def _record_matches(self, positions: List[int]) -> None:
        s = self._session
        s.matches = [self._events[i] for i in positions]
        s.state = SessionState.RESULTS
        logger.info(f"Found {len(s.matches)} matches")

    def _derive_secret(self, payload: Mapping, step: str) -> None:
        """Derive the note key; a bad peer key only disables notes."""
        s = self._session
        peer_key = payload.get(FIELD_PUBLIC_KEY)
        if not peer_key:
            logger.warning(f"{step} carries no public key; notes will be unavailable")
            return
        try:
            s.shared_secret = derive_shared_secret(peer_key, s.keypair.private_scalar)
        except InvalidPeerKey as e:
            logger.warning(f"{step} public key rejected ({e}); notes will be unavailable")
            return
        logger.info("Encryption channel established")

    def _note_channel(self) -> SecureNoteChannel:
        return SecureNoteChannel(self._session.shared_secret, self._note_suite_id)

    def _on_note(self, msg: Message) -> None:
        s = self._session
        uid = msg.payload.get(FIELD_UID)
        encrypted = msg.payload.get(FIELD_ENCRYPTED)
        if not isinstance(uid, str) or not uid:
            logger.warning("Dropping NOTE without uid")
            return
        if s.shared_secret is None:
            logger.warning(f"Dropping NOTE for {uid}: no shared secret")
            return
        try:
            s.notes[uid] = self._note_channel().decrypt(encrypted)
        except (AuthenticationFailed, MalformedEnvelope) as e:
            logger.warning(f"Failed to decrypt note for {uid}: {e}")

    def _abort(self, error: SynchroError) -> None:
        s = self._session
        logger.error(f"Session {s.session_id} aborted: {error}")
        s.state = SessionState.ABORTED
        s.error = error
        s.local_blinded = []
        s.double_blinded_a = None
        s.double_blinded_b = None
        s.matches = []

    def __repr__(self) -> str:
        role = self._session.role.value if self._session.role else "-"
        return (
            f"MatchingSession(id={self._session.session_id}, role={role}, "
            f"state={self._session.state.name}, events={len(self._events)})"
        )
