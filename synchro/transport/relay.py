# synchro/transport/relay.py
"""
Synchro Transport: Message Relay

Store-and-forward relay contract used by the matching runner, plus two
implementations:

    MemoryRelay / MemoryTransport - in-process rooms (tests, demos)
    HTTPRelayTransport            - JSON signalling endpoint over aiohttp

Relay Contract:
    create()                -> session_id
    join(session_id)        -> None, or SessionNotFound
    send(session_id, msg)   -> None, or TransportFailure
    poll(session_id)        -> [Message] since the last poll, arrival order,
                               each message at most once per transport

HTTP Endpoint:
    POST {"action": "create"}                                -> {"sessionId": str}
    POST {"action": "join", "sessionId": str}                -> 2xx, or 404
    POST {"action": "send", "sessionId": str, "payload": msg} -> 2xx
    POST {"action": "poll", "sessionId": str}                -> {"messages": [msg, ...]}

Usage:
    relay = MemoryRelay()
    alice_transport = MemoryTransport(relay)
    bob_transport = MemoryTransport(relay)

    sid = await alice_transport.create()
    await bob_transport.join(sid)
    await bob_transport.send(sid, join_msg)
    msgs = await alice_transport.poll(sid)
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import SessionConfig
from ..cryptography.common import SynchroError
from ..protocols.messages import MalformedMessage, Message

logger = logging.getLogger("synchro.transport")


# =============================================================================
# Exceptions
# =============================================================================

class TransportError(SynchroError):
    """Base transport error."""
    pass


class SessionNotFound(TransportError):
    """No relay room exists for the session id."""
    pass


class TransportFailure(TransportError):
    """Network or relay failure."""
    pass


# =============================================================================
# Transport (Abstract)
# =============================================================================

class MessageTransport(ABC):
    """Asynchronous relay transport."""

    @abstractmethod
    async def create(self) -> str:
        """Allocate a relay room and return its id."""
        pass

    @abstractmethod
    async def join(self, session_id: str) -> None:
        """Check a room exists; raise SessionNotFound otherwise."""
        pass

    @abstractmethod
    async def send(self, session_id: str, message: Message) -> None:
        """Deliver a message to the room."""
        pass

    @abstractmethod
    async def poll(self, session_id: str) -> List[Message]:
        """Return messages that arrived since the previous poll."""
        pass

    async def close(self) -> None:
        """Release resources held by the transport."""
        pass


def parse_messages(items: Any) -> List[Message]:
    """Parse relay message dicts, skipping malformed entries."""
    if not isinstance(items, list):
        raise TransportFailure(f"Expected message list, got {type(items).__name__}")
    messages = []
    for item in items:
        try:
            messages.append(Message.from_dict(item))
        except MalformedMessage as e:
            logger.warning(f"Skipping malformed relay message: {e}")
    return messages


# =============================================================================
# In-Memory Relay
# =============================================================================

class MemoryRelay:
    """In-process relay holding one append-only message log per room."""

    def __init__(self):
        self._rooms: Dict[str, List[Dict[str, Any]]] = {}

    def create_room(self) -> str:
        session_id = secrets.token_hex(4)
        while session_id in self._rooms:
            session_id = secrets.token_hex(4)
        self._rooms[session_id] = []
        return session_id

    def has_room(self, session_id: str) -> bool:
        return session_id in self._rooms

    def drop_room(self, session_id: str) -> None:
        """Discard a room and its log, as an expiring relay would."""
        self._rooms.pop(session_id, None)

    def append(self, session_id: str, message: Message) -> None:
        if session_id not in self._rooms:
            raise SessionNotFound(f"No room {session_id!r}")
        self._rooms[session_id].append(message.to_dict())

    def read(self, session_id: str, offset: int) -> List[Dict[str, Any]]:
        if session_id not in self._rooms:
            raise SessionNotFound(f"No room {session_id!r}")
        return list(self._rooms[session_id][offset:])

    def log(self, session_id: str) -> List[Dict[str, Any]]:
        """Full message log of a room (what the relay operator sees)."""
        return list(self._rooms.get(session_id, []))


class MemoryTransport(MessageTransport):
    """Per-party view of a MemoryRelay with its own read cursors."""

    def __init__(self, relay: MemoryRelay):
        self._relay = relay
        self._cursors: Dict[str, int] = {}
        self.sent: List[Message] = []
        self.fail_sends = False
        self.fail_polls = False

    async def create(self) -> str:
        session_id = self._relay.create_room()
        self._cursors[session_id] = 0
        return session_id

    async def join(self, session_id: str) -> None:
        if not self._relay.has_room(session_id):
            raise SessionNotFound(f"No room {session_id!r}")
        self._cursors.setdefault(session_id, 0)

    async def send(self, session_id: str, message: Message) -> None:
        if self.fail_sends:
            raise TransportFailure("Simulated send failure")
        self._relay.append(session_id, message)
        self.sent.append(message)

    async def poll(self, session_id: str) -> List[Message]:
        if self.fail_polls:
            raise TransportFailure("Simulated poll failure")
        offset = self._cursors.get(session_id, 0)
        items = self._relay.read(session_id, offset)
        self._cursors[session_id] = offset + len(items)
        return parse_messages(items)


# =============================================================================
# HTTP Relay
# =============================================================================

class HTTPRelayTransport(MessageTransport):
    """Relay client for a JSON signalling endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            endpoint: Signalling URL (e.g. "https://host/api/signal")
            timeout: Per-request timeout in seconds
            session: Existing aiohttp session (created lazily if None)
        """
        self._endpoint = endpoint
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: SessionConfig) -> HTTPRelayTransport:
        """
        Build a transport for config.relay_endpoint.

        Raises:
            ValueError: If no relay endpoint is configured
        """
        if not config.relay_endpoint:
            raise ValueError("SessionConfig.relay_endpoint is not set")
        return cls(config.relay_endpoint, timeout=config.request_timeout)

    async def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
            self._owns_session = True
        return self._session

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST an action and return the decoded JSON body.

        Raises:
            SessionNotFound: HTTP 404
            TransportFailure: Network error, other non-2xx, or bad JSON
        """
        action = body.get("action")
        session = await self._http()
        try:
            async with session.post(self._endpoint, json=body) as resp:
                if resp.status == 404:
                    raise SessionNotFound(f"No room {body.get('sessionId')!r}")
                if resp.status >= 400:
                    text = await resp.text()
                    raise TransportFailure(f"{action} failed: HTTP {resp.status} {text[:200]}")
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    raise TransportFailure(f"{action} returned invalid JSON: {e}") from e
        except aiohttp.ClientError as e:
            raise TransportFailure(f"{action} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportFailure(f"{action} timed out") from e
        return data if isinstance(data, dict) else {}

    async def create(self) -> str:
        data = await self._post({"action": "create"})
        session_id = data.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise TransportFailure("create returned no sessionId")
        return session_id

    async def join(self, session_id: str) -> None:
        await self._post({"action": "join", "sessionId": session_id})

    async def send(self, session_id: str, message: Message) -> None:
        await self._post({
            "action": "send",
            "sessionId": session_id,
            "payload": message.to_dict(),
        })

    async def poll(self, session_id: str) -> List[Message]:
        data = await self._post({"action": "poll", "sessionId": session_id})
        return parse_messages(data.get("messages", []))

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def __repr__(self) -> str:
        return f"HTTPRelayTransport(endpoint={self._endpoint!r})"
