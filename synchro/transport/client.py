# synchro/transport/client.py
"""
Synchro Transport: Matching Client

Drives one MatchingSession against a MessageTransport with a periodic,
cancellable poll task.

Serialization:
    Every mutation of the session (batch handling, note composition,
    reset) happens under one asyncio.Lock, and the poll loop applies a
    batch completely before polling again. With offload_crypto the batch
    runs in the default executor; a cancelled poll task still waits for
    that batch to finish, so a reset never races a half-applied batch.

Error Surfacing:
    - poll failure:      logged, cycle skipped
    - room gone:         poller stopped, exposed as client.error; an
                         unfinished handshake is ABORTED
    - send failure:      raised from join()/send_note() (an unsent note is
                         not recorded); for replies sent
                         by the poll loop, queued in failed_sends and
                         retried only by retry_failed_sends()
    - handshake failure: poller stopped, exposed as client.error

Usage:
    relay = MemoryRelay()
    alice = MatchingClient(alice_events, MemoryTransport(relay))
    bob = MatchingClient(bob_events, MemoryTransport(relay))

    sid = await alice.create()
    await bob.join(sid)
    await asyncio.gather(alice.wait_for_results(), bob.wait_for_results())
    await alice.send_note(alice.view.matches[0].uid, "See you there")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

from ..config import DEFAULT_CONFIG, SessionConfig
from ..cryptography.common import SynchroError
from ..protocols.events import CalendarEvent
from ..protocols.messages import Message
from ..protocols.session import MatchingSession, SessionState, SessionView, StateError
from .relay import MessageTransport, SessionNotFound, TransportError, TransportFailure

logger = logging.getLogger("synchro.client")


# =============================================================================
# Poller
# =============================================================================

class SessionPoller:
    """Cancellable periodic task; start/stop are idempotent."""

    def __init__(self, interval: float, tick: Callable[[], Awaitable[None]]):
        self._interval = interval
        self._tick = tick
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Stopping from inside a tick: the loop exits after this tick.
            task.cancel()
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._tick()
            except Exception:
                logger.exception("Poll tick failed")


# =============================================================================
# Matching Client
# =============================================================================

class MatchingClient:
    """Async runner binding a MatchingSession to a relay transport."""

    def __init__(
        self,
        events: Iterable[CalendarEvent],
        transport: MessageTransport,
        config: SessionConfig = DEFAULT_CONFIG,
    ):
        self._config = config
        self._transport = transport
        self._machine = MatchingSession(events, note_suite_id=config.note_suite_id)
        self._lock = asyncio.Lock()
        self._poller = SessionPoller(config.poll_interval, self.poll_once)
        self._changed = asyncio.Event()
        self.failed_sends: List[Message] = []

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def view(self) -> SessionView:
        return self._machine.view

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def session_id(self) -> Optional[str]:
        return self._machine.session_id

    @property
    def error(self) -> Optional[SynchroError]:
        return self._machine.view.error

    @property
    def polling(self) -> bool:
        return self._poller.running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create(self) -> str:
        """Open a relay room as initiator and start polling."""
        async with self._lock:
            if self._machine.state != SessionState.IDLE:
                raise StateError(f"Cannot create in state {self._machine.state.name}")
            session_id = await self._transport.create()
            self._machine.create(session_id)
        self._poller.start()
        return session_id

    async def join(self, session_id: str) -> None:
        """
        Join a relay room, announce our public key, start polling.

        Raises:
            SessionNotFound: No such room
            TransportFailure: JOIN could not be sent (session stays IDLE)
        """
        async with self._lock:
            if self._machine.state != SessionState.IDLE:
                raise StateError(f"Cannot join in state {self._machine.state.name}")
            await self._transport.join(session_id)
            message = self._machine.join(session_id)
            try:
                await self._transport.send(session_id, message)
            except TransportFailure:
                self._machine.reset()
                raise
        self._poller.start()

    async def send_note(self, uid: str, text: str) -> None:
        """
        Encrypt and send a note on a matched event.

        Raises:
            StateError: Not in RESULTS or no shared secret
            TransportFailure: Note could not be sent
        """
        async with self._lock:
            message = self._machine.compose_note(uid, text)
            await self._transport.send(self._machine.session_id, message)
            self._machine.record_note(uid, text)

    async def reset(self) -> None:
        """Stop polling and discard all session state."""
        await self._poller.stop()
        async with self._lock:
            self._machine.reset()
            self.failed_sends.clear()
        self._notify()

    async def close(self) -> None:
        await self.reset()
        await self._transport.close()

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll_once(self) -> None:
        """Poll the relay once and apply the batch."""
        session_id = self._machine.session_id
        if session_id is None:
            return
        try:
            messages = await self._transport.poll(session_id)
        except SessionNotFound as e:
            async with self._lock:
                if self._machine.session_id != session_id:
                    return
                self._machine.abort(e)
            self._notify()
            await self._poller.stop()
            return
        except TransportError as e:
            logger.warning(f"Poll failed for {session_id}, retrying next interval: {e}")
            return
        if not messages:
            return

        async with self._lock:
            if self._machine.session_id != session_id:
                return
            try:
                outgoing = await self._apply(messages)
            except SynchroError as e:
                logger.error(f"Session {session_id} failed: {e}")
                self._notify()
                await self._poller.stop()
                return
            await self._send_all(session_id, outgoing)
        self._notify()

    async def _apply(self, messages: List[Message]) -> List[Message]:
        if not self._config.offload_crypto:
            return self._machine.handle_batch(messages)

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._machine.handle_batch, messages)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # Let the batch land before the task ends.
            await asyncio.wait([future])
            raise

    async def _send_all(self, session_id: str, messages: List[Message]) -> None:
        for message in messages:
            try:
                await self._transport.send(session_id, message)
                logger.info(f"Sent {message.type.value}")
            except TransportFailure as e:
                logger.error(f"Sending {message.type.value} failed: {e}")
                self.failed_sends.append(message)

    async def retry_failed_sends(self) -> int:
        """
        Resend queued replies in order.

        Returns:
            Number of messages still queued
        """
        async with self._lock:
            session_id = self._machine.session_id
            pending, self.failed_sends = self.failed_sends, []
            if session_id is not None:
                await self._send_all(session_id, pending)
            return len(self.failed_sends)

    # =========================================================================
    # Waiting
    # =========================================================================

    def _notify(self) -> None:
        self._changed.set()

    async def wait_for_results(self, timeout: Optional[float] = None) -> SessionView:
        """
        Wait until the session reaches RESULTS or ABORTED.

        Raises:
            asyncio.TimeoutError: If timeout elapses first
        """
        async def _wait() -> SessionView:
            while not self._machine.view.is_finished:
                self._changed.clear()
                await self._changed.wait()
            return self._machine.view

        return await asyncio.wait_for(_wait(), timeout)

    def __repr__(self) -> str:
        return f"MatchingClient({self._machine!r}, polling={self.polling})"
