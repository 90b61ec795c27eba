# tests/test_client.py
"""
Synchro Matching Client Test Suite

Tests for: MatchingClient, SessionPoller, MemoryRelay, HTTPRelayTransport
Categories:
  C1. End-to-end matching over a relay
  C2. Transport failures (poll, send, join)
  C3. Lifecycle (poller, reset, close)
  C4. HTTP relay
  C5. Configuration
"""

import asyncio
import logging

import pytest
from aiohttp import web
from aiohttp import test_utils

from synchro.config import DEFAULT_CONFIG, SessionConfig
from synchro.cryptography.common import InvalidPoint
from synchro.protocols.events import CalendarEvent
from synchro.protocols.messages import MessageType, Role, step1_message
from synchro.protocols.session import SessionState, StateError
from synchro.transport.client import MatchingClient, SessionPoller
from synchro.transport.relay import (
    HTTPRelayTransport,
    MemoryRelay,
    MemoryTransport,
    SessionNotFound,
    TransportFailure,
    parse_messages,
)


ALICE = [
    CalendarEvent("evt-a", "Opening", "2026-02-27T18:00:00Z"),
    CalendarEvent("evt-b", "Mixer", "2026-02-28T20:00:00Z", "Rooftop"),
]
BOB = [
    CalendarEvent("evt-b", "Mixer", "2026-02-28T20:00:00Z", "Rooftop"),
    CalendarEvent("evt-c", "Panel", "2026-03-01T14:00:00Z"),
]

# Long interval: tests drive poll_once() by hand
MANUAL = SessionConfig(poll_interval=60.0)
FAST = SessionConfig(poll_interval=0.01)


def _clients(config=MANUAL):
    relay = MemoryRelay()
    alice_t = MemoryTransport(relay)
    bob_t = MemoryTransport(relay)
    alice = MatchingClient(ALICE, alice_t, config)
    bob = MatchingClient(BOB, bob_t, config)
    return relay, alice, bob, alice_t, bob_t


async def _manual_handshake(alice, bob):
    sid = await alice.create()
    await bob.join(sid)
    await alice.poll_once()     # JOIN -> STEP_1
    await bob.poll_once()       # STEP_1 -> STEP_2
    await alice.poll_once()     # STEP_2 -> STEP_3
    await bob.poll_once()       # STEP_3
    return sid


# =============================================================================
# C1. End-to-end
# =============================================================================

@pytest.mark.parametrize("offload", [True, False])
def test_c1_1_manual_polling(offload):
    async def run():
        config = SessionConfig(poll_interval=60.0, offload_crypto=offload)
        relay, alice, bob, _, _ = _clients(config)
        sid = await _manual_handshake(alice, bob)

        assert alice.state == SessionState.RESULTS
        assert bob.state == SessionState.RESULTS
        assert [e.uid for e in alice.view.matches] == ["evt-b"]
        assert [e.uid for e in bob.view.matches] == ["evt-b"]
        types = [item["type"] for item in relay.log(sid)]
        assert types == ["JOIN", "STEP_1", "STEP_2", "STEP_3"]
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c1_2_background_polling():
    async def run():
        relay, alice, bob, _, _ = _clients(FAST)
        sid = await alice.create()
        await bob.join(sid)
        assert alice.polling and bob.polling

        a_view, b_view = await asyncio.gather(
            alice.wait_for_results(timeout=10),
            bob.wait_for_results(timeout=10),
        )
        assert [e.uid for e in a_view.matches] == ["evt-b"]
        assert [e.uid for e in b_view.matches] == ["evt-b"]

        await alice.send_note("evt-b", "North entrance")
        for _ in range(500):
            if "evt-b" in bob.view.notes:
                break
            await asyncio.sleep(0.01)
        assert bob.view.notes["evt-b"] == "North entrance"
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c1_3_relay_sees_only_ciphertext():
    async def run():
        relay, alice, bob, _, _ = _clients()
        sid = await _manual_handshake(alice, bob)
        await bob.send_note("evt-b", "bring a jacket")
        await alice.poll_once()
        assert alice.view.notes["evt-b"] == "bring a jacket"
        log = repr(relay.log(sid))
        assert "evt-b" in log          # note uid is routing metadata
        assert "evt-c" not in log
        assert "bring a jacket" not in log
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c1_4_send_note_requires_results():
    async def run():
        _, alice, bob, _, _ = _clients()
        await alice.create()
        with pytest.raises(StateError):
            await alice.send_note("evt-b", "too early")
        await alice.close()

    asyncio.run(run())


# =============================================================================
# C2. Transport Failures
# =============================================================================

def test_c2_1_join_unknown_room():
    async def run():
        _, alice, bob, _, _ = _clients()
        with pytest.raises(SessionNotFound):
            await bob.join("nope")
        assert bob.state == SessionState.IDLE
        assert not bob.polling

    asyncio.run(run())


def test_c2_2_join_send_failure_leaves_idle():
    async def run():
        _, alice, bob, _, bob_t = _clients()
        sid = await alice.create()
        bob_t.fail_sends = True
        with pytest.raises(TransportFailure):
            await bob.join(sid)
        assert bob.state == SessionState.IDLE
        assert not bob.polling
        bob_t.fail_sends = False
        await bob.join(sid)
        assert bob.state == SessionState.EXCHANGING
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c2_3_poll_failure_skips_cycle():
    async def run():
        _, alice, bob, alice_t, _ = _clients()
        sid = await alice.create()
        await bob.join(sid)
        alice_t.fail_polls = True
        await alice.poll_once()
        assert alice.state == SessionState.CREATED
        alice_t.fail_polls = False
        await alice.poll_once()
        assert alice.state == SessionState.EXCHANGING
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c2_4_failed_reply_queued_and_retried():
    async def run():
        _, alice, bob, alice_t, _ = _clients()
        sid = await alice.create()
        await bob.join(sid)

        alice_t.fail_sends = True
        await alice.poll_once()
        assert [m.type for m in alice.failed_sends] == [MessageType.STEP_1]
        assert await alice.retry_failed_sends() == 1

        alice_t.fail_sends = False
        assert await alice.retry_failed_sends() == 0
        assert alice.failed_sends == []

        await bob.poll_once()
        await alice.poll_once()
        await bob.poll_once()
        assert bob.state == SessionState.RESULTS
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c2_5_handshake_error_stops_poller():
    async def run():
        relay, alice, bob, _, _ = _clients()
        sid = await alice.create()
        await bob.join(sid)
        relay.append(sid, step1_message(Role.INITIATOR, ["zz"], alice.view.public_key))

        await bob.poll_once()
        assert bob.state == SessionState.ABORTED
        assert isinstance(bob.error, InvalidPoint)
        assert not bob.polling
        view = await bob.wait_for_results(timeout=1)
        assert view.state == SessionState.ABORTED
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c2_6_malformed_relay_entries_skipped():
    messages = parse_messages([
        {"type": "JOIN", "sender": "JOINER", "payload": {"publicKey": "02"}},
        {"type": "BOGUS", "sender": "JOINER"},
        "not a message",
    ])
    assert [m.type for m in messages] == [MessageType.JOIN]
    with pytest.raises(TransportFailure):
        parse_messages({"messages": []})


def test_c2_7_room_lost_during_handshake():
    async def run():
        relay, alice, bob, _, _ = _clients(FAST)
        sid = await alice.create()
        relay.drop_room(sid)

        view = await alice.wait_for_results(timeout=5)
        assert view.state == SessionState.ABORTED
        assert isinstance(alice.error, SessionNotFound)
        assert not alice.polling
        await alice.close()

    asyncio.run(run())


def test_c2_8_room_lost_after_results_keeps_matches():
    async def run():
        relay, alice, bob, _, _ = _clients()
        sid = await _manual_handshake(alice, bob)
        relay.drop_room(sid)

        await bob.poll_once()
        assert bob.state == SessionState.RESULTS
        assert [e.uid for e in bob.view.matches] == ["evt-b"]
        assert isinstance(bob.error, SessionNotFound)
        assert not bob.polling
        await alice.close()
        await bob.close()

    asyncio.run(run())


def test_c2_9_failed_note_not_recorded():
    async def run():
        _, alice, bob, alice_t, _ = _clients()
        await _manual_handshake(alice, bob)

        alice_t.fail_sends = True
        with pytest.raises(TransportFailure):
            await alice.send_note("evt-b", "never sent")
        assert "evt-b" not in alice.view.notes

        alice_t.fail_sends = False
        await alice.send_note("evt-b", "sent")
        assert alice.view.notes["evt-b"] == "sent"
        await bob.poll_once()
        assert bob.view.notes["evt-b"] == "sent"
        await alice.close()
        await bob.close()

    asyncio.run(run())


# =============================================================================
# C3. Lifecycle
# =============================================================================

def test_c3_1_poller_start_stop_idempotent():
    async def run():
        ticks = []

        async def tick():
            ticks.append(1)

        poller = SessionPoller(0.01, tick)
        assert not poller.running
        await poller.stop()
        poller.start()
        poller.start()
        assert poller.running
        await asyncio.sleep(0.05)
        await poller.stop()
        await poller.stop()
        assert not poller.running
        count = len(ticks)
        assert count > 0
        await asyncio.sleep(0.03)
        assert len(ticks) == count

    asyncio.run(run())


def test_c3_2_poller_stops_itself():
    async def run():
        ticks = []
        poller = None

        async def tick():
            ticks.append(1)
            await poller.stop()

        poller = SessionPoller(0.01, tick)
        poller.start()
        await asyncio.sleep(0.05)
        assert ticks == [1]
        assert not poller.running

    asyncio.run(run())


def test_c3_3_reset_stops_polling_and_clears():
    async def run():
        _, alice, bob, _, _ = _clients()
        await _manual_handshake(alice, bob)
        assert alice.polling

        await alice.reset()
        assert not alice.polling
        assert alice.state == SessionState.IDLE
        assert alice.session_id is None
        assert alice.view.matches == ()
        assert alice.failed_sends == []
        await bob.close()

    asyncio.run(run())


def test_c3_4_create_twice_rejected():
    async def run():
        _, alice, _, _, _ = _clients()
        await alice.create()
        with pytest.raises(StateError):
            await alice.create()
        with pytest.raises(StateError):
            await alice.join("anything")
        await alice.close()

    asyncio.run(run())


def test_c3_5_wait_for_results_timeout():
    async def run():
        _, alice, _, _, _ = _clients()
        await alice.create()
        with pytest.raises(asyncio.TimeoutError):
            await alice.wait_for_results(timeout=0.05)
        await alice.close()

    asyncio.run(run())


def test_c3_6_reset_during_background_polling():
    async def run():
        _, alice, bob, _, _ = _clients(FAST)
        sid = await alice.create()
        await bob.join(sid)
        await asyncio.sleep(0.02)
        await bob.reset()
        assert bob.state == SessionState.IDLE
        assert not bob.polling
        await alice.close()

    asyncio.run(run())


def test_c3_7_tick_error_logged_and_polling_continues(caplog):
    async def run():
        ticks = []

        async def tick():
            ticks.append(1)
            if len(ticks) == 1:
                raise RuntimeError("boom")

        poller = SessionPoller(0.01, tick)
        poller.start()
        for _ in range(200):
            if len(ticks) >= 3:
                break
            await asyncio.sleep(0.01)
        assert poller.running
        await poller.stop()
        assert len(ticks) >= 3

    with caplog.at_level(logging.ERROR, logger="synchro.client"):
        asyncio.run(run())
    assert "Poll tick failed" in caplog.text
    assert "boom" in caplog.text


class _SlowCreateTransport(MemoryTransport):
    """Memory transport whose create() yields to the loop."""

    def __init__(self, relay):
        super().__init__(relay)
        self.created = []

    async def create(self):
        await asyncio.sleep(0.01)
        session_id = await super().create()
        self.created.append(session_id)
        return session_id


def test_c3_8_concurrent_create_allocates_one_room():
    async def run():
        transport = _SlowCreateTransport(MemoryRelay())
        client = MatchingClient(ALICE, transport, MANUAL)
        results = await asyncio.gather(
            client.create(), client.create(), return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], StateError)
        assert len(transport.created) == 1
        assert client.session_id == transport.created[0]
        await client.close()

    asyncio.run(run())


# =============================================================================
# C4. HTTP Relay
# =============================================================================

def _signal_app():
    """Minimal signalling endpoint; poll returns the full room log."""
    rooms = {}

    async def signal(request):
        body = await request.json()
        action = body.get("action")
        sid = body.get("sessionId")
        if action == "create":
            sid = f"room{len(rooms) + 1}"
            rooms[sid] = []
            return web.json_response({"sessionId": sid})
        if sid not in rooms:
            return web.json_response({"error": "not found"}, status=404)
        if action == "join":
            return web.json_response({"ok": True})
        if action == "send":
            rooms[sid].append(body["payload"])
            return web.json_response({"ok": True})
        if action == "poll":
            return web.json_response({"messages": rooms[sid]})
        return web.json_response({"error": "bad action"}, status=400)

    app = web.Application()
    app.router.add_post("/api/signal", signal)
    return app


def test_c4_1_http_end_to_end():
    async def run():
        async with test_utils.TestServer(_signal_app()) as server:
            url = str(server.make_url("/api/signal"))
            alice = MatchingClient(ALICE, HTTPRelayTransport(url), MANUAL)
            bob = MatchingClient(BOB, HTTPRelayTransport(url), MANUAL)

            await _manual_handshake(alice, bob)
            assert [e.uid for e in alice.view.matches] == ["evt-b"]
            assert [e.uid for e in bob.view.matches] == ["evt-b"]

            await alice.send_note("evt-b", "hi")
            await bob.poll_once()
            await bob.poll_once()
            assert bob.view.notes["evt-b"] == "hi"

            await alice.close()
            await bob.close()

    asyncio.run(run())


def test_c4_2_http_not_found_and_errors():
    async def run():
        async with test_utils.TestServer(_signal_app()) as server:
            transport = HTTPRelayTransport(str(server.make_url("/api/signal")))
            with pytest.raises(SessionNotFound):
                await transport.join("missing")
            sid = await transport.create()
            await transport.join(sid)
            assert await transport.poll(sid) == []
            await transport.close()

            broken = HTTPRelayTransport(str(server.make_url("/nowhere")))
            with pytest.raises(SessionNotFound):
                await broken.create()
            await broken.close()

    asyncio.run(run())


def test_c4_3_http_unreachable():
    async def run():
        transport = HTTPRelayTransport("http://127.0.0.1:9/api/signal", timeout=2.0)
        with pytest.raises(TransportFailure):
            await transport.create()
        await transport.close()

    asyncio.run(run())


def test_c4_4_transport_from_config():
    async def run():
        async with test_utils.TestServer(_signal_app()) as server:
            config = SessionConfig(relay_endpoint=str(server.make_url("/api/signal")))
            transport = HTTPRelayTransport.from_config(config)
            sid = await transport.create()
            await transport.join(sid)
            await transport.close()

    asyncio.run(run())
    with pytest.raises(ValueError):
        HTTPRelayTransport.from_config(DEFAULT_CONFIG)


# =============================================================================
# C5. Configuration
# =============================================================================

@pytest.mark.parametrize("kwargs", [
    {"poll_interval": 0},
    {"poll_interval": -1.0},
    {"request_timeout": 0},
    {"note_suite_id": 0x7F},
])
def test_c5_1_invalid_config(kwargs):
    with pytest.raises(ValueError):
        SessionConfig(**kwargs)


def test_c5_2_config_dict_round_trip():
    config = SessionConfig(poll_interval=0.5, note_suite_id=0x02)
    assert SessionConfig.from_dict(config.to_dict()) == config
    assert SessionConfig.from_dict({"poll_interval": 1.0, "unknown": 1}).poll_interval == 1.0
    assert DEFAULT_CONFIG.poll_interval == 2.0


def test_c5_3_chacha_suite_end_to_end():
    async def run():
        config = SessionConfig(poll_interval=60.0, note_suite_id=0x02)
        _, alice, bob, _, _ = _clients(config)
        await _manual_handshake(alice, bob)
        await alice.send_note("evt-b", "chacha")
        await bob.poll_once()
        assert bob.view.notes["evt-b"] == "chacha"
        await alice.close()
        await bob.close()

    asyncio.run(run())
