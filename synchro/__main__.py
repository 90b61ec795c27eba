# synchro/__main__.py
"""
Synchro demo: two parties match calendars over an in-process relay.

Run:
    python -m synchro
"""

from __future__ import annotations

import asyncio
import logging

from .config import SessionConfig
from .protocols.events import CalendarEvent
from .transport.client import MatchingClient
from .transport.relay import MemoryRelay, MemoryTransport


ALICE_EVENTS = [
    CalendarEvent("evt-7f3a91@lu.ma", "ETH Denver Opening", "2026-02-27T18:00:00Z", "Denver"),
    CalendarEvent("evt-02bc44@lu.ma", "ZK Breakfast", "2026-02-28T08:30:00Z"),
    CalendarEvent("evt-c9d120@lu.ma", "Builders Mixer", "2026-02-28T20:00:00Z", "Rooftop"),
]

BOB_EVENTS = [
    CalendarEvent("evt-c9d120@lu.ma", "Builders Mixer", "2026-02-28T20:00:00Z", "Rooftop"),
    CalendarEvent("evt-55e0aa@lu.ma", "DAO Governance Panel", "2026-03-01T14:00:00Z"),
    CalendarEvent("evt-7f3a91@lu.ma", "ETH Denver Opening", "2026-02-27T18:00:00Z", "Denver"),
]


async def run_demo() -> bool:
    print("=" * 70)
    print("Synchro: Private Calendar Matching Demo")
    print("=" * 70)

    relay = MemoryRelay()
    config = SessionConfig(poll_interval=0.05)
    alice = MatchingClient(ALICE_EVENTS, MemoryTransport(relay), config)
    bob = MatchingClient(BOB_EVENTS, MemoryTransport(relay), config)

    session_id = await alice.create()
    print(f"\n  Alice created session {session_id}")
    await bob.join(session_id)
    print(f"  Bob joined session {session_id}")

    alice_view, bob_view = await asyncio.gather(
        alice.wait_for_results(timeout=30),
        bob.wait_for_results(timeout=30),
    )

    print(f"\n  Alice matches: {[e.title for e in alice_view.matches]}")
    print(f"  Bob matches:   {[e.title for e in bob_view.matches]}")

    uid = alice_view.matches[0].uid
    await alice.send_note(uid, "Meet at the north entrance?")
    for _ in range(100):
        if uid in bob.view.notes:
            break
        await asyncio.sleep(0.05)
    print(f"\n  Bob received note on {uid}: {bob.view.notes.get(uid)!r}")

    print("\n  Relay saw:")
    for item in relay.log(session_id):
        print(f"    {item['type']:<7} from {item['sender']}")

    ok = (
        {e.uid for e in alice_view.matches} == {e.uid for e in bob_view.matches}
        and bob.view.notes.get(uid) == "Meet at the north entrance?"
    )

    await alice.close()
    await bob.close()

    print("\n" + "=" * 70)
    print(f"{'DEMO PASSED ✅' if ok else 'DEMO FAILED ❌'}")
    print("=" * 70)
    return ok


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_demo())
