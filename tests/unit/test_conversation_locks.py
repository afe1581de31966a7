from __future__ import annotations

import threading

from workflow_engine.session.conversation import START_TRIGGER, ConversationSession
from workflow_engine.session.locks import ConversationLocks


def test_entry_is_dropped_after_release() -> None:
    locks = ConversationLocks()

    with locks.hold("c1"):
        assert len(locks) == 1
    assert len(locks) == 0


def test_waiters_share_one_lock_until_the_last_release() -> None:
    locks = ConversationLocks()
    entered = threading.Event()
    order: list[str] = []

    def waiter() -> None:
        entered.set()
        with locks.hold("c1"):
            order.append("waiter")

    with locks.hold("c1"):
        thread = threading.Thread(target=waiter)
        thread.start()
        entered.wait(1)
        # The waiter is blocked on the same entry, which must survive this release.
        thread.join(0.1)
        order.append("holder")
    thread.join(2)

    assert order == ["holder", "waiter"]
    assert len(locks) == 0


def test_session_does_not_accumulate_locks(workflows, store, settings) -> None:
    locks = ConversationLocks()
    session = ConversationSession(workflows, store, settings=settings, locks=locks)

    for i in range(20):
        session.advance(f"c{i}", START_TRIGGER)

    assert len(locks) == 0
