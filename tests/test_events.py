"""
Event Log Test Suite

Coverage:
  - Sequencing and clock stamping
  - Subscribers (including a failing one)
  - Payload keys that shadow the emit() parameters
"""

import os
import sys

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from govopt.events import EventKind, EventLog


class TestEventLog:
    """Append-only stream."""

    def test_sequence_and_timestamp(self):
        log = EventLog(now_fn=lambda: 42.0)
        first = log.emit(EventKind.VOTE_CAST, voter="a")
        second = log.emit(EventKind.VOTE_CAST, voter="b")
        assert (first.seq, second.seq) == (0, 1)
        assert first.timestamp == 42.0
        assert len(log) == 2
        assert [e.data["voter"] for e in log.since(1)] == ["b"]

    def test_kind_in_payload(self):
        log = EventLog()
        event = log.emit(EventKind.MODULE_REGISTERED, kind="HYBRID", moduleId=3)
        assert event.kind == EventKind.MODULE_REGISTERED
        assert event.data["kind"] == "HYBRID"

    def test_subscribers(self):
        log = EventLog()
        seen = []

        def broken(event):
            raise RuntimeError("indexer down")

        log.subscribe(broken)
        log.subscribe(seen.append)
        log.emit(EventKind.COMMITMENT_MADE, voter="a")
        assert len(seen) == 1
        assert len(log) == 1

        log.unsubscribe(seen.append)
        log.emit(EventKind.COMMITMENT_MADE, voter="b")
        assert len(seen) == 1

    def test_of_kind_and_to_dict(self):
        log = EventLog(now_fn=lambda: 1.0)
        log.emit(EventKind.VOTE_CAST, voter="a")
        log.emit(EventKind.STATE_CHANGED, toState="ACTIVE")
        changed = log.of_kind(EventKind.STATE_CHANGED)
        assert len(changed) == 1
        assert changed[0].to_dict() == {
            "seq": 1,
            "event": "StateChanged",
            "data": {"toState": "ACTIVE"},
            "timestamp": 1.0,
        }
