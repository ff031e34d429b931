"""
Governance Event Log

Ordered, sequence-numbered stream of observable side effects. External
indexers either read ``events`` / ``since(seq)`` or subscribe a callback
that receives every event as it is appended.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .logger import get_logger

logger = get_logger(__name__)


class EventKind(str, Enum):
    """Event names as seen by indexers."""
    PROPOSAL_CREATED = "ProposalCreated"
    STATE_CHANGED = "StateChanged"
    VOTE_CAST = "VoteCast"
    MODULE_REGISTERED = "ModuleRegistered"
    EXPERTISE_VERIFIED = "ExpertiseVerified"
    HISTORY_RECORDED = "HistoryRecorded"
    COMMITMENT_MADE = "CommitmentMade"
    VOTE_REVEALED = "VoteRevealed"


@dataclass(frozen=True)
class GovernanceEvent:
    """A single emitted event."""
    seq: int
    kind: EventKind
    data: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "event": self.kind.value,
            "data": dict(self.data),
            "timestamp": self.timestamp,
        }


class EventLog:
    """
    Append-only event stream shared by every engine component.

    Subscribers are called synchronously, in registration order, after the
    event is appended. A subscriber that raises is logged and skipped so a
    faulty indexer cannot roll back governance state that already changed.
    """

    def __init__(self, now_fn: Optional[Callable[[], float]] = None):
        self._now = now_fn or time.time
        self._events: List[GovernanceEvent] = []
        self._subscribers: List[Callable[[GovernanceEvent], None]] = []
        self._lock = threading.Lock()

    def emit(self, kind: EventKind, /, **data: Any) -> GovernanceEvent:
        with self._lock:
            event = GovernanceEvent(
                seq=len(self._events),
                kind=kind,
                data=data,
                timestamp=self._now(),
            )
            self._events.append(event)
            subscribers = list(self._subscribers)

        logger.debug(f"[event #{event.seq}] {kind.value} {data}")
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber failed on {kind.value} #{event.seq}")
        return event

    def subscribe(self, callback: Callable[[GovernanceEvent], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[GovernanceEvent], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def events(self) -> List[GovernanceEvent]:
        with self._lock:
            return list(self._events)

    def since(self, seq: int) -> List[GovernanceEvent]:
        """Events with sequence number >= *seq*."""
        with self._lock:
            return list(self._events[max(0, seq):])

    def of_kind(self, kind: EventKind) -> List[GovernanceEvent]:
        with self._lock:
            return [e for e in self._events if e.kind == kind]

    def __len__(self) -> int:
        return len(self._events)

    def __repr__(self) -> str:
        return f"<EventLog events={len(self._events)} subscribers={len(self._subscribers)}>"
