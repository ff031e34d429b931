"""
Governance Proposals

Defines the proposal lifecycle states, the immutable decision Context a
proposal is classified under, target actions, and the Proposal dataclass
that tracks a single decision from creation to a terminal state.
"""

import json
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from ..constants import (
    BPS_DENOMINATOR,
    MAX_REQUIRED_EXPERTISE_DOMAINS,
    MAX_STAKEHOLDERS,
    MAX_TARGET_ACTIONS,
    MAX_URGENCY_LEVEL,
    MIN_URGENCY_LEVEL,
)
from ..crypto.hashing import keccak256_hex
from ..exceptions import InvalidContext, InvalidStateTransition
from ..logger import get_logger

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class ProposalState(IntEnum):
    """Lifecycle stage."""
    PENDING = 0      # Created, module being bound
    ACTIVE = 1       # Accepting votes (direct or commit-reveal)
    SUCCEEDED = 2    # Quorum met and approval ≥ threshold
    FAILED = 3       # Quorum met with approval < threshold, or deadline without quorum
    EXECUTED = 4     # Target actions applied
    CANCELED = 5     # Withdrawn by creator / cancel policy


# Valid forward transitions
_VALID_TRANSITIONS: Dict[ProposalState, set] = {
    ProposalState.PENDING:   {ProposalState.ACTIVE, ProposalState.CANCELED},
    ProposalState.ACTIVE:    {ProposalState.SUCCEEDED, ProposalState.FAILED,
                              ProposalState.CANCELED},
    ProposalState.SUCCEEDED: {ProposalState.EXECUTED},
    # Terminal states
    ProposalState.FAILED:    set(),
    ProposalState.EXECUTED:  set(),
    ProposalState.CANCELED:  set(),
}

TERMINAL_STATES = frozenset({
    ProposalState.FAILED,
    ProposalState.EXECUTED,
    ProposalState.CANCELED,
})


# ══════════════════════════════════════════════════════════════════════
#  TARGET ACTIONS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TargetAction:
    """One call in a proposal's execution batch."""
    target: str
    value: int = 0
    payload: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "value": self.value,
            "payload": "0x" + self.payload.hex(),
        }


def parse_actions(actions: Optional[Iterable[Union[TargetAction, Mapping[str, Any]]]]) -> Tuple[TargetAction, ...]:
    """
    Normalize caller-supplied actions into TargetAction tuples.

    Raises:
        InvalidContext: on a malformed action or an oversized batch
    """
    parsed: List[TargetAction] = []
    for raw in actions or ():
        if isinstance(raw, TargetAction):
            action = raw
        elif isinstance(raw, Mapping):
            payload = raw.get("payload", b"")
            if isinstance(payload, str):
                try:
                    payload = bytes.fromhex(payload[2:] if payload.startswith("0x") else payload)
                except ValueError as e:
                    raise InvalidContext(f"Action payload is not hex: {payload!r}") from e
            action = TargetAction(
                target=raw.get("target", ""),
                value=raw.get("value", 0),
                payload=payload,
            )
        else:
            raise InvalidContext(f"Unsupported action type: {type(raw).__name__}")

        if not isinstance(action.target, str) or not action.target:
            raise InvalidContext("Action target is required")
        if not isinstance(action.value, int) or isinstance(action.value, bool) or action.value < 0:
            raise InvalidContext(f"Action value must be a non-negative integer, got {action.value!r}")
        if not isinstance(action.payload, (bytes, bytearray)):
            raise InvalidContext("Action payload must be bytes or hex")
        parsed.append(action)

    if len(parsed) > MAX_TARGET_ACTIONS:
        raise InvalidContext(f"Too many actions ({len(parsed)} > {MAX_TARGET_ACTIONS})")
    return tuple(parsed)


# ══════════════════════════════════════════════════════════════════════
#  CONTEXT
# ══════════════════════════════════════════════════════════════════════

_CONTEXT_KEYS = frozenset({
    "category_id",
    "urgency_level",
    "required_expertise",
    "stakeholders",
    "metadata",
    "private",
    "hybrid_blend_bps",
})


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class Context:
    """
    Decision context a proposal is classified under.

    Fields:
        context_id:          Monotonic identifier assigned by the engine
        category_id:         Category from the external category registry (> 0)
        urgency_level:       0 (routine) … 10 (emergency)
        required_expertise:  Expertise domains voters are weighted/gated on
        stakeholders:        Accounts that receive the stakeholder boost
        metadata:            Opaque pointer (URI / hash)
        private:             Commit-reveal requested by the proposer
        hybrid_blend_bps:    Expertise share for hybrid modules (None → module default)
    """
    context_id: int
    category_id: int
    urgency_level: int
    required_expertise: FrozenSet[int] = frozenset()
    stakeholders: FrozenSet[str] = frozenset()
    metadata: str = ""
    private: bool = False
    hybrid_blend_bps: Optional[int] = None

    @classmethod
    def from_params(cls, context_id: int, params: Mapping[str, Any]) -> "Context":
        """
        Validate proposal-supplied parameters and build a Context.

        Raises:
            InvalidContext: on unknown keys or out-of-range values
        """
        if not isinstance(params, Mapping):
            raise InvalidContext("Context parameters must be a mapping")
        unknown = set(params) - _CONTEXT_KEYS
        if unknown:
            raise InvalidContext(f"Unknown context parameters: {sorted(unknown)}")

        category_id = params.get("category_id")
        if not _is_int(category_id) or category_id <= 0:
            raise InvalidContext(f"category_id must be a positive integer, got {category_id!r}")

        urgency = params.get("urgency_level", MIN_URGENCY_LEVEL)
        if not _is_int(urgency) or not MIN_URGENCY_LEVEL <= urgency <= MAX_URGENCY_LEVEL:
            raise InvalidContext(
                f"urgency_level must be within {MIN_URGENCY_LEVEL}..{MAX_URGENCY_LEVEL}, got {urgency!r}"
            )

        domains = params.get("required_expertise") or ()
        if isinstance(domains, (str, bytes)):
            raise InvalidContext("required_expertise must be a collection of domain ids")
        domains = frozenset(domains)
        if any(not _is_int(d) or d <= 0 for d in domains):
            raise InvalidContext("required_expertise domain ids must be positive integers")
        if len(domains) > MAX_REQUIRED_EXPERTISE_DOMAINS:
            raise InvalidContext(
                f"Too many expertise domains ({len(domains)} > {MAX_REQUIRED_EXPERTISE_DOMAINS})"
            )

        stakeholders = params.get("stakeholders") or ()
        if isinstance(stakeholders, (str, bytes)):
            raise InvalidContext("stakeholders must be a collection of accounts")
        stakeholders = frozenset(stakeholders)
        if any(not isinstance(s, str) or not s for s in stakeholders):
            raise InvalidContext("stakeholder accounts must be non-empty strings")
        if len(stakeholders) > MAX_STAKEHOLDERS:
            raise InvalidContext(f"Too many stakeholders ({len(stakeholders)} > {MAX_STAKEHOLDERS})")

        metadata = params.get("metadata", "")
        if not isinstance(metadata, str):
            raise InvalidContext("metadata must be a string")

        private = params.get("private", False)
        if not isinstance(private, bool):
            raise InvalidContext("private must be a boolean")

        blend = params.get("hybrid_blend_bps")
        if blend is not None and (not _is_int(blend) or not 0 <= blend <= BPS_DENOMINATOR):
            raise InvalidContext(f"hybrid_blend_bps must be within 0..{BPS_DENOMINATOR}, got {blend!r}")

        return cls(
            context_id=context_id,
            category_id=category_id,
            urgency_level=urgency,
            required_expertise=domains,
            stakeholders=stakeholders,
            metadata=metadata,
            private=private,
            hybrid_blend_bps=blend,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contextId": self.context_id,
            "categoryId": self.category_id,
            "urgencyLevel": self.urgency_level,
            "requiredExpertise": sorted(self.required_expertise),
            "stakeholders": sorted(self.stakeholders),
            "metadata": self.metadata,
            "private": self.private,
            "hybridBlendBps": self.hybrid_blend_bps,
        }


# ══════════════════════════════════════════════════════════════════════
#  PROPOSAL
# ══════════════════════════════════════════════════════════════════════

def derive_proposal_id(
    creator: str,
    nonce: int,
    metadata: str,
    actions: Tuple[TargetAction, ...],
) -> str:
    """Deterministic 32-byte proposal id (0x-prefixed hex)."""
    payload = json.dumps(
        {
            "creator": creator,
            "nonce": nonce,
            "metadata": metadata,
            "actions": [a.to_dict() for a in actions],
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return keccak256_hex(payload.encode("utf-8"))


@dataclass
class Proposal:
    """
    A single governance decision under vote.

    Fields:
        proposal_id:     32-byte digest (hex)
        creator:         Account that submitted the proposal
        metadata:        Opaque pointer (URI / hash)
        actions:         Ordered target actions executed on success
        context_id:      Bound Context
        module_id:       Bound voting module
        state:           Current lifecycle stage
        created_at:      Creation timestamp
        voting_ends_at:  Deadline after which finalize may fail for lack of quorum
    """
    proposal_id: str
    creator: str
    metadata: str
    actions: Tuple[TargetAction, ...]
    context_id: int
    module_id: int
    state: ProposalState = ProposalState.PENDING
    created_at: float = field(default_factory=time.time)
    voting_ends_at: Optional[float] = None
    finalized_at: Optional[float] = None
    executed_at: Optional[float] = None
    canceled_at: Optional[float] = None
    _history: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.creator:
            raise InvalidContext("Proposal creator is required")
        self._record_transition(ProposalState.PENDING, "created", self.created_at)

    # ── Properties ────────────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_votable(self) -> bool:
        return self.state == ProposalState.ACTIVE

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    # ── State transitions ─────────────────────────────────────────────

    def _record_transition(self, new_state: ProposalState, reason: str, at: float):
        self._history.append({
            "from": self.state.name if self._history else "INIT",
            "to": new_state.name,
            "reason": reason,
            "timestamp": at,
        })

    def can_transition_to(self, new_state: ProposalState) -> bool:
        return new_state in _VALID_TRANSITIONS.get(self.state, set())

    def transition_to(self, new_state: ProposalState, reason: str = "", at: Optional[float] = None):
        """
        Advance proposal to *new_state*.

        Raises InvalidStateTransition on invalid transitions.
        """
        if not self.can_transition_to(new_state):
            allowed = _VALID_TRANSITIONS.get(self.state, set())
            raise InvalidStateTransition(
                f"Cannot transition from {self.state.name} → {new_state.name}. "
                f"Allowed: {[s.name for s in allowed]}"
            )
        now = at if at is not None else time.time()
        old = self.state
        self._record_transition(new_state, reason, now)
        self.state = new_state
        if new_state in (ProposalState.SUCCEEDED, ProposalState.FAILED):
            self.finalized_at = now
        elif new_state == ProposalState.EXECUTED:
            self.executed_at = now
        elif new_state == ProposalState.CANCELED:
            self.canceled_at = now
        logger.info(
            f"Proposal {self.proposal_id[:18]}: {old.name} → {new_state.name} | {reason}"
        )

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "creator": self.creator,
            "metadata": self.metadata,
            "actions": [a.to_dict() for a in self.actions],
            "contextId": self.context_id,
            "moduleId": self.module_id,
            "state": self.state.name,
            "createdAt": self.created_at,
            "votingEndsAt": self.voting_ends_at,
            "finalizedAt": self.finalized_at,
            "executedAt": self.executed_at,
            "canceledAt": self.canceled_at,
            "historyLength": len(self._history),
        }

    def __repr__(self) -> str:
        return (
            f"<Proposal {self.proposal_id[:18]} module=#{self.module_id} "
            f"state={self.state.name}>"
        )
