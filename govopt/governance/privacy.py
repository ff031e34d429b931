"""
Commit-Reveal Privacy Gate

Two-phase vote casting that hides each voter's choice until nobody can
react to it any more.

Per proposal:  COMMIT_OPEN ──commit_deadline──► REVEAL_OPEN ──reveal_deadline──► CLOSED

  - The phase is a pure function of the shared clock, recomputed on every
    call; nothing blocks or waits for a deadline.
  - Phase lengths shrink with urgency: ``max(min_phase, d × (11 − urgency) // 11)``.
  - A second commitment from the same voter is rejected (unless the
    overwrite policy is enabled), which prevents last-minute switching.
  - Unrevealed commitments are simply left out of the tally.
  - When the context requires expertise, voters must hold verified,
    unexpired expertise at or above ``min_expertise_score`` in every
    required domain.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, Optional, Union

from ..config.loader import PrivacyConfig
from ..constants import MAX_URGENCY_LEVEL
from ..crypto.hashing import hex_to_digest, keccak256_hex
from ..events import EventKind, EventLog
from ..exceptions import (
    CommitmentMismatch,
    DuplicateCommitment,
    DuplicateVote,
    ExpertiseRequired,
    GovernanceError,
    InvalidCommitment,
    NoCommitment,
    PhaseClosed,
    UnknownProposal,
)
from ..logger import get_logger
from .expertise import ExpertiseLedger
from .modules import VoteRecord, VotingModule
from .proposals import Context

logger = get_logger(__name__)


class Phase(IntEnum):
    COMMIT_OPEN = 0
    REVEAL_OPEN = 1
    CLOSED = 2


def _salt_bytes(salt: Union[bytes, str]) -> bytes:
    if isinstance(salt, (bytes, bytearray)):
        return bytes(salt)
    if isinstance(salt, str):
        raw = salt[2:] if salt[:2] in ("0x", "0X") else salt
        try:
            return bytes.fromhex(raw)
        except ValueError as e:
            raise InvalidCommitment(f"Salt is not valid hex: {salt!r}") from e
    raise InvalidCommitment(f"Salt must be bytes or hex, got {type(salt).__name__}")


def commitment_hash(support: bool, salt: Union[bytes, str]) -> str:
    """keccak256(support_byte ‖ salt) as 0x hex; the value voters commit to."""
    return keccak256_hex((b"\x01" if support else b"\x00") + _salt_bytes(salt))


@dataclass
class Commitment:
    """A voter's sealed vote."""
    proposal_id: str
    voter: str
    commitment: str
    committed_at: float
    revealed: bool = False
    revealed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "voter": self.voter,
            "commitment": self.commitment,
            "committedAt": self.committed_at,
            "revealed": self.revealed,
            "revealedAt": self.revealed_at,
        }


@dataclass
class PrivacySession:
    """Commit-reveal state for one proposal."""
    proposal_id: str
    module: VotingModule
    context: Context
    opened_at: float
    commit_deadline: float
    reveal_deadline: float
    commitments: Dict[str, Commitment] = field(default_factory=dict)
    closed: bool = False

    def phase(self, now: float) -> Phase:
        if self.closed or now >= self.reveal_deadline:
            return Phase.CLOSED
        if now < self.commit_deadline:
            return Phase.COMMIT_OPEN
        return Phase.REVEAL_OPEN

    @property
    def commit_count(self) -> int:
        return len(self.commitments)

    @property
    def reveal_count(self) -> int:
        return sum(1 for c in self.commitments.values() if c.revealed)

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "phase": self.phase(now if now is not None else time.time()).name,
            "openedAt": self.opened_at,
            "commitDeadline": self.commit_deadline,
            "revealDeadline": self.reveal_deadline,
            "commits": self.commit_count,
            "reveals": self.reveal_count,
        }


class PrivacyGate:
    """
    Wraps a VotingModule's vote casting in commit-reveal.
    """

    def __init__(
        self,
        config: Optional[PrivacyConfig] = None,
        expertise: Optional[ExpertiseLedger] = None,
        now_fn: Optional[Callable[[], float]] = None,
        events: Optional[EventLog] = None,
    ):
        self.config = config or PrivacyConfig()
        self._expertise = expertise
        self._now = now_fn or time.time
        self._events = events or EventLog(now_fn=self._now)

        self._sessions: Dict[str, PrivacySession] = {}
        self._lock = threading.RLock()

    # ── Sessions ──────────────────────────────────────────────────────

    def scaled_period(self, seconds: int, urgency: int) -> int:
        """More urgent proposals get proportionally shorter phases."""
        return max(
            self.config.min_phase_seconds,
            seconds * (MAX_URGENCY_LEVEL + 1 - urgency) // (MAX_URGENCY_LEVEL + 1),
        )

    def open_session(self, proposal_id: str, module: VotingModule, context: Context) -> PrivacySession:
        now = self._now()
        commit_deadline = now + self.scaled_period(self.config.commit_period_seconds, context.urgency_level)
        reveal_deadline = commit_deadline + self.scaled_period(
            self.config.reveal_period_seconds, context.urgency_level
        )
        with self._lock:
            if proposal_id in self._sessions:
                raise GovernanceError(f"Privacy session already open for {proposal_id}")
            session = PrivacySession(
                proposal_id=proposal_id,
                module=module,
                context=context,
                opened_at=now,
                commit_deadline=commit_deadline,
                reveal_deadline=reveal_deadline,
            )
            self._sessions[proposal_id] = session
        logger.info(
            f"Commit-reveal opened for {proposal_id[:18]}: commit until {commit_deadline:.0f}, "
            f"reveal until {reveal_deadline:.0f}"
        )
        return session

    def close_session(self, proposal_id: str) -> None:
        """Force CLOSED (proposal canceled)."""
        with self._lock:
            self._session(proposal_id).closed = True

    def has_session(self, proposal_id: str) -> bool:
        with self._lock:
            return proposal_id in self._sessions

    def get_session(self, proposal_id: str) -> PrivacySession:
        with self._lock:
            return self._session(proposal_id)

    def _session(self, proposal_id: str) -> PrivacySession:
        session = self._sessions.get(proposal_id)
        if session is None:
            raise UnknownProposal(f"No commit-reveal session for {proposal_id}")
        return session

    # ── Phase queries ─────────────────────────────────────────────────

    def get_phase(self, proposal_id: str) -> Phase:
        with self._lock:
            return self._session(proposal_id).phase(self._now())

    def is_commit_phase_active(self, proposal_id: str) -> bool:
        return self.get_phase(proposal_id) == Phase.COMMIT_OPEN

    def is_reveal_phase_active(self, proposal_id: str) -> bool:
        return self.get_phase(proposal_id) == Phase.REVEAL_OPEN

    def get_commit_count(self, proposal_id: str) -> int:
        with self._lock:
            return self._session(proposal_id).commit_count

    def get_reveal_count(self, proposal_id: str) -> int:
        with self._lock:
            return self._session(proposal_id).reveal_count

    def get_commitment(self, proposal_id: str, voter: str) -> Optional[Commitment]:
        with self._lock:
            return self._session(proposal_id).commitments.get(voter)

    # ── Eligibility ───────────────────────────────────────────────────

    def _check_expertise(
        self,
        context: Context,
        voter: str,
        claimed: Optional[Iterable[int]],
        now: float,
    ) -> None:
        required = context.required_expertise
        if not required:
            return
        if claimed is not None:
            missing = required - frozenset(claimed)
            if missing:
                raise ExpertiseRequired(
                    f"{voter} did not present expertise for domains {sorted(missing)}"
                )
        if self._expertise is None:
            raise ExpertiseRequired("No expertise ledger available to check eligibility")
        for domain_id in sorted(required):
            score = self._expertise.get_expertise(voter, domain_id, at=now)
            if score < self.config.min_expertise_score:
                raise ExpertiseRequired(
                    f"{voter} has expertise {score} < {self.config.min_expertise_score} "
                    f"in domain {domain_id}"
                )

    # ── Commit ────────────────────────────────────────────────────────

    def commit_vote(self, proposal_id: str, voter: str, commitment: str) -> Commitment:
        """
        Store *voter*'s sealed vote.

        Raises:
            PhaseClosed:         commit window over
            InvalidCommitment:   not a 32-byte hex digest
            DuplicateCommitment: voter already committed (reject policy)
            ExpertiseRequired:   voter ineligible for the context
        """
        try:
            digest = "0x" + hex_to_digest(commitment).hex()
        except ValueError as e:
            raise InvalidCommitment(str(e)) from e

        now = self._now()
        with self._lock:
            session = self._session(proposal_id)
            phase = session.phase(now)
            if phase != Phase.COMMIT_OPEN:
                raise PhaseClosed(f"Commit phase for {proposal_id} is {phase.name}")
            if voter in session.commitments and not self.config.allow_commitment_overwrite:
                raise DuplicateCommitment(f"{voter} already committed on {proposal_id}")
            self._check_expertise(session.context, voter, None, now)

            record = Commitment(
                proposal_id=proposal_id,
                voter=voter,
                commitment=digest,
                committed_at=now,
            )
            session.commitments[voter] = record
            count = session.commit_count

        logger.info(f"Commitment: {voter} on {proposal_id[:18]} ({count} total)")
        self._events.emit(
            EventKind.COMMITMENT_MADE,
            proposalId=proposal_id,
            voter=voter,
            commitment=digest,
        )
        return record

    # ── Reveal ────────────────────────────────────────────────────────

    def reveal_vote(
        self,
        proposal_id: str,
        voter: str,
        support: bool,
        salt: Union[bytes, str],
        expertise_proof: Optional[Iterable[int]] = None,
        metadata: str = "",
    ) -> VoteRecord:
        """
        Open *voter*'s commitment and count it through the bound module.

        *expertise_proof* lists the domains the voter presents; it must
        cover every domain the context requires.

        Raises:
            PhaseClosed:        outside the reveal window
            NoCommitment:       voter never committed
            DuplicateVote:      commitment already revealed
            CommitmentMismatch: hash(support, salt) ≠ stored commitment
            ExpertiseRequired:  voter ineligible for the context
        """
        now = self._now()
        with self._lock:
            session = self._session(proposal_id)
            phase = session.phase(now)
            if phase != Phase.REVEAL_OPEN:
                raise PhaseClosed(f"Reveal phase for {proposal_id} is {phase.name}")

            stored = session.commitments.get(voter)
            if stored is None:
                raise NoCommitment(f"{voter} has no commitment on {proposal_id}")
            if stored.revealed:
                raise DuplicateVote(f"{voter} already revealed on {proposal_id}")
            if commitment_hash(support, salt) != stored.commitment:
                raise CommitmentMismatch(f"Reveal by {voter} does not match commitment")
            self._check_expertise(session.context, voter, expertise_proof or (), now)

            vote = session.module.record_vote(
                proposal_id, voter, bool(support), metadata=metadata, timestamp=now,
            )
            stored.revealed = True
            stored.revealed_at = now
            reveals = session.reveal_count

        logger.info(f"Reveal: {voter} on {proposal_id[:18]} ({reveals} revealed)")
        self._events.emit(
            EventKind.VOTE_REVEALED,
            proposalId=proposal_id,
            voter=voter,
            support=vote.support,
            weight=vote.weight,
        )
        return vote

    def to_dict(self) -> Dict[str, Any]:
        now = self._now()
        with self._lock:
            return {pid: s.to_dict(now) for pid, s in self._sessions.items()}

    def __repr__(self) -> str:
        return f"<PrivacyGate sessions={len(self._sessions)}>"
