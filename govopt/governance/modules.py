"""
Voting Modules

Closed set of interchangeable vote-weighting strategies:

  - TOKEN_WEIGHTED        weight = balance
  - QUADRATIC             weight = floor(sqrt(balance))
  - EXPERTISE_WEIGHTED    weight = balance × (1 + min(score/100, cap))
  - HYBRID                convex blend of token and expertise weight
  - STAKEHOLDER_PRIORITY  weight = balance × boost for context stakeholders

Every module shares the same per-proposal tally, quorum and threshold rules.
All arithmetic is integer basis-point math; divisions truncate and the
pass/fail comparison uses the truncated ratio.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, Optional, Type

from ..config.loader import VotingConfig
from ..constants import BPS_DENOMINATOR
from ..exceptions import (
    DuplicateVote,
    GovernanceError,
    InsufficientVotingPower,
    InvalidModule,
    UnknownProposal,
)
from ..logger import get_logger
from .expertise import ExpertiseLedger
from .proposals import Context

logger = get_logger(__name__)


class ModuleKind(IntEnum):
    """Strategy tag carried by every module descriptor."""
    TOKEN_WEIGHTED = 1
    QUADRATIC = 2
    EXPERTISE_WEIGHTED = 3
    HYBRID = 4
    STAKEHOLDER_PRIORITY = 5


# ══════════════════════════════════════════════════════════════════════
#  VOTE DATA
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VoteRecord:
    """A counted vote."""
    proposal_id: str
    voter: str
    support: bool
    weight: int            # Strategy-adjusted weight
    balance: int           # Raw token balance read at vote time
    metadata: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "voter": self.voter,
            "support": self.support,
            "weight": self.weight,
            "balance": self.balance,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }


@dataclass
class Tally:
    """Per-proposal running totals."""
    proposal_id: str
    context: Context
    support_weight: int = 0
    against_weight: int = 0
    counted_balance: int = 0
    votes: Dict[str, VoteRecord] = field(default_factory=dict)

    @property
    def total_weight(self) -> int:
        return self.support_weight + self.against_weight

    @property
    def voter_count(self) -> int:
        return len(self.votes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "contextId": self.context.context_id,
            "supportWeight": self.support_weight,
            "againstWeight": self.against_weight,
            "totalWeight": self.total_weight,
            "countedBalance": self.counted_balance,
            "voters": self.voter_count,
        }


# ══════════════════════════════════════════════════════════════════════
#  BASE MODULE
# ══════════════════════════════════════════════════════════════════════

class VotingModule:
    """
    Shared tally / quorum / threshold logic.

    Subclasses only decide how a voter's raw balance becomes weight.

    Args:
        get_balance_fn:  Callable(account) → int token balance
        config:          Voting defaults (threshold, quorum, boosts)
        expertise:       Ledger read by expertise-aware strategies
    """

    kind: ModuleKind

    def __init__(
        self,
        get_balance_fn: Callable[[str], int],
        config: Optional[VotingConfig] = None,
        expertise: Optional[ExpertiseLedger] = None,
        approval_threshold_bps: Optional[int] = None,
        quorum_weight: Optional[int] = None,
    ):
        self.config = config or VotingConfig()
        self._get_balance = get_balance_fn
        self._expertise = expertise
        self.approval_threshold_bps = (
            self.config.approval_threshold_bps if approval_threshold_bps is None
            else approval_threshold_bps
        )
        self.quorum_weight = self.config.quorum_weight if quorum_weight is None else quorum_weight
        if not 0 <= self.approval_threshold_bps <= BPS_DENOMINATOR:
            raise InvalidModule(f"approval_threshold_bps out of range: {self.approval_threshold_bps}")
        if self.quorum_weight < 0:
            raise InvalidModule(f"quorum_weight must be >= 0: {self.quorum_weight}")

        self._tallies: Dict[str, Tally] = {}
        self._lock = threading.RLock()

    # ── Lifecycle ─────────────────────────────────────────────────────

    def initialize(self, proposal_id: str, context: Context) -> Tally:
        """Open a tally for *proposal_id* under *context*."""
        with self._lock:
            if proposal_id in self._tallies:
                raise GovernanceError(f"Module already initialized for {proposal_id}")
            tally = Tally(proposal_id=proposal_id, context=context)
            self._tallies[proposal_id] = tally
        logger.debug(f"{self.kind.name} initialized for {proposal_id[:18]}")
        return tally

    def _tally(self, proposal_id: str) -> Tally:
        tally = self._tallies.get(proposal_id)
        if tally is None:
            raise UnknownProposal(f"{self.kind.name} has no tally for {proposal_id}")
        return tally

    # ── Weights ───────────────────────────────────────────────────────

    def balance_of(self, voter: str) -> int:
        balance = self._get_balance(voter)
        if isinstance(balance, bool) or not isinstance(balance, int) or balance < 0:
            raise GovernanceError(f"Balance source returned invalid value for {voter}: {balance!r}")
        return balance

    def _weight(self, voter: str, balance: int, context: Context) -> int:
        raise NotImplementedError

    def calculate_voting_power(self, voter: str, proposal_id: str) -> int:
        """Weight *voter* would cast on *proposal_id* right now."""
        with self._lock:
            context = self._tally(proposal_id).context
        return self._weight(voter, self.balance_of(voter), context)

    # ── Voting ────────────────────────────────────────────────────────

    def has_voted(self, proposal_id: str, voter: str) -> bool:
        with self._lock:
            return voter in self._tally(proposal_id).votes

    def record_vote(
        self,
        proposal_id: str,
        voter: str,
        support: bool,
        metadata: str = "",
        timestamp: Optional[float] = None,
    ) -> VoteRecord:
        """
        Weigh and count *voter*'s vote exactly once.

        Raises:
            DuplicateVote:           voter already counted
            InsufficientVotingPower: weight resolves to zero
        """
        with self._lock:
            tally = self._tally(proposal_id)
            if voter in tally.votes:
                raise DuplicateVote(f"{voter} has already voted on {proposal_id}")

            balance = self.balance_of(voter)
            weight = self._weight(voter, balance, tally.context)
            if weight <= 0:
                raise InsufficientVotingPower(
                    f"{voter} has no voting power under {self.kind.name} (balance={balance})"
                )

            record = VoteRecord(
                proposal_id=proposal_id,
                voter=voter,
                support=bool(support),
                weight=weight,
                balance=balance,
                metadata=metadata,
                timestamp=timestamp if timestamp is not None else time.time(),
            )
            tally.votes[voter] = record
            if record.support:
                tally.support_weight += weight
            else:
                tally.against_weight += weight
            tally.counted_balance += balance

        logger.info(
            f"Vote: {voter} → {'FOR' if record.support else 'AGAINST'} on "
            f"{proposal_id[:18]} (weight={weight}, {self.kind.name})"
        )
        return record

    # ── Quorum & threshold ────────────────────────────────────────────

    def get_quorum_requirement(self, proposal_id: str) -> int:
        """Base quorum reduced by urgency (capped discount)."""
        with self._lock:
            urgency = self._tally(proposal_id).context.urgency_level
        discount = min(
            urgency * self.config.quorum_urgency_discount_bps,
            self.config.quorum_max_discount_bps,
        )
        return self.quorum_weight * (BPS_DENOMINATOR - discount) // BPS_DENOMINATOR

    def get_approval_threshold(self, proposal_id: str) -> int:
        self._tally(proposal_id)
        return self.approval_threshold_bps

    def has_quorum(self, proposal_id: str) -> bool:
        with self._lock:
            total = self._tally(proposal_id).total_weight
        return total >= self.get_quorum_requirement(proposal_id)

    def approval_bps(self, proposal_id: str) -> int:
        with self._lock:
            tally = self._tally(proposal_id)
            if tally.total_weight == 0:
                return 0
            return tally.support_weight * BPS_DENOMINATOR // tally.total_weight

    def has_passed(self, proposal_id: str) -> bool:
        with self._lock:
            if self._tally(proposal_id).total_weight == 0:
                return False
        return self.approval_bps(proposal_id) >= self.approval_threshold_bps

    def get_tally(self, proposal_id: str) -> Tally:
        with self._lock:
            return self._tally(proposal_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.name,
            "approvalThresholdBps": self.approval_threshold_bps,
            "quorumWeight": self.quorum_weight,
            "proposals": len(self._tallies),
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} proposals={len(self._tallies)}>"


# ══════════════════════════════════════════════════════════════════════
#  STRATEGIES
# ══════════════════════════════════════════════════════════════════════

class TokenWeightedModule(VotingModule):
    """1 token = 1 vote."""
    kind = ModuleKind.TOKEN_WEIGHTED

    def _weight(self, voter: str, balance: int, context: Context) -> int:
        return balance


class QuadraticModule(VotingModule):
    """floor(sqrt(balance)) dampens large holders."""
    kind = ModuleKind.QUADRATIC

    def _weight(self, voter: str, balance: int, context: Context) -> int:
        return math.isqrt(balance)


class ExpertiseWeightedModule(VotingModule):
    """
    Token weight scaled by verified expertise in the context's domains.

    The boost is ``score × 100`` bps capped at ``expertise_max_boost_bps``,
    so expertise can never multiply a balance by more than the cap allows.
    """
    kind = ModuleKind.EXPERTISE_WEIGHTED

    def expertise_score(self, voter: str, context: Context) -> int:
        if self._expertise is None:
            return 0
        return self._expertise.average_expertise(voter, context.required_expertise)

    def _expertise_weight(self, voter: str, balance: int, context: Context) -> int:
        boost = min(self.expertise_score(voter, context) * 100, self.config.expertise_max_boost_bps)
        return balance * (BPS_DENOMINATOR + boost) // BPS_DENOMINATOR

    def _weight(self, voter: str, balance: int, context: Context) -> int:
        return self._expertise_weight(voter, balance, context)


class HybridModule(ExpertiseWeightedModule):
    """Convex combination of token and expertise weight."""
    kind = ModuleKind.HYBRID

    def __init__(self, *args, blend_bps: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.blend_bps = self.config.hybrid_blend_bps if blend_bps is None else blend_bps
        if not 0 <= self.blend_bps <= BPS_DENOMINATOR:
            raise InvalidModule(f"blend_bps out of range: {self.blend_bps}")

    def _weight(self, voter: str, balance: int, context: Context) -> int:
        blend = context.hybrid_blend_bps if context.hybrid_blend_bps is not None else self.blend_bps
        expertise_weight = self._expertise_weight(voter, balance, context)
        return (balance * (BPS_DENOMINATOR - blend) + expertise_weight * blend) // BPS_DENOMINATOR


class StakeholderPriorityModule(VotingModule):
    """Token weight, boosted for accounts listed as context stakeholders."""
    kind = ModuleKind.STAKEHOLDER_PRIORITY

    def __init__(self, *args, boost_bps: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.boost_bps = self.config.stakeholder_boost_bps if boost_bps is None else boost_bps
        if self.boost_bps < BPS_DENOMINATOR:
            raise InvalidModule(f"boost_bps must be >= {BPS_DENOMINATOR}: {self.boost_bps}")

    def _weight(self, voter: str, balance: int, context: Context) -> int:
        if voter in context.stakeholders:
            return balance * self.boost_bps // BPS_DENOMINATOR
        return balance


MODULE_STRATEGIES: Dict[ModuleKind, Type[VotingModule]] = {
    ModuleKind.TOKEN_WEIGHTED: TokenWeightedModule,
    ModuleKind.QUADRATIC: QuadraticModule,
    ModuleKind.EXPERTISE_WEIGHTED: ExpertiseWeightedModule,
    ModuleKind.HYBRID: HybridModule,
    ModuleKind.STAKEHOLDER_PRIORITY: StakeholderPriorityModule,
}


def build_module(kind: ModuleKind, get_balance_fn: Callable[[str], int], **kwargs) -> VotingModule:
    """Instantiate the strategy registered for *kind*."""
    try:
        cls = MODULE_STRATEGIES[ModuleKind(kind)]
    except (KeyError, ValueError) as e:
        raise InvalidModule(f"Unknown module kind: {kind!r}") from e
    return cls(get_balance_fn, **kwargs)
