"""
Governance Engine

Facade tying the lifecycle together:

    create ──► select module ──► ACTIVE ──► vote / commit-reveal
                                   │
                                   ▼
                   finalize ──► SUCCEEDED / FAILED ──► history + selector feedback
                                   │
                                   ▼
                   execute ──► EXECUTED (history amendment)

Every mutating call runs under one re-entrant lock. On top of the lock a
per-proposal in-flight set rejects a nested mutation of the same proposal,
e.g. a target handler voting on the proposal being executed.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from ..config.loader import EngineConfig
from ..constants import BPS_DENOMINATOR, MAX_URGENCY_LEVEL
from ..crypto.merkle import MerkleProof
from ..events import EventKind, EventLog
from ..exceptions import (
    InvalidContext,
    InvalidStateTransition,
    LedgerHalted,
    PhaseClosed,
    PhaseStillOpen,
    PrivacyRequired,
    ProposalNotActive,
    QuorumNotMet,
    ReentrancyRejected,
    ThresholdNotMet,
    UnauthorizedCaller,
    UnknownProposal,
)
from ..logger import get_logger
from .execution import ActionExecutor
from .expertise import ExpertiseLedger, ExpertiseRecord
from .history import HistoryLedger, HistoryRecord, ModulePerformance
from .modules import ModuleKind, VoteRecord, VotingModule, build_module
from .privacy import Commitment, Phase, PrivacyGate
from .proposals import (
    Context,
    Proposal,
    ProposalState,
    TargetAction,
    derive_proposal_id,
    parse_actions,
)
from .selector import ModuleSelector, ModuleStats, VotingModuleDescriptor

logger = get_logger(__name__)

CancelPolicy = Callable[[str, Proposal], bool]


class GovernanceEngine:
    """
    Context-aware governance engine.

    Args:
        get_balance_fn:       Callable(account) → int token balance
        get_total_supply_fn:  Callable() → int supply, used for participation
        config:               EngineConfig (defaults when omitted)
        now_fn:               Shared clock for every component
        events:               EventLog shared by every component
        action_executor:      Runs target actions on execute
        cancel_policy:        Callable(caller, proposal) → bool; lets accounts
                              other than the creator cancel
    """

    def __init__(
        self,
        get_balance_fn: Callable[[str], int],
        get_total_supply_fn: Optional[Callable[[], int]] = None,
        config: Optional[EngineConfig] = None,
        now_fn: Optional[Callable[[], float]] = None,
        events: Optional[EventLog] = None,
        action_executor: Optional[ActionExecutor] = None,
        cancel_policy: Optional[CancelPolicy] = None,
    ):
        self.config = config or EngineConfig()
        self._now = now_fn or time.time
        self.events = events or EventLog(now_fn=self._now)
        self._get_balance = get_balance_fn
        self._get_total_supply = get_total_supply_fn
        self._cancel_policy = cancel_policy

        self.expertise = ExpertiseLedger(self.config.expertise, now_fn=self._now, events=self.events)
        self.history = HistoryLedger(self.config.history, now_fn=self._now, events=self.events)
        self.selector = ModuleSelector(self.history, self.config.selection, events=self.events)
        self.privacy = PrivacyGate(
            self.config.privacy, expertise=self.expertise, now_fn=self._now, events=self.events,
        )
        self.executor = action_executor or ActionExecutor(now_fn=self._now)

        self._proposals: Dict[str, Proposal] = {}
        self._contexts: Dict[int, Context] = {}
        self._next_context_id = 1
        self._nonce = 0
        self._lock = threading.RLock()
        self._in_flight: Set[str] = set()

    # ── Internals ─────────────────────────────────────────────────────

    @contextmanager
    def _mutating(self, proposal_id: str):
        with self._lock:
            if proposal_id in self._in_flight:
                raise ReentrancyRejected(f"Proposal {proposal_id} is already being modified")
            self._in_flight.add(proposal_id)
            try:
                yield
            finally:
                self._in_flight.discard(proposal_id)

    def _proposal(self, proposal_id: str) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise UnknownProposal(f"Proposal {proposal_id} not found")
        return proposal

    def _module(self, proposal: Proposal) -> VotingModule:
        return self.selector.get_module(proposal.module_id).strategy

    def _is_private(self, proposal_id: str) -> bool:
        return self.privacy.has_session(proposal_id)

    def _voting_period(self, urgency: int) -> int:
        cfg = self.config.voting
        return max(
            cfg.min_voting_period_seconds,
            cfg.voting_period_seconds * (MAX_URGENCY_LEVEL + 1 - urgency) // (MAX_URGENCY_LEVEL + 1),
        )

    def _participation_bps(self, counted_balance: int) -> int:
        if self._get_total_supply is None:
            return 0
        supply = self._get_total_supply()
        if supply <= 0:
            return 0
        return min(BPS_DENOMINATOR, counted_balance * BPS_DENOMINATOR // supply)

    def _emit_state(self, proposal: Proposal) -> None:
        last = proposal.history[-1]
        self.events.emit(
            EventKind.STATE_CHANGED,
            proposalId=proposal.proposal_id,
            fromState=last["from"],
            toState=last["to"],
            reason=last["reason"],
        )

    # ══════════════════════════════════════════════════════════════════
    #  LIFECYCLE
    # ══════════════════════════════════════════════════════════════════

    def create_proposal(
        self,
        creator: str,
        metadata: str = "",
        context_params: Optional[Mapping[str, Any]] = None,
        actions: Optional[Iterable[Union[TargetAction, Mapping[str, Any]]]] = None,
    ) -> str:
        """
        Classify, bind a voting module and open voting.

        Returns the new proposal id.

        Raises:
            InvalidContext:    malformed creator, context parameters or actions
            NoSuitableModule:  no registered module accepts the context
        """
        if not isinstance(creator, str) or not creator:
            raise InvalidContext("Proposal creator is required")
        if not isinstance(metadata, str):
            raise InvalidContext("Proposal metadata must be a string")
        parsed = parse_actions(actions)

        with self._lock:
            context = Context.from_params(self._next_context_id, context_params or {})
            descriptor = self.selector.get_optimal_module(context)
            proposal_id = derive_proposal_id(creator, self._nonce, metadata, parsed)
            if proposal_id in self._proposals:
                raise InvalidContext(f"Proposal id collision: {proposal_id}")

            now = self._now()
            module = descriptor.strategy
            module.initialize(proposal_id, context)
            self._nonce += 1
            self._next_context_id += 1

            voting_ends_at = now + self._voting_period(context.urgency_level)
            private = context.private or descriptor.requires_privacy
            if private:
                session = self.privacy.open_session(proposal_id, module, context)
                # No vote can land after the reveal window
                voting_ends_at = session.reveal_deadline

            proposal = Proposal(
                proposal_id=proposal_id,
                creator=creator,
                metadata=metadata,
                actions=parsed,
                context_id=context.context_id,
                module_id=descriptor.module_id,
                created_at=now,
                voting_ends_at=voting_ends_at,
            )
            self._contexts[context.context_id] = context
            self._proposals[proposal_id] = proposal
            proposal.transition_to(
                ProposalState.ACTIVE,
                f"bound to module #{descriptor.module_id}",
                at=now,
            )

        logger.info(
            f"Proposal {proposal_id[:18]} created by {creator}: category={context.category_id} "
            f"urgency={context.urgency_level} module=#{descriptor.module_id} private={private}"
        )
        self.events.emit(
            EventKind.PROPOSAL_CREATED,
            proposalId=proposal_id,
            creator=creator,
            contextId=context.context_id,
            categoryId=context.category_id,
            moduleId=descriptor.module_id,
            private=private,
            votingEndsAt=voting_ends_at,
        )
        self._emit_state(proposal)
        return proposal_id

    def cast_vote(
        self,
        voter: str,
        proposal_id: str,
        support: bool,
        metadata: str = "",
    ) -> VoteRecord:
        """
        Count a public vote.

        Raises:
            ProposalNotActive:       not ACTIVE, or the voting deadline passed
            PrivacyRequired:         proposal uses commit-reveal
            DuplicateVote:           voter already counted
            InsufficientVotingPower: zero weight under the bound module
        """
        with self._mutating(proposal_id):
            proposal = self._proposal(proposal_id)
            now = self._now()
            if proposal.state != ProposalState.ACTIVE:
                raise ProposalNotActive(f"Proposal {proposal_id} is {proposal.state.name}")
            if self._is_private(proposal_id):
                raise PrivacyRequired(f"Proposal {proposal_id} requires commit-reveal voting")
            if now >= proposal.voting_ends_at:
                raise ProposalNotActive(f"Voting on {proposal_id} closed at {proposal.voting_ends_at:.0f}")
            vote = self._module(proposal).record_vote(
                proposal_id, voter, support, metadata=metadata, timestamp=now,
            )

        self.events.emit(
            EventKind.VOTE_CAST,
            proposalId=proposal_id,
            voter=voter,
            support=vote.support,
            weight=vote.weight,
        )
        return vote

    def finalize_proposal(self, proposal_id: str) -> ProposalState:
        """
        Close voting and settle SUCCEEDED / FAILED.

        Raises:
            ProposalNotActive: not ACTIVE
            PhaseStillOpen:    commit-reveal window not yet closed
            QuorumNotMet:      no quorum and the voting deadline not reached
        """
        with self._mutating(proposal_id):
            proposal = self._proposal(proposal_id)
            if proposal.state != ProposalState.ACTIVE:
                raise ProposalNotActive(f"Proposal {proposal_id} is {proposal.state.name}")
            now = self._now()
            if self._is_private(proposal_id):
                phase = self.privacy.get_phase(proposal_id)
                if phase != Phase.CLOSED:
                    raise PhaseStillOpen(f"Proposal {proposal_id} is still in {phase.name}")

            module = self._module(proposal)
            tally = module.get_tally(proposal_id)
            if module.has_quorum(proposal_id):
                passed = module.has_passed(proposal_id)
                new_state = ProposalState.SUCCEEDED if passed else ProposalState.FAILED
                reason = (
                    f"approval {module.approval_bps(proposal_id)} bps vs "
                    f"threshold {module.get_approval_threshold(proposal_id)} bps"
                )
            elif now < proposal.voting_ends_at:
                raise QuorumNotMet(
                    f"Proposal {proposal_id}: weight {tally.total_weight} < quorum "
                    f"{module.get_quorum_requirement(proposal_id)}"
                )
            else:
                new_state = ProposalState.FAILED
                reason = "quorum not met by voting deadline"

            context = self._contexts[proposal.context_id]
            participation = self._participation_bps(tally.counted_balance)
            execution_time = max(0, int(now - proposal.created_at))
            succeeded = new_state == ProposalState.SUCCEEDED

            # Ledger first: a halted ledger leaves the proposal ACTIVE
            self.history.record_history(
                proposal_id=proposal_id,
                context_id=context.context_id,
                category_id=context.category_id,
                module_id=proposal.module_id,
                participation_rate_bps=participation,
                execution_time_seconds=execution_time,
                succeeded=succeeded,
            )
            proposal.transition_to(new_state, reason, at=now)
            self.selector.update_performance(
                proposal.module_id,
                context.category_id,
                participation,
                execution_time,
                succeeded,
            )

        self._emit_state(proposal)
        return proposal.state

    def execute_proposal(self, proposal_id: str) -> int:
        """
        Run a succeeded proposal's actions as one batch.

        Returns the number of actions applied.

        Raises:
            ThresholdNotMet:        proposal FAILED
            InvalidStateTransition: proposal in any other non-SUCCEEDED state
            ExecutionFailed:        batch rolled back; proposal stays SUCCEEDED
            LedgerHalted:           history ledger refuses the amendment
        """
        with self._mutating(proposal_id):
            proposal = self._proposal(proposal_id)
            if proposal.state == ProposalState.FAILED:
                raise ThresholdNotMet(f"Proposal {proposal_id} was defeated")
            if proposal.state != ProposalState.SUCCEEDED:
                raise InvalidStateTransition(
                    f"Cannot execute proposal {proposal_id} in state {proposal.state.name}"
                )
            if self.history.is_halted:
                raise LedgerHalted("History ledger halted; refusing execution")
            if self.history.config.verify_on_append:
                self.history.check_integrity()

            applied = self.executor.execute_batch(proposal.actions, proposal_id)

            now = self._now()
            outcome = self.history.get_history(proposal_id)
            self.history.record_history(
                proposal_id=proposal_id,
                context_id=outcome.context_id,
                category_id=outcome.category_id,
                module_id=outcome.module_id,
                participation_rate_bps=outcome.participation_rate_bps,
                execution_time_seconds=outcome.execution_time_seconds,
                succeeded=outcome.succeeded,
                executed=True,
            )
            proposal.transition_to(ProposalState.EXECUTED, f"{applied} action(s) applied", at=now)

        self._emit_state(proposal)
        return applied

    def cancel_proposal(self, caller: str, proposal_id: str) -> None:
        """
        Withdraw a PENDING / ACTIVE proposal.

        Raises:
            UnauthorizedCaller:     caller is neither creator nor allowed by policy
            InvalidStateTransition: proposal already settled
        """
        with self._mutating(proposal_id):
            proposal = self._proposal(proposal_id)
            allowed = caller == proposal.creator or (
                self._cancel_policy is not None and self._cancel_policy(caller, proposal)
            )
            if not allowed:
                raise UnauthorizedCaller(f"{caller} may not cancel proposal {proposal_id}")
            proposal.transition_to(ProposalState.CANCELED, f"canceled by {caller}", at=self._now())
            if self._is_private(proposal_id):
                self.privacy.close_session(proposal_id)

        self._emit_state(proposal)

    # ── Lifecycle queries ─────────────────────────────────────────────

    def get_proposal_state(self, proposal_id: str) -> ProposalState:
        with self._lock:
            return self._proposal(proposal_id).state

    def get_proposal(self, proposal_id: str) -> Dict[str, Any]:
        """Snapshot of the proposal, its context and its tally."""
        with self._lock:
            proposal = self._proposal(proposal_id)
            snapshot = proposal.to_dict()
            snapshot["context"] = self._contexts[proposal.context_id].to_dict()
            snapshot["tally"] = self._module(proposal).get_tally(proposal_id).to_dict()
            snapshot["private"] = self._is_private(proposal_id)
            return snapshot

    def get_context(self, proposal_id: str) -> Context:
        with self._lock:
            return self._contexts[self._proposal(proposal_id).context_id]

    def get_proposal_voting_module(self, proposal_id: str) -> int:
        with self._lock:
            return self._proposal(proposal_id).module_id

    def get_voting_power(self, voter: str, proposal_id: str, metadata: str = "") -> int:
        """Weight *voter* would cast now (vote metadata does not affect weight)."""
        with self._lock:
            proposal = self._proposal(proposal_id)
            return self._module(proposal).calculate_voting_power(voter, proposal_id)

    def get_tally(self, proposal_id: str) -> Dict[str, Any]:
        with self._lock:
            proposal = self._proposal(proposal_id)
            return self._module(proposal).get_tally(proposal_id).to_dict()

    def has_voted(self, proposal_id: str, voter: str) -> bool:
        with self._lock:
            proposal = self._proposal(proposal_id)
            return self._module(proposal).has_voted(proposal_id, voter)

    def proposals(self) -> List[Proposal]:
        with self._lock:
            return list(self._proposals.values())

    # ══════════════════════════════════════════════════════════════════
    #  COMMIT-REVEAL
    # ══════════════════════════════════════════════════════════════════

    def commit_vote(self, proposal_id: str, voter: str, commitment: str) -> Commitment:
        with self._mutating(proposal_id):
            proposal = self._proposal(proposal_id)
            if proposal.state != ProposalState.ACTIVE:
                raise ProposalNotActive(f"Proposal {proposal_id} is {proposal.state.name}")
            if not self._is_private(proposal_id):
                raise PhaseClosed(f"Proposal {proposal_id} does not use commit-reveal")
            return self.privacy.commit_vote(proposal_id, voter, commitment)

    def reveal_vote(
        self,
        proposal_id: str,
        voter: str,
        support: bool,
        salt: Union[bytes, str],
        expertise_proof: Optional[Iterable[int]] = None,
        metadata: str = "",
    ) -> VoteRecord:
        with self._mutating(proposal_id):
            proposal = self._proposal(proposal_id)
            if proposal.state != ProposalState.ACTIVE:
                raise ProposalNotActive(f"Proposal {proposal_id} is {proposal.state.name}")
            if not self._is_private(proposal_id):
                raise PhaseClosed(f"Proposal {proposal_id} does not use commit-reveal")
            vote = self.privacy.reveal_vote(
                proposal_id, voter, support, salt,
                expertise_proof=expertise_proof, metadata=metadata,
            )

        self.events.emit(
            EventKind.VOTE_CAST,
            proposalId=proposal_id,
            voter=voter,
            support=vote.support,
            weight=vote.weight,
        )
        return vote

    def get_phase(self, proposal_id: str) -> Optional[Phase]:
        with self._lock:
            self._proposal(proposal_id)
            if not self._is_private(proposal_id):
                return None
            return self.privacy.get_phase(proposal_id)

    def is_commit_phase_active(self, proposal_id: str) -> bool:
        return self.get_phase(proposal_id) == Phase.COMMIT_OPEN

    def is_reveal_phase_active(self, proposal_id: str) -> bool:
        return self.get_phase(proposal_id) == Phase.REVEAL_OPEN

    def get_commit_count(self, proposal_id: str) -> int:
        with self._lock:
            self._proposal(proposal_id)
            if not self._is_private(proposal_id):
                return 0
            return self.privacy.get_commit_count(proposal_id)

    def get_reveal_count(self, proposal_id: str) -> int:
        with self._lock:
            self._proposal(proposal_id)
            if not self._is_private(proposal_id):
                return 0
            return self.privacy.get_reveal_count(proposal_id)

    # ══════════════════════════════════════════════════════════════════
    #  MODULE REGISTRY
    # ══════════════════════════════════════════════════════════════════

    def register_module(self, descriptor: VotingModuleDescriptor) -> VotingModuleDescriptor:
        return self.selector.register_module(descriptor)

    def add_module(
        self,
        module_id: int,
        kind: ModuleKind,
        suitable_categories: Iterable[int],
        min_urgency: int = 0,
        max_urgency: int = MAX_URGENCY_LEVEL,
        requires_privacy: bool = False,
        name: str = "",
        **strategy_kwargs: Any,
    ) -> VotingModuleDescriptor:
        """
        Build a strategy wired to this engine's balances, voting config and
        expertise ledger, then register it.
        """
        strategy = build_module(
            kind,
            self._get_balance,
            config=self.config.voting,
            expertise=self.expertise,
            **strategy_kwargs,
        )
        return self.register_module(VotingModuleDescriptor(
            module_id=module_id,
            suitable_categories=frozenset(suitable_categories),
            min_urgency=min_urgency,
            max_urgency=max_urgency,
            strategy=strategy,
            requires_privacy=requires_privacy,
            name=name or ModuleKind(kind).name.lower(),
        ))

    def get_module(self, module_id: int) -> VotingModuleDescriptor:
        return self.selector.get_module(module_id)

    def get_optimal_module(self, context_params: Union[Context, Mapping[str, Any]]) -> VotingModuleDescriptor:
        """Module a proposal with these parameters would be bound to now."""
        if isinstance(context_params, Context):
            context = context_params
        else:
            context = Context.from_params(0, context_params)
        return self.selector.get_optimal_module(context)

    def update_module_performance(
        self,
        module_id: int,
        category_id: int,
        participation_bps: int,
        execution_time: int,
        succeeded: bool,
    ) -> ModuleStats:
        return self.selector.update_performance(
            module_id, category_id, participation_bps, execution_time, succeeded,
        )

    # ══════════════════════════════════════════════════════════════════
    #  EXPERTISE
    # ══════════════════════════════════════════════════════════════════

    def add_verifier(self, domain_id: int, account: str) -> None:
        self.expertise.add_verifier(domain_id, account)

    def remove_verifier(self, domain_id: int, account: str) -> None:
        self.expertise.remove_verifier(domain_id, account)

    def is_verifier(self, domain_id: int, account: str) -> bool:
        return self.expertise.is_verifier(domain_id, account)

    def verify_expertise(
        self,
        verifier: str,
        account: str,
        domain_id: int,
        score: int,
        valid_until: float,
        metadata: str = "",
    ) -> Optional[ExpertiseRecord]:
        return self.expertise.verify_expertise(verifier, account, domain_id, score, valid_until, metadata)

    def get_expertise(self, account: str, domain_id: int, at: Optional[float] = None) -> int:
        return self.expertise.get_expertise(account, domain_id, at=at)

    # ══════════════════════════════════════════════════════════════════
    #  HISTORY
    # ══════════════════════════════════════════════════════════════════

    def record_history(self, *args: Any, **kwargs: Any) -> str:
        return self.history.record_history(*args, **kwargs)

    def get_history(self, proposal_id: str) -> Optional[HistoryRecord]:
        return self.history.get_history(proposal_id)

    def get_module_performance(self, module_id: int, category_id: int = 0) -> ModulePerformance:
        return self.history.get_module_performance(module_id, category_id)

    def get_history_proof(self, proposal_id: str) -> Optional[Tuple[HistoryRecord, MerkleProof]]:
        """Latest record for *proposal_id* with its inclusion proof."""
        return self.history.get_latest_proof(proposal_id)

    def verify_historical_data(
        self,
        proposal_id: str,
        data: Union[HistoryRecord, Mapping[str, Any], bytes],
        proof: Union[MerkleProof, Mapping[str, Any]],
    ) -> bool:
        return self.history.verify_historical_data(proposal_id, data, proof)

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            counts: Dict[str, int] = {}
            for p in self._proposals.values():
                counts[p.state.name] = counts.get(p.state.name, 0) + 1
            return {
                "proposals": len(self._proposals),
                "byState": counts,
                "selector": self.selector.to_dict(),
                "expertise": self.expertise.to_dict(),
                "history": self.history.to_dict(),
                "privacy": self.privacy.to_dict(),
                "executor": self.executor.to_dict(),
                "events": len(self.events),
            }

    def __repr__(self) -> str:
        return f"<GovernanceEngine proposals={len(self._proposals)}>"
