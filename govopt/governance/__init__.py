"""
Context-Aware Governance

Provides:
  - ProposalState / Context / TargetAction / Proposal           (proposals.py)
  - ModuleKind / VotingModule strategies / Tally                (modules.py)
  - VotingModuleDescriptor / ModuleSelector                     (selector.py)
  - ExpertiseLedger / ExpertiseRecord                           (expertise.py)
  - HistoryLedger / HistoryRecord / ModulePerformance           (history.py)
  - PrivacyGate / Commitment / commitment_hash                  (privacy.py)
  - ActionExecutor                                              (execution.py)
  - GovernanceEngine                                            (engine.py)
"""

from .proposals import (
    Context,
    Proposal,
    ProposalState,
    TargetAction,
    TERMINAL_STATES,
    derive_proposal_id,
    parse_actions,
)
from .modules import (
    MODULE_STRATEGIES,
    ExpertiseWeightedModule,
    HybridModule,
    ModuleKind,
    QuadraticModule,
    StakeholderPriorityModule,
    Tally,
    TokenWeightedModule,
    VoteRecord,
    VotingModule,
    build_module,
)
from .expertise import (
    Attestation,
    ExpertiseLedger,
    ExpertiseRecord,
    aggregate_scores,
    decay_factor_bps,
)
from .history import (
    HistoryLedger,
    HistoryRecord,
    ModulePerformance,
)
from .selector import (
    ModuleSelector,
    ModuleStats,
    VotingModuleDescriptor,
)
from .privacy import (
    Commitment,
    Phase,
    PrivacyGate,
    PrivacySession,
    commitment_hash,
)
from .execution import ActionExecutor
from .engine import GovernanceEngine

__all__ = [
    # Proposals
    "Context",
    "Proposal",
    "ProposalState",
    "TargetAction",
    "TERMINAL_STATES",
    "derive_proposal_id",
    "parse_actions",
    # Modules
    "MODULE_STRATEGIES",
    "ExpertiseWeightedModule",
    "HybridModule",
    "ModuleKind",
    "QuadraticModule",
    "StakeholderPriorityModule",
    "Tally",
    "TokenWeightedModule",
    "VoteRecord",
    "VotingModule",
    "build_module",
    # Expertise
    "Attestation",
    "ExpertiseLedger",
    "ExpertiseRecord",
    "aggregate_scores",
    "decay_factor_bps",
    # History
    "HistoryLedger",
    "HistoryRecord",
    "ModulePerformance",
    # Selector
    "ModuleSelector",
    "ModuleStats",
    "VotingModuleDescriptor",
    # Privacy
    "Commitment",
    "Phase",
    "PrivacyGate",
    "PrivacySession",
    "commitment_hash",
    # Execution
    "ActionExecutor",
    "GovernanceEngine",
]
