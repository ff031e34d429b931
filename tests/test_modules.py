"""
Voting Module Test Suite

Coverage:
  - Token-weighted, quadratic, expertise-weighted, hybrid and
    stakeholder-priority weight formulas
  - Shared tally: duplicate and zero-weight votes
  - Urgency-discounted quorum and truncating approval threshold
  - Strategy registry
"""

import math
import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from govopt.config.loader import VotingConfig
from govopt.exceptions import (
    DuplicateVote,
    GovernanceError,
    InsufficientVotingPower,
    InvalidModule,
    UnknownProposal,
)
from govopt.governance.expertise import ExpertiseLedger
from govopt.governance.modules import (
    MODULE_STRATEGIES,
    HybridModule,
    ModuleKind,
    QuadraticModule,
    StakeholderPriorityModule,
    TokenWeightedModule,
    build_module,
)
from govopt.governance.proposals import Context


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

T0 = 1_700_000_000.0
YEAR = 365 * 86400

PID = "0x" + "11" * 32
DOMAIN = 3

ALICE = "0xPQ" + "A1" * 32
BOB = "0xPQ" + "B2" * 32
CAROL = "0xPQ" + "C3" * 32
DAVE = "0xPQ" + "D4" * 32
V1 = "0xPQ" + "E1" * 32
V2 = "0xPQ" + "E2" * 32

BALANCES = {ALICE: 10_000, BOB: 400, CAROL: 0, DAVE: 99}


def balance_of(account: str) -> int:
    return BALANCES.get(account, 0)


def make_context(**params):
    return Context.from_params(1, {"category_id": 1, **params})


def make_module(kind, context=None, balance_fn=balance_of, **kwargs):
    module = build_module(kind, balance_fn, **kwargs)
    module.initialize(PID, context or make_context())
    return module


def make_expertise(score_pairs):
    """ExpertiseLedger where each (account, s1, s2) is verified in DOMAIN."""
    ledger = ExpertiseLedger(now_fn=lambda: T0)
    ledger.add_verifier(DOMAIN, V1)
    ledger.add_verifier(DOMAIN, V2)
    for account, s1, s2 in score_pairs:
        ledger.verify_expertise(V1, account, DOMAIN, s1, T0 + YEAR)
        ledger.verify_expertise(V2, account, DOMAIN, s2, T0 + YEAR)
    return ledger


# ══════════════════════════════════════════════════════════════════════
#  TOKEN WEIGHTED
# ══════════════════════════════════════════════════════════════════════

class TestTokenWeighted:
    """1 token = 1 vote, plus the shared tally rules."""

    def test_power_is_balance(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED)
        assert module.calculate_voting_power(ALICE, PID) == 10_000
        assert module.calculate_voting_power(BOB, PID) == 400

    def test_record_vote_updates_tally(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED)
        vote = module.record_vote(PID, ALICE, True, metadata="ipfs://reason")
        module.record_vote(PID, BOB, False)
        tally = module.get_tally(PID)
        assert vote.weight == 10_000
        assert vote.metadata == "ipfs://reason"
        assert tally.support_weight == 10_000
        assert tally.against_weight == 400
        assert tally.counted_balance == 10_400
        assert tally.voter_count == 2
        assert module.has_voted(PID, ALICE)

    def test_duplicate_vote(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED)
        module.record_vote(PID, ALICE, True)
        with pytest.raises(DuplicateVote):
            module.record_vote(PID, ALICE, False)
        assert module.get_tally(PID).support_weight == 10_000
        assert module.get_tally(PID).against_weight == 0

    def test_zero_weight_rejected(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED)
        with pytest.raises(InsufficientVotingPower):
            module.record_vote(PID, CAROL, True)
        assert not module.has_voted(PID, CAROL)
        assert module.get_tally(PID).total_weight == 0

    def test_unknown_proposal(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED)
        with pytest.raises(UnknownProposal):
            module.calculate_voting_power(ALICE, "0x" + "22" * 32)

    def test_double_initialize(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED)
        with pytest.raises(GovernanceError):
            module.initialize(PID, make_context())

    def test_invalid_balance_source(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED, balance_fn=lambda a: -5)
        with pytest.raises(GovernanceError):
            module.calculate_voting_power(ALICE, PID)


# ══════════════════════════════════════════════════════════════════════
#  QUADRATIC
# ══════════════════════════════════════════════════════════════════════

class TestQuadratic:
    """floor(sqrt(balance))."""

    @pytest.mark.parametrize("account,expected", [
        (ALICE, 100),
        (BOB, 20),
        (DAVE, 9),
        (CAROL, 0),
    ])
    def test_isqrt(self, account, expected):
        module = make_module(ModuleKind.QUADRATIC)
        assert module.calculate_voting_power(account, PID) == expected
        assert expected == math.isqrt(BALANCES[account])

    def test_zero_balance_cannot_vote(self):
        module = make_module(ModuleKind.QUADRATIC)
        with pytest.raises(InsufficientVotingPower):
            module.record_vote(PID, CAROL, True)

    def test_large_balance_exact(self):
        module = make_module(ModuleKind.QUADRATIC, balance_fn=lambda a: 10 ** 40 + 1)
        assert module.calculate_voting_power(ALICE, PID) == 10 ** 20


# ══════════════════════════════════════════════════════════════════════
#  EXPERTISE WEIGHTED
# ══════════════════════════════════════════════════════════════════════

class TestExpertiseWeighted:
    """Balance scaled by capped expertise boost."""

    def test_boost_from_average_score(self):
        ledger = make_expertise([(ALICE, 60, 80)])
        ctx = make_context(required_expertise=[DOMAIN])
        module = make_module(ModuleKind.EXPERTISE_WEIGHTED, ctx, expertise=ledger)
        # 10000 × (10000 + 7000) / 10000
        assert module.calculate_voting_power(ALICE, PID) == 17_000

    def test_no_expertise_is_plain_balance(self):
        ledger = make_expertise([(ALICE, 60, 80)])
        ctx = make_context(required_expertise=[DOMAIN])
        module = make_module(ModuleKind.EXPERTISE_WEIGHTED, ctx, expertise=ledger)
        assert module.calculate_voting_power(BOB, PID) == 400

    def test_no_required_domains(self):
        ledger = make_expertise([(ALICE, 60, 80)])
        module = make_module(ModuleKind.EXPERTISE_WEIGHTED, expertise=ledger)
        assert module.calculate_voting_power(ALICE, PID) == 10_000

    def test_boost_capped(self):
        ledger = make_expertise([(ALICE, 100, 100)])
        ctx = make_context(required_expertise=[DOMAIN])
        module = make_module(
            ModuleKind.EXPERTISE_WEIGHTED, ctx, expertise=ledger,
            config=VotingConfig(expertise_max_boost_bps=5000),
        )
        assert module.calculate_voting_power(ALICE, PID) == 15_000

    def test_average_over_domains(self):
        ledger = make_expertise([(ALICE, 60, 80)])
        ctx = make_context(required_expertise=[DOMAIN, DOMAIN + 1])
        module = make_module(ModuleKind.EXPERTISE_WEIGHTED, ctx, expertise=ledger)
        # mean(70, 0) = 35 → boost 3500 bps
        assert module.calculate_voting_power(ALICE, PID) == 13_500


# ══════════════════════════════════════════════════════════════════════
#  HYBRID
# ══════════════════════════════════════════════════════════════════════

class TestHybrid:
    """Convex blend of token and expertise weight."""

    def _module(self, blend_override=None, **kwargs):
        ledger = make_expertise([(ALICE, 60, 80)])
        params = {"required_expertise": [DOMAIN]}
        if blend_override is not None:
            params["hybrid_blend_bps"] = blend_override
        return make_module(ModuleKind.HYBRID, make_context(**params), expertise=ledger, **kwargs)

    def test_default_even_blend(self):
        assert self._module().calculate_voting_power(ALICE, PID) == 13_500

    def test_module_blend(self):
        module = self._module(blend_bps=2000)
        assert isinstance(module, HybridModule)
        assert module.calculate_voting_power(ALICE, PID) == 11_400

    def test_context_override_wins(self):
        assert self._module(0, blend_bps=2000).calculate_voting_power(ALICE, PID) == 10_000
        assert self._module(10_000, blend_bps=2000).calculate_voting_power(ALICE, PID) == 17_000

    def test_invalid_blend(self):
        with pytest.raises(InvalidModule):
            HybridModule(balance_of, blend_bps=10_001)


# ══════════════════════════════════════════════════════════════════════
#  STAKEHOLDER PRIORITY
# ══════════════════════════════════════════════════════════════════════

class TestStakeholderPriority:
    """Boost for listed stakeholders."""

    def test_stakeholder_boosted(self):
        module = make_module(ModuleKind.STAKEHOLDER_PRIORITY, make_context(stakeholders=[BOB]))
        assert module.calculate_voting_power(BOB, PID) == 800
        assert module.calculate_voting_power(ALICE, PID) == 10_000

    def test_custom_boost(self):
        module = make_module(
            ModuleKind.STAKEHOLDER_PRIORITY, make_context(stakeholders=[BOB]), boost_bps=15_000,
        )
        assert module.calculate_voting_power(BOB, PID) == 600

    def test_penalty_rejected(self):
        with pytest.raises(InvalidModule):
            StakeholderPriorityModule(balance_of, boost_bps=9_999)


# ══════════════════════════════════════════════════════════════════════
#  QUORUM & THRESHOLD
# ══════════════════════════════════════════════════════════════════════

class TestQuorumAndThreshold:
    """Shared pass / fail arithmetic."""

    @pytest.mark.parametrize("urgency,expected", [
        (0, 1000),
        (4, 800),
        (10, 500),
    ])
    def test_quorum_discount(self, urgency, expected):
        module = make_module(ModuleKind.TOKEN_WEIGHTED, make_context(urgency_level=urgency))
        assert module.get_quorum_requirement(PID) == expected

    def test_has_quorum(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED, quorum_weight=500)
        module.record_vote(PID, BOB, True)
        module.record_vote(PID, DAVE, True)
        assert module.get_tally(PID).total_weight == 499
        assert not module.has_quorum(PID)
        module.record_vote(PID, ALICE, False)
        assert module.has_quorum(PID)

    def _split(self, yes, no, threshold=5100):
        balances = {ALICE: yes, BOB: no}
        module = make_module(
            ModuleKind.TOKEN_WEIGHTED,
            balance_fn=lambda a: balances.get(a, 0),
            quorum_weight=0,
            approval_threshold_bps=threshold,
        )
        module.record_vote(PID, ALICE, True)
        module.record_vote(PID, BOB, False)
        return module

    def test_exact_threshold_passes(self):
        module = self._split(51, 49)
        assert module.approval_bps(PID) == 5100
        assert module.has_passed(PID)

    def test_truncated_ratio_fails(self):
        module = self._split(51, 50)
        assert module.approval_bps(PID) == 5049
        assert not module.has_passed(PID)

    def test_custom_threshold(self):
        assert self._split(2, 1, threshold=6666).has_passed(PID)
        assert not self._split(2, 1, threshold=6667).has_passed(PID)

    def test_zero_total_never_passes(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED, quorum_weight=0, approval_threshold_bps=0)
        assert module.has_quorum(PID)
        assert not module.has_passed(PID)

    def test_invalid_threshold(self):
        with pytest.raises(InvalidModule):
            TokenWeightedModule(balance_of, approval_threshold_bps=10_001)


# ══════════════════════════════════════════════════════════════════════
#  REGISTRY
# ══════════════════════════════════════════════════════════════════════

class TestBuildModule:
    """Closed strategy set."""

    def test_every_kind_registered(self):
        assert set(MODULE_STRATEGIES) == set(ModuleKind)
        for kind, cls in MODULE_STRATEGIES.items():
            assert cls.kind == kind

    def test_build_by_int(self):
        assert isinstance(build_module(2, balance_of), QuadraticModule)

    def test_unknown_kind(self):
        with pytest.raises(InvalidModule):
            build_module(99, balance_of)

    def test_to_dict(self):
        module = make_module(ModuleKind.TOKEN_WEIGHTED)
        snapshot = module.to_dict()
        assert snapshot["kind"] == "TOKEN_WEIGHTED"
        assert snapshot["proposals"] == 1
