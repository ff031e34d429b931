"""
Governance Engine Exceptions

Custom exception classes for the governance optimization engine. Every
recoverable error leaves proposal and ledger state exactly as it was before
the failing call.
"""


class GovOptException(Exception):
    """Base exception for the engine."""
    pass


class ConfigurationError(GovOptException):
    """Configuration error."""
    pass


class GovernanceError(GovOptException):
    """Base governance exception."""
    pass


# ── Proposals & lifecycle ────────────────────────────────────────────

class InvalidContext(GovernanceError):
    """Context parameters (category, urgency, domains, actions) are malformed."""


class UnknownProposal(GovernanceError):
    """No proposal with the given id."""


class ProposalNotActive(GovernanceError):
    """Vote or finalize called outside the ACTIVE state."""


class InvalidStateTransition(GovernanceError):
    """Illegal lifecycle transition."""


class UnauthorizedCaller(GovernanceError):
    """Caller may not perform this operation on the proposal."""


class QuorumNotMet(GovernanceError):
    """Finalize called before quorum was reached and before the voting deadline."""


class ThresholdNotMet(GovernanceError):
    """Execution attempted on a proposal whose approval fell below threshold."""


class ExecutionFailed(GovernanceError):
    """Target action batch failed and was rolled back; proposal stays SUCCEEDED."""


class ReentrancyRejected(GovernanceError):
    """A mutation of a proposal was attempted while another is in progress."""


# ── Module registry & selection ──────────────────────────────────────

class NoSuitableModule(GovernanceError):
    """No registered module matches the context's category and urgency."""


class UnknownModule(GovernanceError):
    """No module registered under the given id."""


class DuplicateModule(GovernanceError):
    """Module id already registered."""


class InvalidModule(GovernanceError):
    """Module descriptor is malformed."""


# ── Voting ───────────────────────────────────────────────────────────

class DuplicateVote(GovernanceError):
    """Voter already has a counted vote on this proposal."""


class InsufficientVotingPower(GovernanceError):
    """Voter resolves to zero weight under the bound module."""


# ── Commit-reveal ────────────────────────────────────────────────────

class PrivacyRequired(GovernanceError):
    """Direct vote attempted on a proposal that uses commit-reveal."""


class PhaseError(GovernanceError):
    """Base error for commit-reveal phase violations."""


class PhaseClosed(PhaseError):
    """Commit or reveal called outside its window."""


class PhaseStillOpen(PhaseError):
    """Tally requested while the reveal window is still open."""


class DuplicateCommitment(GovernanceError):
    """Voter already holds a live commitment on this proposal."""


class NoCommitment(GovernanceError):
    """Reveal attempted without a prior commitment."""


class InvalidCommitment(GovernanceError):
    """Commitment digest is not a 32-byte hex string."""


class CommitmentMismatch(GovernanceError):
    """hash(support, salt) does not match the stored commitment."""


class ExpertiseRequired(GovernanceError):
    """Voter lacks verified expertise in a domain the context requires."""


# ── Expertise ────────────────────────────────────────────────────────

class UnauthorizedVerifier(GovernanceError):
    """Attestation from an account that is not a verifier for the domain."""


class InvalidAttestation(GovernanceError):
    """Attested score or validity window is out of range."""


# ── History ledger ───────────────────────────────────────────────────

class MerkleProofInvalid(GovernanceError):
    """Inclusion proof does not verify against the current root."""


class LedgerCorrupted(GovOptException):
    """Cached root diverged from the leaves. Fatal: the ledger halts."""


class LedgerHalted(GovOptException):
    """Write attempted after the ledger halted on corruption."""
