"""
Expertise Ledger

Per-account, per-domain expertise scores backed by multi-verifier consensus.

  - A single attestation never takes effect on its own: a record is only
    (re)computed once ``min_verifiers`` distinct verifiers have attested
    within the rolling attestation window.
  - The effective score is the average (or median) of the accepted
    attestations, so no single verifier controls the outcome.
  - Scores are stored pre-decay. Reads apply a linear decay from
    ``last_verified_at`` down to ``decay_floor_bps`` at ``valid_until``;
    past ``valid_until`` the record reads as 0.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..config.loader import ExpertiseConfig
from ..constants import BPS_DENOMINATOR, EXPERTISE_MAX_SCORE, EXPERTISE_MIN_SCORE
from ..events import EventKind, EventLog
from ..exceptions import InvalidAttestation, UnauthorizedVerifier
from ..logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Attestation:
    """One verifier's claim about an account's expertise."""
    verifier: str
    score: int
    valid_until: float
    attested_at: float
    metadata: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verifier": self.verifier,
            "score": self.score,
            "validUntil": self.valid_until,
            "attestedAt": self.attested_at,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ExpertiseRecord:
    """Aggregated, pre-decay expertise for (account, domain)."""
    account: str
    domain_id: int
    score: int
    valid_until: float
    last_verified_at: float
    verifiers: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "domainId": self.domain_id,
            "score": self.score,
            "validUntil": self.valid_until,
            "lastVerifiedAt": self.last_verified_at,
            "verifiers": list(self.verifiers),
        }


def aggregate_scores(scores: List[int], policy: str = "average") -> int:
    """Integer aggregate of attested scores (truncating)."""
    if not scores:
        return 0
    if policy == "median":
        ordered = sorted(scores)
        mid = len(ordered) // 2
        if len(ordered) % 2:
            return ordered[mid]
        return (ordered[mid - 1] + ordered[mid]) // 2
    return sum(scores) // len(scores)


def decay_factor_bps(
    last_verified_at: float,
    valid_until: float,
    at: float,
    floor_bps: int,
) -> int:
    """
    Linear decay multiplier in basis points.

    10000 at ``last_verified_at``, ``floor_bps`` at ``valid_until``,
    0 afterwards. Monotonically non-increasing in *at*.
    """
    if at > valid_until:
        return 0
    elapsed = int(at - last_verified_at)
    if elapsed <= 0:
        return BPS_DENOMINATOR
    span = max(1, int(valid_until - last_verified_at))
    elapsed = min(elapsed, span)
    return BPS_DENOMINATOR - (BPS_DENOMINATOR - floor_bps) * elapsed // span


class ExpertiseLedger:
    """
    Verified, decaying expertise per (account, domain).

    Verifier bookkeeping is kept to the minimum the ledger needs
    (add / remove / is_verifier); richer domain registries live outside
    the engine.
    """

    def __init__(
        self,
        config: Optional[ExpertiseConfig] = None,
        now_fn: Optional[Callable[[], float]] = None,
        events: Optional[EventLog] = None,
    ):
        self.config = config or ExpertiseConfig()
        self._now = now_fn or time.time
        self._events = events or EventLog(now_fn=self._now)

        self._verifiers: Dict[int, Set[str]] = {}
        self._pending: Dict[Tuple[str, int], Dict[str, Attestation]] = {}
        self._records: Dict[Tuple[str, int], ExpertiseRecord] = {}
        self._lock = threading.RLock()

    # ── Verifier bookkeeping ──────────────────────────────────────────

    def add_verifier(self, domain_id: int, account: str) -> None:
        if not account:
            raise InvalidAttestation("Verifier account is required")
        with self._lock:
            self._verifiers.setdefault(domain_id, set()).add(account)
        logger.info(f"Verifier {account} authorized for domain {domain_id}")

    def remove_verifier(self, domain_id: int, account: str) -> None:
        """Revoke *account* and drop its pending attestations in *domain_id*."""
        with self._lock:
            self._verifiers.get(domain_id, set()).discard(account)
            dropped = 0
            for (_, domain), pending in self._pending.items():
                if domain == domain_id and pending.pop(account, None) is not None:
                    dropped += 1
        logger.info(
            f"Verifier {account} revoked for domain {domain_id} "
            f"({dropped} pending attestations dropped)"
        )

    def is_verifier(self, domain_id: int, account: str) -> bool:
        with self._lock:
            return account in self._verifiers.get(domain_id, set())

    def domain_verifiers(self, domain_id: int) -> List[str]:
        with self._lock:
            return sorted(self._verifiers.get(domain_id, set()))

    # ── Attestation ───────────────────────────────────────────────────

    def verify_expertise(
        self,
        verifier: str,
        account: str,
        domain_id: int,
        score: int,
        valid_until: float,
        metadata: str = "",
    ) -> Optional[ExpertiseRecord]:
        """
        Record *verifier*'s attestation of *account* in *domain_id*.

        Returns the freshly aggregated record once the verifier quorum is
        met inside the window, otherwise None (attestation kept pending).

        Raises:
            UnauthorizedVerifier: verifier not authorized for the domain
            InvalidAttestation:   score outside 0..100 or validity in the past
        """
        now = self._now()
        if not self.is_verifier(domain_id, verifier):
            raise UnauthorizedVerifier(
                f"{verifier} is not a verifier for domain {domain_id}"
            )
        if not account:
            raise InvalidAttestation("Attested account is required")
        if isinstance(score, bool) or not isinstance(score, int) or \
                not EXPERTISE_MIN_SCORE <= score <= EXPERTISE_MAX_SCORE:
            raise InvalidAttestation(
                f"Score must be within {EXPERTISE_MIN_SCORE}..{EXPERTISE_MAX_SCORE}, got {score!r}"
            )
        if valid_until <= now:
            raise InvalidAttestation(f"valid_until {valid_until} is not in the future")

        key = (account, domain_id)
        with self._lock:
            pending = self._pending.setdefault(key, {})
            window_start = now - self.config.attestation_window_seconds
            # Outside the window or already expired
            for stale in [v for v, a in pending.items()
                          if a.attested_at < window_start or a.valid_until <= now]:
                del pending[stale]

            # Latest attestation per verifier
            pending[verifier] = Attestation(
                verifier=verifier,
                score=score,
                valid_until=valid_until,
                attested_at=now,
                metadata=metadata,
            )

            record = None
            if len(pending) >= self.config.min_verifiers:
                accepted = sorted(pending.values(), key=lambda a: a.verifier)
                record = ExpertiseRecord(
                    account=account,
                    domain_id=domain_id,
                    score=aggregate_scores([a.score for a in accepted], self.config.aggregation),
                    valid_until=min(a.valid_until for a in accepted),
                    last_verified_at=now,
                    verifiers=tuple(a.verifier for a in accepted),
                )
                self._records[key] = record
            pending_count = len(pending)

        if record is not None:
            logger.info(
                f"Expertise effective: {account} domain {domain_id} score={record.score} "
                f"({pending_count} verifiers, {self.config.aggregation})"
            )
        else:
            logger.info(
                f"Expertise attestation pending: {account} domain {domain_id} "
                f"({pending_count}/{self.config.min_verifiers} verifiers)"
            )

        self._events.emit(
            EventKind.EXPERTISE_VERIFIED,
            account=account,
            domainId=domain_id,
            verifier=verifier,
            attestedScore=score,
            pendingVerifiers=pending_count,
            effective=record is not None,
            effectiveScore=record.score if record else None,
        )
        return record

    # ── Reads ─────────────────────────────────────────────────────────

    def get_record(self, account: str, domain_id: int) -> Optional[ExpertiseRecord]:
        """Raw, pre-decay record (None if quorum was never met)."""
        with self._lock:
            return self._records.get((account, domain_id))

    def get_pending_count(self, account: str, domain_id: int) -> int:
        with self._lock:
            return len(self._pending.get((account, domain_id), {}))

    def get_expertise(self, account: str, domain_id: int, at: Optional[float] = None) -> int:
        """Effective (decayed) score at *at* (default: now). 0 when absent or expired."""
        record = self.get_record(account, domain_id)
        if record is None:
            return 0
        when = self._now() if at is None else at
        factor = decay_factor_bps(
            record.last_verified_at,
            record.valid_until,
            when,
            self.config.decay_floor_bps,
        )
        return record.score * factor // BPS_DENOMINATOR

    def average_expertise(self, account: str, domains, at: Optional[float] = None) -> int:
        """Integer mean effective score over *domains* (0 for an empty set)."""
        domains = sorted(domains)
        if not domains:
            return 0
        return sum(self.get_expertise(account, d, at) for d in domains) // len(domains)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "domains": {d: sorted(v) for d, v in self._verifiers.items()},
                "records": len(self._records),
                "pending": sum(len(p) for p in self._pending.values()),
                "minVerifiers": self.config.min_verifiers,
                "aggregation": self.config.aggregation,
            }

    def __repr__(self) -> str:
        return f"<ExpertiseLedger records={len(self._records)} domains={len(self._verifiers)}>"
