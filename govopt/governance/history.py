"""
History Ledger

Append-only record of terminal proposal outcomes.

Every HistoryRecord is canonically encoded, hashed into a Merkle leaf and
folded into a running hash chain as it is appended. Entries are never
mutated: when a succeeded proposal is later executed, an amended entry with
``executed=True`` is appended and reads return the latest entry per
proposal.

Before each write the cached root is checked against a root recomputed from
the leaves. A mismatch is an internal invariant violation: the ledger logs
it, halts, and refuses all further writes.
"""

import json
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..config.loader import HistoryConfig
from ..constants import BPS_DENOMINATOR, HASH_SIZE
from ..crypto.hashing import keccak256
from ..crypto.merkle import (
    EMPTY_ROOT,
    MerkleProof,
    build_proof,
    compute_root,
    hash_leaf,
    verify_proof,
)
from ..events import EventKind, EventLog
from ..exceptions import LedgerCorrupted, LedgerHalted, MerkleProofInvalid
from ..logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class HistoryRecord:
    """Outcome of one terminal proposal (or its execution amendment)."""
    proposal_id: str
    context_id: int
    category_id: int
    module_id: int
    participation_rate_bps: int
    execution_time_seconds: int
    succeeded: bool
    executed: bool
    recorded_at: float

    def encode(self) -> bytes:
        """Canonical byte encoding used for the Merkle leaf."""
        return json.dumps(asdict(self), sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> "HistoryRecord":
        return cls(**json.loads(data.decode("utf-8")))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "contextId": self.context_id,
            "categoryId": self.category_id,
            "moduleId": self.module_id,
            "participationRateBps": self.participation_rate_bps,
            "executionTimeSeconds": self.execution_time_seconds,
            "succeeded": self.succeeded,
            "executed": self.executed,
            "recordedAt": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HistoryRecord":
        return cls(
            proposal_id=data["proposalId"],
            context_id=data["contextId"],
            category_id=data["categoryId"],
            module_id=data["moduleId"],
            participation_rate_bps=data["participationRateBps"],
            execution_time_seconds=data["executionTimeSeconds"],
            succeeded=data["succeeded"],
            executed=data["executed"],
            recorded_at=data["recordedAt"],
        )


@dataclass(frozen=True)
class ModulePerformance:
    """Aggregated outcome statistics for a module (optionally per category)."""
    module_id: int
    category_id: int
    avg_participation_bps: int
    avg_execution_time: int
    success_rate_bps: int
    samples: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moduleId": self.module_id,
            "categoryId": self.category_id,
            "avgParticipationBps": self.avg_participation_bps,
            "avgExecutionTime": self.avg_execution_time,
            "successRateBps": self.success_rate_bps,
            "samples": self.samples,
        }


HistoryData = Union[HistoryRecord, Mapping[str, Any], bytes]


class HistoryLedger:
    """
    Merkle-rooted, hash-chained arena of HistoryRecord leaves.
    """

    def __init__(
        self,
        config: Optional[HistoryConfig] = None,
        now_fn: Optional[Callable[[], float]] = None,
        events: Optional[EventLog] = None,
    ):
        self.config = config or HistoryConfig()
        self._now = now_fn or time.time
        self._events = events or EventLog(now_fn=self._now)

        self._records: List[HistoryRecord] = []
        self._leaves: List[bytes] = []
        self._by_proposal: Dict[str, List[int]] = {}
        self._root: bytes = EMPTY_ROOT
        self._chain_head: bytes = bytes(HASH_SIZE)
        self._halted = False
        self._lock = threading.RLock()

    # ── Properties ────────────────────────────────────────────────────

    @property
    def data_root(self) -> str:
        with self._lock:
            return "0x" + self._root.hex()

    @property
    def chain_head(self) -> str:
        with self._lock:
            return "0x" + self._chain_head.hex()

    @property
    def is_halted(self) -> bool:
        return self._halted

    def __len__(self) -> int:
        return len(self._records)

    # ── Integrity ─────────────────────────────────────────────────────

    def _recompute(self) -> Tuple[bytes, bytes]:
        head = bytes(HASH_SIZE)
        for record, leaf in zip(self._records, self._leaves):
            if hash_leaf(record.encode()) != leaf:
                raise LedgerCorrupted(f"Leaf mismatch for proposal {record.proposal_id}")
            head = keccak256(head + leaf)
        return compute_root(self._leaves), head

    def check_integrity(self) -> bool:
        """
        Recompute root and chain head from the leaves and compare.

        Raises:
            LedgerCorrupted: on any divergence (the ledger halts)
        """
        with self._lock:
            try:
                root, head = self._recompute()
                if root != self._root or head != self._chain_head or \
                        len(self._records) != len(self._leaves):
                    raise LedgerCorrupted(
                        f"Cached root {self._root.hex()} diverged from leaves ({root.hex()})"
                    )
            except LedgerCorrupted:
                self._halted = True
                logger.critical("History ledger corrupted; halting further writes")
                raise
            return True

    # ── Write path ────────────────────────────────────────────────────

    def record_history(
        self,
        proposal_id: str,
        context_id: int,
        category_id: int,
        module_id: int,
        participation_rate_bps: int,
        execution_time_seconds: int,
        succeeded: bool,
        executed: bool = False,
    ) -> str:
        """
        Append an outcome and return the new data root (0x hex).

        Raises:
            LedgerHalted:    ledger halted on an earlier corruption
            LedgerCorrupted: integrity check failed just now (ledger halts)
            ValueError:      out-of-range participation / execution time
        """
        if not 0 <= participation_rate_bps <= BPS_DENOMINATOR:
            raise ValueError(f"participation_rate_bps out of range: {participation_rate_bps}")
        if execution_time_seconds < 0:
            raise ValueError(f"execution_time_seconds must be >= 0: {execution_time_seconds}")

        with self._lock:
            if self._halted:
                raise LedgerHalted("History ledger halted; refusing write")
            if self.config.verify_on_append:
                self.check_integrity()

            record = HistoryRecord(
                proposal_id=proposal_id,
                context_id=context_id,
                category_id=category_id,
                module_id=module_id,
                participation_rate_bps=participation_rate_bps,
                execution_time_seconds=execution_time_seconds,
                succeeded=succeeded,
                executed=executed,
                recorded_at=self._now(),
            )
            leaf = hash_leaf(record.encode())
            index = len(self._records)

            self._records.append(record)
            self._leaves.append(leaf)
            self._by_proposal.setdefault(proposal_id, []).append(index)
            self._root = compute_root(self._leaves)
            self._chain_head = keccak256(self._chain_head + leaf)
            root_hex = "0x" + self._root.hex()

        logger.info(
            f"History #{index}: proposal {proposal_id[:18]} module #{module_id} "
            f"succeeded={succeeded} executed={executed} root={root_hex[:18]}"
        )
        self._events.emit(
            EventKind.HISTORY_RECORDED,
            proposalId=proposal_id,
            index=index,
            moduleId=module_id,
            succeeded=succeeded,
            executed=executed,
            dataRoot=root_hex,
        )
        return root_hex

    # ── Read path ─────────────────────────────────────────────────────

    def get_history(self, proposal_id: str) -> Optional[HistoryRecord]:
        """Latest entry for *proposal_id* (None if never recorded)."""
        with self._lock:
            indices = self._by_proposal.get(proposal_id)
            return self._records[indices[-1]] if indices else None

    def get_history_entries(self, proposal_id: str) -> List[Tuple[int, HistoryRecord]]:
        """All (index, record) entries for *proposal_id*, oldest first."""
        with self._lock:
            return [(i, self._records[i]) for i in self._by_proposal.get(proposal_id, [])]

    def get_record(self, index: int) -> HistoryRecord:
        with self._lock:
            return self._records[index]

    def get_proof(self, index: int) -> MerkleProof:
        with self._lock:
            return build_proof(self._leaves, index)

    def get_latest_proof(self, proposal_id: str) -> Optional[Tuple[HistoryRecord, MerkleProof]]:
        with self._lock:
            indices = self._by_proposal.get(proposal_id)
            if not indices:
                return None
            return self._records[indices[-1]], build_proof(self._leaves, indices[-1])

    def verify_historical_data(
        self,
        proposal_id: str,
        data: HistoryData,
        proof: Union[MerkleProof, Mapping[str, Any]],
    ) -> bool:
        """
        Check that *data* is included under the current root.

        *data* may be a HistoryRecord, its ``to_dict()`` form, or its
        canonical encoding. Malformed input verifies as False.
        """
        try:
            if isinstance(data, HistoryRecord):
                record = data
            elif isinstance(data, (bytes, bytearray)):
                record = HistoryRecord.decode(bytes(data))
            else:
                record = HistoryRecord.from_dict(data)
            if not isinstance(proof, MerkleProof):
                proof = MerkleProof.from_dict(proof)
        except (KeyError, TypeError, ValueError, AttributeError):
            return False

        if record.proposal_id != proposal_id:
            return False

        leaf = hash_leaf(record.encode())
        with self._lock:
            return verify_proof(leaf, proof, self._root, leaf_count=len(self._leaves))

    def require_valid_history(
        self,
        proposal_id: str,
        data: HistoryData,
        proof: Union[MerkleProof, Mapping[str, Any]],
    ) -> None:
        """Raising variant of verify_historical_data."""
        if not self.verify_historical_data(proposal_id, data, proof):
            raise MerkleProofInvalid(f"History proof for {proposal_id} does not verify")

    def get_module_performance(self, module_id: int, category_id: int = 0) -> ModulePerformance:
        """
        Aggregate the latest entry of every proposal bound to *module_id*.

        A zero *category_id* matches every category.
        """
        with self._lock:
            latest = [self._records[idx[-1]] for idx in self._by_proposal.values()]

        matching = [
            r for r in latest
            if r.module_id == module_id and (category_id == 0 or r.category_id == category_id)
        ]
        n = len(matching)
        if n == 0:
            return ModulePerformance(module_id, category_id, 0, 0, 0, 0)
        return ModulePerformance(
            module_id=module_id,
            category_id=category_id,
            avg_participation_bps=sum(r.participation_rate_bps for r in matching) // n,
            avg_execution_time=sum(r.execution_time_seconds for r in matching) // n,
            success_rate_bps=sum(1 for r in matching if r.succeeded) * BPS_DENOMINATOR // n,
            samples=n,
        )

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._records),
                "proposals": len(self._by_proposal),
                "dataRoot": "0x" + self._root.hex(),
                "chainHead": "0x" + self._chain_head.hex(),
                "halted": self._halted,
            }

    def __repr__(self) -> str:
        return f"<HistoryLedger entries={len(self._records)} halted={self._halted}>"
