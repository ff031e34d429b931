"""
Module Registry & Selector

Picks the voting module a new proposal is bound to.

Selection algorithm:
1. Filter registered modules by category membership and urgency range
2. Fail with NoSuitableModule if nothing survives the filter
3. Score each candidate from its per-(module, category) performance:
       w_success·success_bps + w_participation·participation_bps
       − w_exec_time·normalized_exec_bps
   using the running EWMA statistics when present, the history ledger's
   aggregates otherwise, and a neutral prior for modules with no data
4. Highest score wins; ties go to the lowest module id

Security properties:
- Selection is deterministic given the same registry and statistics
- New modules stay selectable through the neutral prior
"""

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..config.loader import SelectionConfig
from ..constants import BPS_DENOMINATOR, MAX_URGENCY_LEVEL, MIN_URGENCY_LEVEL
from ..events import EventKind, EventLog
from ..exceptions import DuplicateModule, InvalidModule, NoSuitableModule, UnknownModule
from ..logger import get_logger
from .history import HistoryLedger
from .modules import MODULE_STRATEGIES, ModuleKind, VotingModule
from .proposals import Context

logger = get_logger(__name__)


@dataclass(frozen=True)
class VotingModuleDescriptor:
    """
    Registry entry for one voting module.

    Fields:
        module_id:            Unique id (lower ids win score ties)
        suitable_categories:  Categories the module may be bound to
        min_urgency:          Lowest urgency level accepted (inclusive)
        max_urgency:          Highest urgency level accepted (inclusive)
        strategy:             Strategy instance (one of MODULE_STRATEGIES)
        requires_privacy:     Force commit-reveal for every bound proposal
    """
    module_id: int
    suitable_categories: FrozenSet[int]
    min_urgency: int
    max_urgency: int
    strategy: VotingModule = field(compare=False)
    requires_privacy: bool = False
    name: str = ""

    @property
    def kind(self) -> ModuleKind:
        return self.strategy.kind

    @property
    def expertise_weighted(self) -> bool:
        return self.kind in (ModuleKind.EXPERTISE_WEIGHTED, ModuleKind.HYBRID)

    @property
    def stakeholder_weighted(self) -> bool:
        return self.kind == ModuleKind.STAKEHOLDER_PRIORITY

    def supports(self, context: Context) -> bool:
        return (
            context.category_id in self.suitable_categories
            and self.min_urgency <= context.urgency_level <= self.max_urgency
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moduleId": self.module_id,
            "name": self.name,
            "kind": self.kind.name,
            "suitableCategories": sorted(self.suitable_categories),
            "minUrgency": self.min_urgency,
            "maxUrgency": self.max_urgency,
            "expertiseWeighted": self.expertise_weighted,
            "stakeholderWeighted": self.stakeholder_weighted,
            "requiresPrivacy": self.requires_privacy,
        }


@dataclass
class ModuleStats:
    """Exponentially-weighted running statistics for (module, category)."""
    success_bps: int = 0
    participation_bps: int = 0
    execution_time: int = 0
    samples: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successBps": self.success_bps,
            "participationBps": self.participation_bps,
            "executionTime": self.execution_time,
            "samples": self.samples,
        }


def _ewma(old: int, sample: int, alpha_bps: int) -> int:
    """
    Integer EWMA step, truncated toward zero in both directions.

    A non-zero gap always moves at least one unit so the average can
    reach the sample from either side.
    """
    delta = sample - old
    if delta == 0:
        return old
    step = abs(delta) * alpha_bps // BPS_DENOMINATOR
    step = max(step, 1)
    return old + step if delta > 0 else old - step


class ModuleSelector:
    """
    Module registry plus adaptive, history-driven selection.
    """

    def __init__(
        self,
        history: HistoryLedger,
        config: Optional[SelectionConfig] = None,
        events: Optional[EventLog] = None,
    ):
        self.config = config or SelectionConfig()
        self._history = history
        self._events = events or EventLog()

        self._modules: Dict[int, VotingModuleDescriptor] = {}
        self._stats: Dict[Tuple[int, int], ModuleStats] = {}
        self._lock = threading.RLock()

    # ── Registry ──────────────────────────────────────────────────────

    def register_module(self, descriptor: VotingModuleDescriptor) -> VotingModuleDescriptor:
        """
        Add *descriptor* to the registry.

        Raises:
            InvalidModule:   malformed id, categories, urgency range or strategy
            DuplicateModule: id already registered
        """
        mid = descriptor.module_id
        if isinstance(mid, bool) or not isinstance(mid, int) or mid < 0:
            raise InvalidModule(f"module_id must be a non-negative integer, got {mid!r}")
        categories = frozenset(descriptor.suitable_categories)
        if not categories:
            raise InvalidModule(f"Module #{mid} has no suitable categories")
        if any(isinstance(c, bool) or not isinstance(c, int) or c <= 0 for c in categories):
            raise InvalidModule(f"Module #{mid} categories must be positive integers")
        if not MIN_URGENCY_LEVEL <= descriptor.min_urgency <= descriptor.max_urgency <= MAX_URGENCY_LEVEL:
            raise InvalidModule(
                f"Module #{mid} urgency range [{descriptor.min_urgency}, {descriptor.max_urgency}] "
                f"must lie within {MIN_URGENCY_LEVEL}..{MAX_URGENCY_LEVEL}"
            )
        if type(descriptor.strategy) not in MODULE_STRATEGIES.values():
            raise InvalidModule(
                f"Module #{mid} strategy {type(descriptor.strategy).__name__} is not a registered kind"
            )

        descriptor = replace(descriptor, suitable_categories=categories)
        with self._lock:
            if mid in self._modules:
                raise DuplicateModule(f"Module #{mid} already registered")
            self._modules[mid] = descriptor

        logger.info(
            f"Registered module #{mid} ({descriptor.kind.name}) categories={sorted(categories)} "
            f"urgency=[{descriptor.min_urgency}, {descriptor.max_urgency}]"
        )
        self._events.emit(EventKind.MODULE_REGISTERED, **descriptor.to_dict())
        return descriptor

    def get_module(self, module_id: int) -> VotingModuleDescriptor:
        with self._lock:
            descriptor = self._modules.get(module_id)
        if descriptor is None:
            raise UnknownModule(f"Module #{module_id} is not registered")
        return descriptor

    def modules(self) -> List[VotingModuleDescriptor]:
        with self._lock:
            return [self._modules[mid] for mid in sorted(self._modules)]

    def candidates(self, context: Context) -> List[VotingModuleDescriptor]:
        """Modules passing the category/urgency filter, lowest id first."""
        return [d for d in self.modules() if d.supports(context)]

    # ── Scoring ───────────────────────────────────────────────────────

    def get_stats(self, module_id: int, category_id: int) -> Optional[ModuleStats]:
        with self._lock:
            stats = self._stats.get((module_id, category_id))
            return replace(stats) if stats is not None else None

    def _performance(self, module_id: int, category_id: int) -> Optional[Tuple[int, int, int]]:
        stats = self.get_stats(module_id, category_id)
        if stats is not None and stats.samples > 0:
            return stats.success_bps, stats.participation_bps, stats.execution_time

        perf = self._history.get_module_performance(module_id, category_id)
        if perf.samples > 0:
            return perf.success_rate_bps, perf.avg_participation_bps, perf.avg_execution_time
        return None

    def score(self, module_id: int, category_id: int) -> int:
        cfg = self.config
        perf = self._performance(module_id, category_id)
        if perf is None:
            success = participation = exec_norm = cfg.neutral_prior_bps
        else:
            success, participation, exec_time = perf
            exec_norm = (
                min(exec_time, cfg.max_execution_time_seconds) * BPS_DENOMINATOR
                // cfg.max_execution_time_seconds
            )
        return (
            cfg.weight_success * success
            + cfg.weight_participation * participation
            - cfg.weight_execution_time * exec_norm
        )

    def get_candidate_scores(self, context: Context) -> List[Tuple[int, int]]:
        """(module_id, score) for every candidate, best first."""
        scored = [(d.module_id, self.score(d.module_id, context.category_id))
                  for d in self.candidates(context)]
        return sorted(scored, key=lambda item: (-item[1], item[0]))

    # ── Selection ─────────────────────────────────────────────────────

    def select(self, context: Context) -> int:
        """
        Best module id for *context*.

        Raises:
            NoSuitableModule: no module matches category and urgency
        """
        ranked = self.get_candidate_scores(context)
        if not ranked:
            raise NoSuitableModule(
                f"No module accepts category {context.category_id} "
                f"at urgency {context.urgency_level}"
            )
        module_id, best = ranked[0]
        logger.debug(
            f"Selected module #{module_id} for context {context.context_id} "
            f"(score={best}, candidates={len(ranked)})"
        )
        return module_id

    def get_optimal_module(self, context: Context) -> VotingModuleDescriptor:
        return self.get_module(self.select(context))

    # ── Feedback ──────────────────────────────────────────────────────

    def update_performance(
        self,
        module_id: int,
        category_id: int,
        participation_bps: int,
        execution_time: int,
        succeeded: bool,
    ) -> ModuleStats:
        """Fold one terminal outcome into the (module, category) EWMA."""
        self.get_module(module_id)
        success_sample = BPS_DENOMINATOR if succeeded else 0
        alpha = self.config.ewma_alpha_bps

        with self._lock:
            stats = self._stats.setdefault((module_id, category_id), ModuleStats())
            if stats.samples == 0:
                stats.success_bps = success_sample
                stats.participation_bps = participation_bps
                stats.execution_time = execution_time
            else:
                stats.success_bps = _ewma(stats.success_bps, success_sample, alpha)
                stats.participation_bps = _ewma(stats.participation_bps, participation_bps, alpha)
                stats.execution_time = _ewma(stats.execution_time, execution_time, alpha)
            stats.samples += 1
            snapshot = replace(stats)

        logger.debug(
            f"Module #{module_id} category {category_id} stats: success={snapshot.success_bps} "
            f"participation={snapshot.participation_bps} exec={snapshot.execution_time}s "
            f"(n={snapshot.samples})"
        )
        return snapshot

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "modules": [d.to_dict() for d in self.modules()],
                "stats": {f"{m}:{c}": s.to_dict() for (m, c), s in self._stats.items()},
            }

    def __repr__(self) -> str:
        return f"<ModuleSelector modules={len(self._modules)}>"
