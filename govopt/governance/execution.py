"""
Action Execution

Applies a succeeded proposal's target actions as one all-or-nothing batch.

Hosts register one handler per target. A handler receives the TargetAction
and may return an undo callable; if a later action in the batch fails,
every completed action is undone in reverse order before ExecutionFailed is
raised, so a failed batch leaves host state as it was.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..exceptions import ExecutionFailed, GovernanceError
from ..logger import get_logger
from .proposals import TargetAction

logger = get_logger(__name__)

UndoFn = Callable[[], None]
ActionHandler = Callable[[TargetAction], Optional[UndoFn]]


class ActionExecutor:
    """
    Target-handler registry plus batch runner.
    """

    def __init__(self, now_fn: Optional[Callable[[], float]] = None):
        self._now = now_fn or time.time
        self._handlers: Dict[str, ActionHandler] = {}
        self._execution_log: List[Dict[str, Any]] = []

    # ── Handlers ──────────────────────────────────────────────────────

    def register_target(self, target: str, handler: ActionHandler) -> None:
        """Route actions addressed to *target* to *handler*."""
        if not target:
            raise GovernanceError("Target name is required")
        if not callable(handler):
            raise GovernanceError(f"Handler for {target} is not callable")
        self._handlers[target] = handler
        logger.info(f"Execution target registered: {target}")

    def unregister_target(self, target: str) -> None:
        self._handlers.pop(target, None)

    def has_target(self, target: str) -> bool:
        return target in self._handlers

    # ── Execute ───────────────────────────────────────────────────────

    def execute_batch(self, actions: Sequence[TargetAction], proposal_id: str = "") -> int:
        """
        Run *actions* in order; return the number applied.

        Raises:
            ExecutionFailed: an action had no handler or its handler raised
                             (all completed actions are undone first)
        """
        undo_stack: List[Tuple[int, Optional[UndoFn]]] = []
        for index, action in enumerate(actions):
            handler = self._handlers.get(action.target)
            try:
                if handler is None:
                    raise GovernanceError(f"No handler registered for target {action.target}")
                undo_stack.append((index, handler(action)))
            except Exception as e:
                logger.warning(
                    f"Action {index} ({action.target}) failed for {proposal_id[:18]}: {e}; "
                    f"rolling back {len(undo_stack)} action(s)"
                )
                self._rollback(undo_stack, proposal_id)
                raise ExecutionFailed(
                    f"Action {index} ({action.target}) failed: {e}"
                ) from e

        self._execution_log.append({
            "proposalId": proposal_id,
            "actions": [a.to_dict() for a in actions],
            "executedAt": self._now(),
        })
        logger.info(f"Executed {len(actions)} action(s) for {proposal_id[:18]}")
        return len(actions)

    def _rollback(self, undo_stack: List[Tuple[int, Optional[UndoFn]]], proposal_id: str) -> None:
        for index, undo in reversed(undo_stack):
            if undo is None:
                continue
            try:
                undo()
            except Exception:
                # Keep unwinding the remaining actions
                logger.exception(f"Undo of action {index} failed for {proposal_id[:18]}")

    @property
    def execution_log(self) -> List[Dict[str, Any]]:
        return list(self._execution_log)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets": sorted(self._handlers),
            "executions": len(self._execution_log),
        }
