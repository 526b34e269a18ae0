"""
Sentinel Boundary: Managed Target (ops target)

The managed target holds the authoritative operational state:
- current risk mode (0=NORMAL, 1=CAUTION, 2=EMERGENCY)
- paused flag
- executor identity (the only identity allowed to mutate state)
- last accepted action timestamp (cooldown memory, written by the gate)

Every privileged call checks the caller BEFORE touching state, so a
rejected call leaves the target exactly as it was. Executor rotation is
owner-only and recorded as an ``ExecutorUpdated`` event.

This is a STATE HOLDER, not a decision engine.
"""

import logging
from typing import Optional, Dict, List, Any

from sentinel_boundary.errors import NotExecutor, NotOwner
from sentinel_boundary.models import RiskMode, TargetState

logger = logging.getLogger(__name__)


class OpsTarget:
    """
    Managed target with an append-only event history.

    The target does not lock. Callers serialize access through the
    CooldownGate, which is the only component holding the executor identity.
    """

    def __init__(self, target_id: str, owner: str, executor: str):
        if not target_id or not owner or not executor:
            raise ValueError("target_id, owner and executor are required")
        self.target_id = target_id
        self.state = TargetState(owner=owner, executor=executor)
        self._history: List[Dict[str, Any]] = []

    @property
    def executor(self) -> str:
        return self.state.executor

    @property
    def owner(self) -> str:
        return self.state.owner

    def apply_pause(self, actor: str) -> bool:
        """
        Set paused = True. Re-pausing a paused target succeeds as a no-op.

        Returns:
            True if the flag changed
        """
        self._require_executor(actor)
        changed = not self.state.paused
        self.state.paused = True
        self._emit("Paused", actor, {"changed": changed})
        return changed

    def apply_risk_mode(self, actor: str, level: int) -> bool:
        """
        Set the risk mode.

        Args:
            actor: Caller identity (must be the executor)
            level: One of the defined RiskMode levels

        Returns:
            True if the mode changed
        """
        self._require_executor(actor)
        try:
            new_mode = RiskMode(int(level))
        except ValueError:
            raise ValueError(f"undefined risk mode level {level!r}")
        old_mode = self.state.mode
        self.state.mode = new_mode
        self._emit(
            "RiskModeUpdated",
            actor,
            {"old_mode": int(old_mode), "new_mode": int(new_mode)},
        )
        return old_mode != new_mode

    def record_accepted(self, actor: str, now: int) -> None:
        """Advance the cooldown memory. Reached only from the gate's accept path."""
        self._require_executor(actor)
        self.state.last_accepted_action_at = int(now)
        self._emit("ActionAccepted", actor, {"at": int(now)})

    def set_executor(self, caller: str, new_executor: str) -> None:
        """Rotate the executor identity (owner only)."""
        if caller != self.state.owner:
            raise NotOwner(caller, self.state.owner)
        if not new_executor:
            raise ValueError("new_executor is required")
        old = self.state.executor
        self.state.executor = new_executor
        self._emit("ExecutorUpdated", caller, {"old_executor": old, "new_executor": new_executor})
        logger.warning(
            "executor rotated on target=%s old=%s new=%s by=%s",
            self.target_id, old, new_executor, caller,
        )

    def restore(self, mode: RiskMode, paused: bool, last_accepted_action_at: Optional[int]) -> None:
        """Overwrite state from a journal replay (reconciliation at startup)."""
        self.state.mode = RiskMode(int(mode))
        self.state.paused = bool(paused)
        self.state.last_accepted_action_at = last_accepted_action_at
        self._emit("StateRestored", "journal", self.state.to_dict())

    def get_state(self) -> Dict[str, Any]:
        data = self.state.to_dict()
        data["target_id"] = self.target_id
        return data

    def get_history(self) -> List[Dict[str, Any]]:
        """Event history, oldest first. Never modified in place."""
        return list(self._history)

    def _require_executor(self, actor: str) -> None:
        if actor != self.state.executor:
            raise NotExecutor(actor, self.state.executor)

    def _emit(self, event: str, actor: str, data: Dict[str, Any]) -> None:
        self._history.append({"event": event, "actor": actor, "data": data})
