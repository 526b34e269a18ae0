"""
Sentinel Boundary: Cooldown Gate

The gate is a STATE MACHINE, not a decision engine. For every decision it:
1. Rejects callers other than the authorized submitter (InvalidSender)
2. Accepts the decision if no action was accepted yet, or the cooldown
   window since the last accepted action has elapsed
3. Otherwise suppresses it as COOLDOWN_BLOCKED

Accepted decisions are applied to the managed target and advance the
cooldown memory, NO_ACTION included. Suppressed decisions change nothing
but are still journaled.

The authorization check, the accept/suppress decision, the target mutation,
the cooldown update and the journal append run under ONE lock. Two racing
decisions inside one window can never both be accepted, and journal order
equals gate order. When the journal mirrors to a file, that write happens
inside the lock; callers on an event loop block for the duration of the
disk write.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from sentinel_boundary.errors import InvalidSender, JournalWriteError
from sentinel_boundary.journal import DecisionJournal
from sentinel_boundary.models import (
    Action,
    Decision,
    ExecutionMode,
    JournalEntry,
    RiskMode,
    Suppression,
)
from sentinel_boundary.ops_target import OpsTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateOutcome:
    """Result of one gate evaluation."""

    entry: JournalEntry
    accepted: bool
    target_changed: bool = False
    remaining_cooldown: int = 0
    journal_error: Optional[str] = None


class CooldownGate:
    """
    Cooldown-gated executor for a single managed target.

    Args:
        target: The managed target. Its executor must be ``identity``.
        journal: Journal receiving every evaluation
        authorized_submitter: The one upstream identity allowed to submit
        cooldown_seconds: Minimum time between accepted decisions
        identity: Identity the gate uses when calling the target
        risk_mode_level: Level requested by SET_RISK_MODE
    """

    def __init__(
        self,
        target: OpsTarget,
        journal: DecisionJournal,
        authorized_submitter: str,
        cooldown_seconds: int,
        identity: str,
        risk_mode_level: int = int(RiskMode.EMERGENCY),
    ):
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be non-negative")
        self.target = target
        self.journal = journal
        self.authorized_submitter = authorized_submitter
        self.cooldown_seconds = int(cooldown_seconds)
        self.identity = identity
        self.risk_mode_level = RiskMode(int(risk_mode_level))
        self._lock = threading.Lock()

    def check_sender(self, caller: str) -> None:
        if caller != self.authorized_submitter:
            raise InvalidSender(caller, self.authorized_submitter)

    def remaining_cooldown(self, now: int) -> int:
        """Seconds left in the current window (0 when a decision would be accepted)."""
        last = self.target.state.last_accepted_action_at
        if last is None:
            return 0
        return max(0, self.cooldown_seconds - (int(now) - last))

    def submit(self, decision: Decision, caller: str, now: int) -> GateOutcome:
        """
        Evaluate one decision.

        Raises:
            InvalidSender: caller is not the authorized submitter
            NotExecutor: the gate is no longer the target's executor
        """
        if decision.execution_mode is not ExecutionMode.EXECUTE:
            raise ValueError("shadow decisions bypass the gate")

        with self._lock:
            self.check_sender(caller)
            now = int(now)
            last = self.target.state.last_accepted_action_at

            if last is None or now - last >= self.cooldown_seconds:
                changed = self._apply(decision.action_computed)
                self.target.record_accepted(self.identity, now)
                return self._journal(decision, decision.action_computed, decision.reason, True, changed, 0)

            remaining = self.cooldown_seconds - (now - last)
            reason = (
                f"Cooldown active: {remaining}s remaining of {self.cooldown_seconds}s window"
            )
            if decision.reason:
                reason = f"{reason} | {decision.reason}"
            logger.info(
                "decision %s suppressed: computed=%s remaining=%ss",
                decision.decision_id, decision.action_computed.value, remaining,
            )
            return self._journal(decision, Suppression.COOLDOWN_BLOCKED, reason, False, False, remaining)

    def _apply(self, action: Action) -> bool:
        if action is Action.PAUSE:
            return self.target.apply_pause(self.identity)
        if action is Action.SET_RISK_MODE:
            return self.target.apply_risk_mode(self.identity, self.risk_mode_level)
        return False

    def _journal(self, decision, executed, reason, accepted, changed, remaining) -> GateOutcome:
        try:
            entry = self.journal.append(
                decision_id=decision.decision_id,
                policy_id=decision.policy_id,
                target=decision.target,
                signal=decision.signal,
                action_computed=decision.action_computed,
                action_executed=executed,
                execution_mode=decision.execution_mode,
                reason=reason,
                created_at=decision.created_at,
                meta=decision.meta,
                advice=decision.advice,
            )
            journal_error = None
        except JournalWriteError as e:
            # the target mutation stands; surface the failure instead
            if e.entry is None:
                raise
            logger.error("journal write failed for %s: %s", decision.decision_id, e)
            entry = e.entry.with_failure()
            journal_error = str(e)
        return GateOutcome(
            entry=entry,
            accepted=accepted,
            target_changed=changed,
            remaining_cooldown=remaining,
            journal_error=journal_error,
        )
