"""
Sentinel Boundary: Data Models

This module defines the data contracts shared by the classifier, the
cooldown gate, the managed target and the decision journal.

These models are:
- PURELY STRUCTURAL (validation limited to invariants of the data itself)
- IMMUTABLE where they are audit records (Decision, JournalEntry)
- FREE OF I/O (no database, network or filesystem access)
"""

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Optional, Dict, Any, Union

from sentinel_boundary.errors import ConfigurationError


class Action(Enum):
    """
    Classifier output, totally ordered by severity:
    NO_ACTION < SET_RISK_MODE < PAUSE.
    """
    NO_ACTION = "NO_ACTION"
    SET_RISK_MODE = "SET_RISK_MODE"
    PAUSE = "PAUSE"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def __lt__(self, other):
        if not isinstance(other, Action):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, Action):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, Action):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, Action):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY = {Action.NO_ACTION: 0, Action.SET_RISK_MODE: 1, Action.PAUSE: 2}


class Suppression(Enum):
    """
    Journal-only outcome. Kept apart from Action so the classifier's
    output space stays closed.
    """
    COOLDOWN_BLOCKED = "COOLDOWN_BLOCKED"


# What a journal entry records as actually executed.
ExecutedAction = Union[Action, Suppression]


def parse_executed_action(value: str) -> ExecutedAction:
    """Inverse of ``ExecutedAction.value`` for rows loaded from storage."""
    if value == Suppression.COOLDOWN_BLOCKED.value:
        return Suppression.COOLDOWN_BLOCKED
    return Action(value)


class ExecutionMode(Enum):
    """EXECUTE applies accepted actions; SHADOW only records them."""
    EXECUTE = "EXECUTE"
    SHADOW = "SHADOW"

    @classmethod
    def normalize(cls, value: Any) -> "ExecutionMode":
        """
        Accept ``SHADOW`` and its legacy alias ``DRY_RUN``; anything else,
        including missing values, means EXECUTE.
        """
        if isinstance(value, ExecutionMode):
            return value
        text = str(value or "").strip().upper()
        if text in ("SHADOW", "DRY_RUN"):
            return cls.SHADOW
        return cls.EXECUTE


class RiskMode(IntEnum):
    NORMAL = 0
    CAUTION = 1
    EMERGENCY = 2


@dataclass(frozen=True)
class Policy:
    """
    Named pair of escalation thresholds plus the cooldown window.

    Invariant: 0 <= risk_threshold <= pause_threshold, cooldown_seconds >= 0.
    Violations raise ConfigurationError so evaluation never starts.
    """

    policy_id: str
    risk_threshold: int
    pause_threshold: int
    cooldown_seconds: int = 0

    def __post_init__(self):
        if not self.policy_id:
            raise ConfigurationError("policy_id is required")
        if self.risk_threshold < 0 or self.pause_threshold < 0:
            raise ConfigurationError(
                f"thresholds must be non-negative "
                f"(risk={self.risk_threshold}, pause={self.pause_threshold})"
            )
        if self.risk_threshold > self.pause_threshold:
            raise ConfigurationError(
                f"risk_threshold {self.risk_threshold} exceeds "
                f"pause_threshold {self.pause_threshold}"
            )
        if self.cooldown_seconds < 0:
            raise ConfigurationError("cooldown_seconds must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "risk": self.risk_threshold,
            "pause": self.pause_threshold,
            "cooldown_seconds": self.cooldown_seconds,
        }


# Largest value a journal row can hold (signed 64-bit column).
MAX_SIGNAL_VALUE = 2 ** 63 - 1


@dataclass(frozen=True)
class Signal:
    signal_type: str
    value: int

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"signal value must be non-negative, got {self.value}")
        if self.value > MAX_SIGNAL_VALUE:
            raise ValueError(f"signal value {self.value} exceeds {MAX_SIGNAL_VALUE}")


@dataclass(frozen=True)
class Advice:
    """Non-binding advisory annotation. Never read by the gate."""

    severity: str
    recommended_action: Action
    confidence: float
    rationale: str

    def summary_line(self) -> str:
        return (
            f"AI: {self.recommended_action.value} | severity={self.severity} "
            f"| conf={self.confidence}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "recommended_action": self.recommended_action.value,
            "confidence": self.confidence,
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class Decision:
    """One evaluation of a signal against a policy, before gating."""

    decision_id: str
    policy_id: str
    target: str
    signal: Signal
    action_computed: Action
    execution_mode: ExecutionMode
    reason: str
    created_at: int
    meta: Dict[str, Any] = field(default_factory=dict)
    advice: Optional[Advice] = None


@dataclass
class TargetState:
    """
    Authoritative operational state of the managed target.

    ``last_accepted_action_at`` is the cooldown memory. It is written only
    through the gate's accept path.
    """

    owner: str
    executor: str
    mode: RiskMode = RiskMode.NORMAL
    paused: bool = False
    last_accepted_action_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "executor": self.executor,
            "mode": int(self.mode),
            "mode_name": self.mode.name,
            "paused": self.paused,
            "last_accepted_action_at": self.last_accepted_action_at,
        }


@dataclass(frozen=True)
class JournalEntry:
    """
    APPEND-ONLY journal record. Created once per evaluation, never updated.

    Invariant: action_executed is action_computed, NO_ACTION (shadow) or
    COOLDOWN_BLOCKED (suppressed).
    """

    sequence: int
    decision_id: str
    policy_id: str
    target: str
    signal_type: str
    signal_value: int
    action_computed: Action
    action_executed: ExecutedAction
    execution_mode: ExecutionMode
    reason: str
    created_at: int
    success: bool = True
    shadow_action: Optional[Action] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    advice: Optional[Advice] = None

    def __post_init__(self):
        allowed = (self.action_computed, Action.NO_ACTION, Suppression.COOLDOWN_BLOCKED)
        if self.action_executed not in allowed:
            raise ValueError(
                f"action_executed {self.action_executed} not allowed for "
                f"computed {self.action_computed}"
            )

    @property
    def suppressed(self) -> bool:
        return self.action_executed is Suppression.COOLDOWN_BLOCKED

    def with_failure(self) -> "JournalEntry":
        return replace(self, success=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "sequence": self.sequence,
            "decision_id": self.decision_id,
            "policy_id": self.policy_id,
            "target": self.target,
            "signal_type": self.signal_type,
            "signal_value": self.signal_value,
            "action_computed": self.action_computed.value,
            "action_executed": self.action_executed.value,
            "shadow_action": self.shadow_action.value if self.shadow_action else None,
            "execution_mode": self.execution_mode.value,
            "reason": self.reason,
            "created_at": self.created_at,
            "success": self.success,
            "meta": dict(self.meta),
            "advice": self.advice.to_dict() if self.advice else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JournalEntry":
        advice = data.get("advice")
        shadow = data.get("shadow_action")
        return cls(
            sequence=int(data["sequence"]),
            decision_id=data["decision_id"],
            policy_id=data["policy_id"],
            target=data["target"],
            signal_type=data["signal_type"],
            signal_value=int(data["signal_value"]),
            action_computed=Action(data["action_computed"]),
            action_executed=parse_executed_action(data["action_executed"]),
            execution_mode=ExecutionMode(data["execution_mode"]),
            reason=data.get("reason") or "",
            created_at=int(data["created_at"]),
            success=bool(data.get("success", True)),
            shadow_action=Action(shadow) if shadow else None,
            meta=dict(data.get("meta") or {}),
            advice=Advice(
                severity=advice["severity"],
                recommended_action=Action(advice["recommended_action"]),
                confidence=float(advice["confidence"]),
                rationale=advice.get("rationale", ""),
            ) if advice else None,
        )
