"""
Sentinel Boundary Module

CRITICAL SAFETY LAYER:
This module owns the ONLY path by which a classified signal can change the
managed target's operational state. It performs no network, database or
advisory calls; everything here is deterministic given its inputs.

ARCHITECTURE:
- models.py: Data contracts (Policy, Signal, Decision, JournalEntry, ...)
- classifier.py: Two-threshold classifier and bps deviation
- decision_id.py: Deterministic, recomputable decision identifiers
- ops_target.py: Managed target state and executor authorization
- cooldown_gate.py: Cooldown state machine (accept / suppress)
- journal.py: Append-only decision journal

FORBIDDEN IMPORTS:
- NO imports from sentinel_service (advisor, storage, HTTP surface)

DEFAULT BEHAVIOR: inside the cooldown window, DO NOTHING (but journal it)
"""

from sentinel_boundary.models import (
    Action,
    Advice,
    Decision,
    ExecutionMode,
    JournalEntry,
    Policy,
    RiskMode,
    Signal,
    Suppression,
    TargetState,
)
from sentinel_boundary.errors import (
    AuthorizationError,
    ConfigurationError,
    InvalidSender,
    JournalWriteError,
    NotExecutor,
    NotOwner,
    SentinelError,
)
from sentinel_boundary.classifier import classify, bps_deviation
from sentinel_boundary.decision_id import generate_decision_id, verify_decision_id
from sentinel_boundary.ops_target import OpsTarget
from sentinel_boundary.journal import DecisionJournal
from sentinel_boundary.cooldown_gate import CooldownGate, GateOutcome

__all__ = [
    "Action",
    "Advice",
    "Decision",
    "ExecutionMode",
    "JournalEntry",
    "Policy",
    "RiskMode",
    "Signal",
    "Suppression",
    "TargetState",
    "AuthorizationError",
    "ConfigurationError",
    "InvalidSender",
    "JournalWriteError",
    "NotExecutor",
    "NotOwner",
    "SentinelError",
    "classify",
    "bps_deviation",
    "generate_decision_id",
    "verify_decision_id",
    "OpsTarget",
    "DecisionJournal",
    "CooldownGate",
    "GateOutcome",
]
