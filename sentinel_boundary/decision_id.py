"""
Deterministic decision identifiers.

An identifier is a pure function of (target, policy_id, signal_value,
action, timestamp). Any independent verifier holding those five values can
recompute it bit-for-bit, so the canonical payload format below must never
change without a new prefix.
"""

import hashlib
import re
from typing import Union

from sentinel_boundary.models import Action

ID_PREFIX = "sf"
FIELD_DELIMITER = "|"
DIGEST_CHARS = 16
MAX_FILE_NAME = 120

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _action_value(action: Union[Action, str]) -> str:
    return action.value if isinstance(action, Action) else str(action)


def canonical_decision_payload(
    target: str,
    policy_id: str,
    signal_value: int,
    action: Union[Action, str],
    timestamp: int,
) -> str:
    return FIELD_DELIMITER.join(
        [str(target), str(policy_id), str(int(signal_value)), _action_value(action), str(int(timestamp))]
    )


def generate_decision_id(
    target: str,
    policy_id: str,
    signal_value: int,
    action: Union[Action, str],
    timestamp: int,
) -> str:
    """
    Return ``sf-{policy_id}-{timestamp}-{digest}`` where digest is the first
    16 hex characters of SHA-256 over the canonical payload.
    """
    payload = canonical_decision_payload(target, policy_id, signal_value, action, timestamp)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:DIGEST_CHARS]
    return f"{ID_PREFIX}-{policy_id}-{int(timestamp)}-{digest}"


def verify_decision_id(
    decision_id: str,
    target: str,
    policy_id: str,
    signal_value: int,
    action: Union[Action, str],
    timestamp: int,
) -> bool:
    """Recompute the identifier and compare. Used by reconciliation tooling."""
    expected = generate_decision_id(target, policy_id, signal_value, action, timestamp)
    return expected == decision_id


def safe_file_name(value: str) -> str:
    """Escape an identifier for use as a file or key name."""
    return _UNSAFE_CHARS.sub("_", value)[:MAX_FILE_NAME]
