"""Operator health verdict derived from target state and the last journal entry."""

from typing import Any, Dict, List, Optional

from sentinel_boundary.models import JournalEntry, RiskMode, Suppression

VERDICT_OK = "OK"
VERDICT_WARN = "WARN"
VERDICT_ALERT = "ALERT"


def compute_health(target_state: Dict[str, Any], last_entry: Optional[JournalEntry]) -> Dict[str, Any]:
    """
    ALERT when paused, WARN when the risk mode is elevated, the journal is
    empty, the last decision was suppressed or its journal write failed.
    """
    notes: List[str] = []
    verdict = VERDICT_OK

    if last_entry is None:
        notes.append("No journal entries recorded yet.")
        verdict = VERDICT_WARN

    if target_state.get("paused"):
        verdict = VERDICT_ALERT
        notes.append("Target is PAUSED (incident state).")
    elif int(target_state.get("mode", 0)) >= int(RiskMode.EMERGENCY):
        verdict = VERDICT_WARN
        notes.append("Target risk mode is elevated (>=2).")

    last: Optional[Dict[str, Any]] = None
    if last_entry is not None:
        last = last_entry.to_dict()
        if last_entry.action_executed is Suppression.COOLDOWN_BLOCKED:
            notes.append("Last decision was COOLDOWN_BLOCKED (cooldown protecting state).")
            if verdict == VERDICT_OK:
                verdict = VERDICT_WARN
        if not last_entry.success:
            notes.append("Last decision was not durably journaled.")
            if verdict == VERDICT_OK:
                verdict = VERDICT_WARN

    return {
        "verdict": verdict,
        "notes": notes,
        "target": target_state,
        "last_decision": last,
    }
