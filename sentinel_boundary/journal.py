"""
Sentinel Boundary: Decision Journal

The journal is PURELY MECHANICAL AND APPEND-ONLY:
- Every evaluation is journaled, applied, suppressed or shadow
- Entries are NEVER modified or deleted
- Insertion sequence breaks ties between equal timestamps
- The journal, not the target, is the record of what happened

Entries are kept in memory and optionally mirrored to a JSON-lines file.
A file write failure is raised as JournalWriteError AFTER the in-memory
append, so the caller still holds the entry. The mirror write is synchronous
and runs inside the caller's critical section; from an event loop, slow disk
I/O blocks the loop for its duration. read_log_file() reloads the mirror
after a restart.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional, Dict, List, Any, Iterable

from sentinel_boundary.errors import JournalWriteError
from sentinel_boundary.models import (
    Action,
    Advice,
    ExecutedAction,
    ExecutionMode,
    JournalEntry,
    RiskMode,
    Signal,
    Suppression,
)

logger = logging.getLogger(__name__)


class DecisionJournal:
    """
    Append-only decision journal.

    CRITICAL:
    - append() is the only mutation
    - query() returns entries ordered by (created_at, sequence)
    - restore() is allowed only on an empty journal
    """

    def __init__(self, log_file: Optional[str] = None):
        """
        Args:
            log_file: Path to an append-only JSON-lines file.
                      If None, entries are kept in memory only.
        """
        self.log_file = log_file
        self._entries: List[JournalEntry] = []
        self._by_id: Dict[str, JournalEntry] = {}
        self._next_sequence = 1
        self._lock = threading.Lock()

        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
            Path(self.log_file).touch(exist_ok=True)

    def __len__(self) -> int:
        return len(self._entries)

    def append(
        self,
        *,
        decision_id: str,
        policy_id: str,
        target: str,
        signal: Signal,
        action_computed: Action,
        action_executed: ExecutedAction,
        execution_mode: ExecutionMode,
        reason: str,
        created_at: int,
        shadow_action: Optional[Action] = None,
        meta: Optional[Dict[str, Any]] = None,
        advice: Optional[Advice] = None,
    ) -> JournalEntry:
        """
        Create and append one entry.

        Returns:
            The appended entry

        Raises:
            JournalWriteError: file mirror failed (entry is still in memory)
        """
        with self._lock:
            entry = JournalEntry(
                sequence=self._next_sequence,
                decision_id=decision_id,
                policy_id=policy_id,
                target=target,
                signal_type=signal.signal_type,
                signal_value=signal.value,
                action_computed=action_computed,
                action_executed=action_executed,
                execution_mode=execution_mode,
                reason=reason,
                created_at=int(created_at),
                success=True,
                shadow_action=shadow_action,
                meta=dict(meta or {}),
                advice=advice,
            )
            self._next_sequence += 1
            self._entries.append(entry)
            self._by_id.setdefault(entry.decision_id, entry)

        if self.log_file:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry.to_dict(), default=str) + "\n")
            except OSError as e:
                raise JournalWriteError(
                    f"failed to mirror journal entry {entry.decision_id}: {e}",
                    entry=entry,
                ) from e
        return entry

    @staticmethod
    def read_log_file(path: str) -> List[JournalEntry]:
        """
        Load entries previously mirrored to a JSON-lines file.

        A line that does not parse (e.g. a write torn by a crash) is logged
        and skipped.
        """
        entries: List[JournalEntry] = []
        p = Path(path)
        if not p.exists():
            return entries
        with open(p, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(JournalEntry.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning("skipping unreadable journal line %s:%d: %s", path, lineno, e)
        return entries

    def restore(self, entries: Iterable[JournalEntry]) -> int:
        """
        Load previously persisted entries into an empty journal.

        Returns:
            Number of entries restored
        """
        with self._lock:
            if self._entries:
                raise RuntimeError("restore() requires an empty journal")
            ordered = sorted(entries, key=lambda e: e.sequence)
            for entry in ordered:
                self._entries.append(entry)
                self._by_id.setdefault(entry.decision_id, entry)
            if ordered:
                self._next_sequence = ordered[-1].sequence + 1
            return len(ordered)

    def query(
        self,
        range_start: Optional[int] = None,
        range_end: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[JournalEntry]:
        """
        Chronological entries with range_start <= created_at <= range_end.

        Restartable: pass the last seen created_at as the next range_start
        and skip already-seen sequences.
        """
        with self._lock:
            snapshot = list(self._entries)
        selected = [
            e for e in snapshot
            if (range_start is None or e.created_at >= range_start)
            and (range_end is None or e.created_at <= range_end)
        ]
        selected.sort(key=lambda e: (e.created_at, e.sequence))
        if limit is not None:
            selected = selected[: max(0, int(limit))]
        return selected

    def get(self, decision_id: str) -> Optional[JournalEntry]:
        return self._by_id.get(decision_id)

    def latest(self) -> Optional[JournalEntry]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def export_json(self) -> str:
        return json.dumps([e.to_dict() for e in self.query()], indent=2, default=str)

    def replay_target_state(
        self,
        risk_mode_level: int = int(RiskMode.EMERGENCY),
        initial_mode: RiskMode = RiskMode.NORMAL,
        initial_paused: bool = False,
    ) -> Dict[str, Any]:
        """
        Reconstruct the managed target's state from genesis.

        Only gated entries (EXECUTE mode, not suppressed) take effect. Shadow
        entries never reached the target and are skipped.
        """
        mode = RiskMode(initial_mode)
        paused = initial_paused
        last_accepted: Optional[int] = None
        for entry in sorted(self._entries, key=lambda e: e.sequence):
            if entry.execution_mode is not ExecutionMode.EXECUTE:
                continue
            if entry.action_executed is Suppression.COOLDOWN_BLOCKED:
                continue
            if entry.action_executed is Action.PAUSE:
                paused = True
            elif entry.action_executed is Action.SET_RISK_MODE:
                mode = RiskMode(risk_mode_level)
            last_accepted = entry.created_at
        return {"mode": mode, "paused": paused, "last_accepted_action_at": last_accepted}
