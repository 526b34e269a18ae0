from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import redis.asyncio as aioredis

from sentinel_boundary.classifier import bps_deviation, classify
from sentinel_boundary.cooldown_gate import CooldownGate
from sentinel_boundary.decision_id import generate_decision_id
from sentinel_boundary.errors import AuthorizationError, JournalWriteError
from sentinel_boundary.journal import DecisionJournal
from sentinel_boundary.models import (
    Action,
    Advice,
    Decision,
    ExecutedAction,
    ExecutionMode,
    JournalEntry,
    MAX_SIGNAL_VALUE,
    Policy,
    Signal,
    Suppression,
)
from sentinel_boundary.ops_target import OpsTarget

from .advisor import Advisor, RulesAdvisor, advise_safely
from .bundle import IncidentBundleWriter, RedisBundleSink, build_incident_bundle
from .config import Settings, execution_mode_from_settings, get_settings, policy_from_settings
from .health import compute_health
from .logging_setup import logger
from .metrics import (
    authorization_rejections_total,
    cooldown_blocked_total,
    decisions_evaluated_total,
    journal_write_failures_total,
    pending_entries,
    persist_failures_total,
    start_metrics_server_if_enabled,
)
from .schemas import DecisionSubmission
from .storage import (
    create_engine_and_sessionmaker,
    get_journal_entry_by_decision_id,
    init_models,
    insert_journal_entry,
    load_all_journal_entries,
    query_journal_entries,
    record_to_entry,
)

PriceReader = Callable[[], Awaitable[float]]


@dataclass
class DecisionResult:
    """What the caller gets back for one submission. Suppression is a normal result."""

    entry: JournalEntry
    accepted: bool
    remaining_cooldown: int = 0
    incident_path: Optional[str] = None
    incident_key: Optional[str] = None
    journal_error: Optional[str] = None
    persisted: bool = False

    @property
    def decision_id(self) -> str:
        return self.entry.decision_id

    @property
    def action_computed(self) -> Action:
        return self.entry.action_computed

    @property
    def action_executed(self) -> ExecutedAction:
        return self.entry.action_executed

    @property
    def exceeded(self) -> bool:
        return self.entry.action_computed is not Action.NO_ACTION

    def to_dict(self) -> Dict[str, Any]:
        e = self.entry
        return {
            "decision_id": e.decision_id,
            "sequence": e.sequence,
            "action_computed": e.action_computed.value,
            "action_executed": e.action_executed.value,
            "shadow_action": e.shadow_action.value if e.shadow_action else None,
            "set_risk_mode": e.action_executed is Action.SET_RISK_MODE,
            "exceeded": self.exceeded,
            "signal_value": e.signal_value,
            "reason": e.reason,
            "execution_mode": e.execution_mode.value,
            "accepted": self.accepted,
            "remaining_cooldown": self.remaining_cooldown,
            "advice": e.advice.to_dict() if e.advice else None,
            "incident_path": self.incident_path,
            "incident_key": self.incident_key,
            "journal_error": self.journal_error,
            "persisted": self.persisted,
            "success": e.success,
        }


class SentinelOrchestrator:
    """
    Runs one evaluation per submission:
    signal -> classify -> decision id + advice -> shadow journal | gate
    -> ordered persistence -> incident bundle.

    The gate call and the enqueue for persistence happen without an await in
    between, so the persistence queue preserves gate order.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        policy: Optional[Policy] = None,
        advisor: Optional[Advisor] = None,
        price_reader: Optional[PriceReader] = None,
        redis_client=None,
        dsn: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.cfg = settings or get_settings()
        self.policy = policy or policy_from_settings(self.cfg)
        self.execution_mode = execution_mode_from_settings(self.cfg)
        self.journal = DecisionJournal(self.cfg.JOURNAL_FILE or None)
        self.target = OpsTarget(
            self.cfg.TARGET_ID, owner=self.cfg.TARGET_OWNER, executor=self.cfg.GATE_IDENTITY
        )
        self.gate = CooldownGate(
            self.target,
            self.journal,
            authorized_submitter=self.cfg.AUTHORIZED_SUBMITTER,
            cooldown_seconds=self.policy.cooldown_seconds,
            identity=self.cfg.GATE_IDENTITY,
            risk_mode_level=self.cfg.RISK_MODE_LEVEL,
        )
        if advisor is None and self.cfg.ADVISOR_ENABLED:
            advisor = RulesAdvisor()
        self.advisor = advisor
        self.price_reader = price_reader
        self.bundle_writer = IncidentBundleWriter(self.cfg.INCIDENT_DIR or None)
        self.redis_sink: Optional[RedisBundleSink] = None
        self._redis = redis_client
        self.dsn = dsn if dsn is not None else (self.cfg.DATABASE_URL or None)
        self.engine = None
        self._sessionmaker = None
        # entries waiting for durable persistence, in gate order
        self._pending: Deque[JournalEntry] = deque()
        # entries that exhausted PERSIST_MAX_ATTEMPTS, kept for inspection
        self._failed: List[JournalEntry] = []
        self._attempts: Dict[int, int] = {}
        self._persist_lock = asyncio.Lock()
        self._clock = clock or time.time

    async def setup(self):
        if self.dsn:
            self.engine, self._sessionmaker = await create_engine_and_sessionmaker(self.dsn)
            await init_models(self.engine)
            if self.cfg.RECONCILE_ON_STARTUP:
                await self._reconcile_from_storage()
        elif self.journal.log_file and self.cfg.RECONCILE_ON_STARTUP:
            self._reconcile_from_file()
        if self._redis is None and self.cfg.INCIDENT_REDIS_ENABLED:
            self._redis = aioredis.from_url(self.cfg.REDIS_URL)
        if self._redis is not None:
            self.redis_sink = RedisBundleSink(
                self._redis,
                prefix=self.cfg.INCIDENT_REDIS_PREFIX,
                ttl_seconds=self.cfg.INCIDENT_REDIS_TTL_SECONDS,
                retries=self.cfg.REDIS_OP_RETRIES,
            )
        start_metrics_server_if_enabled(self.cfg.METRICS_PORT)
        logger.info(
            "orchestrator ready: policy=%s risk=%d pause=%d cooldown=%ds mode=%s storage=%s",
            self.policy.policy_id, self.policy.risk_threshold, self.policy.pause_threshold,
            self.policy.cooldown_seconds, self.execution_mode.value, bool(self._sessionmaker),
        )

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
        if self._redis is not None:
            try:
                await self._redis.close()
            except Exception:
                logger.exception("error closing redis client")
            self._redis = None

    async def _reconcile_from_storage(self):
        entries = await load_all_journal_entries(self._sessionmaker, target=self.target.target_id)
        if not entries or len(self.journal):
            return
        self._restore_journal(entries, "storage")

    def _reconcile_from_file(self):
        if len(self.journal):
            return
        entries = [
            e for e in DecisionJournal.read_log_file(self.journal.log_file)
            if e.target == self.target.target_id
        ]
        if entries:
            self._restore_journal(entries, self.journal.log_file)

    def _restore_journal(self, entries, source: str):
        restored = self.journal.restore(entries)
        state = self.journal.replay_target_state(risk_mode_level=self.cfg.RISK_MODE_LEVEL)
        self.target.restore(state["mode"], state["paused"], state["last_accepted_action_at"])
        logger.info(
            "restored %d journal entries from %s; target state %s",
            restored, source, self.target.get_state(),
        )

    async def _resolve_signal(self, submission: DecisionSubmission):
        meta = dict(submission.meta)
        value = int(submission.signal_value)
        if (
            self.cfg.SIGNAL_MODE.upper() == "PRICE_FEED"
            and self.price_reader is not None
            and self.cfg.BASELINE_PRICE is not None
        ):
            baseline = float(self.cfg.BASELINE_PRICE)
            current = float(await self.price_reader())
            value = min(bps_deviation(current, baseline), MAX_SIGNAL_VALUE)
            meta.update({
                "signal_mode": "PRICE_FEED",
                "feed": self.cfg.PRICE_FEED_ID,
                "baseline_price": baseline,
                "current_price": current,
            })
        return Signal(self.cfg.SIGNAL_TYPE, value), meta

    @staticmethod
    def _compose_reason(reason: str, action: Action, advice: Optional[Advice]) -> str:
        base = reason or ("threshold exceeded" if action is not Action.NO_ACTION else "within band")
        if advice is None:
            return base
        return f"{base} | {advice.summary_line()}"

    async def submit(
        self,
        submission: DecisionSubmission,
        caller: str,
        now: Optional[int] = None,
        execution_mode: Optional[ExecutionMode] = None,
    ) -> DecisionResult:
        """
        Evaluate one submission.

        Raises:
            InvalidSender / NotExecutor: authorization failures (no state change)
        """
        now = int(self._clock()) if now is None else int(now)
        mode = execution_mode or self.execution_mode
        try:
            self.gate.check_sender(caller)
        except AuthorizationError as e:
            authorization_rejections_total.labels(kind=type(e).__name__).inc()
            logger.warning("rejected submission from %r: %s", caller, e)
            raise

        signal, meta = await self._resolve_signal(submission)
        action = classify(signal.value, self.policy)
        decision_id = generate_decision_id(
            self.target.target_id, self.policy.policy_id, signal.value, action, now
        )
        advice = await advise_safely(
            self.advisor, signal, self.policy, timeout=self.cfg.ADVISOR_TIMEOUT_SECONDS
        )
        decision = Decision(
            decision_id=decision_id,
            policy_id=self.policy.policy_id,
            target=self.target.target_id,
            signal=signal,
            action_computed=action,
            execution_mode=mode,
            reason=self._compose_reason(submission.reason, action, advice),
            created_at=now,
            meta=meta,
            advice=advice,
        )

        if mode is ExecutionMode.SHADOW:
            entry, journal_error = self._journal_shadow(decision)
            accepted, remaining = False, 0
        else:
            try:
                outcome = self.gate.submit(decision, caller, now)
            except AuthorizationError as e:
                authorization_rejections_total.labels(kind=type(e).__name__).inc()
                logger.error("gate rejected decision %s: %s", decision_id, e)
                raise
            entry, journal_error = outcome.entry, outcome.journal_error
            accepted, remaining = outcome.accepted, outcome.remaining_cooldown

        if journal_error:
            journal_write_failures_total.inc()
        if self._sessionmaker is not None:
            self._pending.append(entry)
        persisted = False
        if self._sessionmaker is not None:
            await self.drain_pending()
            persisted = not any(p is entry for p in self._pending)

        result = DecisionResult(
            entry=entry,
            accepted=accepted,
            remaining_cooldown=remaining,
            journal_error=journal_error,
            persisted=persisted,
        )
        await self._emit_bundle(result)

        decisions_evaluated_total.labels(
            computed=entry.action_computed.value,
            executed=entry.action_executed.value,
            mode=entry.execution_mode.value,
        ).inc()
        if entry.action_executed is Suppression.COOLDOWN_BLOCKED:
            cooldown_blocked_total.inc()
        logger.info(
            "SentinelFlow: signal=%d computed=%s executed=%s mode=%s%s reason=%s",
            entry.signal_value,
            entry.action_computed.value,
            entry.action_executed.value,
            entry.execution_mode.value,
            f" shadow={entry.shadow_action.value}" if entry.shadow_action else "",
            entry.reason,
        )
        return result

    def _journal_shadow(self, decision: Decision):
        """Record what would have happened; the gate and target are never touched."""
        shadow_action = decision.action_computed if decision.action_computed is not Action.NO_ACTION else None
        try:
            entry = self.journal.append(
                decision_id=decision.decision_id,
                policy_id=decision.policy_id,
                target=decision.target,
                signal=decision.signal,
                action_computed=decision.action_computed,
                action_executed=Action.NO_ACTION,
                execution_mode=ExecutionMode.SHADOW,
                reason=decision.reason,
                created_at=decision.created_at,
                shadow_action=shadow_action,
                meta=decision.meta,
                advice=decision.advice,
            )
            return entry, None
        except JournalWriteError as e:
            if e.entry is None:
                raise
            logger.error("journal write failed for shadow decision %s: %s", decision.decision_id, e)
            return e.entry.with_failure(), str(e)

    async def _emit_bundle(self, result: DecisionResult):
        bundle = build_incident_bundle(result.entry, self.policy, self.target.get_state())
        result.incident_path = self.bundle_writer.write(result.decision_id, bundle)
        if self.redis_sink is not None:
            result.incident_key = await self.redis_sink.write(result.decision_id, bundle)

    async def drain_pending(self) -> int:
        """
        Persist queued entries in order. Stops at the first failure so a later
        entry is never stored before an earlier one, unless that entry has
        failed PERSIST_MAX_ATTEMPTS times: it is then parked in the failed
        list and draining continues behind it.

        Returns:
            Number of entries written
        """
        if self._sessionmaker is None:
            return 0
        written = 0
        max_attempts = max(1, int(self.cfg.PERSIST_MAX_ATTEMPTS))
        async with self._persist_lock:
            while self._pending:
                entry = self._pending[0]
                try:
                    await insert_journal_entry(self._sessionmaker, entry)
                except Exception as e:
                    persist_failures_total.inc()
                    attempts = self._attempts.get(entry.sequence, 0) + 1
                    if attempts < max_attempts:
                        self._attempts[entry.sequence] = attempts
                        logger.exception(
                            "persist failure for %s (attempt %d/%d, kept pending): %s",
                            entry.decision_id, attempts, max_attempts, e,
                        )
                        break
                    logger.exception(
                        "persist failure for %s after %d attempts, moved to failed list: %s",
                        entry.decision_id, attempts, e,
                    )
                    self._pending.popleft()
                    self._attempts.pop(entry.sequence, None)
                    self._failed.append(entry)
                    continue
                self._pending.popleft()
                self._attempts.pop(entry.sequence, None)
                written += 1
            pending_entries.set(len(self._pending))
        return written

    def pending_entries(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._pending]

    def failed_entries(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._failed]

    async def query_journal(
        self,
        range_start: Optional[int] = None,
        range_end: Optional[int] = None,
        limit: int = 100,
        source: str = "memory",
    ) -> List[Dict[str, Any]]:
        """Range query over the in-process journal or the durable store."""
        if source == "storage":
            if self._sessionmaker is None:
                raise ValueError("durable storage is not configured")
            rows = await query_journal_entries(
                self._sessionmaker, range_start, range_end, limit, target=self.target.target_id
            )
            return [record_to_entry(r).to_dict() for r in rows]
        return [e.to_dict() for e in self.journal.query(range_start, range_end, limit)]

    async def get_entry(self, decision_id: str) -> Optional[JournalEntry]:
        entry = self.journal.get(decision_id)
        if entry is None and self._sessionmaker is not None:
            row = await get_journal_entry_by_decision_id(self._sessionmaker, decision_id)
            entry = record_to_entry(row) if row else None
        return entry

    async def regenerate_bundle(self, decision_id: str) -> Optional[Dict[str, Any]]:
        entry = await self.get_entry(decision_id)
        if entry is None:
            return None
        return build_incident_bundle(entry, self.policy, self.target.get_state())

    def rotate_executor(self, caller: str, new_executor: str) -> Dict[str, Any]:
        try:
            self.target.set_executor(caller, new_executor)
        except AuthorizationError as e:
            authorization_rejections_total.labels(kind=type(e).__name__).inc()
            raise
        return self.target.get_state()

    def health(self) -> Dict[str, Any]:
        report = compute_health(self.target.get_state(), self.journal.latest())
        report["cooldown_seconds"] = self.policy.cooldown_seconds
        report["remaining_cooldown"] = self.gate.remaining_cooldown(int(self._clock()))
        report["pending_entries"] = len(self._pending)
        report["failed_entries"] = len(self._failed)
        return report
