"""
Incident bundles.

A bundle is a denormalized, NON-AUTHORITATIVE snapshot of one journal entry
plus context (thresholds, meta, advice, target snapshot). It can be
regenerated from the journal at any time, so writes are best-effort:
failures are logged and counted, never raised into the decision path.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from sentinel_boundary.decision_id import safe_file_name, verify_decision_id
from sentinel_boundary.models import Action, JournalEntry, Policy

from . import metrics
from .redis_wrapper import redis_op, RedisOpFailed, RedisUnavailable

logger = logging.getLogger(__name__)


def build_incident_bundle(
    entry: JournalEntry,
    policy: Policy,
    target_state: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Assemble the JSON-serializable bundle for a journal entry."""
    meta = dict(entry.meta)
    meta["execution_mode"] = entry.execution_mode.value
    if entry.shadow_action:
        meta["shadow_action"] = entry.shadow_action.value
    bundle: Dict[str, Any] = {
        "decision_id": entry.decision_id,
        "policy_id": entry.policy_id,
        "sequence": entry.sequence,
        "action_computed": entry.action_computed.value,
        "action_executed": entry.action_executed.value,
        "exceeded": entry.action_computed is not Action.NO_ACTION,
        "signal": {"signal_type": entry.signal_type, "signal_value": entry.signal_value},
        "thresholds": {"risk": policy.risk_threshold, "pause": policy.pause_threshold},
        "cooldown_seconds": policy.cooldown_seconds,
        "meta": meta,
        "reason": entry.reason,
        "success": entry.success,
        "target": entry.target,
        "target_state": target_state,
        "created_at": datetime.fromtimestamp(entry.created_at, timezone.utc).isoformat(),
        "advice": entry.advice.to_dict() if entry.advice else None,
        "determinism": {
            "ok": verify_decision_id(
                entry.decision_id,
                entry.target,
                entry.policy_id,
                entry.signal_value,
                entry.action_computed,
                entry.created_at,
            ),
        },
    }
    if entry.shadow_action:
        bundle["shadow_action"] = entry.shadow_action.value
    return bundle


class IncidentBundleWriter:
    """Writes one ``<safe decision id>.json`` file per bundle."""

    def __init__(self, directory: Optional[str]):
        self.directory = Path(directory) if directory else None

    def write(self, decision_id: str, bundle: Dict[str, Any]) -> Optional[str]:
        """
        Returns:
            Path of the written file, or None if disabled or failed
        """
        if self.directory is None:
            return None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            out_path = self.directory / f"{safe_file_name(decision_id)}.json"
            out_path.write_text(json.dumps(bundle, indent=2, default=str), encoding="utf-8")
            return str(out_path)
        except OSError as e:
            metrics.bundle_write_failures_total.labels(sink="file").inc()
            logger.warning("failed to write incident bundle %s: %s", decision_id, e)
            return None


class RedisBundleSink:
    """Stores bundles as ``SET <prefix><safe id> <json> EX <ttl>``."""

    def __init__(self, client, prefix: str = "incident:", ttl_seconds: int = 0, retries: Optional[int] = None):
        self.client = client
        self.prefix = prefix
        self.ttl_seconds = int(ttl_seconds)
        self.retries = retries

    def key_for(self, decision_id: str) -> str:
        return f"{self.prefix}{safe_file_name(decision_id)}"

    async def write(self, decision_id: str, bundle: Dict[str, Any]) -> Optional[str]:
        key = self.key_for(decision_id)
        payload = json.dumps(bundle, default=str)
        ex = self.ttl_seconds or None
        try:
            await redis_op(
                self.client, lambda r, k, v: r.set(k, v, ex=ex), key, payload, retries=self.retries
            )
            return key
        except (RedisUnavailable, RedisOpFailed) as e:
            metrics.bundle_write_failures_total.labels(sink="redis").inc()
            logger.warning("failed to store incident bundle %s in redis: %s", decision_id, e)
            return None
