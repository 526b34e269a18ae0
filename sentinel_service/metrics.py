"""Prometheus metrics for the decision pipeline, gate outcomes and side channels."""

from __future__ import annotations
import logging

from prometheus_client import Counter, Gauge, start_http_server

from .config import get_settings

logger = logging.getLogger(__name__)


decisions_evaluated_total = Counter(
    "sentinel_decisions_evaluated_total",
    "Decisions evaluated",
    ["computed", "executed", "mode"],
)
cooldown_blocked_total = Counter("sentinel_cooldown_blocked_total", "Decisions suppressed by cooldown")
authorization_rejections_total = Counter(
    "sentinel_authorization_rejections_total", "Rejected callers", ["kind"]
)
journal_write_failures_total = Counter("sentinel_journal_write_failures_total", "Journal mirror write failures")
persist_failures_total = Counter("sentinel_persist_failures_total", "Journal persistence failures")
pending_entries = Gauge("sentinel_pending_entries", "Journal entries waiting for persistence")
advisor_failures_total = Counter("sentinel_advisor_failures_total", "Advisor failures or timeouts")
bundle_write_failures_total = Counter("sentinel_bundle_write_failures_total", "Incident bundle write failures", ["sink"])
redis_op_errors_total = Counter("sentinel_redis_op_errors_total", "Redis operation errors")
redis_op_retries_total = Counter("sentinel_redis_op_retries_total", "Redis operation retries")


def start_metrics_server_if_enabled(port=None):
    if port is None:
        port = get_settings().METRICS_PORT
    try:
        if port:
            start_http_server(port)
    except OSError:
        logger.exception("failed to start metrics server")
