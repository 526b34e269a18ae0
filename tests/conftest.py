import os
import sys

import pytest

# Ensure repository root is on sys.path for package imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from sentinel_boundary.cooldown_gate import CooldownGate
from sentinel_boundary.journal import DecisionJournal
from sentinel_boundary.models import Policy
from sentinel_boundary.ops_target import OpsTarget
from sentinel_service.config import Settings

SUBMITTER = "forwarder"
GATE = "sentinel-gate"
OWNER = "owner"


@pytest.fixture
def policy():
    return Policy("SENTINELFLOW_POLICY_V0", risk_threshold=250, pause_threshold=700, cooldown_seconds=60)


@pytest.fixture
def target():
    return OpsTarget("ops-target", owner=OWNER, executor=GATE)


@pytest.fixture
def journal():
    return DecisionJournal()


@pytest.fixture
def gate(target, journal):
    return CooldownGate(target, journal, authorized_submitter=SUBMITTER, cooldown_seconds=60, identity=GATE)


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = dict(
            AUTHORIZED_SUBMITTER=SUBMITTER,
            GATE_IDENTITY=GATE,
            TARGET_OWNER=OWNER,
            RISK_THRESHOLD_BPS=250,
            PAUSE_THRESHOLD_BPS=700,
            COOLDOWN_SECONDS=60,
            INCIDENT_DIR=str(tmp_path / "incidents"),
            DATABASE_URL="",
            JOURNAL_FILE="",
            METRICS_PORT=0,
        )
        values.update(overrides)
        return Settings(**values)
    return _make
