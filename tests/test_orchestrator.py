import json
from pathlib import Path

import pytest

import sentinel_service.orchestrator as orchestrator_module
from sentinel_boundary.errors import ConfigurationError, InvalidSender, NotExecutor
from sentinel_boundary.models import MAX_SIGNAL_VALUE, Action, ExecutionMode, RiskMode, Suppression
from sentinel_service.advisor import Advisor
from sentinel_service.orchestrator import SentinelOrchestrator
from sentinel_service.schemas import DecisionSubmission

SUBMITTER = "forwarder"
GATE = "sentinel-gate"
OWNER = "owner"


def sub(value, reason="", **meta):
    return DecisionSubmission(signal_value=value, reason=reason, meta=meta)


class ExplodingAdvisor(Advisor):
    name = "exploding"

    def advise(self, signal, policy):
        raise RuntimeError("model offline")


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expiry = {}

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex
        return True

    async def close(self):
        return None


@pytest.fixture
def orch(make_settings):
    return SentinelOrchestrator(make_settings())


def sqlite_dsn(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'journal.db'}"


class TestEndToEnd:
    """Policy {risk: 250, pause: 700}, cooldown 60s, fresh target per case."""

    @pytest.mark.asyncio
    async def test_low_signal_leaves_target_unchanged(self, orch):
        before = orch.target.get_state()
        result = await orch.submit(sub(100), SUBMITTER, now=10)
        assert result.action_executed is Action.NO_ACTION
        assert orch.target.state.mode == before["mode"] and orch.target.state.paused is False
        assert len(orch.journal) == 1

    @pytest.mark.asyncio
    async def test_risk_signal_sets_mode(self, orch):
        result = await orch.submit(sub(300), SUBMITTER, now=10)
        assert result.action_executed is Action.SET_RISK_MODE
        assert orch.target.state.mode == 2
        assert orch.target.state.last_accepted_action_at == 10

    @pytest.mark.asyncio
    async def test_pause_signal_pauses(self, orch):
        result = await orch.submit(sub(800), SUBMITTER, now=10)
        assert result.action_executed is Action.PAUSE
        assert orch.target.state.paused is True

    @pytest.mark.asyncio
    async def test_repeated_risk_signal_is_blocked(self, orch):
        await orch.submit(sub(300), SUBMITTER, now=10)
        second = await orch.submit(sub(300), SUBMITTER, now=40)
        assert second.action_executed is Suppression.COOLDOWN_BLOCKED
        assert orch.target.state.mode == 2
        assert orch.target.state.last_accepted_action_at == 10


class TestEscalationScenarios:
    """Risk mode, cooldown block, pause after window, unauthorized sender."""

    @pytest.mark.asyncio
    async def test_full_sequence(self, orch):
        a = await orch.submit(sub(300), SUBMITTER, now=0)
        assert a.accepted is True
        assert a.action_executed is Action.SET_RISK_MODE
        assert a.to_dict()["set_risk_mode"] is True
        assert orch.target.state.mode is RiskMode.EMERGENCY

        b = await orch.submit(sub(900), SUBMITTER, now=30)
        assert b.accepted is False
        assert b.action_computed is Action.PAUSE
        assert b.action_executed is Suppression.COOLDOWN_BLOCKED
        assert b.remaining_cooldown == 30
        assert b.entry.reason.startswith("Cooldown active: 30s remaining of 60s window")
        assert orch.target.state.paused is False

        c = await orch.submit(sub(900), SUBMITTER, now=61)
        assert c.accepted is True
        assert c.action_executed is Action.PAUSE
        assert orch.target.state.paused is True

        with pytest.raises(InvalidSender):
            await orch.submit(sub(900), "attacker", now=200)

        entries = orch.journal.query()
        assert [e.action_executed for e in entries] == [
            Action.SET_RISK_MODE, Suppression.COOLDOWN_BLOCKED, Action.PAUSE,
        ]
        assert orch.target.state.last_accepted_action_at == 61

    @pytest.mark.asyncio
    async def test_within_band_is_no_action(self, orch):
        result = await orch.submit(sub(10), SUBMITTER, now=5)
        assert result.action_executed is Action.NO_ACTION
        assert result.exceeded is False
        assert result.entry.reason.startswith("within band | AI: NO_ACTION | severity=LOW")

    @pytest.mark.asyncio
    async def test_reason_includes_advice(self, orch):
        result = await orch.submit(sub(300), SUBMITTER, now=0)
        assert result.entry.reason == "threshold exceeded | AI: SET_RISK_MODE | severity=HIGH | conf=0.8"
        assert result.entry.advice.severity == "HIGH"

    @pytest.mark.asyncio
    async def test_caller_reason_is_kept(self, orch):
        result = await orch.submit(sub(900, reason="oracle drift"), SUBMITTER, now=0)
        assert result.entry.reason.startswith("oracle drift | AI: PAUSE")

    @pytest.mark.asyncio
    async def test_decision_id_is_deterministic(self, make_settings):
        first = SentinelOrchestrator(make_settings(INCIDENT_DIR=""))
        second = SentinelOrchestrator(make_settings(INCIDENT_DIR=""))
        a = await first.submit(sub(300), SUBMITTER, now=1_700_000_000)
        b = await second.submit(sub(300), SUBMITTER, now=1_700_000_000)
        assert a.decision_id == b.decision_id

    @pytest.mark.asyncio
    async def test_rotated_executor_rejects_gate(self, orch):
        orch.rotate_executor(OWNER, "someone-else")
        with pytest.raises(NotExecutor):
            await orch.submit(sub(900), SUBMITTER, now=0)
        assert orch.target.state.paused is False
        assert len(orch.journal) == 0


class TestShadowMode:
    @pytest.mark.asyncio
    async def test_shadow_records_without_touching_target(self, make_settings):
        orch = SentinelOrchestrator(make_settings(EXECUTION_MODE="SHADOW"))
        result = await orch.submit(sub(900), SUBMITTER, now=0)
        assert result.entry.execution_mode is ExecutionMode.SHADOW
        assert result.action_executed is Action.NO_ACTION
        assert result.entry.shadow_action is Action.PAUSE
        assert orch.target.state.paused is False
        assert orch.target.state.last_accepted_action_at is None

        # no cooldown either: the next shadow decision is evaluated fully
        again = await orch.submit(sub(300), SUBMITTER, now=1)
        assert again.entry.shadow_action is Action.SET_RISK_MODE

    @pytest.mark.asyncio
    async def test_dry_run_alias(self, make_settings):
        orch = SentinelOrchestrator(make_settings(EXECUTION_MODE="dry_run"))
        assert orch.execution_mode is ExecutionMode.SHADOW

    @pytest.mark.asyncio
    async def test_shadow_within_band_has_no_shadow_action(self, make_settings):
        orch = SentinelOrchestrator(make_settings(EXECUTION_MODE="SHADOW"))
        result = await orch.submit(sub(1), SUBMITTER, now=0)
        assert result.entry.shadow_action is None

    @pytest.mark.asyncio
    async def test_shadow_still_authenticates(self, make_settings):
        orch = SentinelOrchestrator(make_settings(EXECUTION_MODE="SHADOW"))
        with pytest.raises(InvalidSender):
            await orch.submit(sub(900), "attacker", now=0)
        assert len(orch.journal) == 0

    @pytest.mark.asyncio
    async def test_per_call_override(self, orch):
        result = await orch.submit(sub(900), SUBMITTER, now=0, execution_mode=ExecutionMode.SHADOW)
        assert result.entry.shadow_action is Action.PAUSE
        assert orch.target.state.paused is False


class TestAdvisor:
    @pytest.mark.asyncio
    async def test_failing_advisor_never_blocks(self, make_settings):
        orch = SentinelOrchestrator(make_settings(), advisor=ExplodingAdvisor())
        result = await orch.submit(sub(900), SUBMITTER, now=0)
        assert result.accepted is True
        assert result.entry.advice is None
        assert result.entry.reason == "threshold exceeded"
        assert orch.target.state.paused is True

    @pytest.mark.asyncio
    async def test_disabled_advisor(self, make_settings):
        orch = SentinelOrchestrator(make_settings(ADVISOR_ENABLED=False))
        assert orch.advisor is None
        result = await orch.submit(sub(300), SUBMITTER, now=0)
        assert result.entry.advice is None


class TestIncidentBundles:
    @pytest.mark.asyncio
    async def test_bundle_file_written(self, orch):
        result = await orch.submit(sub(900), SUBMITTER, now=1_700_000_000)
        path = Path(result.incident_path)
        assert path.exists()
        bundle = json.loads(path.read_text())
        assert bundle["decision_id"] == result.decision_id
        assert bundle["action_executed"] == "PAUSE"
        assert bundle["thresholds"] == {"risk": 250, "pause": 700}
        assert bundle["determinism"]["ok"] is True
        assert bundle["target_state"]["paused"] is True

    @pytest.mark.asyncio
    async def test_bundle_disabled(self, make_settings):
        orch = SentinelOrchestrator(make_settings(INCIDENT_DIR=""))
        result = await orch.submit(sub(900), SUBMITTER, now=0)
        assert result.incident_path is None

    @pytest.mark.asyncio
    async def test_bundle_sent_to_redis(self, make_settings):
        fake = FakeRedis()
        orch = SentinelOrchestrator(make_settings(INCIDENT_REDIS_TTL_SECONDS=30), redis_client=fake)
        await orch.setup()
        result = await orch.submit(sub(900), SUBMITTER, now=0)
        assert result.incident_key == f"incident:{result.decision_id}"
        assert json.loads(fake.store[result.incident_key])["decision_id"] == result.decision_id
        assert fake.expiry[result.incident_key] == 30
        await orch.close()

    @pytest.mark.asyncio
    async def test_regenerate_bundle(self, orch):
        result = await orch.submit(sub(300), SUBMITTER, now=0)
        bundle = await orch.regenerate_bundle(result.decision_id)
        assert bundle["sequence"] == result.entry.sequence
        assert await orch.regenerate_bundle("sf-unknown") is None


class TestPersistence:
    @pytest.mark.asyncio
    async def test_entries_persisted_in_gate_order(self, make_settings, tmp_path):
        orch = SentinelOrchestrator(make_settings(DATABASE_URL=sqlite_dsn(tmp_path)))
        await orch.setup()
        try:
            results = [
                await orch.submit(sub(300), SUBMITTER, now=0),
                await orch.submit(sub(900), SUBMITTER, now=30),
                await orch.submit(sub(900), SUBMITTER, now=61),
            ]
            assert all(r.persisted for r in results)
            stored = await orch.query_journal(source="storage")
            assert [s["decision_id"] for s in stored] == [r.decision_id for r in results]
            assert stored[1]["action_executed"] == "COOLDOWN_BLOCKED"
        finally:
            await orch.close()

    @pytest.mark.asyncio
    async def test_failed_persist_stays_pending(self, make_settings, tmp_path, monkeypatch):
        orch = SentinelOrchestrator(make_settings(DATABASE_URL=sqlite_dsn(tmp_path)))
        await orch.setup()
        real_insert = orchestrator_module.insert_journal_entry

        async def broken_insert(sessionmaker, entry):
            raise RuntimeError("db down")

        try:
            monkeypatch.setattr(orchestrator_module, "insert_journal_entry", broken_insert)
            first = await orch.submit(sub(300), SUBMITTER, now=0)
            second = await orch.submit(sub(900), SUBMITTER, now=61)
            assert first.persisted is False and second.persisted is False
            # the gate still decided and the in-process journal still holds both
            assert orch.target.state.paused is True
            assert len(orch.journal) == 2
            assert [p["decision_id"] for p in orch.pending_entries()] == [first.decision_id, second.decision_id]

            monkeypatch.setattr(orchestrator_module, "insert_journal_entry", real_insert)
            assert await orch.drain_pending() == 2
            assert orch.pending_entries() == []
            stored = await orch.query_journal(source="storage")
            assert [s["sequence"] for s in stored] == [1, 2]
        finally:
            await orch.close()

    @pytest.mark.asyncio
    async def test_unwritable_entry_does_not_block_later_entries(self, make_settings, tmp_path, monkeypatch):
        """An entry that keeps failing is parked so entries behind it still persist."""
        orch = SentinelOrchestrator(make_settings(DATABASE_URL=sqlite_dsn(tmp_path), PERSIST_MAX_ATTEMPTS=2))
        await orch.setup()
        real_insert = orchestrator_module.insert_journal_entry

        async def reject_one(sessionmaker, entry):
            if entry.signal_value == 12345:
                raise OverflowError("value out of range for column")
            return await real_insert(sessionmaker, entry)

        try:
            monkeypatch.setattr(orchestrator_module, "insert_journal_entry", reject_one)
            bad = await orch.submit(sub(12345), SUBMITTER, now=0)
            assert bad.persisted is False
            assert len(orch.pending_entries()) == 1

            later = [
                await orch.submit(sub(300), SUBMITTER, now=61),
                await orch.submit(sub(300), SUBMITTER, now=122),
            ]
            assert all(r.persisted for r in later)
            assert orch.pending_entries() == []
            assert [f["decision_id"] for f in orch.failed_entries()] == [bad.decision_id]
            assert orch.health()["failed_entries"] == 1

            stored = await orch.query_journal(source="storage")
            assert [s["decision_id"] for s in stored] == [r.decision_id for r in later]
            # the gate decision for the unwritable entry still stands
            assert orch.target.state.paused is True
        finally:
            await orch.close()

    @pytest.mark.asyncio
    async def test_largest_signal_value_is_persisted(self, make_settings, tmp_path):
        orch = SentinelOrchestrator(make_settings(DATABASE_URL=sqlite_dsn(tmp_path)))
        await orch.setup()
        try:
            result = await orch.submit(sub(MAX_SIGNAL_VALUE), SUBMITTER, now=0)
            assert result.persisted is True
            stored = await orch.query_journal(source="storage")
            assert stored[0]["signal_value"] == MAX_SIGNAL_VALUE
        finally:
            await orch.close()

    @pytest.mark.asyncio
    async def test_journal_file_restores_state_without_database(self, make_settings, tmp_path):
        path = tmp_path / "journal.jsonl"
        first = SentinelOrchestrator(make_settings(JOURNAL_FILE=str(path)))
        await first.setup()
        await first.submit(sub(300), SUBMITTER, now=0)

        second = SentinelOrchestrator(make_settings(JOURNAL_FILE=str(path)))
        await second.setup()
        assert len(second.journal) == 1
        assert second.target.state.mode is RiskMode.EMERGENCY
        assert second.target.state.last_accepted_action_at == 0

        blocked = await second.submit(sub(900), SUBMITTER, now=10)
        assert blocked.action_executed is Suppression.COOLDOWN_BLOCKED
        assert blocked.entry.sequence == 2
        assert second.target.state.paused is False

        lines = [json.loads(l) for l in path.read_text().splitlines()]
        assert [l["sequence"] for l in lines] == [1, 2]

    @pytest.mark.asyncio
    async def test_journal_file_ignored_when_reconcile_disabled(self, make_settings, tmp_path):
        path = tmp_path / "journal.jsonl"
        first = SentinelOrchestrator(make_settings(JOURNAL_FILE=str(path)))
        await first.submit(sub(300), SUBMITTER, now=0)

        second = SentinelOrchestrator(make_settings(JOURNAL_FILE=str(path), RECONCILE_ON_STARTUP=False))
        await second.setup()
        assert len(second.journal) == 0
        assert second.target.state.last_accepted_action_at is None

    @pytest.mark.asyncio
    async def test_storage_query_requires_dsn(self, orch):
        with pytest.raises(ValueError):
            await orch.query_journal(source="storage")

    @pytest.mark.asyncio
    async def test_reconcile_on_startup(self, make_settings, tmp_path):
        dsn = sqlite_dsn(tmp_path)
        first = SentinelOrchestrator(make_settings(DATABASE_URL=dsn))
        await first.setup()
        await first.submit(sub(300), SUBMITTER, now=0)
        await first.submit(sub(900), SUBMITTER, now=61)
        await first.close()

        second = SentinelOrchestrator(make_settings(DATABASE_URL=dsn))
        await second.setup()
        try:
            assert len(second.journal) == 2
            assert second.target.state.paused is True
            assert second.target.state.mode is RiskMode.EMERGENCY
            assert second.target.state.last_accepted_action_at == 61
            blocked = await second.submit(sub(900), SUBMITTER, now=100)
            assert blocked.action_executed is Suppression.COOLDOWN_BLOCKED
            assert blocked.entry.sequence == 3
            fetched = await second.get_entry(blocked.decision_id)
            assert fetched.sequence == 3
        finally:
            await second.close()


class TestSignalSource:
    @pytest.mark.asyncio
    async def test_price_feed_signal(self, make_settings):
        async def reader():
            return 1030.0

        orch = SentinelOrchestrator(
            make_settings(SIGNAL_MODE="PRICE_FEED", BASELINE_PRICE=1000.0), price_reader=reader
        )
        result = await orch.submit(sub(0), SUBMITTER, now=0)
        assert result.entry.signal_value == 300
        assert result.action_executed is Action.SET_RISK_MODE
        assert result.entry.meta["current_price"] == 1030.0
        assert result.entry.meta["signal_mode"] == "PRICE_FEED"

    @pytest.mark.asyncio
    async def test_zero_baseline_is_a_zero_signal(self, make_settings):
        async def reader():
            return 2000.0

        orch = SentinelOrchestrator(
            make_settings(SIGNAL_MODE="PRICE_FEED", BASELINE_PRICE=0.0, PRICE_FEED_ID="eth-usd"),
            price_reader=reader,
        )
        result = await orch.submit(sub(900), SUBMITTER, now=0)
        assert result.entry.signal_value == 0
        assert result.action_executed is Action.NO_ACTION
        assert result.entry.meta["feed"] == "eth-usd"
        assert result.entry.meta["baseline_price"] == 0.0

    @pytest.mark.asyncio
    async def test_unset_baseline_uses_submitted_value(self, make_settings):
        async def reader():
            raise AssertionError("reader must not be called")

        orch = SentinelOrchestrator(make_settings(SIGNAL_MODE="PRICE_FEED"), price_reader=reader)
        result = await orch.submit(sub(300), SUBMITTER, now=0)
        assert result.entry.signal_value == 300
        assert "signal_mode" not in result.entry.meta

    @pytest.mark.asyncio
    async def test_huge_deviation_is_capped(self, make_settings):
        async def reader():
            return 1e30

        orch = SentinelOrchestrator(
            make_settings(SIGNAL_MODE="PRICE_FEED", BASELINE_PRICE=1.0), price_reader=reader
        )
        result = await orch.submit(sub(0), SUBMITTER, now=0)
        assert result.entry.signal_value == MAX_SIGNAL_VALUE
        assert result.action_executed is Action.PAUSE

    @pytest.mark.asyncio
    async def test_http_mode_uses_submitted_value(self, make_settings):
        async def reader():
            raise AssertionError("reader must not be called")

        orch = SentinelOrchestrator(make_settings(), price_reader=reader)
        result = await orch.submit(sub(700, source="manual"), SUBMITTER, now=0)
        assert result.entry.signal_value == 700
        assert result.entry.meta == {"source": "manual"}


class TestConfiguration:
    def test_invalid_thresholds_fail_fast(self, make_settings):
        with pytest.raises(ConfigurationError):
            SentinelOrchestrator(make_settings(RISK_THRESHOLD_BPS=900, PAUSE_THRESHOLD_BPS=700))

    def test_gate_identity_is_executor(self, orch):
        assert orch.target.executor == GATE


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_tracks_state(self, make_settings):
        clock = [0]
        orch = SentinelOrchestrator(make_settings(), clock=lambda: clock[0])
        assert orch.health()["verdict"] == "WARN"

        await orch.submit(sub(10), SUBMITTER)
        assert orch.health()["verdict"] == "OK"

        clock[0] = 100
        await orch.submit(sub(900), SUBMITTER)
        report = orch.health()
        assert report["verdict"] == "ALERT"
        assert report["remaining_cooldown"] == 60
        assert report["pending_entries"] == 0
