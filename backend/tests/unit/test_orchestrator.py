import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from greenguard.models.domain import (
    ClassifierVerdict,
    FacilityRules,
    PipelineState,
    Severity,
    VerdictSource,
)
from greenguard.services.ai_classifier import AIClassifierAdapter
from greenguard.services.context_enricher import ContextEnricher
from greenguard.services.orchestrator import SYSTEM_ERROR_REASONING, AuditOrchestrator, trigger_audit

TS = datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)


class FixedAI:
    """Stands in for the adapter and records what the pipeline passed it."""

    configured = True

    def __init__(self, verdict):
        self.verdict = verdict
        self.calls = []

    async def classify(self, reading, context, rules, analysis=None, historical_average=None, trace=None):
        self.calls.append({"analysis": analysis, "historical_average": historical_average})
        return self.verdict


class SlowEnricher(ContextEnricher):
    async def enrich(self, location, timestamp, trace=None):
        await asyncio.sleep(5)


def _build(store, ai=None, enricher=None, notifier=None):
    return AuditOrchestrator(
        store=store,
        enricher=enricher or ContextEnricher(),
        ai_classifier=ai or AIClassifierAdapter(),
        notifier=notifier,
    )


@pytest.mark.asyncio
async def test_verified_run_persists_one_verdict(store, facility, make_reading):
    reading = make_reading(300.0, timestamp=TS)
    store.insert_reading(reading)
    notifier = MagicMock()
    notifier.notify = AsyncMock()

    result = await _build(store, notifier=notifier).process_reading(reading.id)

    assert result.success is True
    assert result.state == PipelineState.PERSISTED
    assert result.verdict.severity == Severity.VERIFIED
    assert result.verdict.confidence == 80
    notifier.notify.assert_not_awaited()

    audits = store.list_audits_for_reading(reading.id)
    assert [a.id for a in audits] == [result.audit_id]
    stages = [e.stage for e in audits[0].trace]
    assert stages[0] == "Orchestrator"
    assert {"ContextEnricher", "RuleClassifier", "AIClassifier", "Reconciler"} <= set(stages)
    assert any("weather=synthetic" in e.message for e in audits[0].trace)


@pytest.mark.asyncio
async def test_historical_average_from_previous_readings(store, facility, make_reading):
    for i, kwh in enumerate((200.0, 240.0, 280.0)):
        store.insert_reading(make_reading(kwh, timestamp=TS - timedelta(minutes=5 * (i + 1))))
    reading = make_reading(300.0, timestamp=TS)
    store.insert_reading(reading)
    ai = FixedAI(ClassifierVerdict(severity=Severity.VERIFIED, confidence=90, reasoning="ok", source=VerdictSource.AI))

    await _build(store, ai=ai).process_reading(reading.id)

    assert ai.calls[0]["historical_average"] == pytest.approx(240.0)
    assert ai.calls[0]["analysis"] is not None


@pytest.mark.asyncio
async def test_no_history_uses_current_reading(store, facility, make_reading):
    reading = make_reading(300.0, timestamp=TS)
    store.insert_reading(reading)
    ai = FixedAI(ClassifierVerdict(severity=Severity.VERIFIED, confidence=90, reasoning="ok", source=VerdictSource.AI))

    result = await _build(store, ai=ai).process_reading(reading.id)

    assert ai.calls[0]["historical_average"] == 300.0
    assert any(e.level.value == "warning" and "No historical data" in e.message for e in result.verdict.trace)


@pytest.mark.asyncio
async def test_rule_floor_survives_lenient_ai(store, facility, make_reading):
    reading = make_reading(430.0, timestamp=TS)
    store.insert_reading(reading)
    ai = FixedAI(ClassifierVerdict(severity=Severity.VERIFIED, confidence=95, reasoning="Heatwave.", source=VerdictSource.AI))
    notifier = MagicMock()
    notifier.notify = AsyncMock()

    result = await _build(store, ai=ai, notifier=notifier).process_reading(reading.id)

    assert result.verdict.severity == Severity.ANOMALY
    assert result.verdict.confidence == 85
    assert result.state == PipelineState.NOTIFIED
    notifier.notify.assert_awaited_once()
    assert any("Discarded ai verdict" in e.message and "Heatwave." in e.message for e in result.verdict.trace)


@pytest.mark.asyncio
async def test_rule_floor_when_ai_fails(store, facility, make_reading):
    reading = make_reading(430.0, timestamp=TS)
    store.insert_reading(reading)
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("503 from provider"))

    result = await _build(store, ai=AIClassifierAdapter(client=client)).process_reading(reading.id)

    assert result.success is True
    assert result.verdict.severity == Severity.ANOMALY


@pytest.mark.asyncio
async def test_invalid_ceiling_yields_system_error(store, mumbai, make_reading):
    store.upsert_facility(FacilityRules(facility_id="fac-1", max_load_kwh=0.0, location=mumbai))
    reading = make_reading(100.0, timestamp=TS)
    store.insert_reading(reading)

    result = await _build(store).process_reading(reading.id)

    assert result.success is False
    assert result.verdict.severity == Severity.WARNING
    assert result.verdict.confidence == 0
    assert result.verdict.reasoning == SYSTEM_ERROR_REASONING
    assert len(store.list_audits_for_reading(reading.id)) == 1
    assert any(e.level.value == "error" and "Pipeline failed" in e.message for e in result.verdict.trace)


@pytest.mark.asyncio
async def test_missing_reading_still_persists_verdict(store):
    result = await _build(store).process_reading("ghost")

    assert result.success is False
    assert store.get_audit(result.audit_id).reasoning == SYSTEM_ERROR_REASONING
    assert len(store.list_audits_for_reading("ghost")) == 1


@pytest.mark.asyncio
async def test_missing_facility_rules(store, make_reading):
    reading = make_reading(100.0, facility_id="unknown")
    store.insert_reading(reading)

    result = await _build(store).process_reading(reading.id)

    assert result.verdict.reasoning == SYSTEM_ERROR_REASONING
    assert result.verdict.facility_id == "unknown"


@pytest.mark.asyncio
async def test_notifier_failure_keeps_single_verdict(store, facility, make_reading):
    reading = make_reading(430.0, timestamp=TS)
    store.insert_reading(reading)
    notifier = MagicMock()
    notifier.notify = AsyncMock(side_effect=RuntimeError("smtp down"))

    result = await _build(store, notifier=notifier).process_reading(reading.id)

    assert result.success is True
    assert result.state == PipelineState.PERSISTED
    stored = store.list_audits_for_reading(reading.id)
    assert len(stored) == 1
    last = stored[0].trace[-1]
    assert last.stage == "Notifier"
    assert last.level.value == "error"
    assert "Notification failed" in last.message and "smtp down" in last.message


@pytest.mark.asyncio
async def test_notification_outcome_is_stored_after_persisting(store, facility, make_reading):
    reading = make_reading(430.0, timestamp=TS)
    store.insert_reading(reading)
    notifier = MagicMock()
    notifier.notify = AsyncMock()

    result = await _build(store, notifier=notifier).process_reading(reading.id)

    messages = [e.message for e in store.get_audit(result.audit_id).trace]
    persisted_at = next(i for i, m in enumerate(messages) if m.startswith("Persisting ANOMALY audit"))
    notified_at = next(i for i, m in enumerate(messages) if m.startswith("Reviewers notified"))
    assert persisted_at < notified_at == len(messages) - 1
    assert [e.message for e in result.verdict.trace] == messages


@pytest.mark.asyncio
async def test_verified_audit_completes_after_persisting(store, facility, make_reading):
    reading = make_reading(300.0, timestamp=TS)
    store.insert_reading(reading)

    result = await _build(store).process_reading(reading.id)

    trace = store.get_audit(result.audit_id).trace
    assert trace[-2].message.startswith("Persisting VERIFIED audit")
    assert trace[-1].stage == "Notifier"
    assert trace[-1].message == "Audit complete: VERIFIED - no action required"


@pytest.mark.asyncio
async def test_deadline_exceeded_is_system_error(store, facility, make_reading):
    reading = make_reading(300.0, timestamp=TS)
    store.insert_reading(reading)

    result = await _build(store, enricher=SlowEnricher()).process_reading(reading.id, deadline_s=0.05)

    assert result.success is False
    assert result.verdict.reasoning == SYSTEM_ERROR_REASONING
    assert any("deadline exceeded" in e.message for e in result.verdict.trace)


@pytest.mark.asyncio
async def test_cancellation_propagates_and_persists_nothing(store, facility, make_reading):
    reading = make_reading(300.0, timestamp=TS)
    store.insert_reading(reading)
    task = asyncio.create_task(_build(store, enricher=SlowEnricher()).process_reading(reading.id))
    await asyncio.sleep(0.05)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert store.list_audits_for_reading(reading.id) == []


@pytest.mark.asyncio
async def test_persist_failure_falls_back_to_system_error(store, facility, make_reading, monkeypatch):
    reading = make_reading(300.0, timestamp=TS)
    store.insert_reading(reading)
    real_create = store.create_audit_verdict
    calls = []

    def flaky(verdict):
        calls.append(verdict.reasoning)
        if len(calls) == 1:
            raise RuntimeError("disk full")
        return real_create(verdict)

    monkeypatch.setattr(store, "create_audit_verdict", flaky)

    result = await _build(store).process_reading(reading.id)

    assert result.success is False
    assert calls[-1] == SYSTEM_ERROR_REASONING
    assert len(store.list_audits_for_reading(reading.id)) == 1
    messages = [e.message for e in store.get_audit(result.audit_id).trace]
    assert "Failed to persist VERIFIED verdict; superseded by system-error verdict" in messages
    assert not any(m.startswith("Audit complete") for m in messages)
    assert messages[-2].startswith("Persisting WARNING audit")
    assert messages[-1] == "Audit queued for human review (WARNING)"


@pytest.mark.asyncio
async def test_offset_reading_uses_earlier_utc_history(store, facility, make_reading):
    ist = timezone(timedelta(hours=5, minutes=30))
    store.insert_reading(make_reading(200.0, timestamp=TS - timedelta(minutes=10)))
    store.insert_reading(make_reading(900.0, timestamp=TS + timedelta(minutes=10)))
    reading = make_reading(300.0, timestamp=datetime(2024, 6, 1, 19, 30, tzinfo=ist))
    store.insert_reading(reading)
    ai = FixedAI(ClassifierVerdict(severity=Severity.VERIFIED, confidence=90, reasoning="ok", source=VerdictSource.AI))

    result = await _build(store, ai=ai).process_reading(reading.id)

    assert result.success is True
    assert ai.calls[0]["historical_average"] == 200.0
    assert store.get_audit(result.audit_id).created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_trigger_audit_swallows_failures():
    orchestrator = MagicMock()
    orchestrator.process_reading = AsyncMock(side_effect=RuntimeError("store offline"))

    await trigger_audit(orchestrator, "r-1")

    orchestrator.process_reading.assert_awaited_once_with("r-1")
