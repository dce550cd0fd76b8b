"""
orchestrator.py

Purpose:
  Runs the audit pipeline for one stored telemetry reading and persists exactly
  one AuditVerdict for it, whatever happens along the way.

Flow (PipelineState):
  INGESTED -> ENRICHING -> RULE_CHECKED -> AI_CLASSIFIED -> RECONCILED -> PERSISTED -> NOTIFIED
  1. Load the reading, the facility rules and the historical baseline.
  2. `ContextEnricher.enrich()` (weather + grid, concurrent, with fallbacks).
  3. Rule classifier (severity floor) and contextual analyzer (explanation only).
  4. AI classifier adapter (primary Gemini path or heuristic fallback).
  5. Reconcile by severity precedence and persist.
  6. Notify reviewers, then append the notification outcome to the stored trace.

Failure model:
  Any exception before persistence (including a missed `deadline_s`) yields a
  WARNING verdict with confidence 0 and the system-error reasoning, which is
  still persisted. Completed stages are never retried. Cancelling the task
  propagates into the in-flight provider and AI calls and persists nothing.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from greenguard.errors import FacilityNotFound, ReadingNotFound
from greenguard.models.domain import (
    AuditVerdict,
    ClassifierVerdict,
    FacilityRules,
    PipelineResult,
    PipelineState,
    Severity,
    TelemetryRecord,
    TraceEntry,
    TraceLevel,
    utc_now,
)
from greenguard.services import context_analyzer, rule_classifier
from greenguard.services.ai_classifier import AIClassifierAdapter
from greenguard.services.context_enricher import ContextEnricher, describe_sources
from greenguard.services.notifier import LogNotifier, needs_review
from greenguard.services.reconciler import reconcile
from greenguard.services.store import AuditStore
from greenguard.services.trace import (
    STAGE_AI,
    STAGE_ANALYZER,
    STAGE_CONTEXT,
    STAGE_INGESTION,
    STAGE_NOTIFIER,
    STAGE_ORCHESTRATOR,
    STAGE_RECONCILER,
    STAGE_RULES,
    TraceLog,
)

logger = logging.getLogger(__name__)

SYSTEM_ERROR_REASONING = "System error — manual review required"

_VERDICT_LEVEL = {
    Severity.VERIFIED: TraceLevel.SUCCESS,
    Severity.WARNING: TraceLevel.WARNING,
    Severity.ANOMALY: TraceLevel.ERROR,
}


@dataclass
class _RunState:
    state: PipelineState = PipelineState.INGESTED
    facility_id: Optional[str] = None


def _short(ident: str) -> str:
    return ident[:8]


class AuditOrchestrator:
    def __init__(
        self,
        store: AuditStore,
        enricher: ContextEnricher,
        ai_classifier: AIClassifierAdapter,
        notifier: Optional[LogNotifier] = None,
        history_window: int = 10,
    ):
        self.store = store
        self.enricher = enricher
        self.ai_classifier = ai_classifier
        self.notifier = notifier
        self.history_window = max(1, int(history_window))

    # -----------------------------
    # Stages
    # -----------------------------
    def _load(self, telemetry_id: str, trace: TraceLog, run: _RunState) -> Tuple[TelemetryRecord, FacilityRules]:
        trace.info(STAGE_INGESTION, "Fetching telemetry record...")
        reading = self.store.get_reading(telemetry_id)
        if reading is None:
            raise ReadingNotFound(telemetry_id)
        run.facility_id = reading.facility_id
        trace.success(
            STAGE_INGESTION,
            f"Received reading: {reading.energy_kwh:g} kWh at {reading.timestamp.isoformat()}",
        )

        rules = self.store.get_facility_rules(reading.facility_id)
        if rules is None:
            raise FacilityNotFound(reading.facility_id)
        trace.info(
            STAGE_INGESTION,
            f"Facility: {rules.name or rules.facility_id} | Max load: {rules.max_load_kwh:g} kWh (from electricity bill)",
        )
        return reading, rules

    def _historical_average(self, reading: TelemetryRecord, trace: TraceLog) -> float:
        history = [
            r for r in self.store.recent_readings(
                reading.facility_id, limit=self.history_window, before=reading.timestamp
            )
            if r.id != reading.id
        ]
        if not history:
            trace.warning(STAGE_CONTEXT, "No historical data available, using current reading as baseline")
            return float(reading.energy_kwh)

        avg = sum(float(r.energy_kwh) for r in history) / len(history)
        trace.info(STAGE_CONTEXT, f"Historical average (last {len(history)} readings): {avg:.2f} kWh")
        return avg

    async def _evaluate(self, telemetry_id: str, trace: TraceLog, run: _RunState) -> AuditVerdict:
        reading, rules = self._load(telemetry_id, trace, run)
        historical_average = self._historical_average(reading, trace)

        # 1) Context
        run.state = PipelineState.ENRICHING
        context = await self.enricher.enrich(rules.location, reading.timestamp, trace=trace)
        trace.info(
            STAGE_CONTEXT,
            f"Context provenance: weather={context.provenance.weather.value}, "
            f"grid={context.provenance.grid.value} ({describe_sources(context)})",
        )

        # 2) Rules + contextual analysis
        trace.info(STAGE_RULES, "Running rule-based pre-check...")
        rule_verdict = rule_classifier.classify(reading, rules)
        trace.emit(
            STAGE_RULES,
            f"Preliminary assessment: {rule_verdict.severity.value} - {rule_verdict.reasoning}",
            _VERDICT_LEVEL[rule_verdict.severity],
        )
        run.state = PipelineState.RULE_CHECKED

        analysis = context_analyzer.analyze(reading, context, rules)
        flags = f" [{', '.join(analysis.flags)}]" if analysis.flags else ""
        if analysis.suspicious:
            trace.warning(STAGE_ANALYZER, f"Contextual flag: {analysis.reasoning}{flags}")
        else:
            trace.success(STAGE_ANALYZER, f"{analysis.reasoning}{flags}")

        # 3) AI
        ai_verdict = await self.ai_classifier.classify(
            reading,
            context,
            rules,
            analysis=analysis,
            historical_average=historical_average,
            trace=trace,
        )
        trace.emit(
            STAGE_AI,
            f"AI analysis ({ai_verdict.source.value}): {ai_verdict.severity.value} "
            f"(confidence: {ai_verdict.confidence}%) - {ai_verdict.reasoning}",
            _VERDICT_LEVEL[ai_verdict.severity],
        )
        run.state = PipelineState.AI_CLASSIFIED

        # 4) Reconcile
        final = reconcile(rule_verdict, ai_verdict)
        trace.info(STAGE_RECONCILER, f"Using {final.chosen.value} assessment: {final.severity.value}")
        self._trace_discarded(trace, final.discarded)
        run.state = PipelineState.RECONCILED

        return AuditVerdict(
            telemetry_id=reading.id,
            facility_id=reading.facility_id,
            severity=final.severity,
            confidence=final.confidence,
            reasoning=final.reasoning,
        )

    @staticmethod
    def _trace_discarded(trace: TraceLog, discarded: ClassifierVerdict) -> None:
        trace.info(
            STAGE_RECONCILER,
            f"Discarded {discarded.source.value} verdict ({discarded.severity.value}, "
            f"{discarded.confidence}%): {discarded.reasoning}",
        )

    def _system_error_verdict(self, telemetry_id: str, run: _RunState) -> AuditVerdict:
        return AuditVerdict(
            telemetry_id=telemetry_id,
            facility_id=run.facility_id,
            severity=Severity.WARNING,
            confidence=0,
            reasoning=SYSTEM_ERROR_REASONING,
        )

    def _persist(self, audit_id: str, verdict: AuditVerdict, trace: TraceLog) -> AuditVerdict:
        trace.info(STAGE_ORCHESTRATOR, f"Persisting {verdict.severity.value} audit {_short(audit_id)}")
        stored = verdict.model_copy(update={"id": audit_id, "trace": trace.entries, "created_at": utc_now()})
        self.store.create_audit_verdict(stored)
        return stored

    async def _notify(self, stored: AuditVerdict, trace: TraceLog, run: _RunState) -> None:
        severity = stored.severity.value
        if not needs_review(stored):
            trace.success(STAGE_NOTIFIER, f"Audit complete: {severity} - no action required")
            return
        if self.notifier is None:
            trace.warning(STAGE_NOTIFIER, f"Audit queued for human review ({severity})")
            return
        try:
            await self.notifier.notify(stored)
        except Exception as exc:
            logger.exception("Notification for audit %s failed", stored.id)
            trace.error(STAGE_NOTIFIER, f"Notification failed ({severity}): {type(exc).__name__}: {exc}")
            return
        run.state = PipelineState.NOTIFIED
        trace.warning(STAGE_NOTIFIER, f"Reviewers notified: audit requires human review ({severity})")

    def _record_outcome(self, stored: AuditVerdict, entries: List[TraceEntry]) -> AuditVerdict:
        try:
            return self.store.append_trace(stored.id, entries)
        except Exception:
            logger.exception("Recording notification outcome for audit %s failed", stored.id)
            return stored

    # -----------------------------
    # Entry point
    # -----------------------------
    async def process_reading(self, telemetry_id: str, deadline_s: Optional[float] = None) -> PipelineResult:
        trace = TraceLog()
        run = _RunState()
        audit_id = str(uuid.uuid4())
        success = True

        trace.info(STAGE_ORCHESTRATOR, f"Audit pipeline initiated for reading {_short(telemetry_id)}...")

        try:
            if deadline_s is not None:
                verdict = await asyncio.wait_for(self._evaluate(telemetry_id, trace, run), timeout=deadline_s)
            else:
                verdict = await self._evaluate(telemetry_id, trace, run)
        except Exception as exc:
            logger.exception("Audit pipeline failed for reading %s at %s", telemetry_id, run.state.value)
            detail = "deadline exceeded" if isinstance(exc, asyncio.TimeoutError) else f"{type(exc).__name__}: {exc}"
            trace.error(STAGE_ORCHESTRATOR, f"Pipeline failed during {run.state.value}: {detail}")
            verdict = self._system_error_verdict(telemetry_id, run)
            success = False

        try:
            stored = self._persist(audit_id, verdict, trace)
        except Exception:
            if not success:
                raise
            logger.exception("Persisting audit for reading %s failed", telemetry_id)
            trace.error(
                STAGE_ORCHESTRATOR,
                f"Failed to persist {verdict.severity.value} verdict; superseded by system-error verdict",
            )
            success = False
            stored = self._persist(audit_id, self._system_error_verdict(telemetry_id, run), trace)
        run.state = PipelineState.PERSISTED

        # Entries after this point are appended to the stored trace, never rewritten.
        persisted = len(trace)
        await self._notify(stored, trace, run)
        stored = self._record_outcome(stored, trace.entries[persisted:])

        return PipelineResult(audit_id=audit_id, state=run.state, verdict=stored, success=success)


async def trigger_audit(orchestrator: AuditOrchestrator, telemetry_id: str) -> None:
    """Fire-and-forget entry used by the ingestion route; never raises."""
    try:
        await orchestrator.process_reading(telemetry_id)
    except Exception:
        logger.exception("Background audit for reading %s could not be completed", telemetry_id)
