"""
store.py

Purpose:
  Persistence boundary of the audit pipeline. The orchestrator and the API only
  talk to `AuditStore`; `SqlAuditStore` backs it with SQLModel tables.

Guarantees:
  - `create_audit_verdict` is a single-record atomic insert.
  - `set_human_action` is exactly-once: the conditional UPDATE only matches rows
    whose human_action is still NULL, so concurrent reviewers cannot both win.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from greenguard.errors import AuditNotFound, HumanActionAlreadySet
from greenguard.models.db import AuditRecord, FacilityRecord, TelemetryLog
from greenguard.models.domain import (
    AuditVerdict,
    FacilityRules,
    HumanAction,
    Location,
    Severity,
    TelemetryRecord,
    TraceEntry,
    utc_now,
)

logger = logging.getLogger(__name__)

PENDING_SEVERITIES = (Severity.WARNING.value, Severity.ANOMALY.value)


# ============================================================
# INTERFACE
# ============================================================

class AuditStore:
    """Record store used by the pipeline. Subclasses implement every method."""

    def get_reading(self, telemetry_id: str) -> Optional[TelemetryRecord]:
        raise NotImplementedError

    def recent_readings(
        self, facility_id: str, limit: int = 10, before: Optional[datetime] = None
    ) -> List[TelemetryRecord]:
        raise NotImplementedError

    def insert_reading(self, reading: TelemetryRecord) -> str:
        raise NotImplementedError

    def get_facility_rules(self, facility_id: str) -> Optional[FacilityRules]:
        raise NotImplementedError

    def upsert_facility(self, rules: FacilityRules) -> FacilityRules:
        raise NotImplementedError

    def create_audit_verdict(self, verdict: AuditVerdict) -> str:
        raise NotImplementedError

    def append_trace(self, audit_id: str, entries: List[TraceEntry]) -> AuditVerdict:
        raise NotImplementedError

    def set_human_action(self, audit_id: str, action: HumanAction) -> AuditVerdict:
        raise NotImplementedError

    def get_audit(self, audit_id: str) -> Optional[AuditVerdict]:
        raise NotImplementedError

    def list_audits_for_reading(self, telemetry_id: str) -> List[AuditVerdict]:
        raise NotImplementedError

    def list_pending_audits(self, limit: int = 100) -> List[AuditVerdict]:
        raise NotImplementedError


# ============================================================
# ROW <-> DOMAIN
# ============================================================

def _reading_from_row(row: TelemetryLog) -> TelemetryRecord:
    return TelemetryRecord(
        id=row.telemetry_id,
        facility_id=row.facility_id,
        timestamp=row.ts,
        energy_kwh=float(row.energy_kwh),
        voltage=float(row.voltage),
        current_amps=float(row.current_amps),
        power_watts=float(row.power_watts),
        raw_payload=dict(row.raw_payload or {}),
    )


def _rules_from_row(row: FacilityRecord) -> FacilityRules:
    return FacilityRules(
        facility_id=row.facility_id,
        name=row.name,
        max_load_kwh=float(row.max_load_kwh),
        baseline_carbon_intensity=float(row.baseline_carbon_intensity),
        location=Location(name=row.location_name, latitude=row.latitude, longitude=row.longitude),
    )


def _verdict_from_row(row: AuditRecord) -> AuditVerdict:
    return AuditVerdict(
        id=row.audit_id,
        telemetry_id=row.telemetry_id,
        facility_id=row.facility_id,
        severity=Severity(row.severity),
        confidence=int(row.confidence),
        reasoning=row.reasoning,
        trace=[TraceEntry(**e) for e in (row.trace or [])],
        human_action=HumanAction(row.human_action) if row.human_action else None,
        human_action_at=row.human_action_at,
        created_at=row.created_at,
    )


# ============================================================
# SQL IMPLEMENTATION
# ============================================================

class SqlAuditStore(AuditStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    # -----------------------------
    # Telemetry
    # -----------------------------
    def get_reading(self, telemetry_id: str) -> Optional[TelemetryRecord]:
        with Session(self.engine) as session:
            row = session.exec(
                select(TelemetryLog).where(TelemetryLog.telemetry_id == telemetry_id)
            ).first()
            return _reading_from_row(row) if row is not None else None

    def recent_readings(
        self, facility_id: str, limit: int = 10, before: Optional[datetime] = None
    ) -> List[TelemetryRecord]:
        stmt = select(TelemetryLog).where(TelemetryLog.facility_id == facility_id)
        if before is not None:
            stmt = stmt.where(TelemetryLog.ts < before)
        stmt = stmt.order_by(col(TelemetryLog.ts).desc()).limit(int(limit))
        with Session(self.engine) as session:
            return [_reading_from_row(r) for r in session.exec(stmt).all()]

    def insert_reading(self, reading: TelemetryRecord) -> str:
        row = TelemetryLog(
            telemetry_id=reading.id,
            facility_id=reading.facility_id,
            ts=reading.timestamp,
            energy_kwh=float(reading.energy_kwh),
            voltage=float(reading.voltage),
            current_amps=float(reading.current_amps),
            power_watts=float(reading.power_watts),
            raw_payload=dict(reading.raw_payload),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
        return reading.id

    # -----------------------------
    # Facilities
    # -----------------------------
    def get_facility_rules(self, facility_id: str) -> Optional[FacilityRules]:
        with Session(self.engine) as session:
            row = session.exec(
                select(FacilityRecord).where(FacilityRecord.facility_id == facility_id)
            ).first()
            return _rules_from_row(row) if row is not None else None

    def upsert_facility(self, rules: FacilityRules) -> FacilityRules:
        with Session(self.engine) as session:
            row = session.exec(
                select(FacilityRecord).where(FacilityRecord.facility_id == rules.facility_id)
            ).first()
            if row is None:
                row = FacilityRecord(
                    facility_id=rules.facility_id,
                    max_load_kwh=rules.max_load_kwh,
                    latitude=rules.location.latitude,
                    longitude=rules.location.longitude,
                )
            row.name = rules.name
            row.max_load_kwh = float(rules.max_load_kwh)
            row.baseline_carbon_intensity = float(rules.baseline_carbon_intensity)
            row.location_name = rules.location.name
            row.latitude = float(rules.location.latitude)
            row.longitude = float(rules.location.longitude)
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _rules_from_row(row)

    # -----------------------------
    # Audits
    # -----------------------------
    def create_audit_verdict(self, verdict: AuditVerdict) -> str:
        audit_id = verdict.id or str(uuid.uuid4())
        row = AuditRecord(
            audit_id=audit_id,
            telemetry_id=verdict.telemetry_id,
            facility_id=verdict.facility_id,
            severity=verdict.severity.value,
            confidence=int(verdict.confidence),
            reasoning=verdict.reasoning,
            trace=[e.model_dump(mode="json") for e in verdict.trace],
            human_action=verdict.human_action.value if verdict.human_action else None,
            human_action_at=verdict.human_action_at,
            created_at=verdict.created_at,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
        logger.info("Audit %s persisted for reading %s (%s)", audit_id, verdict.telemetry_id, verdict.severity.value)
        return audit_id

    def append_trace(self, audit_id: str, entries: List[TraceEntry]) -> AuditVerdict:
        """Adds entries to the end of a stored trace; earlier entries are never rewritten."""
        with Session(self.engine) as session:
            row = session.exec(select(AuditRecord).where(AuditRecord.audit_id == audit_id)).first()
            if row is None:
                raise AuditNotFound(audit_id)
            row.trace = list(row.trace or []) + [e.model_dump(mode="json") for e in entries]
            session.add(row)
            session.commit()
            session.refresh(row)
            return _verdict_from_row(row)

    def set_human_action(self, audit_id: str, action: HumanAction) -> AuditVerdict:
        now = utc_now()
        with Session(self.engine) as session:
            result = session.execute(
                update(AuditRecord)
                .where(col(AuditRecord.audit_id) == audit_id)
                .where(col(AuditRecord.human_action).is_(None))
                .values(human_action=HumanAction(action).value, human_action_at=now)
            )
            session.commit()
            if result.rowcount == 0:
                exists = session.exec(
                    select(AuditRecord.id).where(AuditRecord.audit_id == audit_id)
                ).first()
                if exists is None:
                    raise AuditNotFound(audit_id)
                raise HumanActionAlreadySet(audit_id)

        audit = self.get_audit(audit_id)
        if audit is None:
            raise AuditNotFound(audit_id)
        return audit

    def get_audit(self, audit_id: str) -> Optional[AuditVerdict]:
        with Session(self.engine) as session:
            row = session.exec(select(AuditRecord).where(AuditRecord.audit_id == audit_id)).first()
            return _verdict_from_row(row) if row is not None else None

    def list_audits_for_reading(self, telemetry_id: str) -> List[AuditVerdict]:
        stmt = (
            select(AuditRecord)
            .where(AuditRecord.telemetry_id == telemetry_id)
            .order_by(col(AuditRecord.created_at))
        )
        with Session(self.engine) as session:
            return [_verdict_from_row(r) for r in session.exec(stmt).all()]

    def list_pending_audits(self, limit: int = 100) -> List[AuditVerdict]:
        stmt = (
            select(AuditRecord)
            .where(col(AuditRecord.severity).in_(PENDING_SEVERITIES))
            .where(col(AuditRecord.human_action).is_(None))
            .order_by(col(AuditRecord.created_at).desc())
            .limit(int(limit))
        )
        with Session(self.engine) as session:
            return [_verdict_from_row(r) for r in session.exec(stmt).all()]
