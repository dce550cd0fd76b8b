from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================
# TIME
# ============================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC copy of `value`; naive values are taken to already be UTC."""
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# 0) ENUMS (Type Safety)
# ============================================================

class Severity(str, Enum):
    VERIFIED = "VERIFIED"
    WARNING = "WARNING"
    ANOMALY = "ANOMALY"

class HumanAction(str, Enum):
    APPROVED = "APPROVED"
    FLAGGED = "FLAGGED"

class TraceLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

class Provenance(str, Enum):
    API = "api"
    SYNTHETIC = "synthetic"

class VerdictSource(str, Enum):
    RULES = "rules"
    AI = "ai"
    AI_FALLBACK = "ai_fallback"
    SYSTEM = "system"

class PipelineState(str, Enum):
    INGESTED = "INGESTED"
    ENRICHING = "ENRICHING"
    RULE_CHECKED = "RULE_CHECKED"
    AI_CLASSIFIED = "AI_CLASSIFIED"
    RECONCILED = "RECONCILED"
    PERSISTED = "PERSISTED"
    NOTIFIED = "NOTIFIED"


# ============================================================
# 1) REFERENCE & TELEMETRY DATA
# ============================================================

class Location(BaseModel):
    name: str = ""
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class TelemetryRecord(BaseModel):
    """One sensor reading. Immutable once created by the ingestion boundary."""
    model_config = ConfigDict(frozen=True)

    id: str
    facility_id: str
    timestamp: datetime

    energy_kwh: float = Field(ge=0.0)
    voltage: float
    current_amps: float
    power_watts: float

    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class FacilityRules(BaseModel):
    """
    Contractual reference data for one facility (updated out-of-band, e.g. bill upload).
    max_load_kwh is deliberately unconstrained here: a stored non-positive ceiling
    must reach the pipeline so it can produce the system-error verdict.
    """
    facility_id: str
    name: str = ""
    max_load_kwh: float
    baseline_carbon_intensity: float = 0.0  # g CO2/kWh
    location: Location


# ============================================================
# 2) CONTEXT & CLASSIFICATION
# ============================================================

class SourceProvenance(BaseModel):
    weather: Provenance
    grid: Provenance


class ContextSnapshot(BaseModel):
    # Every field is required: a failed source is replaced, never left empty.
    temperature_c: float
    weather_condition: str
    humidity_pct: float
    grid_carbon_intensity: float  # g CO2/kWh
    provenance: SourceProvenance


class ContextAnalysis(BaseModel):
    suspicious: bool
    reasoning: str
    flags: List[str] = Field(default_factory=list)


class ClassifierVerdict(BaseModel):
    severity: Severity
    confidence: int = Field(ge=0, le=100)
    reasoning: str
    source: VerdictSource


class ReconciledVerdict(BaseModel):
    severity: Severity
    confidence: int = Field(ge=0, le=100)
    reasoning: str
    chosen: VerdictSource
    discarded: ClassifierVerdict


# ============================================================
# 3) TRACE & AUDIT RESULT
# ============================================================

class TraceEntry(BaseModel):
    ts: str
    stage: str
    message: str
    level: TraceLevel = TraceLevel.INFO


class AuditVerdict(BaseModel):
    id: Optional[str] = None
    telemetry_id: str
    facility_id: Optional[str] = None

    severity: Severity
    confidence: int = Field(ge=0, le=100)
    reasoning: str
    trace: List[TraceEntry] = Field(default_factory=list)

    human_action: Optional[HumanAction] = None
    human_action_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "human_action_at")
    @classmethod
    def _times_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else v


class PipelineResult(BaseModel):
    audit_id: Optional[str]
    state: PipelineState
    verdict: AuditVerdict
    # False when the system-error verdict was emitted
    success: bool = True


# ============================================================
# 4) API SCHEMAS
# ============================================================

class FacilityUpsertRequest(BaseModel):
    facility_id: str
    name: str = ""
    max_load_kwh: float = Field(gt=0.0)
    baseline_carbon_intensity: float = Field(0.0, ge=0.0)
    location: Location


class IngestTelemetryRequest(BaseModel):
    facility_id: str
    timestamp: datetime
    energy_kwh: float = Field(ge=0.0)
    voltage: float = Field(ge=0.0)
    current_amps: float = Field(ge=0.0)
    power_watts: float = Field(ge=0.0)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)


class IngestTelemetryResponse(BaseModel):
    success: bool
    telemetry_id: str
    message: str


class HumanActionRequest(BaseModel):
    action: HumanAction


class HealthResponse(BaseModel):
    status: str
    ts: str
    sources: Dict[str, bool] = Field(default_factory=dict)
