from typing import Any, Dict, List, Optional
from datetime import datetime

from sqlmodel import Field, SQLModel, create_engine
from sqlalchemy import JSON, Column, DateTime, TypeDecorator
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from greenguard.models.domain import as_utc, utc_now


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp column.

    Values are converted to UTC on the way in (naive input is taken as UTC) and
    come back aware in UTC, including on SQLite, which stores no offset.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)


def _ts_column(index: bool = False, nullable: bool = False) -> Column:
    return Column(UTCDateTime(), index=index, nullable=nullable)


# ============================================================
# DB MODELS
# ============================================================

class FacilityRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    facility_id: str = Field(index=True, unique=True)
    name: str = ""

    # Contract (from the electricity bill)
    max_load_kwh: float
    baseline_carbon_intensity: float = 0.0

    # Location for context lookup
    location_name: str = ""
    latitude: float
    longitude: float

    updated_at: datetime = Field(default_factory=utc_now, sa_column=_ts_column())


class TelemetryLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    telemetry_id: str = Field(index=True, unique=True)
    facility_id: str = Field(index=True)
    ts: datetime = Field(sa_column=_ts_column(index=True))

    energy_kwh: float
    voltage: float
    current_amps: float
    power_watts: float

    raw_payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, sa_column=_ts_column())


class AuditRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    audit_id: str = Field(index=True, unique=True)
    telemetry_id: str = Field(index=True)
    facility_id: Optional[str] = Field(default=None, index=True)

    # Outcome
    severity: str = Field(index=True)
    confidence: int
    reasoning: str

    # Explainability (ordered stage log)
    trace: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    # Reviewer decision (set once)
    human_action: Optional[str] = None
    human_action_at: Optional[datetime] = Field(default=None, sa_column=_ts_column(nullable=True))

    created_at: datetime = Field(default_factory=utc_now, sa_column=_ts_column(index=True))

# ============================================================
# SETUP
# ============================================================

DEFAULT_DATABASE_URL = "sqlite:///greenguard.db"


def build_engine(database_url: str = DEFAULT_DATABASE_URL) -> Engine:
    connect_args = {}
    kwargs: Dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        # In-memory databases live per connection; share one across threads
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)
