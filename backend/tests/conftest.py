"""
Shared fixtures.

Every test runs offline against an in-memory SQLite store: no live weather,
grid or Gemini calls. Routes get their dependencies through
`app.dependency_overrides`, so tests see the same store the API writes to.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from greenguard import deps
from greenguard.config import Settings
from greenguard.models.db import build_engine, create_db_and_tables
from greenguard.models.domain import FacilityRules, Location, TelemetryRecord
from greenguard.services.ai_classifier import AIClassifierAdapter
from greenguard.services.context_enricher import ContextEnricher
from greenguard.services.notifier import LogNotifier
from greenguard.services.orchestrator import AuditOrchestrator
from greenguard.services.store import SqlAuditStore


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("OFFLINE_MODE", "true")
    monkeypatch.setenv("DEMO_MODE", "true")
    for key in ("OPENWEATHER_API_KEY", "ELECTRICITYMAPS_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY", "LOG_DIR"):
        monkeypatch.delenv(key, raising=False)
    deps.reset_singletons()
    yield
    deps.reset_singletons()


@pytest.fixture()
def store() -> SqlAuditStore:
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    return SqlAuditStore(engine)


@pytest.fixture()
def mumbai() -> Location:
    return Location(name="Mumbai, IN", latitude=19.076, longitude=72.8777)


@pytest.fixture()
def facility(store: SqlAuditStore, mumbai: Location) -> FacilityRules:
    return store.upsert_facility(
        FacilityRules(
            facility_id="fac-1",
            name="Mumbai Electronics Co",
            max_load_kwh=350.0,
            baseline_carbon_intensity=700.0,
            location=mumbai,
        )
    )


@pytest.fixture()
def make_reading():
    counter = {"n": 0}

    def _make(energy_kwh: float, facility_id: str = "fac-1", timestamp: datetime = datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)):
        counter["n"] += 1
        return TelemetryRecord(
            id=f"reading-{counter['n']}",
            facility_id=facility_id,
            timestamp=timestamp,
            energy_kwh=energy_kwh,
            voltage=230.0,
            current_amps=round(energy_kwh * 1000.0 / 230.0, 2),
            power_watts=energy_kwh * 1000.0,
        )

    return _make


@pytest.fixture()
def orchestrator(store: SqlAuditStore) -> AuditOrchestrator:
    return AuditOrchestrator(
        store=store,
        enricher=ContextEnricher(),
        ai_classifier=AIClassifierAdapter(),
        notifier=LogNotifier(),
    )


@pytest.fixture()
def client(store: SqlAuditStore, orchestrator: AuditOrchestrator) -> Generator[TestClient, None, None]:
    from greenguard.main import app

    settings = Settings(database_url="sqlite://", offline_mode=True, demo_mode=True, ai_enabled=False)
    app.dependency_overrides[deps.get_settings] = lambda: settings
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_enricher] = lambda: orchestrator.enricher
    app.dependency_overrides[deps.get_ai_classifier] = lambda: orchestrator.ai_classifier
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
