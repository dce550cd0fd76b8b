from __future__ import annotations

import os
from collections import deque
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from greenguard.config import Settings
from greenguard.deps import get_orchestrator, get_settings, get_store
from greenguard.logs import log_file_path
from greenguard.models.domain import FacilityRules, Location, PipelineResult
from greenguard.services.mock_data import MockTelemetryGenerator, Pattern
from greenguard.services.orchestrator import AuditOrchestrator
from greenguard.services.store import AuditStore

router = APIRouter()

DEMO_FACILITY = FacilityRules(
    facility_id="mumbai-electronics",
    name="Mumbai Electronics Co",
    max_load_kwh=350.0,
    baseline_carbon_intensity=700.0,
    location=Location(name="Mumbai, IN", latitude=19.076, longitude=72.8777),
)


class DemoSeedRequest(BaseModel):
    count: int = Field(10, ge=1, le=200)
    pattern: Pattern = Pattern.NORMAL
    seed: int = 42


class DemoScenarioResponse(BaseModel):
    facility_id: str
    results: List[PipelineResult]


def _require_demo_mode(settings: Settings = Depends(get_settings)) -> Settings:
    if not settings.demo_mode:
        raise HTTPException(status_code=404, detail="Not found")
    return settings


@router.post("/seed")
async def seed_demo_data(
    body: DemoSeedRequest,
    _: Settings = Depends(_require_demo_mode),
    store: AuditStore = Depends(get_store),
) -> Dict[str, Any]:
    """
    Registers the demo facility and stores a history of readings (no audits run).
    The history feeds the orchestrator's baseline for later scenario runs.
    """
    store.upsert_facility(DEMO_FACILITY)
    gen = MockTelemetryGenerator(seed=body.seed)
    readings = gen.generate_sequence(
        DEMO_FACILITY.facility_id,
        body.count,
        pattern=body.pattern,
        base_load_kwh=DEMO_FACILITY.max_load_kwh * 0.8,
    )
    ids = [store.insert_reading(r) for r in readings]
    return {"ok": True, "facility_id": DEMO_FACILITY.facility_id, "telemetry_ids": ids}


@router.post("/scenario", response_model=DemoScenarioResponse)
async def run_demo_scenario(
    seed: int = Query(7),
    _: Settings = Depends(_require_demo_mode),
    store: AuditStore = Depends(get_store),
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
) -> DemoScenarioResponse:
    """
    Deterministic walk-through: normal (80%), warning (95%) and anomaly (125%)
    readings against the demo facility, each audited in turn.
    """
    store.upsert_facility(DEMO_FACILITY)
    gen = MockTelemetryGenerator(seed=seed)
    results: List[PipelineResult] = []
    for reading in gen.generate_anomaly_scenario(DEMO_FACILITY.facility_id, DEMO_FACILITY.max_load_kwh):
        store.insert_reading(reading)
        results.append(await orchestrator.process_reading(reading.id))
    return DemoScenarioResponse(facility_id=DEMO_FACILITY.facility_id, results=results)


@router.get("/logs/tail")
async def demo_logs_tail(
    lines: int = Query(200, ge=10, le=2000),
    settings: Settings = Depends(_require_demo_mode),
) -> Dict[str, Any]:
    path = log_file_path(settings.log_dir)
    if not path:
        return {"ok": False, "hint": "Set LOG_DIR to enable file logs."}
    if not os.path.exists(path):
        return {"ok": False, "hint": f"Log file not found at {path}. Ensure file logging is enabled."}

    dq = deque(maxlen=lines)
    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        for line in f:
            dq.append(line.rstrip("\n"))

    return {"ok": True, "path": path, "lines": list(dq)}
