from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends

from greenguard.deps import get_orchestrator, get_store
from greenguard.models.domain import IngestTelemetryRequest, IngestTelemetryResponse, TelemetryRecord
from greenguard.services.orchestrator import AuditOrchestrator, trigger_audit
from greenguard.services.store import AuditStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/telemetry", response_model=IngestTelemetryResponse, status_code=201)
async def ingest_telemetry(
    body: IngestTelemetryRequest,
    background: BackgroundTasks,
    store: AuditStore = Depends(get_store),
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
) -> IngestTelemetryResponse:
    """
    Stores one sensor reading and acknowledges immediately.
    The audit runs after the response is sent; its outcome is read back via /audits.
    """
    reading = TelemetryRecord(id=str(uuid.uuid4()), **body.model_dump())
    telemetry_id = store.insert_reading(reading)
    logger.info("Reading %s ingested for facility %s (%.2f kWh)", telemetry_id, reading.facility_id, reading.energy_kwh)

    background.add_task(trigger_audit, orchestrator, telemetry_id)
    return IngestTelemetryResponse(
        success=True,
        telemetry_id=telemetry_id,
        message="Reading stored; audit scheduled",
    )
