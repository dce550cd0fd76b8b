from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from greenguard.deps import get_orchestrator, get_store
from greenguard.errors import AuditNotFound, HumanActionAlreadySet
from greenguard.models.domain import AuditVerdict, HumanActionRequest, PipelineResult
from greenguard.services.orchestrator import AuditOrchestrator
from greenguard.services.store import AuditStore

router = APIRouter()


@router.post("/run/{telemetry_id}", response_model=PipelineResult)
async def run_audit(
    telemetry_id: str,
    deadline_s: Optional[float] = Query(None, gt=0.0, le=120.0, description="Bound on the whole run (seconds)"),
    store: AuditStore = Depends(get_store),
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
) -> PipelineResult:
    """
    Runs the pipeline in-request and returns the persisted verdict.
    Unknown readings are rejected up front instead of producing a system-error audit.
    """
    if store.get_reading(telemetry_id) is None:
        raise HTTPException(status_code=404, detail=f"Reading {telemetry_id} not found")
    return await orchestrator.process_reading(telemetry_id, deadline_s=deadline_s)


@router.get("/pending", response_model=List[AuditVerdict])
async def pending_audits(
    limit: int = Query(100, ge=1, le=500),
    store: AuditStore = Depends(get_store),
) -> List[AuditVerdict]:
    return store.list_pending_audits(limit=limit)


@router.get("/by-reading/{telemetry_id}", response_model=List[AuditVerdict])
async def audits_for_reading(telemetry_id: str, store: AuditStore = Depends(get_store)) -> List[AuditVerdict]:
    return store.list_audits_for_reading(telemetry_id)


@router.get("/{audit_id}", response_model=AuditVerdict)
async def get_audit(audit_id: str, store: AuditStore = Depends(get_store)) -> AuditVerdict:
    audit = store.get_audit(audit_id)
    if audit is None:
        raise HTTPException(status_code=404, detail=f"Audit {audit_id} not found")
    return audit


@router.post("/{audit_id}/action", response_model=AuditVerdict)
async def record_human_action(
    audit_id: str,
    body: HumanActionRequest,
    store: AuditStore = Depends(get_store),
) -> AuditVerdict:
    """Reviewer decision (APPROVED / FLAGGED). Terminal: a second call returns 409."""
    try:
        return store.set_human_action(audit_id, body.action)
    except AuditNotFound:
        raise HTTPException(status_code=404, detail=f"Audit {audit_id} not found")
    except HumanActionAlreadySet:
        raise HTTPException(status_code=409, detail=f"Audit {audit_id} already has a human action")
