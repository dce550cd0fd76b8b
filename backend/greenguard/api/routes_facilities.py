from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from greenguard.deps import get_store
from greenguard.models.domain import FacilityRules, FacilityUpsertRequest
from greenguard.services.store import AuditStore

router = APIRouter()


@router.post("", response_model=FacilityRules)
async def upsert_facility(
    body: FacilityUpsertRequest,
    store: AuditStore = Depends(get_store),
) -> FacilityRules:
    """
    Creates or replaces a facility's contractual rules (e.g. after a bill upload).
    The ceiling must be positive; the request model rejects anything else with 422.
    """
    rules = FacilityRules(**body.model_dump())
    return store.upsert_facility(rules)


@router.get("/{facility_id}", response_model=FacilityRules)
async def get_facility(facility_id: str, store: AuditStore = Depends(get_store)) -> FacilityRules:
    rules = store.get_facility_rules(facility_id)
    if rules is None:
        raise HTTPException(status_code=404, detail=f"Facility {facility_id} not found")
    return rules
