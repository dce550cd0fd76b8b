from __future__ import annotations

from fastapi import APIRouter, Depends

from greenguard.deps import get_ai_classifier, get_enricher
from greenguard.models.domain import HealthResponse, utc_now
from greenguard.services.ai_classifier import AIClassifierAdapter
from greenguard.services.context_enricher import ContextEnricher

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(
    enricher: ContextEnricher = Depends(get_enricher),
    ai: AIClassifierAdapter = Depends(get_ai_classifier),
) -> HealthResponse:
    """Liveness plus which live sources are configured (False means synthetic/heuristic)."""
    sources = {
        "weather": enricher.weather is not None and enricher.weather.configured,
        "grid": enricher.grid is not None and enricher.grid.configured,
        "ai": ai.configured,
    }
    return HealthResponse(status="ok", ts=utc_now().isoformat(), sources=sources)
