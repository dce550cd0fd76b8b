"""
deps.py

Purpose:
  Dependency Injection (DI) container for the application.
  Builds the process-wide singletons once and hands them to the routes.

Services Managed:
  - `Settings` (environment snapshot)
  - `SqlAuditStore` (record store over the SQLModel engine)
  - `ContextEnricher` (weather + grid providers, synthetic fallback)
  - `AIClassifierAdapter` (Gemini or heuristic)
  - `AuditOrchestrator` (the pipeline)

Pattern:
  - `lru_cache(maxsize=1)` keeps one instance per getter.
  - Routes receive them through `Depends(...)`, so tests swap them with
    `app.dependency_overrides`.
  - OFFLINE_MODE / DEMO_OFFLINE drop every live provider, forcing synthetic
    context and the heuristic AI path.
"""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy.engine import Engine

from greenguard.config import Settings
from greenguard.models.db import build_engine
from greenguard.services.ai_classifier import AIClassifierAdapter
from greenguard.services.context_enricher import ContextEnricher
from greenguard.services.notifier import LogNotifier
from greenguard.services.orchestrator import AuditOrchestrator
from greenguard.services.providers import GridIntensityProvider, WeatherProvider
from greenguard.services.store import AuditStore, SqlAuditStore


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine(get_settings().database_url)


@lru_cache(maxsize=1)
def get_store() -> AuditStore:
    return SqlAuditStore(get_engine())


@lru_cache(maxsize=1)
def get_enricher() -> ContextEnricher:
    settings = get_settings()
    weather = grid = None
    if not settings.offline_mode:
        weather = WeatherProvider(settings.openweather_api_key)
        grid = GridIntensityProvider(settings.electricitymaps_api_key)
    return ContextEnricher(
        weather=weather,
        grid=grid,
        weather_timeout_s=settings.weather_timeout_s,
        grid_timeout_s=settings.grid_timeout_s,
    )


@lru_cache(maxsize=1)
def get_ai_classifier() -> AIClassifierAdapter:
    return AIClassifierAdapter.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_orchestrator() -> AuditOrchestrator:
    return AuditOrchestrator(
        store=get_store(),
        enricher=get_enricher(),
        ai_classifier=get_ai_classifier(),
        notifier=LogNotifier(),
        history_window=get_settings().history_window,
    )


def reset_singletons() -> None:
    """Drop cached instances (tests change the environment between runs)."""
    for getter in (get_orchestrator, get_ai_classifier, get_enricher, get_store, get_engine, get_settings):
        getter.cache_clear()
