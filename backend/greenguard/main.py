from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from greenguard.api import routes_audits, routes_demo, routes_facilities, routes_health, routes_ingest
from greenguard.deps import get_engine, get_settings
from greenguard.logs import configure_logging
from greenguard.models.db import create_db_and_tables

logger = logging.getLogger(__name__)


# ============================================================
# 1) LIFESPAN
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_dir)
    create_db_and_tables(get_engine())
    logger.info(
        "GreenGuard backend started (offline=%s, demo=%s, ai_enabled=%s)",
        settings.offline_mode,
        settings.demo_mode,
        settings.ai_enabled,
    )
    yield


# ============================================================
# 2) FASTAPI APP SETUP
# ============================================================

app = FastAPI(
    title="GreenGuard Backend",
    version="0.1.0",
    description="Context-aware carbon audit pipeline for industrial energy telemetry.",
    lifespan=lifespan,
)

# CORS: allow local dashboard dev
_origins = get_settings().allowed_origins
allow_origins = ["*"] if _origins == "*" else [o.strip() for o in _origins.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================
# 3) ROUTES
# ============================================================

app.include_router(routes_health.router, tags=["health"])
app.include_router(routes_facilities.router, prefix="/facilities", tags=["facilities"])
app.include_router(routes_ingest.router, prefix="/ingest", tags=["ingest"])
app.include_router(routes_audits.router, prefix="/audits", tags=["audits"])
app.include_router(routes_demo.router, prefix="/demo", tags=["demo"])

# Run:
#   uvicorn greenguard.main:app --reload --port 8000 --app-dir backend
