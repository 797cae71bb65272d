"""FieldSync API - FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import get_settings
from src.config_loader import get_policy
from src.linkage.matcher import RecordLinkageMatcher
from src.linkage.oracle import HttpBiometricOracle
from src.middleware.request_log import RequestLogMiddleware
from src.routers import health, locations, participants, sync
from src.services.database import close_pool, init_pool
from src.services.image_store import ImageStore
from src.services.record_store import PostgresRecordStore
from src.sync.counts import CountReconciler
from src.sync.delta import DeltaQueryEngine
from src.sync.device_errors import DeviceErrorLog
from src.sync.errors import ConflictError, FieldSyncError, NotFoundError, ValidationError
from src.sync.location_scope import LocationScopeResolver
from src.sync.lookup import RecordLookup
from src.sync.service import SyncService

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("fieldsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    policy = get_policy()
    logger.info(
        "Starting FieldSync API v%s [%s] with policy v%s",
        settings.app_version,
        settings.environment,
        policy.version,
    )
    await init_pool(settings)
    http_client = httpx.AsyncClient()

    store = PostgresRecordStore(images=ImageStore(settings))
    oracle = HttpBiometricOracle(
        settings.biometric_server_url,
        api_key=settings.biometric_api_key,
        threshold=policy.matching.matching_threshold,
        http_client=http_client,
    )
    app.state.sync_service = SyncService(
        resolver=LocationScopeResolver(
            store, cache_ttl_seconds=policy.sync.location_cache_ttl_seconds
        ),
        delta=DeltaQueryEngine(store),
        counter=CountReconciler(store),
    )
    app.state.matcher = RecordLinkageMatcher(store, oracle)
    app.state.device_errors = DeviceErrorLog(store)
    app.state.record_lookup = RecordLookup(store, store, max_ids=policy.sync.max_limit)

    yield

    await http_client.aclose()
    await close_pool()
    logger.info("FieldSync API shut down")


# ---------- Error mapping ----------

_STATUS_CODES: dict[type[FieldSyncError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
}


async def fieldsync_error_handler(request: Request, exc: FieldSyncError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    content: dict = {"detail": str(exc)}
    if isinstance(exc, ConflictError) and exc.conflict_data:
        content["conflict"] = exc.conflict_data
    return JSONResponse(status_code=status_code, content=content)


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="FieldSync API",
        description=(
            "Incremental sync for offline field devices and participant record "
            "linkage across biographic and biometric search."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_exception_handler(FieldSyncError, fieldsync_error_handler)

    # ---------- Middleware (outermost first) ----------

    app.add_middleware(RequestLogMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(participants.router, prefix=v1_prefix)
    app.include_router(locations.router, prefix=v1_prefix)

    return app


app = create_app()
