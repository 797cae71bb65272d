"""Liveness probe for load balancers and device connectivity checks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.dependencies import AppPolicy, AppSettings
from src.services.database import fetchval

router = APIRouter(tags=["system"])
logger = logging.getLogger("fieldsync.health")


async def _database_reachable() -> bool:
    try:
        return await fetchval("SELECT 1") == 1
    except Exception as exc:
        logger.warning("Health check database probe failed: %s", exc)
        return False


@router.get("/health")
async def health_check(settings: AppSettings, policy: AppPolicy) -> dict:
    """Always 200 while the process is up; ``status`` turns ``degraded``
    when the record store cannot be reached.
    """
    db_ok = await _database_reachable()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "policyVersion": policy.version,
        "database": "connected" if db_ok else "unreachable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
