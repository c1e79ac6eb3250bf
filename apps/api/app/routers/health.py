from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from ..db import check_db_health
from ..redis_client import ping_broker
from ..settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _probe() -> dict[str, str]:
    checks = {"db": "ok", "broker": "ok"}
    try:
        check_db_health()
    except Exception:
        logger.exception("database readiness probe failed")
        checks["db"] = "down"
    try:
        ping_broker()
    except Exception:
        logger.exception("broker readiness probe failed")
        checks["broker"] = "down"
    return checks


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
def ready() -> dict[str, object]:
    checks = _probe()
    if any(value != "ok" for value in checks.values()):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "not_ready", "env": settings.app_env, "checks": checks},
        )
    return {"status": "ready", "env": settings.app_env, "checks": checks}
