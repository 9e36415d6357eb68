"""Health-check and readiness probe endpoints.

The ``/health`` endpoint (liveness) is registered under the versioned API
prefix (``/api/v1/health``).  The ``/ready`` endpoint is a Kubernetes-style
readiness probe registered at the application root (no version prefix) so
that orchestrators and load-balancers can gate traffic independently of the
API version.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from headshot_engine.state.repository import GenerationRepository
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api import __version__
from api.dependencies import EngineSettingsDep, SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _configured_providers(settings: EngineSettingsDep) -> dict[str, bool]:
    return {
        "replicate": settings.replicate_api_token is not None,
        "runpod": settings.runpod_api_key is not None and bool(settings.runpod_endpoint_id),
    }


@router.get("/health")
async def health(session: SessionDep, settings: EngineSettingsDep) -> dict[str, Any]:
    """Return service health with dependency checks.

    The endpoint always returns HTTP 200 so that load-balancers see the
    service as alive.  The ``db`` field indicates whether the database is
    reachable; ``providers`` shows which adapters have credentials and
    ``generations`` counts stored generations per status.
    """
    result: dict[str, Any] = {
        "status": "healthy",
        "version": __version__,
        "db": "ok",
        "providers": _configured_providers(settings),
        "generations": {},
    }

    try:
        await session.execute(text("SELECT 1"))
        result["generations"] = await GenerationRepository(session).count_by_status()
    except SQLAlchemyError as exc:
        logger.warning("DB health check failed: %s", exc)
        result["db"] = "degraded"

    return result


# ---------------------------------------------------------------------------
# Readiness probe (outside API versioning)
# ---------------------------------------------------------------------------

readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_probe(session: SessionDep, settings: EngineSettingsDep) -> JSONResponse:
    """Kubernetes-style readiness probe.

    Checks:
    1. **Database connectivity** (critical): executes ``SELECT 1``.
    2. **Provider credentials** (non-critical): ``degraded`` when no
       provider adapter is configured.

    Returns HTTP 200 with ``"ready"`` or ``"degraded"`` status, or HTTP 503
    with ``"not_ready"`` if the database is unreachable.
    """
    checks: dict[str, str] = {"db": "ok", "providers": "ok"}
    overall = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Readiness: DB check failed: %s", exc)
        checks["db"] = "unavailable"
        overall = "not_ready"

    if not any(_configured_providers(settings).values()):
        checks["providers"] = "unconfigured"
        if overall == "ready":
            overall = "degraded"

    status_code = 200 if overall != "not_ready" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall,
            "version": __version__,
            "checks": checks,
        },
    )
