"""GET /v1/health — Health check with real service probes."""

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

from credvault.api.schemas import HealthResponse
from credvault.version import __version__

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Check the database and that a master key is loaded."""
    services: dict[str, bool] = {"api": True, "database": False, "keys": False}

    vault = getattr(request.app.state, "vault", None)
    if vault is not None:
        try:
            async with vault.session_factory() as session:
                await session.execute(text("SELECT 1"))
            services["database"] = True
        except Exception as exc:
            logger.warning("[health] DB check failed: %s", type(exc).__name__)
        services["keys"] = vault.registry.active_version is not None

    overall = "ok" if all(services.values()) else "degraded"
    return HealthResponse(status=overall, version=__version__, services=services)
