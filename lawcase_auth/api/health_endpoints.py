"""
Health Check Endpoints
---------------------
Liveness and credential store reachability.
"""

from fastapi import APIRouter, Request
from loguru import logger

from lawcase_auth.models.response_models import DependencyHealth, Health, HealthStatus
from lawcase_auth.core.config_manager import settings
from lawcase_auth.core.database_connection import db_manager


router = APIRouter(prefix="/api/v1/health", tags=["Health"])


@router.get("/", response_model=HealthStatus)
async def health_check():
    logger.debug("Health check requested")
    return HealthStatus(status=str(Health.HEALTHY), version=settings.app_version)


@router.get("/dependencies", response_model=DependencyHealth, status_code=200)
async def check_dependencies(request: Request):
    """
    Report whether the configured credential store is reachable.

    Always answers 200 so that monitoring, not the load balancer, decides
    what an unreachable database means.
    """
    backend = getattr(request.app.state, "credential_store_backend", "memory")

    postgresql_reachable = None
    if backend == "postgres":
        postgresql_reachable = await _ping_database()

    health = Health.UNHEALTHY if postgresql_reachable is False else Health.HEALTHY
    if health is Health.UNHEALTHY:
        logger.warning("Credential store unreachable: postgresql ping failed")

    return DependencyHealth(
        credential_store=backend,
        postgresql=postgresql_reachable,
        status=str(health),
    )


async def _ping_database() -> bool:
    try:
        return await db_manager.ping()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
