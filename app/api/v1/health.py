"""Health endpoints: summary, liveness and readiness (503 when a dependency is down)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_health_checks
from app.core.config import Settings, get_settings
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse, LivenessResponse, ReadinessResponse
from app.services.health import HealthCheck, liveness, readiness

router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _no_cache(response: Response) -> None:
    for key, value in NO_CACHE_HEADERS.items():
        response.headers[key] = value


@router.get("/", response_model=HealthResponse)
def get_health(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """
    Return service health status and database connectivity.
    Used by load balancers and monitoring.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
    )


@router.get("/live", response_model=LivenessResponse)
def get_liveness(
    response: Response,
    settings: Annotated[Settings, Depends(get_settings)],
) -> LivenessResponse:
    """Process is up. No dependency checks."""
    _no_cache(response)
    return liveness(settings)


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse}},
)
async def get_readiness(
    response: Response,
    settings: Annotated[Settings, Depends(get_settings)],
    checks: Annotated[dict[str, HealthCheck], Depends(get_health_checks)],
) -> ReadinessResponse:
    """Ready only when every dependency check passes within HEALTH_CHECK_TIMEOUT_SEC."""
    result = await readiness(checks, settings.HEALTH_CHECK_TIMEOUT_SEC)
    _no_cache(response)
    if result.status != "ready":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result
