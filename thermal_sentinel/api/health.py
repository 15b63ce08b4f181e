from fastapi import APIRouter

from thermal_sentinel.models.health import HealthStatus
from thermal_sentinel.services import health_monitor

router = APIRouter()


@router.get("/status", response_model=HealthStatus, summary="Agent health")
async def health_status() -> HealthStatus:
    """
    Return agent liveness and whether thermal telemetry is currently available.

    This endpoint answers 200 even when LHM is unreachable; the degraded state
    shows up as thermal_available=false.
    """
    return health_monitor.get_health_status()
