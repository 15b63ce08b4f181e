from fastapi import APIRouter

from thermal_sentinel.models.shutdown import AbortResult, ShutdownStatus
from thermal_sentinel.services import thermal_monitor

router = APIRouter()


@router.get("/status", response_model=ShutdownStatus, summary="Auto-shutdown state")
async def shutdown_status() -> ShutdownStatus:
    return thermal_monitor.get_monitor().status()


@router.post("/abort", response_model=AbortResult, summary="Abort thermal shutdown")
async def shutdown_abort() -> AbortResult:
    """
    Operator override: reset an active escalation (counting, grace period or
    shutdown) to normal. Calling it while normal is a harmless no-op and
    returns aborted=false.
    """
    monitor = thermal_monitor.get_monitor()
    aborted = monitor.abort()
    return AbortResult(aborted=aborted, state=monitor.manager.state.kind)
