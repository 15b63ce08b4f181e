from typing import List

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse

from thermal_sentinel.models.history import TemperatureSample
from thermal_sentinel.models.thermal import ThermalSnapshot
from thermal_sentinel.services import thermal_monitor
from thermal_sentinel.services.lhm_parser import format_snapshot

router = APIRouter()

_UNAVAILABLE = "thermal data unavailable"


def _latest_snapshot() -> ThermalSnapshot:
    snapshot = thermal_monitor.get_monitor().latest
    if snapshot is None:
        raise HTTPException(status_code=503, detail=_UNAVAILABLE)
    return snapshot


@router.get(
    "/snapshot",
    response_model=ThermalSnapshot,
    summary="Latest thermal snapshot",
)
async def thermal_snapshot() -> ThermalSnapshot:
    """
    Return the latest classified LHM snapshot.

    If the last poll failed (LHM unreachable, bad status, unusable document),
    a HTTP 503 Service Unavailable with detail "thermal data unavailable" is
    returned.
    """
    return _latest_snapshot()


@router.get(
    "/snapshot.txt",
    response_class=PlainTextResponse,
    summary="Latest thermal snapshot as text",
)
async def thermal_snapshot_text() -> str:
    return format_snapshot(_latest_snapshot())


@router.get(
    "/history",
    response_model=List[TemperatureSample],
    summary="Recent max-temperature samples",
)
async def thermal_history() -> List[TemperatureSample]:
    return thermal_monitor.get_monitor().history_samples()
