import asyncio

from fastapi import APIRouter, HTTPException

from thermal_sentinel.services import thermal_monitor

router = APIRouter()


@router.post("/test", summary="Send a test email")
async def notifications_test() -> dict:
    """
    Send a test email through the configured SMTP relay, bypassing the rate
    limit.

    Returns HTTP 503 if email is disabled or SMTP credentials are missing,
    and HTTP 502 if the relay rejected the message.
    """
    notifier = thermal_monitor.get_monitor().notifier
    if notifier is None:
        raise HTTPException(
            status_code=503,
            detail="email notifications are not configured (SENTINEL_SMTP_* missing)",
        )
    try:
        await asyncio.to_thread(notifier.send_test)
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"sent": True, "recipient": notifier.config.recipient}
