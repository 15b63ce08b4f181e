import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .api import health, notifications, shutdown, thermal
from .config import get_settings
from .logging_setup import configure_logging
from .services import thermal_monitor


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger = configure_logging(level=settings.log_level, log_dir=settings.log_dir)

    monitor = thermal_monitor.get_monitor()
    logger.info(
        "thermal monitor polling %s every %ss, auto-shutdown %s",
        monitor.client.url,
        settings.thermal_poll_interval_secs,
        "ENABLED" if monitor.manager.enabled else "disabled",
    )
    tasks = [
        asyncio.create_task(monitor.poll_forever()),
        asyncio.create_task(monitor.tick_forever()),
    ]
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await monitor.drain_notifications()


app = FastAPI(title="Thermal Sentinel", lifespan=lifespan)

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(thermal.router, prefix="/thermal", tags=["thermal"])
app.include_router(shutdown.router, prefix="/shutdown", tags=["shutdown"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])


def run() -> None:
    settings = get_settings()
    uvicorn.run("thermal_sentinel.main:app", host=settings.api_host, port=settings.api_port)
