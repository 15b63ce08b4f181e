import asyncio
import logging
import time
from collections import deque
from functools import lru_cache
from typing import Deque, List, Optional, Set

from thermal_sentinel.config import Settings, get_settings
from thermal_sentinel.models.history import TemperatureSample
from thermal_sentinel.models.shutdown import (
    CountingProgress,
    EmergencyStarted,
    GracePeriodCountdown,
    GracePeriodStarted,
    NoEvent,
    Recovered,
    ShutdownEvent,
    ShutdownNow,
    ShutdownStatus,
)
from thermal_sentinel.models.thermal import ThermalSnapshot
from thermal_sentinel.services.lhm_client import LhmClient
from thermal_sentinel.services.notifications import EmailNotifier, NotifyEvent, hostname, thermal_alert_body
from thermal_sentinel.services.shutdown import ShutdownExecutor, ShutdownManager

logger = logging.getLogger(__name__)

THERMAL_HISTORY_CAPACITY = 120

# Welche Zustandswechsel eine E-Mail ausloesen
_EMAIL_EVENTS = {
    EmergencyStarted: NotifyEvent.THERMAL_CRITICAL,
    GracePeriodStarted: NotifyEvent.SHUTDOWN_IMMINENT,
    ShutdownNow: NotifyEvent.THERMAL_EMERGENCY,
    Recovered: NotifyEvent.RECOVERED,
}


class ThermalMonitor:
    """
    Single owner of the thermal pipeline: polls LHM, keeps the latest
    snapshot, ticks the shutdown state machine and hands every event to the
    notifier and the executor in tick order.
    """

    def __init__(
        self,
        settings: Settings,
        client: LhmClient,
        manager: ShutdownManager,
        notifier: Optional[EmailNotifier] = None,
        executor: Optional[ShutdownExecutor] = None,
        history_size: int = THERMAL_HISTORY_CAPACITY,
    ):
        self.settings = settings
        self.client = client
        self.manager = manager
        self.notifier = notifier
        self.executor = executor or ShutdownExecutor()
        self.latest: Optional[ThermalSnapshot] = None
        self.history: Deque[TemperatureSample] = deque(maxlen=history_size)
        self.last_event: Optional[str] = None
        self.message: Optional[str] = None
        self.last_error: Optional[str] = None
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ThermalMonitor":
        return cls(
            settings=settings,
            client=LhmClient.from_settings(settings),
            manager=ShutdownManager.from_settings(settings),
            notifier=EmailNotifier.from_settings(settings),
        )

    # -- telemetry --------------------------------------------------------

    async def poll_once(self) -> Optional[ThermalSnapshot]:
        snapshot = await self.client.poll()
        self.record(snapshot)
        return snapshot

    def record(self, snapshot: Optional[ThermalSnapshot]) -> None:
        if snapshot is None and self.latest is not None:
            logger.warning("thermal data unavailable from %s", self.client.url)
        elif snapshot is not None and self.latest is None:
            logger.info("thermal data available, max %.1f°C", snapshot.max_temp)

        self.latest = snapshot
        if snapshot is not None:
            self.history.append(
                TemperatureSample(
                    captured_at=snapshot.captured_at,
                    max_temp=snapshot.max_temp,
                    max_cpu_temp=snapshot.max_cpu_temp,
                    max_gpu_temp=snapshot.max_gpu_temp,
                )
            )

    def thermal_level(self, temp: Optional[float] = None) -> Optional[str]:
        if temp is None:
            if self.latest is None:
                return None
            temp = self.latest.max_temp
        if temp >= self.settings.emergency_threshold:
            return "emergency"
        if temp >= self.settings.critical_threshold:
            return "critical"
        if temp >= self.settings.warning_threshold:
            return "warning"
        return "normal"

    def hottest_sensor(self) -> str:
        if self.latest is None:
            return "Unknown"
        return "CPU" if self.latest.max_cpu_temp >= self.latest.max_gpu_temp else "GPU"

    # -- state machine ----------------------------------------------------

    def tick(self, now: Optional[float] = None) -> ShutdownEvent:
        # Ohne Snapshot zaehlt 0.0 °C: fehlende Telemetrie bricht die Eskalation ab
        max_temp = self.latest.max_temp if self.latest is not None else 0.0
        event = self.manager.tick(max_temp, now)
        self.handle_event(event, max_temp)
        return event

    def handle_event(self, event: ShutdownEvent, max_temp: float) -> None:
        if isinstance(event, NoEvent):
            return

        self.last_event = event.kind

        if isinstance(event, EmergencyStarted):
            self.message = f"THERMAL EMERGENCY: {max_temp:.1f}°C - counting sustained seconds..."
            logger.warning("thermal emergency started at %.1f°C", max_temp)
        elif isinstance(event, CountingProgress):
            self.message = f"THERMAL: {max_temp:.1f}°C sustained {event.elapsed_secs}/{event.required_secs}s"
        elif isinstance(event, GracePeriodStarted):
            self.message = "SHUTDOWN GRACE PERIOD - POST /shutdown/abort to ABORT"
            logger.critical("sustained emergency at %.1f°C, shutdown grace period started", max_temp)
        elif isinstance(event, GracePeriodCountdown):
            self.message = f"SHUTDOWN IN {event.remaining_secs}s - POST /shutdown/abort to ABORT"
        elif isinstance(event, ShutdownNow):
            self.message = "EXECUTING SHUTDOWN..."
        elif isinstance(event, Recovered):
            self.message = f"Temperature recovered: {max_temp:.1f}°C - normal operation"
            self.executor.reset()
            logger.info("thermal escalation ended at %.1f°C", max_temp)

        notify_event = _EMAIL_EVENTS.get(type(event))
        if notify_event is not None:
            self._send_thermal_email(notify_event, max_temp)

        if isinstance(event, ShutdownNow):
            self._execute_shutdown()

    def _execute_shutdown(self) -> None:
        try:
            self.executor.execute()
        except RuntimeError as exc:
            # State stays Shutdown; the next tick tries again
            logger.error("shutdown failed: %s", exc)
            self.last_error = str(exc)
            self.message = f"Shutdown failed: {exc}"

    def _send_thermal_email(self, event: NotifyEvent, temp: float) -> None:
        if self.notifier is None:
            return
        # Rate-Limit synchron pruefen und markieren, erst dann asynchron senden
        if not self.notifier.try_reserve(event):
            return
        body = thermal_alert_body(
            event,
            temp,
            self.hottest_sensor(),
            hostname(),
            grace_secs=self.manager.grace_secs,
        )
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self._deliver, event, body)
        )
        self._pending.add(task)
        task.add_done_callback(self._delivery_done)

    def _deliver(self, event: NotifyEvent, body: str) -> Optional[str]:
        """Worker-thread send. Returns the error text instead of touching monitor state."""
        try:
            self.notifier.send_email(event.subject, body)
        except RuntimeError as exc:
            logger.error("email for %s not sent: %s", event.value, exc)
            return str(exc)
        return None

    def _delivery_done(self, task: "asyncio.Task[Optional[str]]") -> None:
        # runs on the event loop thread
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("email delivery crashed", exc_info=exc)
            self.last_error = str(exc)
            return
        error = task.result()
        if error is not None:
            self.last_error = error

    async def drain_notifications(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def abort(self) -> bool:
        aborted = self.manager.abort()
        if aborted:
            self.executor.reset()
            self.last_event = "aborted"
            self.message = "Thermal shutdown ABORTED"
        return aborted

    def status(self, now: Optional[float] = None) -> ShutdownStatus:
        if now is None:
            now = time.monotonic()
        state = self.manager.state
        return ShutdownStatus(
            enabled=self.manager.enabled,
            in_schedule=self.manager.in_schedule(),
            state=state.kind,
            label=state.label,
            is_active=state.is_active,
            seconds_remaining=state.seconds_remaining(now),
            last_event=self.last_event,
            message=self.message,
            last_error=self.last_error,
        )

    def history_samples(self) -> List[TemperatureSample]:
        return list(self.history)

    # -- loops ------------------------------------------------------------

    async def poll_forever(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("thermal poll cycle crashed")
                self.record(None)
            await asyncio.sleep(self.settings.thermal_poll_interval_secs)

    async def tick_forever(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("shutdown tick crashed")
            await asyncio.sleep(self.settings.shutdown_tick_secs)


@lru_cache(maxsize=1)
def get_monitor() -> ThermalMonitor:
    return ThermalMonitor.from_settings(get_settings())
