"""
Auto-shutdown state machine for thermal emergencies.

    Normal -> Counting -> GracePeriod -> Shutdown

Any active state falls back to Normal once the temperature drops below the
critical threshold (which sits below the emergency threshold, giving a
hysteresis band), when the operator aborts, or when the machine is outside
its schedule window. The machine is off unless both the configuration flag
and the SENTINEL_AUTO_SHUTDOWN environment opt-in are set.
"""

import logging
import platform
import subprocess
import time
from datetime import datetime
from typing import List, Optional

from thermal_sentinel.config import Settings
from thermal_sentinel.models.shutdown import (
    Counting,
    CountingProgress,
    EmergencyStarted,
    GracePeriod,
    GracePeriodCountdown,
    GracePeriodStarted,
    NoEvent,
    Normal,
    Recovered,
    Shutdown,
    ShutdownEvent,
    ShutdownNow,
    ShutdownState,
)
from thermal_sentinel.services.lhm_client import running_in_wsl

logger = logging.getLogger(__name__)


def _current_hour() -> int:
    return datetime.now().hour


class ShutdownManager:
    """
    Owns the current ShutdownState. Not safe for concurrent use: a single
    loop calls tick() once per monitoring cycle, and abort() runs on the
    same loop.
    """

    def __init__(
        self,
        config_enabled: bool,
        env_opt_in: bool,
        emergency_threshold: float,
        critical_threshold: float,
        sustained_secs: int,
        grace_secs: int,
        schedule_start: int = 0,
        schedule_end: int = 24,
    ):
        # critical_threshold <= emergency_threshold is a precondition of the caller
        self.state: ShutdownState = Normal()
        self._enabled = bool(config_enabled and env_opt_in)
        self.emergency_threshold = emergency_threshold
        self.critical_threshold = critical_threshold
        self.sustained_secs = sustained_secs
        self.grace_secs = grace_secs
        self.schedule_start = schedule_start
        self.schedule_end = schedule_end

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShutdownManager":
        return cls(
            config_enabled=settings.auto_shutdown_enabled,
            env_opt_in=settings.auto_shutdown_confirmed,
            emergency_threshold=settings.emergency_threshold,
            critical_threshold=settings.critical_threshold,
            sustained_secs=settings.sustained_seconds,
            grace_secs=settings.shutdown_grace_secs,
            schedule_start=settings.shutdown_schedule_start,
            schedule_end=settings.shutdown_schedule_end,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def in_schedule(self, hour: Optional[int] = None) -> bool:
        if hour is None:
            hour = _current_hour()
        if self.schedule_start <= self.schedule_end:
            return self.schedule_start <= hour < self.schedule_end
        # window wraps midnight, e.g. 22..6
        return hour >= self.schedule_start or hour < self.schedule_end

    def tick(self, max_temp: float, now: Optional[float] = None) -> ShutdownEvent:
        """Advance the machine by one sample and report what happened."""
        if now is None:
            now = time.monotonic()

        if not self._enabled or not self.in_schedule():
            if self.state.is_active:
                logger.info("auto-shutdown inactive or outside schedule, resetting from %s", self.state.kind)
                self.state = Normal()
                return Recovered()
            return NoEvent()

        state = self.state

        if isinstance(state, Normal):
            if max_temp >= self.emergency_threshold:
                self.state = Counting(since=now, required_secs=self.sustained_secs)
                return EmergencyStarted()
            return NoEvent()

        if isinstance(state, Counting):
            if max_temp < self.critical_threshold:
                self.state = Normal()
                return Recovered()
            elapsed = int(now - state.since)
            if elapsed >= state.required_secs:
                self.state = GracePeriod(since=now, grace_secs=self.grace_secs)
                return GracePeriodStarted()
            return CountingProgress(elapsed_secs=elapsed, required_secs=state.required_secs)

        if isinstance(state, GracePeriod):
            if max_temp < self.critical_threshold:
                self.state = Normal()
                return Recovered()
            elapsed = int(now - state.since)
            if elapsed >= state.grace_secs:
                self.state = Shutdown()
                return ShutdownNow()
            return GracePeriodCountdown(remaining_secs=state.grace_secs - elapsed)

        return ShutdownNow()

    def abort(self) -> bool:
        """Operator override: reset any active state. False if already Normal."""
        if not self.state.is_active:
            return False
        logger.warning("auto-shutdown aborted by operator in state %s", self.state.kind)
        self.state = Normal()
        return True


def shutdown_command(system: Optional[str] = None, wsl: Optional[bool] = None) -> List[str]:
    """Platform power-off command. WSL powers off the Windows host."""
    system = system or platform.system()
    if wsl is None:
        wsl = system == "Linux" and running_in_wsl()

    if system == "Windows" or wsl:
        return ["powershell.exe", "-Command", "Stop-Computer -Force"]
    if system == "Darwin":
        return ["shutdown", "-h", "now"]
    return ["systemctl", "poweroff"]


class ShutdownExecutor:
    """
    Spawns the power-off command on the first ShutdownNow.

    Repeated calls after a successful spawn are no-ops. A failed spawn raises
    RuntimeError and leaves the executor un-fired, so the next ShutdownNow
    tries again.
    """

    def __init__(self, command: Optional[List[str]] = None):
        self.command = command or shutdown_command()
        self.fired = False
        self.process: Optional[subprocess.Popen] = None

    def execute(self) -> bool:
        if self.fired:
            self.reap()
            return False
        try:
            self.process = subprocess.Popen(self.command)
        except OSError as exc:
            raise RuntimeError(
                f"could not invoke shutdown command {self.command[0]!r}: {exc}"
            ) from exc
        self.fired = True
        logger.critical("shutdown command issued: %s", " ".join(self.command))
        return True

    def reset(self) -> None:
        """Re-arm after the escalation episode ended (abort or recovery)."""
        self.fired = False
        self.reap()

    def reap(self) -> Optional[int]:
        """Collect the exit status of a finished power-off command, if any."""
        if self.process is None:
            return None
        returncode = self.process.poll()
        if returncode is not None:
            if returncode != 0:
                logger.error("shutdown command exited with status %s", returncode)
            self.process = None
        return returncode
