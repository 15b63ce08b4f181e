from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _State(BaseModel):
    # label is defined per state
    model_config = ConfigDict(frozen=True)

    @property
    def is_active(self) -> bool:
        return True

    def seconds_remaining(self, now: float) -> Optional[int]:
        return None


class Normal(_State):
    """No thermal emergency."""

    kind: Literal["normal"] = "normal"

    @property
    def label(self) -> str:
        return "Normal"

    @property
    def is_active(self) -> bool:
        return False


class Counting(_State):
    """Emergency threshold reached; counting sustained seconds."""

    kind: Literal["counting"] = "counting"
    since: float = Field(..., description="time.monotonic() at entry into this state")
    required_secs: int = Field(..., ge=0)

    @property
    def label(self) -> str:
        return "Thermal Warning - Counting"

    def seconds_remaining(self, now: float) -> Optional[int]:
        return max(self.required_secs - int(now - self.since), 0)


class GracePeriod(_State):
    """Sustained emergency confirmed; final countdown before power-off."""

    kind: Literal["grace_period"] = "grace_period"
    since: float = Field(..., description="time.monotonic() at entry into this state")
    grace_secs: int = Field(..., ge=0)

    @property
    def label(self) -> str:
        return "SHUTDOWN IMMINENT"

    def seconds_remaining(self, now: float) -> Optional[int]:
        return max(self.grace_secs - int(now - self.since), 0)


class Shutdown(_State):
    """Power-off has been requested. Terminal until aborted."""

    kind: Literal["shutdown"] = "shutdown"

    @property
    def label(self) -> str:
        return "SHUTTING DOWN"


ShutdownState = Union[Normal, Counting, GracePeriod, Shutdown]


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class NoEvent(_Event):
    kind: Literal["none"] = "none"


class EmergencyStarted(_Event):
    kind: Literal["emergency_started"] = "emergency_started"


class CountingProgress(_Event):
    kind: Literal["counting"] = "counting"
    elapsed_secs: int
    required_secs: int


class GracePeriodStarted(_Event):
    kind: Literal["grace_period_started"] = "grace_period_started"


class GracePeriodCountdown(_Event):
    kind: Literal["grace_period_countdown"] = "grace_period_countdown"
    remaining_secs: int


class ShutdownNow(_Event):
    kind: Literal["shutdown_now"] = "shutdown_now"


class Recovered(_Event):
    kind: Literal["recovered"] = "recovered"


ShutdownEvent = Union[
    NoEvent,
    EmergencyStarted,
    CountingProgress,
    GracePeriodStarted,
    GracePeriodCountdown,
    ShutdownNow,
    Recovered,
]


class ShutdownStatus(BaseModel):
    """Operator-facing view of the auto-shutdown state machine."""

    enabled: bool = Field(..., description="True if both the config gate and the env opt-in are set")
    in_schedule: bool = Field(..., description="True if the local hour lies inside the shutdown window")
    state: str = Field(..., description="State kind: normal, counting, grace_period or shutdown")
    label: str = Field(..., description="Human-readable state label")
    is_active: bool = Field(..., description="True for any state other than normal")
    seconds_remaining: Optional[int] = Field(
        None,
        ge=0,
        description="Seconds until the next escalation, if counting or in the grace period",
    )
    last_event: Optional[str] = Field(None, description="Kind of the most recent non-trivial event")
    message: Optional[str] = Field(None, description="Latest human-readable status message")
    last_error: Optional[str] = Field(None, description="Latest executor or notifier error")


class AbortResult(BaseModel):
    aborted: bool = Field(..., description="True if an active escalation was reset to normal")
    state: str = Field(..., description="State kind after the abort")
