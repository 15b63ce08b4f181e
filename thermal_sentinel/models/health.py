from typing import Optional

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Liveness view of the agent itself and of its telemetry source."""

    hostname: str = Field(..., description="System hostname")
    agent_uptime_seconds: int = Field(
        ...,
        ge=0,
        description="Number of seconds since the agent process was started",
    )
    thermal_available: bool = Field(
        ...,
        description="True if the latest LHM poll produced a snapshot",
    )
    thermal_level: Optional[str] = Field(
        None,
        description="normal, warning, critical or emergency; None without thermal data",
    )
    auto_shutdown_enabled: bool = Field(
        ...,
        description="True if the auto-shutdown state machine is armed",
    )
    email_configured: bool = Field(
        ...,
        description="True if SMTP credentials are present and email alerts are enabled",
    )
