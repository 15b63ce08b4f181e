from datetime import datetime

from pydantic import BaseModel, Field


class TemperatureSample(BaseModel):
    """One point of the max-temperature history kept for sparklines."""

    captured_at: datetime = Field(..., description="UTC time of the snapshot")
    max_temp: float = Field(..., description="Overall max temperature in °C")
    max_cpu_temp: float = Field(..., description="Max CPU temperature in °C")
    max_gpu_temp: float = Field(..., description="Max GPU temperature in °C")
