from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SensorReading(BaseModel):
    """A single classified sensor reading (temperature in °C or fan speed in RPM)."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        description="Human-readable sensor name, e.g. 'CPU Core #1' or 'GPU Fan'",
    )
    value: float = Field(
        ...,
        description="Parsed numeric value (°C for temperatures, RPM for fans)",
    )


class ThermalSnapshot(BaseModel):
    """
    One immutable, fully classified reading of all LHM sensors.

    max_temp is the value the shutdown state machine acts on. Motherboard
    CPU-socket proxy sensors are listed in motherboard_temps but never
    contribute to it.
    """

    model_config = ConfigDict(frozen=True)

    cpu_package: Optional[float] = Field(None, description="CPU package temperature")
    cpu_cores: List[SensorReading] = Field(
        default_factory=list,
        description="Per-core CPU temperatures in natural order (Core #2 before Core #10)",
    )
    gpu_temp: Optional[float] = Field(None, description="GPU core temperature")
    gpu_hotspot: Optional[float] = Field(None, description="GPU hot spot temperature")
    ssd_temps: List[SensorReading] = Field(
        default_factory=list,
        description="Storage temperatures, named '<device>: <sensor>'",
    )
    fan_rpms: List[SensorReading] = Field(default_factory=list, description="Fan speeds in RPM")
    motherboard_temps: List[SensorReading] = Field(
        default_factory=list,
        description="Motherboard / chipset / other temperatures",
    )
    max_temp: float = Field(0.0, description="Highest temperature eligible for shutdown decisions")
    max_cpu_temp: float = Field(0.0, description="Highest CPU temperature (package or core)")
    max_gpu_temp: float = Field(0.0, description="Highest GPU temperature (core or hot spot)")
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC time at which the snapshot was built",
    )


class LhmNode(BaseModel):
    """
    One node of the LibreHardwareMonitor data.json tree.

    The same shape is used for hardware groups, category groups and sensors;
    the role is derived from which fields are filled. Every field defaults to
    empty so that unknown or missing keys never fail validation.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str = Field("", alias="Text")
    children: List["LhmNode"] = Field(default_factory=list, alias="Children")
    min: str = Field("", alias="Min")
    max: str = Field("", alias="Max")
    value: str = Field("", alias="Value")
    image_url: str = Field("", alias="ImageURL")

    @field_validator("text", "min", "max", "value", "image_url", mode="before")
    @classmethod
    def _coerce_text(cls, raw: Any) -> str:
        if raw is None:
            return ""
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return str(raw)
        return raw

    @field_validator("children", mode="before")
    @classmethod
    def _coerce_children(cls, raw: Any) -> Any:
        if raw is None:
            return []
        if isinstance(raw, list):
            # Nicht-Objekte (z.B. Strings) im Children-Array ignorieren
            return [child for child in raw if isinstance(child, dict)]
        return raw


LhmNode.model_rebuild()
