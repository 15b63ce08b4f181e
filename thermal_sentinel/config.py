from typing import Optional
from pydantic import BaseModel, Field
import math
import os
from functools import lru_cache

DEFAULT_LHM_URL = "http://localhost:8085/data.json"
DEFAULT_SMTP_SERVER = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587

# Gueltiger Bereich fuer alle Temperatur-Schwellen (°C)
_TEMP_MIN_C = 30.0
_TEMP_MAX_C = 150.0


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "").strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, "").strip())
    except ValueError:
        return default
    # "nan" / "inf" parse as floats but would slip through every clamp
    return value if math.isfinite(value) else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def _positive(value: float, default: float) -> float:
    return value if value > 0 else default


def _clamp_temp(value: float) -> float:
    return min(max(value, _TEMP_MIN_C), _TEMP_MAX_C)


class Settings(BaseModel):
    # LibreHardwareMonitor
    lhm_url: str = Field(
        default=DEFAULT_LHM_URL,
        description="LibreHardwareMonitor JSON endpoint, e.g. http://localhost:8085/data.json",
    )
    lhm_url_override: Optional[str] = Field(
        default=None,
        description="Explicit LHM URL that bypasses loopback/WSL host detection",
    )
    lhm_username: Optional[str] = Field(
        default=None,
        description="Optional basic-auth user for the LHM web server",
    )
    lhm_password: Optional[str] = Field(
        default=None,
        description="Optional basic-auth password for the LHM web server",
    )
    thermal_poll_interval_secs: int = Field(
        default=5,
        ge=1,
        description="Seconds between two LHM polls",
    )

    # Schwellen (°C)
    warning_threshold: float = Field(
        default=85.0,
        description="Temperature at which the thermal level becomes 'warning'",
    )
    critical_threshold: float = Field(
        default=95.0,
        description="Temperature below which an active escalation is cancelled",
    )
    emergency_threshold: float = Field(
        default=100.0,
        description="Temperature at which sustained-time counting begins",
    )

    # Auto-Shutdown (doppelt abgesichert: Config-Flag UND Env-Opt-in)
    sustained_seconds: int = Field(
        default=30,
        ge=5,
        description="Seconds at emergency level before the grace period starts",
    )
    shutdown_grace_secs: int = Field(
        default=30,
        ge=0,
        description="Final countdown in seconds before the power-off command",
    )
    shutdown_tick_secs: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between two ticks of the shutdown state machine",
    )
    auto_shutdown_enabled: bool = Field(
        default=False,
        description="Configuration gate for the auto-shutdown state machine",
    )
    auto_shutdown_confirmed: bool = Field(
        default=False,
        description="Environment opt-in (SENTINEL_AUTO_SHUTDOWN=true|1)",
    )
    shutdown_schedule_start: int = Field(
        default=0,
        ge=0,
        le=23,
        description="Local hour at which the shutdown window opens",
    )
    shutdown_schedule_end: int = Field(
        default=24,
        ge=0,
        le=24,
        description="Local hour at which the shutdown window closes (24 = through midnight)",
    )

    # E-Mail
    email_enabled: bool = Field(
        default=True,
        description="Send email alerts (still requires SMTP credentials)",
    )
    smtp_server: str = Field(default=DEFAULT_SMTP_SERVER, description="SMTP relay host")
    smtp_port: int = Field(default=DEFAULT_SMTP_PORT, description="SMTP port (STARTTLS)")
    smtp_username: Optional[str] = Field(default=None, description="SMTP login, also used as sender")
    smtp_password: Optional[str] = Field(default=None, description="SMTP password")
    smtp_recipient: Optional[str] = Field(default=None, description="Alert recipient address")

    # HTTP-API
    api_host: str = Field(default="127.0.0.1", description="Bind address of the agent API")
    api_port: int = Field(default=8090, description="Port of the agent API")

    # Logging
    log_level: str = Field(default="INFO", description="Level of the thermal_sentinel logger")
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for the rotating JSON log file; console only if unset",
    )

    @classmethod
    def from_env(cls) -> "Settings":
        # Env-Opt-in wird genau einmal gelesen, hier beim Aufbau der Settings
        confirm = os.getenv("SENTINEL_AUTO_SHUTDOWN", "")

        return cls(
            lhm_url=_env_str("SENTINEL_LHM_URL") or DEFAULT_LHM_URL,
            lhm_url_override=_env_str("SENTINEL_LHM_URL_OVERRIDE"),
            lhm_username=_env_str("SENTINEL_LHM_USERNAME"),
            lhm_password=_env_str("SENTINEL_LHM_PASSWORD"),
            thermal_poll_interval_secs=max(1, _env_int("SENTINEL_THERMAL_POLL_SECS", 5)),
            warning_threshold=_clamp_temp(_env_float("SENTINEL_THERMAL_WARNING_C", 85.0)),
            critical_threshold=_clamp_temp(_env_float("SENTINEL_THERMAL_CRITICAL_C", 95.0)),
            emergency_threshold=_clamp_temp(_env_float("SENTINEL_THERMAL_EMERGENCY_C", 100.0)),
            sustained_seconds=max(5, _env_int("SENTINEL_THERMAL_SUSTAINED_SECS", 30)),
            shutdown_grace_secs=max(0, _env_int("SENTINEL_SHUTDOWN_GRACE_SECS", 30)),
            shutdown_tick_secs=_positive(_env_float("SENTINEL_SHUTDOWN_TICK_SECS", 1.0), 1.0),
            auto_shutdown_enabled=_env_bool("SENTINEL_AUTO_SHUTDOWN_ENABLED", False),
            auto_shutdown_confirmed=confirm in ("true", "1"),
            shutdown_schedule_start=min(max(0, _env_int("SENTINEL_SHUTDOWN_SCHEDULE_START", 0)), 23),
            shutdown_schedule_end=min(max(0, _env_int("SENTINEL_SHUTDOWN_SCHEDULE_END", 24)), 24),
            email_enabled=_env_bool("SENTINEL_EMAIL_ENABLED", True),
            smtp_server=_env_str("SENTINEL_SMTP_SERVER") or DEFAULT_SMTP_SERVER,
            smtp_port=_env_int("SENTINEL_SMTP_PORT", DEFAULT_SMTP_PORT),
            smtp_username=_env_str("SENTINEL_SMTP_USER"),
            smtp_password=_env_str("SENTINEL_SMTP_PASSWORD"),
            smtp_recipient=_env_str("SENTINEL_SMTP_RECIPIENT"),
            api_host=_env_str("SENTINEL_API_HOST") or "127.0.0.1",
            api_port=_env_int("SENTINEL_API_PORT", 8090),
            log_level=(_env_str("SENTINEL_LOG_LEVEL") or "INFO").upper(),
            log_dir=_env_str("SENTINEL_LOG_DIR"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
