import socket
import time

import psutil

from thermal_sentinel.models.health import HealthStatus
from thermal_sentinel.services import thermal_monitor


def get_health_status() -> HealthStatus:
    """
    Collect liveness information about the agent and return it as a
    HealthStatus domain object.

    All direct calls to psutil/socket/time live here, so the API layer only
    returns the model.
    """
    monitor = thermal_monitor.get_monitor()
    started = psutil.Process().create_time()

    return HealthStatus(
        hostname=socket.gethostname(),
        agent_uptime_seconds=max(int(time.time() - started), 0),
        thermal_available=monitor.latest is not None,
        thermal_level=monitor.thermal_level(),
        auto_shutdown_enabled=monitor.manager.enabled,
        email_configured=monitor.notifier is not None,
    )
