"""
Email alerts for thermal events.

Rate-limited to one email per event kind per EMAIL_RATE_LIMIT_SECONDS. The
limit is enforced with try_reserve(), which checks and marks in one
synchronous step so that two overlapping escalations cannot both pass the
check before either send has finished.
"""

import logging
import smtplib
import socket
import time
from datetime import datetime
from email.mime.text import MIMEText
from enum import Enum
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field

from thermal_sentinel.config import Settings

logger = logging.getLogger(__name__)

EMAIL_RATE_LIMIT_SECONDS = 300
SMTP_TIMEOUT_SECONDS = 30


class NotifyEvent(str, Enum):
    THERMAL_CRITICAL = "thermal_critical"
    THERMAL_EMERGENCY = "thermal_emergency"
    SHUTDOWN_IMMINENT = "shutdown_imminent"
    RECOVERED = "recovered"
    TEST = "test"

    @property
    def subject(self) -> str:
        return _SUBJECTS[self]


_SUBJECTS = {
    NotifyEvent.THERMAL_CRITICAL: "[Sentinel] CRITICAL: Temperature threshold exceeded",
    NotifyEvent.THERMAL_EMERGENCY: "[Sentinel] EMERGENCY: Sustained high temperature",
    NotifyEvent.SHUTDOWN_IMMINENT: "[Sentinel] SHUTDOWN IMMINENT: Auto-shutdown triggered",
    NotifyEvent.RECOVERED: "[Sentinel] RECOVERED: Temperature returned to normal",
    NotifyEvent.TEST: "[Sentinel] Test email - notifications working",
}


class SmtpConfig(BaseModel):
    server: str = Field(..., description="SMTP relay host")
    port: int = Field(..., description="SMTP port, STARTTLS is always used")
    username: str = Field(..., description="Login, also used as the From address")
    password: str = Field(..., description="SMTP password or app password")
    recipient: str = Field(..., description="Alert recipient")

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["SmtpConfig"]:
        """None unless user, password and recipient are all configured."""
        if not (settings.smtp_username and settings.smtp_password and settings.smtp_recipient):
            return None
        return cls(
            server=settings.smtp_server,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            recipient=settings.smtp_recipient,
        )


class EmailNotifier:
    def __init__(
        self,
        config: SmtpConfig,
        rate_limit_seconds: float = EMAIL_RATE_LIMIT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.rate_limit_seconds = rate_limit_seconds
        self._clock = clock
        self._last_sent: Dict[NotifyEvent, float] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["EmailNotifier"]:
        if not settings.email_enabled:
            return None
        config = SmtpConfig.from_settings(settings)
        return cls(config) if config is not None else None

    def can_send(self, event: NotifyEvent) -> bool:
        last = self._last_sent.get(event)
        return last is None or self._clock() - last >= self.rate_limit_seconds

    def mark_sent(self, event: NotifyEvent) -> None:
        self._last_sent[event] = self._clock()

    def try_reserve(self, event: NotifyEvent) -> bool:
        """Check the rate limit and, if allowed, mark the event as sent."""
        if not self.can_send(event):
            logger.debug("email for %s suppressed by rate limit", event.value)
            return False
        self.mark_sent(event)
        return True

    def send_email(self, subject: str, body: str) -> None:
        """
        Blocking SMTP send with STARTTLS.

        Raises RuntimeError if the message could not be delivered to the relay.
        """
        message = MIMEText(body, "plain", "utf-8")
        message["From"] = self.config.username
        message["To"] = self.config.recipient
        message["Subject"] = subject

        try:
            with smtplib.SMTP(self.config.server, self.config.port, timeout=SMTP_TIMEOUT_SECONDS) as server:
                server.starttls()
                server.login(self.config.username, self.config.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise RuntimeError(f"SMTP send to {self.config.server} failed: {exc}") from exc

        logger.info("email sent to %s: %s", self.config.recipient, subject)

    def notify(self, event: NotifyEvent, body: str) -> bool:
        """Rate-limited send. Returns False if suppressed by the rate limit."""
        if not self.try_reserve(event):
            return False
        self.send_email(event.subject, body)
        return True

    def send_test(self) -> None:
        """Send a test email, bypassing the rate limit."""
        body = (
            "Sentinel email notifications are working.\n\n"
            f"SMTP Server: {self.config.server}:{self.config.port}\n"
            f"From: {self.config.username}\n"
            f"To: {self.config.recipient}\n\n"
            "This is a test email sent via POST /notifications/test."
        )
        self.send_email(NotifyEvent.TEST.subject, body)
        self.mark_sent(NotifyEvent.TEST)


def hostname() -> str:
    return socket.gethostname() or "sentinel-host"


def thermal_alert_body(
    event: NotifyEvent,
    temp: float,
    sensor: str,
    host: str,
    grace_secs: Optional[int] = None,
) -> str:
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    if event is NotifyEvent.THERMAL_CRITICAL:
        title, status_line = "Sentinel Thermal Alert", "Severity: CRITICAL"
        closing = (
            "The temperature has exceeded the emergency threshold.\n"
            "If this persists, auto-shutdown may be triggered."
        )
    elif event is NotifyEvent.THERMAL_EMERGENCY:
        title, status_line = "Sentinel Thermal EMERGENCY", "Severity: EMERGENCY"
        closing = (
            "Temperature has been at emergency levels for a sustained period.\n"
            "Auto-shutdown is being executed."
        )
    elif event is NotifyEvent.SHUTDOWN_IMMINENT:
        title, status_line = "Sentinel AUTO-SHUTDOWN IMMINENT", "Severity: EMERGENCY"
        countdown = f"in {grace_secs} seconds" if grace_secs is not None else "shortly"
        closing = (
            f"The system will shut down {countdown} unless:\n"
            "- Temperature drops below critical threshold\n"
            "- An operator aborts via POST /shutdown/abort\n\n"
            "This shutdown is to protect hardware from thermal damage."
        )
    elif event is NotifyEvent.RECOVERED:
        title, status_line = "Sentinel Recovery Notice", "Status: RECOVERED"
        closing = "Temperature has returned to safe levels. The system is operating normally."
    else:
        return f"Sentinel Test Email\nHost: {host}\nTime: {timestamp}"

    return (
        f"{title}\n"
        f"{'=' * len(title)}\n\n"
        f"{status_line}\n"
        f"Sensor: {sensor}\n"
        f"Temperature: {temp:.1f}°C\n"
        f"Host: {host}\n"
        f"Time: {timestamp}\n\n"
        f"{closing}"
    )
