import ipaddress
import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import httpx

from thermal_sentinel.config import Settings
from thermal_sentinel.models.thermal import ThermalSnapshot
from thermal_sentinel.services.lhm_parser import parse_lhm_json

logger = logging.getLogger(__name__)

POLL_TIMEOUT_SECONDS = 3.0

_PROC_VERSION = Path("/proc/version")
_RESOLV_CONF = Path("/etc/resolv.conf")
_PROC_NET_ROUTE = Path("/proc/net/route")


class LhmClient:
    """
    Fetch-and-parse client for the LibreHardwareMonitor web server.

    poll() never raises: every transport, status or decode problem is logged
    and reported as None so that the monitoring loop simply tries again on
    its next cycle.
    """

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = POLL_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self._auth = (username, password or "") if username else None
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "LhmClient":
        url = resolve_lhm_url(settings.lhm_url, settings.lhm_url_override)
        return cls(url, username=settings.lhm_username, password=settings.lhm_password)

    async def poll(self) -> Optional[ThermalSnapshot]:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                auth=self._auth,
                transport=self._transport,
            ) as client:
                response = await client.get(self.url)
                if not response.is_success:
                    logger.warning("LHM at %s answered with HTTP %s", self.url, response.status_code)
                    return None
                body = response.text
        except httpx.HTTPError as exc:
            logger.debug("LHM poll of %s failed: %r", self.url, exc)
            return None
        except UnicodeDecodeError as exc:
            logger.warning("LHM body from %s could not be decoded: %s", self.url, exc)
            return None

        snapshot = parse_lhm_json(body)
        if snapshot is None:
            logger.debug("LHM document from %s contained no usable sensors", self.url)
        return snapshot


def _is_loopback(host: Optional[str]) -> bool:
    if not host:
        return False
    if host.lower() == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def running_in_wsl() -> bool:
    """True inside a WSL guest, where localhost does not reach Windows services."""
    if os.getenv("WSL_DISTRO_NAME"):
        return True
    try:
        return "microsoft" in _PROC_VERSION.read_text(encoding="utf-8").lower()
    except OSError:
        return False


def _nameserver_host() -> Optional[str]:
    # WSL2 schreibt die Windows-Host-IP als nameserver in resolv.conf
    try:
        lines = _RESOLV_CONF.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    for line in lines:
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "nameserver":
            try:
                address = ipaddress.ip_address(parts[1])
            except ValueError:
                continue
            if not address.is_loopback:
                return str(address)
    return None


def _default_gateway() -> Optional[str]:
    try:
        lines = _PROC_NET_ROUTE.read_text(encoding="utf-8").splitlines()[1:]
    except OSError:
        return None
    for line in lines:
        fields = line.split()
        # Iface Destination Gateway ...; Destination 00000000 = default route
        if len(fields) >= 3 and fields[1] == "00000000":
            try:
                raw = int(fields[2], 16)
            except ValueError:
                continue
            return str(ipaddress.IPv4Address(raw.to_bytes(4, "little")))
    return None


def detect_host_address() -> Optional[str]:
    """Best-effort address of the Windows host as seen from a WSL guest."""
    return _nameserver_host() or _default_gateway()


def resolve_lhm_url(configured: str, override: Optional[str] = None) -> str:
    """
    Decide which URL the poll client should use.

    An explicit override always wins. A loopback URL is rewritten to the
    detected host address when running inside WSL; otherwise the configured
    URL is used verbatim.
    """
    if override:
        return override

    parts = urlsplit(configured)
    if not _is_loopback(parts.hostname) or not running_in_wsl():
        return configured

    host = detect_host_address()
    if host is None:
        logger.warning("running in WSL but no host address found; keeping %s", configured)
        return configured

    if ":" in host:
        host = f"[{host}]"
    netloc = host if parts.port is None else f"{host}:{parts.port}"
    if parts.username:
        credentials = parts.username if parts.password is None else f"{parts.username}:{parts.password}"
        netloc = f"{credentials}@{netloc}"

    resolved = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    logger.info("WSL detected, using LHM at %s instead of %s", resolved, configured)
    return resolved
