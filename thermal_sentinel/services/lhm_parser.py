"""
Parse the LibreHardwareMonitor data.json tree into a ThermalSnapshot.

The LHM document is a recursive tree of one uniform node type. Whether a node
is a hardware group ("Intel Core i7-10700K"), a category group
("Temperatures") or a sensor ("CPU Core #1: 65 °C") is only visible from its
shape: sensors carry a Value and no children, categories use a fixed
vocabulary, everything else with text is hardware. The walk below relies on
nothing else, so new hardware types from other vendors pass through without
schema changes.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError

from thermal_sentinel.models.thermal import LhmNode, SensorReading, ThermalSnapshot

logger = logging.getLogger(__name__)

CATEGORY_LABELS = frozenset(
    {"Temperatures", "Fans", "Voltages", "Clocks", "Powers", "Load", "Data", "Throughput"}
)

_NO_VALUE = ("", "-", "N/A")
_NUMERIC_PREFIX = re.compile(r"^[0-9.,-]*")
_TRAILING_DIGITS = re.compile(r"([0-9]+)[^0-9]*$")

# Vendor-Metadaten, keine echten Messwerte
_NOISE_SUBSTRINGS = (
    "distance to tjmax",
    "tjmax",
    "sensor resolution",
    "sensor low",
    "sensor high",
    "sensor limit",
)
_NOISE_PREFIXES = ("temperature warning", "temperature critical", "thermal sensor")

_CPU_MARKERS = ("cpu", "intel core", "amd ryzen", "processor")
_GPU_MARKERS = ("gpu", "nvidia", "geforce", "radeon", "amd rx", "intel arc")
_STORAGE_MARKERS = (
    "ssd",
    "nvme",
    "samsung",
    "wd ",
    "western digital",
    "crucial",
    "kingston",
    "hynix",
)

# Motherboard Super-I/O readings of the CPU socket. Less accurate than the
# die sensor and known to spike, so they never feed max_temp.
_SOCKET_PROXY_NAMES = frozenset({"cpu", "cpu temperature", "cpu (peci)", "cpu peci"})
SOCKET_SUFFIX = " (socket)"


class HardwareDomain(str, Enum):
    CPU = "cpu"
    GPU = "gpu"
    STORAGE = "storage"
    OTHER = "other"


@dataclass
class ParsedSensor:
    hardware_path: List[str]
    name: str
    value: float
    category: str


def parse_sensor_value(raw: str) -> Optional[float]:
    """
    Parse a reading like "65.2 °C", "1200 RPM" or "65,3 °C" into a float.

    Returns None for "no value" markers and for strings without a numeric
    prefix. Never raises.
    """
    text = (raw or "").strip()
    if text in _NO_VALUE:
        return None

    number = _NUMERIC_PREFIX.match(text).group(0).replace(",", ".")
    try:
        return float(number)
    except ValueError:
        return None


def sensor_name(text: str) -> str:
    """Sensor name is the node text before the first colon."""
    head, _sep, _rest = text.partition(":")
    return head.strip()


def is_noise_sensor(name: str) -> bool:
    lowered = name.lower()
    if any(marker in lowered for marker in _NOISE_SUBSTRINGS):
        return True
    return lowered.startswith(_NOISE_PREFIXES)


def collect_sensors(
    node: LhmNode,
    hardware_path: List[str],
    category: str,
    out: List[ParsedSensor],
) -> None:
    """
    Depth-first walk that appends every classified leaf sensor to ``out``.

    ``category`` is the category label active for this subtree; it is passed
    down by value, so leaving a category branch restores the outer one.
    ``hardware_path`` is pushed/popped around hardware nodes.
    """
    text = node.text.strip()

    is_category = text in CATEGORY_LABELS
    if is_category:
        category = text

    if node.value and not node.children:
        value = parse_sensor_value(node.value)
        if value is not None:
            name = sensor_name(text)
            if is_noise_sensor(name):
                logger.debug("skipping metadata sensor %r", name)
            elif category:
                out.append(
                    ParsedSensor(
                        hardware_path=list(hardware_path),
                        name=name,
                        value=value,
                        category=category,
                    )
                )

    is_hardware = not is_category and bool(text) and not node.value
    if is_hardware:
        hardware_path.append(text)

    for child in node.children:
        collect_sensors(child, hardware_path, category, out)

    if is_hardware:
        hardware_path.pop()


def is_cpu_hardware(path: str) -> bool:
    return any(marker in path for marker in _CPU_MARKERS)


def is_gpu_hardware(path: str) -> bool:
    return any(marker in path for marker in _GPU_MARKERS)


def is_storage_hardware(path: str) -> bool:
    return any(marker in path for marker in _STORAGE_MARKERS)


def classify_hardware(path: str) -> HardwareDomain:
    """
    Heuristic domain for a lower-cased, space-joined breadcrumb path.

    Checks run CPU, then GPU, then storage; the first match wins.
    """
    if is_cpu_hardware(path):
        return HardwareDomain.CPU
    if is_gpu_hardware(path):
        return HardwareDomain.GPU
    if is_storage_hardware(path):
        return HardwareDomain.STORAGE
    return HardwareDomain.OTHER


def is_cpu_socket_proxy(name: str) -> bool:
    return name.strip().lower() in _SOCKET_PROXY_NAMES


def format_storage_name(hardware_path: List[str], name: str) -> str:
    if hardware_path and hardware_path[-1].lower() != "temperatures":
        return f"{hardware_path[-1]}: {name}"
    return name


def natural_sort_key(name: str) -> Tuple[str, int]:
    """("Core #", 10) for "Core #10", so that #9 sorts before #10."""
    match = _TRAILING_DIGITS.search(name)
    if match is None:
        return name, 0
    return name[: match.start(1)], int(match.group(1))


def build_snapshot(sensors: List[ParsedSensor]) -> Optional[ThermalSnapshot]:
    """Fold classified sensors into a snapshot; None if there are none."""
    if not sensors:
        return None

    cpu_package: Optional[float] = None
    gpu_temp: Optional[float] = None
    gpu_hotspot: Optional[float] = None
    cpu_cores: List[SensorReading] = []
    ssd_temps: List[SensorReading] = []
    fan_rpms: List[SensorReading] = []
    motherboard_temps: List[SensorReading] = []
    max_temp = 0.0
    max_cpu_temp = 0.0
    max_gpu_temp = 0.0

    for sensor in sensors:
        if sensor.category == "Fans":
            fan_rpms.append(SensorReading(name=sensor.name, value=sensor.value))
            continue
        if sensor.category != "Temperatures":
            continue

        name_lower = sensor.name.lower()
        domain = classify_hardware(" ".join(sensor.hardware_path).lower())

        if domain is HardwareDomain.CPU:
            if "package" in name_lower or "cpu total" in name_lower:
                cpu_package = sensor.value
            elif "core" in name_lower or "average" in name_lower or "max" in name_lower:
                cpu_cores.append(SensorReading(name=sensor.name, value=sensor.value))
            max_cpu_temp = max(max_cpu_temp, sensor.value)
            max_temp = max(max_temp, sensor.value)

        elif domain is HardwareDomain.GPU:
            if "hot spot" in name_lower or "hotspot" in name_lower:
                gpu_hotspot = sensor.value
            elif "gpu" in name_lower or "temperature" in name_lower:
                gpu_temp = sensor.value
            max_gpu_temp = max(max_gpu_temp, sensor.value)
            max_temp = max(max_temp, sensor.value)

        elif domain is HardwareDomain.STORAGE:
            ssd_temps.append(
                SensorReading(
                    name=format_storage_name(sensor.hardware_path, sensor.name),
                    value=sensor.value,
                )
            )
            max_temp = max(max_temp, sensor.value)

        elif is_cpu_socket_proxy(sensor.name):
            motherboard_temps.append(
                SensorReading(name=sensor.name + SOCKET_SUFFIX, value=sensor.value)
            )

        else:
            motherboard_temps.append(SensorReading(name=sensor.name, value=sensor.value))
            max_temp = max(max_temp, sensor.value)

    cpu_cores.sort(key=lambda reading: natural_sort_key(reading.name))

    return ThermalSnapshot(
        cpu_package=cpu_package,
        cpu_cores=cpu_cores,
        gpu_temp=gpu_temp,
        gpu_hotspot=gpu_hotspot,
        ssd_temps=ssd_temps,
        fan_rpms=fan_rpms,
        motherboard_temps=motherboard_temps,
        max_temp=max_temp,
        max_cpu_temp=max_cpu_temp,
        max_gpu_temp=max_gpu_temp,
    )


def parse_lhm_json(document: Union[str, bytes]) -> Optional[ThermalSnapshot]:
    """
    Parse a raw LHM data.json body.

    Returns None for invalid JSON, a non-object root, or a tree without any
    classified sensor, so callers treat all of them like a failed poll.
    """
    try:
        root = LhmNode.model_validate_json(document)
    except (ValidationError, ValueError) as exc:
        logger.debug("LHM document rejected: %s", exc)
        return None

    sensors: List[ParsedSensor] = []
    collect_sensors(root, [], "", sensors)
    return build_snapshot(sensors)


def format_snapshot(snapshot: ThermalSnapshot) -> str:
    """Plain-text rendering of a snapshot, one section per hardware domain."""
    lines = ["=== Thermal Snapshot ===", ""]

    if snapshot.cpu_package is not None or snapshot.cpu_cores:
        lines.append("CPU:")
        if snapshot.cpu_package is not None:
            lines.append(f"  Package: {snapshot.cpu_package:.1f}°C")
        for core in snapshot.cpu_cores:
            lines.append(f"  {core.name}: {core.value:.1f}°C")
        lines.append("")

    if snapshot.gpu_temp is not None or snapshot.gpu_hotspot is not None:
        lines.append("GPU:")
        if snapshot.gpu_temp is not None:
            lines.append(f"  Temperature: {snapshot.gpu_temp:.1f}°C")
        if snapshot.gpu_hotspot is not None:
            lines.append(f"  Hot Spot: {snapshot.gpu_hotspot:.1f}°C")
        lines.append("")

    for title, readings in (("Storage", snapshot.ssd_temps), ("Motherboard", snapshot.motherboard_temps)):
        if readings:
            lines.append(f"{title}:")
            lines.extend(f"  {r.name}: {r.value:.1f}°C" for r in readings)
            lines.append("")

    if snapshot.fan_rpms:
        lines.append("Fans:")
        lines.extend(f"  {r.name}: {r.value:.0f} RPM" for r in snapshot.fan_rpms)
        lines.append("")

    lines.append(f"Max CPU: {snapshot.max_cpu_temp:.1f}°C")
    lines.append(f"Max GPU: {snapshot.max_gpu_temp:.1f}°C")
    lines.append(f"Overall Max: {snapshot.max_temp:.1f}°C")
    return "\n".join(lines)
