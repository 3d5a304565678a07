"""Giving anonymous thermal zones a human-readable name.

A sysfs node only knows its chip or zone type. lm-sensors knows friendly
labels ("Package id 0", "Tctl") but not which node they came from, so the two
are correlated by temperature: a zone takes the name of the first report
entry reading within MATCH_TOLERANCE of it. The result is a display hint and
a presentation order, never a path of record.
"""

import json
import logging
import subprocess
from collections.abc import Callable, Iterator
from dataclasses import replace

import psutil

from thinkfan_config.thermal import SensorMatch, ThermalZone, ThermalZoneReader

log = logging.getLogger(__name__)

# adapter -> metric -> number, or a mapping such as {"temp1_input": 45.0}
SensorReport = dict[str, dict[str, object]]

MATCH_TOLERANCE = 0.5  # °C
SENSORS_TIMEOUT = 5.0  # seconds

# Known CPU thermal driver names
_CPU_CHIPS = ("coretemp", "k10temp", "zenpower")


def lm_sensors_report(timeout: float = SENSORS_TIMEOUT) -> SensorReport:
    """Run ``sensors -j`` and return its parsed output.

    Raises FileNotFoundError if lm-sensors is not installed, and
    subprocess/JSON errors if it fails.
    """
    result = subprocess.run(
        ["sensors", "-j"], capture_output=True, text=True, timeout=timeout, check=True,
    )
    return json.loads(result.stdout)


def psutil_report() -> SensorReport:
    """Build a report in the ``sensors -j`` shape from psutil."""
    try:
        temps = psutil.sensors_temperatures()
    except (AttributeError, OSError) as e:
        log.debug("psutil.sensors_temperatures() failed: %s", e)
        return {}

    report: SensorReport = {}
    for adapter, entries in temps.items():
        metrics = report.setdefault(adapter, {})
        for i, entry in enumerate(entries, start=1):
            label = entry.label or f"temp{i}"
            if label in metrics:
                label = f"{label} #{i}"
            metrics[label] = {f"temp{i}_input": entry.current}
    return report


def read_sensor_report(timeout: float = SENSORS_TIMEOUT) -> SensorReport:
    """Return the richest report available, or an empty one on failure."""
    try:
        return lm_sensors_report(timeout)
    except FileNotFoundError:
        log.debug("lm-sensors not installed, falling back to psutil")
        return psutil_report()
    except (subprocess.SubprocessError, json.JSONDecodeError) as e:
        log.warning("sensors -j failed: %s", e)
        return {}


def _reading_value(reading: object) -> float | None:
    if isinstance(reading, bool):
        return None
    if isinstance(reading, (int, float)):
        return float(reading)
    if isinstance(reading, dict):
        for key, value in reading.items():
            if (
                key.startswith("temp") and key.endswith("_input")
                and isinstance(value, (int, float)) and not isinstance(value, bool)
            ):
                return float(value)
    return None


def _readings(report: SensorReport) -> Iterator[tuple[str, str, float]]:
    """Yield (adapter, name, °C) in report order."""
    for adapter, metrics in report.items():
        if not isinstance(metrics, dict):
            continue
        for name, reading in metrics.items():
            value = _reading_value(reading)
            if value is not None:
                yield adapter, name, value


def _priority(zone: ThermalZone) -> int:
    adapter = zone.match.adapter.lower() if zone.match else ""
    zone_type = zone.type.lower()

    if any(chip in adapter for chip in _CPU_CHIPS):
        return 3
    if "cpu" in zone_type or "cpu" in adapter:
        return 2
    if "gpu" in zone_type or "gpu" in adapter:
        return 1
    return 0


class SensorIdentityResolver:
    """Annotates and orders thermal zones using a sensor report."""

    def __init__(self, report_source: Callable[[], SensorReport] | None = None) -> None:
        self._report_source = report_source or read_sensor_report

    def resolve(
        self, zones: list[ThermalZone], report: SensorReport | None = None,
    ) -> list[ThermalZone]:
        """Attach a SensorMatch to each zone that has one.

        The first report entry within tolerance wins, even if a later one is
        closer. Unmatched zones are kept without a match.
        """
        if report is None:
            report = self._report_source()
        readings = list(_readings(report))

        resolved = []
        for zone in zones:
            match = next(
                (
                    SensorMatch(adapter=adapter, name=name, reference_temp=value)
                    for adapter, name, value in readings
                    if abs(value - zone.current_temp) <= MATCH_TOLERANCE
                ),
                None,
            )
            resolved.append(replace(zone, match=match))
        return resolved

    def rank(self, zones: list[ThermalZone]) -> list[ThermalZone]:
        """Order zones CPU chips first, then CPU-typed, then GPU, then the rest.

        Ties keep discovery order.
        """
        return sorted(zones, key=lambda z: -_priority(z))

    def discover(self, reader: ThermalZoneReader) -> list[ThermalZone]:
        """Enumerate, name and order the sensors an operator can pick from."""
        return self.rank(self.resolve(reader.enumerate()))
