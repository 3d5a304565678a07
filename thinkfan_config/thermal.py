"""Temperature nodes exposed by the kernel under /sys/class."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from thinkfan_config.errors import SensorUnavailableError

log = logging.getLogger(__name__)

DEFAULT_SYSFS_ROOT = "/sys/class"

# Readings outside this band come from broken or absent sensors
MIN_PLAUSIBLE_TEMP = -50.0
MAX_PLAUSIBLE_TEMP = 150.0


@dataclass(frozen=True)
class SensorMatch:
    """Named lm-sensors entry whose reading agreed with a thermal zone."""

    adapter: str
    name: str
    reference_temp: float


@dataclass(frozen=True)
class ThermalZone:
    """A raw temperature node, rediscovered on every scan and never persisted."""

    path: str
    type: str
    millidegrees: int
    match: SensorMatch | None = None

    @property
    def current_temp(self) -> float:
        return self.millidegrees / 1000

    @property
    def display_name(self) -> str:
        if self.match is None:
            return self.type
        return f"{self.match.name} ({self.type})"


def _natural_key(path: Path) -> list[object]:
    """Sort hwmon2 before hwmon10."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", str(path))]


def _read_label(path: Path) -> str | None:
    try:
        return path.read_text().strip() or None
    except OSError:
        return None


def _read_millidegrees(path: Path) -> int:
    try:
        raw = path.read_text().strip()
    except OSError as e:
        raise SensorUnavailableError(str(path), e.strerror or str(e)) from e

    try:
        return int(raw)
    except ValueError:
        raise SensorUnavailableError(str(path), f"non-numeric reading {raw!r}") from None


def read_temperature(path: str | Path) -> float:
    """Read one temperature node in degrees Celsius.

    Raises SensorUnavailableError if the node is gone or unreadable, which
    happens when hwmon numbering changes across reboots.
    """
    return _read_millidegrees(Path(path)) / 1000


class ThermalZoneReader:
    """Enumerates temperature inputs of hwmon chips and ACPI thermal zones."""

    def __init__(self, root: str | Path = DEFAULT_SYSFS_ROOT) -> None:
        self._root = Path(root)

    def _candidates(self) -> list[tuple[Path, str]]:
        found: list[tuple[Path, str]] = []

        for chip in sorted(self._root.glob("hwmon/hwmon*"), key=_natural_key):
            chip_type = _read_label(chip / "name") or chip.name
            for node in sorted(chip.glob("temp*_input"), key=_natural_key):
                found.append((node, chip_type))

        for zone in sorted(self._root.glob("thermal/thermal_zone*"), key=_natural_key):
            zone_type = _read_label(zone / "type") or zone.name
            found.append((zone / "temp", zone_type))
            for node in sorted(zone.glob("hwmon*/temp*_input"), key=_natural_key):
                found.append((node, zone_type))

        return found

    def enumerate(self) -> list[ThermalZone]:
        """Return every node with a plausible reading, in discovery order.

        Unreadable nodes are skipped. An empty list means no sensors were
        found, not an error.
        """
        zones: list[ThermalZone] = []
        seen: set[Path] = set()

        for node, node_type in self._candidates():
            real = node.resolve()
            if real in seen:
                continue
            seen.add(real)

            try:
                millidegrees = _read_millidegrees(node)
            except SensorUnavailableError as e:
                log.debug("Skipping %s: %s", node, e.reason)
                continue

            temp = millidegrees / 1000
            if not (MIN_PLAUSIBLE_TEMP <= temp <= MAX_PLAUSIBLE_TEMP):
                log.debug("Skipping %s: implausible reading %.1f°C", node, temp)
                continue

            zones.append(ThermalZone(path=str(node), type=node_type, millidegrees=millidegrees))

        log.debug("Found %d thermal zones under %s", len(zones), self._root)
        return zones
