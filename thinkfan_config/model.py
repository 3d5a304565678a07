"""In-memory model of a thinkfan configuration."""

import enum
from dataclasses import dataclass, field


class SensorKind(enum.Enum):
    """How thinkfan reads a temperature source."""

    HWMON = "hwmon"
    TPACPI = "tpacpi"


class FanKind(enum.Enum):
    """How thinkfan drives a fan."""

    HWMON = "hwmon"
    TPACPI = "tpacpi"


class SourceFormat(enum.Enum):
    """On-disk grammar a Config was read from."""

    STRUCTURED = "yaml"
    LEGACY = "legacy"


@dataclass(frozen=True)
class Sensor:
    """A temperature source, identified by its path."""

    kind: SensorKind
    path: str
    options: dict[str, object] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class Fan:
    kind: FanKind
    path: str
    options: dict[str, object] = field(default_factory=dict, hash=False)


@dataclass
class Level:
    """A fan-speed band with one boundary per configured sensor.

    ``lower_limit`` is None for the lowest level, which has no lower bound.
    """

    speed: int
    upper_limit: list[int]
    lower_limit: list[int] | None = None


@dataclass
class Config:
    """Aggregate root: sensors, fans and the level table.

    Sensor order defines the column index of every boundary array.
    """

    sensors: list[Sensor] = field(default_factory=list)
    fans: list[Fan] = field(default_factory=list)
    levels: list[Level] = field(default_factory=list)
    source_format: SourceFormat = field(default=SourceFormat.STRUCTURED, compare=False)

    def sensor_index(self, path: str) -> int | None:
        """Return the column index of the sensor at ``path``, or None."""
        for i, sensor in enumerate(self.sensors):
            if sensor.path == path:
                return i
        return None
