"""Reading and writing thinkfan configuration text.

Two grammars exist on disk. The YAML one (thinkfan >= 1.0) is tried first;
anything that does not load as a YAML mapping of the expected shape is read
with the old line-oriented grammar::

    hwmon /sys/class/hwmon/hwmon2/temp1_input
    tp_fan /proc/acpi/ibm/fan
    (0, 0, 55)
    (1, 48, 60)

The legacy grammar has a single temperature column per level. Writing always
produces YAML.
"""

import logging
import re

import yaml

from thinkfan_config.errors import FormatError
from thinkfan_config.model import Config, Fan, FanKind, Level, Sensor, SensorKind, SourceFormat

log = logging.getLogger(__name__)

_LEGACY_SENSOR_KEYWORDS = {
    "hwmon": SensorKind.HWMON,
    "tp_thermal": SensorKind.TPACPI,
}
_LEGACY_FAN_KEYWORDS = {
    "tp_fan": FanKind.TPACPI,
    "pwm_fan": FanKind.HWMON,
}
_FAN_TYPE_ALIASES = {
    "tpacpi": FanKind.TPACPI,
    "tp_fan": FanKind.TPACPI,
    "hwmon": FanKind.HWMON,
    "pwm_fan": FanKind.HWMON,
}
_LEGACY_LEVEL = re.compile(r"^\(\s*(-?\d+)\s*,\s*(-?\d+)\s*,\s*(-?\d+)\s*\)$")


def parse(content: str) -> Config:
    """Parse configuration text in either grammar.

    Raises FormatError if the text matches neither.
    """
    if not content.strip():
        raise FormatError("Configuration is empty")

    config = _parse_structured(content)
    if config is not None:
        return config

    config = _parse_legacy(content)
    if not (config.sensors or config.fans or config.levels):
        raise FormatError("Configuration matches neither the YAML nor the legacy grammar")
    return config


def serialize(config: Config) -> str:
    """Render a Config as thinkfan YAML."""
    lines = ["sensors:" if config.sensors else "sensors: []"]
    for sensor in config.sensors:
        lines.append(f"  - {sensor.kind.value}: {_dump_value(sensor.path)}")
        lines.extend(_option_lines(sensor.options))

    lines.append("")
    lines.append("fans:" if config.fans else "fans: []")
    for fan in config.fans:
        lines.append(f"  - {fan.kind.value}: {_dump_value(fan.path)}")
        lines.extend(_option_lines(fan.options))

    lines.append("")
    lines.append("levels:" if config.levels else "levels: []")
    for level in config.levels:
        lines.append(f"  - speed: {level.speed}")
        if level.lower_limit:
            lines.append(f"    lower_limit: {_dump_temps(level.lower_limit)}")
        lines.append(f"    upper_limit: {_dump_temps(level.upper_limit)}")

    return "\n".join(lines) + "\n"


# --- YAML ---

def _parse_structured(content: str) -> Config | None:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        log.debug("Not YAML, trying legacy grammar: %s", e)
        return None

    if not isinstance(data, dict) or "sensors" not in data or "levels" not in data:
        return None

    try:
        sensors = [_sensor_from_entry(e) for e in _as_list(data["sensors"])]
        fans = [_fan_from_entry(e) for e in _as_list(data.get("fans"))]
        levels = [_level_from_entry(e) for e in _as_list(data["levels"])]
    except (TypeError, ValueError) as e:
        log.debug("YAML does not have the thinkfan shape: %s", e)
        return None

    return Config(sensors=sensors, fans=fans, levels=levels, source_format=SourceFormat.STRUCTURED)


def _as_list(value: object) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"Expected a list, got {type(value).__name__}")
    return value


def _split_entry(entry: object, keys: tuple[str, ...]) -> tuple[str, str, dict[str, object]]:
    """Pick the identifier key out of a sensor/fan mapping."""
    if not isinstance(entry, dict):
        raise TypeError(f"Expected a mapping, got {entry!r}")

    found = [k for k in keys if k in entry]
    if len(found) != 1:
        raise ValueError(f"Expected exactly one of {', '.join(keys)} in {entry!r}")

    key = found[0]
    path = entry[key]
    if not isinstance(path, str) or not path:
        raise ValueError(f"Invalid path {path!r}")

    options = {str(k): v for k, v in entry.items() if k != key}
    return key, path, options


def _sensor_from_entry(entry: object) -> Sensor:
    key, path, options = _split_entry(entry, ("hwmon", "tpacpi", "path"))
    kind = SensorKind.TPACPI if key == "tpacpi" else SensorKind.HWMON
    return Sensor(kind=kind, path=path, options=options)


def _fan_from_entry(entry: object) -> Fan:
    if isinstance(entry, dict) and "path" in entry and "type" in entry:
        fan_type = entry["type"]
        if fan_type not in _FAN_TYPE_ALIASES:
            raise ValueError(f"Unknown fan type {fan_type!r}")
        options = {str(k): v for k, v in entry.items() if k not in ("type", "path")}
        return Fan(kind=_FAN_TYPE_ALIASES[fan_type], path=str(entry["path"]), options=options)

    key, path, options = _split_entry(entry, ("tpacpi", "hwmon"))
    return Fan(kind=FanKind(key), path=path, options=options)


def _int(value: object, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{what} must be an integer, got {value!r}")
    return value


def _temps(value: object) -> list[int]:
    return [_int(t, "Temperature") for t in _as_list(value)]


def _level_from_entry(entry: object) -> Level:
    if not isinstance(entry, dict):
        raise TypeError(f"Expected a level mapping, got {entry!r}")
    if "speed" not in entry or "upper_limit" not in entry:
        raise ValueError(f"Level needs speed and upper_limit: {entry!r}")

    speed = _int(entry["speed"], "Speed")
    if speed < 0:
        raise ValueError(f"Speed must be non-negative, got {speed}")

    lower = _temps(entry.get("lower_limit")) or None
    return Level(speed=speed, upper_limit=_temps(entry["upper_limit"]), lower_limit=lower)


def _dump_value(value: object) -> str:
    """Dump a YAML value on a single line."""
    text = yaml.safe_dump(value, default_flow_style=True, width=2**16)
    return text.removesuffix("\n...\n").strip()


def _dump_temps(temps: list[int]) -> str:
    return "[" + ", ".join(str(t) for t in temps) + "]"


def _option_lines(options: dict[str, object]) -> list[str]:
    return [f"    {key}: {_dump_value(value)}" for key, value in options.items()]


# --- Legacy ---

def _parse_legacy(content: str) -> Config:
    config = Config(source_format=SourceFormat.LEGACY)

    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        if m := _LEGACY_LEVEL.match(line):
            speed, lower, upper = (int(g) for g in m.groups())
            if speed < 0:
                raise FormatError(f"Speed must be non-negative, got {speed}: {line}")
            # The first level is the lowest band and has no lower bound.
            lower_limit = [lower] if config.levels else None
            config.levels.append(Level(speed=speed, upper_limit=[upper], lower_limit=lower_limit))
            continue

        parts = line.split()
        if len(parts) < 2:
            log.debug("Ignoring legacy line: %s", line)
            continue

        keyword, path = parts[0], parts[1]
        if keyword in _LEGACY_SENSOR_KEYWORDS:
            config.sensors.append(Sensor(kind=_LEGACY_SENSOR_KEYWORDS[keyword], path=path))
        elif keyword in _LEGACY_FAN_KEYWORDS:
            config.fans.append(Fan(kind=_LEGACY_FAN_KEYWORDS[keyword], path=path))
        else:
            log.debug("Ignoring legacy line: %s", line)

    return config
