"""Keeping the level table in step with the sensor list.

Every level holds one upper bound (and, except for the lowest level, one
lower bound) per configured sensor, in sensor order. Adjacent levels share
their edge: ``levels[i].upper_limit[c] == levels[i + 1].lower_limit[c]``.

All functions validate first and then work on a copy, so a rejected edit
leaves the caller's Config untouched.
"""

import copy
import logging

from thinkfan_config.errors import (
    BoundaryOrderError,
    DuplicateSensorError,
    InvalidSpeedError,
    InvalidTemperatureError,
    LastSensorError,
    LevelIndexError,
    SensorNotFoundError,
)
from thinkfan_config.model import Config, Level, Sensor

log = logging.getLogger(__name__)


def _seed(values: list[int]) -> int:
    return values[0] if values else 0


def add_sensor_column(config: Config, sensor: Sensor) -> Config:
    """Append a sensor and a boundary column for it.

    The new column starts as a copy of each level's first column. That is a
    starting point for the operator to tune, not a meaningful threshold for
    the new sensor.
    """
    if config.sensor_index(sensor.path) is not None:
        raise DuplicateSensorError(f"Sensor {sensor.path} is already configured")

    updated = copy.deepcopy(config)
    updated.sensors.append(sensor)
    for level in updated.levels:
        level.upper_limit.append(_seed(level.upper_limit))
        if level.lower_limit:
            level.lower_limit.append(_seed(level.lower_limit))

    log.debug("Added sensor column %d for %s", len(updated.sensors) - 1, sensor.path)
    return updated


def remove_sensor_column(config: Config, path: str) -> Config:
    """Drop a sensor and its boundary column. The last sensor cannot go."""
    if len(config.sensors) == 1:
        raise LastSensorError("Cannot remove the last sensor")

    index = config.sensor_index(path)
    if index is None:
        raise SensorNotFoundError(f"Sensor {path} is not configured")

    updated = copy.deepcopy(config)
    del updated.sensors[index]
    for level in updated.levels:
        if index < len(level.upper_limit):
            del level.upper_limit[index]
        if level.lower_limit and index < len(level.lower_limit):
            del level.lower_limit[index]

    log.debug("Removed sensor column %d (%s)", index, path)
    return updated


def replace_sensor(config: Config, old_path: str, sensor: Sensor) -> Config:
    """Point an existing column at a different sensor, keeping its thresholds."""
    index = config.sensor_index(old_path)
    if index is None:
        raise SensorNotFoundError(f"Sensor {old_path} is not configured")
    if sensor.path != old_path and config.sensor_index(sensor.path) is not None:
        raise DuplicateSensorError(f"Sensor {sensor.path} is already configured")

    updated = copy.deepcopy(config)
    updated.sensors[index] = sensor
    return updated


def _check_position(config: Config, level_index: int, column: int) -> None:
    if not 0 <= level_index < len(config.levels):
        raise LevelIndexError(
            f"Level {level_index} out of range (config has {len(config.levels)} levels)"
        )
    width = len(config.sensors)
    if not 0 <= column < width:
        raise LevelIndexError(f"Sensor column {column} out of range ({width} sensors)")


def edit_boundary(
    config: Config, level_index: int, column: int, is_upper: bool, value: int,
) -> Config:
    """Set one boundary and mirror it into the neighbouring level.

    An upper bound is copied into the next level's lower bound, a lower bound
    into the previous level's upper bound, so bands stay contiguous.
    """
    if value < 0:
        raise InvalidTemperatureError(f"Temperature must be non-negative, got {value}")

    updated = adjust_column_widths(config)
    _check_position(updated, level_index, column)

    levels = updated.levels
    level = levels[level_index]
    if is_upper:
        lower = level.lower_limit
        if lower and value < lower[column]:
            raise BoundaryOrderError(
                f"Upper bound {value} is below lower bound {lower[column]} "
                f"(level {level_index}, sensor {column})"
            )
    elif value > level.upper_limit[column]:
        raise BoundaryOrderError(
            f"Lower bound {value} is above upper bound {level.upper_limit[column]} "
            f"(level {level_index}, sensor {column})"
        )

    if is_upper:
        level.upper_limit[column] = value
        if level_index + 1 < len(levels):
            following = levels[level_index + 1]
            if following.lower_limit is None:
                following.lower_limit = list(level.upper_limit)
            following.lower_limit[column] = value
    else:
        if level.lower_limit is None:
            if level_index > 0:
                level.lower_limit = list(levels[level_index - 1].upper_limit)
            else:
                level.lower_limit = [0] * len(level.upper_limit)
        level.lower_limit[column] = value
        if level_index > 0:
            levels[level_index - 1].upper_limit[column] = value

    return updated


def edit_speed(config: Config, level_index: int, speed: int) -> Config:
    """Set a level's fan speed. Speeds need not increase from level to level."""
    if speed < 0:
        raise InvalidSpeedError(f"Speed must be non-negative, got {speed}")
    if not 0 <= level_index < len(config.levels):
        raise LevelIndexError(
            f"Level {level_index} out of range (config has {len(config.levels)} levels)"
        )

    updated = copy.deepcopy(config)
    updated.levels[level_index].speed = speed
    return updated


def _fit(values: list[int], width: int) -> list[int]:
    if len(values) >= width:
        return values[:width]
    pad = min(values) if values else 0
    return values + [pad] * (width - len(values))


def adjust_column_widths(config: Config) -> Config:
    """Truncate or pad every boundary array to one entry per sensor.

    Padding repeats the smallest existing value. Idempotent.
    """
    width = len(config.sensors)
    updated = copy.deepcopy(config)
    for level in updated.levels:
        level.upper_limit = _fit(level.upper_limit, width)
        level.lower_limit = _fit(level.lower_limit, width) if level.lower_limit else None
    return updated


def replace_levels(config: Config, levels: list[Level]) -> Config:
    """Swap in a whole new level table, normalized to the sensor count."""
    for i, level in enumerate(levels):
        if level.speed < 0:
            raise InvalidSpeedError(f"Level {i}: speed must be non-negative, got {level.speed}")
        temps = level.upper_limit + (level.lower_limit or [])
        if any(t < 0 for t in temps):
            raise InvalidTemperatureError(f"Level {i}: temperatures must be non-negative")

    updated = copy.deepcopy(config)
    updated.levels = copy.deepcopy(levels)
    return adjust_column_widths(updated)
