"""Exceptions raised by the configuration engine."""

import enum


class ThinkfanConfigError(Exception):
    """Base class for every error this package raises on purpose."""


class FormatError(ThinkfanConfigError):
    """Content matches neither the YAML nor the legacy grammar."""


class SensorUnavailableError(ThinkfanConfigError):
    """A single sensor path vanished or returned garbage."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Sensor {path} unavailable: {reason}")
        self.path = path
        self.reason = reason


class DuplicateSensorError(ThinkfanConfigError):
    pass


class SensorNotFoundError(ThinkfanConfigError):
    pass


class LastSensorError(ThinkfanConfigError):
    pass


class LevelIndexError(ThinkfanConfigError, IndexError):
    """Level or sensor column index outside the level table."""


class InvalidTemperatureError(ThinkfanConfigError):
    pass


class BoundaryOrderError(ThinkfanConfigError):
    pass


class InvalidSpeedError(ThinkfanConfigError):
    pass


class ApplyFailure(enum.Enum):
    """Why the privileged write-and-restart did not succeed."""

    DECLINED = "declined"
    UNAVAILABLE = "unavailable"
    COPY_FAILED = "copy_failed"
    RESTART_FAILED = "restart_failed"
    TIMEOUT = "timeout"


class ApplyError(ThinkfanConfigError):
    """The privileged apply step failed; the on-disk state must be re-read.

    RESTART_FAILED means the file was already replaced.
    """

    def __init__(self, reason: ApplyFailure, detail: str = "") -> None:
        message = f"Applying configuration failed ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.reason = reason
        self.detail = detail
