"""Read, change and apply the thinkfan configuration.

Every change runs the same pipeline: validate and mutate a copy of the
current model, normalize its column widths, serialize, write a scratch file,
have a privileged helper move it into place and restart thinkfan, then parse
the file back. Only the parsed-back Config is returned.

A single operator and a single controlling process are assumed. Nothing
guards against two processes applying changes at the same time.
"""

import logging
import os
import subprocess
import tempfile
from pathlib import Path

from thinkfan_config import codec, levels
from thinkfan_config.errors import ApplyError, ApplyFailure
from thinkfan_config.model import Config, Fan, FanKind, Level, Sensor, SensorKind, SourceFormat
from thinkfan_config.settings import Settings

log = logging.getLogger(__name__)

# thinkfan reads this as "no upper bound"
UNBOUNDED_TEMP = 32767

# Runs as root: $1 scratch file, $2 target, $3 service
APPLY_SCRIPT = (
    'install -m 0644 "$1" "$2.new" || exit 3; '
    'mv -f "$2.new" "$2" || exit 3; '
    'systemctl restart "$3" || exit 4'
)
_EXIT_RESTART_FAILED = 4
# pkexec: 126 = authentication dialog dismissed, 127 = not authorized
_EXIT_DECLINED = (126, 127)


def default_config() -> Config:
    """The configuration written when none exists yet."""
    return Config(
        sensors=[Sensor(kind=SensorKind.HWMON, path="/sys/class/thermal/thermal_zone0/temp")],
        fans=[Fan(kind=FanKind.TPACPI, path="/proc/acpi/ibm/fan")],
        levels=[
            Level(speed=0, upper_limit=[50]),
            Level(speed=2, lower_limit=[50], upper_limit=[60]),
            Level(speed=4, lower_limit=[60], upper_limit=[70]),
            Level(speed=6, lower_limit=[70], upper_limit=[80]),
            Level(speed=7, lower_limit=[80], upper_limit=[UNBOUNDED_TEMP]),
        ],
    )


class PkexecApplier:
    """Copies a file into place as root and restarts the daemon.

    The target is replaced by rename, so thinkfan never sees a half-written
    file. Any failure, including a restart failure after the file was
    replaced, raises ApplyError.
    """

    def __init__(
        self, helper: str = "pkexec", service: str = "thinkfan", timeout: float = 120.0,
    ) -> None:
        self._helper = helper
        self._service = service
        self._timeout = timeout

    def apply(self, scratch: Path, target: Path) -> None:
        cmd = [
            self._helper, "sh", "-c", APPLY_SCRIPT,
            "sh", str(scratch), str(target), self._service,
        ]
        log.debug("Running %s", cmd)

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except FileNotFoundError as e:
            raise ApplyError(ApplyFailure.UNAVAILABLE, f"{self._helper} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ApplyError(
                ApplyFailure.TIMEOUT, f"no answer within {self._timeout:.0f} seconds",
            ) from e

        if result.returncode == 0:
            log.info("Installed %s and restarted %s", target, self._service)
            return

        detail = result.stderr.strip() or f"exit code {result.returncode}"
        if result.returncode in _EXIT_DECLINED:
            raise ApplyError(ApplyFailure.DECLINED, detail)
        if result.returncode == _EXIT_RESTART_FAILED:
            raise ApplyError(ApplyFailure.RESTART_FAILED, detail)
        raise ApplyError(ApplyFailure.COPY_FAILED, detail)


class ConfigReconciler:
    """One editing session over the on-disk configuration.

    The configuration is read once, on first use; each change is committed
    immediately and the session continues from what was read back.
    """

    def __init__(self, settings: Settings, applier: PkexecApplier | None = None) -> None:
        self._settings = settings
        self._applier = applier or PkexecApplier(
            settings.elevation_helper, settings.service, settings.apply_timeout,
        )
        self._current: Config | None = None

    @property
    def current(self) -> Config:
        if self._current is None:
            return self.read_config()
        return self._current

    def _path_for(self, source_format: SourceFormat) -> Path:
        if source_format is SourceFormat.STRUCTURED:
            return Path(self._settings.config_path)
        return Path(self._settings.legacy_config_path)

    def read_config(self) -> Config:
        """Read the YAML file, else the legacy file, else install the defaults.

        Raises FormatError if the file found is corrupt.
        """
        for source_format in (SourceFormat.STRUCTURED, SourceFormat.LEGACY):
            path = self._path_for(source_format)
            try:
                content = path.read_text()
            except FileNotFoundError:
                log.debug("No configuration at %s", path)
                continue

            config = codec.parse(content)
            log.info(
                "Loaded %s: %d sensors, %d fans, %d levels",
                path, len(config.sensors), len(config.fans), len(config.levels),
            )
            self._current = config
            return config

        log.warning(
            "No thinkfan configuration found, installing defaults at %s",
            self._settings.config_path,
        )
        return self.commit(default_config())

    def adjust_column_widths(self, config: Config) -> Config:
        return levels.adjust_column_widths(config)

    def apply_config(self, text: str, source_format: SourceFormat) -> Config:
        """Install ``text`` as the configuration and restart thinkfan.

        Returns the configuration parsed back from its final location.
        Raises ApplyError if the privileged step fails; in that case the
        on-disk state is unknown and must be re-read.
        """
        target = self._path_for(source_format)
        suffix = ".yaml" if source_format is SourceFormat.STRUCTURED else ".conf"
        fd, scratch = tempfile.mkstemp(prefix="thinkfan-", suffix=suffix)

        try:
            with os.fdopen(fd, "w") as f:
                f.write(text)
            self._applier.apply(Path(scratch), target)
        finally:
            try:
                os.unlink(scratch)
            except OSError as e:
                log.warning("Could not remove scratch file %s: %s", scratch, e)

        config = codec.parse(target.read_text())
        self._current = config
        return config

    def commit(self, config: Config) -> Config:
        """Normalize, serialize and apply ``config``.

        Legacy configurations are written out as YAML, which thinkfan
        prefers over the legacy file from then on.
        """
        normalized = self.adjust_column_widths(config)
        return self.apply_config(codec.serialize(normalized), SourceFormat.STRUCTURED)

    def add_sensor(self, path: str, kind: SensorKind = SensorKind.HWMON) -> Config:
        sensor = Sensor(kind=kind, path=path)
        return self.commit(levels.add_sensor_column(self.current, sensor))

    def remove_sensor(self, path: str) -> Config:
        return self.commit(levels.remove_sensor_column(self.current, path))

    def replace_sensor(
        self, old_path: str, new_path: str, kind: SensorKind = SensorKind.HWMON,
    ) -> Config:
        sensor = Sensor(kind=kind, path=new_path)
        return self.commit(levels.replace_sensor(self.current, old_path, sensor))

    def edit_boundary(self, level_index: int, column: int, is_upper: bool, value: int) -> Config:
        return self.commit(levels.edit_boundary(self.current, level_index, column, is_upper, value))

    def edit_speed(self, level_index: int, speed: int) -> Config:
        return self.commit(levels.edit_speed(self.current, level_index, speed))

    def replace_levels(self, new_levels: list[Level]) -> Config:
        return self.commit(levels.replace_levels(self.current, new_levels))
