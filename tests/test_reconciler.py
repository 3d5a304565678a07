"""Tests for the read / mutate / apply pipeline with a fake privileged helper."""

import logging
import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from thinkfan_config.codec import parse
from thinkfan_config.errors import (
    ApplyError,
    ApplyFailure,
    BoundaryOrderError,
    FormatError,
    LastSensorError,
)
from thinkfan_config.model import Level, Sensor, SensorKind, SourceFormat
from thinkfan_config.reconciler import (
    APPLY_SCRIPT,
    ConfigReconciler,
    PkexecApplier,
    default_config,
)
from thinkfan_config.settings import Settings

YAML_CONFIG = """\
sensors:
  - hwmon: /sys/class/hwmon/hwmon2/temp1_input

fans:
  - tpacpi: /proc/acpi/ibm/fan

levels:
  - speed: 0
    upper_limit: [55]
  - speed: 4
    lower_limit: [55]
    upper_limit: [70]
  - speed: 7
    lower_limit: [70]
    upper_limit: [32767]
"""

LEGACY_CONFIG = "hwmon /sys/x\ntp_fan /proc/acpi/ibm/fan\n(0, 0, 60)\n(7, 60, 255)\n"


class FakeApplier:
    """Does what the privileged helper would, without root."""

    def __init__(self, error: ApplyError | None = None) -> None:
        self.error = error
        self.calls: list[tuple[Path, Path]] = []
        self.written: list[str] = []

    def apply(self, scratch: Path, target: Path) -> None:
        self.calls.append((scratch, target))
        self.written.append(scratch.read_text())
        if self.error is not None:
            raise self.error
        shutil.copyfile(scratch, target)


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        config_path=str(tmp_path / "thinkfan.yaml"),
        legacy_config_path=str(tmp_path / "thinkfan.conf"),
    )


def _reconciler(tmp_path: Path, applier: FakeApplier) -> ConfigReconciler:
    return ConfigReconciler(_settings(tmp_path), applier)  # type: ignore[arg-type]


class TestReadConfig:
    def test_structured_preferred(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text(YAML_CONFIG)
        (tmp_path / "thinkfan.conf").write_text(LEGACY_CONFIG)

        config = _reconciler(tmp_path, FakeApplier()).read_config()
        assert config.source_format is SourceFormat.STRUCTURED
        assert len(config.levels) == 3

    def test_legacy_when_no_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.conf").write_text(LEGACY_CONFIG)

        config = _reconciler(tmp_path, FakeApplier()).read_config()
        assert config.source_format is SourceFormat.LEGACY
        assert config.sensors == [Sensor(SensorKind.HWMON, "/sys/x")]

    def test_bootstraps_defaults(self, tmp_path: Path) -> None:
        applier = FakeApplier()
        config = _reconciler(tmp_path, applier).read_config()

        assert config == default_config()
        assert len(config.sensors) == 1
        assert len(config.fans) == 1
        assert len(config.levels) == 5
        assert config.levels[-1].upper_limit == [32767]
        assert applier.calls[0][1] == tmp_path / "thinkfan.yaml"
        assert parse((tmp_path / "thinkfan.yaml").read_text()) == default_config()

    def test_corrupt_file(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text("what is this\n")
        applier = FakeApplier()
        with pytest.raises(FormatError):
            _reconciler(tmp_path, applier).read_config()
        assert applier.calls == []


class TestApplyConfig:
    def test_returns_reparsed_config_and_removes_scratch(self, tmp_path: Path) -> None:
        applier = FakeApplier()
        config = _reconciler(tmp_path, applier).apply_config(YAML_CONFIG, SourceFormat.STRUCTURED)

        assert config == parse(YAML_CONFIG)
        scratch, target = applier.calls[0]
        assert target == tmp_path / "thinkfan.yaml"
        assert not scratch.exists()

    def test_legacy_target(self, tmp_path: Path) -> None:
        applier = FakeApplier()
        _reconciler(tmp_path, applier).apply_config(LEGACY_CONFIG, SourceFormat.LEGACY)
        assert applier.calls[0][1] == tmp_path / "thinkfan.conf"

    def test_failure_propagates_and_removes_scratch(self, tmp_path: Path) -> None:
        applier = FakeApplier(ApplyError(ApplyFailure.DECLINED, "dismissed"))
        with pytest.raises(ApplyError) as exc_info:
            _reconciler(tmp_path, applier).apply_config(YAML_CONFIG, SourceFormat.STRUCTURED)

        assert exc_info.value.reason is ApplyFailure.DECLINED
        assert not applier.calls[0][0].exists()
        assert not (tmp_path / "thinkfan.yaml").exists()

    def test_cleanup_failure_only_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture,
    ) -> None:
        with patch("thinkfan_config.reconciler.os.unlink", side_effect=OSError("busy")):
            with caplog.at_level(logging.WARNING):
                config = _reconciler(tmp_path, FakeApplier()).apply_config(
                    YAML_CONFIG, SourceFormat.STRUCTURED,
                )
        assert config.sensors
        assert "Could not remove scratch file" in caplog.text


class TestSessionEdits:
    def test_add_sensor_commits(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text(YAML_CONFIG)
        applier = FakeApplier()
        reconciler = _reconciler(tmp_path, applier)

        config = reconciler.add_sensor("/sys/class/hwmon/hwmon4/temp1_input")
        assert [s.path for s in config.sensors] == [
            "/sys/class/hwmon/hwmon2/temp1_input",
            "/sys/class/hwmon/hwmon4/temp1_input",
        ]
        assert config.levels[1].lower_limit == [55, 55]
        assert reconciler.current == config
        assert "upper_limit: [70, 70]" in applier.written[0]

    def test_legacy_migrates_to_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.conf").write_text(LEGACY_CONFIG)
        reconciler = _reconciler(tmp_path, FakeApplier())

        config = reconciler.edit_speed(1, 6)
        assert config.levels[1].speed == 6
        assert config.source_format is SourceFormat.STRUCTURED
        assert (tmp_path / "thinkfan.yaml").exists()
        assert reconciler.read_config() == config

    def test_edit_boundary_mirrors_on_disk(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text(YAML_CONFIG)
        config = _reconciler(tmp_path, FakeApplier()).edit_boundary(0, 0, True, 60)
        assert config.levels[0].upper_limit == [60]
        assert config.levels[1].lower_limit == [60]

    def test_rejected_edit_never_applies(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text(YAML_CONFIG)
        applier = FakeApplier()
        reconciler = _reconciler(tmp_path, applier)

        with pytest.raises(BoundaryOrderError):
            reconciler.edit_boundary(1, 0, True, 10)
        with pytest.raises(LastSensorError):
            reconciler.remove_sensor("/sys/class/hwmon/hwmon2/temp1_input")
        assert applier.calls == []

    def test_apply_error_keeps_session_model(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text(YAML_CONFIG)
        applier = FakeApplier(ApplyError(ApplyFailure.RESTART_FAILED))
        reconciler = _reconciler(tmp_path, applier)
        before = reconciler.read_config()

        with pytest.raises(ApplyError):
            reconciler.edit_speed(0, 1)
        assert reconciler.current == before
        assert reconciler.current.levels[0].speed == 0

    def test_replace_levels_normalized_before_write(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text(YAML_CONFIG)
        config = _reconciler(tmp_path, FakeApplier()).replace_levels(
            [Level(speed=0, upper_limit=[40, 99]), Level(speed=7, lower_limit=[40], upper_limit=[32767])],
        )
        assert config.levels[0].upper_limit == [40]
        assert config.levels[1].lower_limit == [40]

    def test_replace_sensor(self, tmp_path: Path) -> None:
        (tmp_path / "thinkfan.yaml").write_text(YAML_CONFIG)
        config = _reconciler(tmp_path, FakeApplier()).replace_sensor(
            "/sys/class/hwmon/hwmon2/temp1_input", "/sys/class/hwmon/hwmon3/temp1_input",
        )
        assert config.sensors == [Sensor(SensorKind.HWMON, "/sys/class/hwmon/hwmon3/temp1_input")]
        assert config.levels == parse(YAML_CONFIG).levels


class TestPkexecApplier:
    @patch("thinkfan_config.reconciler.subprocess.run")
    def test_command_line(self, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        PkexecApplier("pkexec", "thinkfan", 30.0).apply(Path("/tmp/s.yaml"), Path("/etc/thinkfan.yaml"))

        assert mock_run.call_args.args[0] == [
            "pkexec", "sh", "-c", APPLY_SCRIPT,
            "sh", "/tmp/s.yaml", "/etc/thinkfan.yaml", "thinkfan",
        ]
        assert mock_run.call_args.kwargs["timeout"] == 30.0

    @pytest.mark.parametrize("code, reason", [
        (126, ApplyFailure.DECLINED),
        (127, ApplyFailure.DECLINED),
        (3, ApplyFailure.COPY_FAILED),
        (4, ApplyFailure.RESTART_FAILED),
        (1, ApplyFailure.COPY_FAILED),
    ])
    @patch("thinkfan_config.reconciler.subprocess.run")
    def test_exit_codes(self, mock_run: MagicMock, code: int, reason: ApplyFailure) -> None:
        mock_run.return_value = MagicMock(returncode=code, stderr="boom\n")
        with pytest.raises(ApplyError) as exc_info:
            PkexecApplier().apply(Path("/tmp/s"), Path("/etc/t"))
        assert exc_info.value.reason is reason
        assert exc_info.value.detail == "boom"

    @patch("thinkfan_config.reconciler.subprocess.run")
    def test_helper_missing(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("pkexec")
        with pytest.raises(ApplyError) as exc_info:
            PkexecApplier().apply(Path("/tmp/s"), Path("/etc/t"))
        assert exc_info.value.reason is ApplyFailure.UNAVAILABLE

    @patch("thinkfan_config.reconciler.subprocess.run")
    def test_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(["pkexec"], 5.0)
        with pytest.raises(ApplyError, match="timeout") as exc_info:
            PkexecApplier(timeout=5.0).apply(Path("/tmp/s"), Path("/etc/t"))
        assert exc_info.value.reason is ApplyFailure.TIMEOUT
