"""Command-line entry point."""

import argparse
import logging
import signal
import sys
import time

from thinkfan_config import codec
from thinkfan_config.errors import ApplyError, ThinkfanConfigError
from thinkfan_config.identity import SensorIdentityResolver
from thinkfan_config.model import Config, SensorKind, SourceFormat
from thinkfan_config.monitor import TemperatureMonitor
from thinkfan_config.reconciler import ConfigReconciler
from thinkfan_config.settings import Settings, add_arguments
from thinkfan_config.thermal import ThermalZoneReader

log = logging.getLogger(__name__)


def _print_config(config: Config) -> None:
    if config.source_format is SourceFormat.LEGACY:
        print("# read from the legacy configuration format")
    print(codec.serialize(config), end="")


def _cmd_show(reconciler: ConfigReconciler, _settings: Settings, _args: argparse.Namespace) -> None:
    _print_config(reconciler.current)


def _cmd_sensors(_reconciler: ConfigReconciler, settings: Settings, _args: argparse.Namespace) -> None:
    zones = SensorIdentityResolver().discover(ThermalZoneReader(settings.sysfs_root))
    if not zones:
        print("No temperature sensors detected")
        return
    for zone in zones:
        print(f"{zone.current_temp:6.1f}°C  {zone.display_name:<36} {zone.path}")


def _cmd_add_sensor(reconciler: ConfigReconciler, _settings: Settings, args: argparse.Namespace) -> None:
    kind = SensorKind.TPACPI if args.tpacpi else SensorKind.HWMON
    _print_config(reconciler.add_sensor(args.path, kind))


def _cmd_remove_sensor(reconciler: ConfigReconciler, _settings: Settings, args: argparse.Namespace) -> None:
    _print_config(reconciler.remove_sensor(args.path))


def _cmd_replace_sensor(reconciler: ConfigReconciler, _settings: Settings, args: argparse.Namespace) -> None:
    kind = SensorKind.TPACPI if args.tpacpi else SensorKind.HWMON
    _print_config(reconciler.replace_sensor(args.old_path, args.new_path, kind))


def _cmd_set_boundary(reconciler: ConfigReconciler, _settings: Settings, args: argparse.Namespace) -> None:
    config = reconciler.edit_boundary(args.level, args.column, args.bound == "upper", args.value)
    _print_config(config)


def _cmd_set_speed(reconciler: ConfigReconciler, _settings: Settings, args: argparse.Namespace) -> None:
    _print_config(reconciler.edit_speed(args.level, args.speed))


def _cmd_watch(reconciler: ConfigReconciler, settings: Settings, args: argparse.Namespace) -> None:
    paths = [s.path for s in reconciler.current.sensors]
    monitor = TemperatureMonitor(paths, settings.poll_interval)

    def on_signal(signum: int, _frame: object) -> None:
        log.info("Received %s, stopping", signal.Signals(signum).name)
        monitor.stop()

    def on_readings(values: dict[str, float | None]) -> None:
        stamp = time.strftime("%H:%M:%S")
        for path, value in values.items():
            shown = f"{value:6.1f}°C" if value is not None else "   n/a  "
            print(f"[{stamp}] {shown}  {path}")

    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)
    try:
        monitor.run(on_readings, cycles=args.count)
    finally:
        monitor.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="thinkfan-config",
        description="Inspect and edit the thinkfan fan-control configuration",
    )
    add_arguments(parser)
    commands = parser.add_subparsers(dest="command", required=True)

    cmd = commands.add_parser("show", help="Print the active configuration")
    cmd.set_defaults(handler=_cmd_show)

    cmd = commands.add_parser("sensors", help="List temperature sensors found on this machine")
    cmd.set_defaults(handler=_cmd_sensors)

    cmd = commands.add_parser("add-sensor", help="Add a sensor column to every level")
    cmd.add_argument("path")
    cmd.add_argument("--tpacpi", action="store_true", help="Read the sensor through thinkpad_acpi")
    cmd.set_defaults(handler=_cmd_add_sensor)

    cmd = commands.add_parser("remove-sensor", help="Remove a sensor and its column")
    cmd.add_argument("path")
    cmd.set_defaults(handler=_cmd_remove_sensor)

    cmd = commands.add_parser("replace-sensor", help="Point a sensor column at another path")
    cmd.add_argument("old_path")
    cmd.add_argument("new_path")
    cmd.add_argument("--tpacpi", action="store_true", help="Read the sensor through thinkpad_acpi")
    cmd.set_defaults(handler=_cmd_replace_sensor)

    cmd = commands.add_parser("set-boundary", help="Change one level boundary")
    cmd.add_argument("level", type=int)
    cmd.add_argument("column", type=int, help="Sensor column, in sensor order")
    cmd.add_argument("bound", choices=("lower", "upper"))
    cmd.add_argument("value", type=int, help="Temperature in °C")
    cmd.set_defaults(handler=_cmd_set_boundary)

    cmd = commands.add_parser("set-speed", help="Change the fan speed of a level")
    cmd.add_argument("level", type=int)
    cmd.add_argument("speed", type=int)
    cmd.set_defaults(handler=_cmd_set_speed)

    cmd = commands.add_parser("watch", help="Poll the configured sensors")
    cmd.add_argument("--count", type=int, help="Stop after this many polls")
    cmd.set_defaults(handler=_cmd_watch)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.load(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    settings.setup_logging()
    reconciler = ConfigReconciler(settings)

    try:
        args.handler(reconciler, settings, args)
    except ApplyError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'thinkfan-config show' to see the configuration now in effect.", file=sys.stderr)
        sys.exit(1)
    except (ThinkfanConfigError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
