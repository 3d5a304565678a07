"""Tool settings from /etc/default/thinkfan-config, the environment and CLI arguments."""

import argparse
import logging
import os
from dataclasses import dataclass

from dotenv import dotenv_values

from thinkfan_config.thermal import DEFAULT_SYSFS_ROOT

DEFAULT_SETTINGS_PATH = "/etc/default/thinkfan-config"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def add_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the options that override settings."""
    parser.add_argument(
        "--config",
        dest="config_path",
        help="Path of the YAML thinkfan configuration",
    )
    parser.add_argument(
        "--legacy-config",
        dest="legacy_config_path",
        help="Path of the legacy thinkfan configuration",
    )
    parser.add_argument(
        "--service",
        help="systemd unit restarted after a change",
    )
    parser.add_argument(
        "--elevation-helper",
        help="Program used to gain root for applying changes",
    )
    parser.add_argument(
        "--apply-timeout",
        type=float,
        help="Seconds to wait for the privileged apply step",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Temperature polling interval in seconds",
    )
    parser.add_argument(
        "--sysfs-root",
        help="Root of the sensor filesystem (normally /sys/class)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="Log level (overrides settings file)",
    )


@dataclass
class Settings:
    """Where the thinkfan configuration lives and how changes are applied."""

    config_path: str = "/etc/thinkfan.yaml"
    legacy_config_path: str = "/etc/thinkfan.conf"
    service: str = "thinkfan"
    elevation_helper: str = "pkexec"
    apply_timeout: float = 120.0
    poll_interval: float = 2.0
    sysfs_root: str = DEFAULT_SYSFS_ROOT
    log_level: str = "INFO"
    debug: bool = False

    def __post_init__(self) -> None:
        if not self.service:
            raise ValueError("Service name must not be empty")

        if self.apply_timeout <= 0:
            raise ValueError(f"Apply timeout must be positive, got {self.apply_timeout}")

        if self.poll_interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {self.poll_interval}")

        if self.debug:
            self.log_level = "DEBUG"

        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{self.log_level}'. Must be one of: {', '.join(LOG_LEVELS)}"
            )

    @classmethod
    def load(cls, args: argparse.Namespace | None = None) -> "Settings":
        """Load settings from the settings file, env vars and parsed CLI args.

        Priority (highest to lowest):
        1. CLI arguments
        2. Environment variables
        3. /etc/default/thinkfan-config
        4. Dataclass defaults
        """
        file_env = {
            k: v for k, v in dotenv_values(DEFAULT_SETTINGS_PATH).items() if v is not None
        }

        def env(key: str) -> str | None:
            if key in os.environ:
                return os.environ[key]
            return file_env.get(key)

        kwargs: dict[str, object] = {}

        for key, field_name in (
            ("CONFIG_PATH", "config_path"),
            ("LEGACY_CONFIG_PATH", "legacy_config_path"),
            ("SERVICE", "service"),
            ("ELEVATION_HELPER", "elevation_helper"),
            ("SYSFS_ROOT", "sysfs_root"),
        ):
            if (v := env(key)) is not None:
                kwargs[field_name] = v

        for key, field_name in (
            ("APPLY_TIMEOUT", "apply_timeout"),
            ("POLL_INTERVAL", "poll_interval"),
        ):
            if (v := env(key)) is not None:
                try:
                    kwargs[field_name] = float(v)
                except ValueError:
                    pass

        if (v := env("LOG_LEVEL")) is not None:
            kwargs["log_level"] = v.upper()

        if (v := env("DEBUG")) is not None:
            kwargs["debug"] = v.lower() in ("true", "1", "yes")

        # CLI arguments override everything
        if args is not None:
            for field_name in (
                "config_path",
                "legacy_config_path",
                "service",
                "elevation_helper",
                "apply_timeout",
                "poll_interval",
                "sysfs_root",
                "log_level",
            ):
                if (v := getattr(args, field_name, None)) is not None:
                    kwargs[field_name] = v

            if getattr(args, "debug", None) is True:
                kwargs["debug"] = True

        return cls(**kwargs)

    def setup_logging(self) -> None:
        """Configure logging based on these settings."""
        logging.basicConfig(
            level=getattr(logging, self.log_level),
            format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
