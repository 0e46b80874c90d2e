"""Configuration management for the logcat daemon."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class DaemonConfig:
    """Main configuration for the logcat daemon."""

    # Control socket subscribers and health checks connect to
    socket_path: str = "/dev/socket/logcat_daemon"

    # Persistent filtered log, previous copy is kept with a .bak suffix
    log_file: str = "/cache/magisk.log"

    # Log source
    source_binary: str = "/system/bin/logcat"
    buffers: list[str] = field(default_factory=lambda: ["main", "events", "crash"])
    log_format: str = "threadtime"
    tags: list[str] = field(default_factory=lambda: ["am_proc_start", "Magisk"])
    debug: bool = False

    # Supervised process
    supervised_socket: Optional[str] = None
    supervised_command: list[str] = field(default_factory=list)
    enable_watchdog: bool = True
    watchdog_grace: float = 5.0  # seconds before the first probe
    watchdog_backoff: float = 0.01  # seconds between failed connects

    # Daemon's own diagnostics
    daemon_log_file: Optional[str] = None
    log_level: str = "INFO"
    pid_file: Optional[str] = None

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DaemonConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DaemonConfig":
        """Create configuration from dictionary."""
        config = cls()

        config.socket_path = data.get("socket_path", config.socket_path)
        config.log_file = data.get("log_file", config.log_file)

        config.source_binary = data.get("source_binary", config.source_binary)
        config.buffers = list(data.get("buffers", config.buffers))
        config.log_format = data.get("log_format", config.log_format)
        config.tags = list(data.get("tags", config.tags))
        config.debug = data.get("debug", config.debug)

        config.supervised_socket = data.get("supervised_socket", config.supervised_socket)
        command = data.get("supervised_command", config.supervised_command)
        if isinstance(command, str):
            command = command.split()
        config.supervised_command = list(command)
        config.enable_watchdog = data.get("enable_watchdog", config.enable_watchdog)
        config.watchdog_grace = data.get("watchdog_grace", config.watchdog_grace)
        config.watchdog_backoff = data.get("watchdog_backoff", config.watchdog_backoff)

        config.daemon_log_file = data.get("daemon_log_file", config.daemon_log_file)
        config.log_level = data.get("log_level", config.log_level)
        config.pid_file = data.get("pid_file", config.pid_file)

        return config

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        for name in ("socket_path", "log_file", "source_binary"):
            if not getattr(self, name):
                errors.append(f"'{name}' must not be empty")

        if not self.buffers:
            errors.append("At least one log buffer must be configured")

        if not self.tags:
            errors.append("At least one log tag must be configured")

        if self.watchdog_grace < 0 or self.watchdog_backoff < 0:
            errors.append("Watchdog delays must not be negative")

        if self.enable_watchdog and not self.supervised_socket:
            errors.append("'supervised_socket' is required when the watchdog is enabled")

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"Unknown log level: {self.log_level}")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Export configuration to dictionary."""
        return {
            "socket_path": self.socket_path,
            "log_file": self.log_file,
            "source_binary": self.source_binary,
            "buffers": list(self.buffers),
            "log_format": self.log_format,
            "tags": list(self.tags),
            "debug": self.debug,
            "supervised_socket": self.supervised_socket,
            "supervised_command": list(self.supervised_command),
            "enable_watchdog": self.enable_watchdog,
            "watchdog_grace": self.watchdog_grace,
            "watchdog_backoff": self.watchdog_backoff,
            "daemon_log_file": self.daemon_log_file,
            "log_level": self.log_level,
            "pid_file": self.pid_file,
        }
