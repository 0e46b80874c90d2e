"""Daemon bootstrap: wires the registry, tailer, watchdog and control server."""

from __future__ import annotations

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional

from . import __version__
from .config import DaemonConfig
from .process import ProcessRunner
from .protocol import connect, handshake
from .registry import ChannelRegistry, EventChannel, FileSink
from .server import ControlServer, ControlServerError
from .tailer import LogTailer, SourceCommands, build_source_commands
from .watchdog import SupervisedConnector, SupervisorWatchdog

logger = logging.getLogger("logcat-daemon")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_log_daemon_started = False


class LogDaemon:
    """The resident log monitor."""

    def __init__(
        self,
        config: DaemonConfig,
        runner: Optional[ProcessRunner] = None,
        registry: Optional[ChannelRegistry] = None,
    ):
        self.config = config
        self.runner = runner or ProcessRunner()
        self.registry = registry or ChannelRegistry()
        self.server = ControlServer(self.registry, config.socket_path)
        self.commands: Optional[SourceCommands] = None
        self.threads: list[threading.Thread] = []

        self._setup_logging()

    def _setup_logging(self):
        """Configure logging."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logger.setLevel(level)
        if logger.handlers:
            return

        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console)

        if self.config.daemon_log_file:
            try:
                log_path = Path(self.config.daemon_log_file)
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path)
                file_handler.setLevel(level)
                file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
                logger.addHandler(file_handler)
            except PermissionError:
                logger.warning(f"Cannot write to log file: {self.config.daemon_log_file}")

    def open_persistent_log(self):
        """Rotate the previous log to .bak and bind a fresh file to the log channel."""
        path = self.config.log_file
        try:
            os.replace(path, path + ".bak")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Cannot keep previous log {path}: {e}")

        try:
            fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC | os.O_APPEND, 0o644)
        except OSError as e:
            logger.error(f"Cannot open persistent log {path}: {e}")
            return
        self.registry.set_sink(EventChannel.LOG_EVENT, FileSink(os.fdopen(fd, "ab", buffering=0)))
        logger.debug(f"Persistent log opened at {path}")

    def _write_pid_file(self):
        """Write PID file."""
        if not self.config.pid_file:
            return

        pid_path = Path(self.config.pid_file)
        try:
            pid_path.parent.mkdir(parents=True, exist_ok=True)
            pid_path.write_text(str(os.getpid()))
            logger.debug(f"Wrote PID file: {pid_path}")
        except OSError as e:
            logger.warning(f"Failed to write PID file: {e}")

    def _remove_pid_file(self):
        """Remove PID file on shutdown."""
        if not self.config.pid_file:
            return

        pid_path = Path(self.config.pid_file)
        try:
            pid_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove PID file: {e}")

    def _start_thread(self, name: str, target):
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self.threads.append(thread)

    def start(self):
        """Prepare the daemon and launch the tailer and watchdog threads.

        Raises ControlServerError when the control socket cannot be bound.
        """
        logger.info(f"logcat-daemon v{__version__} started")

        self.open_persistent_log()
        self.commands = build_source_commands(self.config, self.runner)
        logger.debug(f"Source command: {' '.join(self.commands.log_cmd)}")

        self.server.bind()

        if self.config.enable_watchdog and self.config.supervised_socket:
            connector = SupervisedConnector(
                self.config.supervised_socket,
                command=self.config.supervised_command,
            )
            watchdog = SupervisorWatchdog(
                connector,
                grace=self.config.watchdog_grace,
                backoff=self.config.watchdog_backoff,
            )
            self._start_thread("watchdog", watchdog.run)

        tailer = LogTailer(self.registry, self.commands, runner=self.runner)
        self._start_thread("tailer", tailer.run)

    def run(self):
        """Start the daemon and serve control requests until the process exits."""
        try:
            self.start()
        except ControlServerError as e:
            logger.critical(str(e))
            sys.exit(1)

        self._write_pid_file()
        try:
            self.server.serve_forever()
        finally:
            self._remove_pid_file()
            self.server.close()
            self.registry.close_all()


def fork_detached() -> bool:
    """Double-fork into a new session. Returns True in the detached child."""
    pid = os.fork()
    if pid > 0:
        os.waitpid(pid, 0)
        return False

    os.setsid()
    if os.fork() > 0:
        os._exit(0)
    return True


def daemonize():
    """Detach the current process as a background daemon."""
    try:
        if not fork_detached():
            sys.exit(0)
    except OSError as e:
        sys.stderr.write(f"Fork failed: {e}\n")
        sys.exit(1)

    os.chdir("/")
    os.umask(0)

    # Redirect standard file descriptors
    sys.stdout.flush()
    sys.stderr.flush()

    with open("/dev/null", "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())
    with open("/dev/null", "a+") as devnull:
        os.dup2(devnull.fileno(), sys.stdout.fileno())
        os.dup2(devnull.fileno(), sys.stderr.fileno())


def start_log_daemon(
    config: DaemonConfig,
    runner: Optional[ProcessRunner] = None,
    timeout: float = 10.0,
) -> bool:
    """Start the daemon in the background unless it is already running.

    Nothing is started when the log source cannot dump logs at all. Returns
    whether a daemon started by this process answered a handshake.
    """
    global _log_daemon_started
    if _log_daemon_started:
        return True

    runner = runner or ProcessRunner()
    if runner.run_sync([config.source_binary, "-d", "-f", "/dev/null"]) != 0:
        logger.warning(f"Log source {config.source_binary} is not usable, not starting")
        return False

    if fork_detached():
        code = 1
        try:
            LogDaemon(config, runner=runner).run()
        except SystemExit as e:
            code = e.code if isinstance(e.code, int) else 1
        except Exception:
            logger.exception("Log daemon crashed")
        finally:
            os._exit(code)

    try:
        ready = handshake(config.socket_path, timeout=timeout)
    except OSError as e:
        logger.error(f"Log daemon did not come up on {config.socket_path}: {e}")
        return False

    _log_daemon_started = ready
    return ready


def connect_log_daemon(config: DaemonConfig):
    """Connect to a started daemon, or return None if none was started."""
    if not _log_daemon_started:
        return None
    return connect(config.socket_path)
