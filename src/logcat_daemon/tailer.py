"""Log tailer: keeps the log source running and publishes its lines."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import DaemonConfig
from .process import ProcessRunner
from .registry import ChannelRegistry

logger = logging.getLogger("logcat-daemon")

# logcat prefixes buffer banners and overflow notices with dashes
DROPPED_MARKER = b"-"


@dataclass
class SourceCommands:
    """Argument vectors for streaming and for clearing the source."""

    log_cmd: list[str]
    clear_cmd: list[str]


def probe_buffers(runner: ProcessRunner, binary: str, candidates: Sequence[str]) -> list[str]:
    """Return the candidate buffers a dry-run dump succeeds against."""
    supported = []
    for buf in candidates:
        status = runner.run_sync([binary, "-b", buf, "-d", "-f", "/dev/null"])
        if status == 0:
            supported.append(buf)
        else:
            logger.debug(f"Log buffer '{buf}' unsupported (exit {status})")
    return supported


def build_source_commands(config: DaemonConfig, runner: ProcessRunner) -> SourceCommands:
    """Probe the source and build its stream and clear invocations."""
    base = [config.source_binary]
    for buf in probe_buffers(runner, config.source_binary, config.buffers):
        base += ["-b", buf]

    log_cmd = base + ["-v", config.log_format, "-s", *config.tags]
    if config.debug:
        log_cmd.append("*:F")

    return SourceCommands(log_cmd=log_cmd, clear_cmd=base + ["-c"])


class LogTailer:
    """Stream the source's stdout into the registry, restarting on EOF.

    Each session ends by terminating and reaping the source, then clearing
    its ring buffer so the next session never replays earlier lines.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        commands: SourceCommands,
        runner: Optional[ProcessRunner] = None,
        restart_delay: float = 1.0,
    ):
        self.registry = registry
        self.commands = commands
        self.runner = runner or ProcessRunner()
        self.restart_delay = restart_delay

    def run_once(self) -> int:
        """Run one source session to EOF. Returns the number of lines published."""
        proc = self.runner.spawn(self.commands.log_cmd, capture_stdout=True)
        published = 0
        try:
            for line in iter(proc.stdout.readline, b""):
                if line.startswith(DROPPED_MARKER):
                    continue
                self.registry.publish(line)
                published += 1
        finally:
            self.runner.terminate(proc)
            self.runner.wait(proc)
            proc.stdout.close()

        logger.info("Log source output EOF, restarting")
        self.runner.run_sync(self.commands.clear_cmd)
        return published

    def run(self):
        """Tail the source forever."""
        while True:
            try:
                self.run_once()
            except OSError as e:
                logger.error(f"Failed to run log source: {e}")
                time.sleep(self.restart_delay)
