"""Process primitives used to drive the log source."""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Optional, Sequence

logger = logging.getLogger("logcat-daemon")


class ProcessRunner:
    """Spawn, wait on and terminate external commands."""

    def __init__(self, timeout: Optional[float] = 60):
        self.timeout = timeout

    def spawn(self, argv: Sequence[str], capture_stdout: bool = True) -> subprocess.Popen:
        """Start ``argv`` in the background, optionally piping its stdout."""
        return subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE if capture_stdout else subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
        )

    def terminate(self, proc: subprocess.Popen) -> None:
        """Ask the process to exit."""
        try:
            proc.terminate()
        except ProcessLookupError:
            pass

    def wait(self, proc: subprocess.Popen) -> int:
        """Block until the process is reaped, returning its exit status."""
        return proc.wait()

    def run_sync(self, argv: Sequence[str]) -> int:
        """Run a command to completion and return its exit status.

        A command that cannot be started or times out reports -1.
        """
        try:
            result = subprocess.run(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out: {' '.join(argv)}")
            return -1
        except OSError as e:
            logger.debug(f"Cannot run {argv[0]}: {e}")
            return -1

        return result.returncode


def spawn_detached(argv: Sequence[str]) -> int:
    """Start ``argv`` in its own session without keeping a handle to it."""
    proc = subprocess.Popen(
        list(argv),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        start_new_session=True,
        env=dict(os.environ),
    )
    return proc.pid
