"""Liveness watchdog for the supervised process."""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable, Optional, Sequence

from .process import spawn_detached
from .protocol import Opcode, write_int

logger = logging.getLogger("logcat-daemon")


class SupervisedConnector:
    """Connect to the supervised process, spawning it when unreachable.

    A failed connect starts ``command`` (at most once per
    ``respawn_interval`` seconds so a booting instance is not doubled) and
    still raises, leaving the caller to retry.
    """

    def __init__(
        self,
        socket_path: str,
        command: Optional[Sequence[str]] = None,
        spawn: Callable[[Sequence[str]], int] = spawn_detached,
        respawn_interval: float = 1.0,
    ):
        self.socket_path = socket_path
        self.command = list(command or [])
        self.spawn = spawn
        self.respawn_interval = respawn_interval
        self._last_spawn: Optional[float] = None

    def __call__(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self.socket_path)
            return sock
        except (FileNotFoundError, ConnectionRefusedError):
            sock.close()
            self._maybe_spawn()
            raise

    def _maybe_spawn(self):
        if not self.command:
            return
        now = time.monotonic()
        if self._last_spawn is not None and now - self._last_spawn < self.respawn_interval:
            return
        self._last_spawn = now
        try:
            pid = self.spawn(self.command)
            logger.info(f"Spawned supervised process (pid {pid})")
        except OSError as e:
            logger.error(f"Failed to spawn supervised process: {e}")


class SupervisorWatchdog:
    """Hold a handshake connection open and reconnect when it drops.

    The supervised process keeps handshake connections open for as long as
    it lives, so the blocking read only returns once it has died. Coming
    back around the loop reconnects, which brings up a new instance
    through the connector.
    """

    def __init__(
        self,
        connect: Callable[[], socket.socket],
        grace: float = 5.0,
        backoff: float = 0.01,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connect = connect
        self.grace = grace
        self.backoff = backoff
        self.sleep = sleep
        self.terminations = 0

    def run_once(self) -> bool:
        """Probe once. Returns True when a held connection was lost."""
        try:
            sock = self.connect()
        except OSError as e:
            logger.debug(f"Supervised process not available: {e}")
            self.sleep(self.backoff)
            return False

        try:
            write_int(sock, Opcode.HANDSHAKE)
            sock.recv(1)
        except OSError as e:
            logger.debug(f"Supervised connection error: {e}")
        finally:
            sock.close()

        self.terminations += 1
        logger.warning("Supervised process terminated, reconnecting")
        return True

    def run(self):
        """Watch the supervised process forever."""
        self.sleep(self.grace)
        while True:
            self.run_once()
