"""Control server accepting subscriber and health-check connections."""

from __future__ import annotations

import logging
import os
import socket
from typing import Optional

from .protocol import Opcode, ProtocolError, read_int, write_int
from .registry import ChannelRegistry, EventChannel, SocketSink

logger = logging.getLogger("logcat-daemon")


class ControlServerError(RuntimeError):
    """Raised when the control socket cannot be set up."""


class ControlServer:
    """One-shot request/response server on a local unix socket."""

    def __init__(self, registry: ChannelRegistry, socket_path: str, backlog: int = 10):
        self.registry = registry
        self.socket_path = socket_path
        self.backlog = backlog
        self.sock: Optional[socket.socket] = None

    def bind(self):
        """Bind and listen on the control socket."""
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(self.socket_path)
            sock.listen(self.backlog)
        except OSError as e:
            sock.close()
            raise ControlServerError(f"Cannot listen on {self.socket_path}: {e}") from e

        self.sock = sock
        logger.info(f"Control socket listening on {self.socket_path}")

    def handle_connection(self, conn: socket.socket):
        """Serve the single request carried by ``conn``."""
        try:
            opcode = read_int(conn)
        except (ProtocolError, OSError):
            conn.close()
            return

        if opcode == Opcode.ATTACH:
            # The registry now owns the connection
            self.registry.set_sink(EventChannel.HIDE_EVENT, SocketSink(conn))
            logger.info("Hide event subscriber attached")
            return

        if opcode == Opcode.HANDSHAKE:
            try:
                write_int(conn, Opcode.HANDSHAKE)
            except OSError as e:
                logger.debug(f"Handshake reply failed: {e}")

        conn.close()

    def serve_once(self):
        """Accept and serve one connection."""
        conn, _ = self.sock.accept()
        self.handle_connection(conn)

    def serve_forever(self):
        """Accept connections until the process exits."""
        if self.sock is None:
            self.bind()
        while True:
            try:
                self.serve_once()
            except OSError as e:
                logger.warning(f"Accept failed: {e}")

    def close(self):
        if self.sock is not None:
            self.sock.close()
            self.sock = None
