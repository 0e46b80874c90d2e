"""Control protocol spoken over the daemon's local socket.

Every request is a single native-order 32-bit int opcode. A handshake is
answered with the same int before the daemon closes the connection; an
attach request turns the connection into a long-lived event stream.
"""

from __future__ import annotations

import socket
import struct
import time
from enum import IntEnum
from typing import Optional

INT_FORMAT = "=i"
INT_SIZE = struct.calcsize(INT_FORMAT)


class Opcode(IntEnum):
    """Requests understood by the control server."""

    ATTACH = 1
    HANDSHAKE = 2


class ProtocolError(Exception):
    """Raised when the peer closes before a full int arrives."""


def read_int(sock: socket.socket) -> int:
    """Read one framed int from ``sock``."""
    data = b""
    while len(data) < INT_SIZE:
        chunk = sock.recv(INT_SIZE - len(data))
        if not chunk:
            raise ProtocolError(f"Connection closed after {len(data)} of {INT_SIZE} bytes")
        data += chunk
    return struct.unpack(INT_FORMAT, data)[0]


def write_int(sock: socket.socket, value: int) -> None:
    """Write one framed int to ``sock``."""
    sock.sendall(struct.pack(INT_FORMAT, int(value)))


def connect(path: str, retry_interval: float = 0.01, timeout: Optional[float] = None) -> socket.socket:
    """Connect to a unix socket, retrying until it accepts.

    With a ``timeout`` the last connection error is re-raised once that
    many seconds have passed without success.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(path)
            return sock
        except (FileNotFoundError, ConnectionRefusedError):
            sock.close()
            if deadline is not None and time.monotonic() >= deadline:
                raise
            time.sleep(retry_interval)


def handshake(path: str, timeout: Optional[float] = None) -> bool:
    """Check that the daemon on ``path`` is alive and answering."""
    sock = connect(path, timeout=timeout)
    if timeout is not None:
        sock.settimeout(timeout)
    try:
        write_int(sock, Opcode.HANDSHAKE)
        return read_int(sock) == Opcode.HANDSHAKE
    except (ProtocolError, OSError):
        return False
    finally:
        sock.close()


def attach(path: str, timeout: Optional[float] = None) -> socket.socket:
    """Register as the hide-event subscriber and return the stream socket."""
    sock = connect(path, timeout=timeout)
    try:
        write_int(sock, Opcode.ATTACH)
    except OSError:
        sock.close()
        raise
    return sock
