"""Tests for the control protocol helpers."""

import os
import socket
import struct
import threading

import pytest

from logcat_daemon.protocol import (
    INT_SIZE,
    Opcode,
    ProtocolError,
    attach,
    connect,
    handshake,
    read_int,
    write_int,
)


class TestFraming:
    """Test int framing."""

    def test_write_then_read(self):
        """Ints survive a trip across a socket."""
        a, b = socket.socketpair()
        write_int(a, Opcode.HANDSHAKE)
        write_int(a, -7)
        assert read_int(b) == Opcode.HANDSHAKE
        assert read_int(b) == -7

    def test_native_layout(self):
        """Opcodes are four native-order bytes."""
        a, b = socket.socketpair()
        write_int(a, Opcode.ATTACH)
        assert b.recv(16) == struct.pack("=i", 1)
        assert INT_SIZE == 4

    def test_read_reassembles_split_int(self):
        """An int delivered in pieces is still read whole."""
        a, b = socket.socketpair()
        data = struct.pack("=i", Opcode.HANDSHAKE)
        a.sendall(data[:1])
        a.sendall(data[1:])
        assert read_int(b) == Opcode.HANDSHAKE

    def test_short_read(self):
        """EOF before four bytes raises ProtocolError."""
        a, b = socket.socketpair()
        a.sendall(b"\x02\x00")
        a.close()
        with pytest.raises(ProtocolError):
            read_int(b)


class TestClient:
    """Test client connection helpers."""

    def test_connect_times_out(self, short_tmp):
        """Connecting to a missing socket gives up after the timeout."""
        with pytest.raises(FileNotFoundError):
            connect(os.path.join(short_tmp, "none.sock"), timeout=0.05)

    def test_connect_retries_until_listening(self, short_tmp):
        """connect waits for a socket that appears later."""
        path = os.path.join(short_tmp, "late.sock")
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)

        def bind_later():
            listener.bind(path)
            listener.listen(1)

        timer = threading.Timer(0.05, bind_later)
        timer.start()
        try:
            sock = connect(path, timeout=5)
            sock.close()
        finally:
            timer.join()
            listener.close()

    def test_attach_sends_opcode(self, short_tmp):
        """attach announces itself and keeps the socket open."""
        path = os.path.join(short_tmp, "ctl.sock")
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(path)
        listener.listen(1)
        try:
            sock = attach(path, timeout=1)
            conn, _ = listener.accept()
            assert read_int(conn) == Opcode.ATTACH
            conn.sendall(b"line\n")
            assert sock.recv(16) == b"line\n"
            sock.close()
            conn.close()
        finally:
            listener.close()

    def test_handshake_silent_daemon_times_out(self, short_tmp):
        """A daemon that accepts but never answers fails the handshake."""
        path = os.path.join(short_tmp, "mute.sock")
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(path)
        listener.listen(1)
        try:
            assert handshake(path, timeout=0.2) is False
        finally:
            listener.close()
