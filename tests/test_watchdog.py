"""Tests for the supervised process watchdog."""

import os
import socket
import threading
from unittest.mock import MagicMock, call, patch

import pytest

from logcat_daemon.protocol import Opcode, read_int
from logcat_daemon.watchdog import SupervisedConnector, SupervisorWatchdog


class TestSupervisorWatchdog:
    """Test the probe loop."""

    def test_unavailable_backs_off(self):
        """A refused connection is retried after the backoff."""
        sleep = MagicMock()
        connect = MagicMock(side_effect=ConnectionRefusedError())
        watchdog = SupervisorWatchdog(connect, backoff=0.25, sleep=sleep)

        assert watchdog.run_once() is False
        sleep.assert_called_once_with(0.25)
        assert watchdog.terminations == 0

    def test_returns_when_peer_dies(self):
        """The held connection returning means the process terminated."""
        ours, theirs = socket.socketpair()
        received = []

        def supervised_process_dies():
            received.append(read_int(theirs))
            theirs.close()

        peer = threading.Thread(target=supervised_process_dies)
        peer.start()
        watchdog = SupervisorWatchdog(lambda: ours, sleep=MagicMock())

        assert watchdog.run_once() is True
        peer.join(timeout=5)

        assert received == [Opcode.HANDSHAKE]
        assert watchdog.terminations == 1
        assert ours.fileno() == -1

    def test_peer_already_gone(self):
        """Immediate EOF still counts as a termination."""
        ours, theirs = socket.socketpair()
        theirs.close()
        watchdog = SupervisorWatchdog(lambda: ours, sleep=MagicMock())

        assert watchdog.run_once() is True

    def test_run_waits_grace_first(self):
        """The loop starts after the grace delay and keeps probing."""
        sleep = MagicMock()
        watchdog = SupervisorWatchdog(MagicMock(), grace=5.0, sleep=sleep)

        with patch.object(watchdog, "run_once", side_effect=[False, True, RuntimeError("stop")]) as run_once:
            with pytest.raises(RuntimeError):
                watchdog.run()

        assert sleep.call_args_list[0] == call(5.0)
        assert run_once.call_count == 3


class TestSupervisedConnector:
    """Test connect-or-spawn."""

    def test_connects_to_listener(self, short_tmp):
        """A reachable process is connected to without spawning."""
        path = os.path.join(short_tmp, "super.sock")
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(path)
        listener.listen(1)
        spawn = MagicMock()
        try:
            sock = SupervisedConnector(path, command=["super"], spawn=spawn)()
            sock.close()
        finally:
            listener.close()

        spawn.assert_not_called()

    def test_spawns_when_unreachable(self, short_tmp):
        """An unreachable process is spawned and the error still raised."""
        spawn = MagicMock(return_value=4321)
        connector = SupervisedConnector(
            os.path.join(short_tmp, "missing.sock"),
            command=["/sbin/super", "--daemon"],
            spawn=spawn,
        )

        with pytest.raises(FileNotFoundError):
            connector()

        spawn.assert_called_once_with(["/sbin/super", "--daemon"])

    def test_respawn_rate_limited(self, short_tmp):
        """Retries while an instance boots do not spawn duplicates."""
        spawn = MagicMock(return_value=1)
        connector = SupervisedConnector(
            os.path.join(short_tmp, "missing.sock"),
            command=["super"],
            spawn=spawn,
            respawn_interval=60,
        )

        for _ in range(3):
            with pytest.raises(OSError):
                connector()

        assert spawn.call_count == 1

    def test_no_command_never_spawns(self, short_tmp):
        """Without a command the connector only reports unavailability."""
        connector = SupervisedConnector(os.path.join(short_tmp, "missing.sock"))
        with pytest.raises(OSError):
            connector()

    def test_spawn_failure_logged(self, short_tmp):
        """A failing spawn does not mask the connection error."""
        spawn = MagicMock(side_effect=OSError("exec failed"))
        connector = SupervisedConnector(
            os.path.join(short_tmp, "missing.sock"), command=["super"], spawn=spawn
        )
        with pytest.raises(FileNotFoundError):
            connector()
