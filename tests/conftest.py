"""Shared fixtures."""

import io
import shutil
import tempfile

import pytest


class FakeProc:
    """Stand-in for a spawned source process."""

    def __init__(self, pid, lines):
        self.pid = pid
        self.stdout = io.BytesIO(b"".join(lines))


class FakeRunner:
    """Records process calls; each spawn replays the next queued session."""

    def __init__(self, sessions=(), unsupported=()):
        self.sessions = list(sessions)
        self.unsupported = set(unsupported)
        self.calls = []

    def spawn(self, argv, capture_stdout=True):
        self.calls.append(("spawn", list(argv)))
        lines = self.sessions.pop(0) if self.sessions else []
        return FakeProc(1000 + len(self.calls), lines)

    def terminate(self, proc):
        self.calls.append(("terminate", proc.pid))

    def wait(self, proc):
        self.calls.append(("wait", proc.pid))
        return 0

    def run_sync(self, argv):
        self.calls.append(("run_sync", list(argv)))
        if "-b" in argv and argv[argv.index("-b") + 1] in self.unsupported:
            return 1
        return 0


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def short_tmp():
    """Temporary directory with a path short enough for unix sockets."""
    path = tempfile.mkdtemp(prefix="ld")
    yield path
    shutil.rmtree(path, ignore_errors=True)
