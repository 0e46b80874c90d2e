"""Subscriber registry: fixed channels fanning log lines out to sinks."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Callable, Optional

from .filters import am_proc_start_filter, magisk_log_filter

logger = logging.getLogger("logcat-daemon")

Predicate = Callable[[bytes], bool]


class EventChannel(IntEnum):
    """Fixed channel roles, in declaration (and evaluation) order."""

    HIDE_EVENT = 0
    LOG_EVENT = 1


class Sink(ABC):
    """Output destination for a channel."""

    # Sinks that stop being written to after any failed write
    transient = True

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write raw bytes, raising OSError when the destination is gone."""

    @abstractmethod
    def close(self) -> None:
        pass


class SocketSink(Sink):
    """Sink backed by an accepted subscriber connection."""

    def __init__(self, sock):
        self.sock = sock

    def write(self, data: bytes) -> None:
        self.sock.sendall(data)

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing subscriber socket: {e}")

    def __repr__(self) -> str:
        return f"SocketSink(fd={self.sock.fileno()})"


class FileSink(Sink):
    """Sink backed by an open binary file."""

    transient = False

    def __init__(self, fileobj: BinaryIO):
        self.fileobj = fileobj

    def write(self, data: bytes) -> None:
        self.fileobj.write(data)
        self.fileobj.flush()

    def close(self) -> None:
        self.fileobj.close()

    def __repr__(self) -> str:
        return f"FileSink({getattr(self.fileobj, 'name', '?')!r})"


@dataclass
class Channel:
    """A fan-out slot pairing a predicate with a replaceable sink."""

    name: str
    predicate: Predicate
    sink: Optional[Sink] = None


def default_channels() -> list[Channel]:
    """Build the daemon's two channels in EventChannel order."""
    return [
        Channel(name="hide_event", predicate=am_proc_start_filter),
        Channel(name="log_event", predicate=magisk_log_filter),
    ]


class ChannelRegistry:
    """Lock-guarded table of channels.

    All reads and writes of channel sinks go through ``set_sink`` and
    ``publish``. The lock is held for the whole fan-out of one line so a
    sink cannot be swapped out halfway through a publish.
    """

    def __init__(self, channels: Optional[list[Channel]] = None):
        self._channels = channels if channels is not None else default_channels()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._channels)

    def set_sink(self, channel: int, sink: Optional[Sink]) -> None:
        """Replace a channel's sink, closing the previous one."""
        with self._lock:
            entry = self._channels[channel]
            previous, entry.sink = entry.sink, sink
            if previous is not None and previous is not sink:
                previous.close()
        if sink is not None:
            logger.debug(f"Channel '{entry.name}' bound to {sink!r}")

    def clear_sink(self, channel: int) -> None:
        """Unset a channel's sink, closing it."""
        self.set_sink(channel, None)

    def has_sink(self, channel: int) -> bool:
        with self._lock:
            return self._channels[channel].sink is not None

    def publish(self, line: bytes) -> int:
        """Write ``line`` to every bound channel whose predicate matches.

        A broken connection, or any failed write to a transient sink, clears
        that channel. Other failures are logged and the sink stays bound.
        Publication always continues with the remaining channels. Returns
        the number of successful writes.
        """
        delivered = 0
        with self._lock:
            for entry in self._channels:
                sink = entry.sink
                if sink is None or not entry.predicate(line):
                    continue
                try:
                    sink.write(line)
                    delivered += 1
                except OSError as e:
                    if not (isinstance(e, ConnectionError) or sink.transient):
                        logger.warning(f"Write to channel '{entry.name}' failed: {e}")
                        continue
                    logger.info(f"Dropping sink of channel '{entry.name}': {e}")
                    entry.sink = None
                    sink.close()
        return delivered

    def close_all(self) -> None:
        """Close and unset every sink."""
        for channel in range(len(self._channels)):
            self.clear_sink(channel)
