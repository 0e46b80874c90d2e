"""
logcat-daemon - Resident log monitor with socket fan-out

Tails the system log, writes a filtered copy to disk, streams selected
events to an attached subscriber and keeps a supervised process alive.
"""

__version__ = "1.0.0"

from .config import DaemonConfig
from .daemon import LogDaemon, start_log_daemon
from .registry import ChannelRegistry, EventChannel

__all__ = ["DaemonConfig", "LogDaemon", "ChannelRegistry", "EventChannel", "start_log_daemon"]
